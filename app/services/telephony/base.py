"""Telephony provider interface."""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel


class RecordingInfo(BaseModel):
    """Recording metadata returned by the provider."""

    sid: str
    call_sid: Optional[str] = None
    duration: Optional[int] = None
    status: Optional[str] = None
    url: Optional[str] = None
    date_created: Optional[datetime] = None


class TelephonyProvider(ABC):
    """
    Abstract base class for telephony providers.

    Implementations raise UpstreamFailure when the provider rejects a request
    and ProviderTimeout when it does not answer in time.
    """

    @abstractmethod
    async def place_call(
        self,
        to: str,
        from_: str,
        twiml: Optional[str] = None,
        url: Optional[str] = None,
        status_callback: Optional[str] = None,
        recording_callback: Optional[str] = None,
        record: bool = False,
    ) -> str:
        """Place an outbound call and return the provider call id."""
        pass

    @abstractmethod
    async def terminate_call(self, provider_call_id: str) -> None:
        """Hang up a call in progress."""
        pass

    @abstractmethod
    async def send_message(self, to: str, from_: str, body: str) -> str:
        """Send an SMS and return the provider message id."""
        pass

    @abstractmethod
    async def list_recordings(self, provider_call_id: str) -> List[RecordingInfo]:
        """List recordings made on a call."""
        pass
