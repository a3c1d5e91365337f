"""Twilio telephony provider."""
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from app.services.call_session.errors import ProviderTimeout, UpstreamFailure
from app.services.telephony.base import RecordingInfo, TelephonyProvider

logger = logging.getLogger(__name__)

STATUS_CALLBACK_EVENTS = ["initiated", "ringing", "answered", "completed"]


class TwilioTelephonyProvider(TelephonyProvider):
    """Telephony provider backed by the Twilio REST API."""

    def __init__(self, client: Client, timeout: float = 10.0):
        """
        Args:
            client: Configured Twilio REST client
            timeout: Upper bound in seconds for each API request
        """
        self.client = client
        self.timeout = timeout

    @classmethod
    def from_credentials(
        cls, account_sid: str, auth_token: str, timeout: float = 10.0
    ) -> "TwilioTelephonyProvider":
        """Build a provider from account credentials."""
        return cls(Client(account_sid, auth_token), timeout=timeout)

    async def _call(self, operation: str, func: Callable[..., Any], **kwargs: Any) -> Any:
        """
        Run a blocking Twilio request in a worker thread, bounded by the timeout.

        A worker thread cannot be cancelled, so a timed-out request keeps
        running. Its future is handed back on the ProviderTimeout.
        """
        request = asyncio.ensure_future(asyncio.to_thread(func, **kwargs))
        try:
            return await asyncio.wait_for(asyncio.shield(request), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"[TWILIO] {operation} timed out after {self.timeout}s")
            request.add_done_callback(
                lambda done: self._log_late_outcome(operation, done)
            )
            raise ProviderTimeout(
                f"{operation} timed out after {self.timeout}s", pending=request
            ) from e
        except TwilioException as e:
            logger.error(
                f"[TWILIO] {operation} failed - Error: {type(e).__name__}: {str(e)}"
            )
            raise UpstreamFailure(f"{operation} failed", detail=str(e)) from e

    @staticmethod
    def _log_late_outcome(operation: str, request: "asyncio.Future[Any]") -> None:
        if request.cancelled():
            return
        error = request.exception()
        if error is not None:
            logger.warning(
                f"[TWILIO] {operation} failed after timing out - "
                f"Error: {type(error).__name__}: {str(error)}"
            )
        else:
            logger.warning(f"[TWILIO] {operation} completed after timing out")

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
        """
        Place an outbound call.

        Exactly one of twiml or url steers the call: inline TwiML is used
        when given, otherwise Twilio fetches instructions from url.

        Returns:
            Twilio call SID

        Raises:
            ProviderTimeout: pending resolves to the call SID if Twilio
                places the call after the timeout
        """
        params: Dict[str, Any] = {"to": to, "from_": from_}
        if twiml is not None:
            params["twiml"] = twiml
        elif url is not None:
            params["url"] = url
            params["method"] = "POST"
        else:
            raise ValueError("place_call requires twiml or url")

        if status_callback:
            params["status_callback"] = status_callback
            params["status_callback_event"] = STATUS_CALLBACK_EVENTS
            params["status_callback_method"] = "POST"

        if record:
            params["record"] = True
            if recording_callback:
                params["recording_status_callback"] = recording_callback
                params["recording_status_callback_method"] = "POST"

        def create_call() -> str:
            call = self.client.calls.create(**params)
            logger.info(f"[TWILIO] Call placed - CallSid: {call.sid}, Status: {call.status}")
            return call.sid

        return await self._call("Place call", create_call)

    async def terminate_call(self, provider_call_id: str) -> None:
        """Hang up a call by moving it to the completed state."""
        await self._call(
            "Terminate call",
            self.client.calls(provider_call_id).update,
            status="completed",
        )
        logger.info(f"[TWILIO] Call terminated - CallSid: {provider_call_id}")

    async def send_message(self, to: str, from_: str, body: str) -> str:
        """Send an SMS and return the message SID."""
        message = await self._call(
            "Send message",
            self.client.messages.create,
            to=to,
            from_=from_,
            body=body,
        )
        logger.info(f"[TWILIO] Message sent - MessageSid: {message.sid}")
        return message.sid

    async def list_recordings(self, provider_call_id: str) -> List[RecordingInfo]:
        """List recordings attached to a call."""
        records = await self._call(
            "List recordings",
            self.client.recordings.list,
            call_sid=provider_call_id,
        )
        return [
            RecordingInfo(
                sid=record.sid,
                call_sid=record.call_sid,
                duration=_to_int(record.duration),
                status=str(record.status) if record.status is not None else None,
                url=_media_url(record.uri),
                date_created=record.date_created,
            )
            for record in records
        ]


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _media_url(uri: Optional[str]) -> Optional[str]:
    """Turn a recording resource URI into its media URL."""
    if not uri:
        return None
    if uri.endswith(".json"):
        uri = uri[: -len(".json")]
    return f"https://api.twilio.com{uri}"
