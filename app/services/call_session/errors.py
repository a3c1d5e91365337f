"""Call broker error types."""
import asyncio
from typing import Any, Optional


class CallBrokerError(Exception):
    """Base class for errors raised by the call broker services."""

    status_code: int = 500
    public_message: str = "Internal server error"

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class ValidationError(CallBrokerError):
    """Request rejected before any session was created."""

    status_code = 400

    @property
    def public_message(self) -> str:  # type: ignore[override]
        return self.message


class NotFoundError(CallBrokerError):
    """Unknown session or recording id."""

    status_code = 404

    @property
    def public_message(self) -> str:  # type: ignore[override]
        return self.message


class UpstreamFailure(CallBrokerError):
    """The telephony provider rejected or failed a request."""

    status_code = 500
    public_message = "Telephony provider request failed"


class ProviderTimeout(UpstreamFailure):
    """
    The telephony provider did not answer within the configured timeout.

    The request itself may still complete. When the caller can act on a
    late result, pending is the future that resolves to it.
    """

    status_code = 504
    public_message = "Telephony provider timed out"

    def __init__(
        self,
        message: str,
        detail: Optional[str] = None,
        pending: Optional["asyncio.Future[Any]"] = None,
    ):
        super().__init__(message, detail)
        self.pending = pending


class InternalError(CallBrokerError):
    """Unexpected fault. Details are logged, never returned."""
