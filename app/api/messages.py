"""SMS API endpoints."""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Request
from pydantic import Field

from app.api.calls import CamelModel, error_response, internal_error_response
from app.core.config import settings
from app.core.dependencies import get_orchestrator
from app.services.call_session.errors import UpstreamFailure, ValidationError
from app.services.call_session.orchestrator import CallOrchestrator

router = APIRouter()
logger = logging.getLogger(__name__)


class SMSRequest(CamelModel):
    """SMS request model."""

    to: str
    body: str = Field(min_length=1, max_length=1600)
    from_: Optional[str] = Field(default=None, alias="from")


class SMSResponse(CamelModel):
    """SMS response model."""

    success: bool = True
    message_id: str
    message: str = "SMS sent successfully"


@router.post("/sms", response_model=SMSResponse)
async def send_sms(
    sms_req: SMSRequest,
    request: Request,
    orchestrator: CallOrchestrator = Depends(get_orchestrator),
):
    """Send an SMS with a custom sender ID."""
    client_host = request.client.host if request.client else "unknown"
    sender = sms_req.from_ or settings.default_sender

    try:
        message_id = await orchestrator.send_message(sms_req.to, sms_req.body, sender)
    except ValidationError as e:
        logger.info(f"[SMS] Rejected SMS request - Reason: {e.message}, Client: {client_host}")
        return error_response(e)
    except UpstreamFailure as e:
        logger.error(
            f"[SMS] Provider failure - To: {sms_req.to}, Error: {e.message}, "
            f"Detail: {e.detail}, Client: {client_host}"
        )
        return error_response(e)
    except Exception as e:
        logger.error(
            f"[SMS] Error sending SMS - To: {sms_req.to}, "
            f"Error: {type(e).__name__}: {str(e)}, Client: {client_host}",
            exc_info=True,
        )
        return internal_error_response()

    return SMSResponse(message_id=message_id)
