"""Spoof call API endpoints."""
import logging
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.core.dependencies import get_orchestrator
from app.services.call_session.errors import (
    CallBrokerError,
    InternalError,
    NotFoundError,
    UpstreamFailure,
    ValidationError,
)
from app.services.call_session.models import (
    DEFAULT_GREETING,
    MAX_GREETING_LENGTH,
    CallOptions,
    SessionSnapshot,
    VoiceModulation,
)
from app.services.call_session.orchestrator import CallOrchestrator
from app.services.telephony.base import RecordingInfo

router = APIRouter()
logger = logging.getLogger(__name__)


class CamelModel(BaseModel):
    """Model exchanged with the browser client using camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CallRequest(CamelModel):
    """Spoof call request model."""

    to: str
    spoof_number: str
    message: Optional[str] = Field(default=None, max_length=MAX_GREETING_LENGTH)
    record: bool = False
    use_conference: bool = False
    voice_modulation: Optional[VoiceModulation] = None


class CallResponse(CamelModel):
    """Spoof call response model."""

    success: bool = True
    session_id: str
    call_id: Optional[str]
    spoof_number: str
    message: str


class SessionView(CamelModel):
    """Session fields visible to the polling client."""

    session_id: str
    status: str
    target_number: str
    spoof_number: str
    start_time: datetime
    conference_name: Optional[str] = None

    @classmethod
    def from_snapshot(cls, snapshot: SessionSnapshot) -> "SessionView":
        return cls(
            session_id=snapshot.session_id,
            status=snapshot.status.value,
            target_number=snapshot.target_number,
            spoof_number=snapshot.spoof_number,
            start_time=snapshot.start_time,
            conference_name=snapshot.conference_name,
        )


class SessionResponse(CamelModel):
    """Session poll response model."""

    success: bool = True
    session: SessionView


class RecordingView(CamelModel):
    """Recording metadata as returned to the client."""

    sid: str
    call_sid: Optional[str] = None
    duration: Optional[int] = None
    status: Optional[str] = None
    url: Optional[str] = None
    date_created: Optional[datetime] = None

    @classmethod
    def from_info(cls, info: RecordingInfo) -> "RecordingView":
        return cls(
            sid=info.sid,
            call_sid=info.call_sid,
            duration=info.duration,
            status=info.status,
            url=info.url,
            date_created=info.date_created,
        )


class RecordingsResponse(CamelModel):
    """Recordings list response model."""

    success: bool = True
    recordings: List[RecordingView] = []


def error_response(error: CallBrokerError) -> JSONResponse:
    """Render a broker error without leaking internal details."""
    return JSONResponse(
        status_code=error.status_code,
        content={"success": False, "message": error.public_message},
    )


def internal_error_response() -> JSONResponse:
    return error_response(InternalError("Unexpected fault"))


@router.post("/call", response_model=CallResponse)
async def make_call(
    call_req: CallRequest,
    request: Request,
    orchestrator: CallOrchestrator = Depends(get_orchestrator),
):
    """Place a call to the target showing the spoofed caller ID."""
    client_host = request.client.host if request.client else "unknown"
    options = CallOptions(
        message=call_req.message or DEFAULT_GREETING,
        record=call_req.record,
        use_conference=call_req.use_conference,
        voice_modulation=call_req.voice_modulation or VoiceModulation(),
    )

    try:
        handle = await orchestrator.create_session(
            call_req.to, call_req.spoof_number, options
        )
    except ValidationError as e:
        logger.info(f"[CALL] Rejected call request - Reason: {e.message}, Client: {client_host}")
        return error_response(e)
    except UpstreamFailure as e:
        logger.error(
            f"[CALL] Provider failure - To: {call_req.to}, Error: {e.message}, "
            f"Detail: {e.detail}, Client: {client_host}"
        )
        return error_response(e)
    except Exception as e:
        logger.error(
            f"[CALL] Error placing call - To: {call_req.to}, "
            f"Error: {type(e).__name__}: {str(e)}, Client: {client_host}",
            exc_info=True,
        )
        return internal_error_response()

    logger.info(
        f"[CALL] Spoof call request processed - SessionId: {handle.session_id}, "
        f"To: {call_req.to}, SpoofNumber: {call_req.spoof_number}, Client: {client_host}"
    )
    return CallResponse(
        session_id=handle.session_id,
        call_id=handle.provider_call_id,
        spoof_number=handle.spoof_number,
        message=handle.message,
    )


@router.get("/session/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: str,
    orchestrator: CallOrchestrator = Depends(get_orchestrator),
):
    """Return the current state of a call session."""
    try:
        snapshot = await orchestrator.get_session(session_id)
    except NotFoundError as e:
        return error_response(e)
    except Exception as e:
        logger.error(
            f"[SESSION] Error reading session - SessionId: {session_id}, "
            f"Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        return internal_error_response()

    return SessionResponse(session=SessionView.from_snapshot(snapshot))


@router.post("/session/{session_id}/end")
async def end_session(
    session_id: str,
    orchestrator: CallOrchestrator = Depends(get_orchestrator),
):
    """End a call session."""
    try:
        await orchestrator.end_session(session_id)
    except NotFoundError as e:
        return error_response(e)
    except Exception as e:
        logger.error(
            f"[SESSION] Error ending session - SessionId: {session_id}, "
            f"Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        return internal_error_response()

    return {"success": True, "message": "Call session ended"}


@router.get("/recordings/{call_sid}", response_model=RecordingsResponse)
async def get_recordings(
    call_sid: str,
    orchestrator: CallOrchestrator = Depends(get_orchestrator),
):
    """List recordings Twilio holds for a call."""
    try:
        recordings = await orchestrator.list_recordings(call_sid)
    except UpstreamFailure as e:
        logger.error(
            f"[RECORDINGS] Provider failure - CallSid: {call_sid}, "
            f"Error: {e.message}, Detail: {e.detail}"
        )
        return error_response(e)
    except Exception as e:
        logger.error(
            f"[RECORDINGS] Error listing recordings - CallSid: {call_sid}, "
            f"Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        return internal_error_response()

    return RecordingsResponse(recordings=[RecordingView.from_info(r) for r in recordings])
