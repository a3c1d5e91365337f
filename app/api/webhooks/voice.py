"""Twilio voice webhook endpoints."""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Form, Query, Request
from fastapi.responses import Response

from app.core.dependencies import get_orchestrator
from app.services.call_session.models import EventKind
from app.services.call_session.orchestrator import RINGING_HOLD_MESSAGE, CallOrchestrator
from app.services.telephony.twiml import ResponseDocumentBuilder

router = APIRouter()
logger = logging.getLogger(__name__)

# Twilio CallStatus values and the events they drive. Statuses missing here
# (queued, initiated, unknown values) do not change a session.
STATUS_EVENTS = {
    "ringing": EventKind.RINGING,
    "in-progress": EventKind.IN_PROGRESS,
    "answered": EventKind.IN_PROGRESS,
    "completed": EventKind.COMPLETED,
    "busy": EventKind.FAILED,
    "no-answer": EventKind.FAILED,
    "failed": EventKind.FAILED,
    "canceled": EventKind.FAILED,
}


def classify_status(call_status: Optional[str]) -> Optional[EventKind]:
    """Map a Twilio CallStatus to a session event."""
    if not call_status:
        return None
    return STATUS_EVENTS.get(call_status.strip().lower())


def xml_response(twiml: str) -> Response:
    return Response(content=twiml, media_type="application/xml")


def ok_response() -> Response:
    return Response(content="OK", media_type="text/plain")


def client_of(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@router.post("/voice")
async def handle_voice(
    request: Request,
    CallSid: Optional[str] = Form(None),
    CallStatus: Optional[str] = Form(None),
    From: Optional[str] = Form(None),
    To: Optional[str] = Form(None),
    orchestrator: CallOrchestrator = Depends(get_orchestrator),
):
    """
    Handle a voice control request from Twilio.

    Always answers with a TwiML document; Twilio drops the call otherwise.
    """
    logger.info(
        f"[WEBHOOK VOICE] Voice webhook received - CallSid: {CallSid}, "
        f"CallStatus: {CallStatus}, From: {From}, To: {To}, Client: {client_of(request)}"
    )

    try:
        twiml = await orchestrator.generate_voice_response(CallSid, CallStatus)
        return xml_response(twiml)
    except Exception as e:
        logger.error(
            f"[WEBHOOK VOICE] Error building voice response - CallSid: {CallSid}, "
            f"Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        return xml_response(_fallback_document(RINGING_HOLD_MESSAGE))


@router.post("/conference/{conference_name}")
async def handle_conference(
    conference_name: str,
    request: Request,
    CallSid: Optional[str] = Form(None),
    orchestrator: CallOrchestrator = Depends(get_orchestrator),
):
    """Return the TwiML that joins a call leg to its conference."""
    logger.info(
        f"[WEBHOOK CONFERENCE] Conference webhook received - Conference: {conference_name}, "
        f"CallSid: {CallSid}, Client: {client_of(request)}"
    )

    try:
        twiml = await orchestrator.generate_conference_response(conference_name)
        return xml_response(twiml)
    except Exception as e:
        logger.error(
            f"[WEBHOOK CONFERENCE] Error building conference response - "
            f"Conference: {conference_name}, Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        return xml_response(_fallback_document())


@router.post("/status")
async def handle_call_status(
    request: Request,
    CallSid: Optional[str] = Form(None),
    CallStatus: Optional[str] = Form(None),
    CallDuration: Optional[str] = Form(None),
    orchestrator: CallOrchestrator = Depends(get_orchestrator),
):
    """
    Handle call status updates from Twilio.

    Answers OK even for unknown calls so Twilio does not retry.
    """
    logger.info(
        f"[WEBHOOK STATUS] Call status update - CallSid: {CallSid}, "
        f"CallStatus: {CallStatus}, Duration: {CallDuration}, Client: {client_of(request)}"
    )

    try:
        event = classify_status(CallStatus)
        if event is None:
            logger.debug(
                f"[WEBHOOK STATUS] No transition for status - CallSid: {CallSid}, "
                f"CallStatus: {CallStatus}"
            )
        elif not CallSid:
            logger.warning(f"[WEBHOOK STATUS] Status update without CallSid - CallStatus: {CallStatus}")
        else:
            await orchestrator.apply_event(
                event,
                provider_call_id=CallSid,
                payload={"reason": CallStatus, "duration": CallDuration},
            )
    except Exception as e:
        logger.error(
            f"[WEBHOOK STATUS] Error handling status update - CallSid: {CallSid}, "
            f"CallStatus: {CallStatus}, Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )

    return ok_response()


@router.post("/recording")
async def handle_recording(
    request: Request,
    conference: Optional[str] = Query(None),
    RecordingSid: Optional[str] = Form(None),
    RecordingUrl: Optional[str] = Form(None),
    RecordingDuration: Optional[str] = Form(None),
    CallSid: Optional[str] = Form(None),
    orchestrator: CallOrchestrator = Depends(get_orchestrator),
):
    """Handle recording-completed callbacks from Twilio."""
    logger.info(
        f"[WEBHOOK RECORDING] Recording completed - RecordingSid: {RecordingSid}, "
        f"RecordingUrl: {RecordingUrl}, CallSid: {CallSid}, Conference: {conference}, "
        f"Client: {client_of(request)}"
    )

    try:
        duration = _parse_int(RecordingDuration)
        await orchestrator.apply_event(
            EventKind.RECORDING_AVAILABLE,
            provider_call_id=CallSid,
            conference_name=conference,
            payload={
                "recording_sid": RecordingSid,
                "recording_url": RecordingUrl,
                "duration": duration,
            },
        )
    except Exception as e:
        logger.error(
            f"[WEBHOOK RECORDING] Error handling recording - RecordingSid: {RecordingSid}, "
            f"CallSid: {CallSid}, Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )

    return ok_response()


def _fallback_document(message: Optional[str] = None) -> str:
    return ResponseDocumentBuilder().build_greeting_document(message)


def _parse_int(value: Optional[str]) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
