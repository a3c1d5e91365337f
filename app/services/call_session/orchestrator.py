"""Call session orchestration."""
import asyncio
import logging
import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional, Set

from app.services.call_session.errors import (
    NotFoundError,
    ProviderTimeout,
    UpstreamFailure,
    ValidationError,
)
from app.services.call_session.models import (
    CallOptions,
    EventKind,
    Recording,
    Session,
    SessionHandle,
    SessionSnapshot,
    SessionStatus,
    conference_name_for,
    session_id_from_conference,
)
from app.services.call_session.store import SessionStore
from app.services.telephony.base import RecordingInfo, TelephonyProvider
from app.services.telephony.twiml import ResponseDocumentBuilder
from app.services.telephony.validator import is_valid_phone_number

logger = logging.getLogger(__name__)

# Forward edges of the call state machine. Terminal states have none.
TRANSITIONS: Dict[SessionStatus, Dict[EventKind, SessionStatus]] = {
    SessionStatus.INITIATED: {
        EventKind.RINGING: SessionStatus.RINGING,
        EventKind.IN_PROGRESS: SessionStatus.IN_PROGRESS,
        EventKind.COMPLETED: SessionStatus.COMPLETED,
        EventKind.FAILED: SessionStatus.FAILED,
    },
    SessionStatus.RINGING: {
        EventKind.IN_PROGRESS: SessionStatus.IN_PROGRESS,
        EventKind.COMPLETED: SessionStatus.COMPLETED,
        EventKind.FAILED: SessionStatus.FAILED,
    },
    SessionStatus.IN_PROGRESS: {
        EventKind.COMPLETED: SessionStatus.COMPLETED,
        EventKind.FAILED: SessionStatus.FAILED,
    },
}

CONFERENCE_WELCOME = "You are now being connected to the conference."
RINGING_HOLD_MESSAGE = "Please hold while we connect your call."


def next_status(current: SessionStatus, event: EventKind) -> SessionStatus:
    """
    Apply one event to a status.

    Unknown or backwards edges leave the status unchanged, so duplicated
    and reordered webhooks are harmless.
    """
    return TRANSITIONS.get(current, {}).get(event, current)


class CallOrchestrator:
    """Creates call sessions and drives them through provider events."""

    def __init__(
        self,
        provider: TelephonyProvider,
        webhook_base_url: str,
        store: Optional[SessionStore] = None,
        document_builder: Optional[ResponseDocumentBuilder] = None,
        operator_number: Optional[str] = None,
        session_ttl: timedelta = timedelta(hours=1),
    ):
        self.provider = provider
        self.webhook_base_url = webhook_base_url.rstrip("/")
        self.store = store or SessionStore()
        self.document_builder = document_builder or ResponseDocumentBuilder()
        self.operator_number = operator_number
        self.session_ttl = session_ttl
        self._background_tasks: Set[asyncio.Task] = set()

    @property
    def status_callback_url(self) -> str:
        return f"{self.webhook_base_url}/status"

    @property
    def recording_callback_url(self) -> str:
        return f"{self.webhook_base_url}/recording"

    def conference_url(self, conference_name: str) -> str:
        return f"{self.webhook_base_url}/conference/{conference_name}"

    async def create_session(
        self,
        target_number: str,
        spoof_number: str,
        options: Optional[CallOptions] = None,
    ) -> SessionHandle:
        """
        Create a session and place the outbound call.

        Identical submissions are not deduplicated; each creates its own
        session and call.

        Raises:
            ValidationError: A number is malformed. No session is created.
            UpstreamFailure: Twilio rejected the call. The session is discarded.
            ProviderTimeout: Twilio did not answer in time. The session is
                kept and marked failed. If the call is placed anyway, its SID
                is bound to the session and the call is hung up.
        """
        if not is_valid_phone_number(target_number):
            raise ValidationError("Invalid target phone number format")
        if not is_valid_phone_number(spoof_number):
            raise ValidationError("Invalid spoof phone number format")
        options = options or CallOptions()

        session_id = uuid.uuid4().hex
        conference_name = conference_name_for(session_id) if options.use_conference else None
        session = Session(
            session_id=session_id,
            target_number=target_number,
            spoof_number=spoof_number,
            conference_name=conference_name,
            message=options.message,
            record=options.record,
            voice_modulation=options.voice_modulation,
        )
        await self.store.add(session)
        logger.info(
            f"[CALL] Session created - SessionId: {session_id}, To: {target_number}, "
            f"From: {spoof_number}, Conference: {conference_name is not None}"
        )

        try:
            provider_call_id = await self._place_call(session)
        except ProviderTimeout as e:
            async with self.store.locked(session_id) as live:
                if live is not None:
                    live.status = SessionStatus.FAILED
                    live.failure_reason = "timeout"
                    live.touch()
            logger.warning(f"[CALL] Marked session failed after timeout - SessionId: {session_id}")
            if e.pending is not None:
                task = asyncio.create_task(self._reclaim_late_call(session_id, e.pending))
                self._background_tasks.add(task)
                task.add_done_callback(self._background_tasks.discard)
            raise
        except Exception as e:
            await self.store.discard(session_id)
            detail = e.detail if isinstance(e, UpstreamFailure) else None
            logger.error(
                f"[CALL] Call placement failed, session discarded - SessionId: {session_id}, "
                f"Error: {type(e).__name__}: {str(e)}, Detail: {detail}"
            )
            raise

        await self.store.bind_provider_call_id(session_id, provider_call_id)
        logger.info(f"[CALL] Call placed - SessionId: {session_id}, CallSid: {provider_call_id}")

        return SessionHandle(
            session_id=session_id,
            provider_call_id=provider_call_id,
            spoof_number=spoof_number,
            message=options.message,
            conference_name=conference_name,
        )

    async def _reclaim_late_call(self, session_id: str, pending: "asyncio.Future[Any]") -> None:
        """Track and hang up a call Twilio placed after the request timed out."""
        try:
            provider_call_id = await pending
        except Exception as e:
            logger.info(
                f"[CALL] Timed-out call was never placed - SessionId: {session_id}, "
                f"Error: {type(e).__name__}: {str(e)}"
            )
            return

        bound = await self.store.bind_provider_call_id(session_id, provider_call_id)
        logger.warning(
            f"[CALL] Call placed after timeout, hanging up - SessionId: {session_id}, "
            f"CallSid: {provider_call_id}, Bound: {bound}"
        )
        try:
            await self.provider.terminate_call(provider_call_id)
        except UpstreamFailure as e:
            logger.error(
                f"[CALL] Could not hang up late call - SessionId: {session_id}, "
                f"CallSid: {provider_call_id}, Error: {e.message}, Detail: {e.detail}"
            )

    async def wait_for_background_tasks(self) -> None:
        """Wait until every late-call cleanup has finished."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def _place_call(self, session: Session) -> str:
        if session.conference_name:
            # Twilio fetches the conference document from our webhook
            return await self.provider.place_call(
                to=session.target_number,
                from_=session.spoof_number,
                url=self.conference_url(session.conference_name),
                status_callback=self.status_callback_url,
            )

        if self.operator_number:
            # Ring the operator first, then bridge to the target with the spoofed caller ID
            twiml = self.document_builder.build_call_document(
                message=session.message,
                voice_modulation=session.voice_modulation,
                dial_number=session.target_number,
                caller_id=session.spoof_number,
                record=session.record,
                recording_callback=self.recording_callback_url,
            )
            return await self.provider.place_call(
                to=self.operator_number,
                from_=session.spoof_number,
                twiml=twiml,
                status_callback=self.status_callback_url,
            )

        twiml = self.document_builder.build_greeting_document(
            session.message, session.voice_modulation
        )
        return await self.provider.place_call(
            to=session.target_number,
            from_=session.spoof_number,
            twiml=twiml,
            status_callback=self.status_callback_url,
            recording_callback=self.recording_callback_url,
            record=session.record,
        )

    async def _resolve(
        self,
        provider_call_id: Optional[str] = None,
        conference_name: Optional[str] = None,
    ) -> Optional[str]:
        if provider_call_id:
            session_id = await self.store.resolve_provider_call_id(provider_call_id)
            if session_id:
                return session_id
        return session_id_from_conference(conference_name)

    async def apply_event(
        self,
        event: EventKind,
        provider_call_id: Optional[str] = None,
        conference_name: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Optional[SessionSnapshot]:
        """
        Apply a provider event to the session it correlates with.

        Events for unknown or evicted sessions are logged and dropped.

        Returns:
            Snapshot after the event, or None if no session matched
        """
        payload = payload or {}
        session_id = await self._resolve(provider_call_id, conference_name)
        if session_id is None:
            logger.info(
                f"[EVENT] Dropping {event} for unknown session - "
                f"CallSid: {provider_call_id}, Conference: {conference_name}"
            )
            return None

        async with self.store.locked(session_id) as session:
            if session is None:
                logger.info(f"[EVENT] Dropping {event} for evicted session - SessionId: {session_id}")
                return None

            if event == EventKind.RECORDING_AVAILABLE:
                session.recordings.append(
                    Recording(
                        recording_sid=payload.get("recording_sid"),
                        recording_url=payload.get("recording_url"),
                        duration=payload.get("duration"),
                    )
                )
                session.touch()
                logger.info(
                    f"[EVENT] Recording added - SessionId: {session_id}, "
                    f"RecordingSid: {payload.get('recording_sid')}, Total: {len(session.recordings)}"
                )
                return SessionSnapshot.from_session(session)

            previous = session.status
            new_status = next_status(previous, event)
            if new_status == previous:
                logger.debug(
                    f"[EVENT] Ignoring {event} in state {previous} - SessionId: {session_id}"
                )
                return SessionSnapshot.from_session(session)

            session.status = new_status
            if new_status == SessionStatus.FAILED:
                session.failure_reason = payload.get("reason") or str(event)
            session.touch()
            logger.info(f"[EVENT] {previous} -> {new_status} - SessionId: {session_id}")
            return SessionSnapshot.from_session(session)

    async def get_session(self, session_id: str) -> SessionSnapshot:
        """
        Read a session without changing it.

        Raises:
            NotFoundError: Session is unknown or already evicted
        """
        snapshot = await self.store.snapshot(session_id)
        if snapshot is None:
            raise NotFoundError("Session not found")
        return snapshot

    async def end_session(self, session_id: str) -> SessionSnapshot:
        """
        End a live session and ask Twilio to hang up.

        A session already completed, failed or ended keeps its status and
        failure reason, and Twilio is not contacted. Hang-up failures are
        logged only; the local state is authoritative.

        Raises:
            NotFoundError: Session is unknown or already evicted
        """
        async with self.store.locked(session_id) as session:
            if session is None:
                raise NotFoundError("Session not found")
            previous = session.status
            if not previous.is_terminal:
                session.status = SessionStatus.ENDED
            session.touch()
            provider_call_id = session.provider_call_id
            snapshot = SessionSnapshot.from_session(session)

        if previous.is_terminal:
            logger.info(f"[CALL] Session already finished - SessionId: {session_id}, Status: {previous}")
            return snapshot
        logger.info(f"[CALL] Session ended - SessionId: {session_id}, Previous status: {previous}")

        if provider_call_id:
            try:
                await self.provider.terminate_call(provider_call_id)
            except UpstreamFailure as e:
                logger.warning(
                    f"[CALL] Could not terminate call upstream - SessionId: {session_id}, "
                    f"CallSid: {provider_call_id}, Error: {e.message}, Detail: {e.detail}"
                )
        return snapshot

    async def generate_conference_response(
        self,
        conference_name: str,
        welcome_message: Optional[str] = None,
        record: Optional[bool] = None,
    ) -> str:
        """
        Build the document for a leg joining a conference.

        Works for conference names with no session yet; Twilio may ask for
        instructions before the session is visible here.
        """
        message = welcome_message or CONFERENCE_WELCOME
        voice_modulation = None
        should_record = bool(record)
        session_id = session_id_from_conference(conference_name)
        if session_id:
            known = None
            async with self.store.locked(session_id) as session:
                if session is not None:
                    known = session.model_copy()
            if known is not None:
                message = welcome_message or known.message
                voice_modulation = known.voice_modulation
                if record is None:
                    should_record = known.record
            else:
                logger.info(f"[CONFERENCE] No session yet for {conference_name}, using generic document")

        return self.document_builder.build_call_document(
            message=message,
            voice_modulation=voice_modulation,
            conference_name=conference_name,
            record=should_record,
            recording_callback=self.recording_callback_url,
        )

    async def generate_voice_response(
        self, provider_call_id: Optional[str], call_status: Optional[str] = None
    ) -> str:
        """Build the document for a generic voice control request."""
        if call_status == "ringing":
            return self.document_builder.build_greeting_document(RINGING_HOLD_MESSAGE)

        session_id = await self._resolve(provider_call_id)
        known = None
        if session_id:
            async with self.store.locked(session_id) as session:
                if session is not None:
                    known = session.model_copy()

        if known is None:
            return self.document_builder.build_greeting_document(RINGING_HOLD_MESSAGE)
        if known.conference_name:
            return await self.generate_conference_response(known.conference_name)
        return self.document_builder.build_greeting_document(
            known.message, known.voice_modulation
        )

    async def list_recordings(self, provider_call_id: str) -> List[RecordingInfo]:
        """Fetch the recordings Twilio holds for a call."""
        return await self.provider.list_recordings(provider_call_id)

    async def send_message(self, to: str, body: str, from_: str) -> str:
        """
        Send an SMS with the given sender ID.

        Raises:
            ValidationError: A number is malformed or the body is empty
        """
        if not is_valid_phone_number(to):
            raise ValidationError("Invalid phone number format")
        if not is_valid_phone_number(from_):
            raise ValidationError("Invalid sender number format")
        if not body or len(body) > 1600:
            raise ValidationError("SMS body must be between 1 and 1600 characters")
        message_id = await self.provider.send_message(to=to, from_=from_, body=body)
        logger.info(f"[SMS] Message sent - MessageSid: {message_id}, To: {to}, From: {from_}")
        return message_id

    async def evict_expired(self) -> List[str]:
        """Drop sessions not updated within the session TTL."""
        return await self.store.evict_older_than(self.session_ttl)

    async def run_eviction(self, interval_seconds: float) -> None:
        """Evict expired sessions periodically until cancelled."""
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.evict_expired()
            except Exception as e:
                logger.error(
                    f"[SESSION STORE] Eviction pass failed - Error: {type(e).__name__}: {str(e)}",
                    exc_info=True,
                )

    @property
    def active_sessions(self) -> int:
        return len(self.store)
