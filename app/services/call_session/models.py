"""Call session models."""
from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional
from pydantic import BaseModel, Field

CONFERENCE_PREFIX = "conf-"
DEFAULT_GREETING = "Connecting your call..."
MAX_GREETING_LENGTH = 500


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class SessionStatus(str, Enum):
    """Lifecycle states of a call session."""

    INITIATED = "initiated"
    RINGING = "ringing"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"
    ENDED = "ended"

    def __str__(self) -> str:
        """Return the string value of the status."""
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {SessionStatus.COMPLETED, SessionStatus.FAILED, SessionStatus.ENDED}
)


class EventKind(str, Enum):
    """Provider events that drive session transitions."""

    RINGING = "ringing"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"
    RECORDING_AVAILABLE = "recording-available"

    def __str__(self) -> str:
        return self.value


class VoiceModulation(BaseModel):
    """Voice persona used for spoken prompts."""

    voice: Literal["alice", "man", "woman"] = "alice"
    language: str = Field(default="en-US", min_length=2, max_length=10)

    model_config = {"frozen": True}


class CallOptions(BaseModel):
    """Options chosen by the client when creating a session."""

    message: str = Field(default=DEFAULT_GREETING, max_length=MAX_GREETING_LENGTH)
    record: bool = False
    use_conference: bool = False
    voice_modulation: VoiceModulation = Field(default_factory=VoiceModulation)


class Recording(BaseModel):
    """Reference to a recording reported by the provider."""

    recording_sid: Optional[str] = None
    recording_url: Optional[str] = None
    duration: Optional[int] = None
    received_at: datetime = Field(default_factory=utcnow)


class Session(BaseModel):
    """Local record of one outbound call's lifecycle."""

    session_id: str
    target_number: str
    spoof_number: str
    status: SessionStatus = SessionStatus.INITIATED
    provider_call_id: Optional[str] = None
    conference_name: Optional[str] = None
    start_time: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    message: str = DEFAULT_GREETING
    record: bool = False
    voice_modulation: VoiceModulation = Field(default_factory=VoiceModulation)
    recordings: List[Recording] = []
    failure_reason: Optional[str] = None

    def touch(self) -> None:
        """Mark the session as just updated."""
        self.updated_at = utcnow()


class SessionSnapshot(BaseModel):
    """Read-only projection of a session for clients."""

    session_id: str
    status: SessionStatus
    target_number: str
    spoof_number: str
    start_time: datetime
    conference_name: Optional[str] = None
    provider_call_id: Optional[str] = None
    recordings: List[Recording] = []
    failure_reason: Optional[str] = None

    model_config = {"frozen": True}

    @classmethod
    def from_session(cls, session: Session) -> "SessionSnapshot":
        return cls(
            session_id=session.session_id,
            status=session.status,
            target_number=session.target_number,
            spoof_number=session.spoof_number,
            start_time=session.start_time,
            conference_name=session.conference_name,
            provider_call_id=session.provider_call_id,
            recordings=[r.model_copy() for r in session.recordings],
            failure_reason=session.failure_reason,
        )


class SessionHandle(BaseModel):
    """Result of a successful session creation."""

    session_id: str
    provider_call_id: Optional[str]
    spoof_number: str
    message: str
    conference_name: Optional[str] = None


def conference_name_for(session_id: str) -> str:
    """Derive the conference name for a session."""
    return f"{CONFERENCE_PREFIX}{session_id}"


def session_id_from_conference(conference_name: Optional[str]) -> Optional[str]:
    """Recover the session id from a conference name, if it is one of ours."""
    if not conference_name or not conference_name.startswith(CONFERENCE_PREFIX):
        return None
    session_id = conference_name[len(CONFERENCE_PREFIX):]
    return session_id or None
