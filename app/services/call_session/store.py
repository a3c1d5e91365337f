"""In-memory call session store."""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Dict, List, Optional

from app.services.call_session.models import Session, SessionSnapshot, utcnow

logger = logging.getLogger(__name__)


class SessionStore:
    """
    Owns every session record and serializes mutation per session.

    A store-level lock guards the maps themselves; each session also has its
    own lock so that webhook deliveries and client requests for the same
    session apply one at a time. Callers never see the raw maps.
    """

    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._by_provider_call_id: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def add(self, session: Session) -> None:
        """Insert a new session. Session ids are never reused."""
        async with self._lock:
            if session.session_id in self._sessions:
                raise KeyError(f"Session already exists: {session.session_id}")
            self._sessions[session.session_id] = session
            self._locks[session.session_id] = asyncio.Lock()

    async def discard(self, session_id: str) -> None:
        """Remove a session and its index entries."""
        async with self._lock:
            self._remove_locked(session_id)

    async def bind_provider_call_id(self, session_id: str, provider_call_id: str) -> bool:
        """
        Attach the provider's call id to a session.

        Returns:
            False if the session is gone or already has a call id
        """
        async with self.locked(session_id) as session:
            if session is None or session.provider_call_id is not None:
                return False
            session.provider_call_id = provider_call_id
            session.touch()
        async with self._lock:
            if session_id in self._sessions:
                self._by_provider_call_id[provider_call_id] = session_id
        return True

    async def resolve_provider_call_id(self, provider_call_id: str) -> Optional[str]:
        """Map a provider call id to a session id."""
        async with self._lock:
            return self._by_provider_call_id.get(provider_call_id)

    @asynccontextmanager
    async def locked(self, session_id: str) -> AsyncIterator[Optional[Session]]:
        """
        Hold the session's lock and yield the live record.

        Yields None when the session does not exist (or was evicted while
        waiting for the lock).
        """
        async with self._lock:
            lock = self._locks.get(session_id)
        if lock is None:
            yield None
            return
        async with lock:
            yield self._sessions.get(session_id)

    async def snapshot(self, session_id: str) -> Optional[SessionSnapshot]:
        """Consistent read-only copy of a session."""
        async with self.locked(session_id) as session:
            if session is None:
                return None
            return SessionSnapshot.from_session(session)

    async def evict_older_than(self, max_age: timedelta, now: Optional[datetime] = None) -> List[str]:
        """
        Remove sessions that have not been updated within max_age.

        Returns:
            Ids of the evicted sessions
        """
        cutoff = (now or utcnow()) - max_age
        async with self._lock:
            expired = [
                session_id
                for session_id, session in self._sessions.items()
                if session.updated_at < cutoff
            ]
            for session_id in expired:
                self._remove_locked(session_id)
        if expired:
            logger.info(f"[SESSION STORE] Evicted {len(expired)} expired sessions")
        return expired

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def _remove_locked(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        self._locks.pop(session_id, None)
        if session and session.provider_call_id:
            self._by_provider_call_id.pop(session.provider_call_id, None)
