"""Unit tests for the in-memory session store."""
import asyncio
import pytest
from datetime import timedelta

from app.services.call_session.models import Session, SessionStatus, utcnow
from app.services.call_session.store import SessionStore


def make_session(session_id: str = "s1") -> Session:
    return Session(
        session_id=session_id,
        target_number="+15551234567",
        spoof_number="+15559876543",
    )


class TestSessionStore:
    """Test session store behavior."""

    @pytest.mark.asyncio
    async def test_add_and_snapshot(self):
        """Test that a stored session can be read back as a snapshot."""
        store = SessionStore()
        await store.add(make_session())

        snapshot = await store.snapshot("s1")

        assert snapshot is not None
        assert snapshot.session_id == "s1"
        assert snapshot.status == SessionStatus.INITIATED
        assert "s1" in store
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_session_ids_are_not_reused(self):
        """Test that adding a duplicate session id is refused."""
        store = SessionStore()
        await store.add(make_session())

        with pytest.raises(KeyError):
            await store.add(make_session())

    @pytest.mark.asyncio
    async def test_snapshot_is_detached_from_live_record(self):
        """Test that later mutation does not change an earlier snapshot."""
        store = SessionStore()
        await store.add(make_session())
        before = await store.snapshot("s1")

        async with store.locked("s1") as session:
            session.status = SessionStatus.RINGING

        assert before.status == SessionStatus.INITIATED
        assert (await store.snapshot("s1")).status == SessionStatus.RINGING

    @pytest.mark.asyncio
    async def test_unknown_session(self):
        """Test that unknown ids read as not found."""
        store = SessionStore()

        assert await store.snapshot("missing") is None
        async with store.locked("missing") as session:
            assert session is None

    @pytest.mark.asyncio
    async def test_provider_call_id_is_set_once(self):
        """Test that the provider call id cannot be rebound."""
        store = SessionStore()
        await store.add(make_session())

        assert await store.bind_provider_call_id("s1", "CA1") is True
        assert await store.bind_provider_call_id("s1", "CA2") is False

        assert await store.resolve_provider_call_id("CA1") == "s1"
        assert await store.resolve_provider_call_id("CA2") is None
        assert (await store.snapshot("s1")).provider_call_id == "CA1"

    @pytest.mark.asyncio
    async def test_discard_removes_index(self):
        """Test that discarding a session drops its call id index."""
        store = SessionStore()
        await store.add(make_session())
        await store.bind_provider_call_id("s1", "CA1")

        await store.discard("s1")

        assert await store.snapshot("s1") is None
        assert await store.resolve_provider_call_id("CA1") is None

    @pytest.mark.asyncio
    async def test_evicts_only_stale_sessions(self):
        """Test bounded-age eviction."""
        store = SessionStore()
        stale = make_session("old")
        stale.updated_at = utcnow() - timedelta(hours=2)
        await store.add(stale)
        await store.add(make_session("fresh"))
        await store.bind_provider_call_id("old", "CA_old")

        evicted = await store.evict_older_than(timedelta(hours=1))

        assert evicted == ["old"]
        assert await store.snapshot("old") is None
        assert await store.resolve_provider_call_id("CA_old") is None
        assert await store.snapshot("fresh") is not None

    @pytest.mark.asyncio
    async def test_mutations_are_serialized_per_session(self):
        """Test that concurrent holders of a session lock never interleave."""
        store = SessionStore()
        await store.add(make_session())
        active = 0
        overlaps = 0

        async def mutate():
            nonlocal active, overlaps
            async with store.locked("s1") as session:
                active += 1
                if active > 1:
                    overlaps += 1
                await asyncio.sleep(0)
                session.touch()
                active -= 1

        await asyncio.gather(*(mutate() for _ in range(20)))

        assert overlaps == 0
