"""Shared test fixtures and configuration."""
import pytest
import os
from typing import List, Optional
from fastapi.testclient import TestClient

# Set test environment variables before importing app
os.environ.setdefault("TWILIO_ACCOUNT_SID", "test-sid")
os.environ.setdefault("TWILIO_AUTH_TOKEN", "test-token")
os.environ.setdefault("TWILIO_PHONE_NUMBER", "+15550000000")
os.environ.setdefault("BASE_URL", "https://broker.test")

from app.main import app
from app.core.dependencies import get_orchestrator
from app.services.call_session.errors import UpstreamFailure
from app.services.call_session.orchestrator import CallOrchestrator
from app.services.telephony.base import RecordingInfo, TelephonyProvider

WEBHOOK_BASE_URL = "https://broker.test/api/spoof/webhook"
TARGET = "+15551234567"
SPOOF = "+15559876543"


class FakeTelephonyProvider(TelephonyProvider):
    """In-memory provider that records every request."""

    def __init__(self):
        self.placed_calls: List[dict] = []
        self.terminated: List[str] = []
        self.messages: List[dict] = []
        self.recordings: dict = {}
        self.place_call_error: Optional[Exception] = None
        self.terminate_error: Optional[Exception] = None
        self.send_error: Optional[Exception] = None
        self._counter = 0

    async def place_call(
        self,
        to,
        from_,
        twiml=None,
        url=None,
        status_callback=None,
        recording_callback=None,
        record=False,
    ) -> str:
        if self.place_call_error:
            raise self.place_call_error
        self._counter += 1
        call_sid = f"CA{self._counter:032d}"
        self.placed_calls.append(
            {
                "sid": call_sid,
                "to": to,
                "from_": from_,
                "twiml": twiml,
                "url": url,
                "status_callback": status_callback,
                "recording_callback": recording_callback,
                "record": record,
            }
        )
        return call_sid

    async def terminate_call(self, provider_call_id: str) -> None:
        if self.terminate_error:
            raise self.terminate_error
        self.terminated.append(provider_call_id)

    async def send_message(self, to: str, from_: str, body: str) -> str:
        if self.send_error:
            raise self.send_error
        self.messages.append({"to": to, "from_": from_, "body": body})
        return f"SM{len(self.messages):032d}"

    async def list_recordings(self, provider_call_id: str) -> List[RecordingInfo]:
        if provider_call_id == "CA_broken":
            raise UpstreamFailure("List recordings failed", detail="boom")
        return self.recordings.get(provider_call_id, [])


@pytest.fixture
def fake_provider():
    """Fresh fake telephony provider."""
    return FakeTelephonyProvider()


@pytest.fixture
def orchestrator(fake_provider):
    """Orchestrator wired to the fake provider."""
    return CallOrchestrator(provider=fake_provider, webhook_base_url=WEBHOOK_BASE_URL)


@pytest.fixture
def operator_orchestrator(fake_provider):
    """Orchestrator that rings an operator line before bridging."""
    return CallOrchestrator(
        provider=fake_provider,
        webhook_base_url=WEBHOOK_BASE_URL,
        operator_number="+15550001111",
    )


@pytest.fixture
def test_client(orchestrator):
    """Create FastAPI test client with the orchestrator overridden."""
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    client = TestClient(app)

    yield client

    # Clear overrides
    app.dependency_overrides.clear()
