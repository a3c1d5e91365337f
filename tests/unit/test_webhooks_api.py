"""Unit tests for Twilio webhook endpoints."""
import pytest
from unittest.mock import AsyncMock

from app.api.webhooks.voice import classify_status
from app.services.call_session.models import EventKind

from tests.conftest import SPOOF, TARGET


def create_call(client, **overrides):
    body = {"to": TARGET, "spoofNumber": SPOOF}
    body.update(overrides)
    return client.post("/api/spoof/call", json=body).json()


def poll_status(client, session_id):
    return client.get(f"/api/spoof/session/{session_id}").json()["session"]["status"]


class TestClassifyStatus:
    """Test Twilio CallStatus classification."""

    @pytest.mark.parametrize(
        "call_status,expected",
        [
            ("ringing", EventKind.RINGING),
            ("in-progress", EventKind.IN_PROGRESS),
            ("answered", EventKind.IN_PROGRESS),
            ("completed", EventKind.COMPLETED),
            ("busy", EventKind.FAILED),
            ("no-answer", EventKind.FAILED),
            ("failed", EventKind.FAILED),
            ("canceled", EventKind.FAILED),
            ("COMPLETED", EventKind.COMPLETED),
            ("queued", None),
            ("initiated", None),
            ("something-new", None),
            ("", None),
            (None, None),
        ],
    )
    def test_classification(self, call_status, expected):
        """Test that each status maps to the right event."""
        assert classify_status(call_status) == expected


class TestStatusWebhook:
    """Test POST /api/spoof/webhook/status."""

    def test_status_updates_drive_session(self, test_client):
        """Test ringing -> completed -> failed over webhooks."""
        call = create_call(test_client)
        sid = call["callId"]

        for status, expected in [
            ("initiated", "initiated"),
            ("ringing", "ringing"),
            ("completed", "completed"),
            ("failed", "completed"),
        ]:
            response = test_client.post(
                "/api/spoof/webhook/status", data={"CallSid": sid, "CallStatus": status}
            )
            assert response.status_code == 200
            assert response.text == "OK"
            assert poll_status(test_client, call["sessionId"]) == expected

    def test_busy_marks_failed(self, test_client, orchestrator):
        """Test that busy is a failure signal."""
        call = create_call(test_client)

        test_client.post(
            "/api/spoof/webhook/status", data={"CallSid": call["callId"], "CallStatus": "busy"}
        )

        assert poll_status(test_client, call["sessionId"]) == "failed"

    def test_unknown_call_is_acknowledged(self, test_client):
        """Test that webhooks for unknown calls still return 200."""
        response = test_client.post(
            "/api/spoof/webhook/status", data={"CallSid": "CA_unknown", "CallStatus": "completed"}
        )

        assert response.status_code == 200
        assert response.text == "OK"

    def test_empty_body_is_acknowledged(self, test_client):
        """Test that a webhook with no fields still returns 200."""
        response = test_client.post("/api/spoof/webhook/status")

        assert response.status_code == 200

    def test_internal_error_is_absorbed(self, test_client, orchestrator, monkeypatch):
        """Test that orchestrator faults never reach Twilio."""
        monkeypatch.setattr(
            orchestrator, "apply_event", AsyncMock(side_effect=RuntimeError("internal detail"))
        )

        response = test_client.post(
            "/api/spoof/webhook/status", data={"CallSid": "CA1", "CallStatus": "ringing"}
        )

        assert response.status_code == 200
        assert "internal detail" not in response.text


class TestRecordingWebhook:
    """Test POST /api/spoof/webhook/recording."""

    def test_recordings_appended_in_order(self, test_client, orchestrator):
        """Test that two recording callbacks add two entries."""
        call = create_call(test_client, record=True)

        for index in (1, 2):
            response = test_client.post(
                "/api/spoof/webhook/recording",
                data={
                    "CallSid": call["callId"],
                    "RecordingSid": f"RE{index}",
                    "RecordingUrl": f"https://api.twilio.com/rec/RE{index}",
                    "RecordingDuration": "9",
                },
            )
            assert response.status_code == 200

        recordings = orchestrator.store._sessions[call["sessionId"]].recordings
        assert [r.recording_sid for r in recordings] == ["RE1", "RE2"]
        assert recordings[0].duration == 9

    def test_conference_recording_correlates_by_query(self, test_client, orchestrator):
        """Test that conference recordings find the session by name."""
        call = create_call(test_client, useConference=True, record=True)
        conference_name = f"conf-{call['sessionId']}"

        response = test_client.post(
            f"/api/spoof/webhook/recording?conference={conference_name}",
            data={"RecordingSid": "RE1", "RecordingDuration": "not-a-number"},
        )

        assert response.status_code == 200
        recordings = orchestrator.store._sessions[call["sessionId"]].recordings
        assert len(recordings) == 1
        assert recordings[0].duration is None

    def test_unknown_recording_is_acknowledged(self, test_client):
        """Test recordings for unknown calls return 200."""
        response = test_client.post(
            "/api/spoof/webhook/recording", data={"CallSid": "CA_unknown", "RecordingSid": "RE1"}
        )

        assert response.status_code == 200
        assert response.text == "OK"


class TestControlWebhooks:
    """Test the TwiML-returning webhooks."""

    def test_conference_webhook_for_unknown_conference(self, test_client):
        """Test that an unknown conference still gets a valid document."""
        response = test_client.post("/api/spoof/webhook/conference/conf-probe")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/xml")
        assert "<Conference" in response.text
        assert "conf-probe" in response.text

    def test_conference_webhook_for_session(self, test_client):
        """Test the conference document for a known session."""
        call = create_call(test_client, useConference=True, message="Welcome aboard")

        response = test_client.post(
            f"/api/spoof/webhook/conference/conf-{call['sessionId']}",
            data={"CallSid": call["callId"]},
        )

        assert response.status_code == 200
        assert "Welcome aboard" in response.text

    def test_conference_webhook_absorbs_errors(self, test_client, orchestrator, monkeypatch):
        """Test that a failing orchestrator still yields a document."""
        monkeypatch.setattr(
            orchestrator,
            "generate_conference_response",
            AsyncMock(side_effect=RuntimeError("boom")),
        )

        response = test_client.post("/api/spoof/webhook/conference/conf-x")

        assert response.status_code == 200
        assert "<Say" in response.text
        assert "boom" not in response.text

    def test_voice_webhook_ringing(self, test_client):
        """Test the hold message while ringing."""
        response = test_client.post(
            "/api/spoof/webhook/voice",
            data={"CallSid": "CA1", "CallStatus": "ringing", "From": SPOOF, "To": TARGET},
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/xml")
        assert "Please hold while we connect your call." in response.text

    def test_voice_webhook_without_fields(self, test_client):
        """Test that an empty voice request still gets a document."""
        response = test_client.post("/api/spoof/webhook/voice")

        assert response.status_code == 200
        assert "<Response>" in response.text
