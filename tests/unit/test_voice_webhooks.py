"""Unit tests for the voice webhooks and HTTP surface."""
import asyncio
import time
from unittest.mock import AsyncMock, Mock

from tutorline.services.call_session import prompts
from tutorline.services.call_session.models import CallState, Language, VoiceReply
from tutorline.services.history.repository import HistoryRepository
from tutorline.services.speech.twiml import escape_xml, render_twiml

CALLER = "15550001"
RECORDING_URL = "https://api.twilio.com/2010-04-01/Accounts/AC1/Recordings/RE1"


def post_voice(client, endpoint, **data):
    data.setdefault("CallSid", "CA1")
    data.setdefault("From", CALLER)
    return client.post(f"/webhooks/voice/{endpoint}", data=data)


def wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        assert time.monotonic() < deadline, "condition not reached in time"
        time.sleep(0.02)


class TestTwiml:
    """Test TwiML rendering."""

    def test_gather_and_redirect(self):
        """Test a gather posts digits to the menu and falls back to welcome."""
        reply = VoiceReply(call_sid="CA1", state=CallState.MENU).gather("Press 1.")
        twiml = render_twiml(reply, "https://tutor.example.com/")

        assert twiml.startswith('<?xml version="1.0" encoding="UTF-8"?>')
        assert '<Gather action="https://tutor.example.com/webhooks/voice/menu" method="POST"' in twiml
        assert 'numDigits="1"' in twiml
        assert '<Redirect method="POST">https://tutor.example.com/webhooks/voice/welcome</Redirect>' in twiml

    def test_text_is_escaped(self):
        """Test caller-visible text cannot break the document."""
        reply = VoiceReply(call_sid="CA1", state=CallState.MENU).say('a < b & "c"')
        twiml = render_twiml(reply, "http://testserver")

        assert "a &lt; b &amp; &quot;c&quot;" in twiml
        assert escape_xml("it's") == "it&apos;s"

    def test_language_voice(self):
        """Test Hindi replies use the Hindi voice."""
        reply = VoiceReply(call_sid="CA1", state=CallState.MENU, language=Language.HINDI).say("Namaste")
        twiml = render_twiml(reply, "http://testserver")

        assert 'voice="Polly.Aditi" language="hi-IN"' in twiml

    def test_record_play_hangup(self):
        """Test record, play and hangup instructions."""
        reply = (
            VoiceReply(call_sid="CA1", state=CallState.RECORDING)
            .record("question-recorded", max_length=60, finish_on_key="2")
            .play("answer_CA1_1.mp3")
            .pause(1)
            .hangup()
        )
        twiml = render_twiml(reply, "http://testserver")

        assert 'action="http://testserver/webhooks/voice/question-recorded"' in twiml
        assert 'maxLength="60" finishOnKey="2" playBeep="true"' in twiml
        assert "<Play>http://testserver/audio/answer_CA1_1.mp3</Play>" in twiml
        assert '<Pause length="1"/>' in twiml
        assert "<Hangup/>" in twiml


class TestVoiceWebhooks:
    """Test the voice webhook endpoints end to end."""

    def test_incoming_call(self, test_client):
        """Test the incoming webhook returns the language prompt."""
        response = post_voice(test_client, "incoming")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/xml")
        assert "For English, press 1" in response.text
        assert 'action="http://testserver/webhooks/voice/menu"' in response.text

    def test_question_flow(self, test_client, runtime):
        """Test asking a question and hearing the answer over webhooks."""
        post_voice(test_client, "incoming")
        response = post_voice(test_client, "menu", Digits="1")
        assert "Press 1 to ask a question" in response.text

        response = post_voice(test_client, "menu", Digits="1")
        assert "<Record" in response.text
        assert 'finishOnKey="2"' in response.text

        response = post_voice(test_client, "question-recorded", RecordingUrl=RECORDING_URL)
        assert prompts.QUESTION_RECEIVED in response.text

        session = runtime.manager.get_session("CA1")
        wait_for(lambda: session.state == CallState.MENU)

        response = post_voice(test_client, "menu", Digits="3")
        assert response.status_code == 200
        assert "Photosynthesis is how plants turn light into food." in response.text

        def saved():
            return len(test_client.get(f"/api/history/{CALLER}").json()) == 1

        wait_for(saved)
        stats = test_client.get(f"/api/history/{CALLER}/stats").json()
        assert stats["total_questions"] == 1
        assert stats["per_subject"] == {"Biology": 1}

    def test_invalid_digit_redirects(self, test_client):
        """Test an unlisted digit redirects to welcome."""
        post_voice(test_client, "incoming")
        response = post_voice(test_client, "menu", Digits="8")

        assert prompts.INVALID_OPTION in response.text
        assert "/webhooks/voice/welcome</Redirect>" in response.text

    def test_end_call_and_status(self, test_client, runtime):
        """Test hanging up removes the session and a late status is harmless."""
        post_voice(test_client, "incoming")
        post_voice(test_client, "menu", Digits="1")
        response = post_voice(test_client, "menu", Digits="9")

        assert "<Hangup/>" in response.text
        assert runtime.manager.get_session("CA1") is None

        response = post_voice(test_client, "status", CallStatus="completed")
        assert response.status_code == 200
        assert response.text == "OK"

    def test_status_tears_down_session(self, test_client, runtime):
        """Test a terminal status ends an active session."""
        post_voice(test_client, "incoming")
        assert runtime.manager.active_count == 1

        post_voice(test_client, "status", CallStatus="completed")
        assert runtime.manager.active_count == 0

    def test_unexpected_error_apologizes(self, test_client, runtime):
        """Test a failing webhook still answers with TwiML."""
        runtime.manager.welcome = AsyncMock(side_effect=RuntimeError("boom"))
        response = post_voice(test_client, "welcome")

        assert response.status_code == 200
        assert "I&apos;m sorry, I encountered an error" in response.text
        assert "/webhooks/voice/welcome</Redirect>" in response.text

    def test_summary_without_history(self, test_client, mock_stt):
        """Test a summary request for an unknown subject."""
        mock_stt.transcribe.return_value = "chemistry"
        post_voice(test_client, "incoming")
        post_voice(test_client, "menu", Digits="1")
        response = post_voice(test_client, "menu", Digits="4")
        assert 'action="http://testserver/webhooks/voice/summary-recorded"' in response.text

        response = post_voice(test_client, "summary-recorded", RecordingUrl=RECORDING_URL)
        assert "You have not asked any questions about Chemistry yet" in response.text


class TestObservability:
    """Test health, metrics and the event stream."""

    def test_health(self, test_client):
        response = test_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_status_reports_providers(self, test_client):
        """Test provider availability and metrics on the status endpoint."""
        post_voice(test_client, "incoming")
        data = test_client.get("/api/status").json()

        assert data["providers"] == {
            "transcription": True,
            "llm": True,
            "synthesis": False,
            "history": True,
        }
        assert data["activeSessions"] == 1
        assert data["metrics"]["kind"] == "metricsSnapshot"

    def test_status_with_unresponsive_store(self, test_client, runtime):
        """Test a hung history store is reported unavailable instead of blocking."""

        async def hang():
            await asyncio.sleep(3600)

        runtime.history = Mock(spec=HistoryRepository)
        runtime.history.is_available = AsyncMock(side_effect=hang)

        response = test_client.get("/api/status")

        assert response.status_code == 200
        assert response.json()["providers"]["history"] is False

    def test_metrics_count_calls(self, test_client):
        """Test call counters reach the metrics endpoint."""
        post_voice(test_client, "incoming", CallSid="CA1")
        post_voice(test_client, "incoming", CallSid="CA2")

        def counted():
            return test_client.get("/api/metrics").json()["totalCalls"] == 2

        wait_for(counted)
        assert test_client.get("/api/metrics").json()["activeSessions"] == 2

    def test_network_calls_are_recorded(self, test_client):
        """Test webhook requests appear as network call records."""
        post_voice(test_client, "incoming")
        events = test_client.get("/api/events/recent", params={"limit": 100}).json()

        records = [e for e in events if e["kind"] == "networkCallRecord"]
        assert any(
            r["endpoint"] == "/webhooks/voice/incoming" and r["statusCode"] == 200 for r in records
        )

    def test_recent_events_limit(self, test_client):
        post_voice(test_client, "incoming")
        events = test_client.get("/api/events/recent", params={"limit": 3}).json()
        assert len(events) == 3
        sequences = [e["sequence"] for e in events]
        assert sequences == sorted(sequences)

    def test_websocket_starts_with_snapshot(self, test_client):
        """Test a new observer gets a snapshot, then live events."""
        with test_client.websocket_connect("/ws/events") as websocket:
            first = websocket.receive_json()
            second = websocket.receive_json()

        assert first["kind"] == "metricsSnapshot"
        assert first["connectedObservers"] == 2
        assert second["kind"] == "log"
        assert second["event"] == "observerConnected"
        assert second["sequence"] > first["sequence"]
