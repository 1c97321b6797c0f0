"""Client bridge event envelope tests."""

import json

import pytest

from docvoice.events import (
    CaptureStartEvent,
    ErrorEvent,
    Event,
    EventType,
    SessionStateEvent,
    SpeakEvent,
)


class TestEventEnvelope:

    def test_to_json_shape(self):
        event = CaptureStartEvent("s1", 3, {"locale": "en-US"}, correlation_id="req_1")
        payload = json.loads(event.to_json())
        assert payload["type"] == "capture.start"
        assert payload["session_id"] == "s1"
        assert payload["data"] == {"generation": 3, "locale": "en-US"}
        assert payload["correlation_id"] == "req_1"
        assert payload["timestamp"].endswith("Z")

    def test_from_json_parses_client_event(self):
        raw = json.dumps({
            "type": "capture.final",
            "session_id": "s1",
            "data": {"generation": 2, "text": "Hello there"},
            "timestamp": "2026-03-01T10:00:00Z",
        })
        event = Event.from_json(raw)
        assert event.type == EventType.CAPTURE_FINAL
        assert event.generation == 2
        assert event.data["text"] == "Hello there"
        assert event.timestamp.year == 2026

    def test_generation_must_be_int(self):
        assert Event(EventType.CAPTURE_FINAL, "s1", {"generation": "2"}).generation is None
        assert Event(EventType.CAPTURE_FINAL, "s1", {"generation": True}).generation is None
        assert Event(EventType.CAPTURE_FINAL, "s1", {}).generation is None

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            Event.from_dict({"type": "audio.chunk"})

    def test_missing_type_rejected(self):
        with pytest.raises(KeyError):
            Event.from_dict({"data": {}})

    def test_non_object_data_rejected(self):
        with pytest.raises(ValueError, match="data must be an object"):
            Event.from_dict({"type": "status", "data": [1, 2]})

    def test_server_event_payloads(self):
        speak = SpeakEvent("s1", 4, "Hi", None, {"rate": 1.0, "pitch": 1.0, "volume": 1.0})
        assert speak.data == {"generation": 4, "text": "Hi", "voice_id": None, "rate": 1.0, "pitch": 1.0, "volume": 1.0}

        state = SessionStateEvent("s1", {"state": "idle"})
        assert state.type == EventType.SESSION_STATE
        assert state.data == {"state": "idle"}

        error = ErrorEvent("s1", "INVALID_EVENT", "bad")
        assert error.data == {"code": "INVALID_EVENT", "message": "bad", "details": {}}
