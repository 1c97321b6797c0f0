"""
DocVoice - Client bridge event types
WebSocket event envelope and serialization.

Envelope: {"type", "session_id", "data", "timestamp", "correlation_id"}
"""

from enum import Enum
from dataclasses import dataclass, field
from typing import Dict, Any, Optional
from datetime import datetime, timezone
import json


class EventType(Enum):
    """WebSocket event types."""
    # client -> server
    CLIENT_HELLO = "client.hello"
    CAPTURE_INTERIM = "capture.interim"
    CAPTURE_FINAL = "capture.final"
    CAPTURE_ERROR = "capture.error"
    CAPTURE_END = "capture.end"
    PLAYBACK_STARTED = "playback.started"
    PLAYBACK_ENDED = "playback.ended"
    PLAYBACK_ERROR = "playback.error"
    CONTROL_START = "control.start"
    CONTROL_STOP = "control.stop"
    CONTROL_MUTE = "control.mute"
    CONTROL_VOICE = "control.voice"
    STATUS = "status"
    # server -> client
    CAPTURE_START = "capture.start"
    CAPTURE_STOP = "capture.stop"
    PLAYBACK_SPEAK = "playback.speak"
    PLAYBACK_CANCEL = "playback.cancel"
    SESSION_STATE = "session.state"
    ERROR = "error"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _format_ts(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).replace(tzinfo=None).isoformat() + "Z"


def _parse_ts(raw: Optional[str]) -> datetime:
    if not raw:
        return _utcnow()
    return datetime.fromisoformat(raw.rstrip("Z")).replace(tzinfo=timezone.utc)


@dataclass
class Event:
    """WebSocket event."""
    type: EventType
    session_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utcnow)
    correlation_id: str = ""

    def to_json(self) -> str:
        """Serialize event to JSON string."""
        return json.dumps(self.to_dict())

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary."""
        return {
            "type": self.type.value,
            "session_id": self.session_id,
            "data": self.data,
            "timestamp": _format_ts(self.timestamp),
            "correlation_id": self.correlation_id,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Event":
        """Create event from dictionary.

        Raises KeyError / ValueError on a malformed envelope.
        """
        payload = data.get("data") or {}
        if not isinstance(payload, dict):
            raise ValueError("event data must be an object")
        return Event(
            type=EventType(data["type"]),
            session_id=data.get("session_id", ""),
            data=payload,
            timestamp=_parse_ts(data.get("timestamp")),
            correlation_id=data.get("correlation_id", ""),
        )

    @staticmethod
    def from_json(json_str: str) -> "Event":
        """Create event from JSON string."""
        return Event.from_dict(json.loads(json_str))

    @property
    def generation(self) -> Optional[int]:
        """Turn generation carried by capture/playback events, if valid."""
        value = self.data.get("generation")
        if isinstance(value, bool) or not isinstance(value, int):
            return None
        return value


class CaptureStartEvent(Event):
    """Ask the client to open a recognition session for one turn."""

    def __init__(self, session_id: str, generation: int, options: Dict[str, Any],
                 correlation_id: str = ""):
        super().__init__(
            type=EventType.CAPTURE_START,
            session_id=session_id,
            data={"generation": generation, **options},
            correlation_id=correlation_id,
        )


class CaptureStopEvent(Event):
    """Ask the client to close its recognition session."""

    def __init__(self, session_id: str, correlation_id: str = ""):
        super().__init__(
            type=EventType.CAPTURE_STOP,
            session_id=session_id,
            correlation_id=correlation_id,
        )


class SpeakEvent(Event):
    """Ask the client to speak assistant text."""

    def __init__(self, session_id: str, generation: int, text: str,
                 voice_id: Optional[str], options: Dict[str, Any],
                 correlation_id: str = ""):
        """
        Create speak event.

        Args:
            session_id: Session ID
            generation: Turn generation the utterance belongs to
            text: Text to speak
            voice_id: Selected voice URI, or None for the default voice
            options: rate / pitch / volume
            correlation_id: Optional correlation ID
        """
        super().__init__(
            type=EventType.PLAYBACK_SPEAK,
            session_id=session_id,
            data={"generation": generation, "text": text, "voice_id": voice_id, **options},
            correlation_id=correlation_id,
        )


class PlaybackCancelEvent(Event):
    """Ask the client to stop speaking immediately."""

    def __init__(self, session_id: str, correlation_id: str = ""):
        super().__init__(
            type=EventType.PLAYBACK_CANCEL,
            session_id=session_id,
            correlation_id=correlation_id,
        )


class SessionStateEvent(Event):
    """Push the session surface projection to the client."""

    def __init__(self, session_id: str, surface: Dict[str, Any], correlation_id: str = ""):
        super().__init__(
            type=EventType.SESSION_STATE,
            session_id=session_id,
            data=surface,
            correlation_id=correlation_id,
        )


class ErrorEvent(Event):
    """Error event."""

    def __init__(self, session_id: str, error_code: str, error_message: str,
                 details: Optional[Dict[str, Any]] = None, correlation_id: str = ""):
        """
        Create error event.

        Args:
            session_id: Session ID
            error_code: Error code
            error_message: Human-readable error message
            details: Optional error details
            correlation_id: Optional correlation ID
        """
        super().__init__(
            type=EventType.ERROR,
            session_id=session_id,
            data={
                "code": error_code,
                "message": error_message,
                "details": details or {},
            },
            correlation_id=correlation_id,
        )
