"""Turn state model for the voice conversation loop.

TurnState is the finite set of states the controller can be in.
TurnSnapshot is the immutable session record produced by the reducer: it
holds the state together with every piece of mutable session data (message
log, interim transcript, mute flag, voice selection, error slot), so a single
value describes the whole conversation at any observation point.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple


class TurnState(str, Enum):
    """Voice turn lifecycle states. No terminal state: the loop cycles."""
    IDLE = "IDLE"
    LISTENING = "LISTENING"
    AWAITING_REPLY = "AWAITING_REPLY"
    SPEAKING = "SPEAKING"


# Collapsed view exposed to callers.
SURFACE_STATES = {
    TurnState.IDLE: "idle",
    TurnState.LISTENING: "listening",
    TurnState.AWAITING_REPLY: "thinking",
    TurnState.SPEAKING: "speaking",
}


class ErrorKind(str, Enum):
    """Recoverable error taxonomy. None of these is fatal to the session."""
    CAPTURE_UNSUPPORTED = "CaptureUnsupported"
    CAPTURE_FAILED = "CaptureFailed"
    REPLY_FAILED = "ReplyFailed"
    PLAYBACK_FAILED = "PlaybackFailed"


_ERROR_MESSAGES = {
    ErrorKind.CAPTURE_UNSUPPORTED: "Speech recognition not supported on this platform",
    ErrorKind.CAPTURE_FAILED: "Speech recognition error",
    ErrorKind.REPLY_FAILED: "Failed to get response. Please try again.",
    ErrorKind.PLAYBACK_FAILED: "Speech playback failed",
}


@dataclass(frozen=True)
class TurnError:
    """Most recent recoverable error, shown until the next turn starts."""
    kind: ErrorKind
    reason: str = ""

    @property
    def message(self) -> str:
        base = _ERROR_MESSAGES[self.kind]
        return f"{base}: {self.reason}" if self.reason else base

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "reason": self.reason, "message": self.message}


@dataclass(frozen=True)
class Message:
    """One entry of the conversation log. Immutable once appended."""
    role: str
    text: str

    def __post_init__(self):
        if self.role not in ("user", "assistant"):
            raise ValueError(f"Unknown message role: {self.role}")

    def to_dict(self) -> dict:
        return {"role": self.role, "text": self.text}


@dataclass(frozen=True)
class TurnSnapshot:
    """Immutable snapshot of session state at a given sequence point.

    generation tags the current turn; adapter events carrying any other
    generation are stale and ignored.
    """
    session_id: str
    state: TurnState = TurnState.IDLE
    generation: int = 0
    seq: int = 0
    messages: Tuple[Message, ...] = ()
    transcript: str = ""
    muted: bool = False
    voice_id: Optional[str] = None
    context: str = ""
    persona: str = ""
    error: Optional[TurnError] = None

    @property
    def ready(self) -> bool:
        """Context is available: a document and a non-blank persona."""
        return bool(self.context) and bool(self.persona.strip())

    @property
    def surface_state(self) -> str:
        return SURFACE_STATES[self.state]

    def evolve(self, **kwargs) -> TurnSnapshot:
        """Create a new snapshot with updated fields."""
        return replace(self, **kwargs)

    def with_message(self, role: str, text: str, **kwargs) -> TurnSnapshot:
        """Append one message to the log."""
        return replace(self, messages=self.messages + (Message(role, text),), **kwargs)


def make_initial_snapshot(
    session_id: str,
    context: str = "",
    persona: str = "",
    voice_id: Optional[str] = None,
) -> TurnSnapshot:
    """Create the initial IDLE snapshot for a new session."""
    return TurnSnapshot(
        session_id=session_id,
        context=context,
        persona=persona,
        voice_id=voice_id,
    )
