"""Typed event model for the voice turn lifecycle.

Every control call and every adapter callback becomes one TurnEvent consumed
by the reducer. Adapter events carry the generation of the turn that
started the capture/reply/playback; control events carry no generation.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

EventType = Literal[
    # controls
    "START",
    "STOP",
    "TOGGLE_MUTE",
    "SELECT_VOICE",
    "SET_CONTEXT",
    "CLEAR_CONTEXT",
    # capture source
    "CAPTURE_INTERIM",
    "CAPTURE_FINAL",
    "CAPTURE_ERROR",
    "CAPTURE_ENDED",
    # reply generator
    "REPLY_SUCCEEDED",
    "REPLY_FAILED",
    # playback sink
    "PLAYBACK_STARTED",
    "PLAYBACK_ENDED",
    "PLAYBACK_FAILED",
]

CONTROL_EVENT_TYPES: frozenset[str] = frozenset([
    "START", "STOP", "TOGGLE_MUTE", "SELECT_VOICE", "SET_CONTEXT", "CLEAR_CONTEXT",
])

ADAPTER_EVENT_TYPES: frozenset[str] = frozenset([
    "CAPTURE_INTERIM", "CAPTURE_FINAL", "CAPTURE_ERROR", "CAPTURE_ENDED",
    "REPLY_SUCCEEDED", "REPLY_FAILED",
    "PLAYBACK_STARTED", "PLAYBACK_ENDED", "PLAYBACK_FAILED",
])

ALL_EVENT_TYPES: frozenset[str] = CONTROL_EVENT_TYPES | ADAPTER_EVENT_TYPES

# Recognizer error reported when the user or platform cancelled capture.
CAPTURE_ABORTED = "aborted"


@dataclass(frozen=True)
class TurnEvent:
    """Immutable event in the voice turn lifecycle.

    Fields:
        event_type: One of the defined event types.
        generation: Turn tag for adapter events; None for control events.
        text: Transcript / reply text, persona for SET_CONTEXT.
        reason: Error reason for *_ERROR / *_FAILED events.
        voice_id: Voice selection for SELECT_VOICE.
        context: Document text for SET_CONTEXT.
        capture_available: Capability flag sampled when START is issued.
    """
    event_type: EventType
    generation: Optional[int] = None
    text: str = ""
    reason: str = ""
    voice_id: Optional[str] = None
    context: str = ""
    capture_available: bool = True

    def __post_init__(self):
        if self.event_type not in ALL_EVENT_TYPES:
            raise ValueError(f"Unknown event type: {self.event_type}")
        if self.event_type in ADAPTER_EVENT_TYPES and self.generation is None:
            raise ValueError(f"{self.event_type} requires a generation")
        if self.generation is not None and self.generation < 0:
            raise ValueError(f"generation must be non-negative, got {self.generation}")

    @property
    def is_control(self) -> bool:
        return self.event_type in CONTROL_EVENT_TYPES


# ── Constructors ─────────────────────────────────────────────────────────

def start(capture_available: bool = True) -> TurnEvent:
    return TurnEvent("START", capture_available=capture_available)


def stop() -> TurnEvent:
    return TurnEvent("STOP")


def toggle_mute() -> TurnEvent:
    return TurnEvent("TOGGLE_MUTE")


def select_voice(voice_id: Optional[str]) -> TurnEvent:
    return TurnEvent("SELECT_VOICE", voice_id=voice_id)


def set_context(context: str, persona: str) -> TurnEvent:
    return TurnEvent("SET_CONTEXT", context=context, text=persona)


def clear_context() -> TurnEvent:
    return TurnEvent("CLEAR_CONTEXT")


def interim(generation: int, text: str) -> TurnEvent:
    return TurnEvent("CAPTURE_INTERIM", generation=generation, text=text)


def final(generation: int, text: str) -> TurnEvent:
    return TurnEvent("CAPTURE_FINAL", generation=generation, text=text)


def capture_error(generation: int, reason: str) -> TurnEvent:
    return TurnEvent("CAPTURE_ERROR", generation=generation, reason=reason)


def capture_ended(generation: int) -> TurnEvent:
    return TurnEvent("CAPTURE_ENDED", generation=generation)


def reply_succeeded(generation: int, text: str) -> TurnEvent:
    return TurnEvent("REPLY_SUCCEEDED", generation=generation, text=text)


def reply_failed(generation: int, reason: str) -> TurnEvent:
    return TurnEvent("REPLY_FAILED", generation=generation, reason=reason)


def playback_started(generation: int) -> TurnEvent:
    return TurnEvent("PLAYBACK_STARTED", generation=generation)


def playback_ended(generation: int) -> TurnEvent:
    return TurnEvent("PLAYBACK_ENDED", generation=generation)


def playback_failed(generation: int, reason: str = "") -> TurnEvent:
    return TurnEvent("PLAYBACK_FAILED", generation=generation, reason=reason)
