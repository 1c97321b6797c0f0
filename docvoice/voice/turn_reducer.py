"""Pure reducer for the voice turn lifecycle.

Contract:
    next_snapshot, commands = reduce_turn(current_snapshot, event)

Rules:
    1. Reducer is pure -- no side effects.
    2. Commands are side-effect intents only; the controller executes them.
    3. Adapter events whose generation differs from the snapshot's are stale
       and leave the snapshot untouched.
    4. An event with no transition in the current state is a deterministic
       no-op (snapshot returned unchanged, diagnostic emitted).
    5. Capture and playback are never active together: leaving LISTENING
       always stops capture, leaving SPEAKING early always cancels playback.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from .turn_events import CAPTURE_ABORTED, TurnEvent
from .turn_state import ErrorKind, TurnError, TurnSnapshot, TurnState


@dataclass(frozen=True)
class Command:
    """Side-effect intent emitted by the reducer."""
    name: str
    args: Dict[str, Any] = field(default_factory=dict)


# ── Transition Table ─────────────────────────────────────────────────────
#
# State           x Event             -> Next State       + Commands
# -----------------------------------------------------------------------
# IDLE              START (ready)      -> LISTENING        + StartCapture
# IDLE              START (no capture) -> IDLE             + (error CaptureUnsupported)
# LISTENING         CAPTURE_INTERIM    -> LISTENING        + (transcript update)
# LISTENING         CAPTURE_FINAL      -> AWAITING_REPLY   + StopCapture, RequestReply
# LISTENING         CAPTURE_FINAL ""   -> IDLE             + StopCapture
# LISTENING         STOP               -> IDLE             + StopCapture
# LISTENING         CAPTURE_ERROR      -> IDLE             + StopCapture (error unless aborted)
# LISTENING         CAPTURE_ENDED      -> IDLE             + StopCapture
# AWAITING_REPLY    REPLY_SUCCEEDED    -> SPEAKING         + StartPlayback
# AWAITING_REPLY    REPLY_SUCCEEDED    -> IDLE             + (muted or empty reply)
# AWAITING_REPLY    REPLY_FAILED       -> IDLE             + (error ReplyFailed)
# SPEAKING          PLAYBACK_STARTED   -> SPEAKING         + (no-op)
# SPEAKING          PLAYBACK_ENDED     -> IDLE
# SPEAKING          PLAYBACK_FAILED    -> IDLE             + (error PlaybackFailed)
# SPEAKING          STOP               -> IDLE             + CancelPlayback
# SPEAKING          TOGGLE_MUTE (on)   -> IDLE             + CancelPlayback
# ANY               TOGGLE_MUTE        -> same             + (flag flip)
# ANY               SELECT_VOICE       -> same             + (next playback only)
# ANY               SET_CONTEXT        -> same / IDLE      + (reset when left unready)
# ANY               CLEAR_CONTEXT      -> IDLE             + StopCapture / CancelPlayback
# -----------------------------------------------------------------------
#
# Every transition back to IDLE from a turn also emits FinalizeTurn so the
# controller can record telemetry. Every state change emits EmitUIState.


def _ui(state: TurnState) -> Command:
    return Command("EmitUIState", {"state": state.value})


def _noop(s: TurnSnapshot, event: TurnEvent, reason: str) -> Tuple[TurnSnapshot, List[Command]]:
    return s, [Command("EmitDiagnostic", {
        "reason": reason,
        "event_type": event.event_type,
        "state": s.state.value,
        "generation": s.generation,
        "event_generation": event.generation,
    })]


def _finalize(s: TurnSnapshot, outcome: str) -> Command:
    return Command("FinalizeTurn", {
        "generation": s.generation,
        "outcome": outcome,
        "error": s.error.kind.value if s.error else None,
    })


def _to_idle(s: TurnSnapshot, outcome: str, *effects: Command, **changes) -> Tuple[TurnSnapshot, List[Command]]:
    nxt = s.evolve(state=TurnState.IDLE, transcript="", seq=s.seq + 1, **changes)
    return nxt, [*effects, _ui(TurnState.IDLE), _finalize(nxt, outcome)]


def reduce_turn(snapshot: TurnSnapshot, event: TurnEvent) -> Tuple[TurnSnapshot, List[Command]]:
    """Pure reducer: (snapshot, event) -> (next_snapshot, commands)."""
    s = snapshot
    et = event.event_type

    # ── Stale adapter events ─────────────────────────────────────────
    if not event.is_control and event.generation != s.generation:
        return _noop(s, event, "stale_generation")

    # ── Session-wide controls ────────────────────────────────────────
    if et == "SELECT_VOICE":
        return s.evolve(voice_id=event.voice_id, seq=s.seq + 1), []

    if et == "TOGGLE_MUTE":
        muted = not s.muted
        if muted and s.state == TurnState.SPEAKING:
            return _to_idle(s, "muted", Command("CancelPlayback", {"generation": s.generation}), muted=True)
        return s.evolve(muted=muted, seq=s.seq + 1), []

    if et in ("SET_CONTEXT", "CLEAR_CONTEXT"):
        return _reduce_context(s, event)

    # ── IDLE ─────────────────────────────────────────────────────────
    if s.state == TurnState.IDLE:
        if et == "START":
            if not s.ready:
                return _noop(s, event, "not_ready")
            if not event.capture_available:
                return s.evolve(
                    seq=s.seq + 1,
                    error=TurnError(ErrorKind.CAPTURE_UNSUPPORTED),
                ), []
            generation = s.generation + 1
            nxt = s.evolve(
                state=TurnState.LISTENING, generation=generation,
                transcript="", error=None, seq=s.seq + 1,
            )
            return nxt, [Command("StartCapture", {"generation": generation}), _ui(TurnState.LISTENING)]

    # ── LISTENING ────────────────────────────────────────────────────
    elif s.state == TurnState.LISTENING:
        stop_capture = Command("StopCapture", {"generation": s.generation})

        if et == "CAPTURE_INTERIM":
            return s.evolve(transcript=event.text, seq=s.seq + 1), []

        if et == "CAPTURE_FINAL":
            text = event.text.strip()
            if not text:
                return _to_idle(s, "empty_utterance", stop_capture)
            nxt = s.with_message(
                "user", text,
                state=TurnState.AWAITING_REPLY, transcript="", seq=s.seq + 1,
            )
            return nxt, [
                stop_capture,
                Command("RequestReply", {
                    "generation": s.generation,
                    "history": nxt.messages,
                    "context": nxt.context,
                    "persona": nxt.persona,
                }),
                _ui(TurnState.AWAITING_REPLY),
            ]

        if et == "STOP":
            return _to_idle(s, "cancelled", stop_capture)

        if et == "CAPTURE_ERROR":
            if event.reason == CAPTURE_ABORTED:
                return _to_idle(s, "cancelled", stop_capture)
            return _to_idle(
                s, "capture_failed", stop_capture,
                error=TurnError(ErrorKind.CAPTURE_FAILED, event.reason),
            )

        if et == "CAPTURE_ENDED":
            return _to_idle(s, "capture_ended", stop_capture)

    # ── AWAITING_REPLY ───────────────────────────────────────────────
    elif s.state == TurnState.AWAITING_REPLY:
        if et == "REPLY_SUCCEEDED":
            if s.muted or not event.text.strip():
                nxt = s.with_message("assistant", event.text)
                return _to_idle(nxt, "completed_silent")
            nxt = s.with_message(
                "assistant", event.text,
                state=TurnState.SPEAKING, seq=s.seq + 1,
            )
            return nxt, [
                Command("StartPlayback", {
                    "generation": s.generation,
                    "text": event.text,
                    "voice_id": s.voice_id,
                }),
                _ui(TurnState.SPEAKING),
            ]

        if et == "REPLY_FAILED":
            return _to_idle(s, "reply_failed", error=TurnError(ErrorKind.REPLY_FAILED, event.reason))

        if et == "STOP":
            return _noop(s, event, "reply_not_abortable")

    # ── SPEAKING ─────────────────────────────────────────────────────
    elif s.state == TurnState.SPEAKING:
        if et == "PLAYBACK_STARTED":
            return s, []

        if et == "PLAYBACK_ENDED":
            return _to_idle(s, "completed")

        if et == "PLAYBACK_FAILED":
            return _to_idle(s, "playback_failed", error=TurnError(ErrorKind.PLAYBACK_FAILED, event.reason))

        if et == "STOP":
            return _to_idle(s, "interrupted", Command("CancelPlayback", {"generation": s.generation}))

    # ── Default: deterministic no-op ─────────────────────────────────
    return _noop(s, event, "no_transition")


def _reduce_context(s: TurnSnapshot, event: TurnEvent) -> Tuple[TurnSnapshot, List[Command]]:
    """Update or tear down the conversation context.

    A context that stays ready is swapped in place and the conversation goes
    on. Clearing it (or leaving it unready) tears the session down: the log
    is emptied, any active capture/playback is stopped and the generation is
    bumped so in-flight callbacks become stale.
    """
    if event.event_type == "SET_CONTEXT":
        context, persona = event.context, event.text
        if context == s.context and persona == s.persona:
            return s, []
        if context and persona.strip():
            return s.evolve(context=context, persona=persona, seq=s.seq + 1), []
    else:
        context, persona = "", ""

    effects: List[Command] = []
    if s.state == TurnState.LISTENING:
        effects.append(Command("StopCapture", {"generation": s.generation}))
    elif s.state == TurnState.SPEAKING:
        effects.append(Command("CancelPlayback", {"generation": s.generation}))

    nxt = s.evolve(
        state=TurnState.IDLE,
        generation=s.generation + 1,
        seq=s.seq + 1,
        messages=(),
        transcript="",
        error=None,
        context=context,
        persona=persona,
    )
    effects.append(Command("ResetSession", {"ready": nxt.ready}))
    if s.state != TurnState.IDLE:
        effects.append(_ui(TurnState.IDLE))
        effects.append(Command("FinalizeTurn", {
            "generation": s.generation, "outcome": "context_reset", "error": None,
        }))
    return nxt, effects
