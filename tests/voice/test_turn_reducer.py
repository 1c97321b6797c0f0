"""Voice turn reducer tests.

Covers every transition of the table in docvoice.voice.turn_reducer plus the
properties the controller relies on: stale generations are ignored, START
outside IDLE and STOP in IDLE are no-ops, and a final transcript yields
exactly one user message and one reply request.
"""
import pytest

from docvoice.voice import turn_events as ev
from docvoice.voice.turn_events import TurnEvent
from docvoice.voice.turn_reducer import reduce_turn
from docvoice.voice.turn_state import ErrorKind, Message, TurnState, make_initial_snapshot

# ── Helpers ──────────────────────────────────────────────────────────────

SID = "test-session"
DOC = "Returns are accepted within thirty days."
PERSONA = "You are a concise store assistant."


def _initial(**kwargs):
    kwargs.setdefault("context", DOC)
    kwargs.setdefault("persona", PERSONA)
    return make_initial_snapshot(SID, **kwargs)


def _names(cmds):
    return [c.name for c in cmds]


def _listening():
    s, _ = reduce_turn(_initial(), ev.start())
    return s


def _awaiting(text="What is the return window?"):
    s = _listening()
    s, _ = reduce_turn(s, ev.final(s.generation, text))
    return s


def _speaking(reply="Thirty days."):
    s = _awaiting()
    s, _ = reduce_turn(s, ev.reply_succeeded(s.generation, reply))
    return s


# ── Events ───────────────────────────────────────────────────────────────

class TestTurnEvents:

    def test_unknown_event_type_rejected(self):
        """Unknown event types fail at construction."""
        with pytest.raises(ValueError, match="Unknown event type"):
            TurnEvent("BARGE_IN")

    def test_adapter_event_requires_generation(self):
        """Capture/reply/playback events must carry a generation."""
        with pytest.raises(ValueError, match="requires a generation"):
            TurnEvent("CAPTURE_FINAL", text="hi")

    def test_negative_generation_rejected(self):
        with pytest.raises(ValueError, match="non-negative"):
            ev.interim(-1, "hi")

    def test_controls_carry_no_generation(self):
        assert ev.stop().is_control
        assert ev.stop().generation is None
        assert not ev.playback_ended(3).is_control


# ── IDLE ─────────────────────────────────────────────────────────────────

class TestIdle:

    def test_start_opens_capture_with_new_generation(self):
        """START from IDLE bumps the generation and issues StartCapture."""
        s0 = _initial()
        s1, cmds = reduce_turn(s0, ev.start())
        assert s1.state == TurnState.LISTENING
        assert s1.generation == s0.generation + 1
        assert _names(cmds) == ["StartCapture", "EmitUIState"]
        assert cmds[0].args == {"generation": s1.generation}
        assert cmds[1].args["state"] == "LISTENING"

    def test_start_without_context_is_noop(self):
        """No document or blank persona: START does nothing."""
        for s0 in (_initial(context=""), _initial(persona="   ")):
            s1, cmds = reduce_turn(s0, ev.start())
            assert s1 == s0
            assert _names(cmds) == ["EmitDiagnostic"]
            assert cmds[0].args["reason"] == "not_ready"

    def test_start_without_capture_records_unsupported(self):
        """Capture unavailable: stay IDLE with CaptureUnsupported."""
        s1, cmds = reduce_turn(_initial(), ev.start(capture_available=False))
        assert s1.state == TurnState.IDLE
        assert s1.error.kind == ErrorKind.CAPTURE_UNSUPPORTED
        assert cmds == []

    def test_start_clears_previous_error(self):
        s1, _ = reduce_turn(_initial(), ev.start(capture_available=False))
        s2, _ = reduce_turn(s1, ev.start())
        assert s2.state == TurnState.LISTENING
        assert s2.error is None

    def test_stop_in_idle_is_idempotent(self):
        """STOP in IDLE leaves the snapshot untouched."""
        s0 = _initial()
        s1, cmds = reduce_turn(s0, ev.stop())
        assert s1 == s0
        assert _names(cmds) == ["EmitDiagnostic"]


# ── LISTENING ────────────────────────────────────────────────────────────

class TestListening:

    def test_interim_replaces_transcript(self):
        s = _listening()
        s, _ = reduce_turn(s, ev.interim(s.generation, "Hel"))
        s, cmds = reduce_turn(s, ev.interim(s.generation, "Hello"))
        assert s.transcript == "Hello"
        assert s.state == TurnState.LISTENING
        assert cmds == []
        assert s.messages == ()

    def test_final_appends_one_user_message_and_one_request(self):
        """A final transcript produces exactly one message and one RequestReply."""
        s = _listening()
        s = reduce_turn(s, ev.interim(s.generation, "Hello th"))[0]
        s1, cmds = reduce_turn(s, ev.final(s.generation, "  Hello there  "))
        assert s1.state == TurnState.AWAITING_REPLY
        assert s1.messages == (Message("user", "Hello there"),)
        assert s1.transcript == ""
        assert _names(cmds) == ["StopCapture", "RequestReply", "EmitUIState"]
        request = cmds[1].args
        assert request["generation"] == s.generation
        assert request["history"] == s1.messages
        assert request["context"] == DOC
        assert request["persona"] == PERSONA

    def test_blank_final_returns_to_idle(self):
        s = _listening()
        s1, cmds = reduce_turn(s, ev.final(s.generation, "   "))
        assert s1.state == TurnState.IDLE
        assert s1.messages == ()
        assert "RequestReply" not in _names(cmds)
        assert cmds[-1].args["outcome"] == "empty_utterance"

    def test_stop_cancels_without_error(self):
        """User cancellation is not an error."""
        s = _listening()
        s = reduce_turn(s, ev.interim(s.generation, "Hel"))[0]
        s1, cmds = reduce_turn(s, ev.stop())
        assert s1.state == TurnState.IDLE
        assert s1.error is None
        assert s1.transcript == ""
        assert _names(cmds) == ["StopCapture", "EmitUIState", "FinalizeTurn"]
        assert cmds[-1].args["outcome"] == "cancelled"

    def test_capture_error_sets_capture_failed(self):
        s = _listening()
        s1, cmds = reduce_turn(s, ev.capture_error(s.generation, "network"))
        assert s1.state == TurnState.IDLE
        assert s1.error.kind == ErrorKind.CAPTURE_FAILED
        assert s1.error.reason == "network"
        assert "StopCapture" in _names(cmds)
        assert cmds[-1].args["error"] == "CaptureFailed"

    def test_aborted_capture_is_cancellation(self):
        s = _listening()
        s1, _ = reduce_turn(s, ev.capture_error(s.generation, "aborted"))
        assert s1.state == TurnState.IDLE
        assert s1.error is None

    def test_capture_ended_returns_to_idle(self):
        s = _listening()
        s1, cmds = reduce_turn(s, ev.capture_ended(s.generation))
        assert s1.state == TurnState.IDLE
        assert s1.error is None
        assert "StopCapture" in _names(cmds)

    def test_start_while_listening_is_noop(self):
        s = _listening()
        s1, cmds = reduce_turn(s, ev.start())
        assert s1 == s
        assert _names(cmds) == ["EmitDiagnostic"]


# ── AWAITING_REPLY ───────────────────────────────────────────────────────

class TestAwaitingReply:

    def test_reply_starts_playback_with_selected_voice(self):
        s = _awaiting()
        s = reduce_turn(s, ev.select_voice("voice-gb"))[0]
        s1, cmds = reduce_turn(s, ev.reply_succeeded(s.generation, "Thirty days."))
        assert s1.state == TurnState.SPEAKING
        assert s1.messages[-1] == Message("assistant", "Thirty days.")
        assert _names(cmds) == ["StartPlayback", "EmitUIState"]
        assert cmds[0].args == {"generation": s.generation, "text": "Thirty days.", "voice_id": "voice-gb"}

    def test_reply_while_muted_skips_playback(self):
        """Muted: the assistant message is appended, no StartPlayback."""
        s = _awaiting()
        s = reduce_turn(s, ev.toggle_mute())[0]
        s1, cmds = reduce_turn(s, ev.reply_succeeded(s.generation, "Hello"))
        assert s1.state == TurnState.IDLE
        assert s1.messages[-1] == Message("assistant", "Hello")
        assert "StartPlayback" not in _names(cmds)
        assert cmds[-1].args["outcome"] == "completed_silent"

    def test_reply_failure_keeps_orphan_user_message(self):
        s = _awaiting("What is this about?")
        s1, cmds = reduce_turn(s, ev.reply_failed(s.generation, "HTTP 500"))
        assert s1.state == TurnState.IDLE
        assert s1.messages == (Message("user", "What is this about?"),)
        assert s1.error.kind == ErrorKind.REPLY_FAILED
        assert cmds[-1].args == {"generation": s.generation, "outcome": "reply_failed", "error": "ReplyFailed"}

    def test_stop_cannot_abort_reply(self):
        """The in-flight reply is not abortable."""
        s = _awaiting()
        s1, cmds = reduce_turn(s, ev.stop())
        assert s1 == s
        assert cmds[0].args["reason"] == "reply_not_abortable"


# ── SPEAKING ─────────────────────────────────────────────────────────────

class TestSpeaking:

    def test_playback_started_is_noop(self):
        s = _speaking()
        s1, cmds = reduce_turn(s, ev.playback_started(s.generation))
        assert s1 == s
        assert cmds == []

    def test_playback_end_completes_turn(self):
        s = _speaking()
        s1, cmds = reduce_turn(s, ev.playback_ended(s.generation))
        assert s1.state == TurnState.IDLE
        assert len(s1.messages) == 2
        assert cmds[-1].args["outcome"] == "completed"
        assert "CancelPlayback" not in _names(cmds)

    def test_playback_failure_records_error(self):
        s = _speaking()
        s1, _ = reduce_turn(s, ev.playback_failed(s.generation, "synthesis-failed"))
        assert s1.state == TurnState.IDLE
        assert s1.error.kind == ErrorKind.PLAYBACK_FAILED

    def test_stop_interrupts_playback(self):
        s = _speaking()
        s1, cmds = reduce_turn(s, ev.stop())
        assert s1.state == TurnState.IDLE
        assert s1.error is None
        assert _names(cmds) == ["CancelPlayback", "EmitUIState", "FinalizeTurn"]
        assert cmds[-1].args["outcome"] == "interrupted"

    def test_mute_mid_speech_cancels_and_keeps_message(self):
        s = _speaking("A long answer.")
        s1, cmds = reduce_turn(s, ev.toggle_mute())
        assert s1.state == TurnState.IDLE
        assert s1.muted is True
        assert s1.messages == s.messages
        assert "CancelPlayback" in _names(cmds)
        assert cmds[-1].args["outcome"] == "muted"

    def test_unmute_while_idle_only_flips_flag(self):
        s = _initial().evolve(muted=True)
        s1, cmds = reduce_turn(s, ev.toggle_mute())
        assert s1.muted is False
        assert s1.state == TurnState.IDLE
        assert cmds == []

    def test_select_voice_does_not_touch_playback(self):
        s = _speaking()
        s1, cmds = reduce_turn(s, ev.select_voice("voice-alex"))
        assert s1.voice_id == "voice-alex"
        assert s1.state == TurnState.SPEAKING
        assert cmds == []


# ── Generations ──────────────────────────────────────────────────────────

class TestStaleEvents:

    def test_late_interim_after_stop_is_ignored(self):
        """A late interim from a stopped turn neither reopens LISTENING nor edits the transcript."""
        s = _listening()
        g = s.generation
        s, _ = reduce_turn(s, ev.stop())
        s1, cmds = reduce_turn(s, ev.interim(g, "late words"))
        # stop keeps the generation; the turn is over so there is no transition
        assert s1 == s
        assert s1.transcript == ""
        assert _names(cmds) == ["EmitDiagnostic"]

    def test_events_from_previous_generation_are_stale(self):
        s = _listening()
        old = s.generation
        s, _ = reduce_turn(s, ev.stop())
        s, _ = reduce_turn(s, ev.start())
        assert s.generation == old + 1
        for stale in (
            ev.final(old, "old words"),
            ev.capture_error(old, "network"),
            ev.reply_succeeded(old, "old reply"),
            ev.playback_ended(old),
        ):
            s1, cmds = reduce_turn(s, stale)
            assert s1 == s
            assert cmds[0].args["reason"] == "stale_generation"

    def test_seq_is_monotonic_across_a_turn(self):
        s = _initial()
        seqs = [s.seq]
        for make in (
            lambda s: ev.start(),
            lambda s: ev.interim(s.generation, "Hi"),
            lambda s: ev.final(s.generation, "Hi there"),
            lambda s: ev.reply_succeeded(s.generation, "Hello"),
            lambda s: ev.playback_ended(s.generation),
        ):
            s, _ = reduce_turn(s, make(s))
            seqs.append(s.seq)
        assert seqs == sorted(seqs)
        assert len(set(seqs)) == len(seqs)


# ── Context ──────────────────────────────────────────────────────────────

class TestContext:

    def test_replacing_ready_context_keeps_conversation(self):
        s = _speaking()
        s1, cmds = reduce_turn(s, ev.set_context("New document text.", PERSONA))
        assert s1.context == "New document text."
        assert s1.state == TurnState.SPEAKING
        assert s1.messages == s.messages
        assert cmds == []

    def test_identical_context_is_noop(self):
        s = _initial()
        s1, cmds = reduce_turn(s, ev.set_context(DOC, PERSONA))
        assert s1 is s
        assert cmds == []

    def test_clear_context_tears_down_active_turn(self):
        s = _speaking()
        s1, cmds = reduce_turn(s, ev.clear_context())
        assert s1.state == TurnState.IDLE
        assert s1.ready is False
        assert s1.messages == ()
        assert s1.generation == s.generation + 1
        assert _names(cmds) == ["CancelPlayback", "ResetSession", "EmitUIState", "FinalizeTurn"]
        assert cmds[1].args == {"ready": False}
        assert cmds[-1].args["outcome"] == "context_reset"

    def test_clear_context_while_listening_stops_capture(self):
        s = _listening()
        _, cmds = reduce_turn(s, ev.clear_context())
        assert _names(cmds)[0] == "StopCapture"

    def test_unready_context_while_idle_resets_log(self):
        s = _speaking()
        s = reduce_turn(s, ev.playback_ended(s.generation))[0]
        s1, cmds = reduce_turn(s, ev.set_context(DOC, ""))
        assert s1.messages == ()
        assert s1.ready is False
        assert _names(cmds) == ["ResetSession"]

    def test_reply_after_context_reset_is_stale(self):
        s = _awaiting()
        g = s.generation
        s, _ = reduce_turn(s, ev.clear_context())
        s1, cmds = reduce_turn(s, ev.reply_succeeded(g, "late"))
        assert s1 == s
        assert s1.messages == ()
        assert cmds[0].args["reason"] == "stale_generation"
