"""Turn controller: drives the reducer and executes its commands.

Wires together:
    - TurnSnapshot + TurnEvent -> reduce_turn -> (snapshot, commands)
    - Command execution against the capture source, playback sink and
      reply generator
    - Per-turn handles so adapter callbacks carry their generation
    - Turn telemetry on FinalizeTurn

Scheduling is single-threaded and cooperative. ``dispatch`` never awaits:
events raised while commands of a previous event are executing (an adapter
calling back synchronously, for instance) are queued and reduced in order,
so the snapshot is never mutated re-entrantly. The reply request is the
only suspension point; it runs as an asyncio task whose outcome comes back
as a REPLY_* event tagged with the generation it was issued for.

Known limitation: a reply request in flight cannot be aborted. ``stop()``
while AWAITING_REPLY is ignored and the request resolves or fails on its own.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Callable, Deque, Dict, List, Optional

from docvoice.app.capture import CaptureHandle, CaptureOptions, CaptureSource
from docvoice.app.playback import PlaybackHandle, PlaybackOptions, PlaybackSink
from docvoice.shared.log_redaction import preview

from . import turn_events as ev
from .turn_events import TurnEvent
from .turn_reducer import Command, reduce_turn
from .turn_state import TurnSnapshot, TurnState, make_initial_snapshot

logger = logging.getLogger(__name__)

Listener = Callable[[TurnSnapshot], None]


class TurnController:
    """Single state machine per session sequencing capture, reply and playback.

    Usage:
        controller = TurnController("s1", capture, playback, generator,
                                    context=doc_text, persona=persona)
        controller.start()            # IDLE -> LISTENING
        ...                           # adapters call back through handles
        controller.snapshot.state     # observe
    """

    def __init__(
        self,
        session_id: str,
        capture: CaptureSource,
        playback: PlaybackSink,
        reply_generator,  # docvoice.app.reply_client.ReplyGenerator
        context: str = "",
        persona: str = "",
        capture_options: Optional[CaptureOptions] = None,
        playback_options: Optional[PlaybackOptions] = None,
        telemetry=None,  # docvoice.app.telemetry.TurnTelemetryLogger
        voice_id: Optional[str] = None,
    ) -> None:
        self._snapshot = make_initial_snapshot(session_id, context, persona, voice_id)
        self._capture = capture
        self._playback = playback
        self._reply_generator = reply_generator
        self._capture_options = capture_options or CaptureOptions()
        self._playback_options = playback_options or PlaybackOptions()
        self._telemetry = telemetry

        self._queue: Deque[TurnEvent] = deque()
        self._draining = False
        self._listeners: List[Listener] = []

        self._capture_handle: Optional[CaptureHandle] = None
        self._playback_handle: Optional[PlaybackHandle] = None
        self._reply_task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        self._idle = asyncio.Event()
        self._idle.set()

        # generation -> monotonic timestamps for telemetry
        self._turn_started: Dict[int, float] = {}
        self._reply_requested: Dict[int, float] = {}
        self._reply_ms: Dict[int, float] = {}

    # ── Observation ──────────────────────────────────────────────────

    @property
    def snapshot(self) -> TurnSnapshot:
        return self._snapshot

    @property
    def state(self) -> TurnState:
        return self._snapshot.state

    @property
    def session_id(self) -> str:
        return self._snapshot.session_id

    def add_listener(self, listener: Listener) -> None:
        """Call *listener* with the new snapshot after every drained batch."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def wait_idle(self, timeout: Optional[float] = None) -> TurnSnapshot:
        """Block until the controller is back in IDLE."""
        await asyncio.wait_for(self._idle.wait(), timeout=timeout)
        return self._snapshot

    # ── Controls ─────────────────────────────────────────────────────

    def start(self) -> TurnSnapshot:
        return self.dispatch(ev.start(capture_available=self._capture.available))

    def stop(self) -> TurnSnapshot:
        return self.dispatch(ev.stop())

    def toggle_mute(self) -> TurnSnapshot:
        return self.dispatch(ev.toggle_mute())

    def select_voice(self, voice_id: Optional[str]) -> TurnSnapshot:
        return self.dispatch(ev.select_voice(voice_id))

    def set_context(self, context: str, persona: str) -> TurnSnapshot:
        return self.dispatch(ev.set_context(context, persona))

    def clear_context(self) -> TurnSnapshot:
        return self.dispatch(ev.clear_context())

    # ── Dispatch ─────────────────────────────────────────────────────

    def dispatch(self, event: TurnEvent) -> TurnSnapshot:
        """Queue *event* and drain the queue unless a drain is in progress."""
        self._queue.append(event)
        if self._draining:
            return self._snapshot

        self._draining = True
        try:
            while self._queue:
                self._apply(self._queue.popleft())
        finally:
            self._draining = False

        self._notify()
        return self._snapshot

    def dispatch_threadsafe(self, event: TurnEvent) -> None:
        """Marshal an event from a foreign thread onto the controller's loop."""
        if self._loop is None:
            raise RuntimeError("controller has not been bound to an event loop")
        self._loop.call_soon_threadsafe(self.dispatch, event)

    def bind_loop(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop or asyncio.get_running_loop()

    def _apply(self, event: TurnEvent) -> None:
        prev = self._snapshot
        nxt, commands = reduce_turn(prev, event)
        self._snapshot = nxt

        if nxt.state != prev.state:
            logger.info(
                "transition OK  session=%s  %s -> %s  event=%s  generation=%d  seq=%d",
                nxt.session_id, prev.state.value, nxt.state.value,
                event.event_type, nxt.generation, nxt.seq,
            )
            if nxt.state == TurnState.IDLE:
                self._idle.set()
            else:
                self._idle.clear()

        for cmd in commands:
            self._execute(cmd)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._snapshot)
            except Exception:
                logger.exception("listener failed  session=%s", self.session_id)

    # ── Command execution ────────────────────────────────────────────

    def _execute(self, cmd: Command) -> None:
        handler = getattr(self, f"_cmd_{cmd.name}", None)
        if handler is None:
            logger.error("unknown command %s  session=%s", cmd.name, self.session_id)
            return
        handler(**cmd.args)

    def _cmd_StartCapture(self, generation: int) -> None:
        self._close_capture()
        handle = CaptureHandle(generation, self.dispatch)
        self._capture_handle = handle
        self._turn_started[generation] = time.monotonic()
        try:
            self._capture.start(handle, self._capture_options)
        except Exception as e:
            logger.error(
                "capture start failed  session=%s  generation=%d  error=%s",
                self.session_id, generation, e,
            )
            handle.error(str(e) or type(e).__name__)

    def _cmd_StopCapture(self, generation: int) -> None:
        self._close_capture()

    def _close_capture(self) -> None:
        handle, self._capture_handle = self._capture_handle, None
        if handle is None:
            return
        handle.close()
        try:
            self._capture.stop()
        except Exception as e:
            logger.warning("capture stop failed  session=%s  error=%s", self.session_id, e)

    def _cmd_RequestReply(self, generation: int, history, context: str, persona: str) -> None:
        if self._reply_task is not None and not self._reply_task.done():
            # Only reachable after a context reset: the old result is stale.
            logger.info(
                "cancelling stale reply from an earlier turn  session=%s  generation=%d",
                self.session_id, generation,
            )
            self._reply_task.cancel()
        self._reply_requested[generation] = time.monotonic()
        logger.info(
            "reply requested  session=%s  generation=%d  turns=%d  utterance=%r",
            self.session_id, generation, len(history), preview(history[-1].text),
        )
        loop = asyncio.get_running_loop()
        if self._loop is None:
            self._loop = loop
        self._reply_task = loop.create_task(
            self._run_reply(generation, tuple(history), context, persona),
            name=f"reply_{self.session_id}_{generation}",
        )

    async def _run_reply(self, generation: int, history, context: str, persona: str) -> None:
        try:
            text = await self._reply_generator.generate_reply(history, context, persona)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                "reply failed  session=%s  generation=%d  error=%s",
                self.session_id, generation, e,
            )
            self._record_reply_latency(generation)
            self.dispatch(ev.reply_failed(generation, str(e) or type(e).__name__))
            return
        self._record_reply_latency(generation)
        self.dispatch(ev.reply_succeeded(generation, text))

    def _record_reply_latency(self, generation: int) -> None:
        t0 = self._reply_requested.pop(generation, None)
        if t0 is not None:
            self._reply_ms[generation] = round((time.monotonic() - t0) * 1000, 1)

    def _cmd_StartPlayback(self, generation: int, text: str, voice_id: Optional[str]) -> None:
        self._close_playback(cancel=True)
        handle = PlaybackHandle(generation, self.dispatch)
        self._playback_handle = handle
        if not self._playback.available:
            handle.failed("speech synthesis unavailable")
            return
        try:
            self._playback.speak(handle, text, voice_id, self._playback_options)
        except Exception as e:
            logger.error(
                "playback start failed  session=%s  generation=%d  error=%s",
                self.session_id, generation, e,
            )
            handle.failed(str(e) or type(e).__name__)

    def _cmd_CancelPlayback(self, generation: int) -> None:
        self._close_playback(cancel=True)

    def _close_playback(self, cancel: bool) -> None:
        handle, self._playback_handle = self._playback_handle, None
        if handle is None:
            return
        was_open = not handle.closed
        handle.close()
        if cancel and was_open:
            try:
                self._playback.cancel()
            except Exception as e:
                logger.warning("playback cancel failed  session=%s  error=%s", self.session_id, e)

    def _cmd_EmitUIState(self, state: str) -> None:
        logger.debug("ui state  session=%s  state=%s", self.session_id, state)

    def _cmd_EmitDiagnostic(self, reason: str, event_type: str, state: str,
                            generation: int, event_generation: Optional[int]) -> None:
        logger.debug(
            "event ignored  session=%s  reason=%s  event=%s  state=%s  "
            "generation=%d  event_generation=%s",
            self.session_id, reason, event_type, state, generation, event_generation,
        )

    def _cmd_ResetSession(self, ready: bool) -> None:
        self._close_capture()
        self._close_playback(cancel=True)
        logger.info("session context reset  session=%s  ready=%s", self.session_id, ready)

    def _cmd_FinalizeTurn(self, generation: int, outcome: str, error: Optional[str]) -> None:
        # A natural playback end leaves the handle open; retire it.
        if self._playback_handle is not None and self._playback_handle.generation == generation:
            self._close_playback(cancel=False)

        started = self._turn_started.pop(generation, None)
        reply_ms = self._reply_ms.pop(generation, None)
        self._reply_requested.pop(generation, None)
        total_ms = round((time.monotonic() - started) * 1000, 1) if started else None

        logger.info(
            "turn finished  session=%s  generation=%d  outcome=%s  error=%s  "
            "reply_ms=%s  total_ms=%s",
            self.session_id, generation, outcome, error, reply_ms, total_ms,
        )
        if self._telemetry is not None:
            self._telemetry.log_turn({
                "session_id": self.session_id,
                "generation": generation,
                "outcome": outcome,
                "error": error,
                "reply_ms": reply_ms,
                "total_ms": total_ms,
                "messages": len(self._snapshot.messages),
            })

    # ── Teardown ─────────────────────────────────────────────────────

    async def aclose(self) -> None:
        """Stop adapters and drop any in-flight reply (session teardown)."""
        self._close_capture()
        self._close_playback(cancel=True)
        task, self._reply_task = self._reply_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._listeners.clear()
