"""
DocVoice - Voice Session Manager

A VoiceSession ties one TurnController to the client bridge that provides
its capture and playback, and exposes the Session Surface:

    - read-only projection: ready flag, message log, interim transcript,
      mute flag, voice selection, last error, collapsed state
      (idle / listening / thinking / speaking)
    - controls: start, stop, stop_speaking, toggle_mute, select_voice,
      set_context, clear_context

All session state lives in the controller's snapshot. This module never
writes it directly; every control becomes a controller event.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from docvoice.app.capture import CaptureOptions
from docvoice.app.client_bridge import ClientBridge
from docvoice.app.playback import PlaybackOptions
from docvoice.voice.turn_controller import TurnController
from docvoice.voice.turn_state import TurnSnapshot

logger = logging.getLogger(__name__)

# Default timeout (seconds) when tearing down a session's in-flight work.
_CLEANUP_TIMEOUT: float = 5.0


class SessionNotFound(KeyError):
    """Raised when a session id is not registered."""
    pass


def build_surface(snapshot: TurnSnapshot, voices: Optional[List[Any]] = None) -> Dict[str, Any]:
    """Read-only projection of a session snapshot (safe to serialise to JSON)."""
    return {
        "session_id": snapshot.session_id,
        "ready": snapshot.ready,
        "state": snapshot.surface_state,
        "generation": snapshot.generation,
        "messages": [m.to_dict() for m in snapshot.messages],
        "transcript": snapshot.transcript,
        "muted": snapshot.muted,
        "voice_id": snapshot.voice_id,
        "voices": [v.to_dict() for v in (voices or [])],
        "error": snapshot.error.to_dict() if snapshot.error else None,
    }


# ---------------------------------------------------------------------------
# VoiceSession
# ---------------------------------------------------------------------------

@dataclass
class VoiceSession:
    """Runtime handle for a single voice conversation."""

    session_id: str
    controller: TurnController
    bridge: ClientBridge
    document_name: str = ""
    created_ts: float = field(default_factory=time.monotonic)

    # ---- projection --------------------------------------------------------

    @property
    def snapshot(self) -> TurnSnapshot:
        return self.controller.snapshot

    @property
    def ready(self) -> bool:
        return self.snapshot.ready

    def surface(self) -> Dict[str, Any]:
        data = build_surface(self.snapshot, self.bridge.voices)
        data["document_name"] = self.document_name
        data["client_connected"] = self.bridge.connected
        return data

    # ---- client connection -------------------------------------------------

    def attach_client(self, outbox: asyncio.Queue) -> None:
        """Route the bridge to *outbox*, stopping a previous client's turn first."""
        if self.bridge.connected:
            logger.info("client replaced  session=%s  state=%s", self.session_id, self.snapshot.state.value)
            self.controller.stop()
        self.bridge.connect(outbox)

    def detach_client(self, outbox: asyncio.Queue) -> bool:
        """
        Drop the client behind *outbox* if it still owns the bridge.

        Capture and playback live on the client, so its turn stops with it.
        Returns False for a connection that was already superseded.
        """
        if not self.bridge.owns(outbox):
            return False
        self.controller.stop()
        self.bridge.disconnect(outbox)
        return True

    # ---- controls ----------------------------------------------------------

    def start(self) -> TurnSnapshot:
        return self.controller.start()

    def stop(self) -> TurnSnapshot:
        return self.controller.stop()

    def stop_speaking(self) -> TurnSnapshot:
        return self.controller.stop()

    def toggle_mute(self) -> TurnSnapshot:
        return self.controller.toggle_mute()

    def select_voice(self, voice_id: Optional[str]) -> TurnSnapshot:
        return self.controller.select_voice(voice_id)

    def select_default_voice(self) -> Optional[str]:
        """Pick the first catalog voice when nothing is selected yet."""
        voices = self.bridge.voices
        if self.snapshot.voice_id is None and voices:
            self.select_voice(voices[0].voice_uri)
        return self.snapshot.voice_id

    def set_context(self, document: str, persona: str, document_name: str = "") -> TurnSnapshot:
        if document_name or not document:
            self.document_name = document_name
        return self.controller.set_context(document, persona)

    def clear_context(self) -> TurnSnapshot:
        self.document_name = ""
        return self.controller.clear_context()


# ---------------------------------------------------------------------------
# VoiceSessionManager
# ---------------------------------------------------------------------------

class VoiceSessionManager:
    """
    Create, retrieve, and tear down VoiceSession instances.

    Closing a session:
        1. Stops capture/playback and cancels any in-flight reply (with a
           configurable timeout).
        2. Disconnects the client bridge.
        3. Removes the session from the registry.
    """

    def __init__(
        self,
        reply_generator,  # docvoice.app.reply_client.ReplyGenerator
        telemetry=None,  # docvoice.app.telemetry.TurnTelemetryLogger
        capture_options: Optional[CaptureOptions] = None,
        playback_options: Optional[PlaybackOptions] = None,
        language_prefix: str = "en",
        max_voices: int = 12,
        cleanup_timeout: float = _CLEANUP_TIMEOUT,
    ):
        self._sessions: Dict[str, VoiceSession] = {}
        self._reply_generator = reply_generator
        self._telemetry = telemetry
        self._capture_options = capture_options or CaptureOptions()
        self._playback_options = playback_options or PlaybackOptions()
        self._language_prefix = language_prefix
        self._max_voices = max_voices
        self._cleanup_timeout = cleanup_timeout

    @classmethod
    def from_config(cls, config, reply_generator, telemetry=None) -> "VoiceSessionManager":
        """Build a manager from a DocvoiceConfig."""
        capture = config.get("capture")
        playback = config.get("playback")
        return cls(
            reply_generator=reply_generator,
            telemetry=telemetry,
            capture_options=CaptureOptions(
                locale=capture["locale"],
                continuous=capture["continuous"],
                interim_results=capture["interim_results"],
            ),
            playback_options=PlaybackOptions(
                rate=playback["rate"],
                pitch=playback["pitch"],
                volume=playback["volume"],
            ),
            language_prefix=playback["language_prefix"],
            max_voices=playback["max_voices"],
        )

    # ---- CRUD --------------------------------------------------------------

    def create(
        self,
        document: str = "",
        persona: str = "",
        document_name: str = "",
        session_id: Optional[str] = None,
    ) -> VoiceSession:
        """Create and register a new VoiceSession."""
        sid = session_id or uuid.uuid4().hex
        if sid in self._sessions:
            raise ValueError(f"session {sid} already exists")

        bridge = ClientBridge(sid, self._language_prefix, self._max_voices)
        controller = TurnController(
            sid,
            capture=bridge.capture,
            playback=bridge.playback,
            reply_generator=self._reply_generator,
            context=document,
            persona=persona,
            capture_options=self._capture_options,
            playback_options=self._playback_options,
            telemetry=self._telemetry,
        )
        session = VoiceSession(
            session_id=sid,
            controller=controller,
            bridge=bridge,
            document_name=document_name,
        )
        self._sessions[sid] = session
        logger.info(
            "voice session created  session=%s  ready=%s  document=%s  chars=%d",
            sid, session.ready, document_name, len(document),
        )
        return session

    def get(self, session_id: str) -> Optional[VoiceSession]:
        """Get session by ID, or None."""
        return self._sessions.get(session_id)

    def require(self, session_id: str) -> VoiceSession:
        """Get session by ID or raise SessionNotFound."""
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def list_sessions(self) -> Dict[str, VoiceSession]:
        """Return a shallow copy of all sessions."""
        return dict(self._sessions)

    @property
    def active_count(self) -> int:
        """Number of sessions currently tracked."""
        return len(self._sessions)

    # ---- Cleanup / Close ---------------------------------------------------

    async def close(self, session_id: str, reason: str = "close") -> bool:
        """
        Tear down a voice session cleanly.

        Returns True if the session existed and was closed.
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            logger.warning("close called for unknown session=%s", session_id)
            return False

        try:
            await asyncio.wait_for(session.controller.aclose(), timeout=self._cleanup_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "session teardown exceeded %.1fs  session=%s",
                self._cleanup_timeout, session_id,
            )
        session.bridge.disconnect()

        logger.info(
            "voice session closed  session=%s  reason=%s  turns=%d  messages=%d",
            session_id, reason, session.snapshot.generation, len(session.snapshot.messages),
        )
        return True

    async def close_all(self, reason: str = "shutdown") -> int:
        """Close all sessions.  Returns count of sessions closed."""
        closed = 0
        for sid in list(self._sessions.keys()):
            if await self.close(sid, reason=reason):
                closed += 1
        return closed
