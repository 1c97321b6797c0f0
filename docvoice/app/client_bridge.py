"""
DocVoice - Client bridge adapters

Speech recognition and synthesis run on the connected client (a browser
with Web Speech support). The bridge implements the capture and playback
contracts on top of the session's WebSocket:

    controller --StartCapture--> ClientCaptureSource --capture.start--> client
    client --capture.interim/final--> ClientCaptureSource --handle--> controller
    controller --StartPlayback--> ClientPlaybackSink --playback.speak--> client
    client --playback.ended--> ClientPlaybackSink --handle--> controller

Outbound events go through a single asyncio.Queue drained by the WebSocket
writer, so they reach the client in the order the controller issued them.
Capabilities are what the client announced in ``client.hello``; a bridge
with no connected client reports both adapters as unavailable.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from docvoice.app.capture import CaptureHandle, CaptureOptions, CaptureSource
from docvoice.app.playback import (
    PlaybackHandle,
    PlaybackOptions,
    PlaybackSink,
    VoiceOption,
    build_voice_catalog,
    resolve_voice,
)
from docvoice.events import (
    CaptureStartEvent,
    CaptureStopEvent,
    Event,
    EventType,
    PlaybackCancelEvent,
    SpeakEvent,
)

logger = logging.getLogger(__name__)

_CAPTURE_EVENTS = frozenset([
    EventType.CAPTURE_INTERIM, EventType.CAPTURE_FINAL,
    EventType.CAPTURE_ERROR, EventType.CAPTURE_END,
])

_PLAYBACK_EVENTS = frozenset([
    EventType.PLAYBACK_STARTED, EventType.PLAYBACK_ENDED, EventType.PLAYBACK_ERROR,
])


class ClientCaptureSource(CaptureSource):
    """Capture source backed by the client's speech recognizer."""

    def __init__(self, bridge: "ClientBridge"):
        self._bridge = bridge
        self._handle: Optional[CaptureHandle] = None

    @property
    def available(self) -> bool:
        return self._bridge.connected and self._bridge.speech_recognition

    def start(self, handle: CaptureHandle, options: CaptureOptions) -> None:
        self._handle = handle
        self._bridge.send(CaptureStartEvent(
            self._bridge.session_id, handle.generation, options.to_dict(),
        ))

    def stop(self) -> None:
        if self._handle is None:
            return
        self._handle = None
        self._bridge.send(CaptureStopEvent(self._bridge.session_id))

    def deliver(self, event: Event) -> bool:
        """Forward a client capture event to the open handle, if it matches."""
        handle = self._handle
        if handle is None or event.generation != handle.generation:
            logger.debug(
                "capture event dropped  session=%s  type=%s  generation=%s",
                self._bridge.session_id, event.type.value, event.generation,
            )
            return False

        text = str(event.data.get("text", ""))
        if event.type == EventType.CAPTURE_INTERIM:
            handle.interim(text)
        elif event.type == EventType.CAPTURE_FINAL:
            handle.final(text)
        elif event.type == EventType.CAPTURE_ERROR:
            handle.error(str(event.data.get("reason", "unknown")))
        else:
            handle.ended()
        return True


class ClientPlaybackSink(PlaybackSink):
    """Playback sink backed by the client's speech synthesizer."""

    def __init__(self, bridge: "ClientBridge"):
        self._bridge = bridge
        self._handle: Optional[PlaybackHandle] = None

    @property
    def available(self) -> bool:
        return self._bridge.connected and self._bridge.speech_synthesis

    def voices(self) -> List[VoiceOption]:
        return self._bridge.voices

    def speak(
        self,
        handle: PlaybackHandle,
        text: str,
        voice_id: Optional[str],
        options: PlaybackOptions,
    ) -> None:
        self._handle = handle
        voice = resolve_voice(self.voices(), voice_id)
        self._bridge.send(SpeakEvent(
            self._bridge.session_id,
            handle.generation,
            text,
            voice.voice_uri if voice else None,
            options.to_dict(),
        ))

    def cancel(self) -> None:
        self._handle = None
        self._bridge.send(PlaybackCancelEvent(self._bridge.session_id))

    def deliver(self, event: Event) -> bool:
        """Forward a client playback event to the open handle, if it matches."""
        handle = self._handle
        if handle is None or event.generation != handle.generation:
            logger.debug(
                "playback event dropped  session=%s  type=%s  generation=%s",
                self._bridge.session_id, event.type.value, event.generation,
            )
            return False

        if event.type == EventType.PLAYBACK_STARTED:
            handle.started()
        elif event.type == EventType.PLAYBACK_ENDED:
            self._handle = None
            handle.ended()
        else:
            self._handle = None
            handle.failed(str(event.data.get("reason", "")))
        return True


class ClientBridge:
    """Per-session link between the turn controller and a connected client."""

    def __init__(self, session_id: str, language_prefix: str = "en", max_voices: int = 12):
        self.session_id = session_id
        self.language_prefix = language_prefix
        self.max_voices = max_voices
        self.speech_recognition = False
        self.speech_synthesis = False
        self._voices: List[VoiceOption] = []
        self._outbox: Optional[asyncio.Queue] = None
        self.capture = ClientCaptureSource(self)
        self.playback = ClientPlaybackSink(self)

    @property
    def connected(self) -> bool:
        return self._outbox is not None

    @property
    def voices(self) -> List[VoiceOption]:
        return list(self._voices)

    def owns(self, outbox: Optional[asyncio.Queue]) -> bool:
        """True while *outbox* is the connection the bridge sends to."""
        return outbox is not None and self._outbox is outbox

    def connect(self, outbox: asyncio.Queue) -> None:
        """Attach a client connection. Capabilities wait for its client.hello."""
        if self._outbox is not None:
            logger.warning("bridge replaced existing connection  session=%s", self.session_id)
        self._outbox = outbox
        self._reset_capabilities()

    def disconnect(self, outbox: Optional[asyncio.Queue] = None) -> bool:
        """
        Detach the client. With *outbox*, only if it is still the current
        connection; a superseded connection leaves its successor alone.
        """
        if outbox is not None and self._outbox is not outbox:
            logger.debug("stale disconnect ignored  session=%s", self.session_id)
            return False
        self._outbox = None
        self._reset_capabilities()
        return True

    def _reset_capabilities(self) -> None:
        self.speech_recognition = False
        self.speech_synthesis = False
        self._voices = []

    def send(self, event: Event) -> bool:
        """Queue an event for the client. Returns False when nobody is connected."""
        if self._outbox is None:
            logger.debug("bridge not connected, dropping %s  session=%s", event.type.value, self.session_id)
            return False
        self._outbox.put_nowait(event)
        return True

    def apply_hello(self, data: Dict[str, Any]) -> List[VoiceOption]:
        """Record client capabilities and its voice list; returns the catalog."""
        self.speech_recognition = bool(data.get("speech_recognition"))
        self.speech_synthesis = bool(data.get("speech_synthesis"))

        raw_voices = data.get("voices") or []
        voices = [VoiceOption.from_dict(v) for v in raw_voices if isinstance(v, dict)]
        voices = [v for v in voices if v.voice_uri]
        self._voices = build_voice_catalog(voices, self.language_prefix, self.max_voices)

        logger.info(
            "client hello  session=%s  recognition=%s  synthesis=%s  voices=%d/%d",
            self.session_id, self.speech_recognition, self.speech_synthesis,
            len(self._voices), len(raw_voices),
        )
        return self.voices

    def route(self, event: Event) -> bool:
        """Deliver a capture/playback event from the client to its adapter."""
        if event.type in _CAPTURE_EVENTS:
            return self.capture.deliver(event)
        if event.type in _PLAYBACK_EVENTS:
            return self.playback.deliver(event)
        return False
