"""
DocVoice - Speech Playback Sink contract and voice catalog

A playback sink turns assistant text into audible speech. Like the capture
source it reports through a per-turn handle bound to a generation.

Contract:
    - ``available`` is the capability query; an unavailable sink makes the
      controller record PlaybackFailed for the turn.
    - ``speak(handle, text, voice_id, options)`` starts one utterance. An
      unknown voice_id falls back to the platform default voice.
    - ``cancel()`` stops audible output immediately. The controller closes
      the handle first, so no ``ended`` for the cancelled utterance is ever
      processed.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence

from docvoice.voice import turn_events as ev
from docvoice.voice.turn_events import TurnEvent

logger = logging.getLogger(__name__)

Dispatch = Callable[[TurnEvent], object]

# Voices whose names contain one of these are listed first.
PREFERRED_VOICE_TOKENS = ("Google", "Microsoft", "Samantha", "Daniel", "Karen", "Moira")


@dataclass(frozen=True)
class VoiceOption:
    """External playback voice descriptor."""
    name: str
    lang: str
    voice_uri: str

    def to_dict(self) -> dict:
        return {"name": self.name, "lang": self.lang, "voice_uri": self.voice_uri}

    @classmethod
    def from_dict(cls, data: dict) -> "VoiceOption":
        return cls(
            name=str(data.get("name", "")),
            lang=str(data.get("lang", "")),
            voice_uri=str(data.get("voice_uri") or data.get("voiceURI") or ""),
        )


@dataclass(frozen=True)
class PlaybackOptions:
    """Fixed prosody applied to every utterance."""
    rate: float = 1.0
    pitch: float = 1.0
    volume: float = 1.0

    def to_dict(self) -> dict:
        return {"rate": self.rate, "pitch": self.pitch, "volume": self.volume}


class PlaybackHandle:
    """Per-turn callback channel from a playback sink into the controller."""

    def __init__(self, generation: int, dispatch: Dispatch):
        self.generation = generation
        self._dispatch = dispatch
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    def _emit(self, event: TurnEvent) -> None:
        if self._closed:
            logger.debug(
                "playback: dropped %s after close  generation=%d",
                event.event_type, self.generation,
            )
            return
        self._dispatch(event)

    def started(self) -> None:
        self._emit(ev.playback_started(self.generation))

    def ended(self) -> None:
        self._emit(ev.playback_ended(self.generation))

    def failed(self, reason: str = "") -> None:
        self._emit(ev.playback_failed(self.generation, reason))


class PlaybackSink:
    """Abstract playback sink. Unsupported unless a subclass says otherwise."""

    @property
    def available(self) -> bool:
        return False

    def voices(self) -> List[VoiceOption]:
        return []

    def speak(
        self,
        handle: PlaybackHandle,
        text: str,
        voice_id: Optional[str],
        options: PlaybackOptions,
    ) -> None:
        raise NotImplementedError(f"{type(self).__name__} cannot play speech")

    def cancel(self) -> None:
        pass


def resolve_voice(voices: Iterable[VoiceOption], voice_id: Optional[str]) -> Optional[VoiceOption]:
    """Find the selected voice; None means the platform default voice."""
    if not voice_id:
        return None
    for voice in voices:
        if voice.voice_uri == voice_id:
            return voice
    logger.debug("playback: voice %s not found, using default", voice_id)
    return None


def build_voice_catalog(
    voices: Sequence[VoiceOption],
    language_prefix: str = "en",
    limit: int = 12,
) -> List[VoiceOption]:
    """Filter voices to one language, preferred vendors first, capped."""
    matching = [v for v in voices if v.lang.startswith(language_prefix)]
    preferred = [
        v for v in matching
        if any(token in v.name for token in PREFERRED_VOICE_TOKENS)
    ]
    others = [v for v in matching if v not in preferred]
    return (preferred + others)[:limit]
