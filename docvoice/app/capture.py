"""
DocVoice - Speech Capture Source contract

A capture source wraps continuous speech-to-text recognition. The turn
controller never talks to a recognizer directly: it hands the source a
CaptureHandle bound to the current turn's generation and the source reports
results through that handle.

Contract:
    - ``available`` is the capability query. When False, the controller
      records CaptureUnsupported instead of calling ``start``.
    - ``start(handle, options)`` opens one recognition session. Continuous
      mode, interim results and the locale come from CaptureOptions.
    - ``stop()`` closes the session without blocking. The controller closes
      the handle before calling it, so late results are dropped.
    - At most one recognition session is open per source.
"""

import logging
from dataclasses import dataclass
from typing import Callable

from docvoice.voice import turn_events as ev
from docvoice.voice.turn_events import TurnEvent

logger = logging.getLogger(__name__)

Dispatch = Callable[[TurnEvent], object]


@dataclass(frozen=True)
class CaptureOptions:
    """Recognizer configuration applied to every capture session."""
    locale: str = "en-US"
    continuous: bool = True
    interim_results: bool = True

    def to_dict(self) -> dict:
        return {
            "locale": self.locale,
            "continuous": self.continuous,
            "interim_results": self.interim_results,
        }


class CaptureHandle:
    """Per-turn callback channel from a capture source into the controller.

    Every result is tagged with the generation the handle was created for.
    Once closed, the handle silently drops further results.
    """

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
                "capture: dropped %s after close  generation=%d",
                event.event_type, self.generation,
            )
            return
        self._dispatch(event)

    def interim(self, text: str) -> None:
        self._emit(ev.interim(self.generation, text))

    def final(self, text: str) -> None:
        self._emit(ev.final(self.generation, text))

    def error(self, reason: str) -> None:
        self._emit(ev.capture_error(self.generation, reason))

    def ended(self) -> None:
        self._emit(ev.capture_ended(self.generation))


class CaptureSource:
    """Abstract capture source. Unsupported unless a subclass says otherwise."""

    @property
    def available(self) -> bool:
        return False

    def start(self, handle: CaptureHandle, options: CaptureOptions) -> None:
        raise NotImplementedError(f"{type(self).__name__} cannot capture speech")

    def stop(self) -> None:
        pass
