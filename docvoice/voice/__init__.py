"""
DocVoice - voice turn state machine

Pure pieces (state, events, reducer) are re-exported here. The driver,
``docvoice.voice.turn_controller.TurnController``, is imported directly
since it depends on the adapter contracts in ``docvoice.app``.
"""

from docvoice.voice.turn_state import (
    ErrorKind,
    Message,
    SURFACE_STATES,
    TurnError,
    TurnSnapshot,
    TurnState,
    make_initial_snapshot,
)
from docvoice.voice.turn_events import TurnEvent
from docvoice.voice.turn_reducer import Command, reduce_turn

__all__ = [
    "ErrorKind",
    "Message",
    "SURFACE_STATES",
    "TurnError",
    "TurnSnapshot",
    "TurnState",
    "make_initial_snapshot",
    "TurnEvent",
    "Command",
    "reduce_turn",
]
