"""
DocVoice - WebSocket Route Handler
Client bridge between a speech-capable browser and a voice session.
"""

import asyncio
import json
import logging

from fastapi import WebSocket, WebSocketDisconnect

from docvoice.app.session_manager import VoiceSession, VoiceSessionManager
from docvoice.events import ErrorEvent, Event, EventType, SessionStateEvent
from docvoice.shared.log_redaction import redact_string

logger = logging.getLogger(__name__)

CLOSE_SUPERSEDED = 4001
CLOSE_SESSION_NOT_FOUND = 4004

_BRIDGE_EVENTS = frozenset([
    EventType.CAPTURE_INTERIM, EventType.CAPTURE_FINAL,
    EventType.CAPTURE_ERROR, EventType.CAPTURE_END,
    EventType.PLAYBACK_STARTED, EventType.PLAYBACK_ENDED, EventType.PLAYBACK_ERROR,
])


async def _writer(websocket: WebSocket, outbox: asyncio.Queue, session_id: str) -> None:
    """Drain the outbox to the socket in order."""
    while True:
        event = await outbox.get()
        try:
            await websocket.send_text(event.to_json())
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug("ws writer stopped  session=%s  error=%s", session_id, e)
            return


def _state_event(session: VoiceSession, correlation_id: str = "") -> SessionStateEvent:
    return SessionStateEvent(session.session_id, session.surface(), correlation_id=correlation_id)


def handle_client_event(session: VoiceSession, event: Event) -> None:
    """Apply one client event to the session; replies go through the bridge."""
    bridge = session.bridge
    et = event.type

    if et == EventType.CLIENT_HELLO:
        bridge.apply_hello(event.data)
        session.select_default_voice()
        bridge.send(_state_event(session, event.correlation_id))

    elif et in _BRIDGE_EVENTS:
        bridge.route(event)

    elif et == EventType.CONTROL_START:
        session.start()

    elif et == EventType.CONTROL_STOP:
        session.stop()

    elif et == EventType.CONTROL_MUTE:
        session.toggle_mute()

    elif et == EventType.CONTROL_VOICE:
        voice_id = event.data.get("voice_id")
        session.select_voice(str(voice_id) if voice_id else None)

    elif et == EventType.STATUS:
        bridge.send(_state_event(session, event.correlation_id))

    else:
        bridge.send(ErrorEvent(
            session_id=session.session_id,
            error_code="UNSUPPORTED_EVENT",
            error_message=f"Event type {et.value} is not accepted from clients",
            correlation_id=event.correlation_id,
        ))


async def websocket_handler(
    websocket: WebSocket,
    session_id: str,
    session_manager: VoiceSessionManager,
    correlation_id: str = "",
):
    """
    Handle the client bridge WebSocket for a session.

    Flow:
    1. Validate session exists
    2. Connect the session's bridge to an outbox drained by a writer task
    3. Send the initial SESSION_STATE event
    4. Route capture/playback/control events from the client
    5. Push SESSION_STATE after every controller step
    6. On disconnect, stop the active turn and detach the bridge

    The session itself outlives the socket; a client may reconnect. A new
    connection takes the bridge over: the old client's turn is stopped, and
    the old socket is closed with CLOSE_SUPERSEDED on its next message.
    """
    session = session_manager.get(session_id)
    if not session:
        await websocket.close(code=CLOSE_SESSION_NOT_FOUND, reason="Session not found")
        return

    await websocket.accept()

    bridge = session.bridge
    outbox: asyncio.Queue = asyncio.Queue()
    session.attach_client(outbox)
    session.controller.bind_loop()

    def push_state(_snapshot) -> None:
        if bridge.owns(outbox):
            bridge.send(_state_event(session))

    session.controller.add_listener(push_state)
    writer = asyncio.create_task(_writer(websocket, outbox, session_id), name=f"ws_writer_{session_id}")
    bridge.send(_state_event(session, correlation_id))

    logger.info("client connected  session=%s  correlation_id=%s", session_id, correlation_id)

    try:
        while True:
            raw = await websocket.receive_text()
            if not bridge.owns(outbox):
                logger.info("client superseded  session=%s  correlation_id=%s", session_id, correlation_id)
                await websocket.close(code=CLOSE_SUPERSEDED, reason="Replaced by a newer connection")
                break

            try:
                event = Event.from_json(raw)
            except json.JSONDecodeError:
                bridge.send(ErrorEvent(
                    session_id=session_id,
                    error_code="INVALID_EVENT",
                    error_message="Failed to parse event as JSON",
                    correlation_id=correlation_id,
                ))
                continue
            except (KeyError, ValueError, TypeError, AttributeError) as e:
                bridge.send(ErrorEvent(
                    session_id=session_id,
                    error_code="INVALID_EVENT",
                    error_message=f"Malformed event envelope: {redact_string(str(e))}",
                    correlation_id=correlation_id,
                ))
                continue

            try:
                handle_client_event(session, event)
            except Exception as e:
                logger.exception("client event failed  session=%s  type=%s", session_id, event.type.value)
                bridge.send(ErrorEvent(
                    session_id=session_id,
                    error_code="INTERNAL_ERROR",
                    error_message=redact_string(str(e)),
                    correlation_id=event.correlation_id or correlation_id,
                ))

    except WebSocketDisconnect:
        logger.info("client disconnected  session=%s", session_id)

    finally:
        session.controller.remove_listener(push_state)
        session.detach_client(outbox)
        writer.cancel()
        try:
            await writer
        except asyncio.CancelledError:
            pass
