"""
Tests for docvoice.app.session_manager - VoiceSession / VoiceSessionManager

Verifies:
    S1. create registers a session wired to its own bridge and controller.
    S2. surface() projects the snapshot with the collapsed state.
    S3. Controls route through the controller (never mutate state directly).
    S4. close tears down in-flight work and unregisters.
    S5. close_all and from_config.
"""

import asyncio

import pytest

from docvoice.app.session_manager import SessionNotFound, VoiceSessionManager
from docvoice.events import Event, EventType
from docvoice.shared.config_validator import DocvoiceConfig
from tests.fakes import DOCUMENT, PERSONA, settle

HELLO = {
    "speech_recognition": True,
    "speech_synthesis": True,
    "voices": [{"name": "Google US English", "lang": "en-US", "voiceURI": "google-us"}],
}


@pytest.fixture
def manager(reply, telemetry):
    return VoiceSessionManager(reply_generator=reply, telemetry=telemetry)


class TestVoiceSessionManager:

    def test_create_and_lookup(self, manager):
        s = manager.create(document=DOCUMENT, persona=PERSONA, document_name="manual.pdf")
        assert manager.get(s.session_id) is s
        assert manager.require(s.session_id) is s
        assert manager.active_count == 1
        assert s.ready
        assert s.bridge.session_id == s.session_id
        assert s.controller.session_id == s.session_id
        assert list(manager.list_sessions()) == [s.session_id]

    def test_duplicate_id_rejected(self, manager):
        manager.create(session_id="fixed")
        with pytest.raises(ValueError, match="already exists"):
            manager.create(session_id="fixed")

    def test_require_unknown(self, manager):
        assert manager.get("nope") is None
        with pytest.raises(SessionNotFound):
            manager.require("nope")

    def test_from_config(self, reply, telemetry):
        cfg = DocvoiceConfig(environ={
            "DOCVOICE_CAPTURE__LOCALE": "en-AU",
            "DOCVOICE_PLAYBACK__MAX_VOICES": "1",
        })
        mgr = VoiceSessionManager.from_config(cfg, reply, telemetry)
        s = mgr.create(document=DOCUMENT, persona=PERSONA)
        assert s.bridge.max_voices == 1
        assert s.controller._capture_options.locale == "en-AU"

    @pytest.mark.asyncio
    async def test_close_unregisters(self, manager):
        s = manager.create(document=DOCUMENT, persona=PERSONA)
        assert await manager.close(s.session_id)
        assert manager.get(s.session_id) is None
        assert not await manager.close(s.session_id)

    @pytest.mark.asyncio
    async def test_close_cancels_inflight_reply(self, manager, reply):
        reply.gate = asyncio.Event()
        s = manager.create(document=DOCUMENT, persona=PERSONA)
        s.bridge.connect(asyncio.Queue())
        s.bridge.apply_hello(HELLO)
        s.start()
        final = Event(EventType.CAPTURE_FINAL, s.session_id, {"generation": s.snapshot.generation, "text": "Question?"})
        s.bridge.route(final)
        await settle()

        assert await manager.close(s.session_id)
        assert not s.bridge.connected
        assert s.snapshot.surface_state == "thinking"

    @pytest.mark.asyncio
    async def test_close_all(self, manager):
        for _ in range(3):
            manager.create()
        assert await manager.close_all() == 3
        assert manager.active_count == 0


class TestVoiceSession:

    def test_surface_projection(self, manager):
        s = manager.create(document=DOCUMENT, persona=PERSONA, document_name="manual.pdf")
        surface = s.surface()
        assert surface["ready"] is True
        assert surface["state"] == "idle"
        assert surface["messages"] == []
        assert surface["transcript"] == ""
        assert surface["muted"] is False
        assert surface["voice_id"] is None
        assert surface["voices"] == []
        assert surface["error"] is None
        assert surface["document_name"] == "manual.pdf"
        assert surface["client_connected"] is False

    def test_not_ready_without_persona(self, manager):
        s = manager.create(document=DOCUMENT, persona="  ")
        assert s.surface()["ready"] is False
        s.start()
        assert s.surface()["state"] == "idle"

    def test_start_without_client_reports_unsupported(self, manager):
        s = manager.create(document=DOCUMENT, persona=PERSONA)
        s.start()
        assert s.surface()["error"]["kind"] == "CaptureUnsupported"

    def test_controls_route_through_controller(self, manager):
        s = manager.create(document=DOCUMENT, persona=PERSONA)
        s.bridge.connect(asyncio.Queue())
        s.bridge.apply_hello(HELLO)

        s.start()
        assert s.surface()["state"] == "listening"
        s.stop_speaking()
        assert s.surface()["state"] == "idle"
        s.toggle_mute()
        assert s.surface()["muted"] is True
        s.select_voice("google-us")
        assert s.surface()["voice_id"] == "google-us"

    def test_new_client_takes_over_from_previous(self, manager):
        s = manager.create(document=DOCUMENT, persona=PERSONA)
        first, second = asyncio.Queue(), asyncio.Queue()
        s.attach_client(first)
        s.bridge.apply_hello(HELLO)
        s.start()
        assert s.surface()["state"] == "listening"

        s.attach_client(second)
        assert s.surface()["state"] == "idle"
        sent = [first.get_nowait().type for _ in range(first.qsize())]
        assert sent == [EventType.CAPTURE_START, EventType.CAPTURE_STOP]
        assert second.empty()

        # the superseded connection going away leaves the new one attached
        assert s.detach_client(first) is False
        assert s.surface()["client_connected"] is True
        s.bridge.apply_hello(HELLO)
        s.start()
        assert s.surface()["state"] == "listening"

        assert s.detach_client(second) is True
        assert s.surface()["state"] == "idle"
        assert s.surface()["client_connected"] is False

    def test_surface_keys(self, manager):
        s = manager.create(document=DOCUMENT, persona=PERSONA)
        assert set(s.surface()) == {
            "session_id", "ready", "state", "generation", "messages", "transcript",
            "muted", "voice_id", "voices", "error", "document_name", "client_connected",
        }

    def test_select_default_voice(self, manager):
        s = manager.create(document=DOCUMENT, persona=PERSONA)
        assert s.select_default_voice() is None
        s.bridge.connect(asyncio.Queue())
        s.bridge.apply_hello(HELLO)
        assert s.select_default_voice() == "google-us"
        s.select_voice("other")
        assert s.select_default_voice() == "other"

    def test_context_replace_and_clear(self, manager):
        s = manager.create()
        assert not s.ready
        s.set_context(DOCUMENT, PERSONA, document_name="manual.pdf")
        assert s.ready
        assert s.document_name == "manual.pdf"

        s.clear_context()
        assert not s.ready
        assert s.document_name == ""
        assert s.snapshot.context == ""
