"""
DocVoice Main Service
FastAPI application: document upload, stateless chat, voice sessions and the
client bridge WebSocket.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

import uvicorn
from fastapi import FastAPI, File, Request, UploadFile, WebSocket
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from docvoice.app.documents import DocumentError, extract_text, normalize_text
from docvoice.app.reply_client import GeminiReplyGenerator, ReplyGenerationError, ReplyGenerator
from docvoice.app.session_manager import SessionNotFound, VoiceSession, VoiceSessionManager
from docvoice.app.telemetry import TurnTelemetryLogger
from docvoice.routes.ws import websocket_handler
from docvoice.shared.config_validator import DocvoiceConfig
from docvoice.shared.log_redaction import redact_string
from docvoice.shared.version import DOCVOICE_PROTOCOL, DOCVOICE_VERSION
from docvoice.voice.turn_state import Message

logger = logging.getLogger("docvoice.main")

SERVICE_NAME = "docvoice"
_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


# ============================================================================
# Request models
# ============================================================================

class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    messages: List[ChatMessage] = Field(..., min_length=1)
    document_content: str = ""
    system_prompt: str = ""


class SessionCreateRequest(BaseModel):
    document_content: str = ""
    system_prompt: str = ""
    document_name: str = ""


class ContextRequest(BaseModel):
    document_content: str
    system_prompt: str
    document_name: str = ""


class VoiceRequest(BaseModel):
    voice_id: Optional[str] = None


# ============================================================================
# Helpers
# ============================================================================

def generate_correlation_id() -> str:
    """Generate a unique correlation ID for request tracing."""
    return f"req_{uuid.uuid4().hex[:12]}"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=_LOG_FORMAT)


def _correlation_id(request: Request) -> str:
    return request.headers.get("X-Correlation-ID", generate_correlation_id())


def _ok(operation: str, correlation_id: str, data: Any) -> Dict[str, Any]:
    return {
        "ok": True,
        "service": SERVICE_NAME,
        "operation": operation,
        "correlation_id": correlation_id,
        "data": data,
        "error": None,
    }


def _error(status_code: int, operation: str, correlation_id: str, code: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={
        "ok": False,
        "service": SERVICE_NAME,
        "operation": operation,
        "correlation_id": correlation_id,
        "data": None,
        "error": {"code": code, "message": message, "details": {}},
    })


def _sessions(request: Request) -> VoiceSessionManager:
    return request.app.state.session_manager


def _max_chars(request: Request) -> int:
    return request.app.state.config.get("documents")["max_chars"]


# ============================================================================
# Application factory
# ============================================================================

def create_app(
    config: Optional[DocvoiceConfig] = None,
    reply_generator: Optional[ReplyGenerator] = None,
    telemetry: Optional[TurnTelemetryLogger] = None,
) -> FastAPI:
    """
    Build the DocVoice FastAPI app.

    Config is loaded when the app starts, not at import time. Tests inject a
    fake reply generator and a telemetry logger pointed at a temp dir.
    """

    @asynccontextmanager
    async def _lifespan(a: FastAPI):
        cfg = config or DocvoiceConfig()
        configure_logging(cfg.get("service")["log_level"])

        generator = reply_generator or GeminiReplyGenerator.from_config(
            cfg.get("reply"), cfg.gemini_api_key,
        )
        telemetry_cfg = cfg.get("telemetry")
        turn_telemetry = telemetry or TurnTelemetryLogger(
            log_dir=telemetry_cfg["log_dir"],
            log_file=telemetry_cfg["log_file"],
            enabled=telemetry_cfg["enabled"],
        )

        a.state.config = cfg
        a.state.reply_generator = generator
        a.state.telemetry = turn_telemetry
        a.state.session_manager = VoiceSessionManager.from_config(cfg, generator, turn_telemetry)

        logger.info(
            "startup  service=%s  version=%s  model=%s  telemetry=%s",
            SERVICE_NAME, DOCVOICE_VERSION, cfg.get("reply")["model"], turn_telemetry.log_path,
        )

        yield  # ── app is running ──

        closed = await a.state.session_manager.close_all(reason="shutdown")
        await generator.aclose()
        logger.info("shutdown complete  sessions_closed=%d", closed)

    app = FastAPI(
        title="DocVoice",
        description="Voice conversation over an uploaded document",
        version=DOCVOICE_VERSION,
        lifespan=_lifespan,
    )

    @app.exception_handler(SessionNotFound)
    async def _session_not_found(request: Request, exc: SessionNotFound):
        session_id = exc.args[0] if exc.args else ""
        return _error(404, "session", _correlation_id(request), "NOT_FOUND", f"Session {session_id} not found")

    # ------------------------------------------------------------------------
    # Universal endpoints
    # ------------------------------------------------------------------------

    @app.get("/healthz")
    async def healthz(request: Request):
        """Health check with voice session and telemetry details."""
        turn_telemetry = request.app.state.telemetry
        return {
            "ok": True,
            "service": SERVICE_NAME,
            "version": DOCVOICE_VERSION,
            "protocol": DOCVOICE_PROTOCOL,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "voice": {"active_sessions": _sessions(request).active_count},
            "telemetry": {
                "turns_logged": turn_telemetry.turn_count,
                "log_path": str(turn_telemetry.log_path),
            },
        }

    @app.get("/v1/telemetry")
    async def telemetry_summary(request: Request, n: int = 20):
        """Aggregate turn stats plus the most recent turn records."""
        turn_telemetry = request.app.state.telemetry
        return _ok("telemetry", _correlation_id(request), {
            "summary": turn_telemetry.summary(),
            "recent": turn_telemetry.recent(n=max(1, n)),
        })

    # ------------------------------------------------------------------------
    # Documents and stateless chat
    # ------------------------------------------------------------------------

    @app.post("/v1/documents")
    async def upload_document(request: Request, file: Optional[UploadFile] = File(None)):
        """Extract plain text from an uploaded PDF / text / Word file."""
        correlation_id = _correlation_id(request)
        if file is None or not file.filename:
            return _error(400, "document_upload", correlation_id, "NO_FILE", "No file provided")

        data = await file.read()
        try:
            doc = extract_text(file.filename, data, max_chars=_max_chars(request))
        except DocumentError as e:
            logger.warning("document rejected  file=%s  error=%s", file.filename, e)
            code = "UNSUPPORTED_FORMAT" if e.status_code == 400 else "EXTRACTION_FAILED"
            return _error(e.status_code, "document_upload", correlation_id, code, str(e))

        return {
            "content": doc.content,
            "file_name": doc.file_name,
            "char_count": doc.char_count,
            "truncated": doc.truncated,
        }

    @app.post("/v1/chat")
    async def chat(body: ChatRequest, request: Request):
        """One stateless reply for a full message history."""
        correlation_id = _correlation_id(request)
        history = tuple(Message(m.role, m.content) for m in body.messages)
        document = normalize_text(body.document_content, _max_chars(request))
        try:
            text = await request.app.state.reply_generator.generate_reply(
                history, document, body.system_prompt,
            )
        except ReplyGenerationError as e:
            logger.error("chat failed  correlation_id=%s  error=%s", correlation_id, redact_string(str(e)))
            return _error(500, "chat", correlation_id, "REPLY_FAILED", "Failed to get response")
        return {"response": text}

    # ------------------------------------------------------------------------
    # Voice sessions
    # ------------------------------------------------------------------------

    @app.post("/v1/sessions")
    async def session_create(body: SessionCreateRequest, request: Request):
        correlation_id = _correlation_id(request)
        session = _sessions(request).create(
            document=normalize_text(body.document_content, _max_chars(request)),
            persona=body.system_prompt,
            document_name=body.document_name,
        )
        return _ok("session_create", correlation_id, session.surface())

    @app.get("/v1/sessions/{session_id}")
    async def session_get(session_id: str, request: Request):
        session = _sessions(request).require(session_id)
        return _ok("session_get", _correlation_id(request), session.surface())

    @app.put("/v1/sessions/{session_id}/context")
    async def session_set_context(session_id: str, body: ContextRequest, request: Request):
        session = _sessions(request).require(session_id)
        session.set_context(
            normalize_text(body.document_content, _max_chars(request)),
            body.system_prompt,
            document_name=body.document_name,
        )
        return _ok("session_set_context", _correlation_id(request), session.surface())

    @app.delete("/v1/sessions/{session_id}/context")
    async def session_clear_context(session_id: str, request: Request):
        session = _sessions(request).require(session_id)
        session.clear_context()
        return _ok("session_clear_context", _correlation_id(request), session.surface())

    @app.post("/v1/sessions/{session_id}/controls/{action}")
    async def session_control(
        session_id: str,
        action: str,
        request: Request,
        body: Optional[VoiceRequest] = None,
    ):
        """Session Surface controls: start, stop, stop_speaking, mute, voice."""
        correlation_id = _correlation_id(request)
        session = _sessions(request).require(session_id)
        controls = {
            "start": VoiceSession.start,
            "stop": VoiceSession.stop,
            "stop_speaking": VoiceSession.stop_speaking,
            "mute": VoiceSession.toggle_mute,
        }
        if action == "voice":
            session.select_voice(body.voice_id if body else None)
        elif action in controls:
            controls[action](session)
        else:
            return _error(404, "session_control", correlation_id, "UNKNOWN_CONTROL", f"Unknown control {action}")
        return _ok(f"session_{action}", correlation_id, session.surface())

    @app.delete("/v1/sessions/{session_id}")
    async def session_close(session_id: str, request: Request):
        correlation_id = _correlation_id(request)
        if not await _sessions(request).close(session_id, reason="client_request"):
            raise SessionNotFound(session_id)
        return _ok("session_close", correlation_id, {"session_id": session_id, "closed": True})

    # ------------------------------------------------------------------------
    # WebSocket
    # ------------------------------------------------------------------------

    @app.websocket("/v1/sessions/{session_id}/ws")
    async def session_ws(websocket: WebSocket, session_id: str):
        """
        Client bridge for a voice session.

        Connection URL: ws://127.0.0.1:7080/v1/sessions/{session_id}/ws
        """
        await websocket_handler(
            websocket=websocket,
            session_id=session_id,
            session_manager=websocket.app.state.session_manager,
            correlation_id=generate_correlation_id(),
        )

    return app


app = create_app()


def main() -> None:
    """Console entry point: load config and serve with uvicorn."""
    config = DocvoiceConfig()
    service = config.get("service")
    configure_logging(service["log_level"])
    uvicorn.run(
        create_app(config=config),
        host=service["host"],
        port=service["port"],
        log_level=service["log_level"].lower(),
    )


if __name__ == "__main__":
    main()
