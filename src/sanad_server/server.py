"""FastAPI application: chat proxy, analytics, feedback, resources and admin."""
from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Literal, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field
from sqlalchemy.exc import DBAPIError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from coaching.extractor import StructuredResult
from coaching.prompts import default_instruction, normalize_language
from coaching.transport import (
    DEFAULT_BASE_URL,
    DEFAULT_MODEL,
    DEFAULT_TIMEOUT,
    STATUS_FOR_KIND,
    ErrorKind,
    GeminiTransport,
    Transport,
    TransportError,
)
from reporting.pdf import render_pdf, report_filename

from .auth import AuthService, create_auth_router, require_admin
from .config import load_config
from .db import DatabaseTemporaryError, is_retryable_error
from .storage import Storage

logger = logging.getLogger(__name__)

RETRY_MESSAGE = "Database temporarily unavailable. Please try again."


# -----------------------------
# Pydantic request models
# -----------------------------
class ChatRequest(BaseModel):
    messages: Optional[List[Dict[str, Any]]] = None
    history: Optional[List[Dict[str, Any]]] = None  # older clients send "history"
    language: str = "en"
    sessionId: Optional[str] = None
    stage: Optional[str] = Field(default=None, max_length=30)


class ReportRequest(BaseModel):
    result: StructuredResult
    language: str = "en"


class SessionFeedbackRequest(BaseModel):
    sessionId: str = Field(..., min_length=1)
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=2000)


class MessageFeedbackRequest(BaseModel):
    sessionId: str = Field(..., min_length=1)
    messageId: str = Field(..., min_length=1)
    rating: Literal["up", "down"]


class PromptUpdate(BaseModel):
    language: Optional[str] = None
    content: Optional[str] = None


# -----------------------------
# Utilities
# -----------------------------
def _wire_messages(items: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    out: List[Dict[str, str]] = []
    for m in items:
        if not isinstance(m, dict):
            continue
        role = "assistant" if m.get("role") == "assistant" else str(m.get("role") or "user")
        out.append({"role": role, "content": str(m.get("content") or "")})
    return out


def _last_user_content(messages: List[Dict[str, str]]) -> Optional[str]:
    for m in reversed(messages):
        if m["role"] == "user":
            return m["content"]
    return None


def _make_instructions(storage: Storage):
    """System instruction lookup: stored override first, bundled default otherwise."""

    def instructions(language: str) -> str:
        lang = normalize_language(language)
        try:
            prompt = storage.get_system_prompt(lang)
        except Exception as e:
            logger.warning("Falling back to default %s prompt: %s", lang, e)
            prompt = None
        return prompt.content if prompt and prompt.content else default_instruction(lang)

    return instructions


def _make_transport(cfg: Dict[str, Any], storage: Storage) -> GeminiTransport:
    llm_cfg = cfg.get("llm", {})
    return GeminiTransport(
        str(llm_cfg.get("api_key") or ""),
        instructions=_make_instructions(storage),
        model=str(llm_cfg.get("model", DEFAULT_MODEL)),
        base_url=str(llm_cfg.get("base_url", DEFAULT_BASE_URL)),
        timeout=float(llm_cfg.get("timeout", DEFAULT_TIMEOUT)),
    )


def _record_turn(
    storage: Storage,
    session_id: str,
    user_content: Optional[str],
    reply: Optional[str],
    stage: Optional[str],
) -> None:
    """Analytics for one chat call; never raises."""
    try:
        storage.get_or_create_session(session_id)
        storage.update_session_activity(session_id)
        storage.log_message(session_id, "user", user_content, stage)
        if reply is not None:
            storage.log_message(session_id, "assistant", reply, stage)
    except Exception:
        logger.exception("Analytics logging error for session %s", session_id)


def _prepare_storage(storage: Storage) -> None:
    try:
        storage.create_all()
        storage.seed_resources()
    except DatabaseTemporaryError as e:
        logger.error("Database not ready at startup: %s", e)


# -----------------------------
# App factory
# -----------------------------
def create_app(
    config_path: Optional[str] = None,
    transport: Optional[Transport] = None,
    storage: Optional[Storage] = None,
) -> FastAPI:
    cfg = load_config(config_path)
    server_cfg = cfg.get("server", {})

    # Services
    storage = storage or Storage.from_config(cfg)
    _prepare_storage(storage)
    transport = transport or _make_transport(cfg, storage)
    auth = AuthService(cfg.get("auth", {}), storage)

    app = FastAPI(title="Sanad Career Coach", version="0.1.0")
    app.state.cfg = cfg
    app.state.storage = storage
    app.state.transport = transport
    app.state.auth = auth

    app.add_middleware(
        SessionMiddleware,
        secret_key=str(server_cfg.get("session_secret") or "dev-only-session-secret"),
        max_age=int(server_cfg.get("session_max_age", 7 * 24 * 60 * 60)),
        https_only=bool(server_cfg.get("https_only", False)),
        same_site="lax",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=server_cfg.get("cors_origins") or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        if request.url.path.startswith("/api"):
            elapsed_ms = (time.perf_counter() - start) * 1000
            logger.info("%s %s %s in %dms", request.method, request.url.path, response.status_code, elapsed_ms)
        return response

    # Errors
    @app.exception_handler(DatabaseTemporaryError)
    async def database_unavailable(request: Request, exc: DatabaseTemporaryError):
        return JSONResponse({"message": RETRY_MESSAGE, "retryable": True}, status_code=503)

    @app.exception_handler(DBAPIError)
    async def database_error(request: Request, exc: DBAPIError):
        if is_retryable_error(exc):
            logger.error("Database connectivity error on %s: %s", request.url.path, exc)
            return JSONResponse({"message": RETRY_MESSAGE, "retryable": True}, status_code=503)
        logger.error("Database error on %s: %s", request.url.path, exc)
        return JSONResponse({"message": "Internal Server Error"}, status_code=500)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse({"message": exc.detail}, status_code=exc.status_code, headers=exc.headers)

    app.include_router(create_auth_router())

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {"ok": True, "database": storage.check_health()}

    @app.post("/api/chat")
    def chat(req: ChatRequest, background_tasks: BackgroundTasks):
        raw = req.history if req.history is not None else req.messages
        if raw is None:
            return JSONResponse({"error": "Messages array required"}, status_code=400)

        messages = _wire_messages(raw)
        language = normalize_language(req.language)
        user_content = _last_user_content(messages)

        try:
            text = transport.complete(messages, language)
        except TransportError as e:
            logger.warning("Chat error (%s): %s", e.kind.value, e)
            if req.sessionId:
                background_tasks.add_task(_record_turn, storage, req.sessionId, user_content, None, req.stage)
            return JSONResponse(
                {"error": str(e), "kind": e.kind.value},
                status_code=STATUS_FOR_KIND[e.kind],
            )
        except Exception as e:
            logger.exception("Chat error")
            return JSONResponse(
                {"error": str(e) or "Failed to get response", "kind": ErrorKind.UNKNOWN.value},
                status_code=STATUS_FOR_KIND[ErrorKind.UNKNOWN],
            )

        if req.sessionId:
            background_tasks.add_task(_record_turn, storage, req.sessionId, user_content, text, req.stage)
        return {"content": text}

    @app.get("/api/resources")
    def resources(field: Optional[str] = Query(default=None), language: Optional[str] = Query(default=None)):
        lang = normalize_language(language) if language else None
        rows = storage.list_resources(field)
        return {"resources": [r.to_dict(lang) for r in rows]}

    @app.post("/api/report/pdf")
    def report_pdf(req: ReportRequest) -> Response:
        language = normalize_language(req.language)
        pdf = render_pdf(req.result, language)
        return Response(
            content=pdf,
            media_type="application/pdf",
            headers={"Content-Disposition": f'attachment; filename="{report_filename(language)}"'},
        )

    # Feedback
    @app.post("/api/feedback/session")
    def submit_session_feedback(req: SessionFeedbackRequest):
        row = storage.upsert_session_feedback(req.sessionId, req.rating, req.comment or None)
        return {"success": True, "feedback": row.to_dict()}

    @app.get("/api/feedback/session/{session_id}")
    def read_session_feedback(session_id: str):
        row = storage.get_session_feedback(session_id)
        return {"feedback": row.to_dict() if row else None}

    @app.post("/api/feedback/message")
    def submit_message_feedback(req: MessageFeedbackRequest):
        row = storage.record_message_feedback(req.sessionId, req.messageId, req.rating)
        return {"success": True, "feedback": row.to_dict()}

    # Admin
    @app.get("/api/admin/stats")
    def admin_stats(user: Dict[str, Any] = Depends(require_admin)):
        return {
            "uniqueUsers": storage.count_sessions(),
            "totalMessages": storage.count_messages(),
            "activeUsers24h": storage.count_active_sessions(hours=24),
        }

    @app.get("/api/admin/prompts")
    def admin_prompts(user: Dict[str, Any] = Depends(require_admin)):
        out: Dict[str, str] = {}
        for lang in ("ar", "en"):
            prompt = storage.get_system_prompt(lang)
            out[lang] = prompt.content if prompt else default_instruction(lang)
        return out

    @app.post("/api/admin/prompts")
    def update_prompt(req: PromptUpdate, user: Dict[str, Any] = Depends(require_admin)):
        if not req.language or not req.content:
            raise HTTPException(status_code=400, detail="Language and content required")
        if req.language not in ("ar", "en"):
            raise HTTPException(status_code=400, detail="Language must be 'ar' or 'en'")
        updated_by = (user.get("claims") or {}).get("sub")
        prompt = storage.upsert_system_prompt(req.language, req.content, updated_by)
        return {"success": True, "prompt": prompt.to_dict()}

    return app
