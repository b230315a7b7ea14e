"""Persistence for prompts, chat analytics, feedback, resources, users and logins.

Every public method runs in its own short-lived ORM session and goes through
:func:`sanad_server.db.execute_with_retry`, so a flaky connection is retried
before the API sees an error.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar

import yaml
from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from .db import RetryPolicy, check_health, create_db_engine, execute_with_retry
from .models import (
    AuthSession,
    Base,
    ChatMessage,
    ChatSession,
    MessageFeedback,
    Resource,
    SessionFeedback,
    SystemPrompt,
    User,
    new_session_sid,
    utcnow,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

RESOURCES_FILE = Path(__file__).resolve().parent / "resources.yaml"
RATINGS = ("up", "down")
LANGUAGES = ("ar", "en")

_RESOURCE_FIELDS = (
    "field", "name", "name_ar", "platform", "level", "cost",
    "has_certificate", "description", "description_ar", "url",
)


class Storage:
    """ORM-backed store; one instance (and engine) per application."""

    def __init__(self, engine: Engine, retry_policy: Optional[RetryPolicy] = None) -> None:
        self.engine = engine
        self.retry_policy = retry_policy or RetryPolicy()
        self._sessions = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "Storage":
        db_cfg = cfg.get("database", {})
        engine = create_db_engine(str(db_cfg.get("url", "sqlite://")), echo=bool(db_cfg.get("echo", False)))
        return cls(engine, RetryPolicy.from_config(db_cfg))

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------
    def _run(self, name: str, work: Callable[[Session], T]) -> T:
        def operation() -> T:
            with self._sessions() as db:
                try:
                    out = work(db)
                    db.commit()
                    return out
                except Exception:
                    db.rollback()
                    raise

        return execute_with_retry(operation, name, self.retry_policy)

    def create_all(self) -> None:
        execute_with_retry(lambda: Base.metadata.create_all(self.engine), "create tables", self.retry_policy)

    def check_health(self) -> Dict[str, str]:
        return check_health(self.engine)

    # ------------------------------------------------------------------
    # system prompts
    # ------------------------------------------------------------------
    def get_system_prompt(self, language: str) -> Optional[SystemPrompt]:
        return self._run(
            "get system prompt",
            lambda db: db.query(SystemPrompt).filter(SystemPrompt.language == language).first(),
        )

    def upsert_system_prompt(self, language: str, content: str, updated_by: Optional[str] = None) -> SystemPrompt:
        if language not in LANGUAGES:
            raise ValueError("Language must be 'ar' or 'en'")

        def work(db: Session) -> SystemPrompt:
            prompt = db.query(SystemPrompt).filter(SystemPrompt.language == language).first()
            if prompt is None:
                prompt = SystemPrompt(language=language, content=content, updated_by=updated_by)
                db.add(prompt)
            else:
                prompt.content = content
                prompt.updated_by = updated_by
                prompt.updated_at = utcnow()
            db.flush()
            return prompt

        return self._run("upsert system prompt", work)

    # ------------------------------------------------------------------
    # chat analytics
    # ------------------------------------------------------------------
    def get_or_create_session(self, session_id: str) -> ChatSession:
        def work(db: Session) -> ChatSession:
            row = db.get(ChatSession, session_id)
            if row is None:
                row = ChatSession(id=session_id)
                db.add(row)
                db.flush()
            return row

        try:
            return self._run("get or create session", work)
        except IntegrityError:
            # A concurrent first turn inserted the row between our read and insert.
            logger.debug("Session %s created concurrently; re-reading", session_id)
            return self._run("get session", lambda db: db.get(ChatSession, session_id))

    def update_session_activity(self, session_id: str) -> None:
        def work(db: Session) -> None:
            db.query(ChatSession).filter(ChatSession.id == session_id).update(
                {ChatSession.last_active_at: utcnow()}, synchronize_session=False
            )

        self._run("update session activity", work)

    def log_message(
        self,
        session_id: str,
        role: str,
        content: Optional[str] = None,
        stage: Optional[str] = None,
    ) -> ChatMessage:
        def work(db: Session) -> ChatMessage:
            row = ChatMessage(session_id=session_id, role=role, content=content, stage=stage)
            db.add(row)
            db.flush()
            return row

        return self._run("log message", work)

    def count_sessions(self) -> int:
        return self._run("count sessions", lambda db: db.query(func.count(ChatSession.id)).scalar() or 0)

    def count_messages(self) -> int:
        return self._run("count messages", lambda db: db.query(func.count(ChatMessage.id)).scalar() or 0)

    def count_active_sessions(self, hours: int = 24) -> int:
        cutoff = utcnow() - timedelta(hours=hours)
        return self._run(
            "count active sessions",
            lambda db: db.query(func.count(ChatSession.id)).filter(ChatSession.last_active_at >= cutoff).scalar() or 0,
        )

    # ------------------------------------------------------------------
    # feedback
    # ------------------------------------------------------------------
    def upsert_session_feedback(self, session_id: str, rating: int, comment: Optional[str] = None) -> SessionFeedback:
        """Store the end-of-session rating; a second submission replaces the first."""
        if not 1 <= int(rating) <= 5:
            raise ValueError("Rating must be between 1 and 5")

        def work(db: Session) -> SessionFeedback:
            row = db.query(SessionFeedback).filter(SessionFeedback.session_id == session_id).first()
            if row is None:
                row = SessionFeedback(session_id=session_id, rating=int(rating), comment=comment)
                db.add(row)
            else:
                row.rating = int(rating)
                row.comment = comment
                row.updated_at = utcnow()
            db.flush()
            return row

        return self._run("upsert session feedback", work)

    def get_session_feedback(self, session_id: str) -> Optional[SessionFeedback]:
        return self._run(
            "get session feedback",
            lambda db: db.query(SessionFeedback).filter(SessionFeedback.session_id == session_id).first(),
        )

    def record_message_feedback(self, session_id: str, message_id: str, rating: str) -> MessageFeedback:
        if rating not in RATINGS:
            raise ValueError("Rating must be 'up' or 'down'")

        def work(db: Session) -> MessageFeedback:
            row = (
                db.query(MessageFeedback)
                .filter(MessageFeedback.session_id == session_id, MessageFeedback.message_id == message_id)
                .first()
            )
            if row is None:
                row = MessageFeedback(session_id=session_id, message_id=message_id, rating=rating)
                db.add(row)
            else:
                row.rating = rating
            db.flush()
            return row

        return self._run("record message feedback", work)

    # ------------------------------------------------------------------
    # resources
    # ------------------------------------------------------------------
    def list_resources(self, field: Optional[str] = None) -> List[Resource]:
        def work(db: Session) -> List[Resource]:
            q = db.query(Resource)
            if field:
                q = q.filter(Resource.field == field.strip().lower())
            return q.order_by(Resource.field, Resource.id).all()

        return self._run("list resources", work)

    def seed_resources(self, path: Optional[Path] = None) -> int:
        """Load the curated catalogue when the table is empty. Returns rows added."""
        path = Path(path or RESOURCES_FILE)
        with path.open("r", encoding="utf-8") as f:
            entries = yaml.safe_load(f) or []
        if not isinstance(entries, list):
            raise RuntimeError(f"Invalid resources file {path}, expected a list.")

        def work(db: Session) -> int:
            if db.query(func.count(Resource.id)).scalar():
                return 0
            for entry in entries:
                db.add(Resource(**{k: entry.get(k) for k in _RESOURCE_FIELDS if k in entry}))
            return len(entries)

        added = self._run("seed resources", work)
        if added:
            logger.info("Seeded %d resources from %s", added, path.name)
        return added

    # ------------------------------------------------------------------
    # users
    # ------------------------------------------------------------------
    def upsert_user(self, claims: Dict[str, Any]) -> User:
        """Insert or refresh the user row for OIDC ``claims`` (keyed by ``sub``)."""
        sub = claims.get("sub")
        if not sub:
            raise ValueError("claims without 'sub'")

        def work(db: Session) -> User:
            user = db.get(User, sub)
            if user is None:
                user = User(id=sub)
                db.add(user)
            user.email = claims.get("email")
            user.first_name = claims.get("first_name") or claims.get("given_name")
            user.last_name = claims.get("last_name") or claims.get("family_name")
            user.profile_image_url = claims.get("profile_image_url") or claims.get("picture")
            user.updated_at = utcnow()
            db.flush()
            return user

        return self._run("upsert user", work)

    # ------------------------------------------------------------------
    # login sessions (provider tokens stay server-side)
    # ------------------------------------------------------------------
    def create_auth_session(
        self,
        user_id: Optional[str],
        access_token: Optional[str],
        refresh_token: Optional[str],
        expires_at: Optional[int],
    ) -> AuthSession:
        def work(db: Session) -> AuthSession:
            row = AuthSession(
                sid=new_session_sid(),
                user_id=user_id,
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=expires_at,
            )
            db.add(row)
            db.flush()
            return row

        return self._run("create auth session", work)

    def get_auth_session(self, sid: str) -> Optional[AuthSession]:
        return self._run("get auth session", lambda db: db.get(AuthSession, sid))

    def update_auth_session(
        self,
        sid: str,
        access_token: Optional[str],
        refresh_token: Optional[str],
        expires_at: Optional[int],
    ) -> Optional[AuthSession]:
        def work(db: Session) -> Optional[AuthSession]:
            row = db.get(AuthSession, sid)
            if row is None:
                return None
            row.access_token = access_token
            row.refresh_token = refresh_token or row.refresh_token
            row.expires_at = expires_at
            row.updated_at = utcnow()
            db.flush()
            return row

        return self._run("update auth session", work)

    def delete_auth_session(self, sid: str) -> bool:
        def work(db: Session) -> bool:
            return bool(db.query(AuthSession).filter(AuthSession.sid == sid).delete(synchronize_session=False))

        return self._run("delete auth session", work)
