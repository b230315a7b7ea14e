"""ORM tables for prompts, chat analytics, feedback, resources, users and logins."""
from __future__ import annotations

import secrets
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp (stored the same way on every backend)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _uuid() -> str:
    return str(uuid.uuid4())


def new_session_sid() -> str:
    return secrets.token_urlsafe(32)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() + "Z" if value else None


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)  # OIDC "sub"
    email = Column(String, index=True)
    first_name = Column(String)
    last_name = Column(String)
    profile_image_url = Column(String)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "profileImageUrl": self.profile_image_url,
        }


class AuthSession(Base):
    """Provider tokens for one login. The cookie only carries ``sid``."""

    __tablename__ = "sessions"

    sid = Column(String, primary_key=True, default=new_session_sid)
    user_id = Column(String, index=True)
    access_token = Column(Text)
    refresh_token = Column(Text)
    expires_at = Column(Integer)  # epoch seconds
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class SystemPrompt(Base):
    __tablename__ = "system_prompts"

    id = Column(String, primary_key=True, default=_uuid)
    language = Column(String(10), unique=True, nullable=False)  # "ar" | "en"
    content = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    updated_by = Column(String)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "language": self.language,
            "content": self.content,
            "updatedAt": _iso(self.updated_at),
            "updatedBy": self.updated_by,
        }


class ChatSession(Base):
    __tablename__ = "chat_sessions"

    id = Column(String, primary_key=True)  # client-generated session id
    created_at = Column(DateTime, default=utcnow)
    last_active_at = Column(DateTime, default=utcnow, index=True)


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(String, primary_key=True, default=_uuid)
    session_id = Column(String, nullable=False, index=True)
    role = Column(String(20), nullable=False)
    content = Column(Text)
    stage = Column(String(30))  # outcome | purpose | reality | options | decision | commitment
    created_at = Column(DateTime, default=utcnow, index=True)


class MessageFeedback(Base):
    __tablename__ = "message_feedback"
    __table_args__ = (UniqueConstraint("session_id", "message_id", name="uq_message_feedback"),)

    id = Column(String, primary_key=True, default=_uuid)
    session_id = Column(String, nullable=False, index=True)
    message_id = Column(String, nullable=False)
    rating = Column(String(10), nullable=False)  # "up" | "down"
    created_at = Column(DateTime, default=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "messageId": self.message_id,
            "rating": self.rating,
            "createdAt": _iso(self.created_at),
        }


class SessionFeedback(Base):
    __tablename__ = "session_feedback"

    id = Column(String, primary_key=True, default=_uuid)
    session_id = Column(String, nullable=False, unique=True, index=True)
    rating = Column(Integer, nullable=False)  # 1..5
    comment = Column(Text)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "rating": self.rating,
            "comment": self.comment,
            "createdAt": _iso(self.created_at),
        }


class Resource(Base):
    __tablename__ = "resources"

    id = Column(Integer, primary_key=True, autoincrement=True)
    field = Column(String(50), nullable=False, index=True)
    name = Column(String, nullable=False)
    name_ar = Column(String)
    platform = Column(String)
    level = Column(String(30))
    cost = Column(String(30))
    has_certificate = Column(Boolean, default=False)
    description = Column(Text)
    description_ar = Column(Text)
    url = Column(String)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self, language: Optional[str] = None) -> Dict[str, Any]:
        d = {
            "id": self.id,
            "field": self.field,
            "name": self.name,
            "nameAr": self.name_ar,
            "platform": self.platform,
            "level": self.level,
            "cost": self.cost,
            "hasCertificate": bool(self.has_certificate),
            "description": self.description,
            "descriptionAr": self.description_ar,
            "url": self.url,
        }
        if language:
            arabic = language == "ar"
            d["displayName"] = (self.name_ar if arabic and self.name_ar else self.name)
            d["displayDescription"] = (
                self.description_ar if arabic and self.description_ar else self.description
            )
        return d
