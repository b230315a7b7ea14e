from __future__ import annotations

import json
import time
from base64 import b64decode, b64encode
from typing import List
from unittest.mock import patch

from fastapi.testclient import TestClient
from itsdangerous import TimestampSigner

from coaching.prompts import default_instruction
from coaching.transport import ErrorKind, TransportError
from sanad_server.auth import AuthService, get_current_user, require_admin
from sanad_server.db import DatabaseTemporaryError
from sanad_server.models import User
from sanad_server.server import create_app

ADMIN = {"claims": {"sub": "admin-1", "email": "admin@sanad.test"}, "expires_at": 9999999999}

RESULT = {
    "status": "complete",
    "strengths": ["Strategic thinking"],
    "passion": "Helping others grow",
    "career_paths": ["Instructor", "Trainer", "EdTech founder"],
    "reliability_score": 85,
    "advice": "Start a small workshop.",
}


class DummyTransport:
    def complete(self, messages, language) -> str:  # pragma: no cover - trivial
        return "ok"


class SpyTransport:
    """Spy transport that records the last call it received."""
    def __init__(self, reply: str = "ok", error: Exception | None = None):
        self.reply = reply
        self.error = error
        self.calls: List[tuple] = []

    def complete(self, messages, language) -> str:
        self.calls.append((list(messages), language))
        if self.error is not None:
            raise self.error
        return self.reply


def _client(storage, transport=None, missing_config=None) -> TestClient:
    app = create_app(config_path=missing_config, transport=transport or DummyTransport(), storage=storage)
    return TestClient(app)


def test_health(storage, missing_config, clean_env):
    r = _client(storage, missing_config=missing_config).get("/health")
    assert r.status_code == 200
    assert r.json()["ok"] is True
    assert r.json()["database"]["status"] == "healthy"


def test_chat_requires_messages(storage, missing_config, clean_env):
    r = _client(storage, missing_config=missing_config).post("/api/chat", json={"language": "en"})
    assert r.status_code == 400
    assert r.json() == {"error": "Messages array required"}


def test_chat_roundtrip_logs_analytics(storage, missing_config, clean_env):
    spy = SpyTransport(reply="What drives you?")
    client = _client(storage, spy, missing_config)

    r = client.post("/api/chat", json={
        "messages": [{"role": "assistant", "content": "Hello"}, {"role": "user", "content": "I teach"}],
        "language": "ar",
        "sessionId": "sess-1",
        "stage": "outcome",
    })
    assert r.status_code == 200
    assert r.json() == {"content": "What drives you?"}

    messages, language = spy.calls[-1]
    assert language == "ar"
    assert messages[-1] == {"role": "user", "content": "I teach"}

    assert storage.count_sessions() == 1
    assert storage.count_messages() == 2


def test_chat_accepts_history_alias(storage, missing_config, clean_env):
    spy = SpyTransport()
    client = _client(storage, spy, missing_config)
    r = client.post("/api/chat", json={"history": [{"role": "user", "content": "hi"}]})
    assert r.status_code == 200
    assert spy.calls[-1][1] == "en"
    # No sessionId, no analytics.
    assert storage.count_messages() == 0


def test_chat_error_kinds_map_to_status(storage, missing_config, clean_env):
    cases = [
        (ErrorKind.INVALID_CREDENTIAL, 401),
        (ErrorKind.RATE_LIMITED, 429),
        (ErrorKind.NO_RESPONSE, 502),
        (ErrorKind.UNKNOWN, 500),
    ]
    for kind, status in cases:
        spy = SpyTransport(error=TransportError(kind, "failed"))
        r = _client(storage, spy, missing_config).post(
            "/api/chat", json={"messages": [{"role": "user", "content": "hi"}], "sessionId": "s-err"}
        )
        assert r.status_code == status
        assert r.json()["kind"] == kind.value

    # The user turn is still logged even when the model call fails.
    assert storage.count_sessions() == 1
    assert storage.count_messages() == len(cases)


def test_chat_survives_analytics_failure(storage, missing_config, clean_env, monkeypatch):
    def broken(*args, **kwargs):
        raise DatabaseTemporaryError("down")

    monkeypatch.setattr(storage, "get_or_create_session", broken)
    r = _client(storage, SpyTransport(reply="fine"), missing_config).post(
        "/api/chat", json={"messages": [{"role": "user", "content": "hi"}], "sessionId": "s"}
    )
    assert r.status_code == 200
    assert r.json()["content"] == "fine"


def test_resources_by_field(storage, missing_config, clean_env):
    client = _client(storage, missing_config=missing_config)
    r = client.get("/api/resources", params={"field": "design", "language": "ar"})
    assert r.status_code == 200
    items = r.json()["resources"]
    assert items and all(i["field"] == "design" for i in items)
    assert all("displayName" in i for i in items)


def test_report_pdf_download(storage, missing_config, clean_env):
    r = _client(storage, missing_config=missing_config).post(
        "/api/report/pdf", json={"result": RESULT, "language": "en"}
    )
    assert r.status_code == 200
    assert r.headers["content-type"] == "application/pdf"
    assert "sanad-report.pdf" in r.headers["content-disposition"]
    assert r.content.startswith(b"%PDF")


def test_report_pdf_rejects_bad_result(storage, missing_config, clean_env):
    bad = dict(RESULT, status="pending")
    r = _client(storage, missing_config=missing_config).post("/api/report/pdf", json={"result": bad})
    assert r.status_code == 422


def test_session_feedback_roundtrip(storage, missing_config, clean_env):
    client = _client(storage, missing_config=missing_config)
    assert client.get("/api/feedback/session/s1").json() == {"feedback": None}

    r = client.post("/api/feedback/session", json={"sessionId": "s1", "rating": 4, "comment": "useful"})
    assert r.status_code == 200
    client.post("/api/feedback/session", json={"sessionId": "s1", "rating": 5})

    fb = client.get("/api/feedback/session/s1").json()["feedback"]
    assert fb["rating"] == 5
    assert fb["comment"] is None

    assert client.post("/api/feedback/session", json={"sessionId": "s1", "rating": 9}).status_code == 422


def test_message_feedback(storage, missing_config, clean_env):
    client = _client(storage, missing_config=missing_config)
    r = client.post("/api/feedback/message", json={"sessionId": "s1", "messageId": "m1", "rating": "up"})
    assert r.status_code == 200
    assert r.json()["feedback"]["rating"] == "up"
    bad = client.post("/api/feedback/message", json={"sessionId": "s1", "messageId": "m1", "rating": "meh"})
    assert bad.status_code == 422


def test_admin_requires_login(storage, missing_config, clean_env):
    client = _client(storage, missing_config=missing_config)
    r = client.get("/api/admin/stats")
    assert r.status_code == 401
    assert r.json() == {"message": "Unauthorized"}


def test_admin_rejects_non_admin(storage, missing_config, clean_env, monkeypatch):
    monkeypatch.setenv("ADMIN_EMAIL", "admin@sanad.test")
    app = create_app(config_path=missing_config, transport=DummyTransport(), storage=storage)
    app.dependency_overrides[get_current_user] = lambda: {"claims": {"sub": "u", "email": "user@x.test"}}
    r = TestClient(app).get("/api/admin/stats")
    assert r.status_code == 403


def test_admin_stats_and_prompts(storage, missing_config, clean_env):
    app = create_app(config_path=missing_config, transport=DummyTransport(), storage=storage)
    app.dependency_overrides[require_admin] = lambda: ADMIN
    client = TestClient(app)

    storage.get_or_create_session("a")
    storage.log_message("a", "user", "hi")
    assert client.get("/api/admin/stats").json() == {"uniqueUsers": 1, "totalMessages": 1, "activeUsers24h": 1}

    prompts = client.get("/api/admin/prompts").json()
    assert prompts["en"] == default_instruction("en")

    r = client.post("/api/admin/prompts", json={"language": "en", "content": "Be brief."})
    assert r.status_code == 200
    assert r.json()["prompt"]["updatedBy"] == "admin-1"
    assert client.get("/api/admin/prompts").json()["en"] == "Be brief."

    assert client.post("/api/admin/prompts", json={"language": "en"}).status_code == 400
    assert client.post("/api/admin/prompts", json={"language": "fr", "content": "x"}).status_code == 400


def test_auth_user_and_login_when_unconfigured(storage, missing_config, clean_env):
    app = create_app(config_path=missing_config, transport=DummyTransport(), storage=storage)
    client = TestClient(app)
    assert client.get("/api/login", follow_redirects=False).status_code == 503

    app.dependency_overrides[get_current_user] = lambda: ADMIN
    r = client.get("/api/auth/user")
    assert r.status_code == 200
    assert r.json()["email"] == "admin@sanad.test"
    assert r.json()["isAdmin"] is False  # no admin email configured


def test_database_outage_is_retryable_503(storage, missing_config, clean_env):
    client = _client(storage, missing_config=missing_config)
    outage = DatabaseTemporaryError("Database temporarily unavailable after 5 attempts")
    with patch.object(storage, "get_session_feedback", side_effect=outage):
        r = client.get("/api/feedback/session/s1")
    assert r.status_code == 503
    assert r.json()["retryable"] is True


# -----------------------------
# Cookie sessions (no dependency overrides)
# -----------------------------
SESSION_SECRET = "dev-only-session-secret"


def _sign_session(user) -> str:
    data = b64encode(json.dumps({"user": user}).encode("utf-8"))
    return TimestampSigner(SESSION_SECRET).sign(data).decode("utf-8")


def _read_session(value: str) -> dict:
    return json.loads(b64decode(TimestampSigner(SESSION_SECRET).unsign(value.encode("utf-8"))))


def _logged_in(app, user) -> TestClient:
    client = TestClient(app)
    client.cookies.set("session", _sign_session(user))
    return client


def _configure_oidc(monkeypatch):
    monkeypatch.setenv("ISSUER_URL", "https://issuer.test")
    monkeypatch.setenv("OIDC_CLIENT_ID", "sanad")


def test_current_user_from_session_cookie(storage, missing_config, clean_env):
    app = create_app(config_path=missing_config, transport=DummyTransport(), storage=storage)
    user = {"sid": None, "claims": {"sub": "u1", "email": "u1@sanad.test"}, "expires_at": int(time.time()) + 3600}
    r = _logged_in(app, user).get("/api/auth/user")
    assert r.status_code == 200
    assert r.json()["id"] == "u1"


def test_expired_session_is_refreshed(storage, missing_config, clean_env, monkeypatch):
    async def refreshed(self, user):
        return dict(user, expires_at=int(time.time()) + 3600)

    monkeypatch.setattr(AuthService, "refresh", refreshed)
    app = create_app(config_path=missing_config, transport=DummyTransport(), storage=storage)
    user = {"sid": "s-1", "claims": {"sub": "u1", "email": "u1@sanad.test"}, "expires_at": int(time.time()) - 60}

    r = _logged_in(app, user).get("/api/auth/user")
    assert r.status_code == 200
    assert r.json()["email"] == "u1@sanad.test"
    assert _read_session(r.cookies["session"])["user"]["expires_at"] > time.time()


def test_expired_session_without_refresh_is_cleared(storage, missing_config, clean_env, monkeypatch):
    async def no_refresh(self, user):
        return None

    monkeypatch.setattr(AuthService, "refresh", no_refresh)
    app = create_app(config_path=missing_config, transport=DummyTransport(), storage=storage)
    row = storage.create_auth_session("u1", "at", "rt", int(time.time()) - 60)
    user = {"sid": row.sid, "claims": {"sub": "u1"}, "expires_at": int(time.time()) - 60}

    r = _logged_in(app, user).get("/api/admin/stats")
    assert r.status_code == 401
    assert r.json() == {"message": "Unauthorized"}
    assert "session=null" in r.headers["set-cookie"]
    assert storage.get_auth_session(row.sid) is None


def test_refresh_reads_token_from_server_side_store(storage, missing_config, clean_env, monkeypatch):
    _configure_oidc(monkeypatch)
    app = create_app(config_path=missing_config, transport=DummyTransport(), storage=storage)
    row = storage.create_auth_session("u1", "old-access", "refresh-1", int(time.time()) - 60)
    seen = {}

    async def fetch_access_token(**kwargs):
        seen.update(kwargs)
        return {"access_token": "new-access", "expires_at": int(time.time()) + 3600}

    monkeypatch.setattr(app.state.auth.oauth.oidc, "fetch_access_token", fetch_access_token)
    user = {"sid": row.sid, "claims": {"sub": "u1", "email": "u1@sanad.test"}, "expires_at": int(time.time()) - 60}

    r = _logged_in(app, user).get("/api/auth/user")
    assert r.status_code == 200
    assert seen == {"grant_type": "refresh_token", "refresh_token": "refresh-1"}

    stored = storage.get_auth_session(row.sid)
    assert stored.access_token == "new-access"
    assert stored.refresh_token == "refresh-1"
    cookie = _read_session(r.cookies["session"])["user"]
    assert set(cookie) == {"sid", "claims", "expires_at"}
    assert cookie["sid"] == row.sid


def test_callback_keeps_tokens_out_of_the_cookie(storage, missing_config, clean_env, monkeypatch):
    _configure_oidc(monkeypatch)
    monkeypatch.setenv("ADMIN_EMAIL", "admin@sanad.test")
    app = create_app(config_path=missing_config, transport=DummyTransport(), storage=storage)
    oidc = app.state.auth.oauth.oidc

    async def authorize_access_token(request, **kwargs):
        return {
            "access_token": "at",
            "refresh_token": "rt",
            "expires_at": int(time.time()) + 3600,
            "userinfo": {"sub": "u-9", "email": "Admin@Sanad.test", "given_name": "Huda"},
        }

    async def load_server_metadata():
        return {"end_session_endpoint": "https://issuer.test/logout"}

    monkeypatch.setattr(oidc, "authorize_access_token", authorize_access_token)
    monkeypatch.setattr(oidc, "load_server_metadata", load_server_metadata)
    client = TestClient(app)

    r = client.get("/api/callback", follow_redirects=False)
    assert r.status_code == 307
    cookie = _read_session(r.cookies["session"])["user"]
    assert set(cookie) == {"sid", "claims", "expires_at"}
    assert storage.get_auth_session(cookie["sid"]).refresh_token == "rt"
    with storage._sessions() as db:
        assert db.get(User, "u-9").first_name == "Huda"

    me = client.get("/api/auth/user").json()
    assert me["isAdmin"] is True
    assert client.get("/api/admin/stats").status_code == 200

    out = client.get("/api/logout", follow_redirects=False)
    assert out.headers["location"].startswith("https://issuer.test/logout?")
    assert storage.get_auth_session(cookie["sid"]) is None
    assert client.get("/api/auth/user").status_code == 401
