"""OIDC login for the admin dashboard (Authlib + Starlette cookie sessions).

The signed cookie holds ``request.session["user"]`` as ``{sid, claims,
expires_at}``. Provider tokens never go to the browser: they sit in the
``sessions`` table under ``sid`` and the refresh token is read from there when
an expired login has to be renewed before a protected route runs.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from authlib.integrations.starlette_client import OAuth, OAuthError
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse

from .db import is_retryable_error
from .storage import Storage

logger = logging.getLogger(__name__)

SESSION_KEY = "user"


class AuthService:
    """OIDC client registration, the server-side token store and the admin rule."""

    def __init__(self, auth_cfg: Dict[str, Any], storage: Optional[Storage] = None) -> None:
        self.issuer_url = str(auth_cfg.get("issuer_url") or "").rstrip("/")
        self.client_id = str(auth_cfg.get("client_id") or "")
        self.admin_email = str(auth_cfg.get("admin_email") or "").strip().lower()
        self.scope = str(auth_cfg.get("scope") or "openid email profile offline_access")
        self.storage = storage
        self.oauth = OAuth()
        if self.configured:
            self.oauth.register(
                name="oidc",
                client_id=self.client_id,
                client_secret=auth_cfg.get("client_secret") or None,
                server_metadata_url=f"{self.issuer_url}/.well-known/openid-configuration",
                client_kwargs={"scope": self.scope},
            )

    @property
    def configured(self) -> bool:
        return bool(self.issuer_url and self.client_id)

    @property
    def client(self):
        if not self.configured:
            raise HTTPException(status_code=503, detail="Authentication is not configured")
        return self.oauth.oidc

    def is_admin(self, user: Optional[Dict[str, Any]]) -> bool:
        email = ((user or {}).get("claims") or {}).get("email") or ""
        return bool(self.admin_email) and email.strip().lower() == self.admin_email

    def open_session(self, token: Dict[str, Any]) -> Dict[str, Any]:
        """Store the tokens server-side; returns the cookie payload."""
        user = session_user(token)
        if self.storage is not None:
            row = self.storage.create_auth_session(
                user["claims"].get("sub"),
                token.get("access_token"),
                token.get("refresh_token"),
                user["expires_at"],
            )
            user["sid"] = row.sid
        return user

    def close_session(self, user: Optional[Dict[str, Any]]) -> None:
        sid = (user or {}).get("sid")
        if not sid or self.storage is None:
            return
        try:
            self.storage.delete_auth_session(sid)
        except Exception:
            logger.exception("Failed to delete login session")

    async def refresh(self, user: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Exchange the stored refresh token; returns the updated cookie payload or None."""
        sid = user.get("sid")
        if not sid or self.storage is None or not self.configured:
            return None
        record = self.storage.get_auth_session(sid)
        if record is None or not record.refresh_token:
            return None
        try:
            token = await self.oauth.oidc.fetch_access_token(
                grant_type="refresh_token", refresh_token=record.refresh_token
            )
        except Exception as e:
            logger.warning("Token refresh failed: %s", e)
            return None
        refreshed = session_user(token, previous=user)
        self.storage.update_auth_session(
            sid, token.get("access_token"), token.get("refresh_token"), refreshed["expires_at"]
        )
        return refreshed


def session_user(token: Dict[str, Any], previous: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Build the cookie payload from a token response (no tokens included)."""
    previous = previous or {}
    claims = dict(token.get("userinfo") or previous.get("claims") or {})
    expires_at = token.get("expires_at") or claims.get("exp")
    return {
        "sid": previous.get("sid"),
        "claims": claims,
        "expires_at": int(expires_at) if expires_at else None,
    }


def get_auth(request: Request) -> AuthService:
    return request.app.state.auth


async def get_current_user(request: Request, auth: AuthService = Depends(get_auth)) -> Dict[str, Any]:
    user = request.session.get(SESSION_KEY)
    if not user or not user.get("expires_at"):
        raise HTTPException(status_code=401, detail="Unauthorized")

    if int(time.time()) <= int(user["expires_at"]):
        return user

    refreshed = await auth.refresh(user)
    if refreshed is None:
        auth.close_session(request.session.pop(SESSION_KEY, None))
        raise HTTPException(status_code=401, detail="Unauthorized")
    request.session[SESSION_KEY] = refreshed
    return refreshed


async def require_admin(
    user: Dict[str, Any] = Depends(get_current_user),
    auth: AuthService = Depends(get_auth),
) -> Dict[str, Any]:
    if not auth.is_admin(user):
        raise HTTPException(status_code=403, detail="Forbidden: Admin access only")
    return user


def create_auth_router() -> APIRouter:
    router = APIRouter(prefix="/api")

    @router.get("/login")
    async def login(request: Request, auth: AuthService = Depends(get_auth)):
        redirect_uri = str(request.url_for("auth_callback"))
        return await auth.client.authorize_redirect(request, redirect_uri, prompt="login consent")

    @router.get("/callback", name="auth_callback")
    async def callback(request: Request, auth: AuthService = Depends(get_auth)):
        client = auth.client
        try:
            token = await client.authorize_access_token(request)
        except OAuthError as e:
            logger.warning("OIDC callback rejected: %s", e.error)
            return RedirectResponse("/api/login")
        except Exception as e:
            if is_retryable_error(e):
                logger.error("Network error during auth callback: %s", e)
                return RedirectResponse("/api/login?error=network")
            raise

        user = auth.open_session(token)
        request.session[SESSION_KEY] = user
        if auth.storage is not None and user["claims"].get("sub"):
            try:
                auth.storage.upsert_user(user["claims"])
            except Exception:
                logger.exception("Failed to store user %s", user["claims"].get("sub"))
        return RedirectResponse("/")

    @router.get("/logout")
    async def logout(request: Request, auth: AuthService = Depends(get_auth)):
        auth.close_session(request.session.pop(SESSION_KEY, None))
        home = str(request.base_url).rstrip("/")
        if not auth.configured:
            return RedirectResponse("/")
        try:
            metadata = await auth.oauth.oidc.load_server_metadata()
        except Exception as e:
            logger.warning("Could not load OIDC metadata for logout: %s", e)
            return RedirectResponse("/")
        end_session = metadata.get("end_session_endpoint")
        if not end_session:
            return RedirectResponse("/")
        query = urlencode({"client_id": auth.client_id, "post_logout_redirect_uri": home})
        return RedirectResponse(f"{end_session}?{query}")

    @router.get("/auth/user")
    async def auth_user(user: Dict[str, Any] = Depends(get_current_user), auth: AuthService = Depends(get_auth)):
        claims = user.get("claims") or {}
        return JSONResponse({
            "id": claims.get("sub"),
            "email": claims.get("email"),
            "firstName": claims.get("first_name") or claims.get("given_name"),
            "lastName": claims.get("last_name") or claims.get("family_name"),
            "profileImageUrl": claims.get("profile_image_url") or claims.get("picture"),
            "isAdmin": auth.is_admin(user),
        })

    return router
