"""Boundary to the remote language-model service.

One operation matters to the rest of the code: ``complete(messages, language)``
returns the model's reply text or raises a classified :class:`TransportError`.
Which implementation is used is decided once, from configuration, by
:func:`create_transport`.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Union

import httpx

from .prompts import default_instruction, normalize_language
from .transcript import Message

logger = logging.getLogger(__name__)

WireMessage = Mapping[str, Any]
Instructions = Callable[[str], str]

DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"
DEFAULT_TIMEOUT = 60.0


# -----------------------------
# Errors
# -----------------------------
class ErrorKind(str, Enum):
    INVALID_CREDENTIAL = "invalid_credential"
    RATE_LIMITED = "rate_limited"
    NO_RESPONSE = "no_response"
    UNKNOWN = "unknown"


_USER_MESSAGES: Dict[ErrorKind, Dict[str, str]] = {
    ErrorKind.INVALID_CREDENTIAL: {
        "en": "Invalid API key. Please check your settings.",
        "ar": "مفتاح API غير صالح. يرجى التحقق من الإعدادات.",
    },
    ErrorKind.RATE_LIMITED: {
        "en": "Rate limit exceeded. Please wait a moment and try again.",
        "ar": "تم تجاوز حد الطلبات. يرجى الانتظار قليلاً والمحاولة مرة أخرى.",
    },
    ErrorKind.NO_RESPONSE: {
        "en": "No response received from the AI. Please try again.",
        "ar": "لم يتم استلام رد من الذكاء الاصطناعي. يرجى المحاولة مرة أخرى.",
    },
    ErrorKind.UNKNOWN: {
        "en": "Failed to get response",
        "ar": "فشل في الحصول على استجابة",
    },
}

# HTTP status the backend answers with for each kind.
STATUS_FOR_KIND: Dict[ErrorKind, int] = {
    ErrorKind.INVALID_CREDENTIAL: 401,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.NO_RESPONSE: 502,
    ErrorKind.UNKNOWN: 500,
}


class TransportError(Exception):
    """A failed model call, classified for display."""

    def __init__(self, kind: ErrorKind, message: str = "", status_code: Optional[int] = None) -> None:
        super().__init__(message or kind.value)
        self.kind = kind
        self.status_code = status_code

    def user_message(self, language: str = "en") -> str:
        return _USER_MESSAGES[self.kind][normalize_language(language)]


def classify_status(status_code: int, body: str = "") -> ErrorKind:
    """Map a provider HTTP failure to an :class:`ErrorKind`."""
    text = body or ""
    if status_code in (401, 403) or "API_KEY_INVALID" in text or "API key not valid" in text:
        return ErrorKind.INVALID_CREDENTIAL
    if status_code == 429 or "RESOURCE_EXHAUSTED" in text:
        return ErrorKind.RATE_LIMITED
    return ErrorKind.UNKNOWN


def _as_wire(messages: Sequence[Union[Message, WireMessage]]) -> List[Dict[str, str]]:
    out: List[Dict[str, str]] = []
    for m in messages:
        if isinstance(m, Message):
            out.append(m.to_wire())
        else:
            out.append({"role": str(m.get("role", "")), "content": str(m.get("content", "") or "")})
    return out


# -----------------------------
# Interface
# -----------------------------
class Transport(Protocol):
    def complete(self, messages: Sequence[Union[Message, WireMessage]], language: str) -> str:
        ...


# -----------------------------
# Gemini (direct, caller-supplied key)
# -----------------------------
class GeminiTransport:
    """Calls the Gemini ``generateContent`` REST endpoint with :mod:`httpx`."""

    def __init__(
        self,
        api_key: str,
        *,
        instructions: Optional[Instructions] = None,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.instructions = instructions or default_instruction
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/v1beta/models/{self.model}:generateContent"

    def build_payload(self, messages: Sequence[Union[Message, WireMessage]], language: str) -> Dict[str, Any]:
        contents = []
        for m in _as_wire(messages):
            if m["role"] == "system":
                continue
            role = "model" if m["role"] == "assistant" else "user"
            contents.append({"role": role, "parts": [{"text": m["content"]}]})
        return {
            "systemInstruction": {"parts": [{"text": self.instructions(normalize_language(language))}]},
            "contents": contents,
        }

    def complete(self, messages: Sequence[Union[Message, WireMessage]], language: str) -> str:
        if not self.api_key:
            raise TransportError(ErrorKind.INVALID_CREDENTIAL, "API key not configured")

        payload = self.build_payload(messages, language)
        headers = {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}
        try:
            if self._client is not None:
                resp = self._client.post(self.endpoint, json=payload, headers=headers, timeout=self.timeout)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    resp = client.post(self.endpoint, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.warning("Gemini request failed: %s", e)
            raise TransportError(ErrorKind.UNKNOWN, f"network error: {e}") from e

        if resp.status_code >= 400:
            kind = classify_status(resp.status_code, resp.text)
            logger.warning("Gemini returned %s (%s)", resp.status_code, kind.value)
            raise TransportError(kind, _provider_message(resp), status_code=resp.status_code)

        text = _candidate_text(resp)
        if not text.strip():
            raise TransportError(ErrorKind.NO_RESPONSE, "empty model reply", status_code=resp.status_code)
        return text


def _provider_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:500]
    err = data.get("error") if isinstance(data, dict) else None
    if isinstance(err, dict):
        return str(err.get("message") or err.get("status") or resp.status_code)
    return str(err or resp.status_code)


def _candidate_text(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return ""
    if not isinstance(data, dict):
        return ""
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    parts = ((candidates[0] or {}).get("content") or {}).get("parts") or []
    return "".join(str(p.get("text", "")) for p in parts if isinstance(p, dict))


# -----------------------------
# Backend proxy
# -----------------------------
class ProxyTransport:
    """Relays the transcript through the Sanad backend's ``/api/chat``."""

    def __init__(
        self,
        base_url: str,
        *,
        session_id: Optional[str] = None,
        stage: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session_id = session_id
        self.stage = stage
        self.timeout = timeout
        self._client = client

    def complete(self, messages: Sequence[Union[Message, WireMessage]], language: str) -> str:
        body: Dict[str, Any] = {"messages": _as_wire(messages), "language": normalize_language(language)}
        if self.session_id:
            body["sessionId"] = self.session_id
        if self.stage:
            body["stage"] = self.stage

        url = f"{self.base_url}/api/chat"
        try:
            if self._client is not None:
                resp = self._client.post(url, json=body, timeout=self.timeout)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    resp = client.post(url, json=body)
        except httpx.HTTPError as e:
            logger.warning("backend request failed: %s", e)
            raise TransportError(ErrorKind.UNKNOWN, f"network error: {e}") from e

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        if resp.status_code >= 400:
            raise TransportError(_kind_from_body(data, resp.status_code), str(data.get("error") or ""), resp.status_code)

        content = str(data.get("content") or "")
        if not content.strip():
            raise TransportError(ErrorKind.NO_RESPONSE, "empty model reply", status_code=resp.status_code)
        return content


def _kind_from_body(data: Dict[str, Any], status_code: int) -> ErrorKind:
    try:
        return ErrorKind(data.get("kind"))
    except ValueError:
        return classify_status(status_code, str(data.get("error") or ""))


# -----------------------------
# Factory
# -----------------------------
def create_transport(
    cfg: Dict[str, Any],
    *,
    api_key: Optional[str] = None,
    session_id: Optional[str] = None,
    instructions: Optional[Instructions] = None,
) -> Transport:
    """Build the configured transport for one (credential, language) session."""
    client_cfg = (cfg or {}).get("client", {}) or {}
    llm_cfg = (cfg or {}).get("llm", {}) or {}
    kind = str(client_cfg.get("transport", "gemini")).lower()
    timeout = float(llm_cfg.get("timeout", DEFAULT_TIMEOUT))

    if kind == "proxy":
        return ProxyTransport(
            client_cfg.get("proxy_url", "http://127.0.0.1:5000"),
            session_id=session_id,
            timeout=timeout,
        )
    if kind == "gemini":
        return GeminiTransport(
            api_key if api_key is not None else str(llm_cfg.get("api_key") or ""),
            instructions=instructions,
            model=str(llm_cfg.get("model", DEFAULT_MODEL)),
            base_url=str(llm_cfg.get("base_url", DEFAULT_BASE_URL)),
            timeout=timeout,
        )
    raise ValueError(f"unknown transport {kind!r}; expected 'gemini' or 'proxy'")
