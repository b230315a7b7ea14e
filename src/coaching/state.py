"""Per-install client state: session id, provider key, language (thread-safe, atomic).

This plays the part browser local storage plays for the web client. The file
never leaves the machine; the backend only ever sees the session id.
"""
from __future__ import annotations

import json
import os
import tempfile
import threading
import uuid
from pathlib import Path
from typing import Any, Dict, Optional

from .profile import Profile
from .prompts import normalize_language

DEFAULT_STATE_FILE = Path.home() / ".sanad" / "state.json"

SESSION_KEY = "sanad_session_id"
API_KEY = "career_discovery_api_key"
LANGUAGE_KEY = "career_discovery_language"
PROFILE_KEY = "career_discovery_profile"


# -----------------------------
# Helpers
# -----------------------------
def _atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("w", encoding="utf-8", delete=False, dir=str(path.parent)) as tmp:
        tmp.write(text)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp_name = tmp.name
    os.replace(tmp_name, path)


def _read_json(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


# -----------------------------
# LocalState
# -----------------------------
class LocalState:
    """Small JSON key/value document with the keys the coaching client needs."""

    def __init__(self, path: str | os.PathLike | None = None) -> None:
        self.path = Path(path).expanduser() if path else DEFAULT_STATE_FILE
        self._lock = threading.RLock()

    # --------- raw access ----------
    def load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = _read_json(self.path)
        except (OSError, ValueError):
            # Corruption fallback: keep a backup and start fresh.
            with self._lock:
                bad = self.path.with_suffix(".corrupt.json")
                try:
                    self.path.replace(bad)
                except OSError:
                    pass
            return {}
        return data if isinstance(data, dict) else {}

    def _update(self, **changes: Any) -> None:
        with self._lock:
            data = self.load()
            for key, value in changes.items():
                if value is None:
                    data.pop(key, None)
                else:
                    data[key] = value
            _atomic_write_text(self.path, json.dumps(data, ensure_ascii=False, indent=2))

    # --------- session id ----------
    def get_session_id(self) -> str:
        with self._lock:
            sid = self.load().get(SESSION_KEY)
            if not sid:
                sid = self.new_session_id()
            return sid

    def new_session_id(self) -> str:
        sid = str(uuid.uuid4())
        self._update(**{SESSION_KEY: sid})
        return sid

    def clear_session(self) -> None:
        self._update(**{SESSION_KEY: None})

    # --------- provider credential ----------
    def get_api_key(self) -> Optional[str]:
        return self.load().get(API_KEY)

    def set_api_key(self, key: str) -> None:
        self._update(**{API_KEY: key})

    def remove_api_key(self) -> None:
        self._update(**{API_KEY: None})

    def has_api_key(self) -> bool:
        key = self.get_api_key()
        return bool(key and key.strip())

    # --------- language ----------
    def get_language(self) -> str:
        return normalize_language(self.load().get(LANGUAGE_KEY))

    def set_language(self, language: str) -> None:
        self._update(**{LANGUAGE_KEY: normalize_language(language)})

    # --------- intake profile ----------
    def get_profile(self) -> Optional[Profile]:
        """The stored intake answers; None when the intake has never run."""
        data = self.load().get(PROFILE_KEY)
        return Profile.from_dict(data) if isinstance(data, dict) else None

    def set_profile(self, profile: Profile) -> None:
        self._update(**{PROFILE_KEY: profile.to_dict()})

    def clear_profile(self) -> None:
        self._update(**{PROFILE_KEY: None})
