"""Configuration loading utilities for the Sanad backend and CLI.

This module handles layered configuration:
1. Explicit path argument (highest precedence)
2. Environment variable SANAD_CONFIG
3. Fallback to "config/default.yaml"

Missing files fall back to built-in defaults. Afterwards, environment variables
with prefix ``SANAD__`` override single keys (e.g.
SANAD__DATABASE__URL=sqlite:///tmp/x.db), and a handful of conventional
variables (DATABASE_URL, GEMINI_API_KEY, ...) are honoured last.
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Tuple

import yaml

logger = logging.getLogger(__name__)

DEFAULTS: Dict[str, Any] = {
    "server": {
        "host": "0.0.0.0",
        "port": 5000,
        "cors_origins": ["*"],
        "session_secret": "dev-only-session-secret",
        "session_max_age": 7 * 24 * 60 * 60,
        "https_only": False,
    },
    "llm": {
        "provider": "gemini",
        "model": "gemini-2.5-flash",
        "base_url": "https://generativelanguage.googleapis.com",
        "api_key": "",
        "timeout": 60,
    },
    "database": {
        "url": "sqlite:///data/sanad.db",
        "max_attempts": 5,
        "base_delay": 0.5,
        "max_delay": 8.0,
        "echo": False,
    },
    "auth": {
        "issuer_url": "",
        "client_id": "",
        "client_secret": "",
        "admin_email": "",
        "scope": "openid email profile offline_access",
    },
    "coaching": {
        "min_user_turns": 2,
        "test_passphrase": "",
    },
    "client": {
        "transport": "gemini",
        "proxy_url": "http://127.0.0.1:5000",
        "state_file": "~/.sanad/state.json",
        "report_dir": ".",
    },
}

# Conventional environment variables -> config path
ENV_ALIASES: Dict[str, Tuple[str, str]] = {
    "DATABASE_URL": ("database", "url"),
    "GEMINI_API_KEY": ("llm", "api_key"),
    "SESSION_SECRET": ("server", "session_secret"),
    "ADMIN_EMAIL": ("auth", "admin_email"),
    "ISSUER_URL": ("auth", "issuer_url"),
    "OIDC_CLIENT_ID": ("auth", "client_id"),
    "OIDC_CLIENT_SECRET": ("auth", "client_secret"),
    "PORT": ("server", "port"),
}


def _parse_scalar(value: str) -> Any:
    if value.lower() in {"true", "false"}:
        return value.lower() == "true"
    try:
        if "." in value:
            return float(value)
        return int(value)
    except ValueError:
        return value


def _deep_merge(base: Dict[str, Any], extra: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _apply_env_overrides(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides with prefix SANAD__."""
    prefix = "SANAD__"
    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue
        # e.g., SANAD__DATABASE__URL -> cfg["database"]["url"]
        parts = key[len(prefix):].lower().split("__")
        sub = cfg
        for p in parts[:-1]:
            if p not in sub or not isinstance(sub[p], dict):
                sub[p] = {}
            sub = sub[p]
        sub[parts[-1]] = _parse_scalar(value)
    return cfg


def _apply_env_aliases(cfg: Dict[str, Any]) -> Dict[str, Any]:
    for var, (section, key) in ENV_ALIASES.items():
        value = os.environ.get(var)
        if value:
            cfg.setdefault(section, {})[key] = _parse_scalar(value) if key == "port" else value
    return cfg


def load_config(path: str | None = None) -> Dict[str, Any]:
    """Load YAML configuration.

    Parameters
    ----------
    path : str | None
        Optional path to a configuration file. If not provided, the
        environment variable ``SANAD_CONFIG`` is consulted. As a
        last resort ``config/default.yaml`` is used.

    Returns
    -------
    Dict[str, Any]
        Defaults merged with the file, with environment overrides applied.
    """
    if path is None:
        path = os.environ.get("SANAD_CONFIG", "config/default.yaml")

    cfg = copy.deepcopy(DEFAULTS)
    path_obj = Path(path)
    if not path_obj.exists():
        logger.warning("config file not found at %s; using defaults.", path_obj)
        return _apply_env_aliases(_apply_env_overrides(cfg))

    with path_obj.open("r", encoding="utf-8") as f:
        try:
            loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise RuntimeError(f"Failed to parse config file {path_obj}: {e}") from e

    if not isinstance(loaded, dict):
        raise RuntimeError(f"Invalid config format in {path_obj}, expected dict.")

    return _apply_env_aliases(_apply_env_overrides(_deep_merge(cfg, loaded)))
