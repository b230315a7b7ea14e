"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import sys
from pathlib import Path
import pytest

# Ensure src/ is on the import path (for local imports without installing as package)
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

ENV_VARS = [
    "SANAD_CONFIG",
    "DATABASE_URL",
    "GEMINI_API_KEY",
    "SESSION_SECRET",
    "ADMIN_EMAIL",
    "ISSUER_URL",
    "OIDC_CLIENT_ID",
    "OIDC_CLIENT_SECRET",
    "PORT",
]


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the root directory of the project."""
    return Path(__file__).resolve().parent.parent


@pytest.fixture(scope="function")
def tmp_data_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for state files and reports during tests."""
    d = tmp_path / "data"
    d.mkdir(parents=True, exist_ok=True)
    return d


@pytest.fixture(scope="function")
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Ensure tests run with a clean environment (no leftover vars)."""
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    import os
    for var in [k for k in os.environ if k.startswith("SANAD__")]:
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture(scope="function")
def missing_config(tmp_path: Path) -> str:
    """A config path that does not exist, so only built-in defaults apply."""
    return str(tmp_path / "absent.yaml")


@pytest.fixture(scope="function")
def storage():
    """In-memory SQLite store with tables created."""
    from sanad_server.db import RetryPolicy, create_db_engine
    from sanad_server.storage import Storage

    store = Storage(create_db_engine("sqlite://"), RetryPolicy(max_attempts=2, base_delay=0.0))
    store.create_all()
    return store
