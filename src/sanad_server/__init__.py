"""Sanad backend: chat proxy, analytics, feedback, resources and admin API.

The FastAPI application factory lives in ``sanad_server/server.py``
(see :func:`create_app`).

Typical usage
-------------
from sanad_server import create_app
app = create_app()

or, from the provided launcher:

python scripts/run_server.py --host 0.0.0.0 --port 5000
"""

from __future__ import annotations

__all__ = ["create_app", "__version__", "get_version"]

__version__ = "0.1.0"


def get_version() -> str:
    """Return the package version."""
    return __version__


def create_app(*args, **kwargs):
    """Return a configured FastAPI application.

    Forwards to :func:`sanad_server.server.create_app`; the import is deferred
    so ``import sanad_server`` stays cheap for tools that only need metadata.
    """
    from .server import create_app as _create_app

    return _create_app(*args, **kwargs)
