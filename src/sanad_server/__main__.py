"""Entry point for ``python -m sanad_server`` and the ``sanad-server`` command."""

from __future__ import annotations

import argparse
import logging
import os

import uvicorn

from .config import load_config
from .server import create_app


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Run the Sanad backend server.")
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a YAML config file (default: $SANAD_CONFIG or config/default.yaml)",
    )
    parser.add_argument(
        "--host",
        type=str,
        default=os.environ.get("HOST"),
        help="Host to bind the server to (default: server.host, 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to bind the server to (default: $PORT or server.port, 5000)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=os.environ.get("LOG_LEVEL", "info"),
        help="Logging level (default: info)",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    cfg = load_config(args.config)
    server_cfg = cfg.get("server", {})
    host = args.host or str(server_cfg.get("host", "0.0.0.0"))
    port = args.port or int(server_cfg.get("port", 5000))

    app = create_app(args.config)

    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level=args.log_level.lower(),
    )


if __name__ == "__main__":
    main()
