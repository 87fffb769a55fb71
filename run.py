"""EKATAN entry point.

Starts the FastAPI app under uvicorn.

Port selection:
  1. EKATAN_PORT env var (explicit override, fails hard if taken)
  2. PORT from settings (default 3000)
  3. Auto-scan: tries up to 20 consecutive ports until one is free
"""

from __future__ import annotations

import logging
import os
import socket

import uvicorn

from ekatan.config import get_settings
from ekatan.main import create_app

logger = logging.getLogger("ekatan.run")

MAX_PORT_SCAN = 20


def _is_port_available(host: str, port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.settimeout(0.1)
        try:
            s.bind((host, port))
            return True
        except OSError:
            return False


def find_available_port(host: str, default_port: int) -> int:
    """Find an available port for the server.

    If EKATAN_PORT is set, uses that exact port (no fallback).
    Otherwise tries default_port, then scans up to MAX_PORT_SCAN consecutive
    ports from there.
    """
    env_port = os.environ.get("EKATAN_PORT")
    if env_port:
        port = int(env_port)
        if _is_port_available(host, port):
            return port
        logger.error("EKATAN_PORT=%d is already in use", port)
        raise SystemExit(f"Port {port} (from EKATAN_PORT) is already in use")

    for offset in range(MAX_PORT_SCAN):
        candidate = default_port + offset
        if _is_port_available(host, candidate):
            if offset > 0:
                logger.info("Default port %d in use, using %d instead", default_port, candidate)
            return candidate

    raise SystemExit(
        f"No available port found in range {default_port}-{default_port + MAX_PORT_SCAN - 1}. "
        f"Set EKATAN_PORT to a specific open port."
    )


def main() -> None:
    settings = get_settings()
    app = create_app(settings)

    port = find_available_port(settings.HOST, settings.PORT)
    logger.info("Starting EKATAN on %s:%d", settings.HOST, port)

    uvicorn.run(
        app,
        host=settings.HOST,
        port=port,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
