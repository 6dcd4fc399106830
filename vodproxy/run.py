"""Programmatic uvicorn entry point for vodproxy.

Reads host and port from the loaded config (0.0.0.0:8080 by default, PORT env
overrides) and starts uvicorn.

Usage:
    python -m vodproxy.run
    vodproxy                  # via pyproject.toml [project.scripts]
"""

from __future__ import annotations

import uvicorn

from vodproxy.config import load_config

# HTTP keep-alive timeout in seconds.
UVICORN_TIMEOUT_KEEP_ALIVE: int = 5


def main() -> None:
    """Start the vodproxy server.

    Raises:
        SystemExit: Propagated from load_config() on config errors.
    """
    config = load_config()

    uvicorn.run(
        "vodproxy.main:app",
        host=config.server.host,
        port=config.server.port,
        timeout_keep_alive=UVICORN_TIMEOUT_KEEP_ALIVE,
    )


if __name__ == "__main__":
    main()
