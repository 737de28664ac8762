"""
Entrypoint for the Pitchside API process (``pitchside-api``).

The hub session and prediction store live inside this process, so uvicorn
always runs a single worker. Log records go through the structlog handler
installed by the app lifespan rather than uvicorn's own dictConfig.
"""
from __future__ import annotations

import os

import uvicorn

from shared.config import get_settings


def bind_port(default: int) -> int:
    """PORT from the hosting platform wins over the configured api_port."""
    raw = os.environ.get("PORT", "").strip()
    return int(raw) if raw.isdigit() else default


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "api.app:app",
        host=settings.api_host,
        port=bind_port(settings.api_port),
        workers=1,
        log_config=None,
        log_level=settings.log_level.lower(),
        access_log=False,
        timeout_keep_alive=30,
    )


if __name__ == "__main__":
    main()
