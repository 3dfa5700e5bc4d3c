"""
Entry point for the relay server.
"""

from __future__ import annotations

import uvicorn

from peerchat.common.config import Config

from .core import RelayServer


def start_relay(
    config: Config | None = None, host: str | None = None, port: int | None = None
) -> None:
    """Serve the relay with uvicorn until interrupted."""
    if config is None:
        config = Config()
    server = RelayServer(config=config, host=host, port=port)
    uvicorn.run(
        server.app,
        host=server.host,
        port=server.port,
        log_level=config.LOG_LEVEL,
    )


__all__ = ["RelayServer", "start_relay"]
