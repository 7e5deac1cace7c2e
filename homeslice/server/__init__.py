"""
Entry point for the development gateway.
"""

import logging

import uvicorn

from homeslice.common.config import Config

from .core import DevGateway


def start_server(
    config: Config | None = None,
    token: str | None = None,
    host: str | None = None,
    port: int | None = None,
) -> None:
    """Start the development gateway."""
    if config is None:
        config = Config()
    logging.basicConfig(level=config.LOG_LEVEL)
    server = DevGateway(
        token=token, server_host=host, server_port=port, config=config
    )
    server.logger.info(
        "Development gateway on ws://%s:%s", server.server_host, server.server_port
    )
    uvicorn.run(server.app, host=server.server_host, port=server.server_port)
