"""
Entry point for the chat backend server.
"""

import logging
from pathlib import Path

import uvicorn

from sealedchat.common.config import Config

from .core import ChatServer


def start_server(config: Config | None = None, store_file_path: Path | None = None) -> None:
    """Start the chat backend server."""
    if config is None:
        config = Config()
    logging.basicConfig(level=config.LOG_LEVEL)
    server = ChatServer(
        log_level=config.LOG_LEVEL,
        server_host=config.SERVER_HOST,
        server_port=config.SERVER_PORT,
        store_file_path=store_file_path,
    )
    uvicorn.run(server.app, host=server.server_host, port=server.server_port)
