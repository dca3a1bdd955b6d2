"""
Chat backend server using FastAPI.

The server is the shared store that must never be able to read messages:
it keeps the public-key directory, conversation records with their wrapped
keys, and the ciphertext message log.
"""

from __future__ import annotations

import logging
from pathlib import Path

from fastapi import FastAPI

from sealedchat.common import setup_logger
from sealedchat.common.config import Config

from .routes import ChatRoutes
from .services import ChatBackendService


class ChatServer:
    """Main backend server class wiring service and routes."""

    def __init__(
        self,
        log_level: int | None = None,
        server_host: str | None = None,
        server_port: int | None = None,
        store_file_path: Path | None = None,
        message_limit: int | None = None,
        *,
        persist: bool = True,
    ):
        config = Config()
        self.logger = setup_logger(
            logging.getLogger(__name__),
            log_level if log_level is not None else config.LOG_LEVEL,
        )
        self.server_host = server_host or config.SERVER_HOST
        self.server_port = server_port or config.SERVER_PORT
        self.store_file_path = (
            (store_file_path or config.STORE_FILE_PATH) if persist else None
        )
        self.message_limit = message_limit or config.MESSAGE_LIMIT

        self.service = ChatBackendService(
            store_file_path=self.store_file_path,
            message_limit=self.message_limit,
            logger=self.logger,
        )
        self.app = FastAPI(title="sealedchat backend")
        ChatRoutes(self.service).setup_routes(self.app)

        self.logger.info(
            "Server configured for http://%s:%s", self.server_host, self.server_port
        )
        if self.store_file_path is not None:
            self.logger.info("Persisting stores to %s", self.store_file_path)
