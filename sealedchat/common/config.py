"""
Configuration settings for the encrypted chat system.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path


class Config:
    """Central configuration class for all system settings."""

    def __init__(self) -> None:
        # Identity keys (RSA-OAEP, SHA-256)
        self.RSA_KEY_SIZE: int = 2048
        self.RSA_PUBLIC_EXPONENT: int = 65537

        # Conversation keys and message encryption (AES-256-GCM)
        self.CONVERSATION_KEY_BYTES: int = 32
        self.IV_LENGTH: int = 12  # 96-bit GCM nonce, fresh per message

        # Versioned serialization schemes
        self.IDENTITY_RECORD_VERSION: int = 1
        self.PUBLIC_KEY_SCHEME: str = "v1:RSA-OAEP-2048-SHA256"
        self.KEY_SCHEME: str = "v1:RSA-OAEP-SHA256+AES-256-GCM"

        # Messaging
        self.MESSAGE_LIMIT: int = 300  # Most recent messages delivered per batch
        self.DECRYPT_PLACEHOLDER: str = "[Unable to decrypt]"

        # Directory publication
        self.PUBLISH_RETRIES: int = 3
        self.PUBLISH_BACKOFF: float = 0.5  # Seconds, doubled after each attempt

        # Server settings
        self.SERVER_HOST: str = os.getenv("SEALEDCHAT_SERVER_HOST", "127.0.0.1")
        self.SERVER_PORT: int = int(os.getenv("SEALEDCHAT_SERVER_PORT", "8000"))
        self.SERVER_URL: str = os.getenv(
            "SEALEDCHAT_SERVER_URL", f"http://{self.SERVER_HOST}:{self.SERVER_PORT}"
        )
        self.HTTP_TIMEOUT: float = float(os.getenv("SEALEDCHAT_HTTP_TIMEOUT", "10"))
        self.POLL_INTERVAL: float = float(os.getenv("SEALEDCHAT_POLL_INTERVAL", "1.0"))

        # File paths
        self.BASE_DIR: Path = Path(__file__).parent.parent
        self.DATA_DIR: Path = Path(
            os.getenv("SEALEDCHAT_DATA_DIR", str(Path.home() / ".sealedchat"))
        )
        self.KEYSTORE_DIR: Path = Path(
            os.getenv("SEALEDCHAT_KEYSTORE_DIR", str(self.DATA_DIR / "keys"))
        )
        self.STORE_FILE_PATH: Path = self.DATA_DIR / "server_store.json"

        # Logging
        self.LOG_LEVEL: int = getattr(
            logging, os.getenv("SEALEDCHAT_LOG_LEVEL", "INFO").upper(), logging.INFO
        )
