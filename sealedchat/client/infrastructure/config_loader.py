"""Infrastructure layer: client configuration resolution.
"""

from __future__ import annotations

import logging
from pathlib import Path

from sealedchat.common import Configurable, setup_logger
from sealedchat.common.config import Config
from sealedchat.common.models import ClientConfig

CLIENT_SETTINGS = [
    "server_url",
    "keystore_dir",
    "log_level",
    "message_limit",
    "poll_interval",
    "publish_retries",
    "publish_backoff",
    "http_timeout",
]


class ConfigLoader(Configurable):
    """Resolves client settings from a ClientConfig over Config defaults."""

    server_url: str
    keystore_dir: Path
    log_level: int
    message_limit: int
    poll_interval: float
    publish_retries: int
    publish_backoff: float
    http_timeout: float

    def __init__(self, client_config: ClientConfig | None = None):
        self.config: Config = Config()
        overrides = (client_config or ClientConfig()).model_dump()
        self.apply_overrides(overrides, self.config, CLIENT_SETTINGS)
        self.keystore_dir = Path(self.keystore_dir)

        # Setup logging
        self.logger = logging.getLogger("sealedchat")
        setup_logger(self.logger, self.log_level)
