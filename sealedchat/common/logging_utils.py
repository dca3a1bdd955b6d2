"""
Logging utilities for consistent logging setup across the application.
"""

import hashlib
import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logger(logger: logging.Logger, log_level: int) -> logging.Logger:
    """
    Attach a stream handler to ``logger`` unless it already has one.

    Args:
        logger: The logger instance to configure
        log_level: The logging level to set

    Returns:
        The same logger, for chaining
    """
    logger.setLevel(log_level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(log_level)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    return logger


def fingerprint(public_key_b64: str) -> str:
    """Short, log-safe identifier for a published public key."""
    digest = hashlib.sha256(public_key_b64.encode("ascii")).hexdigest()
    return ":".join(digest[i : i + 4] for i in range(0, 16, 4))
