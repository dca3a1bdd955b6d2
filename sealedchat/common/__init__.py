# Common utilities
from sealedchat.common.crypto import CryptoBackend as CryptoBackend
from sealedchat.common.logging_utils import setup_logger as setup_logger
from sealedchat.common.mixins import Configurable as Configurable

__all__ = ["Configurable", "CryptoBackend", "setup_logger"]
