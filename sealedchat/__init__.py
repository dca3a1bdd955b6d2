# sealedchat: end-to-end encrypted group chat

from sealedchat.client.client import ChatClient
from sealedchat.common.decorators import requires_session

__all__ = [
    "ChatClient",
    "requires_session",
]
