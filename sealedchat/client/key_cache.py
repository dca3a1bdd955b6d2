"""
Session-scoped cache of resolved conversation keys.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sealedchat.client.domain.entities import ConversationKey

logger = logging.getLogger(__name__)


class SessionKeyCache:
    """Memory-only mapping of conversation id to plaintext conversation key.

    Writes are idempotent and need no lock: concurrent resolutions of the same
    conversation produce value-equal keys. ``clear`` must run at session
    teardown so no key material outlives the signed-in user.
    """

    def __init__(self) -> None:
        self._keys: dict[str, ConversationKey] = {}

    def get(self, conversation_id: str) -> ConversationKey | None:
        return self._keys.get(conversation_id)

    def set(self, conversation_id: str, key: ConversationKey) -> None:
        self._keys[conversation_id] = key

    def discard(self, conversation_id: str) -> None:
        self._keys.pop(conversation_id, None)

    def clear(self) -> None:
        """Drop every cached key."""
        count = len(self._keys)
        self._keys.clear()
        logger.debug("Cleared %d cached conversation keys", count)

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._keys

    def __len__(self) -> int:
        return len(self._keys)
