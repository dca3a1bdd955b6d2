"""
In-memory directory, conversation and message stores.

These hold exactly what the shared backend is allowed to see: display names,
public keys, wrapped keys and ciphertext.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime

from sealedchat.common.exceptions import (
    ConversationNotFound,
    InvalidKeyMaterial,
    RecordNotFound,
)
from sealedchat.common.interfaces import (
    ConversationListHandler,
    MessageBatchHandler,
    Unsubscribe,
)
from sealedchat.common.models import (
    Conversation,
    ConversationRecord,
    DirectoryEntry,
    MessageRecord,
    PublicKeyRecord,
    StoredMessage,
)

logger = logging.getLogger(__name__)


async def _notify(handlers: list[Callable[[], Awaitable[None]]]) -> None:
    """Run subscriber callbacks; one failing subscriber does not affect others."""
    results = await asyncio.gather(*(h() for h in handlers), return_exceptions=True)
    for result in results:
        if isinstance(result, Exception):
            logger.error("Subscriber callback failed: %r", result)


class MemoryDirectory:
    """User records with their published public keys."""

    def __init__(self, entries: dict[str, DirectoryEntry] | None = None):
        self.entries: dict[str, DirectoryEntry] = entries or {}

    async def register(self, user_id: str, display_name: str | None) -> None:
        existing = self.entries.get(user_id)
        if existing is None:
            self.entries[user_id] = DirectoryEntry(
                user_id=user_id, display_name=display_name
            )
        elif display_name:
            existing.display_name = display_name

    async def get(self, user_id: str) -> DirectoryEntry | None:
        entry = self.entries.get(user_id)
        return entry.model_copy(deep=True) if entry else None

    async def set_public_key(self, user_id: str, record: PublicKeyRecord) -> None:
        entry = self.entries.get(user_id)
        if entry is None:
            msg = f"No directory record for {user_id}"
            raise RecordNotFound(msg)
        entry.public_key = record

    async def list_entries(self) -> list[DirectoryEntry]:
        return [e.model_copy(deep=True) for e in self.entries.values()]


class MemoryConversationStore:
    """Conversation records with per-participant live list subscriptions."""

    def __init__(self, conversations: dict[str, Conversation] | None = None):
        self.conversations: dict[str, Conversation] = conversations or {}
        self._subscribers: dict[str, dict[int, ConversationListHandler]] = {}
        self._next_token = 0

    async def create(self, record: ConversationRecord) -> str:
        missing = record.missing_wrapped_keys()
        if missing:
            msg = f"Conversation is missing wrapped keys for {', '.join(missing)}"
            raise InvalidKeyMaterial(msg)
        conversation_id = uuid.uuid4().hex
        self.conversations[conversation_id] = Conversation(
            id=conversation_id, **record.model_dump()
        )
        await self._publish(record.participants)
        return conversation_id

    async def get(self, conversation_id: str) -> Conversation | None:
        conversation = self.conversations.get(conversation_id)
        return conversation.model_copy(deep=True) if conversation else None

    async def list_for_participant(self, user_id: str) -> list[Conversation]:
        found = [
            c.model_copy(deep=True)
            for c in self.conversations.values()
            if user_id in c.participants
        ]
        return sorted(found, key=lambda c: c.last_message_at, reverse=True)

    async def touch(self, conversation_id: str, when: datetime) -> None:
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            msg = f"Conversation {conversation_id} not found"
            raise ConversationNotFound(msg)
        conversation.last_message_at = max(conversation.last_message_at, when)
        await self._publish(conversation.participants)

    async def subscribe_for_participant(
        self, user_id: str, on_change: ConversationListHandler
    ) -> Unsubscribe:
        token = self._next_token
        self._next_token += 1
        self._subscribers.setdefault(user_id, {})[token] = on_change
        await on_change(await self.list_for_participant(user_id))

        def unsubscribe() -> None:
            self._subscribers.get(user_id, {}).pop(token, None)

        return unsubscribe

    async def _publish(self, participants: list[str]) -> None:
        handlers: list[Callable[[], Awaitable[None]]] = []
        for uid in participants:
            snapshot = await self.list_for_participant(uid)
            for handler in list(self._subscribers.get(uid, {}).values()):
                handlers.append(lambda h=handler, s=snapshot: h(s))
        await _notify(handlers)


class MemoryMessageStore:
    """Append-only message log per conversation with live subscriptions."""

    def __init__(self, messages: dict[str, list[StoredMessage]] | None = None):
        self.messages: dict[str, list[StoredMessage]] = messages or {}
        self._subscribers: dict[str, dict[int, tuple[MessageBatchHandler, int]]] = {}
        self._next_token = 0

    async def append(self, conversation_id: str, record: MessageRecord) -> str:
        message_id = uuid.uuid4().hex
        log = self.messages.setdefault(conversation_id, [])
        log.append(StoredMessage(id=message_id, **record.model_dump()))
        log.sort(key=lambda m: m.timestamp)
        await self._publish(conversation_id)
        return message_id

    async def list_messages(
        self, conversation_id: str, limit: int
    ) -> list[StoredMessage]:
        """Most recent ``limit`` messages, oldest first."""
        log = self.messages.get(conversation_id, [])
        return [m.model_copy() for m in log[-limit:]] if limit > 0 else []

    async def subscribe(
        self, conversation_id: str, on_batch: MessageBatchHandler, limit: int
    ) -> Unsubscribe:
        token = self._next_token
        self._next_token += 1
        self._subscribers.setdefault(conversation_id, {})[token] = (on_batch, limit)
        await on_batch(await self.list_messages(conversation_id, limit))

        def unsubscribe() -> None:
            self._subscribers.get(conversation_id, {}).pop(token, None)

        return unsubscribe

    async def _publish(self, conversation_id: str) -> None:
        handlers: list[Callable[[], Awaitable[None]]] = []
        for handler, limit in list(self._subscribers.get(conversation_id, {}).values()):
            batch = await self.list_messages(conversation_id, limit)
            handlers.append(lambda h=handler, b=batch: h(b))
        await _notify(handlers)

