"""
Interfaces and protocols for dependency injection.

The directory, conversation store and message store are external
collaborators: they hold public keys, wrapped keys and ciphertext only.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Protocol

from sealedchat.common.models import (
    Conversation,
    ConversationRecord,
    DirectoryEntry,
    MessageRecord,
    PublicKeyRecord,
    StoredIdentity,
    StoredMessage,
)

Unsubscribe = Callable[[], None]
MessageBatchHandler = Callable[[list[StoredMessage]], Awaitable[None]]
ConversationListHandler = Callable[[list[Conversation]], Awaitable[None]]


class IIdentityKeyStore(Protocol):
    """Protocol for local-only identity key persistence."""

    def load(self, user_id: str) -> StoredIdentity | None: ...

    def save(self, identity: StoredIdentity) -> bool:
        """Store a new record; return False if one already exists for the user."""
        ...


class IDirectory(Protocol):
    """Protocol for the shared public-key directory."""

    async def register(self, user_id: str, display_name: str | None) -> None: ...

    async def get(self, user_id: str) -> DirectoryEntry | None: ...

    async def set_public_key(self, user_id: str, record: PublicKeyRecord) -> None: ...

    async def list_entries(self) -> list[DirectoryEntry]: ...


class IConversationStore(Protocol):
    """Protocol for conversation records."""

    async def create(self, record: ConversationRecord) -> str: ...

    async def get(self, conversation_id: str) -> Conversation | None: ...

    async def list_for_participant(self, user_id: str) -> list[Conversation]: ...

    async def touch(self, conversation_id: str, when: datetime) -> None: ...

    async def subscribe_for_participant(
        self, user_id: str, on_change: ConversationListHandler
    ) -> Unsubscribe: ...


class IMessageStore(Protocol):
    """Protocol for the append-only message log with live subscription."""

    async def append(self, conversation_id: str, record: MessageRecord) -> str: ...

    async def list_messages(
        self, conversation_id: str, limit: int
    ) -> list[StoredMessage]: ...

    async def subscribe(
        self, conversation_id: str, on_batch: MessageBatchHandler, limit: int
    ) -> Unsubscribe: ...
