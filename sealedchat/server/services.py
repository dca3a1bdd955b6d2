"""Business logic for the chat backend.

The backend validates shapes and stores records, but only ever handles
public keys, wrapped keys and ciphertext.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

from sealedchat.common.exceptions import (
    ConversationNotFound,
    NotAParticipant,
    RecordNotFound,
)

from .persistence import DataPersistence
from .stores import MemoryConversationStore, MemoryDirectory, MemoryMessageStore

if TYPE_CHECKING:
    import logging
    from datetime import datetime
    from pathlib import Path

    from sealedchat.common.models import (
        Conversation,
        ConversationRecord,
        DirectoryEntry,
        MessageRecord,
        PublicKeyRecord,
        StoredMessage,
    )


class ChatBackendService:
    """Handles directory, conversation and message operations."""

    def __init__(
        self,
        store_file_path: Path | None,
        message_limit: int,
        logger: logging.Logger,
    ):
        self.store_file_path = store_file_path
        self.message_limit = message_limit
        self.logger = logger

        if store_file_path is not None:
            self.directory, self.conversations, self.messages = (
                DataPersistence.load_stores(store_file_path)
            )
        else:
            self.directory = MemoryDirectory()
            self.conversations = MemoryConversationStore()
            self.messages = MemoryMessageStore()

    def _save(self) -> None:
        if self.store_file_path is not None:
            DataPersistence.save_stores(
                self.store_file_path, self.directory, self.conversations, self.messages
            )

    def health(self) -> dict[str, Any]:
        return {"status": "ok", "timestamp": int(time.time())}

    async def register_user(self, user_id: str, display_name: str | None) -> None:
        await self.directory.register(user_id, display_name)
        self._save()
        self.logger.info("Registered user %s", user_id)

    async def list_users(self) -> list[DirectoryEntry]:
        return await self.directory.list_entries()

    async def get_user(self, user_id: str) -> DirectoryEntry:
        entry = await self.directory.get(user_id)
        if entry is None:
            msg = f"No directory record for {user_id}"
            raise RecordNotFound(msg)
        return entry

    async def set_public_key(self, user_id: str, record: PublicKeyRecord) -> None:
        await self.directory.set_public_key(user_id, record)
        self._save()
        self.logger.info("Public key updated for %s", user_id)

    async def create_conversation(self, record: ConversationRecord) -> str:
        conversation_id = await self.conversations.create(record)
        self._save()
        self.logger.info(
            "Stored conversation %s (%d participants)",
            conversation_id,
            len(record.participants),
        )
        return conversation_id

    async def get_conversation(self, conversation_id: str) -> Conversation:
        conversation = await self.conversations.get(conversation_id)
        if conversation is None:
            msg = f"Conversation {conversation_id} not found"
            raise ConversationNotFound(msg)
        return conversation

    async def list_conversations(self, participant: str) -> list[Conversation]:
        return await self.conversations.list_for_participant(participant)

    async def touch_conversation(self, conversation_id: str, when: datetime) -> None:
        await self.conversations.touch(conversation_id, when)
        self._save()

    async def append_message(self, conversation_id: str, record: MessageRecord) -> str:
        conversation = await self.get_conversation(conversation_id)
        if record.sender_id not in conversation.participants:
            msg = f"{record.sender_id} is not a participant of {conversation_id}"
            raise NotAParticipant(msg)
        message_id = await self.messages.append(conversation_id, record)
        self._save()
        return message_id

    async def list_messages(
        self, conversation_id: str, limit: int | None = None
    ) -> list[StoredMessage]:
        await self.get_conversation(conversation_id)
        limit = min(limit or self.message_limit, self.message_limit)
        return await self.messages.list_messages(conversation_id, limit)
