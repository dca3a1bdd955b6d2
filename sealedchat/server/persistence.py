"""
Data persistence utilities.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path  # noqa: TC003
from typing import Any

from pydantic import ValidationError

from sealedchat.common.models import Conversation, DirectoryEntry, StoredMessage

from .stores import MemoryConversationStore, MemoryDirectory, MemoryMessageStore

logger = logging.getLogger(__name__)


class DataPersistence:
    """Loads and saves the backend's stores as one JSON snapshot."""

    @staticmethod
    def _serialize(
        directory: MemoryDirectory,
        conversations: MemoryConversationStore,
        messages: MemoryMessageStore,
    ) -> dict[str, Any]:
        return {
            "users": [e.model_dump(mode="json") for e in directory.entries.values()],
            "conversations": [
                c.model_dump(mode="json") for c in conversations.conversations.values()
            ],
            "messages": {
                cid: [m.model_dump(mode="json") for m in log]
                for cid, log in messages.messages.items()
            },
        }

    @staticmethod
    def _quarantine(file_path: Path) -> Path:
        """Move an unreadable store aside so the next save cannot overwrite it."""
        stamp = time.strftime("%Y%m%d-%H%M%S")
        backup = file_path.with_name(f"{file_path.name}.corrupt-{stamp}")
        counter = 1
        while backup.exists():
            backup = file_path.with_name(f"{file_path.name}.corrupt-{stamp}-{counter}")
            counter += 1
        file_path.replace(backup)
        return backup

    @staticmethod
    def load_stores(
        file_path: Path,
    ) -> tuple[MemoryDirectory, MemoryConversationStore, MemoryMessageStore]:
        """Load stores from file.

        A missing file yields empty stores. An unreadable one is renamed to
        ``<name>.corrupt-<timestamp>`` first, then empty stores are returned.
        """
        try:
            with file_path.open() as f:
                data = json.load(f)
            users = [DirectoryEntry.model_validate(u) for u in data.get("users", [])]
            conversations = [
                Conversation.model_validate(c) for c in data.get("conversations", [])
            ]
            messages = {
                cid: [StoredMessage.model_validate(m) for m in log]
                for cid, log in data.get("messages", {}).items()
            }
        except FileNotFoundError:
            return MemoryDirectory(), MemoryConversationStore(), MemoryMessageStore()
        except (json.JSONDecodeError, ValidationError):
            backup = DataPersistence._quarantine(file_path)
            logger.exception(
                "Store file %s is unreadable, moved to %s and starting empty",
                file_path,
                backup,
            )
            return MemoryDirectory(), MemoryConversationStore(), MemoryMessageStore()

        return (
            MemoryDirectory({u.user_id: u for u in users}),
            MemoryConversationStore({c.id: c for c in conversations}),
            MemoryMessageStore(messages),
        )

    @staticmethod
    def save_stores(
        file_path: Path,
        directory: MemoryDirectory,
        conversations: MemoryConversationStore,
        messages: MemoryMessageStore,
    ) -> None:
        """Save stores to file."""
        file_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = file_path.with_suffix(".tmp")
        with tmp_path.open("w") as f:
            json.dump(DataPersistence._serialize(directory, conversations, messages), f)
        tmp_path.replace(file_path)
