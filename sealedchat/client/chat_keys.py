"""
Conversation creation and conversation-key resolution.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from sealedchat.client.domain.entities import ConversationKey
from sealedchat.common.config import Config
from sealedchat.common.crypto import CryptoBackend, b64encode
from sealedchat.common.exceptions import (
    ConversationNotFound,
    InvalidKeyMaterial,
    NotAParticipant,
)
from sealedchat.common.models import ConversationRecord

if TYPE_CHECKING:
    from sealedchat.client.identity import IdentityKeyService
    from sealedchat.client.session import ChatSession
    from sealedchat.common.interfaces import IConversationStore

logger = logging.getLogger(__name__)


class ChatKeyManager:
    """Creates conversations and resolves their keys for one session.

    A conversation key moves from unresolved to cached plaintext on the first
    successful unwrap and back to unresolved when the session is closed. The
    plaintext key is only ever held in the session's key cache.
    """

    def __init__(
        self,
        session: ChatSession,
        identity: IdentityKeyService,
        conversations: IConversationStore,
        backend: CryptoBackend | None = None,
        config: Config | None = None,
    ):
        self.session = session
        self.identity = identity
        self.conversations = conversations
        self.config = config or Config()
        self.backend = backend or CryptoBackend(self.config)
        self.unwrap_count = 0

    async def create_conversation(
        self,
        owner_id: str,
        participant_ids: list[str],
        name: str | None = None,
    ) -> str:
        """Create a conversation whose key is wrapped for every participant.

        Nothing is written unless every participant has a published key.
        """
        self.session.require_active(owner_id)
        participants = list(dict.fromkeys([owner_id, *participant_ids]))

        # KeyNotFound here aborts before any key is generated or stored.
        public_keys = {uid: await self.identity.fetch_public_key(uid) for uid in participants}

        key = ConversationKey(
            await asyncio.to_thread(self.backend.generate_conversation_key)
        )
        wrapped_keys = {
            uid: b64encode(await self.identity.wrap_key(public_key, key))
            for uid, public_key in public_keys.items()
        }

        record = ConversationRecord(
            participants=participants,
            wrapped_keys=wrapped_keys,
            created_by=owner_id,
            name=name.strip() if name and name.strip() else None,
            key_scheme=self.config.KEY_SCHEME,
        )
        conversation_id = await self.conversations.create(record)
        self.session.key_cache.set(conversation_id, key)
        logger.info(
            "Created conversation %s with %d participants",
            conversation_id,
            len(participants),
        )
        return conversation_id

    async def resolve_conversation_key(
        self, conversation_id: str, user_id: str
    ) -> ConversationKey:
        """Return the plaintext key, unwrapping it on first use this session."""
        self.session.require_active(user_id)
        cached = self.session.key_cache.get(conversation_id)
        if cached is not None:
            return cached

        conversation = await self.conversations.get(conversation_id)
        if conversation is None:
            msg = f"Conversation {conversation_id} not found"
            raise ConversationNotFound(msg)
        if conversation.key_scheme != self.config.KEY_SCHEME:
            msg = f"Conversation {conversation_id} uses unsupported key scheme {conversation.key_scheme!r}"
            raise InvalidKeyMaterial(msg)

        wrapped = conversation.wrapped_keys.get(user_id)
        if wrapped is None:
            msg = f"No decryption key available for {user_id} in conversation {conversation_id}"
            raise NotAParticipant(msg)

        self.unwrap_count += 1
        key = await self.identity.unwrap_key(user_id, wrapped)
        # The session may have been closed while the unwrap was in flight.
        self.session.require_active(user_id)
        self.session.key_cache.set(conversation_id, key)
        logger.debug("Resolved key for conversation %s", conversation_id)
        return key
