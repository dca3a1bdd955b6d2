"""
End-to-end encrypted chat client.

This is the surface a UI talks to. It owns one ChatSession at a time and
wires the identity service, key manager and message cipher to the external
directory and stores, which only ever see public keys, wrapped keys and
ciphertext.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from sealedchat.client.chat_keys import ChatKeyManager
from sealedchat.client.cipher import MessageCipher
from sealedchat.client.identity import IdentityKeyService
from sealedchat.client.infrastructure.config_loader import ConfigLoader
from sealedchat.client.infrastructure.http_stores import (
    HttpConversationStore,
    HttpDirectory,
    HttpMessageStore,
    HttpTransport,
)
from sealedchat.client.infrastructure.keystore import FileKeyStore
from sealedchat.client.session import ChatSession
from sealedchat.common.crypto import CryptoBackend
from sealedchat.common.decorators import requires_session
from sealedchat.common.exceptions import ChatError, DecryptionFailed
from sealedchat.common.models import (
    ClientConfig,
    Conversation,
    DecryptedMessage,
    DirectoryEntry,
    MessageRecord,
    StoredMessage,
    utcnow,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from sealedchat.client.domain.entities import ConversationKey
    from sealedchat.common.interfaces import (
        IConversationStore,
        IDirectory,
        IIdentityKeyStore,
        IMessageStore,
        Unsubscribe,
    )

logger = logging.getLogger(__name__)


class ChatClient:
    """Encrypted chat operations for the signed-in user."""

    def __init__(
        self,
        directory: IDirectory,
        conversations: IConversationStore,
        messages: IMessageStore,
        keystore: IIdentityKeyStore,
        client_config: ClientConfig | None = None,
        backend: CryptoBackend | None = None,
    ):
        self.settings = ConfigLoader(client_config)
        self.config = self.settings.config
        self.directory = directory
        self.conversations = conversations
        self.messages = messages
        self.backend = backend or CryptoBackend(self.config)
        self.identity = IdentityKeyService(
            keystore,
            directory,
            backend=self.backend,
            config=self.config,
            publish_retries=self.settings.publish_retries,
            publish_backoff=self.settings.publish_backoff,
        )
        self.cipher = MessageCipher(self.backend)
        self.session: ChatSession | None = None
        self.keys: ChatKeyManager | None = None
        self._subscriptions: dict[int, Unsubscribe] = {}
        self._next_subscription = 0

    @classmethod
    def over_http(
        cls, client_config: ClientConfig | None = None, http_session: Any | None = None
    ) -> ChatClient:
        """Build a client talking to the HTTP backend, with a file keystore."""
        settings = ConfigLoader(client_config)
        transport = HttpTransport(
            settings.server_url, timeout=settings.http_timeout, session=http_session
        )
        return cls(
            directory=HttpDirectory(transport),
            conversations=HttpConversationStore(transport, settings.poll_interval),
            messages=HttpMessageStore(transport, settings.poll_interval),
            keystore=FileKeyStore(settings.keystore_dir),
            client_config=client_config,
        )

    # ----- session lifecycle -----

    async def init_identity(
        self, user_id: str, display_name: str | None = None
    ) -> ChatSession:
        """Load or create the identity key, publish it and open a session.

        Must be called once per login before any other operation.
        """
        if self.session is not None and self.session.active:
            if self.session.user_id == user_id:
                return self.session
            self.logout()

        pair = await self.identity.get_or_create_identity_key_pair(user_id)
        await self.identity.publish_public_key(user_id, pair.public_key)

        self.session = ChatSession(user_id=user_id, display_name=display_name)
        self.keys = ChatKeyManager(
            self.session,
            self.identity,
            self.conversations,
            backend=self.backend,
            config=self.config,
        )
        logger.info("Chat session started for %s", user_id)
        return self.session

    def logout(self) -> None:
        """Tear down the session: subscriptions, cached keys, identity in memory."""
        for unsubscribe in list(self._subscriptions.values()):
            unsubscribe()
        self._subscriptions.clear()
        if self.session is not None:
            self.session.close()
            self.identity.forget(self.session.user_id)
        self.session = None
        self.keys = None

    # ----- conversations -----

    @requires_session()
    async def create_conversation(
        self, participant_ids: list[str], name: str | None = None
    ) -> str:
        return await self.keys.create_conversation(
            self.session.user_id, participant_ids, name
        )

    @requires_session()
    async def list_conversations(self) -> list[Conversation]:
        return await self.conversations.list_for_participant(self.session.user_id)

    @requires_session()
    async def subscribe_to_conversation_list(
        self, on_list_change: Callable[[list[Conversation]], Awaitable[None]]
    ) -> Unsubscribe:
        """Deliver the user's conversations, most recently active first."""
        session = self.session

        async def handle(conversations: list[Conversation]) -> None:
            if session.active:
                await on_list_change(conversations)

        unsubscribe = await self.conversations.subscribe_for_participant(
            session.user_id, handle
        )
        return self._track(unsubscribe)

    @requires_session()
    async def get_chat_eligible_users(self) -> list[DirectoryEntry]:
        """Other users who have already published a public key."""
        entries = await self.directory.list_entries()
        return [
            e
            for e in entries
            if e.user_id != self.session.user_id and e.public_key is not None
        ]

    # ----- messages -----

    @requires_session()
    async def send_message(self, conversation_id: str, text: str) -> str | None:
        """Encrypt and append a message; blank text sends nothing."""
        text = (text or "").strip()
        if not text:
            return None

        key = await self.keys.resolve_conversation_key(
            conversation_id, self.session.user_id
        )
        payload = await self.cipher.encrypt_message(text, key)
        record = MessageRecord(
            sender_id=self.session.user_id,
            sender_name=self.session.display_name or self.session.user_id,
            ciphertext=payload.ciphertext,
            iv=payload.iv,
            timestamp=utcnow(),
        )
        message_id = await self.messages.append(conversation_id, record)
        await self.conversations.touch(conversation_id, record.timestamp)
        logger.debug("Sent message %s to %s", message_id, conversation_id)
        return message_id

    @requires_session()
    async def read_messages(self, conversation_id: str) -> list[DecryptedMessage]:
        """One-shot fetch and decrypt of the most recent messages."""
        key = await self.keys.resolve_conversation_key(
            conversation_id, self.session.user_id
        )
        batch = await self.messages.list_messages(
            conversation_id, self.settings.message_limit
        )
        return await self._decrypt_batch(batch, key)

    @requires_session()
    async def subscribe_to_messages(
        self,
        conversation_id: str,
        on_decrypted_batch: Callable[[list[DecryptedMessage]], Awaitable[None]],
    ) -> Unsubscribe:
        """Deliver decrypted batches (oldest first) whenever messages change.

        A message that fails authentication is delivered as a placeholder. If
        the conversation key itself cannot be obtained, an empty batch is
        delivered and the error is logged.
        """
        session = self.session
        keys = self.keys

        async def handle(batch: list[StoredMessage]) -> None:
            if not session.active:
                return
            try:
                key = await keys.resolve_conversation_key(
                    conversation_id, session.user_id
                )
            except ChatError as err:
                logger.error(
                    "Message subscription error for %s: %s", conversation_id, err
                )
                await on_decrypted_batch([])
                return
            decrypted = await self._decrypt_batch(batch, key)
            if session.active:
                await on_decrypted_batch(decrypted)

        unsubscribe = await self.messages.subscribe(
            conversation_id, handle, self.settings.message_limit
        )
        return self._track(unsubscribe)

    async def _decrypt_batch(
        self, batch: list[StoredMessage], key: ConversationKey
    ) -> list[DecryptedMessage]:
        return list(await asyncio.gather(*(self._decrypt_one(m, key) for m in batch)))

    async def _decrypt_one(
        self, message: StoredMessage, key: ConversationKey
    ) -> DecryptedMessage:
        try:
            text = await self.cipher.decrypt_message(message.ciphertext, message.iv, key)
            decrypted = True
        except DecryptionFailed:
            logger.warning("Could not decrypt message %s", message.id)
            text = self.config.DECRYPT_PLACEHOLDER
            decrypted = False
        return DecryptedMessage(
            id=message.id,
            sender_id=message.sender_id,
            sender_name=message.sender_name,
            text=text,
            timestamp=message.timestamp,
            decrypted=decrypted,
        )

    def _track(self, unsubscribe: Unsubscribe) -> Unsubscribe:
        token = self._next_subscription
        self._next_subscription += 1
        self._subscriptions[token] = unsubscribe

        def untrack() -> None:
            if self._subscriptions.pop(token, None) is not None:
                unsubscribe()

        return untrack
