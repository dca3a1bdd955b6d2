"""
Identity key generation, custody and publication.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from sealedchat.client.domain.entities import ConversationKey, IdentityKeyPair
from sealedchat.common.config import Config
from sealedchat.common.crypto import CryptoBackend, b64decode
from sealedchat.common.exceptions import (
    DecryptionFailed,
    InvalidKeyMaterial,
    KeyNotFound,
    NotAuthenticated,
    RecordNotFound,
    StorageUnavailable,
)
from sealedchat.common.logging_utils import fingerprint
from sealedchat.common.models import PublicKeyRecord, StoredIdentity

if TYPE_CHECKING:
    from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey

    from sealedchat.common.interfaces import IDirectory, IIdentityKeyStore

logger = logging.getLogger(__name__)


class IdentityKeyService:
    """Owns each local user's RSA-OAEP identity key pair.

    The private half stays inside the keystore and this object's memory; only
    the exported public half is ever handed to the directory.
    """

    def __init__(
        self,
        keystore: IIdentityKeyStore,
        directory: IDirectory | None = None,
        backend: CryptoBackend | None = None,
        config: Config | None = None,
        publish_retries: int | None = None,
        publish_backoff: float | None = None,
    ):
        self.config = config or Config()
        self.keystore = keystore
        self.directory = directory
        self.backend = backend or CryptoBackend(self.config)
        self.publish_retries = (
            publish_retries
            if publish_retries is not None
            else self.config.PUBLISH_RETRIES
        )
        self.publish_backoff = (
            publish_backoff
            if publish_backoff is not None
            else self.config.PUBLISH_BACKOFF
        )
        self._loaded: dict[str, IdentityKeyPair] = {}
        self._creation_locks: dict[str, asyncio.Lock] = {}

    async def get_or_create_identity_key_pair(self, user_id: str) -> IdentityKeyPair:
        """Return the persisted key pair for ``user_id``, generating it once."""
        if user_id in self._loaded:
            return self._loaded[user_id]

        # Two concurrent first calls must not both generate and persist a pair.
        lock = self._creation_locks.setdefault(user_id, asyncio.Lock())
        async with lock:
            if user_id in self._loaded:
                return self._loaded[user_id]
            stored = await asyncio.to_thread(self.keystore.load, user_id)
            if stored is not None:
                pair = await asyncio.to_thread(self._deserialize, stored)
            else:
                pair = await self._generate(user_id)
            self._loaded[user_id] = pair
            return pair

    async def _generate(self, user_id: str) -> IdentityKeyPair:
        logger.info("Generating identity key pair for %s", user_id)
        private_key = await asyncio.to_thread(self.backend.generate_key_pair)
        pair = IdentityKeyPair(
            user_id=user_id,
            private_key=private_key,
            public_key=private_key.public_key(),
        )
        stored = StoredIdentity(
            version=self.config.IDENTITY_RECORD_VERSION,
            user_id=user_id,
            private_key=self.backend.serialize_private_key(private_key),
            public_key=self.export_public_key(pair.public_key),
        )
        if await asyncio.to_thread(self.keystore.save, stored):
            return pair

        # Another process created the identity first; use the stored one.
        logger.info("Identity for %s was created concurrently, reloading", user_id)
        existing = await asyncio.to_thread(self.keystore.load, user_id)
        if existing is None:
            msg = f"Identity record for {user_id} vanished while saving"
            raise InvalidKeyMaterial(msg)
        return await asyncio.to_thread(self._deserialize, existing)

    def _deserialize(self, stored: StoredIdentity) -> IdentityKeyPair:
        if stored.version != self.config.IDENTITY_RECORD_VERSION:
            msg = f"Unsupported identity record version {stored.version}"
            raise InvalidKeyMaterial(msg)
        private_key = self.backend.load_private_key(stored.private_key)
        public_key = private_key.public_key()
        if self.export_public_key(public_key) != stored.public_key:
            msg = f"Stored public key does not match private key for {stored.user_id}"
            raise InvalidKeyMaterial(msg)
        return IdentityKeyPair(
            user_id=stored.user_id, private_key=private_key, public_key=public_key
        )

    def _require_directory(self) -> IDirectory:
        if self.directory is None:
            msg = "No public-key directory configured"
            raise StorageUnavailable(msg)
        return self.directory

    def export_public_key(self, public_key: RSAPublicKey) -> str:
        return self.backend.export_public_key(public_key)

    def import_public_key(self, data: str) -> RSAPublicKey:
        return self.backend.import_public_key(data)

    async def publish_public_key(self, user_id: str, public_key: RSAPublicKey) -> bool:
        """Upsert the public key into the directory.

        A missing directory record (account creation still in flight) is
        retried with doubling backoff and, if it persists, logged and
        reported as ``False`` rather than raised.
        """
        directory = self._require_directory()
        record = PublicKeyRecord(
            scheme=self.config.PUBLIC_KEY_SCHEME,
            public_key=self.export_public_key(public_key),
        )
        delay = self.publish_backoff
        for attempt in range(self.publish_retries + 1):
            try:
                await directory.set_public_key(user_id, record)
            except RecordNotFound:
                if attempt < self.publish_retries:
                    logger.debug(
                        "Directory record for %s missing, retrying in %.2fs",
                        user_id,
                        delay,
                    )
                    await asyncio.sleep(delay)
                    delay *= 2
                continue
            logger.info(
                "Published public key %s for %s", fingerprint(record.public_key), user_id
            )
            return True

        logger.warning(
            "Directory record for %s not found; public key not published yet", user_id
        )
        return False

    async def fetch_public_key(self, user_id: str) -> RSAPublicKey:
        """Look up a participant's published public key."""
        entry = await self._require_directory().get(user_id)
        if entry is None or entry.public_key is None:
            msg = f"User {user_id} has not enabled chat yet; ask them to open chat first"
            raise KeyNotFound(msg, user_id=user_id)
        if entry.public_key.scheme != self.config.PUBLIC_KEY_SCHEME:
            msg = f"User {user_id} published a key with unsupported scheme {entry.public_key.scheme!r}"
            raise KeyNotFound(msg, user_id=user_id)
        return self.import_public_key(entry.public_key.public_key)

    async def wrap_key(self, public_key: RSAPublicKey, key: ConversationKey) -> bytes:
        return await asyncio.to_thread(self.backend.wrap_key, public_key, key.raw)

    async def unwrap_key(self, user_id: str, wrapped_b64: str) -> ConversationKey:
        """Recover a conversation key with the local private key of ``user_id``."""
        pair = self._loaded.get(user_id)
        if pair is None:
            msg = f"No identity loaded for {user_id}"
            raise NotAuthenticated(msg)
        try:
            wrapped = b64decode(wrapped_b64)
        except ValueError as err:
            msg = "Wrapped key is not valid base64"
            raise DecryptionFailed(msg) from err
        raw = await asyncio.to_thread(self.backend.unwrap_key, pair.private_key, wrapped)
        return ConversationKey(raw)

    def forget(self, user_id: str) -> None:
        """Drop the in-memory key pair; the keystore copy is untouched."""
        self._loaded.pop(user_id, None)
        self._creation_locks.pop(user_id, None)
