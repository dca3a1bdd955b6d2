"""
Per-message authenticated encryption.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from sealedchat.common.crypto import CryptoBackend, b64decode, b64encode
from sealedchat.common.exceptions import DecryptionFailed
from sealedchat.common.models import EncryptedPayload

if TYPE_CHECKING:
    from sealedchat.client.domain.entities import ConversationKey


class MessageCipher:
    """AES-256-GCM over UTF-8 message text.

    Each call to :meth:`encrypt_message` draws a new random 96-bit IV inside
    the backend; there is no way to pass one in.
    """

    def __init__(self, backend: CryptoBackend | None = None):
        self.backend = backend or CryptoBackend()

    async def encrypt_message(
        self, plaintext: str, key: ConversationKey
    ) -> EncryptedPayload:
        iv, ciphertext = await asyncio.to_thread(
            self.backend.encrypt, key.raw, plaintext.encode("utf-8")
        )
        return EncryptedPayload(ciphertext=b64encode(ciphertext), iv=b64encode(iv))

    async def decrypt_message(
        self, ciphertext: str, iv: str, key: ConversationKey
    ) -> str:
        """Decrypt and authenticate; any failure raises DecryptionFailed."""
        try:
            raw_ciphertext = b64decode(ciphertext)
            raw_iv = b64decode(iv)
        except ValueError as err:
            msg = "Message fields are not valid base64"
            raise DecryptionFailed(msg) from err
        plaintext = await asyncio.to_thread(
            self.backend.decrypt, key.raw, raw_iv, raw_ciphertext
        )
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as err:
            msg = "Decrypted message is not valid UTF-8"
            raise DecryptionFailed(msg) from err
