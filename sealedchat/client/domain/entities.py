"""Domain layer: key material held in process memory.
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cryptography.hazmat.primitives.asymmetric.rsa import (
        RSAPrivateKey,
        RSAPublicKey,
    )


@dataclass(frozen=True)
class IdentityKeyPair:
    """A user's long-lived RSA-OAEP identity key pair."""

    user_id: str
    private_key: RSAPrivateKey = field(repr=False)
    public_key: RSAPublicKey = field(repr=False)


@dataclass(frozen=True, eq=False)
class ConversationKey:
    """Plaintext AES-256-GCM conversation key; never persisted."""

    raw: bytes = field(repr=False)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ConversationKey):
            return NotImplemented
        return hmac.compare_digest(self.raw, other.raw)

    def __hash__(self) -> int:
        return hash(self.raw)
