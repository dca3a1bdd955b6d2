"""Cryptographic primitives behind a small capability interface.
"""

from __future__ import annotations

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from sealedchat.common.config import Config
from sealedchat.common.exceptions import DecryptionFailed, InvalidKeyMaterial


def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64decode(data: str) -> bytes:
    """Strict standard base64 decoding."""
    try:
        return base64.b64decode(data.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as err:
        msg = "Malformed base64 data"
        raise ValueError(msg) from err


class CryptoBackend:
    """RSA-OAEP key wrapping and AES-GCM message encryption.

    Every method is synchronous and CPU-bound; callers running on an event
    loop offload them with ``asyncio.to_thread``.
    """

    def __init__(self, config: Config | None = None) -> None:
        self.config = config or Config()
        self._oaep = padding.OAEP(
            mgf=padding.MGF1(algorithm=hashes.SHA256()),
            algorithm=hashes.SHA256(),
            label=None,
        )

    # ----- identity keys -----

    def generate_key_pair(self) -> rsa.RSAPrivateKey:
        """Generate a new RSA identity key."""
        return rsa.generate_private_key(
            public_exponent=self.config.RSA_PUBLIC_EXPONENT,
            key_size=self.config.RSA_KEY_SIZE,
        )

    @staticmethod
    def serialize_private_key(private_key: rsa.RSAPrivateKey) -> str:
        return private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode("ascii")

    def load_private_key(self, pem: str) -> rsa.RSAPrivateKey:
        try:
            key = serialization.load_pem_private_key(pem.encode("ascii"), None)
        except (ValueError, UnsupportedAlgorithm) as err:
            msg = "Stored identity key is not a valid PEM private key"
            raise InvalidKeyMaterial(msg) from err
        if not isinstance(key, rsa.RSAPrivateKey):
            msg = "Stored identity key is not an RSA key"
            raise InvalidKeyMaterial(msg)
        return key

    @staticmethod
    def export_public_key(public_key: rsa.RSAPublicKey) -> str:
        """Serialize a public key as base64 SubjectPublicKeyInfo DER."""
        der = public_key.public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        return b64encode(der)

    def import_public_key(self, data: str) -> rsa.RSAPublicKey:
        """Parse a base64 SubjectPublicKeyInfo DER public key."""
        try:
            key = serialization.load_der_public_key(b64decode(data))
        except (ValueError, UnsupportedAlgorithm) as err:
            msg = "Public key is not valid base64 SubjectPublicKeyInfo"
            raise InvalidKeyMaterial(msg) from err
        if not isinstance(key, rsa.RSAPublicKey):
            msg = "Public key is not an RSA key"
            raise InvalidKeyMaterial(msg)
        if key.key_size != self.config.RSA_KEY_SIZE:
            msg = f"Public key must be {self.config.RSA_KEY_SIZE} bits, got {key.key_size}"
            raise InvalidKeyMaterial(msg)
        return key

    # ----- key wrapping -----

    def wrap_key(self, public_key: rsa.RSAPublicKey, raw_key: bytes) -> bytes:
        return public_key.encrypt(raw_key, self._oaep)

    def unwrap_key(self, private_key: rsa.RSAPrivateKey, wrapped: bytes) -> bytes:
        try:
            raw_key = private_key.decrypt(wrapped, self._oaep)
        except ValueError as err:
            msg = "Unable to unwrap conversation key"
            raise DecryptionFailed(msg) from err
        if len(raw_key) != self.config.CONVERSATION_KEY_BYTES:
            msg = "Unwrapped conversation key has the wrong length"
            raise DecryptionFailed(msg)
        return raw_key

    # ----- message encryption -----

    def generate_conversation_key(self) -> bytes:
        return AESGCM.generate_key(bit_length=self.config.CONVERSATION_KEY_BYTES * 8)

    def encrypt(self, key: bytes, plaintext: bytes) -> tuple[bytes, bytes]:
        """AES-GCM encrypt under a fresh random IV.

        The IV is drawn from the OS CSPRNG on every call and never accepted
        from the caller. Returns ``(iv, ciphertext)``; the ciphertext carries
        the 16-byte authentication tag.
        """
        iv = os.urandom(self.config.IV_LENGTH)
        return iv, AESGCM(key).encrypt(iv, plaintext, None)

    def decrypt(self, key: bytes, iv: bytes, ciphertext: bytes) -> bytes:
        if len(iv) != self.config.IV_LENGTH:
            msg = "Invalid IV length"
            raise DecryptionFailed(msg)
        try:
            return AESGCM(key).decrypt(iv, ciphertext, None)
        except InvalidTag as err:
            msg = "Message authentication failed"
            raise DecryptionFailed(msg) from err
