"""
Pydantic models for stored records and request/response validation.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StoredIdentity(BaseModel):
    """Local-only identity record; never leaves the keystore."""

    version: int
    user_id: str
    private_key: str  # PKCS#8 PEM
    public_key: str  # base64 SubjectPublicKeyInfo DER
    created_at: datetime = Field(default_factory=utcnow)

    def __repr__(self) -> str:
        return f"StoredIdentity(user_id={self.user_id!r}, version={self.version})"

    __str__ = __repr__


class PublicKeyRecord(BaseModel):
    scheme: str
    public_key: str


class DirectoryEntry(BaseModel):
    user_id: str
    display_name: str | None = None
    public_key: PublicKeyRecord | None = None


class RegisterUserRequest(BaseModel):
    user_id: str = Field(min_length=1)
    display_name: str | None = None


class ConversationRecord(BaseModel):
    participants: list[str] = Field(min_length=1)
    wrapped_keys: dict[str, str]
    created_by: str
    created_at: datetime = Field(default_factory=utcnow)
    name: str | None = None
    last_message_at: datetime = Field(default_factory=utcnow)
    key_scheme: str

    @field_validator("participants")
    @classmethod
    def _unique_participants(cls, value: list[str]) -> list[str]:
        return sorted(set(value))

    def missing_wrapped_keys(self) -> list[str]:
        """Participants that have no wrapped key entry."""
        return [uid for uid in self.participants if uid not in self.wrapped_keys]


class Conversation(ConversationRecord):
    id: str


class CreateConversationResponse(BaseModel):
    id: str


class TouchRequest(BaseModel):
    when: datetime


class EncryptedPayload(BaseModel):
    ciphertext: str
    iv: str


class MessageRecord(BaseModel):
    sender_id: str
    sender_name: str | None = None
    ciphertext: str
    iv: str
    timestamp: datetime = Field(default_factory=utcnow)


class StoredMessage(MessageRecord):
    id: str


class AppendMessageResponse(BaseModel):
    id: str


class DecryptedMessage(BaseModel):
    id: str
    sender_id: str
    sender_name: str | None = None
    text: str
    timestamp: datetime
    decrypted: bool = True


class ClientConfig(BaseModel):
    server_url: str | None = None
    keystore_dir: Path | None = None
    log_level: int | None = None
    message_limit: int | None = Field(default=None, gt=0)
    poll_interval: float | None = Field(default=None, gt=0)
    publish_retries: int | None = Field(default=None, ge=0)
    publish_backoff: float | None = Field(default=None, ge=0)
    http_timeout: float | None = Field(default=None, gt=0)
