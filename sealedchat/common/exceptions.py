"""
Custom exceptions for the encrypted chat layer.
"""

from __future__ import annotations


class ChatError(Exception):
    """Base exception for chat and key-management failures."""

    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code


class KeyNotFound(ChatError):
    """A participant has not published a public key yet."""

    def __init__(self, message: str, user_id: str | None = None) -> None:
        super().__init__(message, 409)
        self.user_id = user_id


class NotAParticipant(ChatError):
    """The requesting user holds no wrapped key for the conversation."""

    def __init__(self, message: str) -> None:
        super().__init__(message, 403)


class DecryptionFailed(ChatError):
    """Authentication failed while decrypting a message or unwrapping a key."""

    def __init__(self, message: str = "Decryption failed") -> None:
        super().__init__(message, 422)


class NotAuthenticated(ChatError):
    """No active session or identity is available."""

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message, 401)


class StorageUnavailable(ChatError):
    """The directory or a backing store could not be reached."""

    def __init__(self, message: str) -> None:
        super().__init__(message, 503)


class ConversationNotFound(ChatError):
    def __init__(self, message: str) -> None:
        super().__init__(message, 404)


class RecordNotFound(ChatError):
    """The directory has no record for the user yet."""

    def __init__(self, message: str) -> None:
        super().__init__(message, 404)


class InvalidKeyMaterial(ChatError):
    """A key or key record uses an unsupported scheme or is malformed."""

    def __init__(self, message: str) -> None:
        super().__init__(message, 400)


ERRORS_BY_NAME: dict[str, type[ChatError]] = {
    cls.__name__: cls
    for cls in (
        KeyNotFound,
        NotAParticipant,
        DecryptionFailed,
        NotAuthenticated,
        StorageUnavailable,
        ConversationNotFound,
        RecordNotFound,
        InvalidKeyMaterial,
    )
}
