"""
Explicit per-login session context.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sealedchat.client.key_cache import SessionKeyCache
from sealedchat.common.exceptions import NotAuthenticated

logger = logging.getLogger(__name__)


@dataclass
class ChatSession:
    """State owned by one authenticated user between login and logout."""

    user_id: str
    display_name: str | None = None
    key_cache: SessionKeyCache = field(default_factory=SessionKeyCache)
    active: bool = True

    def require_active(self, user_id: str | None = None) -> None:
        """Raise NotAuthenticated unless the session is open (for ``user_id``)."""
        if not self.active:
            msg = "Session has been closed"
            raise NotAuthenticated(msg)
        if user_id is not None and user_id != self.user_id:
            msg = f"Session belongs to a different user than {user_id!r}"
            raise NotAuthenticated(msg)

    def close(self) -> None:
        """Wipe cached key material and mark the session closed."""
        self.key_cache.clear()
        self.active = False
        logger.info("Session closed for %s", self.user_id)
