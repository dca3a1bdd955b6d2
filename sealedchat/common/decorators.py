"""Session guard decorators for chat operations.
"""

from __future__ import annotations

import logging
from functools import wraps
from typing import TYPE_CHECKING, Any

from sealedchat.common.exceptions import NotAuthenticated

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


def requires_session(
    session_attr: str = "session",
    error_message: str = "No active chat session; call init_identity first",
) -> Callable:
    """Decorator that runs a coroutine method only while a session is active.

    Args:
        session_attr: Name of the attribute on ``self`` holding the session
        error_message: Message of the raised NotAuthenticated

    Returns:
        Decorated coroutine function
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
            session = getattr(self, session_attr, None)
            if session is None or not session.active:
                logger.debug("Rejected %s: no active session", func.__name__)
                raise NotAuthenticated(error_message)
            return await func(self, *args, **kwargs)

        return wrapper

    return decorator
