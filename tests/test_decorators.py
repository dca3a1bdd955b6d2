import asyncio

import pytest

from sealedchat.client.session import ChatSession
from sealedchat.common.decorators import requires_session
from sealedchat.common.exceptions import NotAuthenticated


class Service:
    def __init__(self, session=None):
        self.session = session

    @requires_session()
    async def whoami(self):
        """Return the session user."""
        return self.session.user_id


def test_requires_session_allows_active_session():
    assert asyncio.run(Service(ChatSession(user_id="alice")).whoami()) == "alice"


def test_requires_session_rejects_missing_session():
    with pytest.raises(NotAuthenticated):
        asyncio.run(Service().whoami())


def test_requires_session_rejects_closed_session():
    session = ChatSession(user_id="alice")
    session.close()
    with pytest.raises(NotAuthenticated):
        asyncio.run(Service(session).whoami())


def test_requires_session_preserves_metadata():
    assert Service.whoami.__name__ == "whoami"
    assert Service.whoami.__doc__ == "Return the session user."


def test_require_active_checks_user():
    session = ChatSession(user_id="alice")
    session.require_active("alice")
    with pytest.raises(NotAuthenticated):
        session.require_active("bob")
