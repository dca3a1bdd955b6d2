from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from sealedchat.client.client import ChatClient
from sealedchat.client.infrastructure.keystore import MemoryKeyStore
from sealedchat.common.crypto import CryptoBackend
from sealedchat.common.models import ClientConfig
from sealedchat.server.stores import (
    MemoryConversationStore,
    MemoryDirectory,
    MemoryMessageStore,
)

_KEY_POOL: list = []


class PooledBackend(CryptoBackend):
    """Hands out pre-generated RSA keys so tests don't pay for keygen repeatedly."""

    def generate_key_pair(self):  # type: ignore[override]
        if _KEY_POOL:
            return _KEY_POOL.pop()
        return super().generate_key_pair()


@pytest.fixture(scope="session")
def rsa_keys() -> list:
    backend = CryptoBackend()
    return [backend.generate_key_pair() for _ in range(6)]


@pytest.fixture
def backend(rsa_keys: list) -> CryptoBackend:
    _KEY_POOL[:] = list(rsa_keys)
    return PooledBackend()


@dataclass
class Backend:
    """The shared, untrusted side: directory and stores."""

    directory: MemoryDirectory = field(default_factory=MemoryDirectory)
    conversations: MemoryConversationStore = field(
        default_factory=MemoryConversationStore
    )
    messages: MemoryMessageStore = field(default_factory=MemoryMessageStore)


@pytest.fixture
def shared() -> Backend:
    return Backend()


@pytest.fixture
def make_client(shared: Backend, backend: CryptoBackend):
    """Build a client for one device, registering the user in the directory."""

    async def factory(user_id: str, *, register: bool = True) -> ChatClient:
        if register:
            await shared.directory.register(user_id, user_id.title())
        client = ChatClient(
            shared.directory,
            shared.conversations,
            shared.messages,
            MemoryKeyStore(),
            client_config=ClientConfig(publish_retries=0, publish_backoff=0),
            backend=backend,
        )
        await client.init_identity(user_id, user_id.title())
        return client

    return factory
