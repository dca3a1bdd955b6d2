import asyncio
import json
import stat

import pytest
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from sealedchat.client.domain.entities import ConversationKey
from sealedchat.client.identity import IdentityKeyService
from sealedchat.client.infrastructure.keystore import FileKeyStore, MemoryKeyStore
from sealedchat.common.config import Config
from sealedchat.common.crypto import CryptoBackend, b64encode
from sealedchat.common.exceptions import (
    DecryptionFailed,
    InvalidKeyMaterial,
    KeyNotFound,
    NotAuthenticated,
    StorageUnavailable,
)
from sealedchat.common.models import PublicKeyRecord
from sealedchat.server.stores import MemoryDirectory


class CountingKeyStore(MemoryKeyStore):
    def __init__(self):
        super().__init__()
        self.saves = 0

    def save(self, identity):
        self.saves += 1
        return super().save(identity)


class LateDirectory(MemoryDirectory):
    """Directory whose user record only appears after the first publish attempt."""

    def __init__(self):
        super().__init__()
        self.attempts = 0

    async def set_public_key(self, user_id, record):
        self.attempts += 1
        if self.attempts == 2:
            await self.register(user_id, None)
        await super().set_public_key(user_id, record)


def _service(keystore, directory=None, backend=None, **kwargs):
    kwargs.setdefault("publish_retries", 0)
    kwargs.setdefault("publish_backoff", 0)
    return IdentityKeyService(keystore, directory, backend=backend, **kwargs)


def test_identity_is_created_once_and_persisted(tmp_path, backend):
    """Test the key pair survives a new service instance over the same keystore."""
    keys_dir = tmp_path / "keys"

    async def main():
        first = _service(FileKeyStore(keys_dir), backend=backend)
        pair = await first.get_or_create_identity_key_pair("alice")
        again = await first.get_or_create_identity_key_pair("alice")
        assert again is pair

        second = _service(FileKeyStore(keys_dir), backend=backend)
        reloaded = await second.get_or_create_identity_key_pair("alice")
        return first.export_public_key(pair.public_key), second.export_public_key(
            reloaded.public_key
        )

    original, reloaded = asyncio.run(main())
    assert original == reloaded


def test_identity_file_is_owner_only(tmp_path, backend):
    keys_dir = tmp_path / "keys"
    asyncio.run(
        _service(FileKeyStore(keys_dir), backend=backend).get_or_create_identity_key_pair(
            "alice"
        )
    )

    key_file = FileKeyStore(keys_dir).path_for("alice")
    assert key_file.exists()
    assert stat.S_IMODE(key_file.stat().st_mode) == 0o600
    assert stat.S_IMODE(keys_dir.stat().st_mode) == 0o700
    assert not list(keys_dir.glob("*.tmp"))


def test_concurrent_first_calls_generate_one_pair(backend):
    keystore = CountingKeyStore()
    service = _service(keystore, backend=backend)

    async def main():
        return await asyncio.gather(
            *(service.get_or_create_identity_key_pair("alice") for _ in range(5))
        )

    pairs = asyncio.run(main())
    assert all(p is pairs[0] for p in pairs)
    assert keystore.saves == 1


class StaleFileKeyStore(FileKeyStore):
    """Reports no identity on the first load, as a process that lost a race would."""

    def __init__(self, keys_dir):
        super().__init__(keys_dir)
        self.loads = 0

    def load(self, user_id):
        self.loads += 1
        if self.loads == 1:
            return None
        return super().load(user_id)


def test_services_sharing_a_keystore_agree(tmp_path, backend):
    """Test two services on one key directory end up with a single identity."""
    keystore = FileKeyStore(tmp_path / "keys")
    first = _service(keystore, backend=backend)
    second = _service(keystore, backend=backend)

    async def main():
        return await asyncio.gather(
            first.get_or_create_identity_key_pair("alice"),
            second.get_or_create_identity_key_pair("alice"),
        )

    a, b = asyncio.run(main())
    on_disk = keystore.load("alice").public_key
    assert first.export_public_key(a.public_key) == on_disk
    assert second.export_public_key(b.public_key) == on_disk


def test_losing_writer_reloads_existing_identity(tmp_path, backend):
    keys_dir = tmp_path / "keys"

    async def main():
        winner = _service(FileKeyStore(keys_dir), backend=backend)
        pair = await winner.get_or_create_identity_key_pair("alice")
        loser = _service(StaleFileKeyStore(keys_dir), backend=backend)
        reloaded = await loser.get_or_create_identity_key_pair("alice")
        return winner.export_public_key(pair.public_key), loser.export_public_key(
            reloaded.public_key
        )

    original, reloaded = asyncio.run(main())
    assert reloaded == original
    assert FileKeyStore(keys_dir).load("alice").public_key == original


def test_file_keystore_never_replaces_a_record(tmp_path, backend):
    keys_dir = tmp_path / "keys"
    keystore = MemoryKeyStore()
    asyncio.run(_service(keystore, backend=backend).get_or_create_identity_key_pair("alice"))
    record = keystore.load("alice")
    other = record.model_copy(update={"public_key": "replaced"})

    store = FileKeyStore(keys_dir)
    assert store.save(record) is True
    assert store.save(other) is False
    assert store.load("alice").public_key == record.public_key
    assert not list(keys_dir.glob("*.tmp"))


def test_file_keystore_names_do_not_collide(tmp_path):
    store = FileKeyStore(tmp_path)
    paths = {store.path_for(uid) for uid in ("a/b", "a_b", "a.b", "../a_b")}
    assert len(paths) == 4
    assert all(p.parent == tmp_path for p in paths)


def test_corrupt_identity_file_is_rejected(tmp_path, backend):
    keys_dir = tmp_path / "keys"
    keys_dir.mkdir()
    FileKeyStore(keys_dir).path_for("alice").write_text("{not json")

    with pytest.raises(InvalidKeyMaterial):
        asyncio.run(
            _service(FileKeyStore(keys_dir), backend=backend).get_or_create_identity_key_pair(
                "alice"
            )
        )


def test_mismatched_stored_public_key_is_rejected(backend):
    keystore = MemoryKeyStore()

    async def main():
        await _service(keystore, backend=backend).get_or_create_identity_key_pair("alice")
        other = backend.generate_key_pair()
        record = keystore.load("alice")
        tampered = MemoryKeyStore()
        tampered.save(
            record.model_copy(
                update={"public_key": backend.export_public_key(other.public_key())}
            )
        )
        await _service(tampered, backend=backend).get_or_create_identity_key_pair("alice")

    with pytest.raises(InvalidKeyMaterial):
        asyncio.run(main())


def test_stored_identity_repr_hides_private_key(tmp_path, backend):
    keys_dir = tmp_path / "keys"
    asyncio.run(
        _service(FileKeyStore(keys_dir), backend=backend).get_or_create_identity_key_pair(
            "alice"
        )
    )
    stored = FileKeyStore(keys_dir).load("alice")
    assert "PRIVATE KEY" not in repr(stored)
    assert "PRIVATE KEY" in json.loads(FileKeyStore(keys_dir).path_for("alice").read_text())[
        "private_key"
    ]


def test_export_import_public_key(backend):
    service = _service(MemoryKeyStore(), backend=backend)
    pair = asyncio.run(service.get_or_create_identity_key_pair("alice"))

    exported = service.export_public_key(pair.public_key)
    imported = service.import_public_key(exported)
    assert service.export_public_key(imported) == exported


@pytest.mark.parametrize(
    "make_key",
    [
        lambda: ec.generate_private_key(ec.SECP256R1()).public_key(),
        lambda: rsa.generate_private_key(public_exponent=65537, key_size=1024).public_key(),
    ],
    ids=["ec", "rsa-1024"],
)
def test_import_rejects_unsupported_keys(make_key):
    service = _service(MemoryKeyStore())
    exported = CryptoBackend.export_public_key(make_key())

    with pytest.raises(InvalidKeyMaterial):
        service.import_public_key(exported)


@pytest.mark.parametrize("data", ["", "not base64!!", b64encode(b"not a key")])
def test_import_rejects_garbage(data):
    with pytest.raises(InvalidKeyMaterial):
        _service(MemoryKeyStore()).import_public_key(data)


def test_publish_public_key(backend):
    directory = MemoryDirectory()
    service = _service(MemoryKeyStore(), directory, backend=backend)

    async def main():
        await directory.register("alice", "Alice")
        pair = await service.get_or_create_identity_key_pair("alice")
        published = await service.publish_public_key("alice", pair.public_key)
        return pair, published, await directory.get("alice")

    pair, published, entry = asyncio.run(main())
    assert published is True
    assert entry.public_key.scheme == Config().PUBLIC_KEY_SCHEME
    assert entry.public_key.public_key == service.export_public_key(pair.public_key)


def test_publish_without_directory_record_gives_up(backend):
    directory = MemoryDirectory()
    service = _service(MemoryKeyStore(), directory, backend=backend, publish_retries=2)

    async def main():
        pair = await service.get_or_create_identity_key_pair("alice")
        return await service.publish_public_key("alice", pair.public_key)

    assert asyncio.run(main()) is False
    assert "alice" not in directory.entries


def test_publish_retries_until_record_exists(backend):
    directory = LateDirectory()
    service = _service(MemoryKeyStore(), directory, backend=backend, publish_retries=3)

    async def main():
        pair = await service.get_or_create_identity_key_pair("alice")
        return await service.publish_public_key("alice", pair.public_key)

    assert asyncio.run(main()) is True
    assert directory.attempts == 2
    assert directory.entries["alice"].public_key is not None


def test_publish_without_directory_raises(backend):
    service = _service(MemoryKeyStore(), backend=backend)

    async def main():
        pair = await service.get_or_create_identity_key_pair("alice")
        await service.publish_public_key("alice", pair.public_key)

    with pytest.raises(StorageUnavailable):
        asyncio.run(main())


def test_fetch_public_key_missing(backend):
    directory = MemoryDirectory()
    service = _service(MemoryKeyStore(), directory, backend=backend)

    async def main():
        await directory.register("bob", "Bob")
        await service.fetch_public_key("bob")

    with pytest.raises(KeyNotFound) as exc_info:
        asyncio.run(main())
    assert exc_info.value.user_id == "bob"
    assert exc_info.value.status_code == 409


def test_fetch_public_key_unknown_user(backend):
    service = _service(MemoryKeyStore(), MemoryDirectory(), backend=backend)

    with pytest.raises(KeyNotFound):
        asyncio.run(service.fetch_public_key("nobody"))


def test_fetch_public_key_unsupported_scheme(backend):
    directory = MemoryDirectory()
    service = _service(MemoryKeyStore(), directory, backend=backend)

    async def main():
        await directory.register("bob", "Bob")
        pair = await service.get_or_create_identity_key_pair("bob")
        await directory.set_public_key(
            "bob",
            PublicKeyRecord(
                scheme="v0:legacy", public_key=service.export_public_key(pair.public_key)
            ),
        )
        await service.fetch_public_key("bob")

    with pytest.raises(KeyNotFound):
        asyncio.run(main())


def test_wrap_and_unwrap(backend):
    service = _service(MemoryKeyStore(), backend=backend)
    key = ConversationKey(backend.generate_conversation_key())

    async def main():
        pair = await service.get_or_create_identity_key_pair("alice")
        wrapped = await service.wrap_key(pair.public_key, key)
        return wrapped, await service.unwrap_key("alice", b64encode(wrapped))

    wrapped, unwrapped = asyncio.run(main())
    assert unwrapped == key
    assert key.raw not in wrapped


def test_unwrap_key_wrapped_for_someone_else(backend):
    service = _service(MemoryKeyStore(), backend=backend)
    key = ConversationKey(backend.generate_conversation_key())

    async def main():
        await service.get_or_create_identity_key_pair("alice")
        bob = await service.get_or_create_identity_key_pair("bob")
        wrapped = await service.wrap_key(bob.public_key, key)
        await service.unwrap_key("alice", b64encode(wrapped))

    with pytest.raises(DecryptionFailed):
        asyncio.run(main())


def test_unwrap_key_rejects_bad_base64(backend):
    service = _service(MemoryKeyStore(), backend=backend)

    async def main():
        await service.get_or_create_identity_key_pair("alice")
        await service.unwrap_key("alice", "%%%")

    with pytest.raises(DecryptionFailed):
        asyncio.run(main())


def test_unwrap_requires_loaded_identity(backend):
    service = _service(MemoryKeyStore(), backend=backend)

    async def main():
        await service.get_or_create_identity_key_pair("alice")
        service.forget("alice")
        await service.unwrap_key("alice", b64encode(b"x" * 256))

    with pytest.raises(NotAuthenticated):
        asyncio.run(main())
