"""Infrastructure layer: local-only identity key persistence.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from sealedchat.common.exceptions import InvalidKeyMaterial
from sealedchat.common.models import StoredIdentity

logger = logging.getLogger(__name__)


class FileKeyStore:
    """Stores one identity record per user as a private JSON file.

    Files are written with mode 0600 inside a 0700 directory. A record is
    published under its final name with a hard link, so it appears complete
    or not at all and an existing record is never replaced, even when several
    processes share the directory.
    """

    def __init__(self, keys_dir: Path):
        self.keys_dir = Path(keys_dir)

    def path_for(self, user_id: str) -> Path:
        digest = hashlib.sha256(user_id.encode("utf-8")).hexdigest()
        return self.keys_dir / f"identity_{digest}.json"

    def load(self, user_id: str) -> StoredIdentity | None:
        """Load the identity record for ``user_id`` if one exists."""
        path = self.path_for(user_id)
        try:
            with path.open() as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as err:
            msg = f"Identity file is corrupt: {path}"
            raise InvalidKeyMaterial(msg) from err
        try:
            identity = StoredIdentity.model_validate(data)
        except ValidationError as err:
            msg = f"Identity file has an invalid format: {path}"
            raise InvalidKeyMaterial(msg) from err
        if identity.user_id != user_id:
            msg = f"Identity file {path} belongs to another user"
            raise InvalidKeyMaterial(msg)
        return identity

    def save(self, identity: StoredIdentity) -> bool:
        """Persist a new identity record, readable by the owner only.

        Returns False, leaving the file untouched, if a record already exists.
        """
        self.keys_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(self.keys_dir, 0o700)
        path = self.path_for(identity.user_id)
        # mkstemp creates the file with mode 0600
        fd, tmp_name = tempfile.mkstemp(dir=self.keys_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(identity.model_dump_json())
            os.link(tmp_name, path)
        except FileExistsError:
            logger.info("Identity key for %s already exists, keeping it", identity.user_id)
            return False
        finally:
            os.unlink(tmp_name)
        logger.info("Identity key saved for %s", identity.user_id)
        return True


class MemoryKeyStore:
    """Process-local keystore, used by tests and ephemeral clients."""

    def __init__(self) -> None:
        self._records: dict[str, StoredIdentity] = {}

    def load(self, user_id: str) -> StoredIdentity | None:
        return self._records.get(user_id)

    def save(self, identity: StoredIdentity) -> bool:
        if identity.user_id in self._records:
            return False
        self._records[identity.user_id] = identity
        return True
