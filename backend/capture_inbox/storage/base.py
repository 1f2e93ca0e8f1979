"""
Storage adapter interface.

Adapters persist capture bytes under caller-chosen keys, encrypted at rest.
Captures are stored under `captures/<capture_id>/<sanitized filename>`.

Encryption is handled once, here: save() seals plaintext into an AES-GCM
envelope before the backend write, and read() opens it after the backend
read. Backends only ever see envelopes.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from uuid import UUID

from capture_inbox.storage.crypto import EnvelopeCipher

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


class ObjectNotFoundError(FileNotFoundError):
    """Raised by read() when no object exists under the key."""


class InvalidStorageKeyError(ValueError):
    """Raised when a key would resolve outside the adapter's root."""


@dataclass(frozen=True)
class StoredObject:
    key:        str
    size_bytes: int   # size of the stored envelope, not the plaintext


def sanitize_filename(filename: str) -> str:
    """Replace anything outside [a-zA-Z0-9._-] with "_"."""
    return _UNSAFE_FILENAME_CHARS.sub("_", filename)


def capture_storage_key(capture_id: UUID | str, filename: str) -> str:
    return f"captures/{capture_id}/{sanitize_filename(filename)}"


class StorageAdapter(ABC):
    """
    Async encrypted blob store.

      - save():   create or overwrite the object at `key`
      - read():   return the plaintext; ObjectNotFoundError when absent,
                  EnvelopeError when the stored bytes fail authentication
      - remove(): delete the object; a missing object is not an error

    Subclasses implement the raw _put/_get/_delete primitives.
    """

    def __init__(self, cipher: EnvelopeCipher) -> None:
        self._cipher = cipher

    @property
    @abstractmethod
    def driver_name(self) -> str:
        """Short name used in logs ("local", "s3")."""

    @abstractmethod
    async def _put(self, key: str, envelope: bytes) -> None: ...

    @abstractmethod
    async def _get(self, key: str) -> bytes: ...

    @abstractmethod
    async def _delete(self, key: str) -> None: ...

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def save(self, key: str, data: bytes) -> StoredObject:
        envelope = self._cipher.encrypt(data)
        await self._put(key, envelope)
        logger.info(
            "Storage save | driver=%s key=%s plain_bytes=%d stored_bytes=%d",
            self.driver_name, key, len(data), len(envelope),
        )
        return StoredObject(key=key, size_bytes=len(envelope))

    async def read(self, key: str) -> bytes:
        envelope = await self._get(key)
        return self._cipher.decrypt(envelope)

    async def remove(self, key: str) -> None:
        await self._delete(key)
        logger.info("Storage remove | driver=%s key=%s", self.driver_name, key)

    async def check_health(self) -> dict:
        return {"status": "ok", "driver": self.driver_name}
