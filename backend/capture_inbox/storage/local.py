"""
Local filesystem storage driver.

Objects live at <root>/<key>. Keys are resolved and checked against the
root so "../" segments can never escape it. Blocking file I/O runs in the
default thread executor.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

from capture_inbox.storage.base import (
    InvalidStorageKeyError,
    ObjectNotFoundError,
    StorageAdapter,
)
from capture_inbox.storage.crypto import EnvelopeCipher


class LocalStorage(StorageAdapter):

    def __init__(self, root: str | Path, cipher: EnvelopeCipher) -> None:
        super().__init__(cipher)
        self._root = Path(root).resolve()

    @property
    def driver_name(self) -> str:
        return "local"

    @property
    def root(self) -> Path:
        return self._root

    def _path_for(self, key: str) -> Path:
        path = (self._root / key).resolve()
        if path == self._root or self._root not in path.parents:
            raise InvalidStorageKeyError(f"Storage key escapes root: {key!r}")
        return path

    # ------------------------------------------------------------------
    # Blocking primitives — run in executor
    # ------------------------------------------------------------------

    def _write_sync(self, path: Path, envelope: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_bytes(envelope)
        os.replace(tmp, path)

    @staticmethod
    def _read_sync(path: Path) -> bytes:
        return path.read_bytes()

    @staticmethod
    def _delete_sync(path: Path) -> None:
        path.unlink(missing_ok=True)

    # ------------------------------------------------------------------
    # StorageAdapter primitives
    # ------------------------------------------------------------------

    async def _put(self, key: str, envelope: bytes) -> None:
        path = self._path_for(key)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write_sync, path, envelope)

    async def _get(self, key: str) -> bytes:
        path = self._path_for(key)
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._read_sync, path)
        except FileNotFoundError as exc:
            raise ObjectNotFoundError(f"Object not found: {key}") from exc

    async def _delete(self, key: str) -> None:
        path = self._path_for(key)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._delete_sync, path)

    async def check_health(self) -> dict:
        writable = os.access(self._root, os.W_OK) if self._root.exists() else True
        return {
            "status": "ok" if writable else "error",
            "driver": self.driver_name,
        }
