"""
Share staging store.

Holds image files handed over by a mobile share intent under a one-time
token until the client confirms the upload (typically with a purpose
picked on a follow-up screen). Entries older than the TTL are pruned on
every access.

Constructed once in create_app() and injected via app.state; nothing here
is process-global.
"""

from __future__ import annotations

import base64
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StagedFile:
    name:         str
    content_type: str
    data:         bytes

    @property
    def size(self) -> int:
        return len(self.data)

    def to_payload(self) -> dict:
        return {
            "name":   self.name,
            "type":   self.content_type,
            "size":   self.size,
            "base64": base64.b64encode(self.data).decode("ascii"),
        }


@dataclass
class StagedShare:
    token:      str
    created_at: float                 # wall-clock seconds (time.time)
    files:      list[StagedFile] = field(default_factory=list)


class ShareStagingStore:

    def __init__(
        self,
        ttl_seconds: float = 20 * 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ttl     = ttl_seconds
        self._clock   = clock
        self._entries: dict[str, StagedShare] = {}

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def prune(self) -> int:
        now = self._clock()
        stale = [t for t, share in self._entries.items() if now - share.created_at > self._ttl]
        for token in stale:
            del self._entries[token]
        if stale:
            logger.info("Share staging pruned | count=%d", len(stale))
        return len(stale)

    def stage(self, files: list[StagedFile]) -> StagedShare:
        self.prune()
        share = StagedShare(token=str(uuid.uuid4()), created_at=self._clock(), files=list(files))
        self._entries[share.token] = share
        logger.info("Share staged | token=%s files=%d", share.token, len(files))
        return share

    def get(self, token: str) -> StagedShare | None:
        self.prune()
        return self._entries.get(token)

    def remove(self, token: str) -> None:
        self._entries.pop(token, None)
