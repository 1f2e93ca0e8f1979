"""
Status notifications — watermark polling over the capture record store.

    items, watermark = await feed.poll(since)

returns every capture with updated_at strictly greater than `since`, oldest
first, and the watermark to pass on the next poll (the last item's
updated_at, or `since` unchanged when nothing moved). Strict ">" means an
item is never returned twice for the same watermark.

stream_updates() wraps poll() into the Server-Sent Events stream served at
GET /v1/captures/stream: `update` when something changed, `ping` on every
tick, `error` when a poll fails (the stream keeps going).
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import AsyncIterator, Awaitable, Callable

from capture_inbox.models.captures import CaptureItem
from capture_inbox.services.records import EPOCH, CaptureRecordStore, as_utc

logger = logging.getLogger(__name__)


def parse_watermark(value: str | None) -> datetime:
    """ISO-8601 → aware UTC datetime; missing or unparseable → epoch."""
    if not value:
        return EPOCH
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Invalid stream watermark, using epoch | since=%r", value)
        return EPOCH
    return as_utc(parsed)


def sse_event(event: str, data: object) -> str:
    """Format a single Server-Sent Event frame."""
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


class UpdateFeed:

    def __init__(self, store: CaptureRecordStore) -> None:
        self._store = store

    async def poll(
        self,
        since: datetime,
        capture_id: uuid.UUID | None = None,
    ) -> tuple[list[CaptureItem], datetime]:
        since = as_utc(since)
        items = await self._store.updates_since(since, capture_id)
        watermark = items[-1].updated_at if items else since
        return items, watermark


async def stream_updates(
    feed: UpdateFeed,
    since: datetime,
    *,
    capture_id: uuid.UUID | None,
    interval_seconds: float,
    serialize: Callable[[CaptureItem], dict],
    is_disconnected: Callable[[], Awaitable[bool]] | None = None,
) -> AsyncIterator[str]:
    watermark = since

    while True:
        if is_disconnected is not None and await is_disconnected():
            logger.debug("Stream client disconnected | watermark=%s", watermark.isoformat())
            return

        try:
            items, watermark = await feed.poll(watermark, capture_id)
            if items:
                yield sse_event("update", [serialize(item) for item in items])
            yield sse_event("ping", {"at": datetime.now(timezone.utc).isoformat()})
        except Exception as exc:
            logger.warning("Stream poll failed | error=%s", exc)
            yield sse_event("error", {"message": str(exc) or "Stream error"})

        await asyncio.sleep(interval_seconds)
