"""
Unit Tests — Share staging store and status notifications
"""

from __future__ import annotations

import base64
import json
import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from capture_inbox.services.notifications import (
    UpdateFeed,
    parse_watermark,
    sse_event,
    stream_updates,
)
from capture_inbox.services.records import EPOCH
from capture_inbox.services.share_staging import StagedFile


# ─────────────────────────────────────────────────────────────────────────────
# Share staging
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestShareStagingStore:

    def test_stage_and_get(self, share_store):
        share = share_store.stage([StagedFile("a.png", "image/png", b"abc")])

        fetched = share_store.get(share.token)
        assert fetched is share
        assert fetched.files[0].size == 3
        assert len(share_store) == 1

    def test_payload_is_base64(self):
        payload = StagedFile("a.png", "image/png", b"abc").to_payload()
        assert payload == {
            "name":   "a.png",
            "type":   "image/png",
            "size":   3,
            "base64": base64.b64encode(b"abc").decode(),
        }

    def test_unknown_token(self, share_store):
        assert share_store.get("nope") is None

    def test_expired_entries_pruned_on_access(self, share_store, clock):
        old = share_store.stage([StagedFile("a.png", "image/png", b"1")])
        clock.advance(1201)
        fresh = share_store.stage([StagedFile("b.png", "image/png", b"2")])

        assert share_store.get(old.token) is None
        assert share_store.get(fresh.token) is fresh
        assert len(share_store) == 1

    def test_entry_alive_at_ttl_boundary(self, share_store, clock):
        share = share_store.stage([StagedFile("a.png", "image/png", b"1")])
        clock.advance(1200)
        assert share_store.get(share.token) is share

    def test_remove_is_idempotent(self, share_store):
        share = share_store.stage([])
        share_store.remove(share.token)
        share_store.remove(share.token)
        assert share_store.get(share.token) is None

    def test_tokens_unique(self, share_store):
        tokens = {share_store.stage([]).token for _ in range(10)}
        assert len(tokens) == 10


# ─────────────────────────────────────────────────────────────────────────────
# Notifications
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestParseWatermark:

    def test_missing_is_epoch(self):
        assert parse_watermark(None) == EPOCH
        assert parse_watermark("") == EPOCH

    def test_invalid_is_epoch(self):
        assert parse_watermark("not-a-date") == EPOCH

    def test_z_suffix(self):
        assert parse_watermark("2024-05-01T10:00:00Z") == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)

    def test_naive_taken_as_utc(self):
        assert parse_watermark("2024-05-01T10:00:00") == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)

    def test_offset_converted_to_utc(self):
        assert parse_watermark("2024-05-01T19:00:00+09:00") == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)


@pytest.mark.unit
class TestUpdateFeed:

    async def test_poll_advances_watermark(self, record_store, make_capture):
        feed = UpdateFeed(record_store)
        item = await make_capture()

        items, watermark = await feed.poll(EPOCH)
        assert [i.id for i in items] == [item.id]
        assert watermark == items[-1].updated_at

        again, unchanged = await feed.poll(watermark)
        assert again == []
        assert unchanged == watermark

    async def test_poll_sees_later_transition(self, record_store, make_capture):
        feed = UpdateFeed(record_store)
        item = await make_capture()
        _, watermark = await feed.poll(EPOCH)

        await record_store.update(item.id, status="PROCESSING")

        items, _ = await feed.poll(watermark)
        assert [(i.id, i.status) for i in items] == [(item.id, "PROCESSING")]


def _frames(chunks: list[str]) -> list[tuple[str, object]]:
    out = []
    for chunk in chunks:
        event_line, data_line = chunk.strip().split("\n")
        out.append((event_line.removeprefix("event: "), json.loads(data_line.removeprefix("data: "))))
    return out


@pytest.mark.unit
class TestStreamUpdates:

    def test_sse_event_format(self):
        assert sse_event("ping", {"a": 1}) == 'event: ping\ndata: {"a": 1}\n\n'

    async def test_update_then_ping(self):
        capture_id = uuid.uuid4()
        item = object()
        feed = AsyncMock()
        feed.poll = AsyncMock(return_value=([item], EPOCH))
        disconnected = AsyncMock(side_effect=[False, True])

        chunks = [c async for c in stream_updates(
            feed, EPOCH,
            capture_id=capture_id,
            interval_seconds=0,
            serialize=lambda _: {"id": str(capture_id)},
            is_disconnected=disconnected,
        )]

        frames = _frames(chunks)
        assert [name for name, _ in frames] == ["update", "ping"]
        assert frames[0][1] == [{"id": str(capture_id)}]
        feed.poll.assert_awaited_once_with(EPOCH, capture_id)

    async def test_quiet_tick_only_pings(self):
        feed = AsyncMock()
        feed.poll = AsyncMock(return_value=([], EPOCH))

        chunks = [c async for c in stream_updates(
            feed, EPOCH,
            capture_id=None,
            interval_seconds=0,
            serialize=dict,
            is_disconnected=AsyncMock(side_effect=[False, True]),
        )]

        assert [name for name, _ in _frames(chunks)] == ["ping"]

    async def test_poll_error_emits_error_and_continues(self):
        later = datetime(2024, 1, 1, tzinfo=timezone.utc)
        feed = AsyncMock()
        feed.poll = AsyncMock(side_effect=[RuntimeError("db down"), ([], later)])

        chunks = [c async for c in stream_updates(
            feed, EPOCH,
            capture_id=None,
            interval_seconds=0,
            serialize=dict,
            is_disconnected=AsyncMock(side_effect=[False, False, True]),
        )]

        frames = _frames(chunks)
        assert frames[0] == ("error", {"message": "db down"})
        assert frames[1][0] == "ping"
        # The failed poll left the watermark untouched
        assert feed.poll.await_args_list[1].args == (EPOCH, None)
