"""
Unit Tests — CaptureProcessor
═════════════════════════════
Real record store (SQLite) and MemoryStorage; OCR is a scripted stand-in.

Coverage:
  ✅ UPLOADED → DONE with every derived field written in one update
  ✅ PROCESSING is visible while OCR runs
  ✅ Purpose digest only for an attached, active purpose
  ✅ OCR text stripped and truncated to 6000 chars
  ✅ DONE → SKIPPED with the row left untouched (updated_at included)
  ✅ Missing → NOT_FOUND, storage error → FAILED (no FAILED write)
  ✅ Deleted mid-run → NOT_FOUND
"""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock

import pytest

from capture_inbox.models.captures import CaptureItem
from capture_inbox.processing.ocr import OcrAdapter
from capture_inbox.services.pipeline import (
    PIPELINE_TAG_LIMIT,
    CaptureProcessor,
    PipelineOutcome,
    PipelineResult,
    describe_error,
)


class ScriptedOcr(OcrAdapter):
    """Returns fixed text; optionally runs a hook mid-extraction."""

    def __init__(self, text: str, during=None) -> None:
        self.text   = text
        self.during = during
        self.calls: list[tuple[bytes, str]] = []

    @property
    def name(self) -> str:
        return "scripted"

    async def extract(self, data: bytes, filename: str) -> str:
        self.calls.append((data, filename))
        if self.during is not None:
            await self.during()
        return self.text


RECEIPT_TEXT = (
    "Coffee House receipt. Latte $4.50 on 2024-03-01 at 08:15. "
    "Total $4.50. Thank you for visiting!"
)


@pytest.fixture
def make_processor(record_store, storage):
    def _build(ocr: OcrAdapter) -> CaptureProcessor:
        return CaptureProcessor(record_store, storage, ocr)
    return _build


@pytest.mark.unit
class TestHappyPath:

    async def test_capture_processed_to_done(self, make_processor, make_capture, record_store):
        item = await make_capture(filename="receipt.png", data=b"img-bytes")
        ocr  = ScriptedOcr(f"  {RECEIPT_TEXT}  \n")

        result = await make_processor(ocr).run(item.id)

        assert result == PipelineResult(item.id, PipelineOutcome.DONE)
        assert ocr.calls == [(b"img-bytes", "receipt.png")]

        done = await record_store.get(item.id)
        assert done.status == "DONE"
        assert done.ocr_text == RECEIPT_TEXT
        assert done.category == "receipt"
        assert done.summary.startswith("Coffee House receipt.")
        assert 0 < len(done.tags) <= PIPELINE_TAG_LIMIT
        assert len(done.action_suggestions) == 3
        assert done.action_suggestions[0] == {"title": "Log the expense", "reason": "Record the spending right away."}
        assert done.purpose_summary is None
        assert done.purpose_checklist == []
        assert done.failure_reason is None

    async def test_processing_visible_during_ocr(self, make_processor, make_capture, record_store):
        item = await make_capture()
        seen: list[str] = []

        async def _peek():
            seen.append((await record_store.get(item.id)).status)

        await make_processor(ScriptedOcr("text", during=_peek)).run(item.id)
        assert seen == ["PROCESSING"]

    async def test_failed_capture_is_reprocessed(self, make_processor, make_capture, record_store):
        item = await make_capture(status="FAILED", failure_reason="earlier error")

        result = await make_processor(ScriptedOcr("hello there")).run(item.id)

        assert result.outcome is PipelineOutcome.DONE
        done = await record_store.get(item.id)
        assert done.status == "DONE"
        assert done.failure_reason is None

    async def test_ocr_text_truncated(self, make_processor, make_capture, record_store):
        item = await make_capture()
        await make_processor(ScriptedOcr("a" * 7000)).run(item.id)
        assert len((await record_store.get(item.id)).ocr_text) == 6000

    async def test_empty_ocr_text_summary_fallback(self, make_processor, make_capture, record_store):
        item = await make_capture(filename="blank.png")
        await make_processor(ScriptedOcr("   ")).run(item.id)

        done = await record_store.get(item.id)
        assert done.ocr_text == ""
        assert done.category == "misc"
        assert done.summary == "No OCR text found. Source: blank.png."
        assert done.tags == []


@pytest.mark.unit
class TestPurposeDigest:

    async def test_active_purpose_produces_digest(
        self, make_processor, make_capture, make_purpose, record_store,
    ):
        purpose = await make_purpose("Expenses", instruction="Track spending", sample_keywords=["total"])
        item = await make_capture(purpose_id=purpose.id)

        await make_processor(ScriptedOcr(RECEIPT_TEXT)).run(item.id)

        done = await record_store.get(item.id)
        assert done.purpose_summary == "Total $4.50."
        assert "Check date: 2024-03-01" in done.purpose_checklist
        assert "Check time: 08:15" in done.purpose_checklist
        assert "Check amount: $4.50" in done.purpose_checklist

    async def test_inactive_purpose_ignored(
        self, make_processor, make_capture, make_purpose, record_store,
    ):
        purpose = await make_purpose("Old", is_active=False)
        item = await make_capture(purpose_id=purpose.id)

        await make_processor(ScriptedOcr(RECEIPT_TEXT)).run(item.id)

        done = await record_store.get(item.id)
        assert done.status == "DONE"
        assert done.purpose_summary is None
        assert done.purpose_checklist == []


@pytest.mark.unit
class TestNonDoneOutcomes:

    async def test_done_capture_skipped(self, make_processor, make_capture):
        item = await make_capture(status="DONE")
        ocr  = ScriptedOcr("unused")

        result = await make_processor(ocr).run(item.id)

        assert result.outcome is PipelineOutcome.SKIPPED
        assert result.succeeded
        assert ocr.calls == []

    async def test_second_run_leaves_done_row_untouched(
        self, make_processor, make_capture, make_purpose, record_store,
    ):
        purpose = await make_purpose("Expenses", sample_keywords=["total"])
        item    = await make_capture(purpose_id=purpose.id)
        await make_processor(ScriptedOcr(RECEIPT_TEXT)).run(item.id)
        first = await record_store.get(item.id)

        ocr    = ScriptedOcr("different text entirely")
        result = await make_processor(ocr).run(item.id)

        assert result.outcome is PipelineOutcome.SKIPPED
        again = await record_store.get(item.id)
        columns = [c.key for c in CaptureItem.__table__.columns]
        assert "updated_at" in columns
        assert {c: getattr(again, c) for c in columns} == {c: getattr(first, c) for c in columns}
        assert ocr.calls == []

    async def test_missing_capture_not_found(self, make_processor):
        missing = uuid.uuid4()
        result  = await make_processor(ScriptedOcr("x")).run(missing)

        assert result.outcome is PipelineOutcome.NOT_FOUND
        assert result.error == f"Capture not found: {missing}"
        assert not result.succeeded

    async def test_storage_error_returns_failed_without_writing_failed(
        self, make_processor, make_capture, storage, record_store,
    ):
        item = await make_capture()
        storage.objects.clear()

        result = await make_processor(ScriptedOcr("x")).run(item.id)

        assert result.outcome is PipelineOutcome.FAILED
        assert item.storage_key in result.error
        # FAILED is written by the task layer once retries are exhausted
        assert (await record_store.get(item.id)).status == "PROCESSING"

    async def test_load_error_returns_failed(self, storage):
        store = AsyncMock()
        store.get.side_effect = ConnectionError("db down")

        result = await CaptureProcessor(store, storage, ScriptedOcr("x")).run(uuid.uuid4())

        assert result.outcome is PipelineOutcome.FAILED
        assert result.error == "db down"

    async def test_deleted_mid_run_is_not_found(self, make_processor, make_capture, record_store):
        item = await make_capture()

        async def _delete():
            await record_store.delete(item.id)

        result = await make_processor(ScriptedOcr("x", during=_delete)).run(item.id)
        assert result.outcome is PipelineOutcome.NOT_FOUND


@pytest.mark.unit
class TestResultHelpers:

    def test_as_dict(self):
        capture_id = uuid.uuid4()
        result = PipelineResult(capture_id, PipelineOutcome.FAILED, "boom")
        assert result.as_dict() == {"capture_id": str(capture_id), "outcome": "failed", "error": "boom"}

    def test_describe_error_falls_back_to_class_name(self):
        assert describe_error(TimeoutError()) == "TimeoutError"
        assert describe_error(ValueError("bad")) == "bad"
