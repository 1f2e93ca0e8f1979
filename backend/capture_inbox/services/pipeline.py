"""
Capture Processing Pipeline

Drives one capture through the status state machine:

    UPLOADED → PROCESSING → DONE
                          ↘ FAILED   (written by the task layer, see below)

Per run:
  1. Load the capture (with its purpose). Missing → NOT_FOUND.
  2. Already DONE → SKIPPED (safe under at-least-once delivery).
  3. status → PROCESSING
  4. Read decrypted bytes from storage
  5. OCR, then strip + truncate to OCR_TEXT_LIMIT chars
  6. Category, summary, tags (8), action suggestions
  7. Purpose digest when an active purpose is attached; else cleared
  8. One update: derived fields + status=DONE + failure_reason=None

Errors in steps 3–8 are not raised. They are returned as a FAILED
PipelineResult carrying the error text; workers.tasks maps that value to a
retry or, once attempts are exhausted, to a best-effort FAILED write. OCR
problems never reach this layer: adapters return fallback text instead.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum

from capture_inbox.models.captures import OCR_TEXT_LIMIT, CaptureStatus
from capture_inbox.processing.ocr import OcrAdapter
from capture_inbox.processing.text import (
    PurposeProfile,
    classify_category,
    extract_tags,
    generate_action_suggestions,
    generate_summary,
    organize_by_purpose,
)
from capture_inbox.services.records import CaptureRecordStore
from capture_inbox.storage.base import StorageAdapter

logger = logging.getLogger(__name__)

PIPELINE_TAG_LIMIT = 8


class PipelineOutcome(str, Enum):
    DONE      = "done"
    SKIPPED   = "skipped"     # already DONE
    NOT_FOUND = "not_found"   # orphaned job
    FAILED    = "failed"


@dataclass(frozen=True)
class PipelineResult:
    capture_id: uuid.UUID
    outcome:    PipelineOutcome
    error:      str | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome in (PipelineOutcome.DONE, PipelineOutcome.SKIPPED)

    def as_dict(self) -> dict[str, str | None]:
        return {
            "capture_id": str(self.capture_id),
            "outcome":    self.outcome.value,
            "error":      self.error,
        }


def describe_error(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


class CaptureProcessor:
    """
    Stateless orchestrator; all collaborators are injected.
    Safe to share across tasks in one worker process.
    """

    def __init__(
        self,
        store:   CaptureRecordStore,
        storage: StorageAdapter,
        ocr:     OcrAdapter,
    ) -> None:
        self._store   = store
        self._storage = storage
        self._ocr     = ocr

    async def run(self, capture_id: uuid.UUID) -> PipelineResult:
        t0 = time.monotonic()

        # ---- Step 1: Load ------------------------------------------------
        try:
            item = await self._store.get(capture_id, with_purpose=True)
        except Exception as exc:
            logger.exception("Capture load failed | capture=%s", capture_id)
            return PipelineResult(capture_id, PipelineOutcome.FAILED, describe_error(exc))

        if item is None:
            logger.error("Capture not found | capture=%s", capture_id)
            return PipelineResult(
                capture_id, PipelineOutcome.NOT_FOUND, f"Capture not found: {capture_id}",
            )

        # ---- Step 2: Idempotent skip ---------------------------------------
        if item.status == CaptureStatus.DONE.value:
            logger.info("Capture already done, skipping | capture=%s", capture_id)
            return PipelineResult(capture_id, PipelineOutcome.SKIPPED)

        # ---- Steps 3–8 -----------------------------------------------------
        try:
            await self._store.update(capture_id, status=CaptureStatus.PROCESSING.value)

            data = await self._storage.read(item.storage_key)

            ocr_text = await self._ocr.extract(data, item.original_filename)
            text     = ocr_text.strip()[:OCR_TEXT_LIMIT]

            category = classify_category(text)
            summary  = generate_summary(text, item.original_filename)
            tags     = extract_tags(text, PIPELINE_TAG_LIMIT)
            actions  = generate_action_suggestions(category)

            purpose_summary: str | None = None
            purpose_checklist: list[str] = []
            purpose = item.purpose
            if purpose is not None and purpose.is_active:
                digest = organize_by_purpose(
                    text,
                    PurposeProfile(
                        name=purpose.name,
                        instruction=purpose.instruction,
                        sample_keywords=list(purpose.sample_keywords or []),
                    ),
                    item.original_filename,
                )
                purpose_summary   = digest.purpose_summary
                purpose_checklist = digest.purpose_checklist

            updated = await self._store.update(
                capture_id,
                status=CaptureStatus.DONE.value,
                category=category,
                summary=summary,
                purpose_summary=purpose_summary,
                purpose_checklist=purpose_checklist,
                ocr_text=text,
                tags=tags,
                action_suggestions=[a.to_dict() for a in actions],
                failure_reason=None,
            )
        except Exception as exc:
            logger.exception("Capture processing failed | capture=%s", capture_id)
            return PipelineResult(capture_id, PipelineOutcome.FAILED, describe_error(exc))

        if updated is None:
            # Deleted while processing
            logger.warning("Capture vanished during processing | capture=%s", capture_id)
            return PipelineResult(
                capture_id, PipelineOutcome.NOT_FOUND, f"Capture not found: {capture_id}",
            )

        logger.info(
            "Capture done | capture=%s category=%s tags=%d chars=%d purpose=%s elapsed_ms=%.0f",
            capture_id, category, len(tags), len(text),
            purpose.id if purpose is not None and purpose.is_active else None,
            (time.monotonic() - t0) * 1000,
        )
        return PipelineResult(capture_id, PipelineOutcome.DONE)
