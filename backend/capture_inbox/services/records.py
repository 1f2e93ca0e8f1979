"""
Capture Record Store

Single source of truth for capture status. Shared by the API (upload,
retry, delete, list, stream) and the worker pipeline.

Every public method is exactly one short transaction scoped by primary key
(or one filtered query). There is no optimistic-concurrency token: a delete
racing a processing job is last-writer-wins, and an update against a row
that no longer exists returns None rather than raising.

Timestamps:
  updated_at is stamped explicitly on every write so that status-polling
  clients observe each transition. All datetimes handed out are UTC-aware.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import String, cast, delete, or_, select, update
from sqlalchemy.orm import selectinload

from capture_inbox.db.session import SessionFactory, session_scope
from capture_inbox.models.captures import (
    FAILURE_REASON_LIMIT,
    CaptureItem,
    CapturePurpose,
    CaptureStatus,
    TodoItem,
    utcnow,
)

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Fields the pipeline derives; cleared whenever a capture is reprocessed
DERIVED_FIELD_DEFAULTS: dict[str, Any] = {
    "category":           None,
    "summary":            None,
    "purpose_summary":    None,
    "purpose_checklist":  [],
    "ocr_text":           None,
    "tags":               [],
    "action_suggestions": [],
    "failure_reason":     None,
}


def as_utc(value: datetime) -> datetime:
    """Naive datetimes (e.g. read back from SQLite) are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _normalize_timestamps(item: CaptureItem) -> CaptureItem:
    item.created_at = as_utc(item.created_at)
    item.updated_at = as_utc(item.updated_at)
    return item


@dataclass(frozen=True)
class CaptureFilters:
    query:        str | None = None
    category:     str | None = None
    status:       str | None = None
    purpose_id:   uuid.UUID | None = None
    created_from: datetime | None = None
    created_to:   datetime | None = None
    limit:        int = 200


class CaptureRecordStore:
    """
    Async persistence for CaptureItem rows.

    Holds a session factory rather than a session: the API binds the pooled
    AsyncSessionLocal; Celery tasks bind the NullPool worker factory.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._factory = session_factory

    # ------------------------------------------------------------------
    # Point reads
    # ------------------------------------------------------------------

    async def get(self, capture_id: uuid.UUID, *, with_purpose: bool = False) -> CaptureItem | None:
        stmt = select(CaptureItem).where(CaptureItem.id == capture_id)
        if with_purpose:
            stmt = stmt.options(selectinload(CaptureItem.purpose))
        async with session_scope(self._factory) as session:
            item = (await session.execute(stmt)).scalar_one_or_none()
        return _normalize_timestamps(item) if item else None

    async def find_by_hash(self, file_hash: str) -> CaptureItem | None:
        stmt = select(CaptureItem).where(CaptureItem.file_hash == file_hash)
        async with session_scope(self._factory) as session:
            item = (await session.execute(stmt)).scalar_one_or_none()
        return _normalize_timestamps(item) if item else None

    async def get_purpose(self, purpose_id: uuid.UUID) -> CapturePurpose | None:
        async with session_scope(self._factory) as session:
            return await session.get(CapturePurpose, purpose_id)

    async def get_default_purpose(self) -> CapturePurpose | None:
        """Oldest purpose that is both default and active."""
        stmt = (
            select(CapturePurpose)
            .where(CapturePurpose.is_default.is_(True), CapturePurpose.is_active.is_(True))
            .order_by(CapturePurpose.created_at.asc())
            .limit(1)
        )
        async with session_scope(self._factory) as session:
            return (await session.execute(stmt)).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, item: CaptureItem) -> CaptureItem:
        """
        Insert a new capture.

        Raises sqlalchemy.exc.IntegrityError when file_hash already exists
        (concurrent upload of identical bytes); callers treat it as duplicate.
        """
        now = utcnow()
        item.created_at = item.created_at or now
        item.updated_at = now
        async with session_scope(self._factory) as session:
            session.add(item)
        logger.info("Capture created | capture=%s hash=%s", item.id, item.file_hash[:12])
        return _normalize_timestamps(item)

    async def update(self, capture_id: uuid.UUID, **fields: Any) -> CaptureItem | None:
        """Partial update by primary key. Returns None when the row is gone."""
        async with session_scope(self._factory) as session:
            item = await session.get(CaptureItem, capture_id)
            if item is None:
                return None
            for name, value in fields.items():
                setattr(item, name, value)
            item.updated_at = utcnow()
        return _normalize_timestamps(item)

    async def mark_failed(self, capture_id: uuid.UUID, reason: str) -> bool:
        stmt = (
            update(CaptureItem)
            .where(CaptureItem.id == capture_id)
            .values(
                status=CaptureStatus.FAILED.value,
                failure_reason=(reason or "Unknown error")[:FAILURE_REASON_LIMIT],
                updated_at=utcnow(),
            )
        )
        async with session_scope(self._factory) as session:
            result = await session.execute(stmt)
        return result.rowcount > 0

    async def reset_for_reprocessing(
        self,
        capture_id: uuid.UUID,
        purpose_id: uuid.UUID | None,
    ) -> CaptureItem | None:
        """Clear derived fields, attach `purpose_id`, status → UPLOADED."""
        return await self.update(
            capture_id,
            **{k: (list(v) if isinstance(v, list) else v) for k, v in DERIVED_FIELD_DEFAULTS.items()},
            status=CaptureStatus.UPLOADED.value,
            purpose_id=purpose_id,
        )

    async def delete(self, capture_id: uuid.UUID) -> CaptureItem | None:
        """
        Detach todos sourced from this capture, then delete it.
        Returns the deleted row (callers still need its storage_key).
        """
        async with session_scope(self._factory) as session:
            item = await session.get(CaptureItem, capture_id)
            if item is None:
                return None
            await session.execute(
                update(TodoItem)
                .where(TodoItem.source_capture_id == capture_id)
                .values(source_capture_id=None)
            )
            await session.execute(delete(CaptureItem).where(CaptureItem.id == capture_id))
        logger.info("Capture deleted | capture=%s", capture_id)
        return _normalize_timestamps(item)

    # ------------------------------------------------------------------
    # Range queries
    # ------------------------------------------------------------------

    async def list(self, filters: CaptureFilters) -> list[CaptureItem]:
        """Filtered listing, newest first."""
        stmt = select(CaptureItem)

        if filters.category:
            stmt = stmt.where(CaptureItem.category == filters.category)
        if filters.status:
            stmt = stmt.where(CaptureItem.status == filters.status)
        if filters.purpose_id:
            stmt = stmt.where(CaptureItem.purpose_id == filters.purpose_id)
        if filters.created_from:
            stmt = stmt.where(CaptureItem.created_at >= as_utc(filters.created_from))
        if filters.created_to:
            stmt = stmt.where(CaptureItem.created_at <= as_utc(filters.created_to))

        query = (filters.query or "").strip()
        if query:
            pattern = f"%{query}%"
            stmt = stmt.where(or_(
                CaptureItem.ocr_text.ilike(pattern),
                CaptureItem.summary.ilike(pattern),
                CaptureItem.purpose_summary.ilike(pattern),
                CaptureItem.original_filename.ilike(pattern),
                # exact tag match against the serialized JSON array
                cast(CaptureItem.tags, String).ilike(f'%"{query.lower()}"%'),
            ))

        stmt = stmt.order_by(CaptureItem.created_at.desc()).limit(filters.limit)

        async with session_scope(self._factory) as session:
            items = list((await session.execute(stmt)).scalars().all())
        return [_normalize_timestamps(i) for i in items]

    async def updates_since(
        self,
        since: datetime,
        capture_id: uuid.UUID | None = None,
    ) -> list[CaptureItem]:
        """Rows with updated_at strictly after `since`, oldest first."""
        stmt = select(CaptureItem).where(CaptureItem.updated_at > as_utc(since))
        if capture_id is not None:
            stmt = stmt.where(CaptureItem.id == capture_id)
        stmt = stmt.order_by(CaptureItem.updated_at.asc())

        async with session_scope(self._factory) as session:
            items = list((await session.execute(stmt)).scalars().all())
        return [_normalize_timestamps(i) for i in items]
