"""
Capture Service

Orchestrates the upload pipeline:
  1. Validate every file (MIME allow-list, extension matches MIME, size)
  2. Resolve the purpose: explicit active purpose, else the oldest active default
  3. Per file, compute SHA-256 of the raw bytes for deduplication
  4. Duplicate hash → reprocess only if status != DONE or purpose differs
  5. New hash → encrypt + store under captures/<id>/<sanitized name>,
     insert the record (status=UPLOADED), enqueue process_capture
  6. Return [{item, duplicate}]

Also serves retry, delete, file download, detail and filtered listing.

Race handling:
  Two concurrent uploads of identical bytes both pass the hash lookup; the
  UNIQUE constraint on file_hash rejects the second insert. The loser
  removes its stored bytes and answers with the winner's row as a duplicate.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from fastapi import HTTPException, UploadFile, status
from sqlalchemy.exc import IntegrityError

from capture_inbox.models.captures import (
    CAPTURE_CATEGORIES,
    CAPTURE_STATUSES,
    CaptureItem,
    CaptureStatus,
)
from capture_inbox.schemas.captures import CaptureErrors, is_allowed_extension
from capture_inbox.services.records import CaptureFilters, CaptureRecordStore
from capture_inbox.storage.base import (
    ObjectNotFoundError,
    StorageAdapter,
    capture_storage_key,
    sanitize_filename,
)
from capture_inbox.workers.queue import QueueUnavailableError

logger = logging.getLogger(__name__)


class JobQueue(Protocol):
    async def enqueue(self, capture_id: uuid.UUID) -> bool: ...


@dataclass(frozen=True)
class IncomingFile:
    filename:     str
    content_type: str
    data:         bytes


@dataclass(frozen=True)
class UploadOutcome:
    item:      CaptureItem
    duplicate: bool


def compute_sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def parse_timestamp(value: str) -> datetime:
    """ISO-8601 date or datetime; raises ValueError when unparseable."""
    return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))


async def read_upload(file: UploadFile) -> IncomingFile:
    data = await file.read()
    return IncomingFile(
        filename=file.filename or "upload",
        content_type=(file.content_type or "application/octet-stream").lower(),
        data=data,
    )


class CaptureService:
    """
    Stateless service object — one instance per request.
    All dependencies are injected (testable, no hidden globals).
    """

    def __init__(
        self,
        store:   CaptureRecordStore,
        storage: StorageAdapter,
        queue:   JobQueue,
        *,
        allowed_mime_types: list[str],
        max_upload_bytes:   int,
    ) -> None:
        self._store     = store
        self._storage   = storage
        self._queue     = queue
        self._allowed   = [m.lower() for m in allowed_mime_types]
        self._max_bytes = max_upload_bytes

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    def validate_file(self, file: IncomingFile) -> None:
        if file.content_type not in self._allowed:
            raise HTTPException(
                status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
                detail=CaptureErrors.unsupported_media_type(
                    file.filename, file.content_type, "Unsupported file type.",
                ).model_dump(),
            )
        if not is_allowed_extension(file.filename, file.content_type):
            raise HTTPException(
                status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
                detail=CaptureErrors.unsupported_media_type(
                    file.filename, file.content_type, "Unsupported file extension.",
                ).model_dump(),
            )
        if len(file.data) > self._max_bytes:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=CaptureErrors.file_too_large(len(file.data), self._max_bytes).model_dump(),
            )

    async def resolve_purpose_id(self, raw_purpose_id: str | None) -> uuid.UUID | None:
        value = (raw_purpose_id or "").strip()
        if value:
            try:
                purpose_id = uuid.UUID(value)
            except ValueError:
                purpose_id = None
            purpose = await self._store.get_purpose(purpose_id) if purpose_id else None
            if purpose is None or not purpose.is_active:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=CaptureErrors.invalid_purpose(value).model_dump(),
                )
            return purpose.id

        fallback = await self._store.get_default_purpose()
        return fallback.id if fallback else None

    async def upload(
        self,
        files: list[IncomingFile],
        raw_purpose_id: str | None = None,
    ) -> list[UploadOutcome]:
        for file in files:
            self.validate_file(file)

        if not files:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=CaptureErrors.no_files().model_dump(),
            )

        purpose_id = await self.resolve_purpose_id(raw_purpose_id)

        results: list[UploadOutcome] = []
        for file in files:
            results.append(await self._ingest_one(file, purpose_id))
        return results

    async def _ingest_one(self, file: IncomingFile, purpose_id: uuid.UUID | None) -> UploadOutcome:
        file_hash = compute_sha256(file.data)

        existing = await self._store.find_by_hash(file_hash)
        if existing is not None:
            return await self._handle_duplicate(existing, purpose_id)

        capture_id  = uuid.uuid4()
        safe_name   = sanitize_filename(file.filename)
        storage_key = capture_storage_key(capture_id, safe_name)

        logger.info(
            "Upload start | capture=%s file=%s size=%d hash=%s purpose=%s",
            capture_id, safe_name, len(file.data), file_hash[:12], purpose_id,
        )

        await self._storage.save(storage_key, file.data)

        try:
            item = await self._store.create(CaptureItem(
                id=capture_id,
                original_filename=safe_name,
                mime_type=file.content_type,
                size_bytes=len(file.data),
                storage_key=storage_key,
                file_hash=file_hash,
                status=CaptureStatus.UPLOADED.value,
                purpose_checklist=[],
                tags=[],
                action_suggestions=[],
                purpose_id=purpose_id,
            ))
        except IntegrityError:
            # Concurrent upload of the same bytes won the insert
            await self._storage.remove(storage_key)
            winner = await self._store.find_by_hash(file_hash)
            if winner is None:
                raise
            logger.info("Upload lost insert race | hash=%s winner=%s", file_hash[:12], winner.id)
            return await self._handle_duplicate(winner, purpose_id)

        await self._enqueue(item.id)
        return UploadOutcome(item=item, duplicate=False)

    async def _handle_duplicate(
        self,
        existing: CaptureItem,
        purpose_id: uuid.UUID | None,
    ) -> UploadOutcome:
        should_reprocess = (
            existing.status != CaptureStatus.DONE.value
            or existing.purpose_id != purpose_id
        )
        if not should_reprocess:
            logger.info("Duplicate upload, unchanged | capture=%s", existing.id)
            return UploadOutcome(item=existing, duplicate=True)

        updated = await self._store.reset_for_reprocessing(existing.id, purpose_id)
        if updated is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=CaptureErrors.not_found("Capture", existing.id).model_dump(),
            )

        logger.info(
            "Duplicate upload, reprocessing | capture=%s prev_status=%s purpose=%s",
            existing.id, existing.status, purpose_id,
        )
        await self._enqueue(updated.id)
        return UploadOutcome(item=updated, duplicate=True)

    async def _enqueue(self, capture_id: uuid.UUID) -> None:
        try:
            await self._queue.enqueue(capture_id)
        except QueueUnavailableError:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=CaptureErrors.queue_error(capture_id).model_dump(),
            )

    # ------------------------------------------------------------------
    # Single capture operations
    # ------------------------------------------------------------------

    async def get(self, capture_id: uuid.UUID) -> CaptureItem:
        item = await self._store.get(capture_id, with_purpose=True)
        if item is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=CaptureErrors.not_found("Capture", capture_id).model_dump(),
            )
        return item

    async def read_file(self, capture_id: uuid.UUID) -> tuple[CaptureItem, bytes]:
        item = await self.get(capture_id)
        try:
            data = await self._storage.read(item.storage_key)
        except ObjectNotFoundError:
            logger.error("Stored bytes missing | capture=%s key=%s", capture_id, item.storage_key)
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=CaptureErrors.not_found("Capture file", capture_id).model_dump(),
            )
        return item, data

    async def retry(self, capture_id: uuid.UUID) -> CaptureItem:
        item = await self.get(capture_id)
        if item.status == CaptureStatus.DONE.value:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=CaptureErrors.already_done(capture_id).model_dump(),
            )

        updated = await self._store.update(
            capture_id,
            status=CaptureStatus.UPLOADED.value,
            failure_reason=None,
        )
        if updated is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=CaptureErrors.not_found("Capture", capture_id).model_dump(),
            )

        logger.info("Capture retry | capture=%s prev_status=%s", capture_id, item.status)
        await self._enqueue(capture_id)
        return updated

    async def delete(self, capture_id: uuid.UUID) -> None:
        item = await self.get(capture_id)
        await self._storage.remove(item.storage_key)
        await self._store.delete(capture_id)

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def list(
        self,
        *,
        query:      str | None = None,
        category:   str | None = None,
        status_:    str | None = None,
        purpose_id: uuid.UUID | None = None,
        date_from:  str | None = None,
        date_to:    str | None = None,
    ) -> list[CaptureItem]:
        if category and category not in CAPTURE_CATEGORIES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=CaptureErrors.invalid_filter("INVALID_CATEGORY", "category", category).model_dump(),
            )
        if status_ and status_ not in CAPTURE_STATUSES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=CaptureErrors.invalid_filter("INVALID_STATUS", "status", status_).model_dump(),
            )

        bounds: dict[str, datetime | None] = {"from": None, "to": None}
        for name, raw in (("from", date_from), ("to", date_to)):
            if not raw:
                continue
            try:
                bounds[name] = parse_timestamp(raw)
            except ValueError:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=CaptureErrors.invalid_filter("INVALID_DATE", name, raw).model_dump(),
                )

        return await self._store.list(CaptureFilters(
            query=query,
            category=category or None,
            status=status_ or None,
            purpose_id=purpose_id,
            created_from=bounds["from"],
            created_to=bounds["to"],
        ))
