"""
Composed FastAPI Dependencies

Long-lived collaborators (record store, storage, queue, share staging) are
built once in create_app() and parked on app.state; per-request services
are composed from them here. Route handlers import from this module only.

Tests swap any of these through app.dependency_overrides.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from capture_inbox.core.config import Settings, get_settings
from capture_inbox.db.session import get_db
from capture_inbox.services.captures import CaptureService, JobQueue
from capture_inbox.services.notifications import UpdateFeed
from capture_inbox.services.purposes import PurposeService
from capture_inbox.services.records import CaptureRecordStore
from capture_inbox.services.share_staging import ShareStagingStore
from capture_inbox.services.todos import TodoService
from capture_inbox.storage.base import StorageAdapter


# ---------------------------------------------------------------------------
# 1. Process-wide collaborators (from app.state)
# ---------------------------------------------------------------------------

def get_record_store(request: Request) -> CaptureRecordStore:
    return request.app.state.record_store


def get_storage(request: Request) -> StorageAdapter:
    return request.app.state.storage


def get_queue(request: Request) -> JobQueue:
    return request.app.state.queue


def get_share_store(request: Request) -> ShareStagingStore:
    return request.app.state.share_store


# ---------------------------------------------------------------------------
# 2. Per-request services
# ---------------------------------------------------------------------------

def get_capture_service(
    store:    Annotated[CaptureRecordStore, Depends(get_record_store)],
    storage:  Annotated[StorageAdapter, Depends(get_storage)],
    queue:    Annotated[JobQueue, Depends(get_queue)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> CaptureService:
    return CaptureService(
        store,
        storage,
        queue,
        allowed_mime_types=settings.allowed_mime_list,
        max_upload_bytes=settings.max_upload_bytes,
    )


def get_update_feed(
    store: Annotated[CaptureRecordStore, Depends(get_record_store)],
) -> UpdateFeed:
    return UpdateFeed(store)


def get_purpose_service(db: Annotated[AsyncSession, Depends(get_db)]) -> PurposeService:
    return PurposeService(db)


def get_todo_service(db: Annotated[AsyncSession, Depends(get_db)]) -> TodoService:
    return TodoService(db)


# ---------------------------------------------------------------------------
# Type aliases for cleaner route signatures
# ---------------------------------------------------------------------------

Captures    = Annotated[CaptureService,    Depends(get_capture_service)]
Feed        = Annotated[UpdateFeed,        Depends(get_update_feed)]
Purposes    = Annotated[PurposeService,    Depends(get_purpose_service)]
Todos       = Annotated[TodoService,       Depends(get_todo_service)]
ShareStore  = Annotated[ShareStagingStore, Depends(get_share_store)]
AppSettings = Annotated[Settings,          Depends(get_settings)]
