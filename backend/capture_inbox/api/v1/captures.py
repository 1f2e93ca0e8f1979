"""
Capture Inbox — Capture Routes

Request lifecycle for POST /v1/captures:
┌──────────────────────────────────────────────────────────────────────┐
│  1. require_api_key   → X-API-Key header or ?apiKey=                 │
│  2. multipart parse   → files[] + optional purposeId                 │
│  3. validation        → MIME allow-list, extension, size (all files) │
│  4. purpose           → explicit active purpose, else the default    │
│  5. per file          → SHA-256 dedup → encrypt + store → insert     │
│  6. enqueue           → Celery task process_capture (idempotent)     │
│  7. response          → 201 {"data": [{item, duplicate}]}            │
└──────────────────────────────────────────────────────────────────────┘

Status changes are delivered by GET /v1/captures/stream (Server-Sent
Events). It is declared before /{capture_id} so "stream" is never parsed
as an id.
"""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, File, Form, Query, Request, UploadFile, status
from fastapi.responses import Response, StreamingResponse

from capture_inbox.auth.dependencies import AppSettings, Captures, Feed
from capture_inbox.models.captures import CaptureItem
from capture_inbox.schemas.captures import (
    CaptureDetailOut,
    CaptureOut,
    DataResponse,
    DeletedRef,
    ErrorResponse,
    RetryResult,
    UploadResult,
)
from capture_inbox.services.captures import read_upload
from capture_inbox.services.notifications import parse_watermark, stream_updates

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/captures",
    tags=["Captures"],
)


def _serialize(item: CaptureItem) -> dict:
    return CaptureOut.model_validate(item).model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# POST /captures
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=DataResponse[list[UploadResult]],
    status_code=status.HTTP_201_CREATED,
    summary="Upload one or more screenshots",
    responses={
        400: {"model": ErrorResponse, "description": "No files or invalid purpose"},
        401: {"model": ErrorResponse, "description": "Missing or invalid API key"},
        413: {"model": ErrorResponse, "description": "File exceeds the size limit"},
        415: {"model": ErrorResponse, "description": "Unsupported MIME type or extension"},
        503: {"model": ErrorResponse, "description": "Job queue unavailable"},
    },
)
async def upload_captures(
    service:    Captures,
    files:      list[UploadFile] = File(default=[], description="Image files (png, jpeg, webp)"),
    purpose_id: str | None       = Form(None, alias="purposeId"),
) -> DataResponse[list[UploadResult]]:
    incoming = [await read_upload(f) for f in files]
    outcomes = await service.upload(incoming, purpose_id)

    logger.info(
        "Upload complete | files=%d duplicates=%d",
        len(outcomes), sum(1 for o in outcomes if o.duplicate),
    )
    return DataResponse[list[UploadResult]](data=[
        UploadResult(item=CaptureOut.model_validate(o.item), duplicate=o.duplicate)
        for o in outcomes
    ])


# ---------------------------------------------------------------------------
# GET /captures
# ---------------------------------------------------------------------------

@router.get(
    "",
    response_model=DataResponse[list[CaptureOut]],
    summary="List captures, newest first",
)
async def list_captures(
    service:    Captures,
    query:      str | None       = Query(None, description="Search OCR text, summaries, filename and tags"),
    category:   str | None       = Query(None),
    status_:    str | None       = Query(None, alias="status"),
    purpose_id: uuid.UUID | None = Query(None, alias="purposeId"),
    date_from:  str | None       = Query(None, alias="from"),
    date_to:    str | None       = Query(None, alias="to"),
) -> DataResponse[list[CaptureOut]]:
    items = await service.list(
        query=query,
        category=category,
        status_=status_,
        purpose_id=purpose_id,
        date_from=date_from,
        date_to=date_to,
    )
    return DataResponse[list[CaptureOut]](data=[CaptureOut.model_validate(i) for i in items])


# ---------------------------------------------------------------------------
# GET /captures/stream  — SSE
# ---------------------------------------------------------------------------

@router.get(
    "/stream",
    summary="Stream capture status changes via Server-Sent Events",
    description=(
        "Emits `update` with every capture whose updatedAt is after the "
        "watermark, `ping` on every tick and `error` when a poll fails."
    ),
    response_class=StreamingResponse,
)
async def stream_captures(
    request:    Request,
    feed:       Feed,
    settings:   AppSettings,
    since:      str | None       = Query(None, description="ISO-8601 watermark; defaults to epoch"),
    capture_id: uuid.UUID | None = Query(None, alias="captureId"),
) -> StreamingResponse:
    logger.debug("Stream opened | since=%s capture=%s", since, capture_id)

    return StreamingResponse(
        stream_updates(
            feed,
            parse_watermark(since),
            capture_id=capture_id,
            interval_seconds=settings.stream_poll_interval_seconds,
            serialize=_serialize,
            is_disconnected=request.is_disconnected,
        ),
        media_type="text/event-stream",
        headers={
            "Cache-Control":     "no-cache",
            "Connection":        "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


# ---------------------------------------------------------------------------
# /captures/{capture_id}
# ---------------------------------------------------------------------------

@router.get(
    "/{capture_id}",
    response_model=DataResponse[CaptureDetailOut],
    responses={404: {"model": ErrorResponse}},
)
async def get_capture(capture_id: uuid.UUID, service: Captures) -> DataResponse[CaptureDetailOut]:
    item = await service.get(capture_id)
    return DataResponse[CaptureDetailOut](data=CaptureDetailOut.model_validate(item))


@router.get(
    "/{capture_id}/file",
    summary="Download the decrypted original image",
    response_class=Response,
    responses={404: {"model": ErrorResponse}},
)
async def get_capture_file(capture_id: uuid.UUID, service: Captures) -> Response:
    item, data = await service.read_file(capture_id)
    return Response(
        content=data,
        media_type=item.mime_type,
        headers={"Cache-Control": "no-store"},
    )


@router.post(
    "/{capture_id}/retry",
    response_model=DataResponse[RetryResult],
    summary="Re-queue a capture that is not DONE",
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse, "description": "Capture already DONE"},
        503: {"model": ErrorResponse},
    },
)
async def retry_capture(capture_id: uuid.UUID, service: Captures) -> DataResponse[RetryResult]:
    item = await service.retry(capture_id)
    return DataResponse[RetryResult](data=RetryResult(id=item.id, status=item.status))


@router.delete(
    "/{capture_id}",
    response_model=DataResponse[DeletedRef],
    responses={404: {"model": ErrorResponse}},
)
async def delete_capture(capture_id: uuid.UUID, service: Captures) -> DataResponse[DeletedRef]:
    await service.delete(capture_id)
    logger.info("Capture deleted | capture=%s", capture_id)
    return DataResponse[DeletedRef](data=DeletedRef(id=capture_id))
