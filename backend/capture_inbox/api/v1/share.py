"""
Share staging routes.

A mobile share intent posts the shared images here and gets back a token;
the client then opens the upload screen, fetches the staged files with the
token and confirms the upload through POST /v1/captures. Non-image parts
are dropped; image parts share the `max_upload_bytes` limit. Tokens expire
after `share_staging_ttl_seconds`.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, File, HTTPException, UploadFile, status

from capture_inbox.auth.dependencies import AppSettings, ShareStore
from capture_inbox.schemas.captures import (
    CaptureErrors,
    DataResponse,
    ErrorResponse,
    StagedShareOut,
    StagedShareRef,
)
from capture_inbox.services.share_staging import StagedFile

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/share",
    tags=["Share Staging"],
)


@router.post(
    "",
    response_model=DataResponse[StagedShareRef],
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse, "description": "No image files in the request"},
        413: {"model": ErrorResponse, "description": "A file exceeds the upload size limit"},
    },
)
async def stage_share(
    store:    ShareStore,
    settings: AppSettings,
    files:    list[UploadFile] = File(default=[]),
    file:     list[UploadFile] = File(default=[]),
) -> DataResponse[StagedShareRef]:
    staged: list[StagedFile] = []
    for upload in [*files, *file]:
        content_type = (upload.content_type or "").lower()
        if not content_type.startswith("image/"):
            logger.debug("Share part skipped | name=%s type=%s", upload.filename, content_type)
            continue
        data = await upload.read()
        if len(data) > settings.max_upload_bytes:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=CaptureErrors.file_too_large(len(data), settings.max_upload_bytes).model_dump(),
            )
        staged.append(StagedFile(
            name=upload.filename or "shared-image",
            content_type=content_type,
            data=data,
        ))

    if not staged:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=CaptureErrors.no_files().model_dump(),
        )

    share = store.stage(staged)
    return DataResponse[StagedShareRef](data=StagedShareRef(
        token=share.token,
        file_count=len(share.files),
        expires_at=datetime.fromtimestamp(share.created_at + store.ttl_seconds, tz=timezone.utc),
    ))


@router.get(
    "/{token}",
    response_model=DataResponse[StagedShareOut],
    responses={404: {"model": ErrorResponse, "description": "Unknown or expired token"}},
)
async def get_share(token: str, store: ShareStore) -> DataResponse[StagedShareOut]:
    share = store.get(token)
    if share is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=CaptureErrors.not_found("Share", token).model_dump(),
        )
    return DataResponse[StagedShareOut](data=StagedShareOut(
        token=share.token,
        created_at=datetime.fromtimestamp(share.created_at, tz=timezone.utc),
        files=[f.to_payload() for f in share.files],
    ))


@router.delete("/{token}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_share(token: str, store: ShareStore) -> None:
    store.remove(token)
    logger.info("Share dropped | token=%s", token)
