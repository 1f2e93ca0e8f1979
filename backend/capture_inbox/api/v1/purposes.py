"""Purpose CRUD routes. Listing an empty table seeds the default purpose."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, status

from capture_inbox.auth.dependencies import Purposes
from capture_inbox.schemas.captures import (
    DataResponse,
    DeletedRef,
    ErrorResponse,
    PurposeCreate,
    PurposeOut,
    PurposeUpdate,
)

router = APIRouter(
    prefix="/purposes",
    tags=["Purposes"],
)


@router.get("", response_model=DataResponse[list[PurposeOut]])
async def list_purposes(service: Purposes) -> DataResponse[list[PurposeOut]]:
    items = await service.list_or_seed()
    return DataResponse[list[PurposeOut]](data=[PurposeOut.model_validate(p) for p in items])


@router.post(
    "",
    response_model=DataResponse[PurposeOut],
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
)
async def create_purpose(payload: PurposeCreate, service: Purposes) -> DataResponse[PurposeOut]:
    purpose = await service.create(payload)
    return DataResponse[PurposeOut](data=PurposeOut.model_validate(purpose))


@router.patch(
    "/{purpose_id}",
    response_model=DataResponse[PurposeOut],
    responses={404: {"model": ErrorResponse}},
)
async def update_purpose(
    purpose_id: uuid.UUID,
    payload: PurposeUpdate,
    service: Purposes,
) -> DataResponse[PurposeOut]:
    purpose = await service.update(purpose_id, payload)
    return DataResponse[PurposeOut](data=PurposeOut.model_validate(purpose))


@router.delete(
    "/{purpose_id}",
    response_model=DataResponse[DeletedRef],
    responses={404: {"model": ErrorResponse}},
)
async def delete_purpose(purpose_id: uuid.UUID, service: Purposes) -> DataResponse[DeletedRef]:
    await service.delete(purpose_id)
    return DataResponse[DeletedRef](data=DeletedRef(id=purpose_id))
