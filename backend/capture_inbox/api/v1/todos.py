from __future__ import annotations

import uuid

from fastapi import APIRouter, status

from capture_inbox.auth.dependencies import Todos
from capture_inbox.schemas.captures import (
    DataResponse,
    DeletedRef,
    ErrorResponse,
    TodoCreate,
    TodoOut,
    TodoUpdate,
)

router = APIRouter(
    prefix="/todos",
    tags=["Todos"],
)


@router.get("", response_model=DataResponse[list[TodoOut]])
async def list_todos(service: Todos) -> DataResponse[list[TodoOut]]:
    items = await service.list()
    return DataResponse[list[TodoOut]](data=[TodoOut.model_validate(t) for t in items])


@router.post(
    "",
    response_model=DataResponse[TodoOut],
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse, "description": "Unknown source capture"}},
)
async def create_todo(payload: TodoCreate, service: Todos) -> DataResponse[TodoOut]:
    todo = await service.create(payload)
    return DataResponse[TodoOut](data=TodoOut.model_validate(todo))


@router.patch(
    "/{todo_id}",
    response_model=DataResponse[TodoOut],
    responses={404: {"model": ErrorResponse}},
)
async def update_todo(todo_id: uuid.UUID, payload: TodoUpdate, service: Todos) -> DataResponse[TodoOut]:
    todo = await service.set_done(todo_id, payload.done)
    return DataResponse[TodoOut](data=TodoOut.model_validate(todo))


@router.delete(
    "/{todo_id}",
    response_model=DataResponse[DeletedRef],
    responses={404: {"model": ErrorResponse}},
)
async def delete_todo(todo_id: uuid.UUID, service: Todos) -> DataResponse[DeletedRef]:
    await service.delete(todo_id)
    return DataResponse[DeletedRef](data=DeletedRef(id=todo_id))
