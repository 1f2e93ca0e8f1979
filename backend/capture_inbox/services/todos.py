"""Todo CRUD on a request-scoped session."""

from __future__ import annotations

import logging
import uuid

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from capture_inbox.models.captures import CaptureItem, TodoItem
from capture_inbox.schemas.captures import CaptureErrors, TodoCreate

logger = logging.getLogger(__name__)


class TodoService:

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def _get_or_404(self, todo_id: uuid.UUID) -> TodoItem:
        todo = await self._db.get(TodoItem, todo_id)
        if todo is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=CaptureErrors.not_found("Todo", todo_id).model_dump(),
            )
        return todo

    async def create(self, payload: TodoCreate) -> TodoItem:
        if payload.source_capture_id is not None:
            capture = await self._db.get(CaptureItem, payload.source_capture_id)
            if capture is None:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail=CaptureErrors.not_found("Capture", payload.source_capture_id).model_dump(),
                )

        todo = TodoItem(title=payload.title, source_capture_id=payload.source_capture_id)
        self._db.add(todo)
        await self._db.flush()
        logger.info("Todo created | todo=%s source=%s", todo.id, todo.source_capture_id)
        return todo

    async def list(self) -> list[TodoItem]:
        stmt = select(TodoItem).order_by(TodoItem.created_at.desc())
        return list((await self._db.execute(stmt)).scalars().all())

    async def set_done(self, todo_id: uuid.UUID, done: bool) -> TodoItem:
        todo = await self._get_or_404(todo_id)
        todo.done = done
        await self._db.flush()
        return todo

    async def delete(self, todo_id: uuid.UUID) -> None:
        todo = await self._get_or_404(todo_id)
        await self._db.delete(todo)
        await self._db.flush()
