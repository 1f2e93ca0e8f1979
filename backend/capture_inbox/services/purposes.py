"""
Purpose Service

CRUD over CapturePurpose on a request-scoped session (one transaction per
request, committed by the get_db dependency).

Default invariant: at most one purpose has is_default=True.
  - create/update with isDefault=true clears the flag on every row first
  - deleting the default promotes the oldest remaining active purpose
  - listing an empty table seeds one active default purpose
"""

from __future__ import annotations

import logging
import uuid

from fastapi import HTTPException, status
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from capture_inbox.models.captures import CaptureItem, CapturePurpose, utcnow
from capture_inbox.schemas.captures import CaptureErrors, PurposeCreate, PurposeUpdate

logger = logging.getLogger(__name__)

SEED_PURPOSE = {
    "name":            "General",
    "description":     "Default inbox organizing purpose",
    "instruction":     "Quickly grasp the key points and organize follow-up tasks into a checklist.",
    "sample_keywords": ["schedule", "amount", "request"],
}


class PurposeService:

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def _get_or_404(self, purpose_id: uuid.UUID) -> CapturePurpose:
        purpose = await self._db.get(CapturePurpose, purpose_id)
        if purpose is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=CaptureErrors.not_found("Purpose", purpose_id).model_dump(),
            )
        return purpose

    async def _clear_default(self) -> None:
        await self._db.execute(
            update(CapturePurpose)
            .where(CapturePurpose.is_default.is_(True))
            .values(is_default=False, updated_at=utcnow())
        )

    async def list_or_seed(self) -> list[CapturePurpose]:
        stmt = select(CapturePurpose).order_by(
            CapturePurpose.is_default.desc(),
            CapturePurpose.created_at.asc(),
        )
        items = list((await self._db.execute(stmt)).scalars().all())
        if items:
            return items

        seed = CapturePurpose(**SEED_PURPOSE, is_default=True, is_active=True)
        self._db.add(seed)
        await self._db.flush()
        logger.info("Default purpose seeded | purpose=%s", seed.id)
        return [seed]

    async def create(self, payload: PurposeCreate) -> CapturePurpose:
        if payload.is_default:
            await self._clear_default()

        purpose = CapturePurpose(
            name=payload.name,
            description=payload.description,
            instruction=payload.instruction,
            sample_keywords=list(payload.sample_keywords),
            is_default=payload.is_default,
            is_active=payload.is_active,
        )
        self._db.add(purpose)
        await self._db.flush()
        logger.info("Purpose created | purpose=%s default=%s", purpose.id, purpose.is_default)
        return purpose

    async def update(self, purpose_id: uuid.UUID, payload: PurposeUpdate) -> CapturePurpose:
        purpose = await self._get_or_404(purpose_id)

        if payload.is_default:
            await self._clear_default()

        for name, value in payload.model_dump(exclude_unset=True).items():
            if name in ("name", "instruction", "is_default", "is_active") and value is None:
                continue   # non-nullable columns: explicit null means "leave as is"
            setattr(purpose, name, list(value) if name == "sample_keywords" else value)
        purpose.updated_at = utcnow()

        await self._db.flush()
        await self._db.refresh(purpose)
        logger.info("Purpose updated | purpose=%s default=%s", purpose.id, purpose.is_default)
        return purpose

    async def delete(self, purpose_id: uuid.UUID) -> None:
        purpose = await self._get_or_404(purpose_id)
        was_default = purpose.is_default

        await self._db.execute(
            update(CaptureItem)
            .where(CaptureItem.purpose_id == purpose_id)
            .values(purpose_id=None, updated_at=utcnow())
        )
        await self._db.delete(purpose)
        await self._db.flush()

        if not was_default:
            logger.info("Purpose deleted | purpose=%s", purpose_id)
            return

        fallback = (await self._db.execute(
            select(CapturePurpose)
            .where(CapturePurpose.is_active.is_(True))
            .order_by(CapturePurpose.created_at.asc())
            .limit(1)
        )).scalar_one_or_none()
        if fallback is not None:
            fallback.is_default = True
            fallback.updated_at = utcnow()
            await self._db.flush()

        logger.info(
            "Default purpose deleted | purpose=%s promoted=%s",
            purpose_id, fallback.id if fallback else None,
        )
