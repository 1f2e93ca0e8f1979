"""
SQLAlchemy ORM Models — Captures, Purposes & Todos

Using SQLAlchemy mapped classes (2.x style) for full async support.
Column types are portable: JSON lists are stored as JSONB on PostgreSQL and
plain JSON elsewhere (SQLite is used by the test-suite).

Timestamps are stamped in Python (UTC, microsecond precision) rather than by
the server so that every status transition moves updated_at forward — the
status stream uses it as a strictly-increasing watermark.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


JSONList = JSON().with_variant(JSONB(), "postgresql")


# ---------------------------------------------------------------------------
# Enumerations persisted as plain strings
# ---------------------------------------------------------------------------

class CaptureStatus(str, Enum):
    """
    Capture pipeline state machine.
    Transitions: UPLOADED → PROCESSING → DONE | FAILED;  FAILED → UPLOADED (retry)
    """
    UPLOADED   = "UPLOADED"
    PROCESSING = "PROCESSING"
    DONE       = "DONE"
    FAILED     = "FAILED"


class CaptureCategory(str, Enum):
    RECEIPT     = "receipt"
    RESERVATION = "reservation"
    DOCUMENT    = "document"
    CHAT        = "chat"
    STUDY       = "study"
    SHOPPING    = "shopping"
    FINANCE     = "finance"
    MISC        = "misc"


CAPTURE_STATUSES:   tuple[str, ...] = tuple(s.value for s in CaptureStatus)
CAPTURE_CATEGORIES: tuple[str, ...] = tuple(c.value for c in CaptureCategory)

# Bounds for stored text fields
OCR_TEXT_LIMIT       = 6000
FAILURE_REASON_LIMIT = 500


# ---------------------------------------------------------------------------
# Declarative base — shared across all models
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# CapturePurpose — user-defined organizing lens
# ---------------------------------------------------------------------------

class CapturePurpose(Base):
    """
    Instruction + keywords applied during analysis.

    At most one row has is_default=True; writers clear the flag on every
    other row inside the same transaction before setting it.
    """

    __tablename__ = "capture_purposes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    name:            Mapped[str]           = mapped_column(Text, nullable=False)
    description:     Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    instruction:     Mapped[str]           = mapped_column(Text, nullable=False)
    sample_keywords: Mapped[list]          = mapped_column(JSONList, nullable=False, default=list)
    is_default:      Mapped[bool]          = mapped_column(Boolean, nullable=False, default=False)
    is_active:       Mapped[bool]          = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow,
    )

    def __repr__(self) -> str:
        return f"<CapturePurpose id={self.id} name={self.name!r} default={self.is_default}>"


# ---------------------------------------------------------------------------
# CaptureItem — one per uploaded file
# ---------------------------------------------------------------------------

class CaptureItem(Base):
    """
    Tracks a single uploaded screenshot from upload → OCR → analysis.

    file_hash (SHA-256 of the raw bytes) is globally unique: re-uploading the
    same bytes updates/reprocesses the existing row instead of inserting.
    """

    __tablename__ = "capture_items"
    __table_args__ = (
        CheckConstraint(
            "status IN ('UPLOADED', 'PROCESSING', 'DONE', 'FAILED')",
            name="capture_items_status_check",
        ),
        Index("idx_capture_items_updated_at", "updated_at"),
        Index("idx_capture_items_status",     "status"),
        Index("idx_capture_items_purpose_id", "purpose_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    original_filename: Mapped[str] = mapped_column(Text, nullable=False)
    mime_type:         Mapped[str] = mapped_column(Text, nullable=False)
    size_bytes:        Mapped[int] = mapped_column(BigInteger, nullable=False)
    storage_key:       Mapped[str] = mapped_column(Text, nullable=False)
    file_hash:         Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=CaptureStatus.UPLOADED.value,
    )

    # Derived by the worker pipeline
    category:           Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    summary:            Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    purpose_summary:    Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    purpose_checklist:  Mapped[list]          = mapped_column(JSONList, nullable=False, default=list)
    ocr_text:           Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tags:               Mapped[list]          = mapped_column(JSONList, nullable=False, default=list)
    action_suggestions: Mapped[list]          = mapped_column(JSONList, nullable=False, default=list)
    failure_reason:     Mapped[Optional[str]] = mapped_column(String(FAILURE_REASON_LIMIT), nullable=True)

    purpose_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("capture_purposes.id", ondelete="SET NULL"),
        nullable=True,
    )
    purpose: Mapped[Optional[CapturePurpose]] = relationship(lazy="raise")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow,
    )

    def __repr__(self) -> str:
        return (
            f"<CaptureItem id={self.id} status={self.status} "
            f"file={self.original_filename!r}>"
        )


# ---------------------------------------------------------------------------
# TodoItem — user-created action item
# ---------------------------------------------------------------------------

class TodoItem(Base):
    """Optionally sourced from a capture; detached (not deleted) with it."""

    __tablename__ = "todo_items"

    id:    Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str]       = mapped_column(Text, nullable=False)
    done:  Mapped[bool]      = mapped_column(Boolean, nullable=False, default=False)

    source_capture_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("capture_items.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<TodoItem id={self.id} done={self.done} title={self.title!r}>"
