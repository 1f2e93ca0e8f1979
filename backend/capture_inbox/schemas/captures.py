"""
Capture Inbox — Pydantic Request/Response Schemas

Covers:
  - Capture items (upload results, listing, detail, retry)
  - Purposes and todos CRUD bodies
  - Share staging payloads
  - All structured error bodies (400, 401, 404, 409, 413, 415, 500, 503)

Design decisions:
  - JSON field names are camelCase (fileHash, purposeId, …); Python
    attributes stay snake_case. Request bodies accept either form.
  - Successful responses are wrapped as {"data": ...}.
  - All timestamps are ISO-8601 UTC (naive values read back from SQLite are
    tagged as UTC before serialization).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Generic, TypeVar
from uuid import UUID

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Allowed uploads — MIME type → permitted extensions
# ---------------------------------------------------------------------------

EXTENSION_MAP: dict[str, frozenset[str]] = {
    "image/png":  frozenset({".png"}),
    "image/jpeg": frozenset({".jpg", ".jpeg"}),
    "image/webp": frozenset({".webp"}),
}


def is_allowed_extension(filename: str, mime_type: str) -> bool:
    parts = filename.rsplit(".", 1)
    ext = f".{parts[-1].lower()}" if len(parts) == 2 else ""
    return ext in EXTENSION_MAP.get(mime_type, frozenset())


# ---------------------------------------------------------------------------
# Base model
# ---------------------------------------------------------------------------

class ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDateTime = Annotated[datetime, AfterValidator(_utc)]


class DataResponse(BaseModel, Generic[T]):
    data: T


# ---------------------------------------------------------------------------
# Captures
# ---------------------------------------------------------------------------

class ActionSuggestionOut(ApiModel):
    title:  str
    reason: str


class CaptureOut(ApiModel):
    id:                 UUID
    file_hash:          str
    original_filename:  str
    mime_type:          str
    size_bytes:         int
    storage_key:        str
    status:             str
    category:           str | None = None
    summary:            str | None = None
    purpose_summary:    str | None = None
    purpose_checklist:  list[str] = Field(default_factory=list)
    ocr_text:           str | None = None
    tags:               list[str] = Field(default_factory=list)
    action_suggestions: list[ActionSuggestionOut] = Field(default_factory=list)
    failure_reason:     str | None = None
    purpose_id:         UUID | None = None
    created_at:         UtcDateTime
    updated_at:         UtcDateTime

    @field_validator("purpose_checklist", "tags", "action_suggestions", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class PurposeBrief(ApiModel):
    id:   UUID
    name: str


class CaptureDetailOut(CaptureOut):
    purpose: PurposeBrief | None = None


class UploadResult(ApiModel):
    item:      CaptureOut
    duplicate: bool


class RetryResult(ApiModel):
    id:     UUID
    status: str


class DeletedRef(ApiModel):
    id: UUID


# ---------------------------------------------------------------------------
# Purposes
# ---------------------------------------------------------------------------

class PurposeOut(ApiModel):
    id:              UUID
    name:            str
    description:     str | None = None
    instruction:     str
    sample_keywords: list[str] = Field(default_factory=list)
    is_default:      bool
    is_active:       bool
    created_at:      UtcDateTime
    updated_at:      UtcDateTime


class PurposeCreate(ApiModel):
    name:            str = Field(..., min_length=1)
    description:     str | None = None
    instruction:     str = Field(..., min_length=1)
    sample_keywords: list[str] = Field(default_factory=list)
    is_default:      bool = False
    is_active:       bool = True

    @field_validator("sample_keywords")
    @classmethod
    def _non_empty_keywords(cls, value: list[str]) -> list[str]:
        if any(not keyword for keyword in value):
            raise ValueError("sample keywords must be non-empty strings")
        return value


class PurposeUpdate(ApiModel):
    name:            str | None = Field(None, min_length=1)
    description:     str | None = None
    instruction:     str | None = Field(None, min_length=1)
    sample_keywords: list[str] | None = None
    is_default:      bool | None = None
    is_active:       bool | None = None


# ---------------------------------------------------------------------------
# Todos
# ---------------------------------------------------------------------------

class TodoOut(ApiModel):
    id:                UUID
    title:             str
    done:              bool
    source_capture_id: UUID | None = None
    created_at:        UtcDateTime


class TodoCreate(ApiModel):
    title:             str = Field(..., min_length=1)
    source_capture_id: UUID | None = None


class TodoUpdate(ApiModel):
    done: bool


# ---------------------------------------------------------------------------
# Share staging
# ---------------------------------------------------------------------------

class StagedFileOut(ApiModel):
    name:   str
    type:   str
    size:   int
    base64: str


class StagedShareOut(ApiModel):
    token:      str
    created_at: UtcDateTime
    files:      list[StagedFileOut]


class StagedShareRef(ApiModel):
    token:      str
    file_count: int
    expires_at: UtcDateTime


# ---------------------------------------------------------------------------
# Structured error bodies
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single structured error — may appear in a list."""
    field:   str | None = Field(None, description="Request field that caused the error, if applicable")
    message: str
    code:    str        = Field(..., description="Machine-readable error code for client handling")


class ErrorResponse(BaseModel):
    """
    Uniform error envelope for all 4xx/5xx responses.
    Clients should check `error_code` for programmatic handling.
    """
    error_code: str               = Field(..., description="Stable machine-readable code")
    message:    str               = Field(..., description="Human-readable summary")
    details:    list[ErrorDetail] = Field(default_factory=list)
    request_id: str | None        = Field(None, description="Trace ID for log correlation")


# ---------------------------------------------------------------------------
# Pre-defined error factories (keeps route handlers thin)
# ---------------------------------------------------------------------------

class CaptureErrors:
    """Factories for every documented error case."""

    @staticmethod
    def unauthorized() -> ErrorResponse:
        return ErrorResponse(
            error_code="UNAUTHORIZED",
            message="Invalid API key.",
            details=[
                ErrorDetail(
                    field=None,
                    message="Send the key in the X-API-Key header or the apiKey query parameter.",
                    code="UNAUTHORIZED",
                )
            ],
        )

    @staticmethod
    def no_files() -> ErrorResponse:
        return ErrorResponse(
            error_code="NO_FILES",
            message="No files provided.",
            details=[
                ErrorDetail(
                    field="files",
                    message="At least one file is required in the 'files' multipart field.",
                    code="NO_FILES",
                )
            ],
        )

    @staticmethod
    def unsupported_media_type(filename: str, mime_type: str, reason: str) -> ErrorResponse:
        return ErrorResponse(
            error_code="UNSUPPORTED_MEDIA_TYPE",
            message=reason,
            details=[
                ErrorDetail(
                    field="files",
                    message=f"'{filename}' ({mime_type}) is not accepted. Allowed: PNG, JPEG, WEBP.",
                    code="UNSUPPORTED_MEDIA_TYPE",
                )
            ],
        )

    @staticmethod
    def file_too_large(size_bytes: int, limit_bytes: int) -> ErrorResponse:
        return ErrorResponse(
            error_code="FILE_TOO_LARGE",
            message="Uploaded file exceeds size limit.",
            details=[
                ErrorDetail(
                    field="files",
                    message=f"Received {size_bytes:,} bytes; limit is {limit_bytes:,} bytes.",
                    code="FILE_TOO_LARGE",
                )
            ],
        )

    @staticmethod
    def invalid_purpose(purpose_id: object) -> ErrorResponse:
        return ErrorResponse(
            error_code="INVALID_PURPOSE",
            message="Invalid purpose.",
            details=[
                ErrorDetail(
                    field="purposeId",
                    message=f"Purpose '{purpose_id}' does not exist or is inactive.",
                    code="INVALID_PURPOSE",
                )
            ],
        )

    @staticmethod
    def invalid_filter(error_code: str, field: str, value: str) -> ErrorResponse:
        return ErrorResponse(
            error_code=error_code,
            message=f"Invalid {field}.",
            details=[ErrorDetail(field=field, message=f"'{value}' is not accepted.", code=error_code)],
        )

    @staticmethod
    def not_found(resource: str, resource_id: object) -> ErrorResponse:
        return ErrorResponse(
            error_code="NOT_FOUND",
            message=f"{resource} not found.",
            details=[
                ErrorDetail(field=None, message=f"{resource} '{resource_id}' does not exist.", code="NOT_FOUND")
            ],
        )

    @staticmethod
    def already_done(capture_id: UUID) -> ErrorResponse:
        return ErrorResponse(
            error_code="ALREADY_DONE",
            message="Capture already processed.",
            details=[
                ErrorDetail(
                    field=None,
                    message=f"Capture '{capture_id}' is DONE; re-upload with another purpose to reprocess.",
                    code="ALREADY_DONE",
                )
            ],
        )

    @staticmethod
    def queue_error(capture_id: UUID) -> ErrorResponse:
        return ErrorResponse(
            error_code="QUEUE_ERROR",
            message="Capture was stored but could not be queued for processing.",
            details=[
                ErrorDetail(
                    field=None,
                    message=(
                        f"The job queue is unavailable. Capture '{capture_id}' stays UPLOADED; "
                        "use POST /v1/captures/{id}/retry once the queue is back."
                    ),
                    code="QUEUE_ERROR",
                )
            ],
        )

    @staticmethod
    def validation_error(details: list[ErrorDetail]) -> ErrorResponse:
        return ErrorResponse(
            error_code="VALIDATION_ERROR",
            message="Invalid request payload.",
            details=details,
        )

    @staticmethod
    def internal_error(request_id: str | None = None) -> ErrorResponse:
        return ErrorResponse(
            error_code="INTERNAL_ERROR",
            message="Unexpected server error.",
            details=[],
            request_id=request_id,
        )
