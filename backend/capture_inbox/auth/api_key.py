"""
Static API key authentication.

Every /v1 route requires the single configured key, sent either as the
`X-API-Key` header or the `apiKey` query parameter (EventSource clients
cannot set headers). The header wins when both are present.
"""

from __future__ import annotations

import hmac
import logging
from typing import Annotated

from fastapi import Header, HTTPException, Query, Request, status

from capture_inbox.core.config import settings
from capture_inbox.schemas.captures import CaptureErrors

logger = logging.getLogger(__name__)


def verify_api_key(presented: str | None, expected: str) -> bool:
    if not presented:
        return False
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


async def require_api_key(
    request: Request,
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
    api_key: Annotated[str | None, Query(alias="apiKey", include_in_schema=False)] = None,
) -> None:
    """FastAPI dependency — raises 401 UNAUTHORIZED on a missing/wrong key."""
    presented = x_api_key if x_api_key is not None else api_key
    if not verify_api_key(presented, settings.api_key):
        logger.warning(
            "API key rejected | path=%s client=%s",
            request.url.path, request.client.host if request.client else "-",
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=CaptureErrors.unauthorized().model_dump(),
        )
