"""
S3-compatible storage driver (AWS S3, MinIO, LocalStack).

Objects are stored under:
    s3://<BUCKET>/<key>          e.g. captures/<capture_id>/<filename>

Bytes reaching this driver are already AES-GCM envelopes, so no server-side
encryption is required from the bucket. A client is opened per operation
from one shared aioboto3 Session.
"""

from __future__ import annotations

import logging

import aioboto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError

from capture_inbox.storage.base import ObjectNotFoundError, StorageAdapter
from capture_inbox.storage.crypto import EnvelopeCipher

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}


class S3Storage(StorageAdapter):

    def __init__(
        self,
        cipher: EnvelopeCipher,
        *,
        bucket: str,
        region: str,
        access_key_id: str,
        secret_access_key: str,
        endpoint_url: str | None = None,
        force_path_style: bool = False,
    ) -> None:
        super().__init__(cipher)
        self._bucket   = bucket
        self._region   = region
        self._endpoint = endpoint_url
        self._session  = aioboto3.Session(
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            region_name=region,
        )
        self._boto_config = BotoConfig(
            s3={"addressing_style": "path" if force_path_style else "auto"},
            retries={"max_attempts": 3, "mode": "standard"},
        )

    @property
    def driver_name(self) -> str:
        return "s3"

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _client(self):
        """Return a scoped async S3 client context manager."""
        return self._session.client(
            "s3",
            region_name=self._region,
            endpoint_url=self._endpoint,
            config=self._boto_config,
        )

    # ------------------------------------------------------------------
    # StorageAdapter primitives
    # ------------------------------------------------------------------

    async def _put(self, key: str, envelope: bytes) -> None:
        async with self._client() as s3:
            await s3.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=envelope,
                ContentType="application/octet-stream",
            )

    async def _get(self, key: str) -> bytes:
        async with self._client() as s3:
            try:
                resp = await s3.get_object(Bucket=self._bucket, Key=key)
                return await resp["Body"].read()
            except ClientError as exc:
                code = exc.response["Error"]["Code"]
                if code in _NOT_FOUND_CODES:
                    raise ObjectNotFoundError(f"Object not found: {key}") from exc
                raise

    async def _delete(self, key: str) -> None:
        # DeleteObject succeeds for absent keys
        async with self._client() as s3:
            await s3.delete_object(Bucket=self._bucket, Key=key)

    async def check_health(self) -> dict:
        try:
            async with self._client() as s3:
                await s3.head_bucket(Bucket=self._bucket)
            return {"status": "ok", "driver": self.driver_name}
        except ClientError as exc:
            logger.error("S3 health check failed | bucket=%s error=%s", self._bucket, exc)
            return {"status": "error", "driver": self.driver_name, "detail": str(exc)}
