"""
Storage driver factory.

Driver is selected by STORAGE_DRIVER (local | s3); both share the same
AES-256-GCM cipher built from STORAGE_ENCRYPTION_KEY.
"""

from __future__ import annotations

import logging

from capture_inbox.core.config import Settings, StorageDriver
from capture_inbox.storage.base import StorageAdapter
from capture_inbox.storage.crypto import EnvelopeCipher

logger = logging.getLogger(__name__)


def get_storage(settings: Settings) -> StorageAdapter:
    cipher = EnvelopeCipher.from_hex(settings.storage_encryption_key)

    if settings.storage_driver is StorageDriver.S3:
        from capture_inbox.storage.s3 import S3Storage

        logger.info(
            "Storage driver: s3 | bucket=%s endpoint=%s",
            settings.s3_bucket, settings.s3_endpoint or "aws",
        )
        return S3Storage(
            cipher,
            bucket=settings.s3_bucket,
            region=settings.s3_region,
            access_key_id=settings.s3_access_key_id,
            secret_access_key=settings.s3_secret_access_key,
            endpoint_url=settings.s3_endpoint,
            force_path_style=settings.s3_force_path_style,
        )

    from capture_inbox.storage.local import LocalStorage

    logger.info("Storage driver: local | root=%s", settings.storage_local_path)
    return LocalStorage(settings.storage_local_path, cipher)
