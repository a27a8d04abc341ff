"""Explicit wiring of the storage services.

One ``StorageContext`` is built at process start and passed to whoever
needs it (FastAPI keeps it on ``app.state``). Nothing here is a module-level
singleton.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from app.config import Settings
from app.services.file_folders import FolderService
from app.services.file_shares import ShareService
from app.services.file_storage import FileStorageService
from app.services.object_storage import S3ObjectStore, build_object_store

logger = logging.getLogger(__name__)


@dataclass
class StorageContext:
    store: S3ObjectStore
    files: FileStorageService
    folders: FolderService
    shares: ShareService

    def provision_buckets(self) -> dict[str, bool]:
        return self.store.ensure_buckets()


def build_storage_context(settings: Settings, client: Any | None = None) -> StorageContext:
    store = build_object_store(settings, client=client)
    files = FileStorageService(
        store,
        max_size_bytes=settings.upload_max_size_bytes,
        max_concurrency=settings.upload_max_concurrency,
        presign_ttl_seconds=settings.s3_presign_ttl_seconds,
    )
    logger.info("storage_context_built default_bucket=%s", store.buckets.default_bucket)
    return StorageContext(
        store=store,
        files=files,
        folders=FolderService(files),
        shares=ShareService(files, token_bytes=settings.share_token_bytes),
    )
