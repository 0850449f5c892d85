from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from objectstore.core.settings import Settings, get_settings
from objectstore.providers.store import ObjectStoreClient
from objectstore.providers.impl.store_local_files import LocalFilesObjectStore
from objectstore.storage.service import ObjectStoreFacade

logger = logging.getLogger(__name__)


def build_store_client(settings: Settings) -> ObjectStoreClient:
    """
    Backend selection by settings.storage.provider (local | minio | s3).

    SDK-backed providers are imported lazily so a local-only deployment
    does not need minio/boto3 importable at startup.
    """
    storage = settings.storage
    if storage.provider == "minio":
        from objectstore.providers.impl.store_minio import MinioObjectStore

        return MinioObjectStore.from_settings(storage)
    if storage.provider == "s3":
        from objectstore.providers.impl.store_s3 import S3ObjectStore

        return S3ObjectStore.from_settings(storage)
    return LocalFilesObjectStore.from_settings(storage)


def build_object_store(
    settings: Optional[Settings] = None,
    client: Optional[ObjectStoreClient] = None,
) -> ObjectStoreFacade:
    """
    Construct the facade. Fails fast when the bucket is missing or the
    backend cannot be reached.
    """
    settings = settings or get_settings()
    storage = settings.storage
    client = client or build_store_client(settings)

    facade = ObjectStoreFacade(
        client,
        storage.bucket,
        download_concurrency=storage.download_concurrency,
        link_ttl=timedelta(seconds=storage.link_ttl_seconds),
    )
    logger.info(
        "[ObjectStore] ready provider=%s bucket=%s download_concurrency=%s",
        storage.provider,
        storage.bucket,
        storage.download_concurrency or "unbounded",
    )
    return facade
