from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel

from objectstore.core.deps import ObjectStoreDep
from objectstore.core.settings import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class StorageHealthModel(BaseModel):
    ok: bool
    provider: str
    bucket: str
    bucketExists: bool = False
    error: Optional[str] = None


@router.get("/health")
def health():
    # Keep this super simple and always unauthenticated
    return {"ok": True}


@router.get("/health/storage", response_model=StorageHealthModel)
def health_storage(store: ObjectStoreDep):
    """
    Verifies:
      - object store backend is reachable
      - configured bucket still exists
    """
    provider = get_settings().storage.provider
    try:
        exists = bool(store.client.bucket_exists(store.bucket))
    except Exception as e:
        logger.warning("[ObjectStore] health check failed bucket=%s err=%s", store.bucket, e)
        return StorageHealthModel(ok=False, provider=provider, bucket=store.bucket, error=str(e))

    return StorageHealthModel(ok=exists, provider=provider, bucket=store.bucket, bucketExists=exists)
