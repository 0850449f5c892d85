from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import timedelta
from typing import BinaryIO, Dict, Iterator, Optional

from minio import Minio
from minio.commonconfig import Filter
from minio.lifecycleconfig import Expiration, LifecycleConfig, Rule

from objectstore.core.settings import StorageSettings
from objectstore.providers.store import UNKNOWN_SIZE, ObjectHandle, ObjectStoreClient
from objectstore.storage.lifecycle import parse_lifecycle_policy

logger = logging.getLogger(__name__)

# minio requires an explicit part size to stream data of unknown length
STREAM_PART_SIZE = 10 * 1024 * 1024

DOWNLOAD_CHUNK_SIZE = 1024 * 1024


def _strip_http(endpoint: str) -> str:
    # Minio client expects "host:port" (no scheme)
    endpoint = (endpoint or "").strip()
    endpoint = endpoint.replace("http://", "").replace("https://", "")
    endpoint = endpoint.rstrip("/")
    return endpoint


@dataclass
class MinioObjectStore(ObjectStoreClient):
    """
    MinIO-backed ObjectStoreClient (any S3-compatible endpoint).

    Notes:
      - The bucket is never created here; callers check bucket_exists.
      - region is optional. When set, presigning needs no round-trip to the
        server to discover the bucket region.
      - The underlying Minio client is thread-safe, so one instance serves
        concurrent directory downloads.
    """

    endpoint: str
    access_key: str
    secret_key: str
    secure: bool = False
    region: str = ""

    def __post_init__(self) -> None:
        host = _strip_http(self.endpoint)
        if not host:
            raise RuntimeError("MINIO_ENDPOINT is empty or invalid")

        self._client = Minio(
            host,
            access_key=self.access_key,
            secret_key=self.secret_key,
            secure=bool(self.secure),
            region=self.region or None,
        )

    @classmethod
    def from_settings(cls, settings: StorageSettings) -> "MinioObjectStore":
        if not settings.minio_access_key or not settings.minio_secret_key:
            raise RuntimeError("MINIO_ACCESS_KEY / MINIO_SECRET_KEY not set")

        # Derive secure from scheme
        secure = settings.minio_endpoint.lower().startswith("https://")
        return cls(
            endpoint=settings.minio_endpoint,
            access_key=settings.minio_access_key,
            secret_key=settings.minio_secret_key,
            secure=secure,
            region=settings.region,
        )

    def bucket_exists(self, bucket: str) -> bool:
        return bool(self._client.bucket_exists(bucket))

    def put_object(
        self,
        bucket: str,
        key: str,
        data: BinaryIO,
        size: int = UNKNOWN_SIZE,
        content_type: str = "application/octet-stream",
    ) -> None:
        part_size = STREAM_PART_SIZE if size < 0 else 0
        self._client.put_object(
            bucket_name=bucket,
            object_name=key,
            data=data,
            length=size,
            content_type=content_type or "application/octet-stream",
            part_size=part_size,
        )

    def get_object(self, bucket: str, key: str) -> bytes:
        resp = self._client.get_object(bucket, key)
        try:
            return resp.read()
        finally:
            resp.close()
            resp.release_conn()

    def fget_object(self, bucket: str, key: str, local_path: str) -> None:
        # Minio.fget_object creates parent directories before it knows the
        # object exists; fetch first, then touch the filesystem
        resp = self._client.get_object(bucket, key)
        try:
            os.makedirs(os.path.dirname(os.path.abspath(local_path)), exist_ok=True)
            with open(local_path, "wb") as f:
                for chunk in resp.stream(DOWNLOAD_CHUNK_SIZE):
                    f.write(chunk)
        finally:
            resp.close()
            resp.release_conn()

    def presigned_get_object(
        self,
        bucket: str,
        key: str,
        expires: timedelta,
        query_params: Optional[Dict[str, str]] = None,
    ) -> str:
        return self._client.presigned_get_object(
            bucket,
            key,
            expires=expires,
            response_headers=dict(query_params or {}) or None,
        )

    def list_objects(self, bucket: str, prefix: str, recursive: bool = True) -> Iterator[ObjectHandle]:
        # S3Error raised mid-iteration propagates to the caller as the listing failure
        for obj in self._client.list_objects(bucket, prefix=prefix, recursive=recursive):
            yield ObjectHandle(key=obj.object_name, size=obj.size, last_modified=obj.last_modified)

    def remove_object(self, bucket: str, key: str) -> None:
        self._client.remove_object(bucket, key)

    def set_lifecycle_policy(self, bucket: str, policy_xml: str) -> None:
        rules = []
        for r in parse_lifecycle_policy(policy_xml):
            expiration = r.get("Expiration") or {}
            rules.append(
                Rule(
                    r["Status"],
                    rule_filter=Filter(prefix=r["Filter"]["Prefix"]),
                    rule_id=r.get("ID"),
                    expiration=Expiration(days=expiration.get("Days")),
                )
            )
        logger.debug("[ObjectStore] minio lifecycle bucket=%s rules=%s", bucket, len(rules))
        self._client.set_bucket_lifecycle(bucket, LifecycleConfig(rules))
