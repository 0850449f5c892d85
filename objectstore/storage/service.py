from __future__ import annotations

import logging
from datetime import timedelta
from typing import BinaryIO, Optional

from objectstore.core.errors import BucketNotFoundError, StoreUnavailableError
from objectstore.providers.store import INLINE_DISPOSITION, UNKNOWN_SIZE, ObjectStoreClient
from objectstore.storage.directory import download_all
from objectstore.storage.lifecycle import LifecycleRule, render_lifecycle_policy

logger = logging.getLogger(__name__)

DEFAULT_LINK_TTL = timedelta(hours=24)

CONTENT_TYPE_JSON = "application/json"


class ObjectStoreFacade:
    """
    File operations against one bucket of an object store.

    Every method except download_directory is a single blocking call to the
    backend; backend exceptions propagate unchanged and nothing is retried.

    The client and bucket are fixed at construction. The client is shared by
    all calls, including the concurrent downloads of download_directory.
    """

    def __init__(
        self,
        client: ObjectStoreClient,
        bucket: str,
        download_concurrency: int = 0,
        link_ttl: Optional[timedelta] = None,
        check_bucket: bool = True,
    ):
        bucket = (bucket or "").strip()
        if not bucket:
            raise ValueError("bucket name is required")

        if check_bucket:
            try:
                exists = client.bucket_exists(bucket)
            except Exception as e:
                raise StoreUnavailableError(f"object store bucket check failed (bucket={bucket}): {e}") from e
            if not exists:
                raise BucketNotFoundError(bucket)

        self._client = client
        self._bucket = bucket
        self._download_concurrency = max(0, int(download_concurrency or 0))
        self._link_ttl = DEFAULT_LINK_TTL if link_ttl is None else link_ttl

    @property
    def client(self) -> ObjectStoreClient:
        return self._client

    @property
    def bucket(self) -> str:
        return self._bucket

    def add_lifecycle_rule(self, rule_id: str, prefix: str, days_to_expiry: int) -> None:
        """
        Expire objects under prefix after days_to_expiry days.

        Replaces the bucket's whole lifecycle configuration with this single
        rule; rules set earlier (by this or any other client) are dropped.
        """
        rule = LifecycleRule.build(rule_id, prefix, days_to_expiry)
        self._client.set_lifecycle_policy(self._bucket, render_lifecycle_policy(rule))
        logger.info(
            "[ObjectStore] lifecycle rule set bucket=%s id=%s prefix=%s days=%s",
            self._bucket,
            rule.rule_id,
            rule.prefix,
            rule.days_to_expiry,
        )

    def upload_file(
        self,
        key: str,
        content_type: str,
        data: BinaryIO,
        size: Optional[int] = None,
    ) -> None:
        object_size = UNKNOWN_SIZE if size is None else int(size)
        self._client.put_object(self._bucket, key, data, object_size, content_type)
        logger.debug("[ObjectStore] uploaded key=%s size=%s type=%s", key, object_size, content_type)

    def get_file_url(self, key: str, ttl: timedelta) -> str:
        return self._client.presigned_get_object(self._bucket, key, ttl, dict(INLINE_DISPOSITION))

    def upload_and_link(
        self,
        key: str,
        data: BinaryIO,
        ttl: Optional[timedelta] = None,
        content_type: str = CONTENT_TYPE_JSON,
        size: Optional[int] = None,
    ) -> str:
        """Upload, then presign. The link is only requested once the upload succeeded."""
        self.upload_file(key, content_type, data, size)
        return self.get_file_url(key, self._link_ttl if ttl is None else ttl)

    def download_file(self, key: str, local_path: str) -> None:
        """Write one object to local_path. The backend creates missing parent directories once the object is found."""
        self._client.fget_object(self._bucket, key, local_path)
        logger.debug("[ObjectStore] downloaded key=%s to %s", key, local_path)

    def download_directory(self, prefix: str, local_dir: str) -> int:
        """
        Mirror every object under prefix into local_dir.

        Returns the number of files downloaded. Raises the listing error
        as-is if listing fails, or DirectoryDownloadError naming every object
        that failed to download.
        """
        handles = self._client.list_objects(self._bucket, prefix, True)
        return download_all(
            handles,
            prefix,
            local_dir,
            self.download_file,
            max_workers=self._download_concurrency,
        )

    def download_bytes(self, key: str) -> bytes:
        return self._client.get_object(self._bucket, key)

    def remove_file(self, key: str) -> None:
        self._client.remove_object(self._bucket, key)
        logger.debug("[ObjectStore] removed key=%s", key)
