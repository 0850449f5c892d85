from __future__ import annotations

import os
import shutil
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import BinaryIO, Dict, Iterator, List, Optional
from urllib.parse import urlencode

from objectstore.core.settings import StorageSettings
from objectstore.providers.store import UNKNOWN_SIZE, ObjectHandle, ObjectStoreClient


class LocalFilesObjectStore(ObjectStoreClient):
    """
    Filesystem ObjectStoreClient for local dev and tests.

    Layout under root:
      <bucket>/<key>            object bytes
      .lifecycle/<bucket>.xml   last lifecycle policy set on the bucket
      .tmp/                     in-flight uploads, renamed into place when complete

    Presigned URLs are file:// URLs; nothing enforces their expiry.
    """

    def __init__(self, root: str):
        self.root = Path(root or "./data").resolve()

    @classmethod
    def from_settings(cls, settings: StorageSettings) -> "LocalFilesObjectStore":
        return cls(settings.local_dir)

    def _bucket_dir(self, bucket: str) -> Path:
        bucket = (bucket or "").strip()
        if not bucket or bucket.startswith(".") or "/" in bucket:
            raise ValueError(f"invalid bucket name: {bucket!r}")
        return self.root / bucket

    def _path(self, bucket: str, key: str) -> Path:
        # One key, one file: "a//b", "/a/b" and "a/./b" are not aliases of "a/b"
        parts = (key or "").split("/")
        if not key or any(p in ("", ".", "..") for p in parts):
            raise ValueError(f"invalid object key: {key!r}")
        return self._bucket_dir(bucket).joinpath(*parts)

    def _require_bucket(self, bucket: str) -> Path:
        base = self._bucket_dir(bucket)
        if not base.is_dir():
            raise FileNotFoundError(f"bucket not found: {bucket}")
        return base

    def bucket_exists(self, bucket: str) -> bool:
        return self._bucket_dir(bucket).is_dir()

    def make_bucket(self, bucket: str) -> None:
        self._bucket_dir(bucket).mkdir(parents=True, exist_ok=True)

    def put_object(
        self,
        bucket: str,
        key: str,
        data: BinaryIO,
        size: int = UNKNOWN_SIZE,
        content_type: str = "application/octet-stream",
    ) -> None:
        self._require_bucket(bucket)
        path = self._path(bucket, key)
        tmp_dir = self.root / ".tmp"
        tmp_dir.mkdir(parents=True, exist_ok=True)
        tmp = tmp_dir / uuid.uuid4().hex
        try:
            with open(tmp, "wb") as f:
                if size < 0:
                    shutil.copyfileobj(data, f)
                else:
                    f.write(data.read(size))
            path.parent.mkdir(parents=True, exist_ok=True)
            os.replace(tmp, path)
        finally:
            if tmp.exists():
                tmp.unlink()

    def get_object(self, bucket: str, key: str) -> bytes:
        self._require_bucket(bucket)
        return self._path(bucket, key).read_bytes()

    def fget_object(self, bucket: str, key: str, local_path: str) -> None:
        self._require_bucket(bucket)
        src = self._path(bucket, key)
        if not src.is_file():
            raise FileNotFoundError(f"object not found: {bucket}/{key}")
        os.makedirs(os.path.dirname(os.path.abspath(local_path)), exist_ok=True)
        shutil.copyfile(src, local_path)

    def presigned_get_object(
        self,
        bucket: str,
        key: str,
        expires: timedelta,
        query_params: Optional[Dict[str, str]] = None,
    ) -> str:
        query: Dict[str, str] = {"X-Expires": str(max(1, int(expires.total_seconds())))}
        query.update(query_params or {})
        return f"{self._path(bucket, key).as_uri()}?{urlencode(query)}"

    def list_objects(self, bucket: str, prefix: str, recursive: bool = True) -> Iterator[ObjectHandle]:
        base = self._require_bucket(bucket)
        prefix = (prefix or "").lstrip("/")

        # Walk from the deepest directory the prefix pins down
        start_rel = prefix.rsplit("/", 1)[0] if "/" in prefix else ""
        start = base.joinpath(*start_rel.split("/")) if start_rel else base
        if not start.is_dir():
            return

        errors: List[OSError] = []
        for dirpath, dirnames, filenames in os.walk(start, onerror=errors.append):
            if errors:
                break
            dirnames.sort()
            for name in sorted(filenames):
                full = Path(dirpath) / name
                key = full.relative_to(base).as_posix()
                if not key.startswith(prefix):
                    continue
                if not recursive and "/" in key[len(prefix):]:
                    continue
                st = full.stat()
                yield ObjectHandle(
                    key=key,
                    size=st.st_size,
                    last_modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
                )

        if errors:
            err = errors[0]
            failed = Path(err.filename) if err.filename else start
            try:
                key = failed.relative_to(base).as_posix()
            except ValueError:
                key = prefix
            yield ObjectHandle(key=key, error=err)

    def remove_object(self, bucket: str, key: str) -> None:
        self._require_bucket(bucket)
        path = self._path(bucket, key)
        # S3 delete is idempotent
        if path.is_file():
            path.unlink()

    def lifecycle_path(self, bucket: str) -> Path:
        self._bucket_dir(bucket)
        return self.root / ".lifecycle" / f"{bucket}.xml"

    def set_lifecycle_policy(self, bucket: str, policy_xml: str) -> None:
        self._require_bucket(bucket)
        path = self.lifecycle_path(bucket)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(policy_xml, encoding="utf-8")
