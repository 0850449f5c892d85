from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import BinaryIO, Dict, Iterator, Optional, Protocol, runtime_checkable

# Passed as size when the caller does not know the stream length
UNKNOWN_SIZE = -1

# Sent with every presigned GET so browsers render instead of download
INLINE_DISPOSITION: Dict[str, str] = {"response-content-disposition": "inline"}


@dataclass(frozen=True)
class ObjectHandle:
    """
    One entry of a bucket listing.

    error is set when the backend reports a listing failure inline instead of
    raising from the iterator; the listing is unusable past that entry.
    """
    key: str
    size: Optional[int] = None
    last_modified: Optional[datetime] = None
    error: Optional[BaseException] = None


@runtime_checkable
class ObjectStoreClient(Protocol):
    """
    Bucket-addressed object store backend.

    Implementations must be safe for concurrent calls from several threads.
    """

    def bucket_exists(self, bucket: str) -> bool: ...

    def put_object(
        self,
        bucket: str,
        key: str,
        data: BinaryIO,
        size: int = UNKNOWN_SIZE,
        content_type: str = "application/octet-stream",
    ) -> None: ...

    def get_object(self, bucket: str, key: str) -> bytes: ...

    def fget_object(self, bucket: str, key: str, local_path: str) -> None:
        """Write the object to local_path, creating missing parents once the object is found."""

    def presigned_get_object(
        self,
        bucket: str,
        key: str,
        expires: timedelta,
        query_params: Optional[Dict[str, str]] = None,
    ) -> str: ...

    def list_objects(self, bucket: str, prefix: str, recursive: bool = True) -> Iterator[ObjectHandle]: ...

    def remove_object(self, bucket: str, key: str) -> None: ...

    def set_lifecycle_policy(self, bucket: str, policy_xml: str) -> None: ...
