from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Set


class ObjectStoreError(RuntimeError):
    pass


class BucketNotFoundError(ObjectStoreError):
    def __init__(self, bucket: str):
        super().__init__(f"object store bucket required for service ({bucket}) doesn't exist")
        self.bucket = bucket


class StoreUnavailableError(ObjectStoreError):
    """Bucket check failed before the facade could be used (network, auth, ...)."""


@dataclass(frozen=True)
class DownloadFailure:
    key: str
    local_path: str
    error: BaseException

    def __str__(self) -> str:
        return f"{self.key} -> {self.local_path}: {self.error}"


class DirectoryDownloadError(ObjectStoreError):
    """
    One or more objects under a prefix failed to download.

    Carries every individual failure; ordering follows completion order and
    is not meaningful.
    """

    def __init__(self, prefix: str, failures: Sequence[DownloadFailure]):
        self.prefix = prefix
        self.failures: List[DownloadFailure] = list(failures)
        details = "; ".join(str(f) for f in self.failures)
        super().__init__(
            f"Failed to download {len(self.failures)} file(s) from object store prefix {prefix!r}: [{details}]"
        )

    @property
    def failed_keys(self) -> Set[str]:
        return {f.key for f in self.failures}
