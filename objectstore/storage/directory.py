from __future__ import annotations

import logging
import os
import posixpath
import threading
from typing import Callable, Iterable, List, Optional, Set

from objectstore.core.errors import DirectoryDownloadError, DownloadFailure
from objectstore.providers.store import ObjectHandle

logger = logging.getLogger(__name__)


def relative_key(prefix: str, key: str) -> str:
    """
    Key path relative to the "directory" named by prefix.

      relative_key("reports/2024", "reports/2024/q1/a.csv") -> "q1/a.csv"
      relative_key("reports/2024", "reports/2024")          -> "2024"
      relative_key("reports/2024", "reports/2024x/b.csv")   -> "reports/2024x/b.csv"
    """
    folder = (prefix or "").rstrip("/")
    if folder:
        header = folder + "/"
        if key.startswith(header):
            return key[len(header):]
        if key == folder:
            return posixpath.basename(folder)
    return key


def resolve_local_path(root: str, rel: str) -> str:
    parts = [p for p in rel.split("/") if p not in ("", ".")]
    if not parts:
        raise ValueError(f"object key maps to an empty local path: {rel!r}")
    if ".." in parts:
        raise ValueError(f"object key escapes the destination directory: {rel!r}")
    return os.path.join(root, *parts)


class _LocalLayout:
    """
    Local paths reserved so far by one directory download.

    A path is either a file or a directory for the whole download. The first
    listed object to need a path keeps it; a later object that needs the same
    path as the other kind is refused before anything is fetched.
    """

    def __init__(self, root: str):
        self.root = root
        self.files: Set[str] = set()
        self.dirs: Set[str] = set()

    def _parents(self, path: str) -> List[str]:
        out = []
        parent = os.path.dirname(path)
        while parent != self.root and parent != os.path.dirname(parent):
            out.append(parent)
            parent = os.path.dirname(parent)
        return out

    def claim(self, path: str, is_dir: bool = False) -> Optional[str]:
        """Reserve path. Returns the conflict with an earlier object, or None."""
        if path in self.files:
            return f"local path already claimed by another object: {path}"
        if not is_dir and path in self.dirs:
            return f"local path is a directory of another object: {path}"
        parents = self._parents(path)
        for parent in parents:
            if parent in self.files:
                return f"local path is below a file of another object: {parent}"
        (self.dirs if is_dir else self.files).add(path)
        self.dirs.update(parents)
        return None


def download_all(
    handles: Iterable[ObjectHandle],
    prefix: str,
    local_dir: str,
    download: Callable[[str, str], None],
    max_workers: int = 0,
) -> int:
    """
    Download every listed object into local_dir, one thread per object.

    Listing and scheduling interleave: each handle starts its download as
    soon as it is pulled from the listing. A listing failure (exception from
    the iterator or a handle carrying an error) is raised as-is right away;
    downloads already started are left to finish on their own.

    Per-object failures are collected and raised together as
    DirectoryDownloadError once every started download has finished.
    Objects whose local path clashes with one listed earlier
    (same file, or a file where a directory is needed) are failed without
    being fetched.

    max_workers > 0 caps the number of downloads in flight; listing pauses
    while the cap is reached. 0 means no cap.

    Returns the number of objects downloaded.
    """
    root = os.path.abspath(local_dir)
    gate: Optional[threading.BoundedSemaphore] = (
        threading.BoundedSemaphore(max_workers) if max_workers > 0 else None
    )

    failures: List[DownloadFailure] = []
    failures_lock = threading.Lock()
    threads: List[threading.Thread] = []
    layout = _LocalLayout(root)

    def record(key: str, path: str, exc: BaseException) -> None:
        with failures_lock:
            failures.append(DownloadFailure(key=key, local_path=path, error=exc))

    def worker(key: str, path: str) -> None:
        try:
            download(key, path)
        except Exception as exc:
            logger.warning("[ObjectStore] download failed key=%s path=%s err=%s", key, path, exc)
            record(key, path, exc)
        finally:
            if gate is not None:
                gate.release()

    try:
        for handle in handles:
            if handle.error is not None:
                raise handle.error

            key = handle.key
            if key.endswith("/"):
                # Folder marker object: mirror the directory, nothing to fetch
                folder_key = key.rstrip("/")
                path = root
                try:
                    if folder_key != prefix.rstrip("/"):
                        path = resolve_local_path(root, relative_key(prefix, folder_key))
                        conflict = layout.claim(path, is_dir=True)
                        if conflict:
                            raise ValueError(conflict)
                    os.makedirs(path, exist_ok=True)
                except (OSError, ValueError) as exc:
                    record(key, path, exc)
                continue

            rel = relative_key(prefix, key)
            try:
                path = resolve_local_path(root, rel)
            except ValueError as exc:
                record(key, os.path.join(root, rel), exc)
                continue

            conflict = layout.claim(path)
            if conflict:
                record(key, path, ValueError(conflict))
                continue

            if gate is not None:
                gate.acquire()
            t = threading.Thread(
                target=worker,
                args=(key, path),
                name=f"objectstore-download-{len(threads)}",
            )
            t.start()
            threads.append(t)
    except Exception as exc:
        logger.warning(
            "[ObjectStore] directory download aborted prefix=%s scheduled=%s err=%s",
            prefix,
            len(threads),
            exc,
        )
        raise

    for t in threads:
        t.join()

    with failures_lock:
        collected = list(failures)

    if collected:
        raise DirectoryDownloadError(prefix, collected)

    logger.info("[ObjectStore] directory download prefix=%s files=%s dest=%s", prefix, len(threads), root)
    return len(threads)
