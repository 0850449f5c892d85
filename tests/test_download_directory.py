import io
import os
import random
import threading
import time
from typing import Dict, Iterable, Optional

import pytest

from objectstore.core.errors import DirectoryDownloadError
from objectstore.providers.impl.store_local_files import LocalFilesObjectStore
from objectstore.providers.store import ObjectHandle
from objectstore.storage.directory import download_all, relative_key, resolve_local_path
from objectstore.storage.service import ObjectStoreFacade


class FakeStore:
    """
    In-memory backend with fault injection.

    - fail_keys: fget_object raises OSError for these keys
    - max_delay: random per-download sleep, shuffles completion order
    - delays: fixed per-key sleep, forces a completion order
    - list_error_after / list_error: listing fails once that many handles were yielded
    - inline_error: report the listing failure as a handle instead of raising
    - release: downloads block until this event is set
    """

    def __init__(
        self,
        objects: Dict[str, bytes],
        fail_keys: Iterable[str] = (),
        max_delay: float = 0.0,
        list_error_after: Optional[int] = None,
        list_error: Optional[BaseException] = None,
        inline_error: bool = False,
        delays: Optional[Dict[str, float]] = None,
    ):
        self.objects = dict(objects)
        self.fail_keys = set(fail_keys)
        self.max_delay = max_delay
        self.list_error_after = list_error_after
        self.list_error = list_error
        self.inline_error = inline_error
        self.delays = dict(delays or {})

        self.release = threading.Event()
        self.release.set()

        self.downloaded = []
        self.inflight = 0
        self.max_inflight = 0
        self._lock = threading.Lock()

    def bucket_exists(self, bucket):
        return True

    def list_objects(self, bucket, prefix, recursive=True):
        keys = sorted(k for k in self.objects if k.startswith(prefix))
        for i, key in enumerate(keys):
            if self.list_error_after is not None and i == self.list_error_after:
                if self.inline_error:
                    yield ObjectHandle(key=key, error=self.list_error)
                    return
                raise self.list_error
            yield ObjectHandle(key=key, size=len(self.objects[key]))

    def fget_object(self, bucket, key, local_path):
        with self._lock:
            self.inflight += 1
            self.max_inflight = max(self.max_inflight, self.inflight)
        try:
            self.release.wait(5)
            if self.max_delay:
                time.sleep(random.uniform(0, self.max_delay))
            time.sleep(self.delays.get(key, 0))
            if key in self.fail_keys:
                raise OSError(f"simulated failure for {key}")
            os.makedirs(os.path.dirname(local_path), exist_ok=True)
            with open(local_path, "wb") as f:
                f.write(self.objects[key])
            with self._lock:
                self.downloaded.append(key)
        finally:
            with self._lock:
                self.inflight -= 1


def _facade(store, **kwargs):
    return ObjectStoreFacade(store, "files", **kwargs)


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


# ---------------------------------------------------------------------
# relative paths
# ---------------------------------------------------------------------

@pytest.mark.parametrize(
    "prefix, key, expected",
    [
        ("reports/2024", "reports/2024/q1/a.csv", "q1/a.csv"),
        ("reports/2024/", "reports/2024/q1/a.csv", "q1/a.csv"),
        ("reports/2024", "reports/2024", "2024"),
        ("reports/2024", "reports/2024x/b.csv", "reports/2024x/b.csv"),
        ("", "top/level.txt", "top/level.txt"),
    ],
)
def test_relative_key(prefix, key, expected):
    assert relative_key(prefix, key) == expected


def test_resolve_local_path_rejects_parent_segments(tmp_path):
    with pytest.raises(ValueError):
        resolve_local_path(str(tmp_path), "../outside.txt")
    with pytest.raises(ValueError):
        resolve_local_path(str(tmp_path), "")


# ---------------------------------------------------------------------
# download_directory
# ---------------------------------------------------------------------

def test_empty_prefix_downloads_nothing(tmp_path):
    store = FakeStore({"other/a.txt": b"a"})

    count = _facade(store).download_directory("reports", str(tmp_path / "out"))

    assert count == 0
    assert store.downloaded == []
    assert not (tmp_path / "out").exists()


def test_all_objects_mirrored_under_destination(tmp_path):
    objects = {
        "reports/2024/a.csv": b"a,b\n1,2\n",
        "reports/2024/q1/b.csv": b"bb",
        "reports/2024/q1/deep/c.bin": bytes(range(256)),
    }
    store = FakeStore(objects, max_delay=0.01)
    out = tmp_path / "out"

    count = _facade(store).download_directory("reports/2024", str(out))

    assert count == 3
    assert (out / "a.csv").read_bytes() == objects["reports/2024/a.csv"]
    assert (out / "q1" / "b.csv").read_bytes() == objects["reports/2024/q1/b.csv"]
    assert (out / "q1" / "deep" / "c.bin").read_bytes() == objects["reports/2024/q1/deep/c.bin"]


def test_round_trip_through_local_backend(tmp_path):
    backend = LocalFilesObjectStore(str(tmp_path / "store"))
    backend.make_bucket("files")
    facade = ObjectStoreFacade(backend, "files")

    payloads = {
        "exports/run-7/summary.json": b'{"ok": true}',
        "exports/run-7/parts/0001.bin": bytes(random.getrandbits(8) for _ in range(4096)),
        "exports/run-7/parts/0002.bin": b"",
        "exports/run-8/ignored.txt": b"not under the prefix",
    }
    for key, data in payloads.items():
        facade.upload_file(key, "application/octet-stream", io.BytesIO(data))

    out = tmp_path / "out"
    count = facade.download_directory("exports/run-7", str(out))

    assert count == 3
    assert (out / "summary.json").read_bytes() == payloads["exports/run-7/summary.json"]
    assert (out / "parts" / "0001.bin").read_bytes() == payloads["exports/run-7/parts/0001.bin"]
    assert (out / "parts" / "0002.bin").read_bytes() == b""
    assert not (out / "ignored.txt").exists()


@pytest.mark.parametrize("seed", range(5))
def test_failing_subset_reported_regardless_of_completion_order(tmp_path, seed):
    rnd = random.Random(seed)
    objects = {f"batch/file-{i:02d}.dat": f"payload {i}".encode() for i in range(20)}
    failing = set(rnd.sample(sorted(objects), 6))
    store = FakeStore(objects, fail_keys=failing, max_delay=0.02)
    out = tmp_path / "out"

    with pytest.raises(DirectoryDownloadError) as excinfo:
        _facade(store).download_directory("batch", str(out))

    err = excinfo.value
    assert err.failed_keys == failing
    assert len(err.failures) == len(failing)
    assert all(isinstance(f.error, OSError) for f in err.failures)
    for key in failing:
        assert key in str(err)

    # Everything else still landed
    assert set(store.downloaded) == set(objects) - failing
    for key in set(objects) - failing:
        assert (out / key.split("/", 1)[1]).read_bytes() == objects[key]


def test_listing_error_raised_without_waiting_for_downloads(tmp_path):
    objects = {f"logs/{i}.log": b"x" for i in range(6)}
    boom = ConnectionError("listing stream broke")
    store = FakeStore(objects, list_error_after=3, list_error=boom)
    store.release.clear()

    try:
        with pytest.raises(ConnectionError) as excinfo:
            _facade(store).download_directory("logs", str(tmp_path / "out"))

        assert excinfo.value is boom
        assert not isinstance(excinfo.value, DirectoryDownloadError)
        # The three scheduled downloads are still blocked: nothing waited on them
        assert store.downloaded == []
        assert _wait_for(lambda: store.inflight == 3)
    finally:
        store.release.set()

    assert _wait_for(lambda: len(store.downloaded) == 3)


def test_inline_listing_error_is_not_aggregated(tmp_path):
    objects = {f"logs/{i}.log": b"x" for i in range(4)}
    boom = PermissionError("listing denied")
    store = FakeStore(objects, fail_keys={"logs/0.log"}, list_error_after=2, list_error=boom, inline_error=True)

    with pytest.raises(PermissionError) as excinfo:
        _facade(store).download_directory("logs", str(tmp_path / "out"))

    assert excinfo.value is boom
    assert _wait_for(lambda: store.inflight == 0)


def test_bounded_concurrency_downloads_everything(tmp_path):
    objects = {f"media/{i}.png": bytes([i]) * 10 for i in range(12)}
    store = FakeStore(objects, max_delay=0.02)

    count = _facade(store, download_concurrency=2).download_directory("media", str(tmp_path / "out"))

    assert count == 12
    assert store.max_inflight <= 2
    assert sorted(store.downloaded) == sorted(objects)


def test_key_equal_to_prefix_gets_its_own_path(tmp_path):
    store = FakeStore({"reports/2024": b"top", "reports/2024/a.csv": b"a"})
    out = tmp_path / "out"

    count = _facade(store).download_directory("reports/2024", str(out))

    assert count == 2
    assert (out / "2024").read_bytes() == b"top"
    assert (out / "a.csv").read_bytes() == b"a"


def test_colliding_local_path_reported_not_overwritten(tmp_path):
    # "a/b" maps to <out>/b and so does "a/b/b"
    store = FakeStore({"a/b": b"first", "a/b/b": b"second"})
    out = tmp_path / "out"

    with pytest.raises(DirectoryDownloadError) as excinfo:
        _facade(store).download_directory("a/b", str(out))

    assert excinfo.value.failed_keys == {"a/b/b"}
    assert (out / "b").read_bytes() == b"first"


def test_folder_markers_create_directories(tmp_path):
    store = FakeStore({"site/": b"", "site/empty/": b"", "site/index.html": b"<html/>"})
    out = tmp_path / "out"

    count = _facade(store).download_directory("site", str(out))

    assert count == 1
    assert (out / "empty").is_dir()
    assert (out / "index.html").read_bytes() == b"<html/>"
    assert "site/empty/" not in store.downloaded


def test_key_escaping_destination_is_a_failure(tmp_path):
    store = FakeStore({"up/../../escape.txt": b"nope", "up/ok.txt": b"ok"})
    out = tmp_path / "dest" / "out"

    with pytest.raises(DirectoryDownloadError) as excinfo:
        _facade(store).download_directory("up", str(out))

    assert excinfo.value.failed_keys == {"up/../../escape.txt"}
    assert isinstance(excinfo.value.failures[0].error, ValueError)
    assert not (tmp_path / "escape.txt").exists()
    assert (out / "ok.txt").read_bytes() == b"ok"


@pytest.mark.parametrize("slow_key", ["p/a", "p/a/b"])
def test_file_needed_as_directory_fails_the_later_key(tmp_path, slow_key):
    # "p/a" -> <out>/a as a file, "p/a/b" needs <out>/a as a directory
    store = FakeStore({"p/a": b"1", "p/a/b": b"2"}, delays={slow_key: 0.2})
    out = tmp_path / "out"

    with pytest.raises(DirectoryDownloadError) as excinfo:
        _facade(store).download_directory("p", str(out))

    assert excinfo.value.failed_keys == {"p/a/b"}
    assert store.downloaded == ["p/a"]
    assert (out / "a").read_bytes() == b"1"


@pytest.mark.parametrize("slow_key", ["p/a", "p/a/a/x"])
def test_key_equal_to_prefix_keeps_its_path_over_nested_children(tmp_path, slow_key):
    # "p/a" -> <out>/a, "p/a/a/x" -> <out>/a/x
    store = FakeStore({"p/a": b"top", "p/a/a/x": b"child"}, delays={slow_key: 0.2})
    out = tmp_path / "out"

    with pytest.raises(DirectoryDownloadError) as excinfo:
        _facade(store).download_directory("p/a", str(out))

    assert excinfo.value.failed_keys == {"p/a/a/x"}
    assert (out / "a").read_bytes() == b"top"


def test_folder_marker_over_a_file_fails_the_marker(tmp_path):
    store = FakeStore({"s/x": b"file", "s/x/": b""}, delays={"s/x": 0.2})
    out = tmp_path / "out"

    with pytest.raises(DirectoryDownloadError) as excinfo:
        _facade(store).download_directory("s", str(out))

    assert excinfo.value.failed_keys == {"s/x/"}
    assert (out / "x").read_bytes() == b"file"


def test_file_under_an_earlier_folder_marker_fails_the_file(tmp_path):
    store = FakeStore({"s/x": b"file"})
    out = tmp_path / "out"
    handles = [ObjectHandle(key="s/x/"), ObjectHandle(key="s/x", size=4)]

    with pytest.raises(DirectoryDownloadError) as excinfo:
        download_all(handles, "s", str(out), lambda key, path: store.fget_object("files", key, path))

    assert excinfo.value.failed_keys == {"s/x"}
    assert (out / "x").is_dir()
    assert store.downloaded == []
