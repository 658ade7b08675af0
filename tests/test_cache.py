"""Tests for cache.py module."""

import os
import time

from matrixci.cache import FileCacheBackend, JobCache
from matrixci.model import Job


def job(variant="stable"):
    return Job(variant=variant, steps=[], required=True)


class BrokenBackend:
    """A cache service that is down."""

    def get(self, key):
        raise ConnectionError("cache service unavailable")

    def put(self, key, blob):
        raise ConnectionError("cache service unavailable")


class TestFileCacheBackend:
    """Test the local key -> blob store."""

    def test_get_missing_key(self, tmp_path):
        assert FileCacheBackend(tmp_path).get("nope") is None

    def test_put_then_get(self, tmp_path):
        backend = FileCacheBackend(tmp_path / "cache")
        backend.put("k1", b"blob")

        assert backend.get("k1") == b"blob"
        assert not list((tmp_path / "cache").glob("*.tmp"))

    def test_prune_keeps_newest(self, tmp_path):
        backend = FileCacheBackend(tmp_path)
        now = time.time()
        for i in range(4):
            backend.put(f"stable-{i}", b"x")
            os.utime(tmp_path / f"stable-{i}.tar.gz", (now + i, now + i))
        backend.put("beta-0", b"x")

        backend.prune("stable-", keep=2)

        assert sorted(p.name for p in tmp_path.glob("*.tar.gz")) == [
            "beta-0.tar.gz",
            "stable-2.tar.gz",
            "stable-3.tar.gz",
        ]


class TestJobCache:
    """Test packing directories into blobs and back."""

    def test_disabled_without_directories(self, tmp_path):
        cache = JobCache(FileCacheBackend(tmp_path))

        assert not cache.enabled
        assert cache.restore(job(), tmp_path).hit is False
        assert cache.save(job(), tmp_path) is None

    def test_restore_after_save(self, tmp_path):
        src = tmp_path / "src"
        (src / "target" / "debug").mkdir(parents=True)
        (src / "target" / "debug" / "app").write_text("binary")
        cache = JobCache(FileCacheBackend(tmp_path / "cache"), directories=["target"])

        key = cache.save(job(), src)

        dest = tmp_path / "dest"
        dest.mkdir()
        hit = cache.restore(job(), dest)
        assert hit.hit
        assert hit.key == key
        assert (dest / "target" / "debug" / "app").read_text() == "binary"

    def test_single_file_entry(self, tmp_path):
        src = tmp_path / "src"
        src.mkdir()
        (src / "tool.bin").write_text("x")
        cache = JobCache(FileCacheBackend(tmp_path / "cache"), directories=["tool.bin"])
        cache.save(job(), src)

        dest = tmp_path / "dest"
        dest.mkdir()
        cache.restore(job(), dest)

        assert (dest / "tool.bin").read_text() == "x"

    def test_miss_for_other_variant(self, tmp_path):
        (tmp_path / "target").mkdir()
        cache = JobCache(FileCacheBackend(tmp_path / "cache"), directories=["target"])
        cache.save(job("stable"), tmp_path)

        hit = cache.restore(job("nightly"), tmp_path)

        assert not hit.hit
        assert hit.reason == "cache miss"

    def test_key_follows_input_contents(self, tmp_path):
        (tmp_path / "Cargo.lock").write_text("v1")
        cache = JobCache(FileCacheBackend(tmp_path / "cache"), directories=["target"], inputs=["Cargo.lock"])
        k1 = cache.key_for(job(), tmp_path)

        (tmp_path / "Cargo.lock").write_text("v2")
        k2 = cache.key_for(job(), tmp_path)

        assert k1 != k2
        assert k1.startswith("stable-")

    def test_save_uses_given_key(self, tmp_path):
        (tmp_path / "target").mkdir()
        cache = JobCache(FileCacheBackend(tmp_path / "cache"), directories=["target"], inputs=["Cargo.lock"])
        key = cache.restore(job(), tmp_path).key

        (tmp_path / "Cargo.lock").write_text("generated")
        saved = cache.save(job(), tmp_path, key=key)

        assert saved == key
        (tmp_path / "Cargo.lock").unlink()
        assert cache.restore(job(), tmp_path).hit

    def test_unavailable_backend_is_a_warning(self, tmp_path, console, capsys):
        """Test a broken cache never raises."""
        (tmp_path / "target").mkdir()
        cache = JobCache(BrokenBackend(), directories=["target"])

        hit = cache.restore(job(), tmp_path)
        saved = cache.save(job(), tmp_path)

        assert not hit.hit
        assert saved is None
        assert "cache service unavailable" in capsys.readouterr().err

    def test_corrupt_blob_is_a_miss(self, tmp_path):
        (tmp_path / "target").mkdir()
        backend = FileCacheBackend(tmp_path / "cache")
        cache = JobCache(backend, directories=["target"])
        backend.put(cache.key_for(job(), tmp_path), b"not a tarball")

        hit = cache.restore(job(), tmp_path)

        assert not hit.hit
        assert "restore failed" in hit.reason
