"""Tests for file-based cache implementation."""

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from conftest import DIGEST, make_scan_report
from imagegate.models.model_scan import ScanStatus
from imagegate.scanner.scan_cache import ScanCache
from imagegate.storage.cache.file_caching import FileCache


@pytest.fixture
def file_cache(tmp_path: Path) -> FileCache:
    """Create a FileCache with temporary directory."""
    return FileCache(cache_dir=tmp_path, default_ttl=0)


def _expire_entry(cache: FileCache, key: str, category: str) -> None:
    path = cache._cache_path(key, category)
    entry = json.loads(path.read_text())
    entry["expires_at"] = (datetime.now(UTC) - timedelta(seconds=1)).isoformat()
    path.write_text(json.dumps(entry))


class TestFileCache:
    """Tests for FileCache class."""

    def test_put_and_get(self, file_cache: FileCache) -> None:
        file_cache.put("key1", {"nested": [1, 2]}, "test")
        assert file_cache.get("key1", "test") == {"nested": [1, 2]}

    def test_get_nonexistent(self, file_cache: FileCache) -> None:
        assert file_cache.get("nonexistent", "test") is None

    def test_categories_are_separate(self, file_cache: FileCache) -> None:
        file_cache.put("key", "a", "one")
        file_cache.put("key", "b", "two")
        assert file_cache.get("key", "one") == "a"
        assert file_cache.get("key", "two") == "b"

    def test_expired_entry_removed(self, file_cache: FileCache) -> None:
        file_cache.put("key", "value", "test", ttl=60)
        _expire_entry(file_cache, "key", "test")

        assert file_cache.get("key", "test") is None
        assert not file_cache._cache_path("key", "test").exists()

    def test_zero_ttl_never_expires(self, file_cache: FileCache) -> None:
        file_cache.put("key", "value", "test")

        entry = json.loads(file_cache._cache_path("key", "test").read_text())
        assert entry["expires_at"] is None
        assert file_cache.get("key", "test") == "value"

    def test_corrupt_entry(self, file_cache: FileCache) -> None:
        file_cache.put("key", "value", "test")
        file_cache._cache_path("key", "test").write_text("{not json")
        assert file_cache.get("key", "test") is None

    def test_delete(self, file_cache: FileCache) -> None:
        file_cache.put("key", "value", "test")
        assert file_cache.delete("key", "test")
        assert not file_cache.delete("key", "test")

    def test_clear_category(self, file_cache: FileCache) -> None:
        file_cache.put("a", 1, "one")
        file_cache.put("b", 2, "one")
        file_cache.put("c", 3, "two")

        assert file_cache.clear("one") == 2
        assert file_cache.get("c", "two") == 3

    def test_clear_all(self, file_cache: FileCache) -> None:
        file_cache.put("a", 1, "one")
        file_cache.put("c", 3, "two")
        assert file_cache.clear() == 2

    def test_clear_missing_dir(self, tmp_path: Path) -> None:
        assert FileCache(cache_dir=tmp_path / "nothing").clear() == 0


class TestScanCache:
    """Tests for ScanCache on top of FileCache."""

    def test_roundtrip_successful_report(self, file_cache: FileCache) -> None:
        cache = ScanCache(file_cache, ttl=3600)
        report = make_scan_report("grype")
        cache.put(report)

        cached = cache.get("grype", DIGEST)
        assert cached == report
        assert cache.get("trivy", DIGEST) is None

    def test_degraded_report_ignored(self, file_cache: FileCache) -> None:
        cache = ScanCache(file_cache, ttl=3600)
        cache.put(make_scan_report("grype", status=ScanStatus.TIMED_OUT))
        assert cache.get("grype", DIGEST) is None

    def test_invalidate(self, file_cache: FileCache) -> None:
        cache = ScanCache(file_cache, ttl=3600)
        cache.put(make_scan_report("grype"))
        assert cache.invalidate("grype", DIGEST)
        assert cache.get("grype", DIGEST) is None

    def test_unreadable_entry_discarded(self, file_cache: FileCache) -> None:
        cache = ScanCache(file_cache, ttl=3600)
        file_cache.put(f"grype@{DIGEST}", {"scanner": "grype"}, cache.category)
        assert cache.get("grype", DIGEST) is None
