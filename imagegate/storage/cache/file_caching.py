"""JSON file cache: one file per entry, grouped in category directories.

Layout:
    {cache_dir}/
    └── {category}/
        └── {sha256(key)[:16]}.json
"""

import hashlib
import logging
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ValidationError

from imagegate.consts import DEFAULT_DATA_DIR
from imagegate.storage.cache.base import Cache

logger = logging.getLogger(__name__)


class CacheEntry(BaseModel):
    """On-disk envelope around a cached value."""

    key: str
    cached_at: datetime
    expires_at: datetime | None = None
    value: Any = None

    def expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class FileCache(Cache):
    """Cache backed by JSON files, with per-entry expiry.

    A TTL of 0 stores the entry without an expiry time.
    """

    def __init__(self, cache_dir: Path | str | None = None, default_ttl: int = 0):
        self.cache_dir = Path(cache_dir) if cache_dir is not None else DEFAULT_DATA_DIR / "cache"
        self.default_ttl = default_ttl

    def _cache_path(self, key: str, category: str) -> Path:
        # digests contain ':' which is not a portable filename character
        name = hashlib.sha256(key.encode()).hexdigest()[:16]
        return self.cache_dir / category / f"{name}.json"

    def _read(self, path: Path) -> CacheEntry | None:
        try:
            return CacheEntry.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            logger.warning(f"Unreadable cache entry {path.name}: {e}")
            return None

    def get(self, key: str, category: str = "default") -> Any | None:
        path = self._cache_path(key, category)
        if not path.exists():
            return None

        entry = self._read(path)
        if entry is None:
            return None
        if entry.expired(datetime.now(UTC)):
            logger.debug(f"Expired {category}/{key}")
            path.unlink(missing_ok=True)
            return None
        return entry.value

    def put(self, key: str, value: Any, category: str = "default", ttl: int | None = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        now = datetime.now(UTC)
        entry = CacheEntry(
            key=key,
            cached_at=now,
            expires_at=now + timedelta(seconds=ttl) if ttl > 0 else None,
            value=value,
        )

        path = self._cache_path(key, category)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(entry.model_dump_json(indent=2), encoding="utf-8")
        logger.debug(f"Cached {category}/{key} (ttl={ttl}s)")

    def delete(self, key: str, category: str = "default") -> bool:
        path = self._cache_path(key, category)
        if not path.exists():
            return False
        path.unlink()
        return True

    def clear(self, category: str | None = None) -> int:
        root = self.cache_dir / category if category is not None else self.cache_dir
        if not root.exists():
            return 0

        pattern = "*.json" if category is not None else "*/*.json"
        removed = 0
        for path in root.glob(pattern):
            path.unlink()
            removed += 1

        logger.info(f"Removed {removed} cache entries from {category or 'all categories'}")
        return removed
