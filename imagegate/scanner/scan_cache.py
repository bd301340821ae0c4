"""Caches successful scan reports per (scanner, digest)."""

import logging

from imagegate.consts import SCAN_CACHE_CATEGORY
from imagegate.models.model_scan import ScanReport
from imagegate.storage.cache.file_caching import FileCache

logger = logging.getLogger(__name__)


class ScanCache:
    """Reuses a scanner's report for a digest it already scanned.

    Only successful reports are stored. A degraded report is never served
    from cache, so a flaky scanner is always retried on the next run.
    """

    def __init__(self, cache: FileCache, ttl: int):
        """Initialize ScanCache.

        Args:
            cache: FileCache instance for storage
            ttl: Time-to-live for cached reports in seconds (must be > 0)
        """
        self.cache = cache
        self.ttl = ttl
        self.category = SCAN_CACHE_CATEGORY

    @staticmethod
    def _key(scanner: str, digest: str) -> str:
        return f"{scanner}@{digest}"

    def get(self, scanner: str, digest: str) -> ScanReport | None:
        """Get the cached report, or None if missing, expired or unreadable."""
        data = self.cache.get(self._key(scanner, digest), self.category)
        if data is None:
            return None
        try:
            report = ScanReport.model_validate(data)
        except ValueError as e:
            logger.warning(f"Discarding unreadable cached report for {scanner}: {e}")
            self.cache.delete(self._key(scanner, digest), self.category)
            return None
        logger.debug(f"Using cached {scanner} report for {digest}")
        return report

    def put(self, report: ScanReport) -> None:
        """Cache a report. Degraded reports are ignored."""
        if report.is_degraded:
            return
        self.cache.put(
            key=self._key(report.scanner, report.digest),
            value=report.model_dump(mode="json"),
            category=self.category,
            ttl=self.ttl,
        )

    def invalidate(self, scanner: str, digest: str) -> bool:
        return self.cache.delete(self._key(scanner, digest), self.category)
