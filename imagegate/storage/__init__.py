"""Storage backends.

This module provides:
- Cache / FileCache: file-based cache with TTL support (scan reports)
- ReportStore: persisted run reports keyed by digest and timestamp
"""

from imagegate.storage.cache.base import Cache
from imagegate.storage.cache.file_caching import FileCache
from imagegate.storage.report_store import ReportStore, load_scan_report

__all__ = [
    "Cache",
    "FileCache",
    "ReportStore",
    "load_scan_report",
]
