"""Abstract base class for cache backends.

Caches hold derived data (scan reports) that can be regenerated, with
optional TTL (time-to-live) expiry.
"""

from abc import ABC, abstractmethod
from typing import Any


class Cache(ABC):
    """Key/value cache organized by category."""

    @abstractmethod
    def get(self, key: str, category: str = "default") -> Any | None:
        """Return the cached value, or None when missing or expired."""
        ...

    @abstractmethod
    def put(self, key: str, value: Any, category: str = "default", ttl: int | None = None) -> None:
        """Store a value.

        Args:
            key: Unique identifier for the cached value.
            value: JSON-serializable value.
            category: Namespace for the entry.
            ttl: Time-to-live in seconds. None uses the cache's default TTL.
        """
        ...

    @abstractmethod
    def delete(self, key: str, category: str = "default") -> bool:
        """Delete an entry. Returns True if something was removed."""
        ...

    @abstractmethod
    def clear(self, category: str | None = None) -> int:
        """Clear one category (or everything when None). Returns entries removed."""
        ...
