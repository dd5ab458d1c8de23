# driveschool/cache/keys.py
"""
Standardized cache key generation.

Producers and invalidators both build keys through ``CacheKeys`` so the two
sides can never disagree on a key's shape. Every key is a pure function of
its inputs.
"""

from datetime import date, datetime, time
from typing import Optional, Union

from ..core.config import settings

KeyPart = Union[str, int, date, datetime, time]

# Characters with meaning in glob-style invalidation patterns
_GLOB_CHARS = frozenset("*?[]")


class CacheKeyBuilder:
    """Joins namespaced key parts with ':'."""

    # Key prefixes for different domains
    PREFIXES = {
        "availability": "avail",
        "bookings": "book",
        "constraints": "con",
        "content": "content",
        "working_hours": "wh",
    }

    def __init__(self, namespace: Optional[str] = None) -> None:
        self.namespace = namespace if namespace is not None else settings.cache_namespace

    @staticmethod
    def format_part(part: KeyPart) -> str:
        if isinstance(part, (date, datetime, time)):
            text = part.isoformat()
        else:
            text = str(part)
        if not text:
            raise ValueError("Cache key parts must not be empty")
        if _GLOB_CHARS.intersection(text):
            raise ValueError(f"Cache key part contains a glob character: {text!r}")
        return text

    def build(self, *parts: KeyPart) -> str:
        """
        Build a cache key from parts.

        Examples:
            build('availability', 'ins1', date(2025, 6, 18)) -> 'driveschool:avail:ins1:2025-06-18'
        """
        formatted = [self.format_part(part) for part in parts]
        if formatted and formatted[0] in self.PREFIXES:
            formatted[0] = self.PREFIXES[formatted[0]]
        if self.namespace:
            formatted.insert(0, self.namespace)
        return ":".join(formatted)

    def pattern(self, *parts: KeyPart) -> str:
        """Build a wildcard pattern matching every key that extends ``parts``."""
        return f"{self.build(*parts)}:*"


class CacheKeys:
    """Named key constructors shared by every read-heavy path."""

    def __init__(self, namespace: Optional[str] = None) -> None:
        self.builder = CacheKeyBuilder(namespace)

    def content_page(self, page: str) -> str:
        return self.builder.build("content", "page", page)

    def content_item(self, page: str, key: str) -> str:
        return self.builder.build("content", "item", page, key)

    def content_items_pattern(self, page: str) -> str:
        return self.builder.pattern("content", "item", page)

    def working_hours(self, instructor_id: str) -> str:
        return self.builder.build("working_hours", instructor_id)

    def availability(self, instructor_id: str, day: date) -> str:
        return self.builder.build("availability", instructor_id, day)

    def availability_pattern(self, instructor_id: str) -> str:
        """Every derived availability window for one instructor."""
        return self.builder.pattern("availability", instructor_id)

    def bookings(self, instructor_id: str) -> str:
        return self.builder.build("bookings", instructor_id)

    def constraints(self, instructor_id: str) -> str:
        return self.builder.build("constraints", instructor_id)


__all__ = ["CacheKeyBuilder", "CacheKeys", "KeyPart"]
