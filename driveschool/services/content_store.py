# driveschool/services/content_store.py
"""
Versioned Content Store

Page-scoped site content with one monotonically increasing version per
(page, key). Writers state the version they last saw; a save based on an
outdated version is rejected as a conflict instead of silently overwriting
another editor's work.

Reads are cache-first. The backend's version-guarded write is the only
authority on who wins a race: the cache is consulted to avoid a round trip,
never to decide a conflict on its own.
"""

from __future__ import annotations

from datetime import datetime, timezone
import inspect
import logging
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import ValidationError
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError

from ..cache.layer import CacheLayer
from ..core.config import settings
from ..core.constants import CONTENT_SLUG_PATTERN, MAX_HISTORY_LIMIT
from ..core.exceptions import DomainException, StorageUnavailableException, ValidationException
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..schemas.content import (
    ContentChange,
    ContentItem,
    ContentVersion,
    SaveResult,
    build_content_value,
    dump_content_value,
)
from .content_backend import ContentBackend

logger = logging.getLogger(__name__)

_SLUG_RE = re.compile(CONTENT_SLUG_PATTERN)

BACKEND_UNAVAILABLE_ERRORS = (OperationalError, PoolTimeoutError, OSError)

ContentSubscriber = Callable[[ContentChange], Union[None, Awaitable[None]]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VersionedContentStore:
    def __init__(
        self,
        backend: ContentBackend,
        cache: CacheLayer,
        *,
        max_write_attempts: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.backend = backend
        self.cache = cache
        self.max_write_attempts = max(1, max_write_attempts or settings.content_max_write_attempts)
        self._clock = clock
        self._subscribers: List[ContentSubscriber] = []

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def load(self, page: str) -> Dict[str, ContentItem]:
        """All items of a page keyed by content key. Malformed rows are skipped."""
        self._validate_slug("page", page)
        cache_key = self.cache.keys.content_page(page)
        cached = await self.cache.get(cache_key)
        if isinstance(cached, list):
            items = self._parse_items(cached, source="cache")
            return {item.key: item for item in items}

        rows = await self._backend(self.backend.list_page(page), "list_page", page=page)
        items = self._parse_items(rows, source="backend")
        await self.cache.set(
            cache_key, [item.model_dump(mode="json") for item in items], tier="short"
        )
        return {item.key: item for item in items}

    async def get_item(self, page: str, key: str) -> Optional[ContentItem]:
        """Current item, cache-first. Absent items are not cached."""
        self._validate_slug("page", page)
        self._validate_slug("key", key)
        cache_key = self.cache.keys.content_item(page, key)
        cached = await self.cache.get(cache_key)
        if cached is not None:
            item = self._parse_item(cached, source="cache")
            if item is not None:
                return item
            await self.cache.delete(cache_key)

        item = await self._read_backend_item(page, key)
        if item is not None:
            await self.cache.set(cache_key, item.model_dump(mode="json"), tier="short")
        return item

    async def history(self, page: str, key: str, limit: Optional[int] = None) -> List[ContentVersion]:
        """Most recent versions first. Never cached."""
        self._validate_slug("page", page)
        self._validate_slug("key", key)
        limit = settings.content_history_limit if limit is None else limit
        if limit < 1 or limit > MAX_HISTORY_LIMIT:
            raise ValidationException(f"limit must be between 1 and {MAX_HISTORY_LIMIT}")
        rows = await self._backend(
            self.backend.list_history(page, key, limit), "list_history", page=page, key=key
        )
        versions: List[ContentVersion] = []
        for row in rows:
            try:
                versions.append(ContentVersion.model_validate(row))
            except ValidationError as exc:
                logger.warning(
                    "Skipping malformed content history row",
                    extra={"page": page, "key": key, "version": row.get("version"), "error": str(exc)},
                )
        return versions

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def save(
        self,
        page: str,
        key: str,
        value: Any,
        content_type: str,
        editor_id: str,
        expected_version: Optional[int] = None,
    ) -> SaveResult:
        """
        Write a new version of (page, key).

        Args:
            value: raw editor input for ``content_type``
            expected_version: version the editor last saw. ``None`` skips the
                check; ``0`` means the item must not exist yet.

        Returns:
            SaveResult with the new version, or ``conflict=True`` and the
            current version when the expectation no longer holds.

        Raises:
            ValidationException: bad page/key, editor or value
            StorageUnavailableException: backend unreachable
        """
        return await self._save(page, key, value, content_type, editor_id, expected_version)

    async def restore(
        self,
        page: str,
        key: str,
        version: int,
        editor_id: str,
        expected_version: Optional[int] = None,
    ) -> SaveResult:
        """Re-save a historical value as a new version. History is never rewritten."""
        self._validate_slug("page", page)
        self._validate_slug("key", key)
        row = await self._backend(
            self.backend.get_version(page, key, version), "get_version", page=page, key=key
        )
        if row is None:
            raise ValidationException(
                f"Version {version} of {page}/{key} does not exist",
                details={"page": page, "key": key, "version": version},
            )
        return await self._save(
            page,
            key,
            row["value"],
            row["type"],
            editor_id,
            expected_version,
            restored_from=version,
        )

    async def _save(
        self,
        page: str,
        key: str,
        value: Any,
        content_type: str,
        editor_id: str,
        expected_version: Optional[int],
        restored_from: Optional[int] = None,
    ) -> SaveResult:
        self._validate_slug("page", page)
        self._validate_slug("key", key)
        if not editor_id:
            raise ValidationException("An editor id is required to save content")
        if expected_version is not None and expected_version < 0:
            raise ValidationException("expected_version must be >= 0")
        typed_value = build_content_value(content_type, value)
        stored_value = dump_content_value(typed_value)

        current = await self.get_item(page, key)
        observed = current.version if current is not None else 0

        if expected_version is not None and expected_version != observed:
            # The cached view may be stale; only the backend can confirm a conflict
            fresh = await self._read_backend_item(page, key)
            observed = fresh.version if fresh is not None else 0
            if expected_version != observed:
                return await self._conflict(page, key, expected_version, observed)

        for attempt in range(1, self.max_write_attempts + 1):
            now = self._clock()
            if observed == 0:
                won = await self._backend(
                    self.backend.insert_first(
                        page=page,
                        key=key,
                        type=content_type,
                        value=stored_value,
                        updated_by=editor_id,
                        updated_at=now,
                    ),
                    "insert_first",
                    page=page,
                    key=key,
                )
            else:
                won = await self._backend(
                    self.backend.update_if_version(
                        page=page,
                        key=key,
                        observed_version=observed,
                        type=content_type,
                        value=stored_value,
                        updated_by=editor_id,
                        updated_at=now,
                    ),
                    "update_if_version",
                    page=page,
                    key=key,
                )

            if won:
                new_version = observed + 1
                await self._invalidate(page, key)
                prometheus_metrics.record_content_save("success")
                logger.info(
                    "Content saved",
                    extra={
                        "page": page,
                        "key": key,
                        "version": new_version,
                        "editor_id": editor_id,
                        "restored_from": restored_from,
                    },
                )
                await self._notify(
                    ContentChange(
                        page=page,
                        key=key,
                        version=new_version,
                        type=content_type,
                        updated_by=editor_id,
                        restored_from=restored_from,
                    )
                )
                return SaveResult(success=True, version=new_version)

            # Another writer got there first
            fresh = await self._read_backend_item(page, key)
            fresh_version = fresh.version if fresh is not None else 0
            await self._invalidate(page, key)
            if expected_version is not None and expected_version != fresh_version:
                return await self._conflict(page, key, expected_version, fresh_version)
            logger.info(
                "Version guard lost, retrying content write",
                extra={"page": page, "key": key, "attempt": attempt, "observed": observed},
            )
            observed = fresh_version

        logger.warning(
            "Content write kept losing the version guard",
            extra={"page": page, "key": key, "attempts": self.max_write_attempts},
        )
        return await self._conflict(page, key, expected_version, observed)

    async def _conflict(
        self, page: str, key: str, expected_version: Optional[int], current_version: int
    ) -> SaveResult:
        prometheus_metrics.record_content_save("conflict")
        logger.info(
            "Content save rejected as conflict",
            extra={
                "page": page,
                "key": key,
                "expected_version": expected_version,
                "current_version": current_version,
            },
        )
        # Make the next read show the winner's value
        await self._invalidate(page, key)
        return SaveResult(success=False, version=current_version or None, conflict=True)

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def subscribe(self, callback: ContentSubscriber) -> Callable[[], None]:
        """Register a change listener. Returns a function that unregisters it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def _notify(self, change: ContentChange) -> None:
        for callback in list(self._subscribers):
            try:
                result = callback(change)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.error(
                    "Content subscriber failed",
                    extra={"page": change.page, "key": change.key, "error": str(exc)},
                    exc_info=True,
                )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _invalidate(self, page: str, key: str) -> None:
        await self.cache.delete(self.cache.keys.content_item(page, key))
        await self.cache.delete(self.cache.keys.content_page(page))

    async def _read_backend_item(self, page: str, key: str) -> Optional[ContentItem]:
        row = await self._backend(self.backend.get_item(page, key), "get_item", page=page, key=key)
        if row is None:
            return None
        return self._parse_item(row, source="backend")

    async def _backend(self, awaitable: Awaitable[Any], operation: str, **context: Any) -> Any:
        try:
            return await awaitable
        except DomainException:
            raise
        except BACKEND_UNAVAILABLE_ERRORS as exc:
            logger.warning(
                "Content backend unavailable",
                extra={"operation": operation, **context, "error": str(exc)},
            )
            raise StorageUnavailableException(
                details={"operation": operation, "error_type": type(exc).__name__}
            ) from exc

    def _parse_items(self, rows: List[Any], *, source: str) -> List[ContentItem]:
        items: List[ContentItem] = []
        for row in rows:
            item = self._parse_item(row, source=source)
            if item is not None:
                items.append(item)
        return items

    @staticmethod
    def _parse_item(row: Any, *, source: str) -> Optional[ContentItem]:
        try:
            item = ContentItem.model_validate(row)
        except ValidationError as exc:
            logger.warning(
                "Skipping malformed content row",
                extra={
                    "source": source,
                    "page": row.get("page") if isinstance(row, dict) else None,
                    "key": row.get("key") if isinstance(row, dict) else None,
                    "error": str(exc),
                },
            )
            return None
        row_type = row.get("type") if isinstance(row, dict) else None
        if row_type is not None and row_type != item.type:
            logger.warning(
                "Skipping content row whose type column disagrees with its value",
                extra={"source": source, "page": item.page, "key": item.key},
            )
            return None
        return item

    @staticmethod
    def _validate_slug(field: str, value: str) -> None:
        if not isinstance(value, str) or not _SLUG_RE.fullmatch(value):
            raise ValidationException(
                f"Invalid content {field}", details={"field": field, "value": str(value)[:128]}
            )


__all__ = ["ContentSubscriber", "VersionedContentStore"]
