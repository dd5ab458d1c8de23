# driveschool/services/content_backend.py
"""
Storage adapters behind the versioned content store.

Backends exchange plain row dicts so the store can validate everything it
reads. Both write methods are conditional and report whether this writer won;
they never raise on a lost race.
"""

from __future__ import annotations

import asyncio
import copy
from datetime import datetime, timezone
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple, TypeVar

from sqlalchemy.orm import Session, sessionmaker

from ..models.content import ContentItemRecord, ContentVersionRecord
from ..repositories.content_repository import ContentRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")
Row = Dict[str, Any]


class ContentBackend(Protocol):
    async def list_page(self, page: str) -> List[Row]: ...

    async def get_item(self, page: str, key: str) -> Optional[Row]: ...

    async def insert_first(
        self, *, page: str, key: str, type: str, value: Any, updated_by: str, updated_at: datetime
    ) -> bool: ...

    async def update_if_version(
        self,
        *,
        page: str,
        key: str,
        observed_version: int,
        type: str,
        value: Any,
        updated_by: str,
        updated_at: datetime,
    ) -> bool: ...

    async def list_history(self, page: str, key: str, limit: int) -> List[Row]: ...

    async def get_version(self, page: str, key: str, version: int) -> Optional[Row]: ...


class InMemoryContentBackend:
    """Dict-backed store for development and tests. Rows are copied in and out."""

    def __init__(self) -> None:
        self._items: Dict[Tuple[str, str], Row] = {}
        self._history: Dict[Tuple[str, str], List[Row]] = {}

    async def list_page(self, page: str) -> List[Row]:
        return [
            copy.deepcopy(row)
            for (row_page, _), row in sorted(self._items.items())
            if row_page == page
        ]

    async def get_item(self, page: str, key: str) -> Optional[Row]:
        row = self._items.get((page, key))
        return copy.deepcopy(row) if row is not None else None

    async def insert_first(
        self, *, page: str, key: str, type: str, value: Any, updated_by: str, updated_at: datetime
    ) -> bool:
        if (page, key) in self._items:
            return False
        self._write(page, key, 1, type, value, updated_by, updated_at)
        return True

    async def update_if_version(
        self,
        *,
        page: str,
        key: str,
        observed_version: int,
        type: str,
        value: Any,
        updated_by: str,
        updated_at: datetime,
    ) -> bool:
        current = self._items.get((page, key))
        if current is None or current["version"] != observed_version:
            return False
        self._write(page, key, observed_version + 1, type, value, updated_by, updated_at)
        return True

    def _write(
        self,
        page: str,
        key: str,
        version: int,
        type: str,
        value: Any,
        updated_by: str,
        updated_at: datetime,
    ) -> None:
        row = {
            "page": page,
            "key": key,
            "type": type,
            "value": copy.deepcopy(value),
            "version": version,
            "updated_by": updated_by,
            "updated_at": updated_at,
        }
        self._items[(page, key)] = row
        history_row = {k: v for k, v in row.items() if k != "updated_at"}
        history_row["created_at"] = updated_at
        self._history.setdefault((page, key), []).append(copy.deepcopy(history_row))

    async def list_history(self, page: str, key: str, limit: int) -> List[Row]:
        rows = self._history.get((page, key), [])
        return [copy.deepcopy(row) for row in reversed(rows[-limit:])] if limit > 0 else []

    async def get_version(self, page: str, key: str, version: int) -> Optional[Row]:
        for row in self._history.get((page, key), []):
            if row["version"] == version:
                return copy.deepcopy(row)
        return None


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _item_row(record: ContentItemRecord) -> Row:
    return {
        "page": record.page,
        "key": record.key,
        "type": record.type,
        "value": record.value,
        "version": record.version,
        "updated_by": record.updated_by,
        "updated_at": _as_utc(record.updated_at),
    }


def _version_row(record: ContentVersionRecord) -> Row:
    return {
        "page": record.page,
        "key": record.key,
        "type": record.type,
        "value": record.value,
        "version": record.version,
        "updated_by": record.updated_by,
        "created_at": _as_utc(record.created_at),
    }


class SqlContentBackend:
    """
    Relational backend. Each call is one short transaction on a worker thread.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self.session_factory = session_factory

    def _run(self, fn: Callable[[ContentRepository], T]) -> T:
        db = self.session_factory()
        try:
            repo = ContentRepository(db)
            with repo.transaction():
                return fn(repo)
        finally:
            db.close()

    async def _call(self, fn: Callable[[ContentRepository], T]) -> T:
        return await asyncio.to_thread(self._run, fn)

    async def list_page(self, page: str) -> List[Row]:
        return await self._call(lambda repo: [_item_row(r) for r in repo.list_page(page)])

    async def get_item(self, page: str, key: str) -> Optional[Row]:
        def _get(repo: ContentRepository) -> Optional[Row]:
            record = repo.get_item(page, key)
            return _item_row(record) if record is not None else None

        return await self._call(_get)

    async def insert_first(
        self, *, page: str, key: str, type: str, value: Any, updated_by: str, updated_at: datetime
    ) -> bool:
        return await self._call(
            lambda repo: repo.insert_first_version(
                page=page,
                key=key,
                type=type,
                value=value,
                updated_by=updated_by,
                updated_at=updated_at,
            )
        )

    async def update_if_version(
        self,
        *,
        page: str,
        key: str,
        observed_version: int,
        type: str,
        value: Any,
        updated_by: str,
        updated_at: datetime,
    ) -> bool:
        return await self._call(
            lambda repo: repo.update_if_version(
                page=page,
                key=key,
                observed_version=observed_version,
                type=type,
                value=value,
                updated_by=updated_by,
                updated_at=updated_at,
            )
        )

    async def list_history(self, page: str, key: str, limit: int) -> List[Row]:
        return await self._call(
            lambda repo: [_version_row(r) for r in repo.list_history(page, key, limit)]
        )

    async def get_version(self, page: str, key: str, version: int) -> Optional[Row]:
        def _get(repo: ContentRepository) -> Optional[Row]:
            record = repo.get_version(page, key, version)
            return _version_row(record) if record is not None else None

        return await self._call(_get)


__all__ = ["ContentBackend", "InMemoryContentBackend", "SqlContentBackend"]
