# driveschool/repositories/content_repository.py
"""
Content Repository

Data access for versioned site content. The two write paths are the only
way a version number changes:

- ``insert_first_version``: guarded by the unique (page, key) constraint
- ``update_if_version``: ``UPDATE ... WHERE version = :observed``

Both return False when another writer won the race; neither commits.
"""

from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.content import ContentItemRecord, ContentVersionRecord
from .base_repository import BaseRepository


class ContentRepository(BaseRepository[ContentItemRecord]):
    def __init__(self, db: Session):
        super().__init__(db, ContentItemRecord)

    def list_page(self, page: str) -> List[ContentItemRecord]:
        try:
            return (
                self.db.query(ContentItemRecord)
                .filter(ContentItemRecord.page == page)
                .order_by(ContentItemRecord.key)
                .all()
            )
        except OperationalError:
            raise
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading content page {page}: {str(e)}")
            raise RepositoryException(f"Failed to load content page: {str(e)}")

    def get_item(self, page: str, key: str) -> Optional[ContentItemRecord]:
        return self.find_one_by(page=page, key=key)

    def insert_first_version(
        self,
        *,
        page: str,
        key: str,
        type: str,
        value: Any,
        updated_by: str,
        updated_at: datetime,
    ) -> bool:
        """Insert version 1 and its history row. False if the item already exists."""
        try:
            self.db.add(
                ContentItemRecord(
                    page=page,
                    key=key,
                    type=type,
                    value=value,
                    version=1,
                    updated_by=updated_by,
                    updated_at=updated_at,
                )
            )
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            self.logger.info("Lost insert race for content %s/%s", page, key)
            return False
        self._append_history(page, key, 1, type, value, updated_by, updated_at)
        return True

    def update_if_version(
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
        """Bump to observed_version + 1 only if the row still holds observed_version."""
        new_version = observed_version + 1
        result = self.db.execute(
            update(ContentItemRecord)
            .where(
                ContentItemRecord.page == page,
                ContentItemRecord.key == key,
                ContentItemRecord.version == observed_version,
            )
            .values(
                type=type,
                value=value,
                version=new_version,
                updated_by=updated_by,
                updated_at=updated_at,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.logger.info(
                "Lost version guard for content %s/%s at version %s", page, key, observed_version
            )
            return False
        self._append_history(page, key, new_version, type, value, updated_by, updated_at)
        return True

    def _append_history(
        self,
        page: str,
        key: str,
        version: int,
        type: str,
        value: Any,
        updated_by: str,
        created_at: datetime,
    ) -> None:
        self.db.add(
            ContentVersionRecord(
                page=page,
                key=key,
                version=version,
                type=type,
                value=value,
                updated_by=updated_by,
                created_at=created_at,
            )
        )
        self.db.flush()

    def list_history(self, page: str, key: str, limit: int = 10) -> List[ContentVersionRecord]:
        """Most recent versions first."""
        try:
            return (
                self.db.query(ContentVersionRecord)
                .filter(ContentVersionRecord.page == page, ContentVersionRecord.key == key)
                .order_by(ContentVersionRecord.version.desc())
                .limit(limit)
                .all()
            )
        except OperationalError:
            raise
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading history for {page}/{key}: {str(e)}")
            raise RepositoryException(f"Failed to load content history: {str(e)}")

    def get_version(self, page: str, key: str, version: int) -> Optional[ContentVersionRecord]:
        try:
            return (
                self.db.query(ContentVersionRecord)
                .filter_by(page=page, key=key, version=version)
                .first()
            )
        except OperationalError:
            raise
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading version {version} of {page}/{key}: {str(e)}")
            raise RepositoryException(f"Failed to load content version: {str(e)}")


__all__ = ["ContentRepository"]
