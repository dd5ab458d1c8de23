"""Site content models: current item per (page, key) plus an append-only history."""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ..core.ulid_helper import generate_ulid
from ..database import Base


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class ContentItemRecord(Base):
    """Current value of one editable piece of page content."""

    __tablename__ = "content_items"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    page: Mapped[str] = mapped_column(String(128), nullable=False)
    key: Mapped[str] = mapped_column(String(128), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    value: Mapped[Any] = mapped_column(JSON, nullable=False)
    # Only ever written through a version-guarded UPDATE
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_by: Mapped[str] = mapped_column(String(64), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now_utc
    )

    __table_args__ = (
        UniqueConstraint("page", "key", name="uq_content_items_page_key"),
        Index("ix_content_items_page", "page"),
    )

    def __repr__(self) -> str:
        return f"<ContentItemRecord(page={self.page}, key={self.key}, version={self.version})>"


class ContentVersionRecord(Base):
    """One row per committed write."""

    __tablename__ = "content_versions"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    page: Mapped[str] = mapped_column(String(128), nullable=False)
    key: Mapped[str] = mapped_column(String(128), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    value: Mapped[Any] = mapped_column(JSON, nullable=False)
    updated_by: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now_utc
    )

    __table_args__ = (
        UniqueConstraint("page", "key", "version", name="uq_content_versions_item_version"),
    )

    def __repr__(self) -> str:
        return f"<ContentVersionRecord(page={self.page}, key={self.key}, version={self.version})>"
