from __future__ import annotations

from datetime import datetime, time, timezone

from sqlalchemy import DateTime, Integer, String, Time
from sqlalchemy.orm import Mapped, mapped_column

from ..database import Base


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class InstructorWorkingHours(Base):
    __tablename__ = "instructor_working_hours"

    instructor_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    # 0=Monday .. 6=Sunday, matching date.weekday()
    day_of_week: Mapped[int] = mapped_column(Integer, primary_key=True)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now_utc, onupdate=_now_utc
    )

    def __repr__(self) -> str:
        return (
            f"<InstructorWorkingHours(instructor={self.instructor_id}, day={self.day_of_week}, "
            f"{self.start_time}-{self.end_time})>"
        )
