# driveschool/services/working_hours_service.py
"""
Instructor working hours and the availability derived from them.

Weekly hours change rarely and are cached with the long TTL; per-date
availability is cached with the short TTL. Saving hours drops the hours key
and every cached availability date of that instructor.
"""

from __future__ import annotations

import asyncio
from datetime import date, datetime, time, timedelta
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from ..cache.layer import CacheLayer
from ..core.config import settings
from ..core.constants import DAYS_OF_WEEK, INSTRUCTOR_ID_PATTERN
from ..core.exceptions import StorageUnavailableException, ValidationException
from ..repositories.working_hours_repository import WorkingHoursRepository
from ..schemas.working_hours import WorkingHoursDay, WorkingHoursUpdate

logger = logging.getLogger(__name__)

T = TypeVar("T")

_INSTRUCTOR_ID_RE = re.compile(INSTRUCTOR_ID_PATTERN)


def compute_slots(day: WorkingHoursDay, slot_minutes: int) -> List[time]:
    """Whole slots that fit inside the day's window."""
    if slot_minutes <= 0:
        raise ValueError("slot_minutes must be positive")
    anchor = date(2000, 1, 1)
    cursor = datetime.combine(anchor, day.start_time)
    end = datetime.combine(anchor, day.end_time)
    step = timedelta(minutes=slot_minutes)
    slots: List[time] = []
    while cursor + step <= end:
        slots.append(cursor.time())
        cursor += step
    return slots


class WorkingHoursService:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        cache: CacheLayer,
        *,
        slot_minutes: Optional[int] = None,
    ) -> None:
        self.session_factory = session_factory
        self.cache = cache
        self.slot_minutes = slot_minutes or settings.availability_slot_minutes

    def _run(self, fn: Callable[[WorkingHoursRepository], T]) -> T:
        db = self.session_factory()
        try:
            repo = WorkingHoursRepository(db)
            with repo.transaction():
                return fn(repo)
        finally:
            db.close()

    async def _call(self, operation: str, fn: Callable[[WorkingHoursRepository], T]) -> T:
        try:
            return await asyncio.to_thread(self._run, fn)
        except (OperationalError, PoolTimeoutError, OSError) as exc:
            logger.warning(
                "Working hours backend unavailable",
                extra={"operation": operation, "error": str(exc)},
            )
            raise StorageUnavailableException(details={"operation": operation}) from exc

    @staticmethod
    def _validate_instructor_id(instructor_id: str) -> None:
        if not _INSTRUCTOR_ID_RE.fullmatch(instructor_id or ""):
            raise ValidationException("Invalid instructor id", details={"field": "instructor_id"})

    async def get_working_hours(self, instructor_id: str) -> List[WorkingHoursDay]:
        self._validate_instructor_id(instructor_id)

        async def fetch() -> List[Dict[str, Any]]:
            rows = await self._call(
                "get_working_hours",
                lambda repo: [
                    WorkingHoursDay(
                        day_of_week=row.day_of_week,
                        start_time=row.start_time,
                        end_time=row.end_time,
                    ).model_dump(mode="json")
                    for row in repo.get_for_instructor(instructor_id)
                ],
            )
            return rows

        # Empty schedules are cached too so unknown instructors don't hit the backend
        cached = await self.cache.get_or_set(
            self.cache.keys.working_hours(instructor_id), fetch, tier="long"
        )
        return [WorkingHoursDay.model_validate(day) for day in cached]

    async def set_working_hours(
        self, instructor_id: str, update: WorkingHoursUpdate
    ) -> List[WorkingHoursDay]:
        self._validate_instructor_id(instructor_id)
        hours: Dict[int, Tuple[time, time]] = {
            day.day_of_week: (day.start_time, day.end_time) for day in update.days
        }
        await self._call(
            "set_working_hours", lambda repo: repo.replace_for_instructor(instructor_id, hours)
        )
        # Invalidate after commit
        await self.cache.delete(self.cache.keys.working_hours(instructor_id))
        removed = await self.cache.delete_pattern(self.cache.keys.availability_pattern(instructor_id))
        logger.info(
            "Working hours updated",
            extra={
                "instructor_id": instructor_id,
                "days": [DAYS_OF_WEEK[day] for day in sorted(hours)],
                "availability_keys_invalidated": removed,
            },
        )
        return sorted(update.days, key=lambda day: day.day_of_week)

    async def get_availability(self, instructor_id: str, on_date: date) -> List[time]:
        self._validate_instructor_id(instructor_id)

        async def fetch() -> List[str]:
            hours = await self.get_working_hours(instructor_id)
            for day in hours:
                if day.day_of_week == on_date.weekday():
                    return [slot.isoformat() for slot in compute_slots(day, self.slot_minutes)]
            return []

        cached = await self.cache.get_or_set(
            self.cache.keys.availability(instructor_id, on_date), fetch, tier="short"
        )
        return [time.fromisoformat(slot) for slot in cached]


__all__ = ["WorkingHoursService", "compute_slots"]
