from datetime import time
from typing import Dict, List, Tuple

from sqlalchemy.orm import Session

from ..models.working_hours import InstructorWorkingHours
from .base_repository import BaseRepository


class WorkingHoursRepository(BaseRepository[InstructorWorkingHours]):
    def __init__(self, db: Session):
        super().__init__(db, InstructorWorkingHours)

    def get_for_instructor(self, instructor_id: str) -> List[InstructorWorkingHours]:
        rows = self.find_by(instructor_id=instructor_id)
        return sorted(rows, key=lambda row: row.day_of_week)

    def replace_for_instructor(
        self, instructor_id: str, hours: Dict[int, Tuple[time, time]]
    ) -> List[InstructorWorkingHours]:
        """Replace the whole weekly schedule. Does not commit."""
        self.db.query(InstructorWorkingHours).filter(
            InstructorWorkingHours.instructor_id == instructor_id
        ).delete(synchronize_session=False)
        created = [
            self.create(
                instructor_id=instructor_id,
                day_of_week=day,
                start_time=start,
                end_time=end,
            )
            for day, (start, end) in sorted(hours.items())
        ]
        return created


__all__ = ["WorkingHoursRepository"]
