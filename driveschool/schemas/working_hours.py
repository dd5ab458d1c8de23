"""Pydantic schemas for instructor working hours and derived availability."""

from datetime import date, time
from typing import List

from pydantic import Field, model_validator

from .base import StandardizedModel, StrictModel


class WorkingHoursDay(StrictModel):
    day_of_week: int = Field(..., ge=0, le=6, description="0=Monday .. 6=Sunday")
    start_time: time
    end_time: time

    @model_validator(mode="after")
    def _start_before_end(self) -> "WorkingHoursDay":
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class WorkingHoursUpdate(StrictModel):
    days: List[WorkingHoursDay] = Field(default_factory=list, max_length=7)

    @model_validator(mode="after")
    def _unique_days(self) -> "WorkingHoursUpdate":
        seen = [day.day_of_week for day in self.days]
        if len(seen) != len(set(seen)):
            raise ValueError("Each day_of_week may appear at most once")
        return self


class WorkingHoursResponse(StandardizedModel):
    instructor_id: str
    days: List[WorkingHoursDay]


class AvailabilityResponse(StandardizedModel):
    instructor_id: str
    date: date
    slot_minutes: int
    slots: List[time]


__all__ = ["AvailabilityResponse", "WorkingHoursDay", "WorkingHoursResponse", "WorkingHoursUpdate"]
