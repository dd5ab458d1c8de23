"""SQLAlchemy models owned by this service."""

from .content import ContentItemRecord, ContentVersionRecord
from .working_hours import InstructorWorkingHours

__all__ = ["ContentItemRecord", "ContentVersionRecord", "InstructorWorkingHours"]
