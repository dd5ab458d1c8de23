from .base_repository import BaseRepository
from .content_repository import ContentRepository
from .working_hours_repository import WorkingHoursRepository

__all__ = ["BaseRepository", "ContentRepository", "WorkingHoursRepository"]
