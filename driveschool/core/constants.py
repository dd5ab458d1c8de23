"""Application-wide constants for the driving-school backend."""

from __future__ import annotations

BRAND_NAME = "DriveSchool"
API_TITLE = f"{BRAND_NAME} API"
API_VERSION = "1.0.0"
API_DESCRIPTION = "Lesson scheduling, site content and instructor availability for the driving school."
API_PREFIX = "/api/v1"

# Rate-limit bucket used for callers without a resolved identity
ANONYMOUS_CALLER = "anonymous"

# Page and content keys double as cache-key parts, so no glob characters
CONTENT_SLUG_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$"
INSTRUCTOR_ID_PATTERN = r"^[A-Za-z0-9_-]{1,64}$"

# Day of week mapping (date.weekday() order)
DAYS_OF_WEEK = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

# Query limits
MAX_HISTORY_LIMIT = 100
