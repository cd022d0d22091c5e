"""SQLAlchemy ORM models for the Exam SRS database."""

from backend.models.base import Base
from backend.models.preset import PresetAssignment, SchedulingPreset
from backend.models.review_log import ReviewLog
from backend.models.review_record import ReviewRecord

__all__ = ["Base", "PresetAssignment", "ReviewLog", "ReviewRecord", "SchedulingPreset"]
