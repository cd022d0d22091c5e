"""Scheduling presets and their scope assignments."""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.models.base import Base, TimestampMixin


class SchedulingPreset(Base, TimestampMixin):
    """A named, reusable bundle of scheduling parameters owned by a user."""

    __tablename__ = "scheduling_presets"
    __table_args__ = (
        # At most one default preset per owner.
        Index(
            "uq_scheduling_presets_default_per_user",
            "user_id",
            unique=True,
            sqlite_where=text("is_default = 1"),
            postgresql_where=text("is_default"),
        ),
        Index("ix_scheduling_presets_global", "is_global"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_global: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    algorithm: Mapped[str] = mapped_column(String(10), nullable=False, default="sm2")  # sm2, fsrs
    weights: Mapped[list[float]] = mapped_column(JSON, nullable=False)
    request_retention: Mapped[float] = mapped_column(Float, nullable=False, default=0.85)
    maximum_interval: Mapped[int] = mapped_column(Integer, nullable=False, default=36500)
    enable_fuzz: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    enable_short_term: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    learning_steps: Mapped[list[int]] = mapped_column(JSON, nullable=False)  # minutes
    relearning_steps: Mapped[list[int]] = mapped_column(JSON, nullable=False)  # minutes
    graduating_interval: Mapped[int] = mapped_column(Integer, nullable=False, default=1)  # days
    easy_interval: Mapped[int] = mapped_column(Integer, nullable=False, default=4)  # days

    optimization_source: Mapped[str | None] = mapped_column(
        String(20), nullable=True
    )  # manual, optimizer, default
    last_optimized_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    assignments: Mapped[list["PresetAssignment"]] = relationship(back_populates="preset")


class PresetAssignment(Base, TimestampMixin):
    """Attaches a preset to a topic, subject or space."""

    __tablename__ = "preset_assignments"
    __table_args__ = (UniqueConstraint("scope_type", "scope_id", name="uq_preset_assignments_scope"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    preset_id: Mapped[int] = mapped_column(ForeignKey("scheduling_presets.id"), nullable=False)
    scope_type: Mapped[str] = mapped_column(String(20), nullable=False)  # topic, subject, space
    scope_id: Mapped[str] = mapped_column(String(64), nullable=False)

    preset: Mapped[SchedulingPreset] = relationship(back_populates="assignments")
