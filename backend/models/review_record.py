"""Scheduling state for one user-item pair."""

from datetime import datetime

from sqlalchemy import DateTime, Float, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.config import utcnow
from backend.models.base import Base, TimestampMixin


class ReviewRecord(Base, TimestampMixin):
    """Review state of a question for a user.

    ``version`` backs SQLAlchemy's optimistic version counter: every UPDATE is
    issued with ``WHERE version = <loaded version>`` and fails if another
    writer got there first.
    """

    __tablename__ = "review_records"
    __table_args__ = (UniqueConstraint("user_id", "item_id", name="uq_review_records_user_item"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    item_id: Mapped[str] = mapped_column(String(64), nullable=False)
    state: Mapped[str] = mapped_column(String(20), nullable=False, default="new")
    ease_factor: Mapped[float] = mapped_column(Float, nullable=False, default=2.5)
    interval_days: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    repetitions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lapses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    stability: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    difficulty: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    last_reviewed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    next_review_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, index=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    review_logs: Mapped[list["ReviewLog"]] = relationship(back_populates="record")  # type: ignore[name-defined] # noqa: F821

    __mapper_args__ = {"version_id_col": version}
