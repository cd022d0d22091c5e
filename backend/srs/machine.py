"""Review state machine: one entry point over both scheduling algorithms.

The algorithm is chosen by ``SchedulingConfig.algorithm``, never by the
caller, so every code path that records a review goes through ``apply``.
"""

from datetime import datetime
from typing import Protocol

from backend.srs.fsrs import MemoryModelScheduler
from backend.srs.scheduling_config import SchedulerKind, SchedulingConfig
from backend.srs.sm2 import EaseFactorScheduler
from backend.srs.state import Rating, ReviewState, parse_rating


class Scheduler(Protocol):
    def apply(
        self,
        record: ReviewState,
        rating: Rating,
        now: datetime,
        config: SchedulingConfig,
    ) -> ReviewState: ...


SCHEDULERS: dict[SchedulerKind, Scheduler] = {
    SchedulerKind.SM2: EaseFactorScheduler(),
    SchedulerKind.FSRS: MemoryModelScheduler(),
}


class ReviewStateMachine:
    """Pure transition function ``(record, rating, now, config) -> record``."""

    def __init__(self, schedulers: dict[SchedulerKind, Scheduler] | None = None) -> None:
        self.schedulers = schedulers or SCHEDULERS

    def apply(
        self,
        record: ReviewState,
        rating: Rating | int | str,
        now: datetime,
        config: SchedulingConfig,
    ) -> ReviewState:
        """Return the state after applying ``rating`` at ``now``.

        Raises InvalidRating for anything that is not Again/Hard/Good/Easy;
        the input record is never modified.
        """
        parsed = parse_rating(rating)
        return self.schedulers[config.algorithm].apply(record, parsed, now, config)


state_machine = ReviewStateMachine()
