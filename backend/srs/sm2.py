"""Ease-factor scheduling (Anki-style SM-2 with learning steps).

New and lapsed items walk through short minute-scale steps before graduating
to day-scale review intervals. Review intervals grow by the ease factor, and
the ease factor itself moves with Hard/Easy answers and lapses.

Transitions, per rating (Again / Hard / Good / Easy):
- New, Learning: first step / mean of the steps / next step or graduate /
  graduate with the easy interval.
- Review: relearn (ease -0.2) / interval x1.2 (ease -0.15) /
  interval x ease / interval x ease x1.3 (ease +0.15).
- Relearning: first relearning step / mean of the relearning steps /
  next relearning step or graduate / graduate with the easy interval.
"""

from collections.abc import Sequence
from dataclasses import replace
from datetime import datetime, timedelta
from typing import assert_never

from backend.srs.scheduling_config import SchedulingConfig
from backend.srs.state import (
    CardState,
    Rating,
    ReviewState,
    clamp_ease,
    minutes_to_days,
    round_half_up,
)

# Tolerance when comparing fractional-day step lengths
EPSILON = 1e-4

LAPSE_EASE_PENALTY = 0.2
HARD_EASE_PENALTY = 0.15
EASY_EASE_BONUS = 0.15
HARD_INTERVAL_MULTIPLIER = 1.2
EASY_BONUS = 1.3


def first_step(steps: Sequence[int]) -> float:
    """Length of the first step, in days."""
    return minutes_to_days(steps[0])


def hard_step(steps: Sequence[int]) -> float:
    """Mean of the step list rounded to whole minutes, in days."""
    return minutes_to_days(round_half_up(sum(steps) / len(steps)))


def next_step(steps: Sequence[int], current_days: float) -> float | None:
    """The first step strictly longer than the current interval, or None if all are passed."""
    for step in steps:
        days = minutes_to_days(step)
        if days > current_days + EPSILON:
            return days
    return None


class EaseFactorScheduler:
    """Applies one rating to a ReviewState using ease-factor arithmetic."""

    def apply(
        self,
        record: ReviewState,
        rating: Rating,
        now: datetime,
        config: SchedulingConfig,
    ) -> ReviewState:
        match record.state:
            case CardState.NEW | CardState.LEARNING:
                updated = self._learning(record, rating, config)
            case CardState.REVIEW:
                updated = self._review(record, rating, config)
            case CardState.RELEARNING:
                updated = self._relearning(record, rating, config)
            case _:
                assert_never(record.state)

        interval = min(updated.interval_days, float(config.maximum_interval))
        return replace(
            updated,
            interval_days=interval,
            ease_factor=clamp_ease(updated.ease_factor),
            last_reviewed_at=now,
            next_review_at=now + timedelta(days=interval),
        )

    def _learning(self, record: ReviewState, rating: Rating, config: SchedulingConfig) -> ReviewState:
        steps = config.learning_steps
        match rating:
            case Rating.AGAIN:
                return replace(record, state=CardState.LEARNING, interval_days=first_step(steps), repetitions=0)
            case Rating.HARD:
                return replace(record, state=CardState.LEARNING, interval_days=hard_step(steps))
            case Rating.GOOD:
                # A new card counts as sitting on the first step.
                current = first_step(steps) if record.state is CardState.NEW else record.interval_days
                step = next_step(steps, current)
                if step is not None:
                    return replace(record, state=CardState.LEARNING, interval_days=step)
                return self._graduate(record, config.graduating_interval)
            case Rating.EASY:
                return self._graduate(record, config.easy_interval)
            case _:
                assert_never(rating)

    def _review(self, record: ReviewState, rating: Rating, config: SchedulingConfig) -> ReviewState:
        interval = record.interval_days
        ease = record.ease_factor
        match rating:
            case Rating.AGAIN:
                return replace(
                    record,
                    state=CardState.RELEARNING,
                    interval_days=first_step(config.relearning_steps),
                    ease_factor=ease - LAPSE_EASE_PENALTY,
                    repetitions=0,
                    lapses=record.lapses + 1,
                )
            case Rating.HARD:
                return replace(
                    record,
                    interval_days=float(max(1, round_half_up(interval * HARD_INTERVAL_MULTIPLIER))),
                    ease_factor=ease - HARD_EASE_PENALTY,
                    repetitions=record.repetitions + 1,
                )
            case Rating.GOOD:
                return replace(
                    record,
                    interval_days=float(max(1, round_half_up(interval * ease))),
                    repetitions=record.repetitions + 1,
                )
            case Rating.EASY:
                return replace(
                    record,
                    interval_days=float(max(1, round_half_up(interval * ease * EASY_BONUS))),
                    ease_factor=ease + EASY_EASE_BONUS,
                    repetitions=record.repetitions + 1,
                )
            case _:
                assert_never(rating)

    def _relearning(self, record: ReviewState, rating: Rating, config: SchedulingConfig) -> ReviewState:
        steps = config.relearning_steps
        match rating:
            case Rating.AGAIN:
                return replace(record, interval_days=first_step(steps))
            case Rating.HARD:
                return replace(record, interval_days=hard_step(steps))
            case Rating.GOOD:
                step = next_step(steps, record.interval_days)
                if step is not None:
                    return replace(record, interval_days=step)
                return replace(record, state=CardState.REVIEW, interval_days=float(config.graduating_interval))
            case Rating.EASY:
                return replace(record, state=CardState.REVIEW, interval_days=float(config.easy_interval))
            case _:
                assert_never(rating)

    def _graduate(self, record: ReviewState, interval_days: int) -> ReviewState:
        return replace(record, state=CardState.REVIEW, interval_days=float(interval_days), repetitions=1)
