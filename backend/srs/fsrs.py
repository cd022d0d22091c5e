"""FSRS (Free Spaced Repetition Scheduler) algorithm implementation.

An implementation of FSRS-4.5 (17 weights) behind the same contract as the
ease-factor scheduler.
Reference: https://github.com/open-spaced-repetition/fsrs4anki

Key concepts:
- Stability (S): The number of days after which retention drops to 90%.
- Difficulty (D): A value between 1 and 10 representing inherent item difficulty.
- Retrievability (R): The probability of recall at a given time since last review.
- Rating: 1=Again, 2=Hard, 3=Good, 4=Easy

The next review interval is the time it takes R to decay to the configured
request retention. Short-term learning steps (minutes) are walked the same
way as in the ease-factor scheduler when ``enable_short_term`` is set.
"""

import math
import random
from dataclasses import replace
from datetime import datetime, timedelta
from typing import assert_never

from backend.srs.scheduling_config import SchedulingConfig
from backend.srs.sm2 import first_step, hard_step, next_step
from backend.srs.state import CardState, Rating, ReviewState, clamp_ease, round_half_up

DECAY = -0.5
FACTOR = 19 / 81  # makes R(S, S) == 0.9

# Bounds
MIN_DIFFICULTY = 1.0
MAX_DIFFICULTY = 10.0
MIN_STABILITY = 0.1  # Minimum 0.1 days (~2.4 hours)

# (start, end, factor): fuzz window grows by factor per day of interval in each range
FUZZ_RANGES: tuple[tuple[float, float, float], ...] = (
    (2.5, 7.0, 0.15),
    (7.0, 20.0, 0.1),
    (20.0, math.inf, 0.05),
)
MIN_FUZZ_INTERVAL = 2.5


class FSRS:
    """Free Spaced Repetition Scheduler parameterized by a SchedulingConfig."""

    def __init__(self, config: SchedulingConfig) -> None:
        self.config = config
        self.w = config.weights
        self.target_retention = config.request_retention
        self.maximum_interval = config.maximum_interval

    def review(self, record: ReviewState, rating: Rating, now: datetime) -> ReviewState:
        """Apply a review rating and return the updated state."""
        rng = random.Random(f"{now.isoformat()}_{record.repetitions}_{record.difficulty * record.stability}")
        elapsed_days = 0.0
        if record.last_reviewed_at is not None:
            elapsed_days = max(0.0, (now - record.last_reviewed_at).total_seconds() / 86400)

        if record.state is CardState.NEW:
            updated = self._first_review(record, rating, rng)
        elif self.config.enable_short_term and record.state in (CardState.LEARNING, CardState.RELEARNING):
            updated = self._step_review(record, rating, rng)
        else:
            updated = self._long_term_review(record, rating, elapsed_days, rng)

        return replace(
            updated,
            ease_factor=clamp_ease(updated.ease_factor),
            last_reviewed_at=now,
            next_review_at=now + timedelta(days=updated.interval_days),
        )

    # --- Phases ---

    def _first_review(self, record: ReviewState, rating: Rating, rng: random.Random) -> ReviewState:
        stability = self._initial_stability(rating)
        difficulty = self._initial_difficulty(rating)
        seeded = replace(record, stability=stability, difficulty=difficulty)

        if self.config.enable_short_term:
            return self._step_review(seeded, rating, rng)

        # No steps: every rating gets a day-scale interval from its own initial stability.
        again, hard, good, easy = (
            self._next_interval(self._initial_stability(r)) for r in Rating
        )
        again = min(again, hard)
        hard = min(hard, good)
        good = max(good, hard + 1)
        easy = max(easy, good + 1)
        interval = {Rating.AGAIN: again, Rating.HARD: hard, Rating.GOOD: good, Rating.EASY: easy}[rating]
        return replace(
            seeded,
            state=CardState.REVIEW,
            interval_days=self._cap(self._fuzz(interval, rng)),
            repetitions=0 if rating == Rating.AGAIN else 1,
        )

    def _step_review(self, record: ReviewState, rating: Rating, rng: random.Random) -> ReviewState:
        """Walk minute-scale learning or relearning steps; graduate with a model interval."""
        relearning = record.state is CardState.RELEARNING
        steps = self.config.relearning_steps if relearning else self.config.learning_steps
        phase = CardState.RELEARNING if relearning else CardState.LEARNING

        stability, difficulty = record.stability, record.difficulty
        if record.state is not CardState.NEW:
            if stability <= 0 or difficulty <= 0:
                stability, difficulty = self._initial_stability(rating), self._initial_difficulty(rating)
            else:
                difficulty = self._next_difficulty(difficulty, rating)
        record = replace(record, stability=stability, difficulty=difficulty)

        match rating:
            case Rating.AGAIN:
                return replace(record, state=phase, interval_days=first_step(steps), repetitions=0)
            case Rating.HARD:
                return replace(record, state=phase, interval_days=hard_step(steps))
            case Rating.GOOD:
                current = first_step(steps) if record.state is CardState.NEW else record.interval_days
                step = next_step(steps, current)
                if step is not None:
                    return replace(record, state=phase, interval_days=step)
                return self._graduate(record, self._fuzz(self._next_interval(stability), rng), relearning)
            case Rating.EASY:
                good = self._next_interval(stability)
                # Easy stays above the unfuzzed Good interval.
                return self._graduate(record, max(self._fuzz(good + 1, rng), good + 1), relearning)
            case _:
                assert_never(rating)

    def _long_term_review(
        self,
        record: ReviewState,
        rating: Rating,
        elapsed_days: float,
        rng: random.Random,
    ) -> ReviewState:
        stability, difficulty = record.stability, record.difficulty
        if stability <= 0 or difficulty <= 0:
            # State written by the ease-factor scheduler: seed from its interval.
            stability = max(record.interval_days, MIN_STABILITY)
            difficulty = self._initial_difficulty(Rating.GOOD)

        retrievability = self._retrievability(elapsed_days, stability)
        new_difficulty = self._next_difficulty(difficulty, rating)

        if rating == Rating.AGAIN:
            new_stability = max(MIN_STABILITY, self._stability_after_fail(stability, difficulty, retrievability))
            lapsed = replace(
                record,
                stability=new_stability,
                difficulty=new_difficulty,
                repetitions=0,
                lapses=record.lapses + 1,
            )
            if self.config.enable_short_term:
                return replace(
                    lapsed,
                    state=CardState.RELEARNING,
                    interval_days=first_step(self.config.relearning_steps),
                )
            return replace(
                lapsed,
                state=CardState.REVIEW,
                interval_days=self._cap(self._next_interval(new_stability)),
            )

        hard_s, good_s, easy_s = (
            max(MIN_STABILITY, self._stability_after_success(stability, difficulty, retrievability, r))
            for r in (Rating.HARD, Rating.GOOD, Rating.EASY)
        )
        hard = self._fuzz(self._next_interval(hard_s), rng)
        good = self._fuzz(self._next_interval(good_s), rng)
        easy = self._fuzz(self._next_interval(easy_s), rng)
        hard = min(hard, good)
        good = max(good, hard + 1)
        easy = max(easy, good + 1)

        chosen = {Rating.HARD: (hard, hard_s), Rating.GOOD: (good, good_s), Rating.EASY: (easy, easy_s)}
        interval, new_stability = chosen[rating]
        return replace(
            record,
            state=CardState.REVIEW,
            stability=new_stability,
            difficulty=new_difficulty,
            interval_days=self._cap(interval),
            repetitions=record.repetitions + 1,
        )

    def _graduate(self, record: ReviewState, interval: float, relearning: bool) -> ReviewState:
        return replace(
            record,
            state=CardState.REVIEW,
            interval_days=self._cap(interval),
            repetitions=record.repetitions if relearning else 1,
        )

    # --- Model ---

    def _initial_stability(self, rating: Rating) -> float:
        return max(self.w[rating - 1], MIN_STABILITY)  # w0..w3

    def _initial_difficulty(self, rating: Rating) -> float:
        """D0 = w4 - (rating - 3) * w5"""
        return _clamp_difficulty(self.w[4] - (rating - 3) * self.w[5])

    def _next_difficulty(self, current_d: float, rating: Rating) -> float:
        """Shift difficulty by rating, then revert toward the Good starting difficulty."""
        shifted = current_d - self.w[6] * (rating - 3)
        return _clamp_difficulty(self.w[7] * self.w[4] + (1 - self.w[7]) * shifted)

    def _retrievability(self, elapsed_days: float, stability: float) -> float:
        """Probability of recall after elapsed_days.

        Uses the power forgetting curve: R = (1 + FACTOR * t / S) ^ DECAY
        """
        if stability <= 0 or elapsed_days <= 0:
            return 1.0
        return (1 + FACTOR * elapsed_days / stability) ** DECAY

    def _stability_to_interval(self, stability: float) -> float:
        """Days until retrievability decays to the target retention.

        Solving target_retention = (1 + FACTOR * t / S) ^ DECAY for t.
        """
        return stability / FACTOR * (self.target_retention ** (1 / DECAY) - 1)

    def _next_interval(self, stability: float) -> float:
        interval = round_half_up(self._stability_to_interval(stability))
        return float(min(max(1, interval), self.maximum_interval))

    def _stability_after_success(
        self,
        stability: float,
        difficulty: float,
        retrievability: float,
        rating: Rating,
    ) -> float:
        """Calculate new stability after a successful review (rating >= 2).

        S' = S * (1 + e^w8 * (11 - D) * S^-w9 * (e^(w10 * (1 - R)) - 1) * hard * easy)
        """
        hard_penalty = self.w[15] if rating == Rating.HARD else 1.0
        easy_bonus = self.w[16] if rating == Rating.EASY else 1.0
        factor = (
            math.exp(self.w[8])
            * (11 - difficulty)
            * stability ** (-self.w[9])
            * (math.exp(self.w[10] * (1 - retrievability)) - 1)
            * hard_penalty
            * easy_bonus
        )
        return stability * (1 + factor)

    def _stability_after_fail(self, stability: float, difficulty: float, retrievability: float) -> float:
        """Calculate new stability after a lapse (rating = 1).

        S' = w11 * D^-w12 * ((S + 1)^w13 - 1) * e^(w14 * (1 - R))
        """
        new_s = (
            self.w[11]
            * difficulty ** (-self.w[12])
            * ((stability + 1) ** self.w[13] - 1)
            * math.exp(self.w[14] * (1 - retrievability))
        )
        # Forgetting never increases stability
        return min(new_s, stability)

    def _fuzz(self, interval: float, rng: random.Random) -> float:
        """Jitter a day interval within a window that widens with its length."""
        if not self.config.enable_fuzz or interval < MIN_FUZZ_INTERVAL:
            return interval
        delta = 1.0
        for start, end, factor in FUZZ_RANGES:
            delta += factor * max(min(interval, end) - start, 0.0)
        max_ivl = min(round_half_up(interval + delta), self.maximum_interval)
        min_ivl = min(max(2, round_half_up(interval - delta)), max_ivl)
        return float(math.floor(rng.random() * (max_ivl - min_ivl + 1) + min_ivl))

    def _cap(self, interval: float) -> float:
        return min(interval, float(self.maximum_interval))


class MemoryModelScheduler:
    """State-machine adapter: builds an FSRS instance from the config per call."""

    def apply(
        self,
        record: ReviewState,
        rating: Rating,
        now: datetime,
        config: SchedulingConfig,
    ) -> ReviewState:
        return FSRS(config).review(record, rating, now)


def _clamp_difficulty(d: float) -> float:
    return max(MIN_DIFFICULTY, min(MAX_DIFFICULTY, d))
