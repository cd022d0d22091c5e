"""Tests for the review state machine in ease-factor mode."""

import random
from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from backend.srs.errors import InvalidRating
from backend.srs.machine import ReviewStateMachine
from backend.srs.scheduling_config import SchedulingConfig
from backend.srs.state import CardState, Rating, ReviewState, parse_rating

T0 = datetime(2025, 3, 1, 9, 0, 0)
MINUTE = 1 / 1440


def _review_state(interval: float = 10.0, ease: float = 2.5, reps: int = 3) -> ReviewState:
    return ReviewState(
        state=CardState.REVIEW,
        ease_factor=ease,
        interval_days=interval,
        repetitions=reps,
        last_reviewed_at=T0 - timedelta(days=interval),
        next_review_at=T0,
    )


class TestLearningPhase:
    def setup_method(self) -> None:
        self.machine = ReviewStateMachine()
        self.config = SchedulingConfig()

    def test_new_good_then_good_graduates(self) -> None:
        first = self.machine.apply(ReviewState.new(), Rating.GOOD, T0, self.config)
        assert first.state == CardState.LEARNING
        assert first.interval_days == pytest.approx(10 * MINUTE)
        assert abs(first.next_review_at - (T0 + timedelta(minutes=10))) < timedelta(seconds=1)

        t1 = T0 + timedelta(minutes=2)
        second = self.machine.apply(first, Rating.GOOD, t1, self.config)
        assert second.state == CardState.REVIEW
        assert second.interval_days == 1.0
        assert second.repetitions == 1
        assert second.last_reviewed_at == t1
        assert second.next_review_at == t1 + timedelta(days=1)

    def test_new_again(self) -> None:
        result = self.machine.apply(ReviewState.new(), Rating.AGAIN, T0, self.config)
        assert result.state == CardState.LEARNING
        assert result.interval_days == pytest.approx(1 * MINUTE)
        assert result.repetitions == 0

    def test_new_hard_uses_rounded_mean_of_steps(self) -> None:
        # mean(1, 10) = 5.5 -> 6 minutes
        result = self.machine.apply(ReviewState.new(), Rating.HARD, T0, self.config)
        assert result.state == CardState.LEARNING
        assert result.interval_days == pytest.approx(6 * MINUTE)

    def test_new_easy_graduates_immediately(self) -> None:
        result = self.machine.apply(ReviewState.new(), Rating.EASY, T0, self.config)
        assert result.state == CardState.REVIEW
        assert result.interval_days == 4.0
        assert result.repetitions == 1
        assert result.next_review_at == T0 + timedelta(days=4)

    def test_new_good_with_single_step_graduates(self) -> None:
        config = SchedulingConfig(learning_steps=(10,))
        result = self.machine.apply(ReviewState.new(), Rating.GOOD, T0, config)
        assert result.state == CardState.REVIEW
        assert result.interval_days == 1.0

    def test_good_after_hard_advances_to_next_step(self) -> None:
        hard = self.machine.apply(ReviewState.new(), Rating.HARD, T0, self.config)
        good = self.machine.apply(hard, Rating.GOOD, T0 + timedelta(minutes=6), self.config)
        assert good.state == CardState.LEARNING
        assert good.interval_days == pytest.approx(10 * MINUTE)

    def test_learning_again_resets_to_first_step(self) -> None:
        learning = ReviewState(state=CardState.LEARNING, interval_days=10 * MINUTE, repetitions=2)
        result = self.machine.apply(learning, Rating.AGAIN, T0, self.config)
        assert result.state == CardState.LEARNING
        assert result.interval_days == pytest.approx(MINUTE)
        assert result.repetitions == 0

    def test_step_comparison_tolerates_float_error(self) -> None:
        # Slightly below the final step must still count as sitting on it.
        learning = ReviewState(state=CardState.LEARNING, interval_days=10 * MINUTE - 1e-9)
        result = self.machine.apply(learning, Rating.GOOD, T0, self.config)
        assert result.state == CardState.REVIEW

    @pytest.mark.parametrize("steps", [(1, 10), (5, 6), (2, 30, 600)])
    def test_good_walks_every_step_in_order(self, steps: tuple[int, ...]) -> None:
        config = SchedulingConfig(learning_steps=steps)
        assert config.is_valid()
        state = ReviewState.new()
        visited = []
        for _ in steps:
            state = self.machine.apply(state, Rating.GOOD, T0, config)
            if state.state == CardState.LEARNING:
                visited.append(round(state.interval_days * 1440))
        assert visited == list(steps[1:])
        assert state.state == CardState.REVIEW

    def test_graduates_within_len_steps_good_ratings(self) -> None:
        config = SchedulingConfig(learning_steps=(1, 10, 30))
        state = ReviewState.new()
        now = T0
        for count in range(1, len(config.learning_steps) + 1):
            state = self.machine.apply(state, Rating.GOOD, now, config)
            now = state.next_review_at
            if state.state == CardState.REVIEW:
                break
        assert state.state == CardState.REVIEW
        assert count <= len(config.learning_steps)


class TestReviewPhase:
    def setup_method(self) -> None:
        self.machine = ReviewStateMachine()
        self.config = SchedulingConfig()

    def test_hard(self) -> None:
        result = self.machine.apply(_review_state(10, 2.5), Rating.HARD, T0, self.config)
        assert result.state == CardState.REVIEW
        assert result.interval_days == 12.0
        assert result.ease_factor == pytest.approx(2.35)
        assert result.repetitions == 4

    def test_good(self) -> None:
        result = self.machine.apply(_review_state(10, 2.5), Rating.GOOD, T0, self.config)
        assert result.interval_days == 25.0
        assert result.ease_factor == pytest.approx(2.5)
        assert result.next_review_at == T0 + timedelta(days=25)

    def test_easy(self) -> None:
        # 10 * 2.5 * 1.3 = 32.5 -> 33
        result = self.machine.apply(_review_state(10, 2.5), Rating.EASY, T0, self.config)
        assert result.interval_days == 33.0
        assert result.ease_factor == pytest.approx(2.65)

    def test_again_lapses_into_relearning(self) -> None:
        result = self.machine.apply(_review_state(10, 2.5, reps=5), Rating.AGAIN, T0, self.config)
        assert result.state == CardState.RELEARNING
        assert result.repetitions == 0
        assert result.lapses == 1
        assert result.ease_factor == pytest.approx(2.3)
        assert result.interval_days == pytest.approx(10 * MINUTE)

    def test_again_clamps_ease_to_floor(self) -> None:
        # 1.35 - 0.2 = 1.15 before the clamp
        result = self.machine.apply(_review_state(10, 1.35), Rating.AGAIN, T0, self.config)
        assert result.ease_factor == 1.3

    def test_easy_clamps_ease_to_ceiling(self) -> None:
        result = self.machine.apply(_review_state(10, 2.95), Rating.EASY, T0, self.config)
        assert result.ease_factor == 3.0

    def test_hard_on_short_interval_is_at_least_one_day(self) -> None:
        result = self.machine.apply(_review_state(0.5, 2.5), Rating.HARD, T0, self.config)
        assert result.interval_days >= 1.0

    def test_interval_capped_at_maximum(self) -> None:
        config = SchedulingConfig(maximum_interval=30)
        result = self.machine.apply(_review_state(20, 2.5), Rating.GOOD, T0, config)
        assert result.interval_days == 30.0
        assert result.next_review_at == T0 + timedelta(days=30)


class TestRelearningPhase:
    def setup_method(self) -> None:
        self.machine = ReviewStateMachine()
        self.config = SchedulingConfig()
        self.lapsed = self.machine.apply(_review_state(10, 2.5), Rating.AGAIN, T0, self.config)

    def test_again_stays_relearning(self) -> None:
        result = self.machine.apply(self.lapsed, Rating.AGAIN, T0, self.config)
        assert result.state == CardState.RELEARNING
        assert result.interval_days == pytest.approx(10 * MINUTE)

    def test_hard_stays_relearning(self) -> None:
        result = self.machine.apply(self.lapsed, Rating.HARD, T0, self.config)
        assert result.state == CardState.RELEARNING
        assert result.interval_days == pytest.approx(10 * MINUTE)

    def test_good_graduates(self) -> None:
        result = self.machine.apply(self.lapsed, Rating.GOOD, T0, self.config)
        assert result.state == CardState.REVIEW
        assert result.interval_days == 1.0

    def test_easy_graduates_with_easy_interval(self) -> None:
        result = self.machine.apply(self.lapsed, Rating.EASY, T0, self.config)
        assert result.state == CardState.REVIEW
        assert result.interval_days == 4.0

    def test_multiple_relearning_steps_are_walked(self) -> None:
        config = SchedulingConfig(relearning_steps=(10, 60))
        lapsed = self.machine.apply(_review_state(10, 2.5), Rating.AGAIN, T0, config)
        step = self.machine.apply(lapsed, Rating.GOOD, T0, config)
        assert step.state == CardState.RELEARNING
        assert step.interval_days == pytest.approx(60 * MINUTE)
        done = self.machine.apply(step, Rating.GOOD, T0, config)
        assert done.state == CardState.REVIEW


class TestRatings:
    def setup_method(self) -> None:
        self.machine = ReviewStateMachine()

    @pytest.mark.parametrize("value", [0, 5, -1, "Perfect", "", None, True, 2.5])
    def test_invalid_rating_rejected(self, value: object) -> None:
        record = _review_state()
        with pytest.raises(InvalidRating):
            self.machine.apply(record, value, T0, SchedulingConfig())  # type: ignore[arg-type]
        assert record == _review_state()

    def test_parse_rating_accepts_names_and_numbers(self) -> None:
        assert parse_rating("Good") == Rating.GOOD
        assert parse_rating("again") == Rating.AGAIN
        assert parse_rating(" EASY ") == Rating.EASY
        assert parse_rating("2") == Rating.HARD
        assert parse_rating(4) == Rating.EASY
        assert parse_rating(Rating.HARD) == Rating.HARD


class TestInvariants:
    @pytest.mark.parametrize("seed", range(5))
    def test_random_rating_sequences_keep_invariants(self, seed: int) -> None:
        rng = random.Random(seed)
        machine = ReviewStateMachine()
        config = SchedulingConfig(learning_steps=(1, 10, 60), relearning_steps=(10, 30), maximum_interval=365)
        state = ReviewState.new()
        now = T0
        for _ in range(300):
            rating = rng.choice(list(Rating))
            state = machine.apply(state, rating, now, config)
            assert 1.3 <= state.ease_factor <= 3.0
            assert state.interval_days > 0
            assert state.interval_days <= config.maximum_interval
            assert state.repetitions >= 0
            assert state.last_reviewed_at == now
            assert state.next_review_at == now + timedelta(days=state.interval_days)
            # Sometimes review late, sometimes early
            now = now + timedelta(days=state.interval_days * rng.uniform(0.5, 1.5))

    def test_input_record_is_not_mutated(self) -> None:
        record = _review_state()
        snapshot = replace(record)
        ReviewStateMachine().apply(record, Rating.AGAIN, T0, SchedulingConfig())
        assert record == snapshot
