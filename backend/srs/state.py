"""Ratings, card states and the immutable review snapshot the schedulers operate on."""

import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum, IntEnum

from backend.srs.errors import InvalidRating

MINUTES_PER_DAY = 1440

# Defaults for a record that has never been reviewed
INITIAL_EASE_FACTOR = 2.5
MIN_EASE_FACTOR = 1.3
MAX_EASE_FACTOR = 3.0


class Rating(IntEnum):
    """Learner-supplied recall quality."""

    AGAIN = 1
    HARD = 2
    GOOD = 3
    EASY = 4


class CardState(Enum):
    """Lifecycle phase of a review record."""

    NEW = "new"
    LEARNING = "learning"
    REVIEW = "review"
    RELEARNING = "relearning"


@dataclass(frozen=True)
class ReviewState:
    """Scheduling fields of a review record, detached from storage."""

    state: CardState = CardState.NEW
    ease_factor: float = INITIAL_EASE_FACTOR
    interval_days: float = 0.0
    repetitions: int = 0
    lapses: int = 0
    stability: float = 0.0
    difficulty: float = 0.0
    last_reviewed_at: datetime | None = None
    next_review_at: datetime | None = None

    @classmethod
    def new(cls) -> "ReviewState":
        """The implicit state of a pair that has never been rated."""
        return cls()


def parse_rating(value: object) -> Rating:
    """Coerce caller input into a Rating.

    Accepts Rating members, the integers 1-4, numeric strings, and the
    rating names in any case ("Again", "good", ...). Anything else raises
    InvalidRating.
    """
    if isinstance(value, Rating):
        return value
    if isinstance(value, bool):
        raise InvalidRating(value)
    if isinstance(value, int):
        try:
            return Rating(value)
        except ValueError:
            raise InvalidRating(value) from None
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return parse_rating(int(text))
        try:
            return Rating[text.upper()]
        except KeyError:
            raise InvalidRating(value) from None
    raise InvalidRating(value)


def minutes_to_days(minutes: float) -> float:
    return minutes / MINUTES_PER_DAY


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values, unlike Python's banker's rounding."""
    return math.floor(value + 0.5)


def clamp_ease(ease_factor: float) -> float:
    return min(MAX_EASE_FACTOR, max(MIN_EASE_FACTOR, ease_factor))
