"""Scheduling parameters, their validation, and scope-based resolution.

A SchedulingConfig is the value the state machine consumes. Presets stored in
the database are converted into one before use, and every write of a preset
goes through ``validate()`` first so bad parameters never reach storage.
"""

import math
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum

from backend.srs.errors import (
    InvalidConfig,
    InvalidInterval,
    InvalidRetention,
    InvalidSteps,
    InvalidWeights,
)
from backend.srs.state import MINUTES_PER_DAY

# FSRS-4.5 default parameters
# w[0..3]: initial stability for ratings Again/Hard/Good/Easy
# w[4..5]: initial difficulty and its per-rating slope
# w[6..7]: difficulty update and mean reversion
# w[8..10]: stability growth after a successful review
# w[11..14]: stability after a lapse
# w[15..16]: hard penalty and easy bonus
DEFAULT_WEIGHTS: tuple[float, ...] = (
    0.4072,
    1.1829,
    3.1262,
    15.4722,
    7.2102,
    0.5316,
    1.0651,
    0.0234,
    1.616,
    0.1544,
    1.0824,
    1.9813,
    0.0953,
    0.2975,
    2.2042,
    0.2407,
    2.9466,
)
WEIGHT_COUNT = 17

MIN_RETENTION = 0.7  # exclusive
MAX_RETENTION = 0.99  # inclusive


class SchedulerKind(Enum):
    """Which algorithm drives the state machine."""

    SM2 = "sm2"  # ease-factor scheduling
    FSRS = "fsrs"  # memory-model scheduling


class ScopeKind(Enum):
    TOPIC = "topic"
    SUBJECT = "subject"
    SPACE = "space"
    USER_DEFAULT = "user_default"
    GLOBAL = "global"


@dataclass(frozen=True)
class Scope:
    """A place a preset can be attached to."""

    kind: ScopeKind
    id: str | None = None

    @classmethod
    def topic(cls, topic_id: str) -> "Scope":
        return cls(ScopeKind.TOPIC, topic_id)

    @classmethod
    def subject(cls, subject_id: str) -> "Scope":
        return cls(ScopeKind.SUBJECT, subject_id)

    @classmethod
    def space(cls, space_id: str) -> "Scope":
        return cls(ScopeKind.SPACE, space_id)

    @classmethod
    def user_default(cls, user_id: str) -> "Scope":
        return cls(ScopeKind.USER_DEFAULT, user_id)

    @classmethod
    def global_default(cls) -> "Scope":
        return cls(ScopeKind.GLOBAL)


def build_scope_chain(
    user_id: str,
    topic_id: str | None = None,
    subject_id: str | None = None,
    space_id: str | None = None,
) -> list[Scope]:
    """Return the lookup chain for an item, most specific scope first."""
    chain: list[Scope] = []
    if topic_id:
        chain.append(Scope.topic(topic_id))
    if subject_id:
        chain.append(Scope.subject(subject_id))
    if space_id:
        chain.append(Scope.space(space_id))
    chain.append(Scope.user_default(user_id))
    chain.append(Scope.global_default())
    return chain


@dataclass
class ValidationResult:
    """Outcome of validating a SchedulingConfig."""

    errors: list[InvalidConfig] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def raise_for_errors(self) -> None:
        """Raise the first validation error, if any."""
        if self.errors:
            raise self.errors[0]

    def messages(self) -> list[str]:
        return [str(e) for e in self.errors]


@dataclass(frozen=True)
class SchedulingConfig:
    """Tunable parameters for one scheduling invocation."""

    weights: tuple[float, ...] = DEFAULT_WEIGHTS
    request_retention: float = 0.85
    maximum_interval: int = 36500  # days
    enable_fuzz: bool = True
    enable_short_term: bool = True
    learning_steps: tuple[int, ...] = (1, 10)  # minutes
    relearning_steps: tuple[int, ...] = (10,)  # minutes
    graduating_interval: int = 1  # days
    easy_interval: int = 4  # days
    algorithm: SchedulerKind = SchedulerKind.SM2

    def __post_init__(self) -> None:
        # Accept lists from callers but keep the value hashable and immutable.
        object.__setattr__(self, "weights", tuple(self.weights))
        object.__setattr__(self, "learning_steps", tuple(self.learning_steps))
        object.__setattr__(self, "relearning_steps", tuple(self.relearning_steps))
        if not isinstance(self.algorithm, SchedulerKind):
            object.__setattr__(self, "algorithm", SchedulerKind(self.algorithm))

    def validate(self) -> ValidationResult:
        """Check every parameter and collect all problems found."""
        result = ValidationResult()

        for name, steps in (("learning_steps", self.learning_steps), ("relearning_steps", self.relearning_steps)):
            error = _check_steps(name, steps)
            if error is not None:
                result.errors.append(error)

        if len(self.weights) != WEIGHT_COUNT:
            result.errors.append(
                InvalidWeights(f"FSRS parameters must contain exactly {WEIGHT_COUNT} weights, got {len(self.weights)}")
            )
        elif not all(_is_finite_number(w) for w in self.weights):
            result.errors.append(InvalidWeights("All FSRS weights must be finite numbers"))

        retention = self.request_retention
        if not _is_finite_number(retention) or not (MIN_RETENTION < retention <= MAX_RETENTION):
            result.errors.append(
                InvalidRetention(
                    f"Request retention {retention} must be greater than {MIN_RETENTION} "
                    f"and at most {MAX_RETENTION}"
                )
            )

        for name in ("maximum_interval", "graduating_interval", "easy_interval"):
            value = getattr(self, name)
            if not _is_positive_int(value):
                result.errors.append(InvalidInterval(f"{name} must be a positive whole number of days, got {value!r}", field=name))

        return result

    def is_valid(self) -> bool:
        return self.validate().ok


DEFAULT_CONFIG = SchedulingConfig()


def resolve_effective(
    scope_chain: Iterable[Scope],
    lookup: Callable[[Scope], SchedulingConfig | None],
    fallback: SchedulingConfig | None = None,
) -> SchedulingConfig:
    """Return the first config attached along the chain.

    Falls back to ``fallback`` and then to the built-in default when no
    scope in the chain has a config.
    """
    for scope in scope_chain:
        config = lookup(scope)
        if config is not None:
            return config
    return fallback if fallback is not None else DEFAULT_CONFIG


def _check_steps(name: str, steps: Sequence[int]) -> InvalidSteps | None:
    if not steps:
        return InvalidSteps(f"{name} must contain at least one step", field=name)
    for step in steps:
        if not _is_positive_int(step):
            return InvalidSteps(f"Step {step!r} in {name} must be a positive whole number of minutes", field=name)
        if step >= MINUTES_PER_DAY:
            return InvalidSteps(
                f"Step {step} minutes in {name} exceeds 1 day ({MINUTES_PER_DAY} minutes). "
                "All steps must be < 24 hours.",
                field=name,
            )
    # Steps are located by interval length, so each must be longer than the last.
    if any(later <= earlier for earlier, later in zip(steps, steps[1:])):
        return InvalidSteps(f"{name} must be strictly increasing, got {list(steps)}", field=name)
    return None


def _is_finite_number(value: object) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool) and math.isfinite(value)


def _is_positive_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0
