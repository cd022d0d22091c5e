"""Pydantic schemas for API request/response models."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from backend.srs.scheduling_config import DEFAULT_CONFIG, SchedulerKind, SchedulingConfig

# --- Reviews ---


class ReviewRequest(BaseModel):
    """A learner's rating for one question."""

    user_id: str
    item_id: str
    rating: int | str  # 1-4 or Again/Hard/Good/Easy
    topic_id: str | None = None
    subject_id: str | None = None
    space_id: str | None = None
    review_duration_ms: int = 0


class ReviewRecordResponse(BaseModel):
    """Scheduling state of one user-item pair."""

    model_config = ConfigDict(from_attributes=True)

    user_id: str
    item_id: str
    state: str  # new, learning, review, relearning
    ease_factor: float
    interval_days: float
    repetitions: int
    lapses: int
    stability: float
    difficulty: float
    last_reviewed_at: datetime | None
    next_review_at: datetime


class SessionItemResponse(ReviewRecordResponse):
    is_new: bool


class SessionResponse(BaseModel):
    """A batch of questions to study: due ones first, then unseen ones."""

    items: list[SessionItemResponse]
    due_count: int
    new_count: int
    total: int


# --- Presets ---


class PresetConfig(BaseModel):
    """Scheduling parameters as sent by clients. Defaults match the built-in config."""

    algorithm: Literal["sm2", "fsrs"] = DEFAULT_CONFIG.algorithm.value
    weights: list[float] = Field(default_factory=lambda: list(DEFAULT_CONFIG.weights))
    request_retention: float = DEFAULT_CONFIG.request_retention
    maximum_interval: int = DEFAULT_CONFIG.maximum_interval
    enable_fuzz: bool = DEFAULT_CONFIG.enable_fuzz
    enable_short_term: bool = DEFAULT_CONFIG.enable_short_term
    learning_steps: list[int] = Field(default_factory=lambda: list(DEFAULT_CONFIG.learning_steps))
    relearning_steps: list[int] = Field(default_factory=lambda: list(DEFAULT_CONFIG.relearning_steps))
    graduating_interval: int = DEFAULT_CONFIG.graduating_interval
    easy_interval: int = DEFAULT_CONFIG.easy_interval

    def to_config(self) -> SchedulingConfig:
        return SchedulingConfig(
            weights=tuple(self.weights),
            request_retention=self.request_retention,
            maximum_interval=self.maximum_interval,
            enable_fuzz=self.enable_fuzz,
            enable_short_term=self.enable_short_term,
            learning_steps=tuple(self.learning_steps),
            relearning_steps=tuple(self.relearning_steps),
            graduating_interval=self.graduating_interval,
            easy_interval=self.easy_interval,
            algorithm=SchedulerKind(self.algorithm),
        )


class PresetCreateRequest(PresetConfig):
    user_id: str
    name: str
    description: str | None = None
    is_default: bool = False
    is_global: bool = False


class PresetUpdateRequest(PresetConfig):
    user_id: str
    name: str | None = None
    description: str | None = None
    optimization_source: Literal["manual", "optimizer", "default"] | None = None


class PresetResponse(PresetConfig):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    name: str
    description: str | None
    is_default: bool
    is_global: bool
    optimization_source: str | None
    last_optimized_at: datetime | None


class AssignmentRequest(BaseModel):
    user_id: str
    scope_type: Literal["topic", "subject", "space"]
    scope_id: str


class AssignmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    preset_id: int
    scope_type: str
    scope_id: str


class ValidationResponse(BaseModel):
    valid: bool
    errors: list[str]
