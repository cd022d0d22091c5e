"""Scheduling service: the orchestration and persistence boundary.

Coordinates config resolution, the review state machine and the stores.
``record_review`` is the only entry point that mutates review state.
"""

import logging
from collections.abc import Callable, Sequence
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from backend.config import as_naive_utc, settings, utcnow
from backend.models.preset import PresetAssignment, SchedulingPreset
from backend.models.review_log import ReviewLog
from backend.models.review_record import ReviewRecord
from backend.srs.errors import PermissionDenied, PresetNotFound
from backend.srs.machine import ReviewStateMachine, state_machine
from backend.srs.queue import DueFilters, DueQueue, ReviewSession
from backend.srs.scheduling_config import (
    SchedulerKind,
    SchedulingConfig,
    Scope,
    ValidationResult,
)
from backend.srs.state import CardState, ReviewState, parse_rating
from backend.srs.stores import ConfigStore, RecordStore, SqlConfigStore, SqlRecordStore

logger = logging.getLogger(__name__)


def record_to_state(record: ReviewRecord) -> ReviewState:
    """Extract the scheduling snapshot from a database record."""
    return ReviewState(
        state=CardState(record.state),
        ease_factor=record.ease_factor,
        interval_days=record.interval_days,
        repetitions=record.repetitions,
        lapses=record.lapses,
        stability=record.stability,
        difficulty=record.difficulty,
        last_reviewed_at=record.last_reviewed_at,
        next_review_at=record.next_review_at,
    )


def write_state(record: ReviewRecord, state: ReviewState) -> None:
    record.state = state.state.value
    record.ease_factor = state.ease_factor
    record.interval_days = state.interval_days
    record.repetitions = state.repetitions
    record.lapses = state.lapses
    record.stability = state.stability
    record.difficulty = state.difficulty
    record.last_reviewed_at = state.last_reviewed_at
    if state.next_review_at is not None:
        record.next_review_at = state.next_review_at


def new_record(user_id: str, item_id: str, now: datetime) -> ReviewRecord:
    """The record for a pair that has never been rated."""
    initial = ReviewState.new()
    record = ReviewRecord(user_id=user_id, item_id=item_id, next_review_at=now)
    write_state(record, initial)
    return record


class SchedulingService:
    """Records reviews, lists due items and manages scheduling presets."""

    def __init__(
        self,
        records: RecordStore,
        configs: ConfigStore,
        clock: Callable[[], datetime] = utcnow,
        machine: ReviewStateMachine = state_machine,
        default_config: SchedulingConfig | None = None,
    ) -> None:
        self.records = records
        self.configs = configs
        self.clock = clock
        self.machine = machine
        self.default_config = default_config or SchedulingConfig(
            algorithm=SchedulerKind(settings.default_algorithm)
        )

    @classmethod
    def for_session(
        cls,
        db: AsyncSession,
        clock: Callable[[], datetime] = utcnow,
    ) -> "SchedulingService":
        """Build a service backed by SQL stores sharing one session."""
        return cls(records=SqlRecordStore(db), configs=SqlConfigStore(db), clock=clock)

    def _now(self, now: datetime | None) -> datetime:
        return as_naive_utc(now) if now is not None else self.clock()

    # --- Reviews ---

    async def record_review(
        self,
        user_id: str,
        item_id: str,
        rating: object,
        now: datetime | None = None,
        scopes: Sequence[Scope] = (),
        review_duration_ms: int = 0,
    ) -> ReviewRecord:
        """Apply a rating to the user's record for an item and persist it.

        Args:
            user_id: The learner.
            item_id: The question being reviewed.
            rating: Again/Hard/Good/Easy as a Rating, 1-4, or a rating name.
            now: Review time (defaults to the service clock).
            scopes: The item's topic/subject/space scopes, most specific first.
            review_duration_ms: Time the learner spent on the card.

        Returns:
            The updated record. A record is created on the first rating of a
            pair. Raises InvalidRating before touching storage, and
            ConcurrentModification if another writer updated the pair first.
        """
        parsed = parse_rating(rating)
        now = self._now(now)

        config = await self.effective_config(user_id, scopes)
        record = await self.records.find(user_id, item_id)
        if record is None:
            record = new_record(user_id, item_id, now)

        before = record_to_state(record)
        after = self.machine.apply(before, parsed, now, config)
        write_state(record, after)

        elapsed_days = 0.0
        if before.last_reviewed_at is not None:
            elapsed_days = max(0.0, (now - before.last_reviewed_at).total_seconds() / 86400)
        log = ReviewLog(
            user_id=user_id,
            item_id=item_id,
            rating=int(parsed),
            state_before=before.state.value,
            state_after=after.state.value,
            interval_before=before.interval_days,
            interval_after=after.interval_days,
            ease_before=before.ease_factor,
            ease_after=after.ease_factor,
            stability_after=after.stability,
            difficulty_after=after.difficulty,
            elapsed_days=elapsed_days,
            review_duration_ms=review_duration_ms,
            reviewed_at=now,
        )
        saved = await self.records.save(record, log)

        logger.info(
            "Review user=%s item=%s rating=%s: %s -> %s, interval %.4f days, ease %.2f (%s)",
            user_id,
            item_id,
            parsed.name,
            before.state.value,
            after.state.value,
            after.interval_days,
            after.ease_factor,
            config.algorithm.value,
        )
        return saved

    def get_due_items(
        self,
        user_id: str,
        now: datetime | None = None,
        filters: DueFilters | None = None,
        page_size: int | None = None,
    ) -> DueQueue:
        """Return the user's due records, oldest due first, as a lazy queue."""
        return DueQueue(self.records, user_id, self._now(now), filters, page_size=page_size)

    async def build_session(
        self,
        user_id: str,
        item_ids: Sequence[str],
        now: datetime | None = None,
        limit: int | None = None,
    ) -> ReviewSession:
        """Pick up to ``limit`` questions to study from a pool of candidates.

        Due records come first, oldest due first. Remaining slots go to
        candidates the user has never rated, in the order given, as unsaved
        placeholder records in the New state. Nothing is written.

        Args:
            user_id: The learner.
            item_ids: Candidate questions, e.g. every question in a topic.
            now: Session time (defaults to the service clock).
            limit: Batch size (defaults to ``settings.session_size``).
        """
        now = self._now(now)
        limit = settings.session_size if limit is None else limit
        candidates = list(dict.fromkeys(item_ids))
        if not candidates:
            return ReviewSession()

        filters = DueFilters(item_ids=candidates, limit=limit)
        due = await DueQueue(self.records, user_id, now, filters).to_list()
        due_count = await self.records.count_due(user_id, now, filters)

        reviewed = await self.records.reviewed_item_ids(user_id, candidates)
        unseen = [item_id for item_id in candidates if item_id not in reviewed]
        new = [new_record(user_id, item_id, now) for item_id in unseen[: max(0, limit - len(due))]]

        session = ReviewSession(due=due, new=new, due_count=due_count, new_count=len(unseen))
        logger.info(
            "Built session for user %s: %d due + %d new of %d candidates",
            user_id,
            len(due),
            len(new),
            len(candidates),
        )
        return session

    # --- Configuration ---

    @staticmethod
    def validate_config(config: SchedulingConfig) -> ValidationResult:
        return config.validate()

    async def effective_config(self, user_id: str, scopes: Sequence[Scope] = ()) -> SchedulingConfig:
        """Resolve the config for an item: its scopes, then the user's default, then the global one."""
        chain = [*scopes, Scope.user_default(user_id), Scope.global_default()]
        return await self.configs.resolve(chain, self.default_config)

    async def list_presets(self, user_id: str) -> list[SchedulingPreset]:
        return await self.configs.list_for_user(user_id)

    async def create_preset(
        self,
        user_id: str,
        name: str,
        config: SchedulingConfig,
        description: str | None = None,
        is_default: bool = False,
        is_global: bool = False,
        actor_is_admin: bool = False,
    ) -> SchedulingPreset:
        """Validate and store a new preset. Raises InvalidConfig without writing anything."""
        if is_global and not actor_is_admin:
            raise PermissionDenied("Only administrators can create global presets")
        config.validate().raise_for_errors()
        preset = await self.configs.create(
            user_id,
            name,
            config,
            description=description,
            is_default=is_default,
            is_global=is_global,
        )
        logger.info("Created preset %d (%s) for user %s", preset.id, name, user_id)
        return preset

    async def update_preset(
        self,
        user_id: str,
        preset_id: int,
        config: SchedulingConfig,
        name: str | None = None,
        description: str | None = None,
        optimization_source: str | None = None,
    ) -> SchedulingPreset:
        """Replace a preset's parameters.

        Passing ``optimization_source="optimizer"`` marks the parameters as
        fitted from review history and stamps ``last_optimized_at``.
        """
        preset = await self._owned_preset(user_id, preset_id)
        config.validate().raise_for_errors()
        optimized_at = self.clock() if optimization_source == "optimizer" else None
        return await self.configs.update(
            preset,
            config,
            name=name,
            description=description,
            optimization_source=optimization_source,
            optimized_at=optimized_at,
        )

    async def set_default_preset(self, user_id: str, preset_id: int) -> SchedulingPreset:
        """Make the preset the user's default; the previous default is cleared atomically."""
        preset = await self.configs.set_default(user_id, preset_id)
        logger.info("Preset %d is now the default for user %s", preset_id, user_id)
        return preset

    async def assign_preset(self, user_id: str, preset_id: int, scope: Scope) -> PresetAssignment:
        preset = await self.configs.get(preset_id)
        if preset is None or not (preset.user_id == user_id or preset.is_global):
            raise PresetNotFound(preset_id)
        return await self.configs.assign(preset_id, scope)

    async def _owned_preset(self, user_id: str, preset_id: int) -> SchedulingPreset:
        preset = await self.configs.get(preset_id)
        if preset is None or preset.user_id != user_id:
            raise PresetNotFound(preset_id)
        return preset
