"""Persistence collaborators for the scheduling engine.

The service depends on the ``RecordStore`` and ``ConfigStore`` protocols;
``SqlRecordStore`` and ``SqlConfigStore`` implement them over one
``AsyncSession`` each.
"""

import logging
from collections.abc import Collection, Sequence
from datetime import datetime
from typing import Protocol

from sqlalchemy import ColumnElement, and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from backend.models.preset import PresetAssignment, SchedulingPreset
from backend.models.review_log import ReviewLog
from backend.models.review_record import ReviewRecord
from backend.srs.errors import ConcurrentModification, PresetNotFound
from backend.srs.queue import DueFilters
from backend.srs.scheduling_config import (
    SchedulerKind,
    SchedulingConfig,
    Scope,
    ScopeKind,
    resolve_effective,
)

logger = logging.getLogger(__name__)

ASSIGNABLE_SCOPES = (ScopeKind.TOPIC, ScopeKind.SUBJECT, ScopeKind.SPACE)


class RecordStore(Protocol):
    async def find(self, user_id: str, item_id: str) -> ReviewRecord | None: ...

    async def save(self, record: ReviewRecord, log: ReviewLog | None = None) -> ReviewRecord: ...

    async def query(
        self,
        user_id: str,
        due_before: datetime,
        filters: DueFilters,
        after: tuple[datetime, int] | None = None,
        limit: int = 50,
    ) -> list[ReviewRecord]: ...

    async def count_due(self, user_id: str, due_before: datetime, filters: DueFilters) -> int: ...

    async def reviewed_item_ids(self, user_id: str, item_ids: Collection[str]) -> set[str]: ...


class ConfigStore(Protocol):
    async def get(self, preset_id: int) -> SchedulingPreset | None: ...

    async def list_for_user(self, user_id: str) -> list[SchedulingPreset]: ...

    async def resolve(
        self, scope_chain: Sequence[Scope], fallback: SchedulingConfig | None = None
    ) -> SchedulingConfig: ...

    async def create(
        self,
        user_id: str,
        name: str,
        config: SchedulingConfig,
        description: str | None = None,
        is_default: bool = False,
        is_global: bool = False,
    ) -> SchedulingPreset: ...

    async def update(
        self,
        preset: SchedulingPreset,
        config: SchedulingConfig,
        name: str | None = None,
        description: str | None = None,
        optimization_source: str | None = None,
        optimized_at: datetime | None = None,
    ) -> SchedulingPreset: ...

    async def set_default(self, user_id: str, preset_id: int) -> SchedulingPreset: ...

    async def assign(self, preset_id: int, scope: Scope) -> PresetAssignment: ...


def preset_to_config(preset: SchedulingPreset) -> SchedulingConfig:
    return SchedulingConfig(
        weights=tuple(preset.weights),
        request_retention=preset.request_retention,
        maximum_interval=preset.maximum_interval,
        enable_fuzz=preset.enable_fuzz,
        enable_short_term=preset.enable_short_term,
        learning_steps=tuple(preset.learning_steps),
        relearning_steps=tuple(preset.relearning_steps),
        graduating_interval=preset.graduating_interval,
        easy_interval=preset.easy_interval,
        algorithm=SchedulerKind(preset.algorithm),
    )


def apply_config(preset: SchedulingPreset, config: SchedulingConfig) -> None:
    """Copy config values onto a preset row."""
    preset.weights = list(config.weights)
    preset.request_retention = config.request_retention
    preset.maximum_interval = config.maximum_interval
    preset.enable_fuzz = config.enable_fuzz
    preset.enable_short_term = config.enable_short_term
    preset.learning_steps = list(config.learning_steps)
    preset.relearning_steps = list(config.relearning_steps)
    preset.graduating_interval = config.graduating_interval
    preset.easy_interval = config.easy_interval
    preset.algorithm = config.algorithm.value


def _due_conditions(user_id: str, due_before: datetime, filters: DueFilters) -> list[ColumnElement[bool]]:
    conditions = [ReviewRecord.user_id == user_id, ReviewRecord.next_review_at <= due_before]
    if filters.item_ids is not None:
        conditions.append(ReviewRecord.item_id.in_(list(filters.item_ids)))
    if filters.states:
        conditions.append(ReviewRecord.state.in_([s.value for s in filters.states]))
    return conditions


class SqlRecordStore:
    """Review records in SQL; per-pair atomicity via the record's version column."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find(self, user_id: str, item_id: str) -> ReviewRecord | None:
        stmt = select(ReviewRecord).where(
            and_(ReviewRecord.user_id == user_id, ReviewRecord.item_id == item_id)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def save(self, record: ReviewRecord, log: ReviewLog | None = None) -> ReviewRecord:
        """Write the record (and its history entry) in one commit.

        A stale version on UPDATE, or a duplicate (user, item) on INSERT,
        means another writer won the race: raise ConcurrentModification.
        The session is rolled back first, which expires every instance it
        holds; re-read them before use.
        """
        user_id, item_id = record.user_id, record.item_id
        self.session.add(record)
        try:
            await self.session.flush()
            if log is not None:
                log.record_id = record.id
                self.session.add(log)
            await self.session.commit()
        except (StaleDataError, IntegrityError) as exc:
            await self.session.rollback()
            logger.warning("Concurrent write detected for user %s, item %s", user_id, item_id)
            raise ConcurrentModification(user_id, item_id) from exc
        except SQLAlchemyError:
            await self.session.rollback()
            raise
        return record

    async def query(
        self,
        user_id: str,
        due_before: datetime,
        filters: DueFilters,
        after: tuple[datetime, int] | None = None,
        limit: int = 50,
    ) -> list[ReviewRecord]:
        conditions = _due_conditions(user_id, due_before, filters)
        if after is not None:
            after_due, after_id = after
            conditions.append(
                or_(
                    ReviewRecord.next_review_at > after_due,
                    and_(ReviewRecord.next_review_at == after_due, ReviewRecord.id > after_id),
                )
            )

        stmt = (
            select(ReviewRecord)
            .where(and_(*conditions))
            .order_by(ReviewRecord.next_review_at.asc(), ReviewRecord.id.asc())  # Oldest due first
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_due(self, user_id: str, due_before: datetime, filters: DueFilters) -> int:
        """Number of due records matching the filters, ignoring ``filters.limit``."""
        stmt = select(func.count(ReviewRecord.id)).where(and_(*_due_conditions(user_id, due_before, filters)))
        return (await self.session.execute(stmt)).scalar_one()

    async def reviewed_item_ids(self, user_id: str, item_ids: Collection[str]) -> set[str]:
        """The subset of ``item_ids`` the user already has a record for."""
        if not item_ids:
            return set()
        stmt = select(ReviewRecord.item_id).where(
            and_(ReviewRecord.user_id == user_id, ReviewRecord.item_id.in_(list(item_ids)))
        )
        return set((await self.session.execute(stmt)).scalars().all())


class SqlConfigStore:
    """Scheduling presets in SQL."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, preset_id: int) -> SchedulingPreset | None:
        return await self.session.get(SchedulingPreset, preset_id)

    async def list_for_user(self, user_id: str) -> list[SchedulingPreset]:
        stmt = select(SchedulingPreset).where(SchedulingPreset.user_id == user_id).order_by(SchedulingPreset.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def lookup_all(self, scope_chain: Sequence[Scope]) -> dict[Scope, SchedulingConfig]:
        """Fetch the config attached to each scope in the chain that has one."""
        found: dict[Scope, SchedulingConfig] = {}

        assignable = [s for s in scope_chain if s.kind in ASSIGNABLE_SCOPES and s.id]
        if assignable:
            stmt = (
                select(PresetAssignment.scope_type, PresetAssignment.scope_id, SchedulingPreset)
                .join(SchedulingPreset, PresetAssignment.preset_id == SchedulingPreset.id)
                .where(
                    or_(
                        *(
                            and_(PresetAssignment.scope_type == s.kind.value, PresetAssignment.scope_id == s.id)
                            for s in assignable
                        )
                    )
                )
            )
            for scope_type, scope_id, preset in (await self.session.execute(stmt)).all():
                found[Scope(ScopeKind(scope_type), scope_id)] = preset_to_config(preset)

        for scope in scope_chain:
            if scope.kind is ScopeKind.USER_DEFAULT and scope.id:
                stmt = select(SchedulingPreset).where(
                    and_(SchedulingPreset.user_id == scope.id, SchedulingPreset.is_default.is_(True))
                )
            elif scope.kind is ScopeKind.GLOBAL:
                stmt = (
                    select(SchedulingPreset)
                    .where(SchedulingPreset.is_global.is_(True))
                    .order_by(SchedulingPreset.updated_at.desc(), SchedulingPreset.id.desc())
                    .limit(1)
                )
            else:
                continue
            preset = (await self.session.execute(stmt)).scalars().first()
            if preset is not None:
                found[scope] = preset_to_config(preset)

        return found

    async def resolve(
        self, scope_chain: Sequence[Scope], fallback: SchedulingConfig | None = None
    ) -> SchedulingConfig:
        """Return the effective config for the chain (first attached, else fallback/default)."""
        found = await self.lookup_all(scope_chain)
        return resolve_effective(scope_chain, found.get, fallback)

    async def create(
        self,
        user_id: str,
        name: str,
        config: SchedulingConfig,
        description: str | None = None,
        is_default: bool = False,
        is_global: bool = False,
        optimization_source: str | None = "manual",
    ) -> SchedulingPreset:
        preset = SchedulingPreset(
            user_id=user_id,
            name=name,
            description=description,
            is_default=False,
            is_global=is_global,
            optimization_source=optimization_source,
        )
        apply_config(preset, config)
        self.session.add(preset)
        try:
            await self.session.flush()
            if is_default:
                await self._make_default(user_id, preset.id)
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            raise
        await self.session.refresh(preset)
        return preset

    async def update(
        self,
        preset: SchedulingPreset,
        config: SchedulingConfig,
        name: str | None = None,
        description: str | None = None,
        optimization_source: str | None = None,
        optimized_at: datetime | None = None,
    ) -> SchedulingPreset:
        apply_config(preset, config)
        if name is not None:
            preset.name = name
        if description is not None:
            preset.description = description
        if optimization_source is not None:
            preset.optimization_source = optimization_source
        if optimized_at is not None:
            preset.last_optimized_at = optimized_at
        try:
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            raise
        return preset

    async def set_default(self, user_id: str, preset_id: int) -> SchedulingPreset:
        """Make the preset the user's only default, in a single transaction.

        An unknown or foreign preset is rejected before anything is written,
        so the caller's loaded objects stay usable.
        """
        preset = await self.get(preset_id)
        if preset is None or preset.user_id != user_id:
            raise PresetNotFound(preset_id)
        try:
            await self._make_default(user_id, preset_id)
            await self.session.commit()
        except (PresetNotFound, SQLAlchemyError):
            await self.session.rollback()
            raise
        await self.session.refresh(preset)
        return preset

    async def assign(self, preset_id: int, scope: Scope) -> PresetAssignment:
        """Attach a preset to a topic, subject or space, replacing any previous one."""
        if scope.kind not in ASSIGNABLE_SCOPES or not scope.id:
            raise ValueError(f"Presets can only be assigned to topics, subjects or spaces, not {scope.kind.value}")
        if await self.get(preset_id) is None:
            raise PresetNotFound(preset_id)

        stmt = select(PresetAssignment).where(
            and_(PresetAssignment.scope_type == scope.kind.value, PresetAssignment.scope_id == scope.id)
        )
        assignment = (await self.session.execute(stmt)).scalar_one_or_none()
        if assignment is None:
            assignment = PresetAssignment(preset_id=preset_id, scope_type=scope.kind.value, scope_id=scope.id)
            self.session.add(assignment)
        else:
            assignment.preset_id = preset_id
        try:
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            raise
        return assignment

    async def _make_default(self, user_id: str, preset_id: int) -> None:
        # Clear the old default before setting the new one so the
        # one-default-per-user index is never violated mid-transaction.
        await self.session.execute(
            update(SchedulingPreset)
            .where(
                and_(
                    SchedulingPreset.user_id == user_id,
                    SchedulingPreset.is_default.is_(True),
                    SchedulingPreset.id != preset_id,
                )
            )
            .values(is_default=False)
        )
        result = await self.session.execute(
            update(SchedulingPreset)
            .where(and_(SchedulingPreset.id == preset_id, SchedulingPreset.user_id == user_id))
            .values(is_default=True)
        )
        if result.rowcount == 0:
            raise PresetNotFound(preset_id)
