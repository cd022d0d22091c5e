"""Due-item queue and review sessions.

Streams a learner's due records oldest-due first, fetching one page at a
time with keyset pagination on ``(next_review_at, id)`` so pages stay stable
while reviews are being written concurrently.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Collection
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from backend.config import settings
from backend.models.review_record import ReviewRecord
from backend.srs.state import CardState

if TYPE_CHECKING:
    from backend.srs.stores import RecordStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DueFilters:
    """Optional narrowing of a due-item query."""

    item_ids: Collection[str] | None = None  # e.g. the questions of one topic
    states: Collection[CardState] | None = None
    limit: int | None = None  # overall cap across all pages


class DueQueue:
    """A lazy, restartable sequence of due review records.

    Each ``async for`` starts again from the oldest due record.
    """

    def __init__(
        self,
        store: RecordStore,
        user_id: str,
        now: datetime,
        filters: DueFilters | None = None,
        page_size: int | None = None,
    ) -> None:
        self.store = store
        self.user_id = user_id
        self.now = now
        self.filters = filters or DueFilters()
        self.page_size = page_size or settings.due_page_size

    async def pages(self) -> AsyncIterator[list[ReviewRecord]]:
        """Yield non-empty pages of due records until exhausted or the limit is hit."""
        remaining = self.filters.limit
        after: tuple[datetime, int] | None = None
        while remaining is None or remaining > 0:
            size = self.page_size if remaining is None else min(self.page_size, remaining)
            page = await self.store.query(self.user_id, self.now, self.filters, after=after, limit=size)
            if not page:
                return
            logger.debug("Fetched %d due records for user %s", len(page), self.user_id)
            yield page
            if remaining is not None:
                remaining -= len(page)
            if len(page) < size:
                return
            last = page[-1]
            after = (last.next_review_at, last.id)

    async def __aiter__(self) -> AsyncIterator[ReviewRecord]:
        async for page in self.pages():
            for record in page:
                yield record

    async def to_list(self) -> list[ReviewRecord]:
        """Drain the queue into a list."""
        return [record async for record in self]

    async def first_page(self) -> list[ReviewRecord]:
        size = self.page_size if self.filters.limit is None else min(self.page_size, self.filters.limit)
        if size <= 0:
            return []
        return await self.store.query(self.user_id, self.now, self.filters, after=None, limit=size)


@dataclass
class ReviewSession:
    """A prepared batch of questions for one sitting.

    ``due`` holds stored records, oldest due first. ``new`` holds unsaved
    placeholder records for questions the user has never rated; the first
    rating creates the real record. The counts cover every candidate, not
    just the ones that fit in the batch.
    """

    due: list[ReviewRecord] = field(default_factory=list)
    new: list[ReviewRecord] = field(default_factory=list)
    due_count: int = 0
    new_count: int = 0

    @property
    def total(self) -> int:
        return self.due_count + self.new_count

    def items(self) -> list[ReviewRecord]:
        """Due records first, then new ones."""
        return [*self.due, *self.new]
