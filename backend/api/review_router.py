"""API routes for recording reviews, listing due items and building study sessions."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from backend.api.schemas import ReviewRecordResponse, ReviewRequest, SessionItemResponse, SessionResponse
from backend.config import settings
from backend.database import get_session
from backend.models.review_record import ReviewRecord
from backend.srs.errors import ConcurrentModification, InvalidRating
from backend.srs.queue import DueFilters
from backend.srs.scheduling_config import Scope
from backend.srs.service import SchedulingService
from backend.srs.state import CardState

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reviews", tags=["reviews"])


@retry(
    retry=retry_if_exception_type(ConcurrentModification),
    stop=stop_after_attempt(settings.review_retry_attempts),
    wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
    reraise=True,
)
async def _record_review(service: SchedulingService, request: ReviewRequest) -> ReviewRecord:
    """Record a review, re-running the whole read-modify-write on a lost race."""
    scopes = []
    if request.topic_id:
        scopes.append(Scope.topic(request.topic_id))
    if request.subject_id:
        scopes.append(Scope.subject(request.subject_id))
    if request.space_id:
        scopes.append(Scope.space(request.space_id))
    return await service.record_review(
        request.user_id,
        request.item_id,
        request.rating,
        scopes=scopes,
        review_duration_ms=request.review_duration_ms,
    )


@router.post("", response_model=ReviewRecordResponse)
async def submit_review(
    request: ReviewRequest,
    db: AsyncSession = Depends(get_session),
) -> ReviewRecordResponse:
    """Apply a rating to a question and return its new schedule."""
    service = SchedulingService.for_session(db)
    try:
        record = await _record_review(service, request)
    except InvalidRating as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ConcurrentModification as exc:
        logger.warning("Giving up on review after retries: %s", exc)
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return ReviewRecordResponse.model_validate(record)


@router.get("/due", response_model=list[ReviewRecordResponse])
async def due_items(
    user_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    item_id: list[str] | None = Query(default=None),
    state: list[CardState] | None = Query(default=None),
    db: AsyncSession = Depends(get_session),
) -> list[ReviewRecordResponse]:
    """List the user's due records, oldest due first."""
    service = SchedulingService.for_session(db)
    filters = DueFilters(item_ids=item_id, states=state, limit=limit)
    records = await service.get_due_items(user_id, filters=filters).to_list()
    return [ReviewRecordResponse.model_validate(r) for r in records]


def _session_item(record: ReviewRecord, is_new: bool) -> SessionItemResponse:
    return SessionItemResponse(**ReviewRecordResponse.model_validate(record).model_dump(), is_new=is_new)


@router.get("/session", response_model=SessionResponse)
async def review_session(
    user_id: str,
    item_id: list[str] = Query(default=[]),
    limit: int = Query(default=settings.session_size, ge=1, le=500),
    db: AsyncSession = Depends(get_session),
) -> SessionResponse:
    """Build a study batch from candidate questions: due ones first, then unseen ones."""
    service = SchedulingService.for_session(db)
    session = await service.build_session(user_id, item_id, limit=limit)
    return SessionResponse(
        items=[_session_item(r, is_new=False) for r in session.due]
        + [_session_item(r, is_new=True) for r in session.new],
        due_count=session.due_count,
        new_count=session.new_count,
        total=session.total,
    )
