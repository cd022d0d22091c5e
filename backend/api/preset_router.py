"""API routes for scheduling presets."""

import logging

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.schemas import (
    AssignmentRequest,
    AssignmentResponse,
    PresetConfig,
    PresetCreateRequest,
    PresetResponse,
    PresetUpdateRequest,
    ValidationResponse,
)
from backend.config import settings
from backend.database import get_session
from backend.srs.errors import InvalidConfig, PermissionDenied, PresetNotFound
from backend.srs.scheduling_config import Scope, ScopeKind
from backend.srs.service import SchedulingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/presets", tags=["presets"])


def is_admin(x_admin_token: str | None = Header(default=None)) -> bool:
    """Whether the caller presented the configured admin token."""
    return bool(settings.admin_token) and x_admin_token == settings.admin_token


@router.get("", response_model=list[PresetResponse])
async def list_presets(
    user_id: str,
    db: AsyncSession = Depends(get_session),
) -> list[PresetResponse]:
    """List the user's presets."""
    service = SchedulingService.for_session(db)
    return [PresetResponse.model_validate(p) for p in await service.list_presets(user_id)]


@router.post("/validate", response_model=ValidationResponse)
async def validate_preset(request: PresetConfig) -> ValidationResponse:
    """Check a set of parameters without saving them."""
    result = SchedulingService.validate_config(request.to_config())
    return ValidationResponse(valid=result.ok, errors=result.messages())


@router.post("", response_model=PresetResponse, status_code=201)
async def create_preset(
    request: PresetCreateRequest,
    admin: bool = Depends(is_admin),
    db: AsyncSession = Depends(get_session),
) -> PresetResponse:
    """Create a preset, optionally making it the user's default."""
    service = SchedulingService.for_session(db)
    try:
        preset = await service.create_preset(
            request.user_id,
            request.name,
            request.to_config(),
            description=request.description,
            is_default=request.is_default,
            is_global=request.is_global,
            actor_is_admin=admin,
        )
    except InvalidConfig as exc:
        raise HTTPException(status_code=422, detail={"field": exc.field, "message": str(exc)}) from exc
    except PermissionDenied as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    return PresetResponse.model_validate(preset)


@router.put("/{preset_id}", response_model=PresetResponse)
async def update_preset(
    preset_id: int,
    request: PresetUpdateRequest,
    db: AsyncSession = Depends(get_session),
) -> PresetResponse:
    """Replace a preset's parameters."""
    service = SchedulingService.for_session(db)
    try:
        preset = await service.update_preset(
            request.user_id,
            preset_id,
            request.to_config(),
            name=request.name,
            description=request.description,
            optimization_source=request.optimization_source,
        )
    except PresetNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidConfig as exc:
        raise HTTPException(status_code=422, detail={"field": exc.field, "message": str(exc)}) from exc
    return PresetResponse.model_validate(preset)


@router.post("/{preset_id}/default", response_model=PresetResponse)
async def make_default(
    preset_id: int,
    user_id: str,
    db: AsyncSession = Depends(get_session),
) -> PresetResponse:
    """Make a preset the user's default."""
    service = SchedulingService.for_session(db)
    try:
        preset = await service.set_default_preset(user_id, preset_id)
    except PresetNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return PresetResponse.model_validate(preset)


@router.post("/{preset_id}/assignments", response_model=AssignmentResponse)
async def assign_preset(
    preset_id: int,
    request: AssignmentRequest,
    db: AsyncSession = Depends(get_session),
) -> AssignmentResponse:
    """Attach a preset to a topic, subject or space."""
    service = SchedulingService.for_session(db)
    scope = Scope(ScopeKind(request.scope_type), request.scope_id)
    try:
        assignment = await service.assign_preset(request.user_id, preset_id, scope)
    except PresetNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return AssignmentResponse.model_validate(assignment)
