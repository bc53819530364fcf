"""
Manager router.

GET    /manager/actions                      - Actions grouped by provider + link status
GET    /manager/reactions                    - Reactions grouped by provider + link status
GET    /manager/actions/{name}/placeholders  - Placeholder keys an action exposes
POST   /manager/areas                        - Bind an action to a reaction
GET    /manager/areas                        - Caller's areas
DELETE /manager/areas/{id}                   - Deactivate an area (owner only)
GET    /manager/areas/{id}/executions        - Execution records of an area (owner only)

The caller is identified by the `X-User-Id` header set by the auth proxy.
"""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Header, Query, status

from area_engine.core.errors import BindingOwnershipError
from area_engine.schemas.areas import (
    AreaListResponse,
    AreaResponse,
    CreateAreaRequest,
    CreateAreaResponse,
    DeactivateAreaResponse,
    ExecutionListResponse,
    ExecutionResponse,
    PlaceholderListResponse,
    PlaceholderResponse,
)
from area_engine.services.engine import Engine, get_engine
from area_engine.services.repository import BindingRecord, ExecutionRecord

router = APIRouter(prefix="/manager", tags=["manager"])


def current_user_id(x_user_id: str = Header(min_length=1, max_length=64)) -> str:
    return x_user_id


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------

def _area_to_response(binding: BindingRecord) -> AreaResponse:
    return AreaResponse(
        id=binding.id,
        action_name=binding.action_name,
        reaction_name=binding.reaction_name,
        action_config=binding.action_config,
        reaction_config=binding.reaction_config,
        is_active=binding.is_active,
        created_at=binding.created_at.isoformat() if binding.created_at else None,
        updated_at=binding.updated_at.isoformat() if binding.updated_at else None,
    )


def _execution_to_response(record: ExecutionRecord) -> ExecutionResponse:
    return ExecutionResponse(
        id=record.id,
        event_type=record.event_type,
        description=record.description,
        metadata=record.metadata,
        created_at=record.created_at.isoformat() if record.created_at else None,
    )


def _owned(engine: Engine, area_id: str, user_id: str) -> BindingRecord:
    binding = engine.orchestrator.get_binding(area_id)
    if binding.user_id != user_id:
        raise BindingOwnershipError(area_id)
    return binding


# ---------------------------------------------------------------------------
# Catalogue
# ---------------------------------------------------------------------------

@router.get("/actions", summary="List available actions grouped by provider")
async def list_actions(
    user_id: str = Depends(current_user_id),
    engine: Engine = Depends(get_engine),
) -> dict[str, Any]:
    """
    Each provider group carries `is_linked` for the caller, so clients can
    prompt for an account link before offering the action.
    """
    return await engine.orchestrator.list_available_actions(user_id)


@router.get("/reactions", summary="List available reactions grouped by provider")
async def list_reactions(
    user_id: str = Depends(current_user_id),
    engine: Engine = Depends(get_engine),
) -> dict[str, Any]:
    return await engine.orchestrator.list_available_reactions(user_id)


@router.get(
    "/actions/{action_name}/placeholders",
    response_model=PlaceholderListResponse,
    summary="Placeholder keys exposed by an action",
    responses={400: {"description": "Unknown action."}, 404: {"description": "No placeholders."}},
)
def list_placeholders(action_name: str, engine: Engine = Depends(get_engine)):
    items = engine.orchestrator.list_placeholders(action_name)
    return PlaceholderListResponse(
        action=action_name,
        placeholders=[PlaceholderResponse(**p) for p in items],
    )


# ---------------------------------------------------------------------------
# Areas
# ---------------------------------------------------------------------------

@router.post(
    "/areas",
    response_model=CreateAreaResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Bind an action to a reaction",
    responses={
        201: {"description": "Area persisted and its detection started."},
        400: {"description": "Unknown action/reaction or provider not linked."},
        409: {"description": "An active area already watches the same source."},
        422: {"description": "Invalid action or reaction config."},
    },
)
async def create_area(
    payload: CreateAreaRequest,
    user_id: str = Depends(current_user_id),
    engine: Engine = Depends(get_engine),
):
    """
    Validation runs before anything is written: a rejected request leaves
    no area behind. The first detection only records the current state of
    the source; pre-existing items never fire the reaction.
    """
    area_id = await engine.orchestrator.bind(
        user_id,
        payload.action_name,
        payload.reaction_name,
        payload.action_config,
        payload.reaction_config,
    )
    return CreateAreaResponse(id=area_id)


@router.get("/areas", response_model=AreaListResponse, summary="List the caller's areas")
def list_areas(
    user_id: str = Depends(current_user_id),
    engine: Engine = Depends(get_engine),
):
    items = [_area_to_response(b) for b in engine.orchestrator.list_bindings_for_user(user_id)]
    return AreaListResponse(total=len(items), items=items)


@router.delete(
    "/areas/{area_id}",
    response_model=DeactivateAreaResponse,
    summary="Deactivate an area",
    responses={
        400: {"description": "Malformed area id."},
        403: {"description": "Area owned by another user."},
        404: {"description": "Area not found."},
    },
)
async def deactivate_area(
    area_id: str,
    user_id: str = Depends(current_user_id),
    engine: Engine = Depends(get_engine),
):
    _owned(engine, area_id, user_id)
    binding = await engine.orchestrator.deactivate(area_id)
    return DeactivateAreaResponse(id=binding.id)


@router.get(
    "/areas/{area_id}/executions",
    response_model=ExecutionListResponse,
    summary="Execution records of an area",
)
def list_executions(
    area_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    user_id: str = Depends(current_user_id),
    engine: Engine = Depends(get_engine),
):
    binding = _owned(engine, area_id, user_id)
    records = engine.orchestrator.list_executions(binding.id, limit=limit)
    return ExecutionListResponse(
        area_id=binding.id,
        total=len(records),
        items=[_execution_to_response(r) for r in records],
    )
