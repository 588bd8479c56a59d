from datetime import date
from typing import List, Literal, Optional

import logging

from fastapi import APIRouter, Header, HTTPException, Query
from pydantic import BaseModel

from ..confirmation import delete_activities, delete_activity, submit_create, submit_update
from ..daily_stats import list_events_for_day
from ..db import get_activity, latest_activity
from ..errors import ActivityConflictError, ActivityNotFoundError, ActivityValidationError
from ..registry import resolve_type
from ..schemas import Activity, BatchDeletePayload, CreateActivityPayload, UpdateActivityPayload

router = APIRouter(prefix="/api/v1/activities")
logger = logging.getLogger(__name__)


class DeleteResponse(BaseModel):
    success: bool = True
    count: int = 1


def raise_for_flow_error(exc: Exception) -> None:
    """Translate a core error into the matching HTTP response."""
    if isinstance(exc, ActivityConflictError):
        raise HTTPException(status_code=409, detail=exc.to_detail()) from exc
    if isinstance(exc, ActivityValidationError):
        raise HTTPException(status_code=400, detail=exc.to_detail()) from exc
    if isinstance(exc, ActivityNotFoundError):
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    raise exc


@router.post("", response_model=Activity, status_code=201)
async def create_activity(
    payload: CreateActivityPayload,
    x_actor_id: Optional[str] = Header(None),
) -> Activity:
    try:
        result = submit_create(payload, actor_id=x_actor_id)
    except (ActivityConflictError, ActivityValidationError) as exc:
        raise_for_flow_error(exc)
    return result.activity


@router.get("", response_model=List[Activity])
async def list_activities(
    owner_id: str = Query(..., min_length=1),
    day: date = Query(..., alias="date", description="Civil date to list"),
    timezone: Optional[str] = Query(None, description="IANA timezone of the day"),
    include_previous_evening: bool = Query(False),
    order: Literal["asc", "desc"] = Query("desc"),
) -> List[Activity]:
    """Return the owner's activities for one civil day, newest first by default."""
    try:
        activities = list_events_for_day(
            owner_id,
            day,
            timezone,
            include_previous_evening=include_previous_evening,
            descending=order == "desc",
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    logger.info(
        "day activities query",
        extra={"owner_id": owner_id, "date": day.isoformat(), "count": len(activities)},
    )
    return activities


@router.get("/latest", response_model=Optional[Activity])
async def get_latest_activity(
    owner_id: str = Query(..., min_length=1),
    types: str = Query(..., description="Comma-separated activity types"),
) -> Optional[Activity]:
    requested = [item.strip() for item in types.split(",") if item.strip()]
    try:
        resolved = [resolve_type(item).value for item in requested]
    except KeyError as exc:
        raise HTTPException(status_code=400, detail=f"Unknown activity type: {exc.args[0]}") from exc
    if not resolved:
        raise HTTPException(status_code=400, detail="types is required")
    return latest_activity(owner_id, resolved)


@router.post("/batch-delete", response_model=DeleteResponse)
async def batch_delete_activities(
    payload: BatchDeletePayload,
    x_actor_id: Optional[str] = Header(None),
) -> DeleteResponse:
    removed = delete_activities(payload.owner_id, payload.ids, actor_id=x_actor_id)
    return DeleteResponse(count=len(removed))


@router.get("/{activity_id}", response_model=Activity)
async def read_activity(activity_id: str, owner_id: Optional[str] = Query(None)) -> Activity:
    activity = get_activity(activity_id, owner_id=owner_id)
    if activity is None:
        raise HTTPException(status_code=404, detail=f"Activity {activity_id} not found")
    return activity


@router.patch("/{activity_id}", response_model=Activity)
async def patch_activity(
    activity_id: str,
    payload: UpdateActivityPayload,
    owner_id: Optional[str] = Query(None),
    x_actor_id: Optional[str] = Header(None),
) -> Activity:
    try:
        result = submit_update(activity_id, payload, owner_id=owner_id, actor_id=x_actor_id)
    except (ActivityConflictError, ActivityValidationError, ActivityNotFoundError) as exc:
        raise_for_flow_error(exc)
    return result.activity


@router.delete("/{activity_id}", response_model=DeleteResponse)
async def remove_activity(
    activity_id: str,
    owner_id: Optional[str] = Query(None),
    x_actor_id: Optional[str] = Header(None),
) -> DeleteResponse:
    try:
        delete_activity(activity_id, owner_id=owner_id, actor_id=x_actor_id)
    except ActivityNotFoundError as exc:
        raise_for_flow_error(exc)
    return DeleteResponse()
