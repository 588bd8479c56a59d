from typing import List

from fastapi import APIRouter, HTTPException

from ..config import CONFIG
from ..daily_stats import resolve_zone
from ..db import create_child, list_children
from ..schemas import Child, ChildPayload

router = APIRouter(prefix="/api/v1/children")


@router.post("", response_model=Child, status_code=201)
async def register_child(payload: ChildPayload) -> Child:
    timezone_name = payload.timezone or CONFIG.stats_timezone
    try:
        resolve_zone(timezone_name)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return create_child(name=payload.name, timezone_name=timezone_name)


@router.get("", response_model=List[Child])
async def read_children() -> List[Child]:
    return list_children()
