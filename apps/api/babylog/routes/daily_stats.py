from datetime import date
from typing import List, Optional

import logging

from fastapi import APIRouter, HTTPException, Query

from ..daily_stats import compute_daily_stat, list_daily_stats
from ..schemas import ComputeDailyStatPayload, DailyStat

router = APIRouter(prefix="/api/v1/daily-stats")
logger = logging.getLogger(__name__)


@router.post("", response_model=DailyStat)
async def recompute_daily_stat(payload: ComputeDailyStatPayload) -> DailyStat:
    try:
        return compute_daily_stat(payload.owner_id, payload.date, payload.timezone)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get("", response_model=List[DailyStat])
async def read_daily_stats(
    owner_id: str = Query(..., min_length=1),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
) -> List[DailyStat]:
    """Return stored stats rows in ``[start_date, end_date]``; nothing is recomputed."""
    if start_date and end_date and start_date > end_date:
        raise HTTPException(status_code=400, detail="start_date must not be after end_date")
    return list_daily_stats(owner_id, start_date, end_date)


@router.get("/{day}", response_model=DailyStat)
async def read_daily_stat(
    day: date,
    owner_id: str = Query(..., min_length=1),
    timezone: Optional[str] = Query(None),
) -> DailyStat:
    """Recompute on access so the page always reflects the latest edits."""
    try:
        return compute_daily_stat(owner_id, day, timezone)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
