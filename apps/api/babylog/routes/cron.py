from datetime import date
from typing import Optional

import hmac
import logging

from fastapi import APIRouter, Header, HTTPException, Query
from fastapi.responses import JSONResponse

from ..config import CONFIG
from ..daily_stats import run_daily_stats_batch

router = APIRouter(prefix="/api/v1/cron")
logger = logging.getLogger(__name__)


def _require_cron_secret(authorization: Optional[str]) -> None:
    secret = CONFIG.cron_secret
    if not secret:
        logger.error("cron secret is not configured")
        raise HTTPException(status_code=500, detail="Cron secret not configured")
    expected = f"Bearer {secret}"
    if not authorization or not hmac.compare_digest(authorization.encode(), expected.encode()):
        logger.warning("cron request rejected")
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.get("/daily-stats-yesterday")
async def daily_stats_yesterday(
    target_date: Optional[date] = Query(None, alias="date"),
    authorization: Optional[str] = Header(None),
) -> JSONResponse:
    """Nightly recompute for every child. Answers 207 when some owners failed."""
    _require_cron_secret(authorization)
    report = run_daily_stats_batch(target_date)
    status_code = 207 if report.partial else 200
    return JSONResponse(
        status_code=status_code,
        content={"success": not report.partial, **report.model_dump(mode="json")},
    )
