"""Per-day totals in a civil timezone.

A day is ``[local midnight, next local midnight)`` converted to instants, so
DST days are 23 or 25 hours long. Each activity contributes according to its
type policy:

* clipped (sleep): only the part of the interval inside the day counts, and
  an in-progress activity counts nothing yet;
* start-anchored (feeds, exercises, ambient activities): the whole duration
  goes to the day the activity started in;
* point types: counted on the day they happened, with field counters.

Stats are derived data. They are recomputed from activities and replaced by
key ``(owner_id, date)``, never patched incrementally.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field

from .config import CONFIG
from .db import get_child, list_children, list_window_activities, upsert_daily_stat
from .db import list_daily_stats as list_stored_daily_stats
from .registry import DayAttribution, category_names, get_policy, iter_policies, metric_names
from .schemas import Activity, DailyStat

logger = logging.getLogger(__name__)

PREVIOUS_EVENING_HOUR = 18


class BatchFailure(BaseModel):
    owner_id: str
    error: str


class BatchReport(BaseModel):
    target_date: date
    timezone: str
    total_owners: int
    success_count: int = 0
    failed_count: int = 0
    failures: List[BatchFailure] = Field(default_factory=list)

    @property
    def partial(self) -> bool:
        return self.failed_count > 0


def resolve_zone(name: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(name or CONFIG.stats_timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {name}") from exc


def day_window(day: date, timezone_name: Optional[str] = None) -> Tuple[datetime, datetime]:
    """Return the UTC instants of local midnight for ``day`` and for the day after."""
    zone = resolve_zone(timezone_name)
    day_start = datetime.combine(day, time.min, tzinfo=zone)
    day_end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=zone)
    return day_start.astimezone(timezone.utc), day_end.astimezone(timezone.utc)


def previous_evening_start(day: date, timezone_name: Optional[str] = None) -> datetime:
    zone = resolve_zone(timezone_name)
    evening = datetime.combine(day - timedelta(days=1), time(hour=PREVIOUS_EVENING_HOUR), tzinfo=zone)
    return evening.astimezone(timezone.utc)


def _minutes(start: datetime, end: datetime) -> int:
    seconds = (end - start).total_seconds()
    return max(0, round(seconds / 60))


def _empty_stat(owner_id: str, day: date, timezone_name: str) -> DailyStat:
    counts = {}
    minutes = {}
    for activity_type, policy in iter_policies():
        counts[activity_type.value] = 0
        if not policy.is_point:
            minutes[activity_type.value] = 0
    return DailyStat(
        owner_id=owner_id,
        date=day,
        timezone=timezone_name,
        counts=counts,
        minutes=minutes,
        category_counts={name: 0 for name in category_names()},
        metrics={name: 0.0 for name in metric_names()},
    )


def aggregate(
    owner_id: str,
    day: date,
    timezone_name: Optional[str],
    activities: Iterable[Activity],
) -> DailyStat:
    """Fold ``activities`` into the totals for ``day``. Pure and order independent."""
    timezone_name = timezone_name or CONFIG.stats_timezone
    day_start, day_end = day_window(day, timezone_name)
    stat = _empty_stat(owner_id, day, timezone_name)

    for activity in activities:
        if activity.owner_id != owner_id:
            continue
        policy = get_policy(activity.type)
        key = activity.type.value
        starts_in_day = day_start <= activity.start_time < day_end

        if policy.day_attribution is DayAttribution.CLIPPED and not policy.is_point:
            if activity.end_time is None:
                continue
            clipped = _minutes(max(activity.start_time, day_start), min(activity.end_time, day_end))
            if clipped <= 0:
                continue
            stat.counts[key] += 1
            stat.minutes[key] += clipped
        else:
            if not starts_in_day:
                continue
            stat.counts[key] += 1
            if not policy.is_point and activity.end_time is not None:
                stat.minutes[key] += _minutes(activity.start_time, activity.end_time)

        stat.category_counts[policy.category] += 1
        for metric in policy.field_metrics:
            stat.metrics[metric.name] += metric.value(activity.fields)

    return stat


def _owner_timezone(owner_id: str, timezone_name: Optional[str]) -> str:
    if timezone_name:
        return timezone_name
    child = get_child(owner_id)
    if child is not None and child.timezone:
        return child.timezone
    return CONFIG.stats_timezone


def compute_daily_stat(owner_id: str, day: date, timezone_name: Optional[str] = None) -> DailyStat:
    """Recompute and store the stats for ``(owner_id, day)``. Safe to repeat."""
    timezone_name = _owner_timezone(owner_id, timezone_name)
    day_start, day_end = day_window(day, timezone_name)
    activities = list_window_activities(
        owner_id, window_start=day_start, day_start=day_start, day_end=day_end
    )
    stat = aggregate(owner_id, day, timezone_name, activities)
    upsert_daily_stat(stat)
    logger.info(
        "daily stat recomputed",
        extra={
            "owner_id": owner_id,
            "date": day.isoformat(),
            "timezone": timezone_name,
            "activity_count": len(activities),
        },
    )
    return stat


def list_events_for_day(
    owner_id: str,
    day: date,
    timezone_name: Optional[str] = None,
    *,
    include_previous_evening: bool = False,
    descending: bool = True,
) -> List[Activity]:
    """Activities to render for ``day``; optionally also those from the previous evening."""
    timezone_name = _owner_timezone(owner_id, timezone_name)
    day_start, day_end = day_window(day, timezone_name)
    window_start = previous_evening_start(day, timezone_name) if include_previous_evening else day_start
    return list_window_activities(
        owner_id,
        window_start=window_start,
        day_start=day_start,
        day_end=day_end,
        descending=descending,
    )


def list_daily_stats(
    owner_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> List[DailyStat]:
    return list_stored_daily_stats(owner_id, start_date=start_date, end_date=end_date)


def yesterday(timezone_name: Optional[str] = None, now: Optional[datetime] = None) -> date:
    zone = resolve_zone(timezone_name)
    current = (now or datetime.now(timezone.utc)).astimezone(zone)
    return current.date() - timedelta(days=1)


def run_daily_stats_batch(
    target_date: Optional[date] = None,
    timezone_name: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> BatchReport:
    """Recompute one day's stats for every child; one failing owner never stops the rest."""
    timezone_name = timezone_name or CONFIG.stats_timezone
    target_date = target_date or yesterday(timezone_name, now)
    children = list_children()
    report = BatchReport(target_date=target_date, timezone=timezone_name, total_owners=len(children))

    for child in children:
        try:
            compute_daily_stat(child.id, target_date, child.timezone or timezone_name)
        except Exception as exc:
            logger.exception(
                "daily stat batch failed for owner",
                extra={"owner_id": child.id, "date": target_date.isoformat()},
            )
            report.failures.append(BatchFailure(owner_id=child.id, error=str(exc) or type(exc).__name__))
            report.failed_count += 1
        else:
            report.success_count += 1

    logger.info(
        "daily stat batch finished",
        extra={
            "date": target_date.isoformat(),
            "total_owners": report.total_owners,
            "success_count": report.success_count,
            "failed_count": report.failed_count,
        },
    )
    return report
