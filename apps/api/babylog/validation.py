"""Shape and field validation for a single activity record.

Nothing here touches storage or looks at other activities; temporal
conflicts are handled by ``conflicts.classify``.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field

from .config import CONFIG
from .errors import ActivityValidationError
from .registry import get_policy, resolve_type
from .schemas import Activity, ActivityCandidate, ActivityFields, ActivityType


class NormalizedActivity(BaseModel):
    owner_id: str
    type: ActivityType
    start_time: datetime
    end_time: Optional[datetime] = None
    fields: ActivityFields = Field(default_factory=ActivityFields)

    @property
    def is_open(self) -> bool:
        return self.end_time is None


def _require_aware(value: datetime, label: str) -> datetime:
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        raise ActivityValidationError("NAIVE_TIMESTAMP", f"{label} must include a UTC offset")
    return value.astimezone(timezone.utc)


def validate_and_normalize(
    candidate: ActivityCandidate,
    *,
    mode: Literal["create", "update"] = "create",
    previous: Optional[Activity] = None,
    clears_end: bool = False,
    now: Optional[datetime] = None,
    future_tolerance: Optional[timedelta] = None,
) -> NormalizedActivity:
    """Validate ``candidate`` against its type policy and return the normalized record.

    Point types always come back with ``end_time == start_time``. A duration
    without an end is an in-progress activity: fine on create, and on update
    only when the caller cleared the end or the stored activity was already open.
    """

    if candidate.start_time is None:
        raise ActivityValidationError("MISSING_START_TIME", "start_time is required")
    try:
        activity_type = resolve_type(candidate.type)
    except KeyError:
        raise ActivityValidationError("INVALID_TYPE", f"Unknown activity type: {candidate.type}") from None
    policy = get_policy(activity_type)

    start_time = _require_aware(candidate.start_time, "start_time")

    if policy.is_point:
        end_time = start_time
    else:
        end_time = _require_aware(candidate.end_time, "end_time") if candidate.end_time else None
    if end_time is None and mode == "update":
        already_open = previous is not None and previous.end_time is None
        if not (clears_end or already_open):
            raise ActivityValidationError(
                "OPEN_END_NOT_ALLOWED",
                "end_time can only be removed by explicitly clearing it",
            )

    if end_time is not None and end_time < start_time:
        raise ActivityValidationError("INVALID_TIME_RANGE", "end_time must not be before start_time")

    now = now or datetime.now(timezone.utc)
    if future_tolerance is None:
        future_tolerance = timedelta(minutes=CONFIG.future_tolerance_minutes)
    latest_allowed = now + future_tolerance
    if start_time > latest_allowed:
        raise ActivityValidationError("FUTURE_TIME", "Activities cannot start in the future")
    if end_time is not None and end_time > latest_allowed:
        raise ActivityValidationError("FUTURE_TIME", "Activities cannot end in the future")

    for name in policy.required_fields:
        if getattr(candidate.fields, name) is None:
            raise ActivityValidationError(
                "MISSING_FIELD", f"{name} is required for {activity_type.value}"
            )

    return NormalizedActivity(
        owner_id=candidate.owner_id,
        type=activity_type,
        start_time=start_time,
        end_time=end_time,
        fields=candidate.fields,
    )
