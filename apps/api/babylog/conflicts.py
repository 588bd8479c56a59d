"""Temporal conflict classification for exclusive activities."""
from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional, Tuple

from pydantic import BaseModel

from .db import find_exclusive_candidates
from .registry import get_policy
from .validation import NormalizedActivity

logger = logging.getLogger(__name__)


class ConflictKind(str, Enum):
    OK = "OK"
    DUPLICATE = "DUPLICATE"
    OVERLAP = "OVERLAP"


class ConflictOutcome(BaseModel):
    kind: ConflictKind
    conflicting_id: Optional[str] = None

    @classmethod
    def ok(cls) -> "ConflictOutcome":
        return cls(kind=ConflictKind.OK)

    @property
    def is_ok(self) -> bool:
        return self.kind is ConflictKind.OK


def effective_interval(
    start_time: datetime, end_time: Optional[datetime], now: datetime
) -> Tuple[datetime, datetime]:
    """Return ``[start, end)``; an open activity runs until ``now``."""
    if end_time is not None:
        return start_time, end_time
    return start_time, max(now, start_time)


def intervals_intersect(a: Tuple[datetime, datetime], b: Tuple[datetime, datetime]) -> bool:
    # Half-open: touching endpoints are not an overlap.
    return a[0] < b[1] and b[0] < a[1]


def _is_duplicate(candidate: NormalizedActivity, other) -> bool:
    if other.type != candidate.type:
        return False
    # Only one in-progress activity of a type may exist at a time.
    if candidate.end_time is None and other.end_time is None:
        return True
    return other.start_time == candidate.start_time and other.end_time == candidate.end_time


def classify_against(
    candidate: NormalizedActivity,
    existing: Iterable,
    now: Optional[datetime] = None,
    *,
    exclude_id: Optional[str] = None,
) -> ConflictOutcome:
    """Classify ``candidate`` against the owner's other activities without any I/O.

    Non-exclusive types never conflict. Among the exclusive activities that
    intersect the candidate, an exact copy (type, start and end) or a second
    in-progress activity of the same type wins over an ordinary overlap;
    otherwise the earliest-starting intersecting activity is reported as the
    overlap.
    """
    if not get_policy(candidate.type).is_exclusive:
        return ConflictOutcome.ok()

    now = now or datetime.now(timezone.utc)
    window = effective_interval(candidate.start_time, candidate.end_time, now)

    overlapping = []
    for other in existing:
        if exclude_id is not None and other.id == exclude_id:
            continue
        if other.owner_id != candidate.owner_id:
            continue
        if not get_policy(other.type).is_exclusive:
            continue
        if _is_duplicate(candidate, other):
            return ConflictOutcome(kind=ConflictKind.DUPLICATE, conflicting_id=other.id)
        if intervals_intersect(window, effective_interval(other.start_time, other.end_time, now)):
            overlapping.append(other)

    if overlapping:
        first = min(overlapping, key=lambda item: (item.start_time, item.id))
        return ConflictOutcome(kind=ConflictKind.OVERLAP, conflicting_id=first.id)
    return ConflictOutcome.ok()


def classify(
    owner_id: str,
    candidate: NormalizedActivity,
    exclude_id: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
    conn: Optional[sqlite3.Connection] = None,
) -> ConflictOutcome:
    """Classify ``candidate`` against what is stored for ``owner_id``."""
    if owner_id != candidate.owner_id:
        raise ValueError("candidate belongs to a different owner")
    if not get_policy(candidate.type).is_exclusive:
        return ConflictOutcome.ok()

    now = now or datetime.now(timezone.utc)
    start, end_bound = effective_interval(candidate.start_time, candidate.end_time, now)
    existing = find_exclusive_candidates(
        conn,
        owner_id=owner_id,
        activity_type=candidate.type.value,
        start_time=start,
        end_bound=end_bound,
        end_time=candidate.end_time,
        exclude_id=exclude_id,
    )
    outcome = classify_against(candidate, existing, now, exclude_id=exclude_id)
    if not outcome.is_ok:
        logger.info(
            "activity conflict detected",
            extra={
                "owner_id": owner_id,
                "type": candidate.type.value,
                "outcome": outcome.kind.value,
                "conflicting_id": outcome.conflicting_id,
            },
        )
    return outcome
