"""Create, update and delete activities with the confirm-to-override step.

A submission is validated, classified against the owner's exclusive
activities and written inside one ``BEGIN IMMEDIATE`` transaction, so two
racing submissions cannot both pass the check. An overlap sends the flow to
``CONFLICTED``; the client may resubmit with ``force=True`` to commit anyway.
Duplicates are rejected even when forced.
"""
from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel

from .audit import AuditAction, AuditRecord, InputMethod, emit_audit, snapshot
from .conflicts import ConflictKind, classify
from .db import delete_activity as delete_activity_row
from .db import (
    find_open_activity,
    get_activity,
    insert_activity,
    list_activities_by_ids,
    update_activity,
    write_transaction,
)
from .errors import (
    DUPLICATE_ACTIVITY,
    OVERLAP_ACTIVITY,
    ActivityConflictError,
    ActivityNotFoundError,
)
from .schemas import (
    ACTIVITY_TYPE_LABELS,
    Activity,
    ActivityCandidate,
    CreateActivityPayload,
    FlowState,
    UpdateActivityPayload,
)
from .registry import get_policy
from .validation import NormalizedActivity, validate_and_normalize

logger = logging.getLogger(__name__)


class FlowResult(BaseModel):
    state: FlowState
    activity: Activity
    forced_over_id: Optional[str] = None


def _check_conflicts(
    conn: sqlite3.Connection,
    normalized: NormalizedActivity,
    *,
    exclude_id: Optional[str],
    force: bool,
    now: datetime,
) -> Optional[str]:
    """Raise on a blocking conflict; return the overlapped id when ``force`` lets it through."""
    outcome = classify(normalized.owner_id, normalized, exclude_id, now=now, conn=conn)
    if outcome.kind is ConflictKind.OK:
        return None
    conflicting = get_activity(outcome.conflicting_id, conn=conn)
    if outcome.kind is ConflictKind.DUPLICATE:
        raise ActivityConflictError(
            DUPLICATE_ACTIVITY, outcome.conflicting_id, conflicting_activity=conflicting
        )
    if not force:
        raise ActivityConflictError(
            OVERLAP_ACTIVITY, outcome.conflicting_id, conflicting_activity=conflicting
        )
    logger.info(
        "overlap accepted by force",
        extra={
            "owner_id": normalized.owner_id,
            "type": normalized.type.value,
            "conflicting_id": outcome.conflicting_id,
        },
    )
    return outcome.conflicting_id


def _storage_conflict(
    normalized: NormalizedActivity, exclude_id: Optional[str]
) -> Optional[ActivityConflictError]:
    """Name the row that made a racing write trip a unique index."""
    existing = None
    if normalized.end_time is None:
        existing = find_open_activity(
            None,
            owner_id=normalized.owner_id,
            activity_type=normalized.type.value,
            exclude_id=exclude_id,
        )
    if existing is None:
        outcome = classify(normalized.owner_id, normalized, exclude_id)
        if outcome.conflicting_id is not None:
            existing = get_activity(outcome.conflicting_id)
    if existing is None:
        return None
    return ActivityConflictError(DUPLICATE_ACTIVITY, existing.id, conflicting_activity=existing)


def _describe(activity: Activity) -> str:
    return f"{ACTIVITY_TYPE_LABELS[activity.type]} at {activity.start_time.isoformat()}"


def submit_create(
    payload: CreateActivityPayload,
    *,
    actor_id: Optional[str] = None,
    input_method: InputMethod = InputMethod.TEXT,
    input_text: Optional[str] = None,
    now: Optional[datetime] = None,
) -> FlowResult:
    now = now or datetime.now(timezone.utc)
    candidate = ActivityCandidate(
        owner_id=payload.owner_id,
        type=payload.type,
        start_time=payload.start_time,
        end_time=payload.end_time,
        fields=payload.fields,
    )
    normalized = validate_and_normalize(candidate, mode="create", now=now)

    try:
        with write_transaction() as conn:
            forced_over_id = _check_conflicts(
                conn, normalized, exclude_id=None, force=payload.force, now=now
            )
            activity = insert_activity(
                conn,
                owner_id=normalized.owner_id,
                activity_type=normalized.type.value,
                start_time=normalized.start_time,
                end_time=normalized.end_time,
                fields=normalized.fields,
            )
    except sqlite3.IntegrityError:
        conflict = _storage_conflict(normalized, None)
        if conflict is None:
            raise
        raise conflict from None

    logger.info(
        "activity created",
        extra={
            "activity_id": activity.id,
            "owner_id": activity.owner_id,
            "type": activity.type.value,
            "forced": forced_over_id is not None,
        },
    )
    emit_audit(
        AuditRecord(
            action=AuditAction.CREATE,
            resource_id=activity.id,
            owner_id=activity.owner_id,
            actor_id=actor_id,
            input_method=input_method,
            input_text=input_text,
            description=f"Logged {_describe(activity)}",
            after=snapshot(activity),
        )
    )
    return FlowResult(state=FlowState.COMMITTED, activity=activity, forced_over_id=forced_over_id)


def _merge_update(
    previous: Activity, payload: UpdateActivityPayload
) -> Tuple[ActivityCandidate, bool]:
    """Overlay the sent keys on the stored activity; also report whether the end was cleared."""
    sent = payload.model_fields_set
    activity_type = payload.type if payload.type is not None else previous.type.value
    if "end_time" in sent:
        end_time = payload.end_time
        clears_end = payload.end_time is None
    elif get_policy(previous.type).is_point and not _is_point_type(activity_type):
        # A point turned into a duration has no real end yet.
        end_time = None
        clears_end = True
    else:
        end_time = previous.end_time
        clears_end = False
    fields = previous.fields
    if payload.fields is not None:
        fields = previous.fields.model_copy(
            update=payload.fields.model_dump(include=payload.fields.model_fields_set)
        )
    candidate = ActivityCandidate(
        owner_id=previous.owner_id,
        type=activity_type,
        start_time=payload.start_time if payload.start_time is not None else previous.start_time,
        end_time=end_time,
        fields=fields,
    )
    return candidate, clears_end


def _is_point_type(activity_type: str) -> bool:
    try:
        return get_policy(activity_type).is_point
    except KeyError:
        return False


def submit_update(
    activity_id: str,
    payload: UpdateActivityPayload,
    *,
    owner_id: Optional[str] = None,
    actor_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> FlowResult:
    """Apply a partial update. Sending ``end_time: null`` explicitly reopens a duration."""
    now = now or datetime.now(timezone.utc)
    normalized: Optional[NormalizedActivity] = None

    try:
        with write_transaction() as conn:
            previous = get_activity(activity_id, owner_id=owner_id, conn=conn)
            if previous is None:
                raise ActivityNotFoundError(activity_id)
            candidate, clears_end = _merge_update(previous, payload)
            normalized = validate_and_normalize(
                candidate,
                mode="update",
                previous=previous,
                clears_end=clears_end,
                now=now,
            )
            forced_over_id = _check_conflicts(
                conn, normalized, exclude_id=activity_id, force=payload.force, now=now
            )
            activity = update_activity(
                conn,
                activity_id,
                activity_type=normalized.type.value,
                start_time=normalized.start_time,
                end_time=normalized.end_time,
                fields=normalized.fields,
            )
    except sqlite3.IntegrityError:
        conflict = _storage_conflict(normalized, activity_id) if normalized else None
        if conflict is None:
            raise
        raise conflict from None

    logger.info(
        "activity updated",
        extra={
            "activity_id": activity.id,
            "owner_id": activity.owner_id,
            "type": activity.type.value,
            "forced": forced_over_id is not None,
        },
    )
    emit_audit(
        AuditRecord(
            action=AuditAction.UPDATE,
            resource_id=activity.id,
            owner_id=activity.owner_id,
            actor_id=actor_id,
            description=f"Updated {_describe(activity)}",
            before=snapshot(previous),
            after=snapshot(activity),
        )
    )
    return FlowResult(state=FlowState.COMMITTED, activity=activity, forced_over_id=forced_over_id)


def delete_activity(
    activity_id: str,
    *,
    owner_id: Optional[str] = None,
    actor_id: Optional[str] = None,
) -> Activity:
    with write_transaction() as conn:
        existing = get_activity(activity_id, owner_id=owner_id, conn=conn)
        if existing is None:
            raise ActivityNotFoundError(activity_id)
        delete_activity_row(conn, activity_id)

    logger.info(
        "activity deleted",
        extra={"activity_id": activity_id, "owner_id": existing.owner_id},
    )
    emit_audit(
        AuditRecord(
            action=AuditAction.DELETE,
            resource_id=activity_id,
            owner_id=existing.owner_id,
            actor_id=actor_id,
            description=f"Deleted {_describe(existing)}",
            before=snapshot(existing),
        )
    )
    return existing


def delete_activities(
    owner_id: str,
    activity_ids: Iterable[str],
    *,
    actor_id: Optional[str] = None,
) -> List[Activity]:
    """Delete every listed activity that belongs to ``owner_id``; unknown ids are skipped."""
    removed: List[Activity] = []
    with write_transaction() as conn:
        for existing in list_activities_by_ids(owner_id, list(dict.fromkeys(activity_ids)), conn=conn):
            if delete_activity_row(conn, existing.id):
                removed.append(existing)

    logger.info(
        "activities batch deleted",
        extra={"owner_id": owner_id, "count": len(removed)},
    )
    for activity in removed:
        emit_audit(
            AuditRecord(
                action=AuditAction.DELETE,
                resource_id=activity.id,
                owner_id=owner_id,
                actor_id=actor_id,
                description=f"Deleted {_describe(activity)}",
                before=snapshot(activity),
            )
        )
    return removed
