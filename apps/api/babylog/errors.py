"""Typed errors raised by the activity core and translated by the routes."""
from __future__ import annotations

from typing import Optional

from .schemas import Activity, FlowState

DUPLICATE_ACTIVITY = "DUPLICATE_ACTIVITY"
OVERLAP_ACTIVITY = "OVERLAP_ACTIVITY"


class ActivityValidationError(ValueError):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class ActivityNotFoundError(ValueError):
    def __init__(self, activity_id: str) -> None:
        super().__init__(f"Activity {activity_id} not found")
        self.activity_id = activity_id


class ActivityConflictError(Exception):
    """Raised when a write collides with an existing exclusive activity."""

    def __init__(
        self,
        code: str,
        conflicting_id: str,
        *,
        conflicting_activity: Optional[Activity] = None,
        message: Optional[str] = None,
    ) -> None:
        self.code = code
        self.conflicting_id = conflicting_id
        self.conflicting_activity = conflicting_activity
        self.message = message or _default_message(code, conflicting_activity)
        super().__init__(self.message)

    @property
    def forceable(self) -> bool:
        return self.code == OVERLAP_ACTIVITY

    def to_detail(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "conflicting_activity_id": self.conflicting_id,
            "conflicting_activity": (
                self.conflicting_activity.model_dump(mode="json") if self.conflicting_activity else None
            ),
            "state": (FlowState.CONFLICTED if self.forceable else FlowState.REJECTED).value,
        }


def _default_message(code: str, conflicting: Optional[Activity]) -> str:
    label = conflicting.type.value if conflicting else "activity"
    if code == DUPLICATE_ACTIVITY:
        return f"An identical {label} record already exists"
    return f"This time range overlaps an existing {label} record"
