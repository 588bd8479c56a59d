"""Pydantic schemas shared across the API."""
from __future__ import annotations

from datetime import date as date_type, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ActivityType(str, Enum):
    SLEEP = "SLEEP"
    BREASTFEED = "BREASTFEED"
    BOTTLE = "BOTTLE"
    PUMP = "PUMP"
    DIAPER = "DIAPER"
    HEAD_LIFT = "HEAD_LIFT"
    PASSIVE_EXERCISE = "PASSIVE_EXERCISE"
    GAS_EXERCISE = "GAS_EXERCISE"
    BATH = "BATH"
    OUTDOOR = "OUTDOOR"
    EARLY_EDUCATION = "EARLY_EDUCATION"
    SUPPLEMENT = "SUPPLEMENT"
    SPIT_UP = "SPIT_UP"
    ROLL_OVER = "ROLL_OVER"
    PULL_TO_SIT = "PULL_TO_SIT"


ACTIVITY_TYPE_LABELS = {
    ActivityType.SLEEP: "Sleep",
    ActivityType.BREASTFEED: "Breastfeed",
    ActivityType.BOTTLE: "Bottle feed",
    ActivityType.PUMP: "Pump",
    ActivityType.DIAPER: "Diaper change",
    ActivityType.HEAD_LIFT: "Head lift",
    ActivityType.PASSIVE_EXERCISE: "Passive exercise",
    ActivityType.GAS_EXERCISE: "Gas relief exercise",
    ActivityType.BATH: "Bath",
    ActivityType.OUTDOOR: "Outdoor time",
    ActivityType.EARLY_EDUCATION: "Early education",
    ActivityType.SUPPLEMENT: "Supplement",
    ActivityType.SPIT_UP: "Spit up",
    ActivityType.ROLL_OVER: "Roll over",
    ActivityType.PULL_TO_SIT: "Pull to sit",
}


class PoopColor(str, Enum):
    YELLOW = "YELLOW"
    GREEN = "GREEN"
    BROWN = "BROWN"
    BLACK = "BLACK"
    WHITE = "WHITE"
    RED = "RED"


class PeeAmount(str, Enum):
    SMALL = "SMALL"
    MEDIUM = "MEDIUM"
    LARGE = "LARGE"


class MilkSource(str, Enum):
    BREAST_MILK = "BREAST_MILK"
    FORMULA = "FORMULA"


class BreastFirmness(str, Enum):
    SOFT = "SOFT"
    ELASTIC = "ELASTIC"
    HARD = "HARD"


class SupplementType(str, Enum):
    AD = "AD"
    D3 = "D3"


class SpitUpType(str, Enum):
    NORMAL = "NORMAL"
    PROJECTILE = "PROJECTILE"


class FlowState(str, Enum):
    """Where a submitted write ended up."""

    CONFLICTED = "conflicted"
    COMMITTED = "committed"
    REJECTED = "rejected"


class ActivityFields(BaseModel):
    """Type-specific payload. Only presence and shape are checked here."""

    model_config = ConfigDict(extra="forbid")

    has_poop: Optional[bool] = None
    has_pee: Optional[bool] = None
    poop_color: Optional[PoopColor] = None
    poop_photo_url: Optional[str] = None
    pee_amount: Optional[PeeAmount] = None
    burp_success: Optional[bool] = None
    milk_amount: Optional[float] = Field(default=None, ge=0, description="Milk amount in ml")
    milk_source: Optional[MilkSource] = None
    breast_firmness: Optional[BreastFirmness] = None
    supplement_type: Optional[SupplementType] = None
    spit_up_type: Optional[SpitUpType] = None
    count: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=1000)


class Activity(BaseModel):
    id: str
    owner_id: str
    type: ActivityType
    start_time: datetime
    end_time: Optional[datetime] = None
    fields: ActivityFields = Field(default_factory=ActivityFields)
    created_at: datetime
    updated_at: datetime

    @property
    def is_open(self) -> bool:
        return self.end_time is None


class ActivityCandidate(BaseModel):
    """Unvalidated create/update input as it reaches the EventModel."""

    owner_id: str
    type: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    fields: ActivityFields = Field(default_factory=ActivityFields)


class CreateActivityPayload(BaseModel):
    owner_id: str = Field(..., min_length=1)
    type: str
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    fields: ActivityFields = Field(default_factory=ActivityFields)
    force: bool = False


class UpdateActivityPayload(BaseModel):
    type: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    fields: Optional[ActivityFields] = None
    force: bool = False


class BatchDeletePayload(BaseModel):
    owner_id: str = Field(..., min_length=1)
    ids: List[str] = Field(..., min_length=1)


class DailyStat(BaseModel):
    owner_id: str
    date: date_type
    timezone: str
    counts: Dict[str, int] = Field(default_factory=dict)
    minutes: Dict[str, int] = Field(default_factory=dict)
    category_counts: Dict[str, int] = Field(default_factory=dict)
    metrics: Dict[str, float] = Field(default_factory=dict)

    @property
    def total_sleep_minutes(self) -> int:
        return self.minutes.get(ActivityType.SLEEP.value, 0)


class ComputeDailyStatPayload(BaseModel):
    owner_id: str = Field(..., min_length=1)
    date: date_type
    timezone: Optional[str] = None


class ChildPayload(BaseModel):
    name: str = Field(..., min_length=1)
    timezone: Optional[str] = None


class Child(BaseModel):
    id: str
    name: str
    timezone: str
    created_at: datetime


class VoiceInputPayload(BaseModel):
    owner_id: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1, description="Transcribed caregiver speech")
    local_time: Optional[str] = Field(
        default=None, description="Caller's local wall-clock time, e.g. 2024-01-22 15:30"
    )


class VoiceInputResponse(BaseModel):
    success: bool = True
    need_confirmation: bool
    draft: Dict[str, Any]
    confidence: float
    activity: Optional[Activity] = None
