"""Per-type activity policies.

This table is the only place that knows how a given activity type behaves:
whether it is a point or a duration, whether it takes part in conflict
checks, how a midnight-crossing instance is attributed to days, and which
fields feed the daily counters. Validation, conflict classification and
daily aggregation all read from here instead of branching on types.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterator, Tuple

from .schemas import ActivityFields, ActivityType, SpitUpType, SupplementType


class Shape(str, Enum):
    POINT = "point"
    DURATION = "duration"


class Exclusivity(str, Enum):
    EXCLUSIVE = "exclusive"
    NON_EXCLUSIVE = "non_exclusive"


class DayAttribution(str, Enum):
    START_ANCHORED = "start_anchored"
    CLIPPED = "clipped"


@dataclass(frozen=True)
class FieldMetric:
    """A daily counter or sum read from an activity's fields."""

    name: str
    value: Callable[[ActivityFields], float]


@dataclass(frozen=True)
class EventTypePolicy:
    shape: Shape
    exclusivity: Exclusivity
    day_attribution: DayAttribution
    category: str
    field_metrics: Tuple[FieldMetric, ...] = ()
    required_fields: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_point(self) -> bool:
        return self.shape is Shape.POINT

    @property
    def is_exclusive(self) -> bool:
        return self.exclusivity is Exclusivity.EXCLUSIVE


def _flag(attr: str) -> Callable[[ActivityFields], float]:
    return lambda fields: 1.0 if getattr(fields, attr) else 0.0


def _equals(attr: str, expected: object) -> Callable[[ActivityFields], float]:
    return lambda fields: 1.0 if getattr(fields, attr) == expected else 0.0


def _amount(attr: str) -> Callable[[ActivityFields], float]:
    return lambda fields: float(getattr(fields, attr) or 0)


def _point(category: str, *metrics: FieldMetric, required: Tuple[str, ...] = ()) -> EventTypePolicy:
    return EventTypePolicy(
        shape=Shape.POINT,
        exclusivity=Exclusivity.NON_EXCLUSIVE,
        day_attribution=DayAttribution.START_ANCHORED,
        category=category,
        field_metrics=metrics,
        required_fields=required,
    )


def _exclusive(category: str, *metrics: FieldMetric, clipped: bool = False) -> EventTypePolicy:
    return EventTypePolicy(
        shape=Shape.DURATION,
        exclusivity=Exclusivity.EXCLUSIVE,
        day_attribution=DayAttribution.CLIPPED if clipped else DayAttribution.START_ANCHORED,
        category=category,
        field_metrics=metrics,
    )


def _ambient(category: str) -> EventTypePolicy:
    return EventTypePolicy(
        shape=Shape.DURATION,
        exclusivity=Exclusivity.NON_EXCLUSIVE,
        day_attribution=DayAttribution.START_ANCHORED,
        category=category,
    )


POLICIES: Dict[ActivityType, EventTypePolicy] = {
    ActivityType.SLEEP: _exclusive("sleep", clipped=True),
    ActivityType.BREASTFEED: _exclusive("feeding"),
    ActivityType.BOTTLE: _exclusive("feeding", FieldMetric("total_milk_amount", _amount("milk_amount"))),
    ActivityType.PUMP: _exclusive("feeding", FieldMetric("total_pump_milk_amount", _amount("milk_amount"))),
    ActivityType.HEAD_LIFT: _exclusive("exercise"),
    ActivityType.PASSIVE_EXERCISE: _ambient("exercise"),
    ActivityType.GAS_EXERCISE: _ambient("exercise"),
    ActivityType.BATH: _ambient("exercise"),
    ActivityType.OUTDOOR: _ambient("exercise"),
    ActivityType.EARLY_EDUCATION: _ambient("exercise"),
    ActivityType.DIAPER: _point(
        "diaper",
        FieldMetric("poop_count", _flag("has_poop")),
        FieldMetric("pee_count", _flag("has_pee")),
    ),
    ActivityType.SUPPLEMENT: _point(
        "supplement",
        FieldMetric("supplement_ad_count", _equals("supplement_type", SupplementType.AD)),
        FieldMetric("supplement_d3_count", _equals("supplement_type", SupplementType.D3)),
        required=("supplement_type",),
    ),
    ActivityType.SPIT_UP: _point(
        "spit_up",
        FieldMetric("projectile_spit_up_count", _equals("spit_up_type", SpitUpType.PROJECTILE)),
    ),
    ActivityType.ROLL_OVER: _point("milestone"),
    ActivityType.PULL_TO_SIT: _point("milestone"),
}


def resolve_type(value: object) -> ActivityType:
    """Return the registered ActivityType for ``value`` or raise KeyError."""
    try:
        activity_type = ActivityType(value)
    except ValueError as exc:
        raise KeyError(value) from exc
    if activity_type not in POLICIES:
        raise KeyError(value)
    return activity_type


def get_policy(activity_type: object) -> EventTypePolicy:
    return POLICIES[resolve_type(activity_type)]


def exclusive_types() -> Tuple[ActivityType, ...]:
    return tuple(t for t, policy in POLICIES.items() if policy.is_exclusive)


def point_types() -> Tuple[ActivityType, ...]:
    return tuple(t for t, policy in POLICIES.items() if policy.is_point)


def iter_policies() -> Iterator[Tuple[ActivityType, EventTypePolicy]]:
    """Yield (type, policy) pairs in registry order."""
    yield from POLICIES.items()


def metric_names() -> Tuple[str, ...]:
    names = []
    for _, policy in iter_policies():
        for metric in policy.field_metrics:
            if metric.name not in names:
                names.append(metric.name)
    return tuple(names)


def category_names() -> Tuple[str, ...]:
    names = []
    for _, policy in iter_policies():
        if policy.category not in names:
            names.append(policy.category)
    return tuple(names)
