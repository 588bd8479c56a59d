from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from babylog.main import app
from babylog.schemas import FlowState

client = TestClient(app)

OWNER = "child-1"


def _create(activity_type: str, start: str, end: str | None = None, **extra):
    body = {"owner_id": OWNER, "type": activity_type, "start_time": start}
    if end is not None:
        body["end_time"] = end
    body.update(extra)
    return client.post("/api/v1/activities", json=body)


def test_create_returns_normalized_activity() -> None:
    response = _create(
        "BOTTLE",
        "2024-06-02T08:00:00+08:00",
        "2024-06-02T08:20:00+08:00",
        fields={"milk_amount": 90, "milk_source": "FORMULA"},
    )
    assert response.status_code == 201
    data = response.json()
    assert data["type"] == "BOTTLE"
    assert data["owner_id"] == OWNER
    start = datetime.fromisoformat(data["start_time"].replace("Z", "+00:00"))
    assert start == datetime(2024, 6, 2, 0, 0, tzinfo=timezone.utc)
    assert data["fields"]["milk_amount"] == 90


def test_validation_errors_return_400_with_code() -> None:
    missing_start = client.post("/api/v1/activities", json={"owner_id": OWNER, "type": "BOTTLE"})
    assert missing_start.status_code == 400
    assert missing_start.json()["detail"]["code"] == "MISSING_START_TIME"

    bad_type = _create("NAP", "2024-06-02T08:00:00+08:00")
    assert bad_type.json()["detail"]["code"] == "INVALID_TYPE"

    reversed_range = _create("SLEEP", "2024-06-02T08:00:00+08:00", "2024-06-02T07:00:00+08:00")
    assert reversed_range.status_code == 400
    assert reversed_range.json()["detail"]["code"] == "INVALID_TIME_RANGE"

    future = (datetime.now(timezone.utc) + timedelta(hours=2)).isoformat()
    assert _create("DIAPER", future).json()["detail"]["code"] == "FUTURE_TIME"


def test_duplicate_bottle_is_rejected_even_when_forced() -> None:
    first = _create("BOTTLE", "2024-06-02T08:00:00+08:00", "2024-06-02T08:20:00+08:00")
    assert first.status_code == 201

    duplicate = _create("BOTTLE", "2024-06-02T08:00:00+08:00", "2024-06-02T08:20:00+08:00")
    assert duplicate.status_code == 409
    detail = duplicate.json()["detail"]
    assert detail["code"] == "DUPLICATE_ACTIVITY"
    assert detail["conflicting_activity_id"] == first.json()["id"]
    assert detail["state"] == FlowState.REJECTED.value

    forced = _create(
        "BOTTLE", "2024-06-02T08:00:00+08:00", "2024-06-02T08:20:00+08:00", force=True
    )
    assert forced.status_code == 409
    assert forced.json()["detail"]["code"] == "DUPLICATE_ACTIVITY"


def test_overlap_requires_force_to_commit() -> None:
    bottle = _create("BOTTLE", "2024-06-02T08:00:00+08:00", "2024-06-02T08:30:00+08:00")
    assert bottle.status_code == 201

    attempt = _create("BREASTFEED", "2024-06-02T08:15:00+08:00", "2024-06-02T08:45:00+08:00")
    assert attempt.status_code == 409
    detail = attempt.json()["detail"]
    assert detail["code"] == "OVERLAP_ACTIVITY"
    assert detail["conflicting_activity_id"] == bottle.json()["id"]
    assert detail["conflicting_activity"]["type"] == "BOTTLE"
    assert detail["state"] == FlowState.CONFLICTED.value

    forced = _create(
        "BREASTFEED", "2024-06-02T08:15:00+08:00", "2024-06-02T08:45:00+08:00", force=True
    )
    assert forced.status_code == 201
    assert forced.json()["type"] == "BREASTFEED"


def test_sleep_over_outdoor_needs_no_confirmation() -> None:
    assert _create("OUTDOOR", "2024-06-02T10:00:00+08:00", "2024-06-02T11:00:00+08:00").status_code == 201
    sleep = _create("SLEEP", "2024-06-02T10:15:00+08:00", "2024-06-02T10:45:00+08:00")
    assert sleep.status_code == 201
    outdoor = _create("OUTDOOR", "2024-06-02T10:30:00+08:00", "2024-06-02T10:50:00+08:00")
    assert outdoor.status_code == 201


def test_sleep_over_head_lift_is_overlap() -> None:
    assert _create("HEAD_LIFT", "2024-06-02T10:00:00+08:00", "2024-06-02T10:10:00+08:00").status_code == 201
    sleep = _create("SLEEP", "2024-06-02T10:05:00+08:00", "2024-06-02T11:00:00+08:00")
    assert sleep.status_code == 409
    assert sleep.json()["detail"]["code"] == "OVERLAP_ACTIVITY"


def test_diapers_at_same_instant_never_conflict() -> None:
    first = _create("DIAPER", "2024-06-02T09:00:00+08:00", fields={"has_pee": True})
    second = _create("DIAPER", "2024-06-02T09:00:00+08:00", fields={"has_pee": True})
    assert first.status_code == 201
    assert second.status_code == 201
    assert first.json()["end_time"] == first.json()["start_time"]


def test_second_open_sleep_is_rejected_even_when_forced() -> None:
    first = _create("SLEEP", "2024-06-02T20:00:00+08:00")
    assert first.status_code == 201
    assert first.json()["end_time"] is None

    second = _create("SLEEP", "2024-06-02T21:00:00+08:00")
    assert second.status_code == 409
    detail = second.json()["detail"]
    assert detail["code"] == "DUPLICATE_ACTIVITY"
    assert detail["state"] == FlowState.REJECTED.value
    assert detail["conflicting_activity_id"] == first.json()["id"]

    forced = _create("SLEEP", "2024-06-02T21:00:00+08:00", force=True)
    assert forced.status_code == 409
    assert forced.json()["detail"]["code"] == "DUPLICATE_ACTIVITY"


def test_racing_duplicate_insert_reports_duplicate(monkeypatch: pytest.MonkeyPatch) -> None:
    first = _create("PUMP", "2024-06-02T06:00:00+08:00", "2024-06-02T06:20:00+08:00")
    assert first.status_code == 201

    # Simulate a writer that passed the conflict scan before the first row landed.
    monkeypatch.setattr("babylog.confirmation._check_conflicts", lambda *args, **kwargs: None)
    second = _create("PUMP", "2024-06-02T06:00:00+08:00", "2024-06-02T06:20:00+08:00")
    assert second.status_code == 409
    assert second.json()["detail"]["code"] == "DUPLICATE_ACTIVITY"
    assert second.json()["detail"]["conflicting_activity_id"] == first.json()["id"]


def test_update_excludes_itself_and_detects_overlap() -> None:
    sleep = _create("SLEEP", "2024-06-02T13:00:00+08:00", "2024-06-02T14:00:00+08:00").json()
    bottle = _create("BOTTLE", "2024-06-02T14:30:00+08:00", "2024-06-02T14:45:00+08:00").json()

    stretched = client.patch(
        f"/api/v1/activities/{sleep['id']}", json={"end_time": "2024-06-02T14:15:00+08:00"}
    )
    assert stretched.status_code == 200

    clash = client.patch(
        f"/api/v1/activities/{sleep['id']}", json={"end_time": "2024-06-02T14:40:00+08:00"}
    )
    assert clash.status_code == 409
    assert clash.json()["detail"]["conflicting_activity_id"] == bottle["id"]

    forced = client.patch(
        f"/api/v1/activities/{sleep['id']}",
        json={"end_time": "2024-06-02T14:40:00+08:00", "force": True},
    )
    assert forced.status_code == 200


def test_update_can_reopen_only_by_explicit_null() -> None:
    sleep = _create("SLEEP", "2024-06-02T13:00:00+08:00", "2024-06-02T14:00:00+08:00").json()

    notes_only = client.patch(f"/api/v1/activities/{sleep['id']}", json={"fields": {"notes": "fussy"}})
    assert notes_only.status_code == 200
    assert notes_only.json()["end_time"] is not None
    assert notes_only.json()["fields"]["notes"] == "fussy"

    reopened = client.patch(f"/api/v1/activities/{sleep['id']}", json={"end_time": None})
    assert reopened.status_code == 200
    assert reopened.json()["end_time"] is None


def test_update_of_point_activity_keeps_end_equal_start() -> None:
    diaper = _create("DIAPER", "2024-06-02T09:00:00+08:00", fields={"has_pee": True}).json()
    moved = client.patch(
        f"/api/v1/activities/{diaper['id']}",
        json={"start_time": "2024-06-02T09:30:00+08:00", "end_time": "2024-06-02T10:00:00+08:00"},
    )
    assert moved.status_code == 200
    assert moved.json()["end_time"] == moved.json()["start_time"]
    assert moved.json()["fields"]["has_pee"] is True


def test_point_retyped_as_duration_starts_open() -> None:
    diaper = _create("DIAPER", "2024-06-02T09:00:00+08:00").json()
    retyped = client.patch(f"/api/v1/activities/{diaper['id']}", json={"type": "BOTTLE"})
    assert retyped.status_code == 200
    assert retyped.json()["type"] == "BOTTLE"
    assert retyped.json()["end_time"] is None


def test_update_and_delete_unknown_activity_return_404() -> None:
    assert client.patch("/api/v1/activities/missing", json={"force": True}).status_code == 404
    assert client.delete("/api/v1/activities/missing").status_code == 404
    assert client.get("/api/v1/activities/missing").status_code == 404


def test_delete_and_batch_delete() -> None:
    first = _create("DIAPER", "2024-06-02T09:00:00+08:00").json()
    second = _create("DIAPER", "2024-06-02T10:00:00+08:00").json()
    third = _create("DIAPER", "2024-06-02T11:00:00+08:00").json()

    removed = client.delete(f"/api/v1/activities/{first['id']}")
    assert removed.status_code == 200
    assert removed.json() == {"success": True, "count": 1}

    batch = client.post(
        "/api/v1/activities/batch-delete",
        json={"owner_id": OWNER, "ids": [second["id"], third["id"], "missing", second["id"]]},
    )
    assert batch.status_code == 200
    assert batch.json()["count"] == 2
    assert client.get(f"/api/v1/activities/{third['id']}").status_code == 404


def test_batch_delete_is_owner_scoped() -> None:
    mine = _create("DIAPER", "2024-06-02T09:00:00+08:00").json()
    batch = client.post("/api/v1/activities/batch-delete", json={"owner_id": "child-2", "ids": [mine["id"]]})
    assert batch.json()["count"] == 0
    assert client.get(f"/api/v1/activities/{mine['id']}").status_code == 200


def test_list_and_latest_activities() -> None:
    evening = _create("BOTTLE", "2024-06-01T19:00:00+08:00", "2024-06-01T19:10:00+08:00").json()
    morning = _create("BOTTLE", "2024-06-02T07:00:00+08:00", "2024-06-02T07:10:00+08:00").json()
    diaper = _create("DIAPER", "2024-06-02T08:00:00+08:00").json()

    day = client.get(
        "/api/v1/activities",
        params={"owner_id": OWNER, "date": "2024-06-02", "timezone": "Asia/Shanghai"},
    )
    assert day.status_code == 200
    assert [item["id"] for item in day.json()] == [diaper["id"], morning["id"]]

    with_evening = client.get(
        "/api/v1/activities",
        params={
            "owner_id": OWNER,
            "date": "2024-06-02",
            "timezone": "Asia/Shanghai",
            "include_previous_evening": True,
            "order": "asc",
        },
    )
    assert [item["id"] for item in with_evening.json()] == [evening["id"], morning["id"], diaper["id"]]

    latest = client.get("/api/v1/activities/latest", params={"owner_id": OWNER, "types": "BOTTLE,PUMP"})
    assert latest.status_code == 200
    assert latest.json()["id"] == morning["id"]

    unknown = client.get("/api/v1/activities/latest", params={"owner_id": OWNER, "types": "NAP"})
    assert unknown.status_code == 400


def test_health() -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_activity_types_lists_registry() -> None:
    types = {item["type"]: item for item in client.get("/api/v1/activity-types").json()}
    assert types["SLEEP"]["day_attribution"] == "clipped"
    assert types["OUTDOOR"]["exclusivity"] == "non_exclusive"
    assert types["DIAPER"]["shape"] == "point"
