from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from babylog.main import app

client = TestClient(app)

OWNER = "child-1"
CRON_HEADERS = {"Authorization": "Bearer test-cron-secret"}


def _create(activity_type: str, start: str, end: str | None = None, owner_id: str = OWNER, **extra):
    body = {"owner_id": owner_id, "type": activity_type, "start_time": start, "end_time": end}
    body.update(extra)
    response = client.post("/api/v1/activities", json=body)
    assert response.status_code == 201, response.text
    return response.json()


def _stat(day: str, owner_id: str = OWNER) -> dict:
    response = client.post(
        "/api/v1/daily-stats",
        json={"owner_id": owner_id, "date": day, "timezone": "Asia/Shanghai"},
    )
    assert response.status_code == 200, response.text
    return response.json()


def test_sleep_is_split_across_two_days() -> None:
    _create("SLEEP", "2024-06-01T23:00:00+08:00", "2024-06-02T07:00:00+08:00")
    day0 = _stat("2024-06-01")
    day1 = _stat("2024-06-02")
    assert day0["minutes"]["SLEEP"] == 60
    assert day1["minutes"]["SLEEP"] == 420


def test_bottle_across_midnight_is_not_split() -> None:
    _create(
        "BOTTLE",
        "2024-06-01T23:50:00+08:00",
        "2024-06-02T00:10:00+08:00",
        fields={"milk_amount": 120},
    )
    day0 = _stat("2024-06-01")
    day1 = _stat("2024-06-02")
    assert day0["minutes"]["BOTTLE"] == 20
    assert day0["metrics"]["total_milk_amount"] == 120
    assert day1["minutes"]["BOTTLE"] == 0
    assert day1["counts"]["BOTTLE"] == 0


def test_recompute_is_idempotent() -> None:
    _create("SLEEP", "2024-06-02T13:00:00+08:00", "2024-06-02T14:30:00+08:00")
    _create("DIAPER", "2024-06-02T15:00:00+08:00", fields={"has_poop": True, "poop_color": "YELLOW"})
    first = _stat("2024-06-02")
    second = _stat("2024-06-02")
    assert first == second
    assert first["metrics"]["poop_count"] == 1

    stored = client.get(
        "/api/v1/daily-stats",
        params={"owner_id": OWNER, "start_date": "2024-06-01", "end_date": "2024-06-03"},
    )
    assert stored.status_code == 200
    assert stored.json() == [first]


def test_get_by_date_recomputes_after_edits() -> None:
    _create("BOTTLE", "2024-06-02T08:00:00+08:00", "2024-06-02T08:10:00+08:00", fields={"milk_amount": 60})
    before = client.get(
        "/api/v1/daily-stats/2024-06-02", params={"owner_id": OWNER, "timezone": "Asia/Shanghai"}
    ).json()
    assert before["metrics"]["total_milk_amount"] == 60

    _create("BOTTLE", "2024-06-02T11:00:00+08:00", "2024-06-02T11:10:00+08:00", fields={"milk_amount": 80})
    after = client.get(
        "/api/v1/daily-stats/2024-06-02", params={"owner_id": OWNER, "timezone": "Asia/Shanghai"}
    ).json()
    assert after["metrics"]["total_milk_amount"] == 140
    assert after["counts"]["BOTTLE"] == 2


def test_invalid_range_and_timezone_are_rejected() -> None:
    bad_range = client.get(
        "/api/v1/daily-stats",
        params={"owner_id": OWNER, "start_date": "2024-06-03", "end_date": "2024-06-01"},
    )
    assert bad_range.status_code == 400
    bad_zone = client.post(
        "/api/v1/daily-stats",
        json={"owner_id": OWNER, "date": "2024-06-02", "timezone": "Nowhere/Special"},
    )
    assert bad_zone.status_code == 400


def test_cron_requires_bearer_secret() -> None:
    assert client.get("/api/v1/cron/daily-stats-yesterday").status_code == 401
    wrong = client.get(
        "/api/v1/cron/daily-stats-yesterday", headers={"Authorization": "Bearer nope"}
    )
    assert wrong.status_code == 401


def test_cron_recomputes_every_child() -> None:
    first = client.post("/api/v1/children", json={"name": "Lev", "timezone": "Asia/Shanghai"}).json()
    second = client.post("/api/v1/children", json={"name": "Mia"}).json()
    assert second["timezone"] == "Asia/Shanghai"
    _create("SLEEP", "2024-06-01T23:00:00+08:00", "2024-06-02T07:00:00+08:00", owner_id=first["id"])

    response = client.get(
        "/api/v1/cron/daily-stats-yesterday", params={"date": "2024-06-02"}, headers=CRON_HEADERS
    )
    assert response.status_code == 200
    report = response.json()
    assert report["success"] is True
    assert report["total_owners"] == 2
    assert report["success_count"] == 2
    assert report["failures"] == []

    stored = client.get(
        "/api/v1/daily-stats",
        params={"owner_id": first["id"], "start_date": "2024-06-02", "end_date": "2024-06-02"},
    ).json()
    assert stored[0]["minutes"]["SLEEP"] == 420


def test_cron_reports_partial_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    good = client.post("/api/v1/children", json={"name": "Lev"}).json()
    bad = client.post("/api/v1/children", json={"name": "Mia"}).json()

    from babylog import daily_stats

    real_compute = daily_stats.compute_daily_stat

    def flaky_compute(owner_id, day, timezone_name=None):
        if owner_id == bad["id"]:
            raise RuntimeError("boom")
        return real_compute(owner_id, day, timezone_name)

    monkeypatch.setattr(daily_stats, "compute_daily_stat", flaky_compute)

    response = client.get(
        "/api/v1/cron/daily-stats-yesterday", params={"date": "2024-06-02"}, headers=CRON_HEADERS
    )
    assert response.status_code == 207
    report = response.json()
    assert report["success"] is False
    assert report["success_count"] == 1
    assert report["failed_count"] == 1
    assert report["failures"] == [{"owner_id": bad["id"], "error": "boom"}]
    assert good["id"] not in {item["owner_id"] for item in report["failures"]}


def test_children_registry() -> None:
    created = client.post("/api/v1/children", json={"name": "Lev", "timezone": "Europe/Berlin"})
    assert created.status_code == 201
    listed = client.get("/api/v1/children").json()
    assert [child["id"] for child in listed] == [created.json()["id"]]
    assert client.post("/api/v1/children", json={"name": "X", "timezone": "Bad/Zone"}).status_code == 400
