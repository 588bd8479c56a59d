"""SQLite helpers."""
from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Iterator, List, Optional, Sequence
from uuid import uuid4

from .config import CONFIG
from .registry import exclusive_types
from .schemas import Activity, ActivityFields, Child, DailyStat

_DB_PATH = CONFIG.resolved_database_path
_DB_PATH.parent.mkdir(parents=True, exist_ok=True)

_BUSY_TIMEOUT_SECONDS = 10.0


def _ts(value: datetime) -> str:
    """Fixed-width UTC ISO string so lexical order matches chronological order."""
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return _ts(datetime.now(tz=timezone.utc))


def _exclusive_type_list() -> str:
    return ", ".join(f"'{activity_type.value}'" for activity_type in exclusive_types())


def initialize_db() -> None:
    with sqlite3.connect(_DB_PATH) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS children (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                timezone TEXT NOT NULL,
                created_at TEXT NOT NULL
            );
            """
        )

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS activities (
                id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                type TEXT NOT NULL,
                start_time TEXT NOT NULL,
                end_time TEXT,
                fields_json TEXT NOT NULL DEFAULT '{}',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE INDEX IF NOT EXISTS activities_owner_start
            ON activities (owner_id, start_time)
            """
        )
        # An exact copy of an exclusive activity can never be stored twice.
        conn.execute(
            f"""
            CREATE UNIQUE INDEX IF NOT EXISTS activities_exclusive_exact
            ON activities (owner_id, type, start_time, end_time)
            WHERE type IN ({_exclusive_type_list()})
            """
        )
        # At most one in-progress activity per exclusive type per owner.
        conn.execute(
            f"""
            CREATE UNIQUE INDEX IF NOT EXISTS activities_exclusive_open
            ON activities (owner_id, type)
            WHERE end_time IS NULL AND type IN ({_exclusive_type_list()})
            """
        )

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS daily_stats (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner_id TEXT NOT NULL,
                date TEXT NOT NULL,
                timezone TEXT NOT NULL,
                stats_json TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE(owner_id, date)
            );
            """
        )

        conn.commit()


@contextmanager
def get_connection() -> Iterator[sqlite3.Connection]:
    conn = sqlite3.connect(_DB_PATH, timeout=_BUSY_TIMEOUT_SECONDS)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def write_transaction() -> Iterator[sqlite3.Connection]:
    """Serialize a read-then-write sequence behind SQLite's reserved write lock."""
    conn = sqlite3.connect(_DB_PATH, timeout=_BUSY_TIMEOUT_SECONDS, isolation_level=None)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    finally:
        conn.close()


@contextmanager
def _use_connection(conn: Optional[sqlite3.Connection]) -> Iterator[sqlite3.Connection]:
    if conn is not None:
        yield conn
        return
    with get_connection() as owned:
        yield owned


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _row_to_activity(row: sqlite3.Row) -> Activity:
    return Activity(
        id=row["id"],
        owner_id=row["owner_id"],
        type=row["type"],
        start_time=datetime.fromisoformat(row["start_time"]),
        end_time=_parse_ts(row["end_time"]),
        fields=ActivityFields(**json.loads(row["fields_json"] or "{}")),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _fields_json(fields: ActivityFields) -> str:
    return json.dumps(fields.model_dump(mode="json", exclude_none=True), ensure_ascii=False)


def insert_activity(
    conn: sqlite3.Connection,
    *,
    owner_id: str,
    activity_type: str,
    start_time: datetime,
    end_time: Optional[datetime],
    fields: ActivityFields,
) -> Activity:
    activity_id = uuid4().hex
    now = _now_iso()
    conn.execute(
        """
        INSERT INTO activities (
            id,
            owner_id,
            type,
            start_time,
            end_time,
            fields_json,
            created_at,
            updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            activity_id,
            owner_id,
            activity_type,
            _ts(start_time),
            _ts(end_time) if end_time else None,
            _fields_json(fields),
            now,
            now,
        ),
    )
    activity = get_activity(activity_id, conn=conn)
    assert activity is not None
    return activity


def update_activity(
    conn: sqlite3.Connection,
    activity_id: str,
    *,
    activity_type: str,
    start_time: datetime,
    end_time: Optional[datetime],
    fields: ActivityFields,
) -> Activity:
    cursor = conn.execute(
        """
        UPDATE activities
        SET type = ?,
            start_time = ?,
            end_time = ?,
            fields_json = ?,
            updated_at = ?
        WHERE id = ?
        """,
        (
            activity_type,
            _ts(start_time),
            _ts(end_time) if end_time else None,
            _fields_json(fields),
            _now_iso(),
            activity_id,
        ),
    )
    if cursor.rowcount == 0:
        raise ValueError(f"Activity {activity_id} not found")
    activity = get_activity(activity_id, conn=conn)
    assert activity is not None
    return activity


def delete_activity(conn: sqlite3.Connection, activity_id: str) -> bool:
    cursor = conn.execute("DELETE FROM activities WHERE id = ?", (activity_id,))
    return cursor.rowcount > 0


def get_activity(
    activity_id: str,
    *,
    owner_id: Optional[str] = None,
    conn: Optional[sqlite3.Connection] = None,
) -> Optional[Activity]:
    query = "SELECT * FROM activities WHERE id = ?"
    params: list = [activity_id]
    if owner_id is not None:
        query += " AND owner_id = ?"
        params.append(owner_id)
    with _use_connection(conn) as active:
        row = active.execute(query, tuple(params)).fetchone()
    return _row_to_activity(row) if row else None


def list_activities_by_ids(
    owner_id: str,
    ids: Sequence[str],
    *,
    conn: Optional[sqlite3.Connection] = None,
) -> List[Activity]:
    if not ids:
        return []
    placeholders = ", ".join("?" for _ in ids)
    with _use_connection(conn) as active:
        rows = active.execute(
            f"SELECT * FROM activities WHERE owner_id = ? AND id IN ({placeholders})",
            (owner_id, *ids),
        ).fetchall()
    return [_row_to_activity(row) for row in rows]


def find_exclusive_candidates(
    conn: Optional[sqlite3.Connection],
    *,
    owner_id: str,
    activity_type: str,
    start_time: datetime,
    end_bound: datetime,
    end_time: Optional[datetime],
    exclude_id: Optional[str] = None,
) -> List[Activity]:
    """Exclusive activities that may intersect ``[start_time, end_bound)`` or match exactly.

    An open candidate also gets every open row of its own type.
    Open rows are returned whenever they start before ``end_bound``; the caller
    decides with the current time whether they actually reach the candidate.
    """
    query = f"""
        SELECT *
        FROM activities
        WHERE owner_id = ?
          AND type IN ({_exclusive_type_list()})
          AND (
                (start_time < ? AND (end_time > ? OR end_time IS NULL))
             OR (type = ? AND start_time = ? AND end_time IS ?)
             OR (type = ? AND end_time IS NULL AND ? IS NULL)
          )
    """
    params: list = [
        owner_id,
        _ts(end_bound),
        _ts(start_time),
        activity_type,
        _ts(start_time),
        _ts(end_time) if end_time else None,
        activity_type,
        _ts(end_time) if end_time else None,
    ]
    if exclude_id is not None:
        query += "\n          AND id != ?"
        params.append(exclude_id)
    query += "\n        ORDER BY start_time ASC, id ASC"
    with _use_connection(conn) as active:
        rows = active.execute(query, tuple(params)).fetchall()
    return [_row_to_activity(row) for row in rows]


def find_open_activity(
    conn: Optional[sqlite3.Connection],
    *,
    owner_id: str,
    activity_type: str,
    exclude_id: Optional[str] = None,
) -> Optional[Activity]:
    query = "SELECT * FROM activities WHERE owner_id = ? AND type = ? AND end_time IS NULL"
    params: list = [owner_id, activity_type]
    if exclude_id is not None:
        query += " AND id != ?"
        params.append(exclude_id)
    with _use_connection(conn) as active:
        row = active.execute(query + " LIMIT 1", tuple(params)).fetchone()
    return _row_to_activity(row) if row else None


def list_window_activities(
    owner_id: str,
    *,
    window_start: datetime,
    day_start: datetime,
    day_end: datetime,
    descending: bool = False,
) -> List[Activity]:
    """Activities starting in ``[window_start, day_end)`` or still running at ``day_start``."""
    order = "DESC" if descending else "ASC"
    with get_connection() as conn:
        rows = conn.execute(
            f"""
            SELECT *
            FROM activities
            WHERE owner_id = ?
              AND (
                    (start_time >= ? AND start_time < ?)
                 OR (start_time < ? AND (end_time >= ? OR end_time IS NULL))
              )
            ORDER BY start_time {order}, id {order}
            """,
            (
                owner_id,
                _ts(window_start),
                _ts(day_end),
                _ts(day_start),
                _ts(day_start),
            ),
        ).fetchall()
    return [_row_to_activity(row) for row in rows]


def latest_activity(owner_id: str, types: Sequence[str]) -> Optional[Activity]:
    placeholders = ", ".join("?" for _ in types)
    with get_connection() as conn:
        row = conn.execute(
            f"""
            SELECT *
            FROM activities
            WHERE owner_id = ? AND type IN ({placeholders})
            ORDER BY start_time DESC
            LIMIT 1
            """,
            (owner_id, *types),
        ).fetchone()
    return _row_to_activity(row) if row else None


def _stat_payload(stat: DailyStat) -> str:
    return json.dumps(
        {
            "counts": stat.counts,
            "minutes": stat.minutes,
            "category_counts": stat.category_counts,
            "metrics": stat.metrics,
        }
    )


def _row_to_daily_stat(row: sqlite3.Row) -> DailyStat:
    payload = json.loads(row["stats_json"])
    return DailyStat(
        owner_id=row["owner_id"],
        date=date.fromisoformat(row["date"]),
        timezone=row["timezone"],
        **payload,
    )


def upsert_daily_stat(stat: DailyStat) -> None:
    now = _now_iso()
    with get_connection() as conn:
        conn.execute(
            """
            INSERT INTO daily_stats (owner_id, date, timezone, stats_json, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(owner_id, date) DO UPDATE SET
                timezone = excluded.timezone,
                stats_json = excluded.stats_json,
                updated_at = excluded.updated_at
            """,
            (stat.owner_id, stat.date.isoformat(), stat.timezone, _stat_payload(stat), now, now),
        )
        conn.commit()


def get_daily_stat(owner_id: str, day: date) -> Optional[DailyStat]:
    with get_connection() as conn:
        row = conn.execute(
            "SELECT * FROM daily_stats WHERE owner_id = ? AND date = ?",
            (owner_id, day.isoformat()),
        ).fetchone()
    return _row_to_daily_stat(row) if row else None


def list_daily_stats(
    owner_id: str,
    *,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> List[DailyStat]:
    query = "SELECT * FROM daily_stats WHERE owner_id = ?"
    params: list = [owner_id]
    if start_date is not None:
        query += " AND date >= ?"
        params.append(start_date.isoformat())
    if end_date is not None:
        query += " AND date <= ?"
        params.append(end_date.isoformat())
    query += " ORDER BY date ASC"
    with get_connection() as conn:
        rows = conn.execute(query, tuple(params)).fetchall()
    return [_row_to_daily_stat(row) for row in rows]


def _row_to_child(row: sqlite3.Row) -> Child:
    return Child(
        id=row["id"],
        name=row["name"],
        timezone=row["timezone"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def create_child(*, name: str, timezone_name: str) -> Child:
    child_id = uuid4().hex
    with get_connection() as conn:
        conn.execute(
            "INSERT INTO children (id, name, timezone, created_at) VALUES (?, ?, ?, ?)",
            (child_id, name, timezone_name, _now_iso()),
        )
        conn.commit()
    child = get_child(child_id)
    assert child is not None
    return child


def get_child(child_id: str) -> Optional[Child]:
    with get_connection() as conn:
        row = conn.execute("SELECT * FROM children WHERE id = ?", (child_id,)).fetchone()
    return _row_to_child(row) if row else None


def list_children() -> List[Child]:
    with get_connection() as conn:
        rows = conn.execute("SELECT * FROM children ORDER BY created_at ASC, id ASC").fetchall()
    return [_row_to_child(row) for row in rows]
