from __future__ import annotations

import os
import tempfile
from pathlib import Path

import pytest

_TMP_DIR = Path(tempfile.mkdtemp(prefix="babylog-tests-"))
os.environ["BABYLOG_DATABASE_PATH"] = str(_TMP_DIR / "babylog.db")
os.environ["BABYLOG_CRON_SECRET"] = "test-cron-secret"
os.environ["BABYLOG_STATS_TIMEZONE"] = "Asia/Shanghai"
os.environ.pop("BABYLOG_AUDIT_WEBHOOK_URL", None)

from babylog.audit import get_audit_sink  # noqa: E402
from babylog.db import get_connection, initialize_db  # noqa: E402


def reset_state() -> None:
    initialize_db()
    with get_connection() as conn:
        for table in ["activities", "daily_stats", "children"]:
            conn.execute(f"DELETE FROM {table}")
        conn.commit()
    get_audit_sink.cache_clear()


@pytest.fixture(autouse=True)
def clean_database() -> None:
    reset_state()
