"""Application configuration utilities."""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

_ENV_OVERRIDES = {
    "BABYLOG_DATABASE_PATH": "database_path",
    "BABYLOG_STATS_TIMEZONE": "stats_timezone",
    "BABYLOG_CRON_SECRET": "cron_secret",
    "BABYLOG_AUDIT_WEBHOOK_URL": "audit_webhook_url",
    "OPENAI_API_KEY": "openai_api_key",
    "OPENAI_MODEL": "openai_model",
}


class AppConfig(BaseModel):
    """Strongly typed configuration loaded from config.json and the environment."""

    openai_api_key: Optional[str] = Field(default=None)
    openai_model: str = Field(default="gpt-4o-mini")
    database_path: str = Field(default="./data/babylog.db")
    stats_timezone: str = Field(
        default="Asia/Shanghai",
        description="Civil timezone used for daily stats when the owner has none.",
    )
    voice_confidence_threshold: float = Field(default=0.75, ge=0, le=1)
    future_tolerance_minutes: int = Field(default=2, ge=0)
    cron_secret: Optional[str] = Field(default=None)
    audit_webhook_url: Optional[str] = Field(default=None)
    cors_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"]
    )

    @property
    def resolved_database_path(self) -> Path:
        """Return the absolute path for the SQLite database file."""
        path = Path(self.database_path)
        if path.is_absolute():
            return path
        return (Path(__file__).resolve().parents[1] / path).resolve()


def _config_path() -> Path:
    return Path(__file__).resolve().parents[1] / "config.json"


def load_config() -> AppConfig:
    """Load configuration from config.json (optional), then apply environment overrides."""

    contents: Dict[str, Any] = {}
    config_file = _config_path()
    if config_file.exists():
        contents = json.loads(config_file.read_text())
    else:
        logger.info(
            "config.json not found, using defaults",
            extra={"expected_path": str(config_file)},
        )

    for env_name, key in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            contents[key] = value
    return AppConfig(**contents)


CONFIG = load_config()
