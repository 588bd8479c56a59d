"""Fire-and-forget audit records for committed writes.

Audit storage lives outside this service. Records are either logged or
POSTed to ``audit_webhook_url``; a failing sink never fails the write that
produced the record.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from functools import lru_cache
from typing import Any, Dict, Optional, Protocol

import httpx
from pydantic import BaseModel, Field

from .config import CONFIG
from .schemas import Activity

logger = logging.getLogger(__name__)

_WEBHOOK_TIMEOUT_SECONDS = 5.0


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class InputMethod(str, Enum):
    TEXT = "TEXT"
    VOICE = "VOICE"


class AuditRecord(BaseModel):
    action: AuditAction
    resource_type: str = "ACTIVITY"
    resource_id: Optional[str] = None
    owner_id: Optional[str] = None
    actor_id: Optional[str] = None
    input_method: InputMethod = InputMethod.TEXT
    input_text: Optional[str] = None
    description: Optional[str] = None
    success: bool = True
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class AuditSink(Protocol):
    def emit(self, record: AuditRecord) -> None:
        ...


class LoggingAuditSink:
    def emit(self, record: AuditRecord) -> None:
        logger.info(
            "audit record",
            extra={
                "audit_action": record.action.value,
                "resource_id": record.resource_id,
                "owner_id": record.owner_id,
                "actor_id": record.actor_id,
                "input_method": record.input_method.value,
                "success": record.success,
            },
        )


class HttpAuditSink:
    def __init__(
        self,
        url: str,
        *,
        timeout: float = _WEBHOOK_TIMEOUT_SECONDS,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.transport = transport

    def emit(self, record: AuditRecord) -> None:
        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            response = client.post(self.url, json=record.model_dump(mode="json"))
            response.raise_for_status()


@lru_cache(maxsize=1)
def get_audit_sink() -> AuditSink:
    if CONFIG.audit_webhook_url:
        return HttpAuditSink(CONFIG.audit_webhook_url)
    return LoggingAuditSink()


def snapshot(activity: Optional[Activity]) -> Optional[Dict[str, Any]]:
    return activity.model_dump(mode="json") if activity is not None else None


def emit_audit(record: AuditRecord, sink: Optional[AuditSink] = None) -> None:
    """Hand ``record`` to the sink. Errors are logged and dropped."""
    try:
        (sink or get_audit_sink()).emit(record)
    except Exception:
        logger.exception(
            "audit sink failed",
            extra={"audit_action": record.action.value, "resource_id": record.resource_id},
        )
