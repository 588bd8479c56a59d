"""Turn transcribed caregiver speech into a draft activity."""
from __future__ import annotations

import json
import logging
from datetime import datetime
from functools import lru_cache
from typing import Any, Dict, Optional, Union

from openai import OpenAI, OpenAIError
from pydantic import BaseModel, Field, ValidationError

from .audit import AuditAction, AuditRecord, InputMethod, emit_audit
from .config import CONFIG
from .confirmation import FlowResult, submit_create
from .registry import iter_policies
from .schemas import (
    ActivityFields,
    CreateActivityPayload,
    MilkSource,
    PeeAmount,
    PoopColor,
    SpitUpType,
    SupplementType,
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """
You turn a caregiver's spoken note about a baby into one structured activity record.

Activity types:
- SLEEP: fell asleep, woke up, napped. "Slept 30 minutes" is a finished sleep ending now.
  Only "fell asleep" / "started sleeping" leaves end_time null.
- BREASTFEED: nursing at the breast. BOTTLE: bottle feed (default when the method is not said).
- PUMP: pumping milk. DIAPER: diaper change, poop, pee.
- HEAD_LIFT: tummy time. PASSIVE_EXERCISE, GAS_EXERCISE: guided exercises.
- BATH, OUTDOOR, EARLY_EDUCATION: bath, time outside, reading/play/music.
- SUPPLEMENT: vitamin AD or D3 drops. SPIT_UP: spit up, noting projectile when said.
- ROLL_OVER, PULL_TO_SIT: milestones.

Time rules:
- The user's local wall-clock time is given. Output ISO 8601 timestamps with the UTC offset.
- "X o'clock" means the most recent past occurrence. "Just now" means five minutes ago.
- For "A to B", A is start_time and B is end_time. Never swap them.
- A time range that lies in the future lowers confidence.

Confidence is 0-1: 0.8+ when the note is complete, 0.6-0.8 when details are inferred,
below 0.6 when the type, timing or key amounts are unclear.
If no activity type can be identified, set type to null and explain in error.
Speech-to-text output may contain homophone mistakes; correct them from context.
"""


class VoiceDraft(BaseModel):
    type: str
    start_time: datetime
    end_time: Optional[datetime] = None
    fields: ActivityFields = Field(default_factory=ActivityFields)
    confidence: float = Field(ge=0, le=1)

    def to_payload(self, owner_id: str) -> CreateActivityPayload:
        return CreateActivityPayload(
            owner_id=owner_id,
            type=self.type,
            start_time=self.start_time,
            end_time=self.end_time,
            fields=self.fields,
        )


class VoiceParseFailure(BaseModel):
    error: str
    original_text: str


class VoiceIntakeResult(BaseModel):
    need_confirmation: bool
    draft: VoiceDraft
    flow: Optional[FlowResult] = None


def _nullable(schema_type: str, enum: Optional[list] = None) -> Dict[str, Any]:
    prop: Dict[str, Any] = {"type": [schema_type, "null"]}
    if enum is not None:
        prop["enum"] = [*enum, None]
    return prop


def _json_schema() -> Dict[str, Any]:
    field_properties = {
        "has_poop": _nullable("boolean"),
        "has_pee": _nullable("boolean"),
        "poop_color": _nullable("string", [color.value for color in PoopColor]),
        "pee_amount": _nullable("string", [amount.value for amount in PeeAmount]),
        "milk_amount": _nullable("number"),
        "milk_source": _nullable("string", [source.value for source in MilkSource]),
        "supplement_type": _nullable("string", [kind.value for kind in SupplementType]),
        "spit_up_type": _nullable("string", [kind.value for kind in SpitUpType]),
        "notes": _nullable("string"),
    }
    return {
        "name": "voice_activity_schema",
        "strict": True,
        "schema": {
            "type": "object",
            "properties": {
                "type": _nullable("string", [activity_type.value for activity_type, _ in iter_policies()]),
                "start_time": _nullable("string"),
                "end_time": _nullable("string"),
                "fields": {
                    "type": "object",
                    "properties": field_properties,
                    "required": list(field_properties),
                    "additionalProperties": False,
                },
                "confidence": {"type": "number"},
                "error": _nullable("string"),
            },
            "required": ["type", "start_time", "end_time", "fields", "confidence", "error"],
            "additionalProperties": False,
        },
    }


@lru_cache(maxsize=1)
def get_client() -> OpenAI:
    return OpenAI(api_key=CONFIG.openai_api_key)


def _request_completion(text: str, local_time: str) -> str:
    response = get_client().chat.completions.create(
        model=CONFIG.openai_model,
        messages=[
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": f"Local time: {local_time}\nCaregiver said: {text}"},
        ],
        temperature=0.1,
        response_format={"type": "json_schema", "json_schema": _json_schema()},
    )
    return response.choices[0].message.content or ""


def _coerce_draft(payload: Dict[str, Any], text: str) -> Union[VoiceDraft, VoiceParseFailure]:
    if payload.get("error") or not payload.get("type") or not payload.get("start_time"):
        return VoiceParseFailure(
            error=payload.get("error") or "Could not identify the activity",
            original_text=text,
        )
    fields = {key: value for key, value in (payload.get("fields") or {}).items() if value is not None}
    try:
        return VoiceDraft(
            type=payload["type"],
            start_time=payload["start_time"],
            end_time=payload.get("end_time"),
            fields=ActivityFields(**fields),
            confidence=payload.get("confidence", 0),
        )
    except ValidationError as exc:
        logger.warning("voice draft failed validation", extra={"errors": exc.errors()})
        return VoiceParseFailure(error="The parsed activity was incomplete", original_text=text)


def parse_voice_text(text: str, local_time: Optional[str] = None) -> Union[VoiceDraft, VoiceParseFailure]:
    """Ask the model for a draft. Upstream or format errors become a failure, not an exception."""
    local_time = local_time or datetime.now().astimezone().isoformat(timespec="minutes")
    try:
        content = _request_completion(text, local_time)
    except OpenAIError as exc:
        # Covers both a missing API key at client construction and upstream API errors.
        logger.exception("OpenAI chat API failed for voice input", exc_info=exc)
        return VoiceParseFailure(error="Voice parsing is unavailable", original_text=text)

    content = content.strip().strip("`")
    if content.startswith("json"):
        content = content[len("json"):]
    try:
        payload = json.loads(content)
    except json.JSONDecodeError as exc:
        logger.exception("Failed to parse OpenAI JSON payload for voice input", exc_info=exc)
        return VoiceParseFailure(error="Voice parsing returned malformed output", original_text=text)
    if not isinstance(payload, dict):
        return VoiceParseFailure(error="Voice parsing returned malformed output", original_text=text)
    return _coerce_draft(payload, text)


def record_voice_failure(
    failure: VoiceParseFailure, owner_id: str, actor_id: Optional[str] = None
) -> None:
    emit_audit(
        AuditRecord(
            action=AuditAction.CREATE,
            owner_id=owner_id,
            actor_id=actor_id,
            input_method=InputMethod.VOICE,
            input_text=failure.original_text,
            description=f'Voice: "{failure.original_text}" - {failure.error}',
            success=False,
        )
    )


def intake_voice_draft(
    draft: VoiceDraft,
    owner_id: str,
    *,
    input_text: Optional[str] = None,
    actor_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> VoiceIntakeResult:
    """Commit confident drafts through the normal create path; hand the rest back for review."""
    threshold = CONFIG.voice_confidence_threshold
    if draft.confidence < threshold:
        logger.info(
            "voice draft needs confirmation",
            extra={"owner_id": owner_id, "type": draft.type, "confidence": draft.confidence},
        )
        return VoiceIntakeResult(need_confirmation=True, draft=draft)

    flow = submit_create(
        draft.to_payload(owner_id),
        actor_id=actor_id,
        input_method=InputMethod.VOICE,
        input_text=input_text,
        now=now,
    )
    return VoiceIntakeResult(need_confirmation=False, draft=draft, flow=flow)
