from typing import Optional

import logging

from fastapi import APIRouter, Header, HTTPException

from ..errors import ActivityConflictError, ActivityValidationError
from ..schemas import VoiceInputPayload, VoiceInputResponse
from ..voice_intake import VoiceParseFailure, intake_voice_draft, parse_voice_text, record_voice_failure
from .activities import raise_for_flow_error

router = APIRouter(prefix="/api/v1")
logger = logging.getLogger(__name__)


@router.post("/voice-input", response_model=VoiceInputResponse)
async def voice_input(
    payload: VoiceInputPayload,
    x_actor_id: Optional[str] = Header(None),
) -> VoiceInputResponse:
    parsed = parse_voice_text(payload.text, payload.local_time)
    if isinstance(parsed, VoiceParseFailure):
        record_voice_failure(parsed, payload.owner_id, actor_id=x_actor_id)
        raise HTTPException(
            status_code=422,
            detail={"code": "PARSE_FAILED", "message": parsed.error, "original_text": parsed.original_text},
        )

    try:
        result = intake_voice_draft(
            parsed, payload.owner_id, input_text=payload.text, actor_id=x_actor_id
        )
    except (ActivityConflictError, ActivityValidationError) as exc:
        raise_for_flow_error(exc)

    return VoiceInputResponse(
        success=True,
        need_confirmation=result.need_confirmation,
        draft=result.draft.model_dump(mode="json"),
        confidence=result.draft.confidence,
        activity=result.flow.activity if result.flow else None,
    )
