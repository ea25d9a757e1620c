from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from traverse.api.deps import RequestRejected, rate_limited, read_json, validate_body
from traverse.models.schemas import TranslateRequest
from traverse.services import logger as log_service
from traverse.services import rate_limit
from traverse.services.translation import translate

router = APIRouter(prefix="/api/translate", tags=["translate"])


@router.post("", dependencies=[Depends(rate_limited(rate_limit.STANDARD, "translate"))])
async def translate_content(request: Request):
    """Translate UI strings and requirement content into the requested language."""
    body = await read_json(request)
    payload = validate_body(TranslateRequest, body)
    if not payload.needs_translation:
        raise RequestRejected(400, {"error": "Non-English language is required"})

    try:
        translated = await translate(payload)
    except Exception as exc:
        log_service.log_event(
            event_type="translation_failed",
            message=f"Translation to {payload.language} failed",
            error=str(exc),
        )
        return JSONResponse(status_code=500, content={"error": "Translation failed", "details": str(exc)})
    return JSONResponse(content=translated)
