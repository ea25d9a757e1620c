from __future__ import annotations

import json
import re
import time
from typing import Any

from traverse.agents.base import response_text
from traverse.config import settings
from traverse.errors import BackendResponseError
from traverse.llm_client import client as llm_client, get_model
from traverse.models.schemas import TranslateRequest
from traverse.services import logger as log_service
from traverse.services.prompt_store import render_prompt

_FENCED = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_OBJECT = re.compile(r"\{[\s\S]*\}")


def parse_translation(text: str) -> dict[str, Any]:
    """Parse the translated JSON object, tolerating markdown fences and surrounding prose."""
    candidate = text.strip()
    fenced = _FENCED.search(candidate)
    if fenced:
        candidate = fenced.group(1).strip()
    else:
        whole = _OBJECT.search(candidate)
        if whole:
            candidate = whole.group(0)
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise BackendResponseError(f"Translation response is not valid JSON: {exc.msg}") from exc
    if not isinstance(parsed, dict):
        raise BackendResponseError("Translation response is not a JSON object")
    return parsed


async def translate(request: TranslateRequest, client: Any = None) -> dict[str, Any]:
    """Translate every section of the request in one backend call.

    Raises BackendResponseError when the backend returns nothing usable; backend
    transport errors propagate unchanged.
    """
    active_client = client or llm_client()
    language = request.language.strip()
    payload = request.payload()
    model = get_model()

    t0 = time.monotonic()
    try:
        response = await active_client.messages.create(
            model=model,
            max_tokens=settings.translate_max_tokens,
            system=render_prompt("translate.system", language=language),
            messages=[
                {
                    "role": "user",
                    "content": render_prompt(
                        "translate.user",
                        language=language,
                        payload=json.dumps(payload, ensure_ascii=False, indent=2),
                    ),
                }
            ],
        )
    except Exception as exc:
        log_service.log_llm_call(
            model=model,
            caller="translate",
            duration_ms=int((time.monotonic() - t0) * 1000),
            status="error",
            error=str(exc),
        )
        raise

    usage = getattr(response, "usage", None)
    log_service.log_llm_call(
        model=model,
        caller="translate",
        input_tokens=getattr(usage, "input_tokens", 0) or 0,
        output_tokens=getattr(usage, "output_tokens", 0) or 0,
        duration_ms=int((time.monotonic() - t0) * 1000),
    )

    text = response_text(response)
    if not text.strip():
        raise BackendResponseError("No text response from the translation backend")
    return parse_translation(text)
