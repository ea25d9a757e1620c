from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from traverse.agents.advisory_agent import AdvisoryTask
from traverse.api.deps import event_stream, rate_limited, read_json, validate_body
from traverse.models.domain import AnalysisResult
from traverse.models.schemas import AdvisoryRequest
from traverse.services import rate_limit
from traverse.services import streaming

router = APIRouter(prefix="/api/advisory", tags=["advisory"])


async def _advisory_flow(payload: AdvisoryRequest):
    task = AdvisoryTask(
        payload.requirements,
        compliances=payload.compliances,
        extractions=payload.extractions,
        prior_fixes=payload.prior_fixes,
    )
    async for event in task.run():
        yield event
    if task.failed:
        return
    yield streaming.complete(
        AnalysisResult(
            requirements=payload.requirements,
            extractions=payload.extractions or None,
            advisory=task.result,
        )
    )


@router.post("", dependencies=[Depends(rate_limited(rate_limit.STRICT, "advisory"))])
async def advisory(request: Request):
    """Synthesize the advisory report from research and compliance results."""
    body = await read_json(request)
    payload = validate_body(AdvisoryRequest, body)
    return event_stream(_advisory_flow(payload), label="advisory")
