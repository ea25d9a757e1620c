from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from traverse.agents.document_agent import DocumentCheckTask
from traverse.agents.orchestrator import AnalysisOrchestrator
from traverse.api.deps import event_stream, rate_limited, read_json, validate_body
from traverse.models.domain import AnalysisResult
from traverse.models.schemas import AnalyzeRequest, DocumentAnalysisRequest
from traverse.services import logger as log_service
from traverse.services import rate_limit
from traverse.services import streaming
from traverse.services.scripted import scripted_analysis

router = APIRouter(prefix="/api/analyze", tags=["analyze"])


@router.post("", dependencies=[Depends(rate_limited(rate_limit.STRICT, "analyze"))])
async def analyze(request: Request):
    """Full analysis: research, document reading and analysis, advisory. Streams SSE events."""
    body = await read_json(request)

    if isinstance(body, dict) and body.get("test") is True:
        return event_stream(scripted_analysis(), label="analyze:test")

    payload = validate_body(AnalyzeRequest, body)
    log_service.log_event(
        event_type="analyze_requested",
        message="Analysis requested",
        corridor=payload.travel_details.corridor,
        documents=len(payload.documents),
    )
    orchestrator = AnalysisOrchestrator()
    return event_stream(orchestrator.run(payload.travel_details, payload.documents), label="analyze")


async def _document_flow(payload: DocumentAnalysisRequest):
    task = DocumentCheckTask(payload.document, payload.requirement, payload.previous_extractions)
    async for event in task.run():
        yield event
    if task.failed:
        return
    extraction, _ = task.result
    yield streaming.complete(AnalysisResult(extractions=[extraction]))


@router.post("/document", dependencies=[Depends(rate_limited(rate_limit.STRICT, "analyze-document"))])
async def analyze_document(request: Request):
    """Read one uploaded document and cross-check it against its requirement."""
    body = await read_json(request)
    payload = validate_body(DocumentAnalysisRequest, body)
    return event_stream(_document_flow(payload), label="analyze:document")
