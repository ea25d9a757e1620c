from __future__ import annotations

import asyncio
import time
from typing import AsyncGenerator

from pydantic import ValidationError

from traverse.agents.base import ReasoningTask, ThinkingRelay, response_text
from traverse.agents.research_agent import pause
from traverse.config import settings
from traverse.llm_client import thinking_config
from traverse.models.domain import (
    ComplianceItem,
    ComplianceStatus,
    CrossCheckResult,
    CrossDocFinding,
    DocumentAnalysis,
    DocumentExtraction,
    RequirementItem,
    RequirementsChecklist,
)
from traverse.models.events import BaseEvent
from traverse.models.schemas import UploadedDocument
from traverse.services import logger as log_service
from traverse.services import streaming
from traverse.services.extractor import extract_json_object
from traverse.services.prompt_store import render_prompt

READER_AGENT = "Document Agent (Reading)"
ANALYSIS_AGENT = "Document Agent (Analysis)"


async def read_document(task: ReasoningTask, document: UploadedDocument) -> DocumentExtraction:
    """Vision read of one document. Never raises; a failed read is an ``error`` extraction."""
    try:
        response = await task.create_message(
            caller=READER_AGENT,
            max_tokens=settings.document_read_max_tokens,
            thinking=thinking_config(),
            messages=[
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": document.mime_type,
                                "data": document.base64,
                            },
                        },
                        {"type": "text", "text": render_prompt("documents.read")},
                    ],
                }
            ],
        )
    except Exception as exc:
        log_service.log_event(
            event_type="document_read_error",
            message=f"Failed to read {document.filename}",
            error=str(exc),
            document_id=document.id,
        )
        return DocumentExtraction(
            id=document.id,
            doc_type="error",
            language="Unknown",
            extracted_text="",
            structured_data={"error": str(exc) or exc.__class__.__name__},
        )

    text = response_text(response)
    parsed = extract_json_object(text) or {}
    structured = parsed.get("structuredData")
    return DocumentExtraction(
        id=document.id,
        doc_type=parsed.get("docType") or "unknown",
        language=parsed.get("language") or "Unknown",
        extracted_text=parsed.get("extractedText") or text,
        structured_data=structured if isinstance(structured, dict) else {},
    )


class DocumentReaderTask(ReasoningTask[list[DocumentExtraction]]):
    """Uploaded documents -> extractions, read in parallel."""

    name = READER_AGENT

    def __init__(self, documents: list[UploadedDocument], model: str | None = None):
        super().__init__(model=model)
        self.documents = documents

    def fallback(self) -> list[DocumentExtraction]:
        return [
            DocumentExtraction(id=doc.id, doc_type="error", structured_data={"error": "Document read failed"})
            for doc in self.documents
        ]

    async def _timed_read(self, document: UploadedDocument) -> tuple[DocumentExtraction, int]:
        started = time.monotonic()
        extraction = await read_document(self, document)
        return extraction, int((time.monotonic() - started) * 1000)

    async def execute(self) -> AsyncGenerator[BaseEvent, None]:
        count = len(self.documents)
        yield streaming.agent_started(self.name, f"Reading {count} documents...")

        results = await asyncio.gather(*(self._timed_read(doc) for doc in self.documents))

        extractions: list[DocumentExtraction] = []
        for document, (extraction, duration_ms) in zip(self.documents, results):
            extractions.append(extraction)
            failed = extraction.doc_type == "error"
            yield streaming.document_read(
                document.filename,
                "Error" if failed else extraction.language,
                doc_type=extraction.doc_type,
                duration_ms=0 if failed else duration_ms,
            )
            await pause(settings.document_read_delay_ms)

        elapsed = self.elapsed_ms()
        yield streaming.agent_completed(
            self.name,
            f"Read {count} documents in {elapsed / 1000:.1f}s",
            duration_ms=elapsed,
        )
        self.finish(extractions)


class DocumentAnalyzerTask(ReasoningTask[DocumentAnalysis]):
    """Extractions + checklist -> cross-document analysis."""

    name = ANALYSIS_AGENT

    def __init__(
        self,
        extractions: list[DocumentExtraction],
        requirements: RequirementsChecklist,
        model: str | None = None,
    ):
        super().__init__(model=model)
        self.extractions = extractions
        self.requirements = requirements

    def fallback(self) -> DocumentAnalysis:
        return DocumentAnalysis.empty("Analysis failed")

    def _prompts(self) -> tuple[str, str]:
        requirements_text = "\n".join(
            f"{index}. [{item.id}] {item.name}: {item.description}"
            for index, item in enumerate(self.requirements.items, start=1)
        )
        extractions_text = "\n\n".join(
            f"--- DOCUMENT {index}: {ext.doc_type} ({ext.language}) ---\n{ext.extracted_text}\n"
            for index, ext in enumerate(self.extractions, start=1)
        )
        return (
            render_prompt("documents.analysis_system", requirements=requirements_text),
            render_prompt("documents.analysis_user", extractions=extractions_text),
        )

    def parse(self, text: str) -> DocumentAnalysis:
        data = extract_json_object(text)
        if data is None:
            return DocumentAnalysis.empty("Could not parse analysis results")
        try:
            analysis = DocumentAnalysis.model_validate(data)
        except ValidationError as exc:
            log_service.logger.warning(f"Document analysis did not match schema: {exc}")
            return DocumentAnalysis.empty("Could not parse analysis results")
        return self._link_requirements(analysis)

    def _link_requirements(self, analysis: DocumentAnalysis) -> DocumentAnalysis:
        """Attach stable requirement ids to compliance items that name a known requirement."""
        by_id = {item.id: item for item in self.requirements.items}
        by_name = {item.name.strip().lower(): item for item in self.requirements.items}
        for compliance in analysis.compliance.items:
            if compliance.requirement_id in by_id:
                continue
            match = by_name.get(compliance.requirement.strip().lower())
            compliance.requirement_id = match.id if match else None
        return analysis

    async def execute(self) -> AsyncGenerator[BaseEvent, None]:
        yield streaming.agent_started(self.name, "Analyzing documents for compliance and issues...")

        system, user = self._prompts()
        relay = ThinkingRelay(
            self.name,
            summary="Analyzing documents",
            opening="Cross-referencing documents against requirements...\n",
            compiling="Compiling document analysis",
            writing="Writing document analysis",
            excerpt_chars=3000,
        )
        try:
            started = time.monotonic()
            stream = await self.open_stream(
                max_tokens=settings.document_analysis_max_tokens,
                thinking=thinking_config(),
                system=system,
                messages=[{"role": "user", "content": user}],
            )
            async for event in relay.relay(stream):
                yield event
            self.log_stream(relay, started)
        except Exception as exc:
            log_service.log_event(
                event_type="document_analysis_error",
                message="Document analysis backend call failed",
                error=str(exc),
            )
            yield self.fail(f"Document analysis error: {exc}", self.fallback())
            return

        analysis = self.parse(relay.text)

        for finding in analysis.cross_lingual_findings:
            yield streaming.cross_lingual(finding)
            await pause(settings.requirement_display_delay_ms)
        for flag in analysis.forensic_flags:
            yield streaming.forensic(flag)
            await pause(settings.requirement_display_delay_ms)
        yield streaming.narrative(analysis.narrative_assessment)

        elapsed = self.elapsed_ms()
        yield streaming.agent_completed(self.name, f"Analysis complete in {elapsed / 1000:.1f}s", duration_ms=elapsed)
        self.finish(analysis)


class CrossCheckTask(ReasoningTask[CrossCheckResult]):
    """One new extraction checked against one requirement and the earlier documents."""

    name = "Document Agent (Cross-check)"

    def __init__(
        self,
        extraction: DocumentExtraction,
        requirement: RequirementItem,
        previous: list[DocumentExtraction] | None = None,
        model: str | None = None,
    ):
        super().__init__(model=model)
        self.extraction = extraction
        self.requirement = requirement
        self.previous = previous or []

    def _compliance(self, status: ComplianceStatus, detail: str) -> ComplianceItem:
        return ComplianceItem(
            requirement=self.requirement.name,
            requirement_id=self.requirement.id or None,
            status=status,
            detail=detail,
            document_ref=self.extraction.doc_type,
        )

    def fallback(self) -> CrossCheckResult:
        return CrossCheckResult(compliance=self._compliance(ComplianceStatus.NOT_CHECKED, "Analysis failed"))

    def _prompt(self) -> str:
        previous_block = ""
        if self.previous:
            context = "\n\n".join(
                f"--- PREVIOUS DOC {index}: {ext.doc_type} ({ext.language}) ---\n{ext.extracted_text[:1500]}"
                for index, ext in enumerate(self.previous, start=1)
            )
            previous_block = render_prompt("documents.cross_check_previous", previous=context)
        return render_prompt(
            "documents.cross_check",
            requirement_name=self.requirement.name,
            requirement_description=self.requirement.description,
            doc_type=self.extraction.doc_type,
            language=self.extraction.language,
            document_text=self.extraction.extracted_text[:3000],
            previous_block=previous_block,
        )

    def parse(self, text: str) -> CrossCheckResult:
        data = extract_json_object(text)
        if data is None:
            return CrossCheckResult(
                compliance=self._compliance(ComplianceStatus.NOT_CHECKED, "Could not parse analysis")
            )
        compliance_data = data.get("compliance")
        compliance = None
        if isinstance(compliance_data, dict):
            try:
                compliance = ComplianceItem.model_validate(
                    {"requirement": self.requirement.name, "documentRef": self.extraction.doc_type, **compliance_data}
                )
            except ValidationError:
                compliance = None
        if compliance is None:
            compliance = self._compliance(ComplianceStatus.NOT_CHECKED, "Could not analyze")
        # The checked requirement is known exactly; never trust the model for its identity.
        compliance = compliance.model_copy(update={"requirement_id": self.requirement.id or None})

        findings: list[CrossDocFinding] = []
        for raw in data.get("crossDocFindings") or []:
            try:
                findings.append(CrossDocFinding.model_validate(raw))
            except ValidationError:
                continue
        return CrossCheckResult(compliance=compliance, cross_doc_findings=findings)

    async def execute(self) -> AsyncGenerator[BaseEvent, None]:
        name = self.requirement.name
        relay = ThinkingRelay(
            self.name,
            summary="Cross-checking",
            opening="",
            narrate=False,
            emit_interval_ms=300,
            min_new_chars=60,
            excerpt_chars=2000,
            thinking_event=lambda _summary, excerpt: streaming.doc_analysis_thinking(name, excerpt),
        )
        try:
            started = time.monotonic()
            stream = await self.open_stream(
                max_tokens=settings.cross_check_max_tokens,
                thinking=thinking_config(),
                messages=[{"role": "user", "content": self._prompt()}],
            )
            async for event in relay.relay(stream):
                yield event
            self.log_stream(relay, started)
        except Exception as exc:
            log_service.log_event(
                event_type="cross_check_error",
                message=f"Cross-check failed for {name}",
                error=str(exc),
                requirement_id=self.requirement.id,
            )
            yield self.fail(f"Cross-check error: {exc}", self.fallback())
            return

        self.finish(self.parse(relay.text))


class DocumentCheckTask(ReasoningTask[tuple[DocumentExtraction, CrossCheckResult]]):
    """Per-document flow: read one upload, then cross-check it against its requirement."""

    name = "Document Agent (Check)"

    def __init__(
        self,
        document: UploadedDocument,
        requirement: RequirementItem,
        previous: list[DocumentExtraction] | None = None,
        model: str | None = None,
    ):
        super().__init__(model=model)
        self.document = document
        self.requirement = requirement
        self.previous = previous or []
        self.extraction: DocumentExtraction | None = None

    def fallback(self) -> tuple[DocumentExtraction, CrossCheckResult]:
        extraction = self.extraction or DocumentExtraction(id=self.document.id, doc_type="error")
        return extraction, CrossCheckTask(extraction, self.requirement, model=self.model).fallback()

    async def execute(self) -> AsyncGenerator[BaseEvent, None]:
        name = self.requirement.name
        yield streaming.doc_analysis_started(name, self.document.filename)
        yield streaming.doc_analysis_thinking(name, "Reading document...")

        extraction = await read_document(self, self.document)
        self.extraction = extraction
        yield streaming.doc_analysis_thinking(
            name,
            f'Read complete: {extraction.doc_type} ({extraction.language}). Cross-checking against "{name}"...',
        )

        check = CrossCheckTask(extraction, self.requirement, self.previous, model=self.model)
        check.client = self.client
        async for event in check.run():
            yield event
        if check.failed:
            return

        outcome = check.result
        yield streaming.doc_analysis_result(name, extraction, outcome.compliance, outcome.cross_doc_findings)
        self.finish((extraction, outcome))
