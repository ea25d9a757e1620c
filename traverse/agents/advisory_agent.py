from __future__ import annotations

import time
from typing import Any, AsyncGenerator

from pydantic import ValidationError

from traverse.agents.base import ReasoningTask, ThinkingRelay
from traverse.config import settings
from traverse.llm_client import get_advisory_model, thinking_config
from traverse.models.domain import (
    AdvisoryReport,
    ComplianceItem,
    DocumentExtraction,
    RemediationItem,
    RequirementsChecklist,
    Severity,
)
from traverse.models.events import BaseEvent
from traverse.services import advisory_builder
from traverse.services import logger as log_service
from traverse.services import streaming
from traverse.services.extractor import extract_json_object
from traverse.services.prompt_store import render_prompt

EXCERPT_LIMIT = 500


def deterministic_report(
    checklist: RequirementsChecklist,
    compliances: list[ComplianceItem],
    prior_fixes: list[RemediationItem] | None = None,
) -> AdvisoryReport:
    """Initialize (or resume from prior fixes), then merge every compliance result."""
    report = advisory_builder.initialize(checklist)
    if prior_fixes is not None:
        report = advisory_builder.with_fixes(report, prior_fixes)
    return advisory_builder.merge_all(report, compliances)


class AdvisoryTask(ReasoningTask[AdvisoryReport]):
    """Checklist + compliance results -> prioritized advisory report.

    The report is always computed deterministically first. The backend may then
    reword existing fixes, contribute tips and warnings, and add extra
    critical/warning fixes; it never changes the severity of an existing fix,
    and `overall` is recomputed from the final fixes. A backend failure leaves
    the deterministic report in place.
    """

    name = "Advisory Agent"

    def __init__(
        self,
        requirements: RequirementsChecklist,
        compliances: list[ComplianceItem] | None = None,
        extractions: list[DocumentExtraction] | None = None,
        prior_fixes: list[RemediationItem] | None = None,
        model: str | None = None,
    ):
        super().__init__(model=model or get_advisory_model())
        self.requirements = requirements
        self.compliances = compliances or []
        self.extractions = extractions or []
        self.prior_fixes = prior_fixes
        self.baseline = deterministic_report(requirements, self.compliances, prior_fixes)

    def fallback(self) -> AdvisoryReport:
        return self.baseline

    def _prompts(self) -> tuple[str, str]:
        checklist = self.requirements
        requirements_text = "\n".join(
            f"- [{item.id}] {item.name}: {item.description}" for item in checklist.items
        )
        extractions_text = "\n\n".join(
            f"[{ext.doc_type}] ({ext.language}): {ext.extracted_text[:EXCERPT_LIMIT]}"
            f"{'...' if len(ext.extracted_text) > EXCERPT_LIMIT else ''}"
            for ext in self.extractions
        )
        compliance_text = "\n".join(
            f"- {item.requirement}: {item.status.value.upper()}{f' — {item.detail}' if item.detail else ''}"
            for item in self.compliances
        )
        baseline_text = "\n".join(
            f"{fix.priority}. [{fix.severity.value}] ({fix.requirement_id or '-'}) {fix.issue}: {fix.fix}"
            for fix in self.baseline.fixes
        )
        system = render_prompt("advisory.system", corridor=checklist.corridor, visa_type=checklist.visa_type)
        user = render_prompt(
            "advisory.user",
            requirement_count=len(checklist.items),
            requirements=requirements_text or "(none)",
            document_count=len(self.extractions),
            extractions=extractions_text or "(none)",
            compliances=compliance_text or "(none)",
            baseline=baseline_text or "(none)",
        )
        return system, user

    def refine(self, text: str) -> AdvisoryReport:
        """Layer the backend's suggestions over the deterministic report."""
        data = extract_json_object(text)
        if data is None:
            log_service.logger.warning("Advisory output could not be parsed; keeping deterministic report")
            return self.baseline

        suggestions: list[RemediationItem] = []
        for raw in data.get("fixes") or []:
            if not isinstance(raw, dict):
                continue
            try:
                suggestions.append(RemediationItem.model_validate({"issue": "", "fix": "", **raw}))
            except ValidationError:
                continue

        fixes = list(self.baseline.fixes)
        for suggestion in suggestions:
            if not suggestion.fix:
                continue
            index = _find_fix(fixes, suggestion)
            if index is not None:
                fixes[index] = fixes[index].model_copy(update={"fix": suggestion.fix})
            elif suggestion.severity != Severity.INFO and suggestion.issue:
                fixes.append(suggestion)

        tips = _merge_lines(_strings(data.get("interviewTips")), self.baseline.interview_tips)
        warnings = _merge_lines(self.baseline.corridor_warnings, _strings(data.get("corridorWarnings")))
        report = self.baseline.model_copy(
            update={
                "interview_tips": tips[: advisory_builder.MAX_INTERVIEW_TIPS],
                "corridor_warnings": warnings,
            }
        )
        return advisory_builder.with_fixes(report, fixes)

    async def execute(self) -> AsyncGenerator[BaseEvent, None]:
        yield streaming.agent_started(self.name, "Synthesizing advisory report...")

        relay = ThinkingRelay(
            self.name,
            summary="Reviewing application",
            opening=(
                f"Synthesizing {len(self.extractions)} documents against "
                f"{len(self.requirements.items)} requirements...\n"
            ),
            compiling="Compiling advisory",
            writing="Generating advisory report",
        )
        report = self.baseline
        try:
            system, user = self._prompts()
            started = time.monotonic()
            stream = await self.open_stream(
                max_tokens=settings.advisory_max_tokens,
                thinking=thinking_config(),
                system=system,
                messages=[{"role": "user", "content": user}],
            )
            async for event in relay.relay(stream):
                yield event
            self.log_stream(relay, started)
            report = self.refine(relay.text)
        except Exception as exc:
            log_service.log_event(
                event_type="advisory_fallback",
                message="Advisory refinement failed; using deterministic report",
                error=str(exc),
            )

        for fix in report.fixes:
            yield streaming.recommendation(fix)
        yield streaming.assessment(report.overall)

        elapsed = self.elapsed_ms()
        yield streaming.agent_completed(self.name, f"Advisory ready with {len(report.fixes)} fixes", duration_ms=elapsed)
        self.finish(report)


def _find_fix(fixes: list[RemediationItem], suggestion: RemediationItem) -> int | None:
    if suggestion.requirement_id:
        for index, fix in enumerate(fixes):
            if fix.requirement_id == suggestion.requirement_id:
                return index
    probe = " ".join(
        part for part in (suggestion.requirement, suggestion.document_ref, suggestion.issue) if part
    ).lower()
    if not probe:
        return None
    for index, fix in enumerate(fixes):
        reference = advisory_builder.requirement_reference(fix).strip().lower()
        if reference and reference in probe:
            return index
    return None


def _strings(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def _merge_lines(first: list[str], second: list[str]) -> list[str]:
    seen: set[str] = set()
    merged: list[str] = []
    for line in [*first, *second]:
        key = line.lower()
        if key not in seen:
            seen.add(key)
            merged.append(line)
    return merged
