"""Deterministic advisory report construction.

``initialize`` produces a complete, plausible report from the requirements
checklist alone so the client has something to show before any document is
checked; ``merge`` then revises it one compliance result at a time. Both are
pure: the input report is never mutated.
"""
from __future__ import annotations

from functools import reduce
from typing import Iterable

from traverse.models.domain import (
    AdvisoryReport,
    ApplicationAssessment,
    ComplianceItem,
    ComplianceStatus,
    RemediationItem,
    RequirementsChecklist,
    Severity,
)

MAX_INTERVIEW_TIPS = 4

_STATUS_OUTCOME: dict[ComplianceStatus, tuple[Severity, str]] = {
    ComplianceStatus.MET: (Severity.INFO, "verified"),
    ComplianceStatus.WARNING: (Severity.WARNING, "needs attention"),
    ComplianceStatus.CRITICAL: (Severity.CRITICAL, "action required"),
}


def initialize(checklist: RequirementsChecklist) -> AdvisoryReport:
    fixes = [
        RemediationItem(
            severity=Severity.INFO,
            issue=f"{item.name} — required for your {checklist.visa_type} application",
            fix=item.personalized_detail or item.description,
            document_ref=item.name if item.uploadable else None,
            requirement_id=item.id or None,
            requirement=item.name,
        )
        for item in checklist.items
        if item.required
    ]
    fixes = renumber(fixes)
    return AdvisoryReport(
        overall=compute_overall(fixes),
        fixes=fixes,
        interview_tips=_interview_tips(checklist),
        corridor_warnings=_corridor_warnings(checklist),
    )


def merge(report: AdvisoryReport, compliance: ComplianceItem) -> AdvisoryReport:
    outcome = _STATUS_OUTCOME.get(compliance.status)
    if outcome is None:
        fixes = list(report.fixes)
    else:
        severity, verdict = outcome
        fixes = [
            _apply(fix, compliance, severity, verdict) if _matches(fix, compliance) else fix
            for fix in report.fixes
        ]
    return with_fixes(report, fixes)


def with_fixes(report: AdvisoryReport, fixes: Iterable[RemediationItem]) -> AdvisoryReport:
    """Replace the fixes of a report, restoring order, priorities and verdict."""
    fixes = renumber(sort_fixes(fixes))
    return report.model_copy(update={"fixes": fixes, "overall": compute_overall(fixes)})


def merge_all(report: AdvisoryReport, compliances: Iterable[ComplianceItem]) -> AdvisoryReport:
    return reduce(merge, compliances, report)


def sort_fixes(fixes: Iterable[RemediationItem]) -> list[RemediationItem]:
    """Stable sort: critical, then warning, then info."""
    return sorted(fixes, key=lambda fix: fix.severity.rank)


def renumber(fixes: Iterable[RemediationItem]) -> list[RemediationItem]:
    return [fix.model_copy(update={"priority": index}) for index, fix in enumerate(fixes, start=1)]


def compute_overall(fixes: Iterable[RemediationItem]) -> ApplicationAssessment:
    fixes = list(fixes)
    if any(fix.severity == Severity.CRITICAL for fix in fixes):
        return ApplicationAssessment.SIGNIFICANT_ISSUES
    if any(fix.severity == Severity.WARNING for fix in fixes):
        return ApplicationAssessment.ADDITIONAL_DOCUMENTS_NEEDED
    if any(not fix.issue.rstrip().endswith("verified") for fix in fixes):
        return ApplicationAssessment.ADDITIONAL_DOCUMENTS_NEEDED
    return ApplicationAssessment.APPLICATION_PROCEEDS


def requirement_reference(fix: RemediationItem) -> str:
    """The requirement name a fix was created for."""
    if fix.requirement:
        return fix.requirement
    if fix.document_ref:
        return fix.document_ref
    return fix.issue.split("—")[0].strip()


def _matches(fix: RemediationItem, compliance: ComplianceItem) -> bool:
    if compliance.requirement_id and fix.requirement_id:
        return fix.requirement_id == compliance.requirement_id
    reference = requirement_reference(fix).strip().lower()
    name = compliance.requirement.strip().lower()
    if not reference or not name:
        return False
    return reference in name or name in reference


def _apply(
    fix: RemediationItem,
    compliance: ComplianceItem,
    severity: Severity,
    verdict: str,
) -> RemediationItem:
    label = compliance.requirement or requirement_reference(fix)
    return fix.model_copy(
        update={
            "severity": severity,
            "issue": f"{label} — {verdict}",
            "fix": compliance.detail or fix.fix,
            "document_ref": compliance.document_ref or fix.document_ref,
        }
    )


def _corridor_warnings(checklist: RequirementsChecklist) -> list[str]:
    warnings = list(checklist.important_notes)

    if checklist.processing_time:
        warnings.append(f"Processing time: {checklist.processing_time}. Apply at: {checklist.apply_at}")

    window = checklist.application_window
    if window:
        warnings.append(f"Application window: earliest {window.earliest}, latest {window.latest}")

    if checklist.common_rejection_reasons:
        warnings.append(f"Common rejection reasons: {'; '.join(checklist.common_rejection_reasons)}")

    thresholds = checklist.financial_thresholds
    if thresholds:
        parts: list[str] = []
        if thresholds.daily_minimum:
            parts.append(f"{thresholds.daily_minimum}/day minimum")
        if thresholds.total_recommended:
            parts.append(f"{thresholds.total_recommended} total recommended")
        if thresholds.notes:
            parts.append(thresholds.notes)
        if parts:
            warnings.append(f"Financial requirements: {', '.join(parts)}")

    registration = checklist.post_arrival_registration
    if registration and registration.required:
        line = "Post-arrival registration required"
        if registration.deadline:
            line += f" {registration.deadline}"
        if registration.where:
            line += f" at {registration.where}"
        warnings.append(line)

    if checklist.transit_visa_info:
        warnings.append(checklist.transit_visa_info.warning)

    return warnings


def _names_mention(checklist: RequirementsChecklist, *keywords: str) -> bool:
    return any(keyword in item.name.lower() for item in checklist.items for keyword in keywords)


def _interview_tips(checklist: RequirementsChecklist) -> list[str]:
    tips = [
        "Be prepared to clearly explain the purpose of your trip and how it relates to "
        f"your {checklist.visa_type} application."
    ]
    if checklist.financial_thresholds or _names_mention(checklist, "bank", "fund", "financial"):
        tips.append(
            "Have your financial documents organized — be ready to explain the source of "
            "funds shown in your bank statements."
        )
    if _names_mention(checklist, "accommodation", "hotel"):
        tips.append("Bring a printed copy of your accommodation booking that matches your stated travel dates.")
    if _names_mention(checklist, "employer", "invitation", "business"):
        tips.append(
            "If asked about your employer, have your company's registration details and "
            "your employment contract handy."
        )
    return tips[:MAX_INTERVIEW_TIPS]
