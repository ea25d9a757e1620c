"""Tests for advisory refinement over the deterministic report."""
import pytest

from conftest import FakeStream, as_json, chunked, fake_client, stream_events
from traverse.agents.advisory_agent import AdvisoryTask, deterministic_report
from traverse.models.domain import (
    ApplicationAssessment,
    ComplianceItem,
    ComplianceStatus,
    RemediationItem,
    Severity,
)
from traverse.models.events import EventType


def _compliances(checklist):
    return [
        ComplianceItem(requirement="Valid Passport", status=ComplianceStatus.MET, requirement_id=checklist.items[0].id),
        ComplianceItem(
            requirement="Bank Statements",
            status=ComplianceStatus.CRITICAL,
            detail="Balance too low",
            requirement_id=checklist.items[1].id,
        ),
    ]


def _client_answering(payload):
    return fake_client(stream=FakeStream(stream_events(thinking="r" * 120, text_chunks=chunked(as_json(payload)))))


def test_deterministic_report_resumes_from_prior_fixes(checklist):
    prior = [
        RemediationItem(
            severity=Severity.WARNING,
            issue="Travel Insurance — needs attention",
            fix="Extend the policy",
            requirement_id=checklist.items[2].id,
            requirement="Travel Insurance",
        )
    ]
    report = deterministic_report(checklist, _compliances(checklist)[:1], prior_fixes=prior)

    assert len(report.fixes) == 1
    assert report.fixes[0].severity == Severity.WARNING
    assert report.overall == ApplicationAssessment.ADDITIONAL_DOCUMENTS_NEEDED


@pytest.mark.asyncio
async def test_refine_rewords_without_changing_severity(checklist):
    compliances = _compliances(checklist)
    bank_id = checklist.items[1].id
    task = AdvisoryTask(checklist, compliances)
    task.client = _client_answering(
        {
            "fixes": [
                {"requirementId": bank_id, "severity": "info", "issue": "Bank", "fix": "Let's top up the account first."},
                {"severity": "info", "issue": "Bring snacks", "fix": "Pack a lunch."},
                {"severity": "warning", "issue": "Employer letter unsigned", "fix": "Ask HR to sign it."},
            ],
            "interviewTips": ["Speak calmly."],
            "corridorWarnings": ["Peak season delays in summer."],
        }
    )

    report, events = await task.run_to_completion()

    assert not task.failed
    bank = next(fix for fix in report.fixes if fix.requirement_id == bank_id)
    assert bank.severity == Severity.CRITICAL
    assert bank.fix == "Let's top up the account first."
    assert bank.issue == "Bank Statements — action required"

    issues = [fix.issue for fix in report.fixes]
    assert "Bring snacks" not in issues
    assert "Employer letter unsigned" in issues
    assert [fix.priority for fix in report.fixes] == list(range(1, len(report.fixes) + 1))
    assert report.fixes[0].severity == Severity.CRITICAL
    assert report.overall == ApplicationAssessment.SIGNIFICANT_ISSUES

    assert report.interview_tips[0] == "Speak calmly."
    assert len(report.interview_tips) <= 4
    assert report.corridor_warnings[-1] == "Peak season delays in summer."

    recommendations = [event for event in events if event.type == EventType.RECOMMENDATION]
    assert len(recommendations) == len(report.fixes)
    assessment = next(event for event in events if event.type == EventType.ASSESSMENT)
    assert assessment.overall == ApplicationAssessment.SIGNIFICANT_ISSUES
    assert events[-1].action == "agent_complete"


@pytest.mark.asyncio
async def test_refine_matches_by_requirement_name(checklist):
    task = AdvisoryTask(checklist)
    task.client = _client_answering(
        {"fixes": [{"issue": "About your Travel Insurance", "fix": "Buy a Schengen policy covering EUR 30,000."}]}
    )

    report, _ = await task.run_to_completion()

    insurance = next(fix for fix in report.fixes if fix.requirement == "Travel Insurance")
    assert insurance.fix == "Buy a Schengen policy covering EUR 30,000."
    assert len(report.fixes) == 3


@pytest.mark.asyncio
async def test_backend_failure_keeps_deterministic_report_silently(checklist):
    compliances = _compliances(checklist)
    task = AdvisoryTask(checklist, compliances)
    task.client = fake_client(error=RuntimeError("rate limited"))

    report, events = await task.run_to_completion()

    assert not task.failed
    assert EventType.ERROR not in [event.type for event in events]
    assert report == deterministic_report(checklist, compliances)
    assert events[-1].action == "agent_complete"


@pytest.mark.asyncio
async def test_unparseable_advisory_keeps_baseline(checklist):
    task = AdvisoryTask(checklist)
    task.client = fake_client(stream=FakeStream(stream_events(text_chunks=["Happy to help!"])))

    report, _ = await task.run_to_completion()
    assert report == task.baseline


def test_advisory_uses_its_own_model(checklist):
    from traverse.config import settings

    assert AdvisoryTask(checklist).model == settings.advisory_model
