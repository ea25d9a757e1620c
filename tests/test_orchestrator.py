"""Tests for the fan-in merger and the analysis pipeline's terminal guarantees."""
import asyncio

import pytest

from conftest import FakeStream, as_json, chunked, fake_client, stream_events, text_response
from traverse.agents.base import ReasoningTask
from traverse.agents.orchestrator import AnalysisOrchestrator, FanIn
from traverse.models.domain import ApplicationAssessment, ComplianceStatus
from traverse.models.events import EventType
from traverse.services import streaming


class TickTask(ReasoningTask[int]):
    def __init__(self, name, ticks, delay=0.0, fail_after=None):
        super().__init__(model="test-model")
        self.name = name
        self.ticks = ticks
        self.delay = delay
        self.fail_after = fail_after
        self.cancelled = False

    def fallback(self):
        return -1

    async def execute(self):
        try:
            for index in range(self.ticks):
                if self.fail_after is not None and index == self.fail_after:
                    yield self.fail(f"{self.name} broke", -1)
                    return
                yield streaming.thinking(self.name, str(index))
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        self.finish(self.ticks)


def _types(events):
    return [event.type for event in events]


@pytest.mark.asyncio
async def test_fan_in_preserves_per_task_order():
    first = TickTask("first", 5, delay=0.001)
    second = TickTask("second", 3)
    fan_in = FanIn([first, second], queue_size=1)

    events = [event async for event in fan_in.stream()]

    assert not fan_in.failed
    assert [event.summary for event in events if event.agent == "first"] == ["0", "1", "2", "3", "4"]
    assert [event.summary for event in events if event.agent == "second"] == ["0", "1", "2"]
    assert first.result == 5
    assert second.result == 3


@pytest.mark.asyncio
async def test_fan_in_failure_cancels_siblings_and_ends_with_one_error():
    slow = TickTask("slow", 1000, delay=0.01)
    broken = TickTask("broken", 5, fail_after=2)
    fan_in = FanIn([slow, broken])

    events = [event async for event in fan_in.stream()]

    assert fan_in.failed
    assert fan_in.failed_task is broken
    assert _types(events).count(EventType.ERROR) == 1
    assert events[-1].type == EventType.ERROR
    assert events[-1].message == "broken broke"
    assert [event.summary for event in events if getattr(event, "agent", None) == "broken"] == ["0", "1"]
    assert slow.cancelled
    assert any(getattr(event, "agent", None) == "slow" for event in events)


@pytest.mark.asyncio
async def test_analysis_without_documents_completes_with_requirements(travel):
    events = [event async for event in AnalysisOrchestrator().run(travel)]

    assert events[0].type == EventType.ORCHESTRATOR
    assert events[0].message == "Starting analysis with 1 agent"
    assert events[-1].type == EventType.COMPLETE
    assert _types(events).count(EventType.COMPLETE) == 1
    data = events[-1].data
    assert data.requirements.corridor == "India → Germany"
    assert data.extractions is None
    assert data.advisory is None


@pytest.mark.asyncio
async def test_full_analysis_with_documents(travel, document):
    read = {"docType": "passport", "language": "English", "extractedText": "PASSPORT", "structuredData": {}}
    analysis = {
        "compliance": {
            "items": [
                {"requirement": "Valid Passport", "status": "met", "detail": "Valid to 2031"},
                {"requirement": "Bank Statements", "status": "critical", "detail": "No statements uploaded"},
            ]
        },
        "crossLingualFindings": [],
        "narrativeAssessment": {"strength": "WEAK", "issues": [], "summary": "Thin application"},
        "forensicFlags": [{"severity": "info", "finding": "Scan is clear"}],
    }
    client = fake_client(
        response=text_response(as_json(read)),
        stream=lambda kwargs: FakeStream(stream_events(text_chunks=chunked(as_json(analysis)))),
    )

    events = [event async for event in AnalysisOrchestrator(client=client).run(travel, [document])]
    types = _types(events)

    assert events[0].message == "Starting analysis with 2 agents"
    assert EventType.ERROR not in types
    assert types.count(EventType.COMPLETE) == 1
    assert types[-1] == EventType.COMPLETE
    assert EventType.DOCUMENT_READ in types
    assert types.index(EventType.NARRATIVE) < types.index(EventType.RECOMMENDATION) < types.index(EventType.ASSESSMENT)

    data = events[-1].data
    assert [extraction.doc_type for extraction in data.extractions] == ["passport"]
    assert data.analysis.compliance.items[1].status == ComplianceStatus.CRITICAL
    assert data.advisory.overall == ApplicationAssessment.SIGNIFICANT_ISSUES
    assert data.advisory.fixes[0].issue == "Bank Statements — action required"
    assert data.advisory.fixes[0].requirement_id == data.requirements.items[2].id


@pytest.mark.asyncio
async def test_research_failure_ends_stream_with_single_error(uncached_travel, document):
    client = fake_client(error=RuntimeError("backend unavailable"))

    events = [event async for event in AnalysisOrchestrator(client=client).run(uncached_travel, [document])]
    types = _types(events)

    assert types.count(EventType.ERROR) == 1
    assert types[-1] == EventType.ERROR
    assert EventType.COMPLETE not in types
    assert events[-1].message == "Research Agent error: backend unavailable"


@pytest.mark.asyncio
async def test_analyzer_failure_ends_stream_with_single_error(travel, document):
    read = {"docType": "passport", "language": "English", "extractedText": "PASSPORT"}
    client = fake_client(response=text_response(as_json(read)), stream=RuntimeError("stream reset"))

    events = [event async for event in AnalysisOrchestrator(client=client).run(travel, [document])]
    types = _types(events)

    assert types.count(EventType.ERROR) == 1
    assert types[-1] == EventType.ERROR
    assert EventType.COMPLETE not in types
    assert EventType.REQUIREMENT in types


class _StubTask(ReasoningTask):
    labels: tuple[str, ...] = ()
    value = None

    def __init__(self, *args, **kwargs):
        super().__init__(model="test-model")
        self.args = args

    def fallback(self):
        return self.value

    async def execute(self):
        for label in self.labels:
            yield streaming.thinking(self.name, label)
            await asyncio.sleep(0)
        self.finish(self.value)


@pytest.mark.asyncio
async def test_dependent_task_runs_after_both_concurrent_tasks(monkeypatch, travel, document, checklist):
    from traverse.models.domain import DocumentAnalysis

    class Research(_StubTask):
        name = "research"
        labels = ("a1", "a2")
        value = checklist

    class Reader(_StubTask):
        name = "reader"
        labels = ("b1",)
        value = []

    class Analyzer(_StubTask):
        name = "analyzer"
        labels = ("c1",)
        value = DocumentAnalysis()

    monkeypatch.setattr("traverse.agents.orchestrator.ResearchTask", Research)
    monkeypatch.setattr("traverse.agents.orchestrator.DocumentReaderTask", Reader)
    monkeypatch.setattr("traverse.agents.orchestrator.DocumentAnalyzerTask", Analyzer)

    events = [event async for event in AnalysisOrchestrator().run(travel, [document])]
    labels = [event.summary for event in events if event.type == EventType.THINKING]

    assert labels.index("a1") < labels.index("a2") < labels.index("c1")
    assert labels.index("b1") < labels.index("c1")
    assert events[-1].type == EventType.COMPLETE
    data = events[-1].data
    assert data.extractions == []
    assert data.advisory.overall == ApplicationAssessment.ADDITIONAL_DOCUMENTS_NEEDED
    assert len([event for event in events if event.type == EventType.RECOMMENDATION]) == 3
