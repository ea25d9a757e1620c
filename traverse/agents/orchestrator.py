from __future__ import annotations

import asyncio
from typing import Any, AsyncGenerator, Sequence

from traverse.agents.base import ReasoningTask
from traverse.agents.document_agent import DocumentAnalyzerTask, DocumentReaderTask
from traverse.agents.research_agent import ResearchTask
from traverse.config import settings
from traverse.models.domain import AnalysisResult
from traverse.models.events import BaseEvent, EventType
from traverse.models.schemas import TravelDetails, UploadedDocument
from traverse.services import advisory_builder
from traverse.services import logger as log_service
from traverse.services import streaming
from traverse.services.corridor_cache import CorridorCache

_PUMP_DONE = object()


class FanIn:
    """Run several reasoning tasks concurrently and merge their events into one stream.

    Each task is pumped by its own asyncio task into a shared bounded queue;
    the consumer awaits the queue directly. Per-task order is preserved. When a
    task fails, its siblings are cancelled, whatever they already queued is
    delivered, and the stream ends with the failing task's single error event.
    """

    def __init__(self, tasks: Sequence[ReasoningTask], queue_size: int | None = None):
        self.tasks = list(tasks)
        self.queue_size = settings.fan_in_queue_size if queue_size is None else queue_size
        self.failed_task: ReasoningTask | None = None
        self._queue: asyncio.Queue[tuple[ReasoningTask, Any]] | None = None

    @property
    def failed(self) -> bool:
        return self.failed_task is not None

    async def _pump(self, task: ReasoningTask) -> None:
        assert self._queue is not None
        events = task.run()
        try:
            async for event in events:
                await self._queue.put((task, event))
        except Exception as exc:
            log_service.logger.exception(f"Fan-in pump for {task.name} failed")
            task.error_message = f"{task.name} error: {exc}"
            await self._queue.put((task, streaming.error(task.error_message)))
        finally:
            await events.aclose()
        await self._queue.put((task, _PUMP_DONE))

    async def stream(self) -> AsyncGenerator[BaseEvent, None]:
        self._queue = asyncio.Queue(maxsize=max(self.queue_size, 0))
        pumps = [asyncio.create_task(self._pump(task), name=f"pump:{task.name}") for task in self.tasks]
        remaining = len(pumps)
        try:
            while remaining:
                task, item = await self._queue.get()
                if item is _PUMP_DONE:
                    remaining -= 1
                    continue
                if item.type == EventType.ERROR:
                    self.failed_task = task
                    log_service.log_event(
                        event_type="fan_in_failed",
                        message=f"{task.name} failed; cancelling siblings",
                        task=task.name,
                        error=getattr(item, "message", None),
                    )
                    await _cancel(pumps)
                    for event in self._drain():
                        yield event
                    yield item
                    return
                yield item
        finally:
            await _cancel(pumps)

    def _drain(self) -> list[BaseEvent]:
        """Events already queued by siblings, minus markers and further errors."""
        assert self._queue is not None
        drained: list[BaseEvent] = []
        while not self._queue.empty():
            _, item = self._queue.get_nowait()
            if item is _PUMP_DONE or item.type == EventType.ERROR:
                continue
            drained.append(item)
        return drained


async def _cancel(pumps: list[asyncio.Task]) -> None:
    for pump in pumps:
        if not pump.done():
            pump.cancel()
    await asyncio.gather(*pumps, return_exceptions=True)


class AnalysisOrchestrator:
    """Coordinates research, document reading, analysis and advisory into one event stream."""

    def __init__(self, cache: CorridorCache | None = None, client: Any = None):
        self.cache = cache or CorridorCache()
        self.client = client

    def _attach(self, task: ReasoningTask) -> ReasoningTask:
        if self.client is not None:
            task.client = self.client
        return task

    async def run(
        self,
        travel: TravelDetails,
        documents: list[UploadedDocument] | None = None,
    ) -> AsyncGenerator[BaseEvent, None]:
        documents = documents or []
        agent_count = 2 if documents else 1
        log_service.log_event(
            event_type="analysis_started",
            message=f"Analysis started for {travel.corridor}",
            corridor=travel.corridor,
            documents=len(documents),
        )
        yield streaming.planning(f"Starting analysis with {agent_count} agent{'s' if agent_count > 1 else ''}")

        research = self._attach(ResearchTask(travel, cache=self.cache))

        if not documents:
            async for event in research.run():
                yield event
            if research.failed:
                return
            yield streaming.complete(AnalysisResult(requirements=research.result))
            return

        reader = self._attach(DocumentReaderTask(documents))
        fan_in = FanIn([research, reader])
        async for event in fan_in.stream():
            yield event
        if fan_in.failed:
            return

        requirements = research.result
        extractions = reader.result

        analyzer = self._attach(DocumentAnalyzerTask(extractions, requirements))
        async for event in analyzer.run():
            yield event
        if analyzer.failed:
            return
        analysis = analyzer.result

        report = advisory_builder.merge_all(advisory_builder.initialize(requirements), analysis.compliance.items)
        for fix in report.fixes:
            yield streaming.recommendation(fix)
        yield streaming.assessment(report.overall)

        log_service.log_event(
            event_type="analysis_completed",
            message=f"Analysis completed for {travel.corridor}",
            overall=report.overall.value,
            fixes=len(report.fixes),
        )
        yield streaming.complete(
            AnalysisResult(
                requirements=requirements,
                extractions=extractions,
                analysis=analysis,
                advisory=report,
            )
        )
