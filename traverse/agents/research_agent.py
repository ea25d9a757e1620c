from __future__ import annotations

import asyncio
import time
from typing import Any, AsyncGenerator, Iterable

from pydantic import ValidationError

from traverse.agents.base import ReasoningTask, ThinkingRelay
from traverse.config import settings
from traverse.llm_client import thinking_config
from traverse.models.domain import RequirementItem, RequirementsChecklist, slugify
from traverse.models.events import BaseEvent, SearchState
from traverse.models.schemas import TravelDetails
from traverse.services import logger as log_service
from traverse.services import streaming
from traverse.services.corridor_cache import CorridorCache
from traverse.services.extractor import IncrementalArrayExtractor, extract_json_object
from traverse.services.personalization import LUMP_SUM_MARKER, minimal_checklist, personalize
from traverse.services.prompt_store import render_prompt


async def pause(ms: int | float) -> None:
    if ms > 0:
        await asyncio.sleep(ms / 1000)


def uploadable_first(items: Iterable[RequirementItem]) -> list[RequirementItem]:
    return sorted(items, key=lambda item: 0 if item.uploadable is not False else 1)


class ResearchTask(ReasoningTask[RequirementsChecklist]):
    """Travel details -> requirements checklist.

    Uses precomputed corridor data when it exists (unless live search is
    forced) and the reasoning backend otherwise.
    """

    name = "Research Agent"

    def __init__(
        self,
        travel: TravelDetails,
        *,
        cache: CorridorCache | None = None,
        use_live_search: bool | None = None,
        model: str | None = None,
    ):
        super().__init__(model=model)
        self.travel = travel
        self.cache = cache or CorridorCache()
        self.use_live_search = settings.use_live_search if use_live_search is None else use_live_search
        self.strategy: CorridorResearch | None = None

    def fallback(self) -> RequirementsChecklist:
        return minimal_checklist(self.travel)

    def select_strategy(self, cached: RequirementsChecklist | None) -> "CorridorResearch":
        if cached is not None and not self.use_live_search:
            return CachedCorridorResearch(self, cached)
        return LiveCorridorResearch(self, cached)

    async def execute(self) -> AsyncGenerator[BaseEvent, None]:
        corridor = self.travel.corridor
        yield streaming.agent_started(self.name, f"Researching requirements for {corridor}")

        cached = await self.cache.load(corridor)
        self.strategy = self.select_strategy(cached)
        log_service.log_event(
            event_type="research_strategy",
            message=f"Researching {corridor} with {type(self.strategy).__name__}",
            corridor=corridor,
            cached=cached is not None,
        )
        async for event in self.strategy.research():
            yield event


class CorridorResearch:
    """Shared event contract for the research strategies."""

    def __init__(self, task: ResearchTask, cached: RequirementsChecklist | None):
        self.task = task
        self.travel = task.travel
        self.cached = cached

    @property
    def agent(self) -> str:
        return self.task.name

    async def research(self) -> AsyncGenerator[BaseEvent, None]:
        raise NotImplementedError
        yield  # pragma: no cover

    def completed(self, message: str | None = None) -> BaseEvent:
        elapsed = self.task.elapsed_ms()
        return streaming.agent_completed(
            self.agent,
            message or f"Research complete in {elapsed / 1000:.1f}s",
            duration_ms=elapsed,
        )


class CachedCorridorResearch(CorridorResearch):
    """Deterministic research over a corridor file, narrated as a thinking trace."""

    cached: RequirementsChecklist

    async def research(self) -> AsyncGenerator[BaseEvent, None]:
        travel = self.travel
        cached = self.cached
        sources = cached.sources or []
        valid_until = travel.passport_valid_until.isoformat()

        trace = (
            f"Searching for {travel.purpose_label} visa requirements: {travel.corridor}.\n"
            f"Trip dates: {travel.dates.depart.isoformat()} to {travel.dates.return_date.isoformat()} "
            f"({travel.trip_days} days).\n"
        )
        yield streaming.thinking(self.agent, "Searching", trace)

        for source in sources:
            yield streaming.search_status(source.name, SearchState.SEARCHING, source.url)
            await pause(settings.emit_interval_ms)
            yield streaming.search_status(source.name, SearchState.FOUND, source.url)
            await pause(settings.short_delay_ms)

        trace += f"\nFound {len(sources)} official sources. Cross-referencing requirements.\n"
        yield streaming.thinking(self.agent, "Sources found", trace)
        await pause(settings.short_delay_ms * 2)

        trace += f"\n§ VISA TYPE\n{cached.visa_type}"
        if cached.fees.visa:
            trace += f" (fee: {cached.fees.visa})"
        trace += "\n"
        if cached.processing_time:
            trace += f"Processing: {cached.processing_time}\n"
        if cached.apply_at:
            trace += f"Where to apply: {cached.apply_at}\n"
        if cached.application_window:
            window = cached.application_window
            trace += f"Application window: submit {window.latest} before travel (earliest: {window.earliest})\n"
        yield streaming.thinking(self.agent, cached.visa_type, trace)
        await pause(settings.emit_interval_ms)

        required = [item for item in cached.items if item.required]
        optional = [item for item in cached.items if not item.required]
        trace += f"\n§ REQUIRED DOCUMENTS ({len(required)})\n"
        trace += "".join(f"• {item.name}: {item.description}\n" for item in required)
        if optional:
            trace += f"\n§ RECOMMENDED ({len(optional)})\n"
            trace += "".join(f"• {item.name}: {item.description}\n" for item in optional)
        yield streaming.thinking(self.agent, f"{len(required)} required, {len(optional)} recommended", trace)
        await pause(settings.emit_interval_ms)

        personalized = personalize(cached, travel)
        trace += f"\n§ PERSONALIZING FOR THIS TRIP\nPassport must be valid until {valid_until}.\n"
        trace += self._financial_note(personalized)
        if cached.document_language:
            language = cached.document_language
            line = f"Documents accepted in: {', '.join(language.accepted)}"
            if language.translation_required:
                line += ". Certified translation required" if language.certified_translation else ". Translation required"
            trace += f"{line}.\n"
        trace += "".join(f"{note}\n" for note in cached.important_notes)
        yield streaming.thinking(self.agent, "Personalizing", trace)
        await pause(settings.short_delay_ms * 2)

        if cached.common_rejection_reasons:
            trace += "\n§ WATCH OUT\nCommon reasons applications on this corridor get rejected:\n"
            trace += "".join(f"⚠ {reason}\n" for reason in cached.common_rejection_reasons)
            yield streaming.thinking(self.agent, "Rejection risks identified", trace)
            await pause(settings.short_delay_ms)

        for item in uploadable_first(personalized.items):
            yield streaming.requirement(item)
            await pause(settings.short_delay_ms)

        trace += (
            f"\n§ DONE\n{len(personalized.items)} requirements identified from {len(sources)} sources. "
            "Ready for document verification."
        )
        yield streaming.thinking(self.agent, "Research complete", trace)

        if sources:
            yield streaming.sources(sources)
        yield self.completed()
        self.task.finish(personalized)

    @staticmethod
    def _financial_note(checklist: RequirementsChecklist) -> str:
        thresholds = checklist.financial_thresholds
        if not thresholds:
            return ""
        note = ""
        if thresholds.daily_minimum and thresholds.daily_minimum != LUMP_SUM_MARKER:
            note += f"Financial proof: {thresholds.daily_minimum}"
            if thresholds.total_recommended:
                note += f" ({thresholds.total_recommended})"
            note += ".\n"
        elif thresholds.total_recommended:
            note += f"Financial proof: {thresholds.total_recommended}.\n"
        if thresholds.notes:
            note += f"{thresholds.notes}\n"
        return note


class LiveCorridorResearch(CorridorResearch):
    """Research through the reasoning backend, surfacing requirements as they stream."""

    def __init__(self, task: ResearchTask, cached: RequirementsChecklist | None):
        super().__init__(task, cached)
        self.extractor = IncrementalArrayExtractor(field="items")
        self.surfaced = 0
        self.streamed: list[RequirementItem] = []
        self.searches = 0

    def _on_text(self, chunk: str) -> Iterable[BaseEvent]:
        for raw in self.extractor.feed(chunk):
            try:
                item = RequirementItem.model_validate(raw)
            except ValidationError:
                continue
            self.surfaced += 1
            if not item.id:
                item.id = f"req-{self.surfaced}-{slugify(item.name)}"
            self.streamed.append(item)
            yield streaming.requirement(item)

    def _on_block_start(self, block: Any) -> Iterable[BaseEvent]:
        if getattr(block, "type", None) in ("tool_use", "server_tool_use"):
            self.searches += 1
            yield streaming.search_status(f"Web search {self.searches}", SearchState.SEARCHING)

    def _progress(self) -> str:
        return f"Found {self.surfaced} requirements so far" if self.surfaced else "Compiling results"

    def _prompts(self) -> tuple[str, str]:
        travel = self.travel
        event_line = f"EVENT: {travel.event}" if travel.event else ""
        system = render_prompt(
            "research.system",
            corridor=travel.corridor,
            purpose=travel.purpose_label,
            depart=travel.dates.depart.isoformat(),
            return_date=travel.dates.return_date.isoformat(),
            trip_days=travel.trip_days,
            travelers=travel.travelers,
            event_line=event_line,
            valid_until=travel.passport_valid_until.isoformat(),
        )
        if len(travel.passports) == 1:
            passport_line = f"I hold a {travel.passports[0]} passport"
        else:
            passport_line = f"I hold {' and '.join(travel.passports)} passports"
        user = render_prompt(
            "research.user",
            passport_line=passport_line,
            destination=travel.destination,
            purpose=travel.purpose_label,
            depart=travel.dates.depart.isoformat(),
            return_date=travel.dates.return_date.isoformat(),
            event_line=f"I'll be attending: {travel.event}. " if travel.event else "",
            travelers=travel.travelers,
        )
        return system, user

    def _parse(self, text: str) -> RequirementsChecklist | None:
        data = extract_json_object(text)
        if data is None:
            log_service.logger.warning("Research output contained no JSON object")
            return None
        data.setdefault("corridor", self.travel.corridor)
        try:
            return RequirementsChecklist.model_validate(data)
        except ValidationError as exc:
            log_service.logger.warning(f"Research output did not match the checklist schema: {exc}")
            return None

    def _reconcile(self, checklist: RequirementsChecklist | None) -> RequirementsChecklist:
        """Fold the requirements already streamed into the final checklist.

        Streamed items keep the ids the client has seen. When the final output
        did not parse (e.g. it was cut off), the streamed items are the result.
        """
        if checklist is None:
            fallback = minimal_checklist(self.travel)
            if not self.streamed:
                return fallback
            log_service.log_event(
                event_type="research_partial_output",
                message=f"Keeping {len(self.streamed)} streamed requirements after unparseable output",
                corridor=self.travel.corridor,
            )
            return fallback.model_copy(update={"items": list(self.streamed)})

        by_name = {item.name.strip().lower(): item for item in self.streamed}
        seen: set[str] = set()
        for item in checklist.items:
            match = by_name.get(item.name.strip().lower())
            if match is not None:
                item.id = match.id
                seen.add(match.id)
        missing = [item for item in self.streamed if item.id not in seen]
        if missing:
            checklist = checklist.model_copy(update={"items": [*checklist.items, *missing]})
        return checklist

    async def research(self) -> AsyncGenerator[BaseEvent, None]:
        travel = self.travel
        try:
            system, user = self._prompts()
            relay = ThinkingRelay(
                self.agent,
                summary="Analyzing visa requirements",
                opening=f"Researching {travel.corridor} requirements...\n",
                compiling="Compiling structured requirements",
                writing="Writing structured requirements",
                on_text=self._on_text,
                on_block_start=self._on_block_start,
                progress_summary=self._progress,
            )
            started = time.monotonic()
            stream = await self.task.open_stream(
                max_tokens=settings.research_max_tokens,
                thinking=thinking_config(),
                system=system,
                messages=[{"role": "user", "content": user}],
            )
            async for event in relay.relay(stream):
                yield event
            self.task.log_stream(relay, started)
        except Exception as exc:
            log_service.log_event(
                event_type="research_backend_error",
                message="Research backend call failed",
                error=str(exc),
                corridor=travel.corridor,
                has_cache=self.cached is not None,
            )
            if self.cached is not None:
                async for event in self._replay_cached():
                    yield event
                return
            yield self.task.fail(f"Research Agent error: {exc}", minimal_checklist(travel))
            return

        yield streaming.search_status(f"{travel.destination} visa requirements", SearchState.FOUND)

        checklist = self._reconcile(self._parse(relay.text))
        surfaced_ids = {item.id for item in self.streamed}
        for item in uploadable_first(checklist.items):
            if item.id in surfaced_ids:
                continue
            yield streaming.requirement(item)

        if checklist.sources:
            for source in checklist.sources:
                if source.name and source.url:
                    yield streaming.search_status(source.name, SearchState.FOUND, source.url)
            yield streaming.sources(checklist.sources)

        yield self.completed()
        self.task.finish(checklist)

    async def _replay_cached(self) -> AsyncGenerator[BaseEvent, None]:
        """Backend failed but corridor data exists: answer from it without pacing."""
        yield streaming.agent_completed(self.agent, "Using cached requirements data")
        personalized = personalize(self.cached, self.travel)
        sources = self.cached.sources or []
        for source in sources:
            yield streaming.search_status(source.name, SearchState.FOUND, source.url)
        if sources:
            yield streaming.sources(sources)
        for item in uploadable_first(personalized.items):
            yield streaming.requirement(item)
        self.task.finish(personalized)
