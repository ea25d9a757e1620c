from __future__ import annotations

import time
from typing import Any, AsyncGenerator, AsyncIterator, Callable, Generic, Iterable, TypeVar

from traverse.config import settings
from traverse.errors import TaskNotFinishedError
from traverse.llm_client import client as llm_client, get_model
from traverse.models.events import BaseEvent, EventType
from traverse.services import logger as log_service
from traverse.services import streaming

ResultT = TypeVar("ResultT")

EventHook = Callable[[Any], Iterable[BaseEvent]]

_UNSET: Any = object()


class ReasoningTask(Generic[ResultT]):
    """A unit of work that streams progress events and resolves to one result.

    Subclasses implement `execute`, an async generator that yields events and
    calls `finish(value)` before returning, or yields `fail(message, fallback)`
    as its last event. `run` drives `execute` and guarantees that a failing
    task ends with exactly one error event and still has a result.
    """

    name: str = "Reasoning Task"

    def __init__(self, model: str | None = None):
        self.model = model or get_model()
        self.client = None
        self.error_message: str | None = None
        self._result: Any = _UNSET
        self._started = False
        self._started_at = 0.0

    # --- subclass surface ---

    async def execute(self) -> AsyncGenerator[BaseEvent, None]:
        raise NotImplementedError
        yield  # pragma: no cover

    def fallback(self) -> ResultT:
        """Result used when the task body raises."""
        raise NotImplementedError

    def finish(self, value: ResultT) -> None:
        self._result = value

    def fail(self, message: str, fallback: ResultT) -> BaseEvent:
        self.error_message = message
        self._result = fallback
        return streaming.error(message)

    # --- consumer surface ---

    @property
    def failed(self) -> bool:
        return self.error_message is not None

    @property
    def done(self) -> bool:
        return self._result is not _UNSET

    @property
    def result(self) -> ResultT:
        if self._result is _UNSET:
            raise TaskNotFinishedError(f"{self.name} has not finished")
        return self._result

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self._started_at) * 1000)

    async def run(self) -> AsyncGenerator[BaseEvent, None]:
        if self._started:
            raise RuntimeError(f"{self.name} cannot be restarted")
        self._started = True
        self._started_at = time.monotonic()
        log_service.log_event(event_type="task_started", message=f"{self.name} started", task=self.name)

        body = self.execute()
        try:
            async for event in body:
                yield event
                if event.type == EventType.ERROR:
                    if self.error_message is None:
                        self.error_message = getattr(event, "message", "")
                    break
        except Exception as exc:
            log_service.logger.exception(f"{self.name} failed")
            message = f"{self.name} error: {exc}"
            self.error_message = message
            self._result = self.fallback()
            yield streaming.error(message)
            return
        finally:
            await body.aclose()

        if self._result is _UNSET:
            self._result = self.fallback()
        log_service.log_event(
            event_type="task_failed" if self.failed else "task_completed",
            message=f"{self.name} {'failed' if self.failed else 'completed'}",
            task=self.name,
            duration_ms=self.elapsed_ms(),
            error=self.error_message,
        )

    async def run_to_completion(self) -> tuple[ResultT, list[BaseEvent]]:
        """Convenience: run the task collecting all events, return (result, events)."""
        events: list[BaseEvent] = []
        async for event in self.run():
            events.append(event)
        return self.result, events

    # --- backend helpers ---

    async def create_message(self, caller: str | None = None, **kwargs: Any) -> Any:
        """Non-streaming backend call with call logging."""
        active_client = self.client or llm_client()
        model = kwargs.setdefault("model", self.model)
        t0 = time.monotonic()
        try:
            response = await active_client.messages.create(**kwargs)
        except Exception as exc:
            log_service.log_llm_call(
                model=model,
                caller=caller or self.name,
                duration_ms=int((time.monotonic() - t0) * 1000),
                status="error",
                error=str(exc),
            )
            raise
        usage = getattr(response, "usage", None)
        log_service.log_llm_call(
            model=model,
            caller=caller or self.name,
            input_tokens=getattr(usage, "input_tokens", 0) or 0,
            output_tokens=getattr(usage, "output_tokens", 0) or 0,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )
        return response

    async def open_stream(self, **kwargs: Any) -> AsyncIterator[Any]:
        """Start a streaming backend call; iterate the result for raw stream events."""
        active_client = self.client or llm_client()
        kwargs.setdefault("model", self.model)
        return await active_client.messages.create(stream=True, **kwargs)

    def log_stream(self, relay: "ThinkingRelay", started: float, caller: str | None = None) -> None:
        log_service.log_llm_call(
            model=self.model,
            caller=caller or self.name,
            input_tokens=relay.input_tokens,
            output_tokens=relay.output_tokens,
            duration_ms=int((time.monotonic() - started) * 1000),
        )


def response_text(response: Any) -> str:
    """Concatenate the text blocks of a non-streaming response."""
    return "".join(
        getattr(block, "text", "") for block in getattr(response, "content", []) if getattr(block, "type", None) == "text"
    )


class ThinkingRelay:
    """Turns a raw Anthropic event stream into throttled progress events.

    Accumulates the thinking and text buffers. Thinking is surfaced at most
    every `emit_interval_ms` and only after `min_new_chars` new characters;
    a `thinking_depth` event marks every `depth_every_chars` of thinking.
    Text deltas go to `on_text`, block starts to `on_block_start`; both hooks
    may return events to emit.
    """

    TEXT_START_THRESHOLD = 100

    def __init__(
        self,
        agent: str,
        *,
        summary: str,
        opening: str,
        compiling: str = "Compiling results",
        writing: str = "Writing structured output",
        excerpt_chars: int = 8000,
        on_text: EventHook | None = None,
        on_block_start: EventHook | None = None,
        progress_summary: Callable[[], str] | None = None,
        thinking_event: Callable[[str, str], BaseEvent] | None = None,
        narrate: bool = True,
        emit_interval_ms: int | None = None,
        min_new_chars: int | None = None,
    ):
        self.agent = agent
        self.summary = summary
        self.opening = opening
        self.compiling = compiling
        self.writing = writing
        self.excerpt_chars = excerpt_chars
        self.on_text = on_text
        self.on_block_start = on_block_start
        self.progress_summary = progress_summary
        self.thinking_event = thinking_event or (
            lambda summary, excerpt: streaming.thinking(self.agent, summary, excerpt)
        )
        self.narrate = narrate
        self.emit_interval_ms = settings.emit_interval_ms if emit_interval_ms is None else emit_interval_ms
        self.min_new_chars = settings.min_new_chars if min_new_chars is None else min_new_chars
        self.text_progress_ms = settings.text_progress_ms
        self.depth_every_chars = max(settings.depth_every_chars, 1)
        self.budget = settings.thinking_budget_tokens

        self.thinking = ""
        self.text = ""
        self.input_tokens = 0
        self.output_tokens = 0
        self._thinking_done = False
        self._text_started = False
        self._last_emit = 0.0
        self._last_emit_len = 0
        self._last_text_emit = time.monotonic()
        self._next_depth = self.depth_every_chars

    def _excerpt(self) -> str:
        return self.thinking[-self.excerpt_chars :]

    def _due(self, since: float, interval_ms: int) -> bool:
        return (time.monotonic() - since) * 1000 >= interval_ms

    async def relay(self, stream: AsyncIterator[Any]) -> AsyncGenerator[BaseEvent, None]:
        async for raw in stream:
            kind = getattr(raw, "type", None)
            if kind == "message_start":
                usage = getattr(getattr(raw, "message", None), "usage", None)
                self.input_tokens = getattr(usage, "input_tokens", 0) or 0
            elif kind == "message_delta":
                usage = getattr(raw, "usage", None)
                self.output_tokens = getattr(usage, "output_tokens", 0) or self.output_tokens
            elif kind == "content_block_start":
                for event in self._block_started(raw.content_block):
                    yield event
            elif kind == "content_block_delta":
                for event in self._delta(raw.delta):
                    yield event
            elif kind == "content_block_stop":
                if not self._thinking_done and self.thinking:
                    self._thinking_done = True
                    if self.narrate and not self._text_started:
                        yield self.thinking_event("Reasoning complete", self._excerpt())

    def _block_started(self, block: Any) -> Iterable[BaseEvent]:
        block_type = getattr(block, "type", None)
        if block_type == "thinking":
            self._thinking_done = False
            self._last_emit = time.monotonic()
            self._last_emit_len = len(self.thinking)
            if self.narrate:
                yield self.thinking_event(self.summary, self.opening)
        elif block_type == "text":
            started = len(self.thinking) > self.TEXT_START_THRESHOLD or len(self.text) > self.TEXT_START_THRESHOLD
            if started and not self._text_started:
                self._text_started = True
                self._last_text_emit = time.monotonic()
                if self.narrate:
                    excerpt = (
                        f"{self._excerpt()}\n\n— {self.compiling}..." if self.thinking else f"{self.compiling}..."
                    )
                    yield self.thinking_event(self.compiling, excerpt)
        if self.on_block_start is not None:
            yield from self.on_block_start(block)

    def _delta(self, delta: Any) -> Iterable[BaseEvent]:
        delta_type = getattr(delta, "type", None)
        if delta_type == "thinking_delta":
            chunk = getattr(delta, "thinking", "") or ""
            self.thinking += chunk
            if self.narrate and len(self.thinking) >= self._next_depth:
                yield streaming.thinking_depth(self.agent, len(self.thinking), self.budget)
                while self._next_depth <= len(self.thinking):
                    self._next_depth += self.depth_every_chars
            new_chars = len(self.thinking) - self._last_emit_len
            if self._due(self._last_emit, self.emit_interval_ms) and new_chars >= self.min_new_chars:
                yield self.thinking_event(self.summary, self._excerpt())
                self._last_emit = time.monotonic()
                self._last_emit_len = len(self.thinking)
        elif delta_type == "text_delta":
            chunk = getattr(delta, "text", "") or ""
            self.text += chunk
            if self.on_text is not None:
                yield from self.on_text(chunk)
            if self.narrate and self._due(self._last_text_emit, self.text_progress_ms):
                summary = self.progress_summary() if self.progress_summary else self.compiling
                kb = len(self.text) / 1024
                excerpt = f"{self._excerpt()}\n\n— {self.writing} ({kb:.1f} KB)..."
                yield self.thinking_event(summary, excerpt)
                self._last_text_emit = time.monotonic()
