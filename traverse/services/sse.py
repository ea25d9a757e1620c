"""Server-Sent Event framing for analysis streams.

Each event goes out as ``data: <json>\\n\\n``; the ``data: [DONE]`` frame marks
the end of the stream. ``guard_stream`` wraps any event producer so that the
stream carries at most one terminal event (``complete`` or ``error``), always
as its last event, and always ends with the sentinel.
"""
from __future__ import annotations

import asyncio
from typing import AsyncIterator

from pydantic import ValidationError

from traverse.models.events import DONE, BaseEvent, parse_event
from traverse.services import logger as log_service
from traverse.services import streaming

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

DONE_FRAME = f"data: {DONE}\n\n"


async def guard_stream(
    source: AsyncIterator[BaseEvent],
    *,
    timeout: float | None = None,
    label: str = "stream",
) -> AsyncIterator[str]:
    """Yield the JSON payload of each event from ``source``, then ``[DONE]``.

    Stops after the first terminal event. An exception escaping ``source`` or an
    exhausted ``timeout`` (seconds, whole stream) becomes a single error event.
    Cancellation (client abort) propagates without an event.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout if timeout else None
    try:
        while True:
            try:
                if deadline is None:
                    event = await anext(source)
                else:
                    remaining = max(deadline - loop.time(), 0)
                    event = await asyncio.wait_for(anext(source), remaining)
            except StopAsyncIteration:
                break
            except TimeoutError:
                log_service.log_event(
                    event_type="stream_timeout",
                    message=f"{label} exceeded {timeout}s",
                    label=label,
                )
                yield streaming.error(f"Analysis timed out after {timeout:g} seconds").to_json()
                break
            except Exception as exc:
                log_service.log_event(
                    event_type="stream_error",
                    message=f"Unhandled error in {label}",
                    error=str(exc),
                    label=label,
                )
                yield streaming.error(str(exc) or "Unknown error").to_json()
                break

            yield event.to_json()
            if event.is_terminal:
                break
        yield DONE
    finally:
        aclose = getattr(source, "aclose", None)
        if aclose is not None:
            await aclose()


async def encode_stream(
    source: AsyncIterator[BaseEvent],
    *,
    timeout: float | None = None,
) -> AsyncIterator[str]:
    """Full wire frames, for transports that write raw text."""
    async for payload in guard_stream(source, timeout=timeout):
        yield f"data: {payload}\n\n"


class FrameDecoder:
    """Incremental decoder for a ``data:`` frame stream.

    Partial lines are buffered across ``feed`` calls; blank and comment lines
    are ignored; malformed frames are logged and skipped.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self.done = False
        self.skipped = 0

    def feed(self, chunk: str | bytes) -> list[BaseEvent]:
        if isinstance(chunk, bytes):
            chunk = chunk.decode("utf-8")
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split("\n")

        events: list[BaseEvent] = []
        for raw in lines:
            line = raw.rstrip("\r")
            if not line or line.startswith(":") or not line.startswith("data:"):
                continue
            payload = line[len("data:"):].strip()
            if payload == DONE:
                self.done = True
                continue
            try:
                events.append(parse_event(payload))
            except (ValidationError, ValueError) as exc:
                self.skipped += 1
                log_service.logger.warning(f"Skipping malformed SSE frame: {payload[:200]!r} ({exc.__class__.__name__})")
        return events

    def flush(self) -> list[BaseEvent]:
        """Decode whatever is left once the transport has closed."""
        if not self._buffer:
            return []
        return self.feed("\n")


def decode_frames(text: str) -> list[BaseEvent]:
    decoder = FrameDecoder()
    return decoder.feed(text) + decoder.flush()
