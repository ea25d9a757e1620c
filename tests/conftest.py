"""Shared fixtures: quiet, instant settings and fake Anthropic streams."""
import os

# Settings are read at import time; pin them before any traverse import.
os.environ.setdefault("ANTHROPIC_API_KEY", "test-key")
os.environ["LOG_TO_FILE"] = "false"
os.environ["EMIT_INTERVAL_MS"] = "0"
os.environ["MIN_NEW_CHARS"] = "1"
os.environ["TEXT_PROGRESS_MS"] = "600000"
os.environ["DEPTH_EVERY_CHARS"] = "2000"
os.environ["REQUIREMENT_DISPLAY_DELAY_MS"] = "0"
os.environ["DOCUMENT_READ_DELAY_MS"] = "0"
os.environ["SHORT_DELAY_MS"] = "0"
os.environ["SCRIPTED_DELAY_SCALE"] = "0"
os.environ["USE_LIVE_SEARCH"] = "false"
os.environ["STREAM_TIMEOUT_SECONDS"] = "30"

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from traverse.llm_client import reset_client
from traverse.services import rate_limit


class FakeStream:
    """Async-iterable stand-in for an Anthropic streaming response."""

    def __init__(self, events):
        self._events = list(events)

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for event in self._events:
            yield event


class FailingStream(FakeStream):
    """Yields some events, then raises mid-stream."""

    def __init__(self, events, exc):
        super().__init__(events)
        self._exc = exc

    async def _iterate(self):
        for event in self._events:
            yield event
        raise self._exc


def stream_events(thinking="", text_chunks=(), tool_blocks=0, input_tokens=10, output_tokens=20):
    """Raw stream events: an optional thinking block, tool blocks, then a text block."""
    events = [
        SimpleNamespace(type="message_start", message=SimpleNamespace(usage=SimpleNamespace(input_tokens=input_tokens)))
    ]
    if thinking:
        events.append(SimpleNamespace(type="content_block_start", content_block=SimpleNamespace(type="thinking")))
        for start in range(0, len(thinking), 50):
            events.append(
                SimpleNamespace(
                    type="content_block_delta",
                    delta=SimpleNamespace(type="thinking_delta", thinking=thinking[start : start + 50]),
                )
            )
        events.append(SimpleNamespace(type="content_block_stop"))
    for _ in range(tool_blocks):
        events.append(SimpleNamespace(type="content_block_start", content_block=SimpleNamespace(type="server_tool_use")))
        events.append(SimpleNamespace(type="content_block_stop"))
    if text_chunks:
        events.append(SimpleNamespace(type="content_block_start", content_block=SimpleNamespace(type="text")))
        for chunk in text_chunks:
            events.append(
                SimpleNamespace(type="content_block_delta", delta=SimpleNamespace(type="text_delta", text=chunk))
            )
        events.append(SimpleNamespace(type="content_block_stop"))
    events.append(SimpleNamespace(type="message_delta", usage=SimpleNamespace(output_tokens=output_tokens)))
    return events


def text_response(text, input_tokens=5, output_tokens=7):
    """Non-streaming response with one text block."""
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)],
        usage=SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens),
    )


def chunked(text, size=40):
    return [text[i : i + size] for i in range(0, len(text), size)]


def fake_client(*, stream=None, response=None, error=None):
    """A client whose ``messages.create`` answers streaming and plain calls separately.

    ``stream``/``response`` may be a value or a callable taking the call kwargs.
    ``error`` is raised for every call when given.
    """

    async def create(**kwargs):
        if error is not None:
            raise error
        if kwargs.get("stream"):
            value = stream(kwargs) if callable(stream) else stream
        else:
            value = response(kwargs) if callable(response) else response
        if isinstance(value, BaseException):
            raise value
        return value

    client = MagicMock()
    client.messages.create = AsyncMock(side_effect=create)
    return client


def as_json(data):
    return json.dumps(data, ensure_ascii=False)


@pytest.fixture(autouse=True)
def _isolate_state():
    rate_limit.limiter.reset()
    reset_client()
    yield
    rate_limit.limiter.reset()
    reset_client()


@pytest.fixture
def travel():
    from traverse.models.schemas import TravelDetails

    return TravelDetails.model_validate(
        {
            "passports": ["India"],
            "destination": "Germany",
            "purpose": "business",
            "dates": {"depart": "2026-03-10", "return": "2026-03-25"},
            "travelers": 1,
        }
    )


@pytest.fixture
def uncached_travel():
    from traverse.models.schemas import TravelDetails

    return TravelDetails.model_validate(
        {
            "passports": ["Kenya"],
            "destination": "Japan",
            "purpose": "tourism",
            "dates": {"depart": "2026-05-01", "return": "2026-05-11"},
        }
    )


@pytest.fixture
def checklist():
    from traverse.models.domain import RequirementItem, RequirementsChecklist

    return RequirementsChecklist(
        corridor="India → Germany",
        visa_type="Schengen C",
        items=[
            RequirementItem(name="Valid Passport", description="Passport valid 3+ months", uploadable=True),
            RequirementItem(name="Bank Statements", description="3 months of statements", uploadable=True),
            RequirementItem(name="Travel Insurance", description="EUR 30,000 coverage", uploadable=True),
        ],
    )


@pytest.fixture
def document():
    from traverse.models.schemas import UploadedDocument

    return UploadedDocument(
        id="doc-1",
        filename="passport.png",
        mime_type="image/png",
        base64="iVBORw0KGgo=",
        size_bytes=1024,
    )
