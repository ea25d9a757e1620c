"""Tests for SSE framing, the terminal guard and the frame decoder."""
import asyncio

import pytest

from traverse.models.events import DONE, ErrorEvent
from traverse.services import streaming
from traverse.services.sse import DONE_FRAME, FrameDecoder, decode_frames, encode_stream, guard_stream


async def _events(*events, then=None, sleep=None):
    for event in events:
        yield event
    if sleep:
        await asyncio.sleep(sleep)
    if then is not None:
        raise then


async def _collect(agen):
    return [item async for item in agen]


@pytest.mark.asyncio
async def test_guard_stops_after_first_terminal_event():
    source = _events(
        streaming.planning("go"),
        streaming.complete(),
        streaming.planning("never delivered"),
    )
    payloads = await _collect(guard_stream(source))
    assert len(payloads) == 3
    assert '"complete"' in payloads[1]
    assert payloads[-1] == DONE


@pytest.mark.asyncio
async def test_guard_turns_exception_into_single_error():
    source = _events(streaming.planning("go"), then=RuntimeError("backend down"))
    payloads = await _collect(guard_stream(source))
    assert payloads[-1] == DONE
    assert payloads[-2] == ErrorEvent(message="backend down").to_json()
    assert sum('"error"' in p for p in payloads) == 1


@pytest.mark.asyncio
async def test_guard_turns_timeout_into_error():
    source = _events(streaming.planning("go"), sleep=5)
    payloads = await _collect(guard_stream(source, timeout=0.05))
    assert "timed out" in payloads[-2]
    assert payloads[-1] == DONE


@pytest.mark.asyncio
async def test_guard_always_appends_sentinel():
    payloads = await _collect(guard_stream(_events()))
    assert payloads == [DONE]


@pytest.mark.asyncio
async def test_encode_stream_produces_wire_frames():
    frames = await _collect(encode_stream(_events(streaming.complete())))
    assert frames[0].startswith('data: {"type":"complete"')
    assert frames[-1] == DONE_FRAME


def test_decoder_buffers_frames_split_across_chunks():
    wire = streaming.planning("hello").format() + streaming.complete().format() + DONE_FRAME
    decoder = FrameDecoder()
    events = []
    for i in range(0, len(wire), 7):
        events.extend(decoder.feed(wire[i : i + 7]))
    assert [e.type for e in events] == ["orchestrator", "complete"]
    assert decoder.done


def test_decoder_ignores_comments_and_skips_malformed_frames():
    wire = (
        ": ping\n\n"
        "event: message\n"
        "data: {not json}\n\n"
        'data: {"type":"unknown_kind"}\n\n'
        + streaming.error("x").format()
    )
    decoder = FrameDecoder()
    events = decoder.feed(wire)
    assert [e.type for e in events] == ["error"]
    assert decoder.skipped == 2
    assert not decoder.done


def test_decode_frames_flushes_trailing_line():
    text = streaming.planning("a").format() + 'data: {"type":"error","message":"tail"}'
    events = decode_frames(text)
    assert [e.type for e in events] == ["orchestrator", "error"]


def test_decoder_accepts_bytes_and_crlf():
    decoder = FrameDecoder()
    events = decoder.feed(b'data: {"type":"error","message":"x"}\r\n\r\n')
    assert events[0].message == "x"
