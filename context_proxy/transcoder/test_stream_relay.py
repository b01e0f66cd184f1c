"""
Tests for re-framing upstream SSE events into OpenAI chunks.
"""

import json
import logging

import pytest

from context_proxy.transcoder.stream_relay import (
    DONE_FRAME,
    StreamRelay,
    UpstreamStreamError,
)


class FakeStream:
    """Minimal UpstreamStream replacement driven by a list of lines."""

    def __init__(self, lines, error=None):
        self._lines = lines
        self._error = error
        self.closed = False

    async def lines(self):
        for line in self._lines:
            yield line
        if self._error is not None:
            raise self._error

    async def close(self):
        self.closed = True


def data(event):
    return "data: " + json.dumps(event)


def delta(**fields):
    return {"choices": [{"index": 0, "delta": fields}]}


async def collect(relay, stream):
    return [frame async for frame in relay.relay(stream)]


def payloads(frames):
    return [json.loads(f[len("data: "):]) for f in frames if f != DONE_FRAME]


@pytest.mark.asyncio
async def test_relays_chunks_and_terminates_with_done():
    stream = FakeStream(
        [
            ": keep-alive",
            data(delta(role="assistant", content="Hel")),
            data(delta(content="lo")),
            data({"choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}]}),
            "data: [DONE]",
            data(delta(content="after done")),
        ]
    )
    relay = StreamRelay("gpt-4")

    frames = await collect(relay, stream)

    assert frames[-1] == DONE_FRAME
    chunks = payloads(frames)
    assert [c["choices"][0].get("delta", {}).get("content") for c in chunks] == [
        "Hel",
        "lo",
        None,
    ]
    assert all(c["model"] == "gpt-4" for c in chunks)
    assert all(c["object"] == "chat.completion.chunk" for c in chunks)
    assert len({c["id"] for c in chunks}) == 1
    assert chunks[-1]["choices"][0]["finish_reason"] == "stop"
    assert stream.closed


@pytest.mark.asyncio
async def test_done_sent_when_upstream_ends_without_terminator():
    stream = FakeStream([data(delta(content="hi"))])

    frames = await collect(StreamRelay("gpt-4"), stream)

    assert frames[-1] == DONE_FRAME
    assert stream.closed


@pytest.mark.asyncio
async def test_malformed_lines_are_skipped():
    stream = FakeStream(["data: {not json", data([1, 2]), data(delta(content="ok"))])

    frames = await collect(StreamRelay("gpt-4"), stream)

    assert len(payloads(frames)) == 1
    assert frames[-1] == DONE_FRAME


@pytest.mark.asyncio
async def test_broken_stream_closes_without_done():
    stream = FakeStream(
        [data(delta(content="partial"))], error=ConnectionResetError("reset by peer")
    )

    frames = await collect(StreamRelay("gpt-4"), stream)

    assert DONE_FRAME not in frames
    assert len(payloads(frames)) == 1
    assert stream.closed


@pytest.mark.asyncio
async def test_in_stream_error_event_closes_without_done():
    stream = FakeStream([data({"error": {"message": "overloaded"}})])

    frames = await collect(StreamRelay("gpt-4"), stream)

    assert frames == []
    assert stream.closed


def test_reframe_raises_on_error_event():
    with pytest.raises(UpstreamStreamError):
        StreamRelay("gpt-4").reframe({"error": "boom"})


def test_reframe_ignores_empty_events():
    assert StreamRelay("gpt-4").reframe({"choices": []}) is None


def test_reframe_forwards_usage_only_event():
    chunk = StreamRelay("gpt-4").reframe(
        {"choices": [], "usage": {"prompt_tokens": 3, "completion_tokens": 1, "total_tokens": 4}}
    )
    assert chunk.usage.total_tokens == 4


@pytest.mark.asyncio
async def test_reasoning_hidden_by_default():
    stream = FakeStream(
        [data(delta(reasoning_content="secret")), data(delta(content="answer"))]
    )

    chunks = payloads(await collect(StreamRelay("gpt-4"), stream))

    text = "".join(c["choices"][0]["delta"].get("content", "") for c in chunks)
    assert text == "answer"


@pytest.mark.asyncio
async def test_reasoning_wrapped_in_think_tags_when_enabled():
    stream = FakeStream(
        [
            data(delta(reasoning_content="step one")),
            data(delta(reasoning_content=", step two")),
            data(delta(content="answer")),
        ]
    )

    chunks = payloads(await collect(StreamRelay("gpt-4", show_reasoning=True), stream))

    text = "".join(c["choices"][0]["delta"].get("content", "") for c in chunks)
    assert text == "<think>\nstep one, step two\n</think>\n\nanswer"


@pytest.mark.asyncio
async def test_open_think_block_closed_at_end_of_stream():
    stream = FakeStream([data(delta(reasoning_content="unfinished"))])

    frames = await collect(StreamRelay("gpt-4", show_reasoning=True), stream)

    text = "".join(c["choices"][0]["delta"].get("content", "") for c in payloads(frames))
    assert text == "<think>\nunfinished\n</think>\n\n"
    assert frames[-1] == DONE_FRAME


@pytest.mark.asyncio
async def test_null_choice_index_falls_back_to_position():
    stream = FakeStream(
        ['data: {"choices":[{"index":null,"delta":{"content":"hi"}}]}', "data: [DONE]"]
    )

    frames = await collect(StreamRelay("gpt-4"), stream)

    chunks = payloads(frames)
    assert chunks[0]["choices"][0]["index"] == 0
    assert chunks[0]["choices"][0]["delta"]["content"] == "hi"
    assert frames[-1] == DONE_FRAME


@pytest.mark.asyncio
async def test_malformed_event_logged_as_single_line_preview(caplog):
    stream = FakeStream(["data: {broken\t" + "x" * 300])

    with caplog.at_level(logging.DEBUG, logger="uvicorn.error"):
        await collect(StreamRelay("gpt-4"), stream)

    logged = [r.getMessage() for r in caplog.records if "malformed" in r.getMessage()]
    assert logged == ["[StreamRelay] Skipping malformed event: {broken " + "x" * 92 + "..."]
