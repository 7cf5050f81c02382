"""Tests for the background-task response stream."""

import asyncio
import logging

import pytest

from agentloop.content import TextContent
from agentloop.errors import StreamClosedError
from agentloop.responses import AgentResponseUpdate
from agentloop.stream import AgentResponseStream, ResponseStream, map_stream

pytestmark = pytest.mark.asyncio


async def _values(*values):
    for value in values:
        yield value


async def _values_then_error(*values):
    for value in values:
        yield value
    raise ValueError("producer failed")


async def test_next_returns_values_then_end():
    stream = ResponseStream(_values(1, 2))
    assert await stream.next() == (1, True)
    assert await stream.next() == (2, True)
    assert await stream.next() == (None, False)
    assert await stream.next() == (None, False)


async def test_collect_and_iteration():
    assert await ResponseStream(_values("a", "b", "c")).collect() == ["a", "b", "c"]
    assert [v async for v in ResponseStream(_values(1, 2))] == [1, 2]


async def test_producer_error_surfaces_at_end_of_stream():
    stream = ResponseStream(_values_then_error(1))
    assert await stream.next() == (1, True)
    with pytest.raises(ValueError, match="producer failed"):
        await stream.next()
    # still observable afterwards
    with pytest.raises(ValueError):
        await stream.next()


async def test_collect_stops_at_first_error():
    with pytest.raises(ValueError):
        await ResponseStream(_values_then_error(1, 2)).collect()


async def test_timeout_does_not_lose_values():
    async def slow():
        await asyncio.sleep(0.2)
        yield "late"

    stream = ResponseStream(slow())
    with pytest.raises(asyncio.TimeoutError):
        await stream.next(timeout=0.01)
    assert await stream.next(timeout=2) == ("late", True)
    await stream.aclose()


async def test_cancel_mid_stream_then_close_does_not_block():
    finished = []

    async def endless():
        try:
            i = 0
            while True:
                yield i
                i += 1
        finally:
            finished.append(True)

    stream = ResponseStream(endless())
    assert await stream.next() == (0, True)
    # give the producer time to block on the full buffer
    await asyncio.sleep(0.01)

    stream.cancel()
    with pytest.raises(StreamClosedError):
        await stream.next()

    await asyncio.wait_for(stream.aclose(), timeout=1)
    await asyncio.wait_for(stream.aclose(), timeout=1)
    assert finished == [True]
    assert stream.closed


async def test_close_from_another_task_wakes_a_blocked_consumer():
    async def stalled():
        await asyncio.sleep(3600)
        yield "never"

    stream = ResponseStream(stalled())
    consumer = asyncio.ensure_future(stream.next())
    await asyncio.sleep(0.01)

    await asyncio.wait_for(stream.aclose(), timeout=1)
    with pytest.raises(StreamClosedError):
        await asyncio.wait_for(consumer, timeout=1)


async def test_cancelling_the_consumer_task_propagates():
    async def stalled():
        await asyncio.sleep(3600)
        yield "never"

    stream = ResponseStream(stalled())
    consumer = asyncio.ensure_future(stream.next())
    await asyncio.sleep(0.01)
    consumer.cancel()
    with pytest.raises(asyncio.CancelledError):
        await consumer
    await asyncio.wait_for(stream.aclose(), timeout=1)


async def test_close_keeps_a_buffered_producer_error(caplog):
    async def failing():
        raise ValueError("producer failed")
        yield

    stream = ResponseStream(failing())
    # let the failure reach the buffer
    await asyncio.sleep(0.01)

    with caplog.at_level(logging.ERROR, logger="agentloop.stream"):
        await stream.aclose()
        await stream.aclose()
    assert [r.getMessage() for r in caplog.records] == [
        "Stream producer failed before close: producer failed"
    ]

    with pytest.raises(StreamClosedError) as exc_info:
        await stream.next()
    assert isinstance(exc_info.value.__cause__, ValueError)


async def test_close_keeps_an_error_blocked_on_a_full_buffer():
    async def fails_after_one():
        yield 1
        raise ValueError("producer failed")

    stream = ResponseStream(fails_after_one())
    # value 1 fills the buffer, the failure waits behind it
    await asyncio.sleep(0.01)
    await stream.aclose()

    with pytest.raises(StreamClosedError) as exc_info:
        await stream.next()
    assert isinstance(exc_info.value.__cause__, ValueError)


async def test_close_after_a_clean_end_has_no_cause():
    stream = ResponseStream(_values(1))
    assert await stream.collect() == [1]
    await stream.aclose()
    with pytest.raises(StreamClosedError) as exc_info:
        await stream.next()
    assert exc_info.value.__cause__ is None


async def test_async_context_manager_closes():
    async with ResponseStream(_values(1, 2, 3)) as stream:
        assert await stream.next() == (1, True)
    assert stream.closed


async def test_larger_buffer_lets_producer_run_ahead():
    produced = []

    async def producer():
        for i in range(3):
            produced.append(i)
            yield i

    stream = ResponseStream(producer(), buffer_size=3)
    await asyncio.sleep(0.01)
    assert produced == [0, 1, 2]
    assert await stream.collect() == [0, 1, 2]


async def test_map_stream_maps_and_closes_source():
    source = ResponseStream(_values(1, 2, 3))
    mapped = map_stream(source, lambda v: v * 10)
    assert await mapped.collect() == [10, 20, 30]
    assert source.closed


async def test_map_stream_propagates_source_errors():
    mapped = map_stream(ResponseStream(_values_then_error(1)), str)
    assert await mapped.next() == ("1", True)
    with pytest.raises(ValueError):
        await mapped.next()


async def test_agent_response_stream_final_response():
    updates = [
        AgentResponseUpdate(contents=[TextContent(text="Hel")], agent_id="a1"),
        AgentResponseUpdate(contents=[TextContent(text="lo")], response_id="r1"),
    ]
    stream = AgentResponseStream(_values(*updates))
    first, _ = await stream.next()
    assert first.text == "Hel"

    response = await stream.final_response()
    assert response.text == "Hello"
    assert response.agent_id == "a1"
    assert response.response_id == "r1"
    assert len(response.messages) == 1
