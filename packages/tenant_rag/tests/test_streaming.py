import asyncio

import pytest

from tenant_rag.errors import GenerationCancelled
from tenant_rag.schemas import AnswerChunk
from tenant_rag.streaming import AnswerChannel, AnswerStream, CancellationToken


@pytest.mark.asyncio
async def test_channel_delivers_in_order_until_closed():
    channel = AnswerChannel()
    await channel.send(AnswerChunk(event="start", trace_id="t"))
    await channel.send(AnswerChunk(event="chunk", trace_id="t", content="hi"))
    await channel.close()
    await channel.send(AnswerChunk(event="chunk", trace_id="t", content="late"))

    events = [event async for event in channel]

    assert [event.event for event in events] == ["start", "chunk"]


def test_token_raises_once_cancelled():
    token = CancellationToken()
    token.raise_if_cancelled()
    token.cancel()

    with pytest.raises(GenerationCancelled):
        token.raise_if_cancelled()


@pytest.mark.asyncio
async def test_cancel_stops_the_producer():
    channel = AnswerChannel()
    token = CancellationToken()
    stream = AnswerStream("t", channel, token)

    async def produce():
        await channel.send(AnswerChunk(event="start", trace_id="t"))
        await asyncio.sleep(10)

    stream.attach(asyncio.create_task(produce()))
    async for event in stream:
        assert event.event == "start"
        break
    await stream.cancel()

    assert token.cancelled
    assert stream.task.done()
    assert channel.closed


@pytest.mark.asyncio
async def test_close_waits_for_a_lagging_consumer():
    channel = AnswerChannel(maxsize=2)

    async def produce():
        for index in range(5):
            await channel.send(AnswerChunk(event="chunk", trace_id="t", content=str(index)))
        await channel.close()

    producer = asyncio.create_task(produce())
    await asyncio.sleep(0.05)
    received = []
    async for event in channel:
        received.append(event.content)
        await asyncio.sleep(0.001)
    await producer

    assert received == ["0", "1", "2", "3", "4"]


@pytest.mark.asyncio
async def test_abort_discards_the_backlog():
    channel = AnswerChannel(maxsize=2)
    await channel.send(AnswerChunk(event="chunk", trace_id="t", content="a"))
    await channel.send(AnswerChunk(event="chunk", trace_id="t", content="b"))

    channel.abort()

    assert [event async for event in channel] == []
    assert channel.closed
