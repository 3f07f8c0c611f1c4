"""EventMultiplexer unit tests."""

from __future__ import annotations

import asyncio

import pytest

from build_host.runtime.events import LineEvent, Origin
from build_host.runtime.multiplexer import EventMultiplexer


def out(seq: int, text: str = "") -> LineEvent:
    return LineEvent(origin=Origin.OUTPUT, sequence=seq, text=text or f"out {seq}")


def err(seq: int, text: str = "") -> LineEvent:
    return LineEvent(origin=Origin.ERROR, sequence=seq, text=text or f"err {seq}")


class TestOrdering:
    @pytest.mark.asyncio
    async def test_arrival_order_across_origins(self):
        mux = EventMultiplexer()
        for event in (out(1), err(1), out(2), err(2)):
            await mux.put(event)
        await mux.close(Origin.OUTPUT)
        await mux.close(Origin.ERROR)

        texts = []
        while (event := await mux.get()) is not None:
            texts.append(event.text)
        assert texts == ["out 1", "err 1", "out 2", "err 2"]
        assert mux.exhausted

    @pytest.mark.asyncio
    async def test_rejects_out_of_order_sequence(self):
        mux = EventMultiplexer()
        await mux.put(out(1))
        await mux.put(out(2))
        with pytest.raises(ValueError):
            await mux.put(out(2))
        # Other origins are tracked separately
        await mux.put(err(1))

    @pytest.mark.asyncio
    async def test_rejects_unknown_origin(self):
        mux = EventMultiplexer(origins=[Origin.OUTPUT])
        with pytest.raises(ValueError):
            await mux.put(err(1))

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            EventMultiplexer(capacity=0)


class TestEndOfStream:
    @pytest.mark.asyncio
    async def test_get_returns_none_after_all_closed(self):
        mux = EventMultiplexer()
        await mux.close(Origin.ERROR)
        await mux.put(out(1))
        await mux.close(Origin.OUTPUT)

        assert (await mux.get()).text == "out 1"
        assert await mux.get() is None
        assert await mux.get() is None

    @pytest.mark.asyncio
    async def test_not_exhausted_while_an_origin_is_open(self):
        mux = EventMultiplexer()
        await mux.close(Origin.OUTPUT)
        with pytest.raises(asyncio.QueueEmpty):
            mux.get_nowait()
        assert not mux.exhausted

    @pytest.mark.asyncio
    async def test_get_nowait(self):
        mux = EventMultiplexer()
        await mux.put(out(1))
        await mux.close(Origin.OUTPUT)
        await mux.close(Origin.ERROR)
        assert mux.get_nowait().text == "out 1"
        assert mux.get_nowait() is None


class TestBackpressure:
    @pytest.mark.asyncio
    async def test_put_blocks_when_full(self):
        mux = EventMultiplexer(capacity=1)
        await mux.put(out(1))

        blocked = asyncio.create_task(mux.put(out(2)))
        await asyncio.sleep(0.01)
        assert not blocked.done()

        assert (await mux.get()).sequence == 1
        await asyncio.wait_for(blocked, timeout=1.0)
        assert (await mux.get()).sequence == 2
