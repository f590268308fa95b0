import asyncio
import math
import time

import pytest

from ndt7_client.channel import Channel
from ndt7_client.models import Measurement, Origin, Subtest
from ndt7_client.protocol.measurer import Measurer
from ndt7_client.types import Result, TransportError


async def _collect(output: Channel[Result]) -> list[Result]:
    return [r async for r in output]


@pytest.mark.asyncio
async def test_emission_rate_is_bounded_by_interval() -> None:
    interval = 0.05
    source: Channel[Result] = Channel()
    output: Channel[Result] = Channel()
    measurer = Measurer(Subtest.DOWNLOAD, interval=interval)

    async def produce() -> None:
        try:
            for _ in range(40):
                await source.send(Result.of(b"x" * 100, binary=True))
                await asyncio.sleep(0.01)
        finally:
            source.close()

    started = time.monotonic()
    async with asyncio.TaskGroup() as tg:
        tg.create_task(produce())
        tg.create_task(measurer.run(source, output))
        collected = tg.create_task(_collect(output))
    duration = time.monotonic() - started

    measurements = [Measurement.from_payload(r.payload) for r in collected.result()]
    assert 2 <= len(measurements) <= math.ceil(duration / interval) + 1
    assert measurer.emitted == len(measurements)

    elapsed = [m.elapsed for m in measurements]
    num_bytes = [m.num_bytes for m in measurements]
    assert elapsed == sorted(elapsed)
    assert num_bytes == sorted(num_bytes)
    assert num_bytes[-1] == 4000
    assert all(m.origin is Origin.CLIENT and m.subtest is Subtest.DOWNLOAD for m in measurements)


@pytest.mark.asyncio
async def test_final_measurement_flushed_on_end() -> None:
    source: Channel[Result] = Channel()
    output: Channel[Result] = Channel()
    measurer = Measurer(Subtest.UPLOAD, interval=10.0)

    async def produce() -> None:
        await source.send(Result.of(b"abc"))
        await source.send(Result.of(b"defg", binary=True))
        source.close()

    async with asyncio.TaskGroup() as tg:
        tg.create_task(produce())
        tg.create_task(measurer.run(source, output))
        collected = tg.create_task(_collect(output))

    results = collected.result()
    assert len(results) == 1
    assert Measurement.from_payload(results[0].payload).num_bytes == 7


@pytest.mark.asyncio
async def test_error_bypasses_throttle() -> None:
    source: Channel[Result] = Channel()
    output: Channel[Result] = Channel()
    measurer = Measurer(Subtest.DOWNLOAD, interval=10.0)
    error = TransportError("read failed")

    async def produce() -> None:
        await source.send(Result.of(b"abc", binary=True))
        await source.send(Result.failure(error))
        await source.send(Result.of(b"late", binary=True))
        source.close()

    started = time.monotonic()
    async with asyncio.TaskGroup() as tg:
        producer = tg.create_task(produce())
        tg.create_task(measurer.run(source, output))
        collected = tg.create_task(_collect(output))

    assert time.monotonic() - started < 1.0
    assert producer.done()
    assert [r.error for r in collected.result()] == [error]


@pytest.mark.asyncio
async def test_idle_source_emits_nothing_until_end() -> None:
    source: Channel[Result] = Channel()
    output: Channel[Result] = Channel(5)
    measurer = Measurer(Subtest.DOWNLOAD, interval=0.02)

    task = asyncio.create_task(measurer.run(source, output))
    await asyncio.sleep(0.1)
    assert measurer.emitted == 0

    source.close()
    await asyncio.wait_for(task, timeout=1)
    results = await _collect(output)
    assert len(results) == 1
    assert Measurement.from_payload(results[0].payload).num_bytes == 0


def test_elapsed_never_decreases_with_coarse_clock() -> None:
    ticks = iter([10.0, 10.5, 10.4, 10.4])
    measurer = Measurer(Subtest.DOWNLOAD, clock=lambda: next(ticks))

    first = measurer.measure()
    second = measurer.measure()
    third = measurer.measure()
    assert first.elapsed == 0.5
    assert second.elapsed == 0.5
    assert third.elapsed == 0.5


@pytest.mark.asyncio
async def test_measurer_cannot_be_reused() -> None:
    source: Channel[Result] = Channel()
    output: Channel[Result] = Channel(2)
    source.close()
    measurer = Measurer(Subtest.DOWNLOAD)
    await measurer.run(source, output)

    with pytest.raises(RuntimeError):
        await measurer.run(source, Channel())
