"""Load writer for the upload subtest."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import Callable

from ..channel import Channel
from ..config import ClientConfig
from ..connection import IO_ERRORS, Connection, as_ndt7_error, is_normal_close
from ..models import Measurement, Subtest
from ..types import Result
from .measurer import Measurer
from .sink import write_results

logger = logging.getLogger(__name__)


def next_message_size(size: int, total: int, max_size: int) -> int:
    """Double the message size while it stays small compared to the bytes sent.

    Small messages at the start keep the first measurements fine grained;
    larger ones later reduce the per-message overhead.
    """
    if size >= max_size or size > total // 16:
        return size
    return min(size * 2, max_size)


async def generate_load(
    conn: Connection,
    counts: Channel[Result],
    *,
    duration: float,
    initial_size: int,
    max_size: int,
    clock: Callable[[], float] = time.monotonic,
) -> None:
    """Write binary messages until ``duration`` elapsed or the peer closed.

    Every successful write is reported to ``counts``; a failed write is
    reported once as an error envelope and ends the generator. Each write
    waits for the transport's flow control, so a full send buffer blocks here.
    """
    size = initial_size
    message = os.urandom(size)
    total = 0
    start = clock()
    try:
        while clock() - start < duration:
            try:
                await conn.send_binary(message)
            except IO_ERRORS as e:
                if is_normal_close(e):
                    logger.debug(f"upload: peer closed the connection after {total} bytes")
                    return
                logger.warning(f"Upload write failed after {total} bytes: {e}")
                await counts.send(Result.failure(as_ndt7_error(e)))
                return
            total += size
            await counts.send(Result.of(message, binary=True))

            new_size = next_message_size(size, total, max_size)
            if new_size != size:
                size = new_size
                message = os.urandom(size)
    finally:
        counts.close()
        logger.debug(f"upload: generated {total} bytes, last message size {size}")


async def publish(
    source: Channel[Result],
    events: Channel[Measurement] | None,
    output: Channel[Result],
) -> None:
    """Hand each measurement to the caller on its way to the sink."""
    try:
        async for result in source:
            if result.error is None and events is not None:
                await events.send(Measurement.from_payload(result.payload))
            await output.send(result)
    finally:
        output.close()


async def write_load(
    conn: Connection,
    output: Channel[Exception],
    events: Channel[Measurement] | None = None,
    *,
    config: ClientConfig | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> None:
    """Generate upload traffic and report client measurements.

    Pipeline: load generator -> Measurer -> publish -> Sink. Binary load and
    text measurements share the connection's write lock. ``output`` carries at
    most one error and is closed once every internal task has ended.
    """
    config = config or ClientConfig()
    counts: Channel[Result] = Channel(config.channel_size)
    measured: Channel[Result] = Channel(config.channel_size)
    published: Channel[Result] = Channel(config.channel_size)
    errors: Channel[Exception] = Channel(config.channel_size)
    measurer = Measurer(Subtest.UPLOAD, interval=config.measurement_interval, clock=clock)

    logger.debug("upload: start")
    try:
        async with asyncio.TaskGroup() as tg:
            tg.create_task(
                generate_load(
                    conn,
                    counts,
                    duration=config.upload_duration,
                    initial_size=config.initial_message_size,
                    max_size=config.max_load_message_size,
                    clock=clock,
                ),
                name="upload-generate",
            )
            tg.create_task(measurer.run(counts, measured), name="upload-measure")
            tg.create_task(publish(measured, events, published), name="upload-publish")
            tg.create_task(write_results(conn, published, errors), name="upload-sink")
            async for error in errors:
                await output.send(error)
    finally:
        output.close()
        logger.debug("upload: stop")
