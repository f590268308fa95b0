"""Counterflow pump for the download subtest.

While downloading the client mostly reads. Two activities keep its send
direction busy on the same connection:

- the measurements of the local measurer are handed to the caller and
  relayed to the server as text frames;
- a ping frame goes out every ``interval`` seconds.

Both write through ``Connection``'s write lock, one complete frame at a time.
"""

from __future__ import annotations

import asyncio
import logging

from ..channel import Channel, is_cancelling
from ..connection import IO_ERRORS, Connection, as_ndt7_error, is_normal_close
from ..models import Measurement
from ..types import Result

logger = logging.getLogger(__name__)


async def _consume(
    conn: Connection,
    source: Channel[Result],
    events: Channel[Measurement] | None,
    relay: bool,
) -> Exception | None:
    try:
        async for result in source:
            if result.error is not None:
                return result.error
            if events is not None:
                await events.send(Measurement.from_payload(result.payload))
            if not relay:
                continue
            try:
                await conn.send_text(result.payload)
            except IO_ERRORS as e:
                if is_normal_close(e):
                    relay = False
                    continue
                logger.warning(f"Relaying measurement failed: {e}")
                return as_ndt7_error(e)
        return None
    finally:
        if not is_cancelling():
            await source.drain()


async def _pump(conn: Connection, interval: float) -> Exception | None:
    pings = 0
    while True:
        await asyncio.sleep(interval)
        try:
            await conn.ping()
        except IO_ERRORS as e:
            if is_normal_close(e):
                logger.debug(f"counterflow: connection closed after {pings} pings")
                return None
            logger.warning(f"Counterflow write failed after {pings} pings: {e}")
            return as_ndt7_error(e)
        pings += 1


async def _stop(task: asyncio.Task) -> None:
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)


async def counterflow(
    conn: Connection,
    source: Channel[Result],
    events: Channel[Measurement] | None = None,
    *,
    interval: float = 0.25,
    relay: bool = True,
) -> Exception | None:
    """Run both activities until ``source`` ends.

    Args:
        conn: Connection of the running download
        source: Output of the local measurer
        events: Where measurements are published for the caller (optional)
        interval: Period of the ping frames
        relay: Whether to also send measurements to the server

    Returns:
        The first error of either activity, None on a clean end. When one
        activity fails the other one is cancelled and awaited before return.
    """
    logger.debug("counterflow: start")
    consumer = asyncio.create_task(_consume(conn, source, events, relay), name="counterflow-consume")
    pump = asyncio.create_task(_pump(conn, interval), name="counterflow-pump")
    try:
        await asyncio.wait({consumer, pump}, return_when=asyncio.FIRST_COMPLETED)

        if pump.done():
            error = pump.result()
            if error is not None:
                await _stop(consumer)
                await source.drain()
                return error
            # Clean close seen by the pump: the reader ends on its own.
            return await consumer

        await _stop(pump)
        return consumer.result()
    finally:
        for task in (consumer, pump):
            if not task.done():
                await _stop(task)
        logger.debug("counterflow: stop")
