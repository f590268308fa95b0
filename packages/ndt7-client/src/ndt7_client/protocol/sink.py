"""Sink: writes measurement envelopes onto the connection as text frames."""

from __future__ import annotations

import logging

from ..channel import Channel, is_cancelling
from ..connection import IO_ERRORS, Connection, as_ndt7_error, is_normal_close
from ..types import Result

logger = logging.getLogger(__name__)


async def write_results(
    conn: Connection,
    source: Channel[Result],
    output: Channel[Exception],
) -> None:
    """Write every payload of ``source`` as one text frame.

    The first error (from upstream or from a write) is sent to ``output`` and
    writing stops. ``source`` is always consumed to its end so its producer
    never blocks. ``output`` carries at most one item. The connection is left
    open.
    """
    logger.debug("sink: start")
    written = 0
    try:
        async for result in source:
            if result.error is not None:
                await output.send(result.error)
                return
            try:
                await conn.send_text(result.payload)
            except IO_ERRORS as e:
                if is_normal_close(e):
                    logger.debug("sink: peer closed the connection, stop writing")
                    return
                logger.warning(f"Writing measurement failed: {e}")
                await output.send(as_ndt7_error(e))
                return
            written += 1
    finally:
        discarded = 0 if is_cancelling() else await source.drain()
        output.close()
        logger.debug(f"sink: stop written={written} discarded={discarded}")
