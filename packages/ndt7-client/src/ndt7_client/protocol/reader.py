"""Frame reader: inbound WebSocket frames -> Result envelopes."""

from __future__ import annotations

import logging

from ..channel import Channel
from ..connection import IO_ERRORS, Connection, as_ndt7_error, is_normal_close
from ..models import parse_peer_frame
from ..types import ProtocolError, Result

logger = logging.getLogger(__name__)


def decode_frame(message: str | bytes, max_size: int, validate: bool = True) -> Result:
    """Turn one inbound message into an envelope.

    Text frames must hold a JSON object and are kept verbatim; binary frames
    are only counted downstream. With validate off only the size limit is
    enforced.

    Raises:
        ProtocolError: Oversize frame or undecodable text frame
    """
    if isinstance(message, str):
        payload = message.encode("utf-8")
        binary = False
    else:
        payload = bytes(message)
        binary = True

    if len(payload) > max_size:
        raise ProtocolError(f"Frame of {len(payload)} bytes exceeds the {max_size} bytes limit")
    if validate and not binary:
        parse_peer_frame(payload)
    return Result.of(payload, binary=binary)


async def read_frames(conn: Connection, output: Channel[Result], validate: bool = True) -> None:
    """Read frames until the connection ends.

    A clean close ends the sequence with no error. A read failure or a
    protocol violation ends it with exactly one error envelope.
    """
    logger.debug("reader: start")
    frames = 0
    try:
        while True:
            try:
                message = await conn.recv()
                result = decode_frame(message, conn.max_message_size, validate)
            except ProtocolError as e:
                logger.warning(f"Protocol violation after {frames} frames: {e}")
                await output.send(Result.failure(e))
                return
            except IO_ERRORS as e:
                if is_normal_close(e):
                    return
                await output.send(Result.failure(as_ndt7_error(e)))
                return
            frames += 1
            await output.send(result)
    finally:
        output.close()
        logger.debug(f"reader: stop after {frames} frames")
