"""Connection adapter shared by the pipeline stages."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from websockets.exceptions import ConnectionClosed, ConnectionClosedError, ConnectionClosedOK
from websockets.frames import CloseCode

from .config import MAX_MESSAGE_SIZE
from .types import Ndt7Error, ProtocolError, TransportError

logger = logging.getLogger(__name__)

# Errors a stage turns into an error envelope. Anything else is a bug.
IO_ERRORS = (ConnectionClosed, OSError)


def is_normal_close(exc: BaseException) -> bool:
    """True when the peer (or we) ended the connection with a clean close frame."""
    return isinstance(exc, ConnectionClosedOK)


def as_ndt7_error(exc: BaseException) -> Ndt7Error:
    """Map a websockets/socket exception onto the error taxonomy."""
    if isinstance(exc, Ndt7Error):
        return exc
    if isinstance(exc, ConnectionClosedError):
        codes = {frame.code for frame in (exc.rcvd, exc.sent) if frame is not None}
        if CloseCode.MESSAGE_TOO_BIG in codes:
            error: Ndt7Error = ProtocolError(f"Message exceeds the size limit: {exc}")
        else:
            error = TransportError(f"Connection closed abnormally: {exc}")
    else:
        error = TransportError(f"{type(exc).__name__}: {exc}")
    error.__cause__ = exc
    return error


class Connection:
    """One WebSocket connection, owned by a single subtest run.

    There is at most one reader. Writers may be several tasks (load writer,
    measurement writer, counterflow pump): each write of a complete frame is
    done under one lock so frames never interleave. After the first failed
    write every later write re-raises that failure without touching the socket,
    and an abnormal write failure aborts the transport so the reader ends too.

    Args:
        websocket: An open ``websockets.asyncio.client.ClientConnection`` or
            any object with the same ``recv``/``send``/``ping``/``close``
            coroutines and a ``transport`` attribute
        max_message_size: Largest inbound frame accepted by the reader
    """

    def __init__(self, websocket: Any, *, max_message_size: int = MAX_MESSAGE_SIZE):
        self._ws = websocket
        self.max_message_size = max_message_size
        self._write_lock = asyncio.Lock()
        self._write_error: BaseException | None = None
        self._closed = False
        self.frames_written = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def write_failed(self) -> bool:
        return self._write_error is not None

    async def recv(self) -> str | bytes:
        return await self._ws.recv()

    async def send_text(self, payload: bytes) -> None:
        await self._write(self._ws.send, payload.decode("utf-8"))

    async def send_binary(self, data: bytes) -> None:
        await self._write(self._ws.send, data)

    async def ping(self) -> None:
        """Send a ping frame without waiting for the pong."""
        await self._write(self._ws.ping)

    async def _write(self, send: Any, *args: Any) -> None:
        async with self._write_lock:
            if self._write_error is not None:
                raise self._write_error
            try:
                await send(*args)
            except IO_ERRORS as e:
                self._write_error = e
                # A half-broken connection would keep the reader waiting.
                if not is_normal_close(e):
                    self.abort()
                raise
            self.frames_written += 1

    async def close(self) -> None:
        """Close with a normal closing handshake. Safe to call multiple times."""
        if self._closed:
            return
        self._closed = True
        try:
            await self._ws.close()
        except IO_ERRORS as e:
            logger.warning(f"Ignored error when closing connection: {e}")

    def abort(self) -> None:
        """Drop the connection at once; pending reads and writes fail."""
        transport = self._ws.transport
        if transport is not None and not transport.is_closing():
            logger.debug("Aborting connection")
            transport.abort()
