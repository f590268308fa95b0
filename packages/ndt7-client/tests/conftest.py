from __future__ import annotations

import asyncio
from typing import Any

import pytest
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK
from websockets.frames import Close, CloseCode

from ndt7_client.client import Ndt7Client
from ndt7_client.connection import Connection
from ndt7_client.models import AppInfo, Measurement, Origin, Subtest
from ndt7_client.types import DialError


def normal_close() -> ConnectionClosedOK:
    frame = Close(CloseCode.NORMAL_CLOSURE, "")
    return ConnectionClosedOK(frame, frame, True)


def abnormal_close() -> ConnectionClosedError:
    return ConnectionClosedError(None, None)


def server_measurement(elapsed: float = 0.1, num_bytes: int = 0) -> str:
    m = Measurement(
        elapsed=elapsed,
        origin=Origin.SERVER,
        subtest=Subtest.DOWNLOAD,
        app_info=AppInfo(num_bytes=num_bytes),
    )
    return m.to_payload().decode()


class FakeTransport:
    def __init__(self, ws: FakeWebSocket) -> None:
        self._ws = ws
        self.abort_calls = 0

    def is_closing(self) -> bool:
        return self._ws.closed_by is not None

    def abort(self) -> None:
        self.abort_calls += 1
        self._ws.terminate(abnormal_close())


class FakeWebSocket:
    """Stands in for a websockets ClientConnection.

    Inbound messages come from a queue; an exception put in the queue is
    raised by recv() and ends the connection.
    """

    def __init__(
        self,
        frames: list[str | bytes] | None = None,
        *,
        close: bool = True,
        fail_send_on: int | None = None,
        fail_with: BaseException | None = None,
    ) -> None:
        self._inbox: asyncio.Queue[Any] = asyncio.Queue()
        for frame in frames or []:
            self._inbox.put_nowait(frame)
        if close:
            self._inbox.put_nowait(normal_close())
        self.fail_send_on = fail_send_on
        self.fail_with = fail_with
        self.sent: list[str | bytes] = []
        self.send_attempts = 0
        self.received = 0
        self.pings = 0
        self.close_calls = 0
        self.closed_by: BaseException | None = None
        self.transport = FakeTransport(self)
        self.subprotocol = "net.measurementlab.ndt.v7"

    def feed(self, frame: str | bytes | BaseException) -> None:
        self._inbox.put_nowait(frame)

    def terminate(self, exc: BaseException) -> None:
        if self.closed_by is None:
            self.closed_by = exc
        self._inbox.put_nowait(exc)

    async def recv(self) -> str | bytes:
        if self.closed_by is not None and self._inbox.empty():
            raise self.closed_by
        item = await self._inbox.get()
        if isinstance(item, BaseException):
            if self.closed_by is None:
                self.closed_by = item
            raise item
        self.received += 1
        return item

    async def send(self, message: str | bytes) -> None:
        await asyncio.sleep(0)
        self.send_attempts += 1
        if self.closed_by is not None:
            raise self.closed_by
        if self.fail_send_on is not None and self.send_attempts >= self.fail_send_on:
            raise self.fail_with or abnormal_close()
        self.sent.append(message)

    async def ping(self) -> asyncio.Future[float]:
        await asyncio.sleep(0)
        if self.closed_by is not None:
            raise self.closed_by
        self.pings += 1
        return asyncio.get_running_loop().create_future()

    async def close(self) -> None:
        self.close_calls += 1
        self.terminate(normal_close())

    @property
    def text_sent(self) -> list[str]:
        return [m for m in self.sent if isinstance(m, str)]

    @property
    def binary_sent(self) -> list[bytes]:
        return [m for m in self.sent if isinstance(m, bytes)]


class FakeClient(Ndt7Client):
    """Ndt7Client that hands out FakeWebSocket connections instead of dialing."""

    def __init__(self, sockets: dict[Subtest, FakeWebSocket | BaseException], **kwargs: Any) -> None:
        super().__init__("fake.example.net", **kwargs)
        self._sockets = sockets
        self.dialed: list[Subtest] = []

    async def dial(self, subtest: Subtest, timeout: float) -> Connection:
        self.dialed.append(subtest)
        ws = self._sockets.get(subtest)
        if ws is None:
            raise DialError(f"Failed to connect to {self.url_for(subtest)}")
        if isinstance(ws, BaseException):
            raise ws
        return Connection(ws, max_message_size=self.config.max_message_size)


@pytest.fixture
def make_ws():
    def factory(*args: Any, **kwargs: Any) -> FakeWebSocket:
        return FakeWebSocket(*args, **kwargs)

    return factory
