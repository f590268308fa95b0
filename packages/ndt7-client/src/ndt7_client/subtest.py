"""
SubtestRun - wiring of the pipeline stages for one subtest

download: read_frames -> Measurer -> counterflow
upload:   write_load, plus read_frames into a discarding drain
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from types import TracebackType
from typing import AsyncIterator, Awaitable, Callable, Self

from .channel import Channel
from .config import ClientConfig
from .connection import Connection
from .models import Measurement, Subtest
from .protocol.counterflow import counterflow
from .protocol.measurer import Measurer
from .protocol.reader import read_frames
from .protocol.upload import write_load
from .types import Result, TransportError

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    """Lifecycle of a subtest run."""

    IDLE = "idle"
    CONNECTING = "connecting"
    RUNNING = "running"
    DRAINING = "draining"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (RunState.SUCCEEDED, RunState.FAILED)


class SubtestRun:
    """One download or upload over a connection it owns exclusively.

    Iterating the run yields the client measurements as they are produced;
    ``wait()`` joins every internal task, closes the connection and returns
    the final error (None on success).

    Usage:
        run = SubtestRun(Subtest.DOWNLOAD)
        run.start(conn)
        async with run:
            async for measurement in run:
                print(measurement.elapsed, measurement.num_bytes)
        error = await run.wait()

    An exception raised by a stage for any reason other than I/O or protocol
    errors is not caught here: it cancels the other stages and is re-raised by
    ``wait()``.
    """

    def __init__(
        self,
        subtest: Subtest,
        config: ClientConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.subtest = subtest
        self.config = config or ClientConfig()
        self.state = RunState.IDLE
        self.started_at: float | None = None

        self._clock = clock
        self._conn: Connection | None = None
        self._events: Channel[Measurement] = Channel(self.config.channel_size)
        self._task: asyncio.Task[Exception | None] | None = None
        self._error: Exception | None = None
        self._aborted: str | None = None
        self._finished = False
        self._deadline: asyncio.TimerHandle | None = None

    @property
    def error(self) -> Exception | None:
        """Final error, available once the run is terminal."""
        return self._error

    async def open(self, dial: Callable[[], Awaitable[Connection]]) -> None:
        """Connect with ``dial`` and start the pipeline.

        Raises:
            DialError: If the connection could not be established
        """
        if self.state is not RunState.IDLE:
            raise RuntimeError(f"Cannot open a run in state {self.state.value}")
        self.state = RunState.CONNECTING
        try:
            conn = await dial()
        except BaseException as e:
            if isinstance(e, Exception):
                self._error = e
            self.state = RunState.FAILED
            self._finished = True
            raise
        self.start(conn)

    def start(self, conn: Connection) -> None:
        """Start the pipeline on an already handshaked connection."""
        if self._task is not None:
            raise RuntimeError("Subtest run already started")
        self._conn = conn
        self.started_at = self._clock()
        self.state = RunState.RUNNING
        self._task = asyncio.create_task(self._run(), name=f"ndt7-{self.subtest.value}")
        logger.info(f"{self.subtest.value} subtest running")

    def set_deadline(self, when: float) -> None:
        """Abort the run at loop time ``when``."""
        if self._deadline is not None:
            self._deadline.cancel()
        self._deadline = asyncio.get_running_loop().call_at(when, self.cancel, "deadline exceeded")

    def cancel(self, reason: str = "cancelled") -> None:
        """Abort the connection; every stage then fails through the usual path.

        Does nothing once the pipeline has ended or when called again.
        """
        if self._conn is None or self._aborted is not None or self._events.closed or self.state.terminal:
            return
        self._aborted = reason
        self.state = RunState.DRAINING
        logger.warning(f"Aborting {self.subtest.value} subtest: {reason}")
        self._conn.abort()

    async def _run(self) -> Exception | None:
        try:
            if self.subtest is Subtest.DOWNLOAD:
                return await self._download()
            return await self._upload()
        finally:
            self._events.close()

    async def _download(self) -> Exception | None:
        assert self._conn is not None
        frames: Channel[Result] = Channel(self.config.channel_size)
        measured: Channel[Result] = Channel(self.config.channel_size)
        measurer = Measurer(
            Subtest.DOWNLOAD,
            interval=self.config.measurement_interval,
            clock=self._clock,
            start=self.started_at,
        )
        async with asyncio.TaskGroup() as tg:
            tg.create_task(read_frames(self._conn, frames), name="download-read")
            tg.create_task(measurer.run(frames, measured), name="download-measure")
            error = await counterflow(
                self._conn,
                measured,
                self._events,
                interval=self.config.counterflow_interval,
            )
            self.state = RunState.DRAINING
        return error

    async def _upload(self) -> Exception | None:
        assert self._conn is not None
        inbound: Channel[Result] = Channel(self.config.channel_size)
        errors: Channel[Exception] = Channel(self.config.channel_size)
        error: Exception | None = None
        async with asyncio.TaskGroup() as tg:
            tg.create_task(read_frames(self._conn, inbound, validate=False), name="upload-read")
            tg.create_task(self._discard(inbound), name="upload-discard")
            tg.create_task(
                write_load(self._conn, errors, self._events, config=self.config, clock=self._clock),
                name="upload-write",
            )
            async for e in errors:
                if error is None:
                    error = e
                    self.state = RunState.DRAINING
            self.state = RunState.DRAINING
            # The peer may keep the connection open; closing ends the reader.
            await self._conn.close()
        return error

    async def _discard(self, inbound: Channel[Result]) -> None:
        """Read and drop what the server sends during an upload."""
        frames = 0
        async for result in inbound:
            if result.error is not None:
                logger.debug(f"Ignoring inbound error during upload: {result.error}")
                continue
            frames += 1
        logger.debug(f"Discarded {frames} inbound frames during upload")

    async def events(self) -> AsyncIterator[Measurement]:
        """Measurements in the order they were produced."""
        async for measurement in self._events:
            yield measurement

    def __aiter__(self) -> AsyncIterator[Measurement]:
        return self.events()

    async def wait(self) -> Exception | None:
        """Join the pipeline and return the final error.

        Measurements the caller did not consume are discarded. Safe to call
        multiple times.
        """
        if self._task is None:
            if self._finished:
                return self._error
            raise RuntimeError("Subtest run not started")
        try:
            await self._events.drain()
            error = await self._task
            if self._aborted is not None and error is not None:
                aborted = TransportError(f"{self.subtest.value} subtest {self._aborted}")
                aborted.__cause__ = error
                error = aborted
            if not self._finished:
                self._error = error
        except BaseException:
            self.state = RunState.FAILED
            raise
        finally:
            await self._finish()
        return self._error

    async def _finish(self) -> None:
        if self._finished:
            return
        self._finished = True
        if self._deadline is not None:
            self._deadline.cancel()
            self._deadline = None
        if self._conn is not None:
            await self._conn.close()
        if self.state is not RunState.FAILED:
            self.state = RunState.FAILED if self._error is not None else RunState.SUCCEEDED
        logger.info(f"{self.subtest.value} subtest {self.state.value}")

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Abort the run if the caller stopped early, then join it."""
        if self._task is None:
            return
        if not self._events.closed:
            self.cancel()
        await self.wait()
