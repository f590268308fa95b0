"""Blocking wrapper for Ndt7Client with a background event loop thread."""

from __future__ import annotations

import asyncio
import atexit
import logging
import threading
import weakref
from dataclasses import dataclass, field
from types import TracebackType
from typing import Callable, Self

from .client import Ndt7Client
from .config import ClientConfig
from .emitter import CollectingEmitter, speed_mbps
from .models import Measurement, Subtest
from .runner import EXIT_FAILURE, EXIT_OK, run_subtest
from .types import InternalFault

logger = logging.getLogger(__name__)

# Seconds granted on top of the subtest timeout for closing the connection
CLOSE_GRACE = 10.0

_live_sessions: weakref.WeakSet[SpeedTestSession] = weakref.WeakSet()


@atexit.register
def _stop_live_sessions() -> None:
    for session in list(_live_sessions):
        session.stop()


@dataclass
class SubtestResult:
    """Outcome of one subtest run through a SpeedTestSession.

    Attributes:
        subtest: Direction of the subtest
        code: Exit code as returned by run_subtest
        measurements: Client measurements in arrival order
        error: Final error, None on success
    """

    subtest: Subtest
    code: int
    measurements: list[Measurement] = field(default_factory=list)
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.code == EXIT_OK

    @property
    def last(self) -> Measurement | None:
        return self.measurements[-1] if self.measurements else None

    @property
    def speed_mbps(self) -> float | None:
        """Average speed of the whole subtest, from the last measurement."""
        return speed_mbps(self.last) if self.last is not None else None


class SpeedTestSession:
    """Synchronous API over Ndt7Client.

    Subtests run on an event loop owned by a daemon thread; the calling
    thread only blocks inside ``measure()``.

    Example:
        with SpeedTestSession("ndt.example.net") as session:
            download = session.measure(Subtest.DOWNLOAD)
            upload = session.measure(Subtest.UPLOAD)
            print(download.speed_mbps, upload.speed_mbps)

    Without the context manager, pair ``start()`` with ``stop()``.
    """

    def __init__(
        self,
        hostname: str,
        *,
        port: int | None = None,
        scheme: str = "wss",
        insecure: bool = False,
        config: ClientConfig | None = None,
    ):
        self.client = Ndt7Client(hostname, port=port, scheme=scheme, insecure=insecure, config=config)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._worker: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._loop is not None

    def start(self) -> None:
        """Spin up the event loop thread.

        Raises:
            RuntimeError: If the session is already running
        """
        if self._loop is not None:
            raise RuntimeError("Session already started")

        loop = asyncio.new_event_loop()
        worker = threading.Thread(
            target=loop.run_forever,
            name=f"ndt7-session-{self.client.server}",
            daemon=True,
        )
        worker.start()
        self._loop, self._worker = loop, worker
        _live_sessions.add(self)
        logger.info(f"SpeedTestSession started for {self.client.server}")

    def stop(self) -> None:
        """Stop the loop thread and cancel leftover work. Safe to call twice."""
        loop, worker = self._loop, self._worker
        if loop is None or worker is None:
            return
        self._loop = self._worker = None
        _live_sessions.discard(self)

        asyncio.run_coroutine_threadsafe(self._cancel_pending(), loop).result(timeout=CLOSE_GRACE)
        loop.call_soon_threadsafe(loop.stop)
        worker.join(timeout=5.0)
        if worker.is_alive():
            logger.warning(f"Loop thread of {self.client.server} did not exit")
        else:
            loop.close()
        logger.info(f"SpeedTestSession stopped for {self.client.server}")

    @staticmethod
    async def _cancel_pending() -> None:
        current = asyncio.current_task()
        pending = [t for t in asyncio.all_tasks() if t is not current]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    def measure(
        self,
        subtest: Subtest,
        on_measurement: Callable[[Measurement], None] | None = None,
    ) -> SubtestResult:
        """Run one subtest and block until it is over.

        Args:
            subtest: Download or upload
            on_measurement: Called from the loop thread for every
                measurement as it arrives

        Returns:
            SubtestResult; an internal fault is reported as its error
        """
        if self._loop is None:
            raise RuntimeError("Session not started. Call start() first.")

        future = asyncio.run_coroutine_threadsafe(self._measure(subtest, on_measurement), self._loop)
        try:
            return future.result(timeout=self.client.config.timeout + CLOSE_GRACE)
        except TimeoutError:
            future.cancel()
            raise

    async def _measure(
        self,
        subtest: Subtest,
        on_measurement: Callable[[Measurement], None] | None,
    ) -> SubtestResult:
        collected = CollectingEmitter(callback=on_measurement)
        try:
            code = await run_subtest(self.client, subtest, collected)
        except InternalFault as e:
            return SubtestResult(subtest, EXIT_FAILURE, collected.measurements, e)
        return SubtestResult(subtest, code, collected.measurements, collected.error)

    def __enter__(self) -> Self:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.stop()
