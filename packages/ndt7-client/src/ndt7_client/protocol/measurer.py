"""Local measurer: throttled client-side measurements."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from ..channel import Channel
from ..models import AppInfo, Measurement, Origin, Subtest
from ..types import Result

logger = logging.getLogger(__name__)


class Measurer:
    """Counts the bytes of an upstream envelope stream and snapshots them.

    A measurement is emitted once at least ``interval`` seconds have passed
    since the previous one (or since ``start``) and at least one update
    arrived meanwhile. Upstream errors bypass the throttle. When the upstream
    ends, one final measurement with the latest counters is flushed.

    One instance serves exactly one subtest.

    Examples:
        measurer = Measurer(Subtest.DOWNLOAD)
        tg.create_task(measurer.run(frames, measurements))
    """

    def __init__(
        self,
        subtest: Subtest,
        *,
        interval: float = 0.25,
        clock: Callable[[], float] = time.monotonic,
        start: float | None = None,
    ):
        self.subtest = subtest
        self.interval = interval
        self._clock = clock
        self._start = clock() if start is None else start
        self._last_emit = self._start
        self._last_elapsed = 0.0
        self._num_bytes = 0
        self._pending = False
        self._used = False
        self.emitted = 0

    @property
    def num_bytes(self) -> int:
        return self._num_bytes

    def update(self, num_bytes: int) -> None:
        self._num_bytes += num_bytes
        self._pending = True

    def measure(self) -> Measurement:
        """Snapshot the counters and restart the reporting window."""
        now = self._clock()
        # elapsed never goes backwards, even with a coarse clock
        elapsed = max(now - self._start, self._last_elapsed)
        self._last_elapsed = elapsed
        self._last_emit = now
        self._pending = False
        return Measurement(
            elapsed=elapsed,
            subtest=self.subtest,
            origin=Origin.CLIENT,
            app_info=AppInfo(num_bytes=self._num_bytes),
        )

    async def _emit(self, output: Channel[Result]) -> None:
        measurement = self.measure()
        self.emitted += 1
        await output.send(Result.of(measurement.to_payload()))

    async def _next(self, source: Channel[Result]) -> Result | None:
        """Wait for the next update; None when the reporting window closed first."""
        if not self._pending:
            return await source.receive()
        remaining = self._last_emit + self.interval - self._clock()
        if remaining <= 0:
            return None
        try:
            async with asyncio.timeout(remaining):
                return await source.receive()
        except TimeoutError:
            return None

    async def run(self, source: Channel[Result], output: Channel[Result]) -> None:
        if self._used:
            raise RuntimeError("Measurer instances cannot be reused")
        self._used = True

        logger.debug(f"measurer[{self.subtest.value}]: start")
        try:
            while True:
                try:
                    result = await self._next(source)
                except StopAsyncIteration:
                    break
                if result is None:
                    await self._emit(output)
                    continue
                if result.failed:
                    await output.send(result)
                    await source.drain()
                    return
                self.update(result.size)
            await self._emit(output)
        finally:
            output.close()
            logger.debug(
                f"measurer[{self.subtest.value}]: stop emitted={self.emitted} num_bytes={self._num_bytes}"
            )
