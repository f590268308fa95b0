"""Event emitters: where the events of a test run end up."""

from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, TextIO

from .models import Measurement, Subtest


def speed_mbps(measurement: Measurement) -> float:
    """Average speed since the start of the subtest in Mbit/s."""
    if measurement.elapsed <= 0:
        return 0.0
    return measurement.num_bytes * 8 / measurement.elapsed / 1_000_000


class Emitter:
    """Receives the events of a test run. The base class ignores them all."""

    def on_starting(self, subtest: Subtest) -> None:
        pass

    def on_error(self, subtest: Subtest, error: Exception) -> None:
        pass

    def on_connected(self, subtest: Subtest, server: str) -> None:
        pass

    def on_measurement(self, subtest: Subtest, measurement: Measurement) -> None:
        pass

    def on_complete(self, subtest: Subtest) -> None:
        pass


class BatchEmitter(Emitter):
    """One JSON event per line, for machine parsing.

    Events:
        {"key": "status.measurement_start", "value": {"subtest": "download"}}
        {"key": "failure.measurement", "value": {"failure": "...", "subtest": "download"}}
        {"key": "status.measurement_begin", "value": {"server": "...", "subtest": "download"}}
        {"key": "measurement", "value": <measurement>}
        {"key": "status.measurement_done", "value": {"subtest": "download"}}
    """

    def __init__(self, stream: TextIO | None = None):
        self._stream = stream or sys.stdout

    def _emit(self, key: str, value: Any) -> None:
        self._stream.write(json.dumps({"key": key, "value": value}, sort_keys=True) + "\n")
        self._stream.flush()

    def on_starting(self, subtest: Subtest) -> None:
        self._emit("status.measurement_start", {"subtest": subtest.value})

    def on_error(self, subtest: Subtest, error: Exception) -> None:
        self._emit("failure.measurement", {"failure": str(error), "subtest": subtest.value})

    def on_connected(self, subtest: Subtest, server: str) -> None:
        self._emit("status.measurement_begin", {"server": server, "subtest": subtest.value})

    def on_measurement(self, subtest: Subtest, measurement: Measurement) -> None:
        self._emit("measurement", measurement.model_dump(mode="json", exclude_none=True))

    def on_complete(self, subtest: Subtest) -> None:
        self._emit("status.measurement_done", {"subtest": subtest.value})


class InteractiveEmitter(Emitter):
    """Human friendly progress on a terminal."""

    def __init__(self, stream: TextIO | None = None):
        self._stream = stream or sys.stdout

    def _write(self, text: str) -> None:
        self._stream.write(text)
        self._stream.flush()

    def on_starting(self, subtest: Subtest) -> None:
        self._write(f"\rstarting {subtest.value}")

    def on_error(self, subtest: Subtest, error: Exception) -> None:
        self._write(f"\r{subtest.value} failed: {error}\n")

    def on_connected(self, subtest: Subtest, server: str) -> None:
        self._write(f"\r{subtest.value} in progress with {server}\n")

    def on_measurement(self, subtest: Subtest, measurement: Measurement) -> None:
        self._write(f"\rAvg. speed  : {speed_mbps(measurement):7.1f} Mbit/s")

    def on_complete(self, subtest: Subtest) -> None:
        self._write(f"\n{subtest.value}: complete\n")


@dataclass
class CollectingEmitter(Emitter):
    """Keeps the measurements and the error of a subtest in memory.

    Attributes:
        measurements: Measurements in arrival order
        error: Error reported for the subtest, None on success
        server: Server the subtest connected to
        callback: Called with every measurement as it arrives
    """

    measurements: list[Measurement] = field(default_factory=list)
    error: Exception | None = None
    server: str | None = None
    callback: Callable[[Measurement], None] | None = None

    def on_error(self, subtest: Subtest, error: Exception) -> None:
        self.error = error

    def on_connected(self, subtest: Subtest, server: str) -> None:
        self.server = server

    def on_measurement(self, subtest: Subtest, measurement: Measurement) -> None:
        self.measurements.append(measurement)
        if self.callback is not None:
            self.callback(measurement)
