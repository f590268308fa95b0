"""
ndt7-client - client for the ndt7 WebSocket network performance protocol

Usage:
    # Async usage
    from ndt7_client import Ndt7Client

    client = Ndt7Client("ndt.example.net")
    run = await client.start_download()
    async with run:
        async for measurement in run:
            print(measurement.elapsed, measurement.num_bytes)
    error = await run.wait()

    # Sync usage (with background thread)
    from ndt7_client import SpeedTestSession, Subtest

    with SpeedTestSession("ndt.example.net") as session:
        result = session.measure(Subtest.UPLOAD)
"""

from .client import Ndt7Client
from .config import LIBRARY_VERSION, ClientConfig, load_config
from .models import AppInfo, Measurement, Origin, Subtest
from .runner import run_all, run_subtest
from .session import SpeedTestSession, SubtestResult
from .subtest import RunState, SubtestRun
from .types import (
    DialError,
    InternalFault,
    Ndt7Error,
    ProtocolError,
    Result,
    TransportError,
)

__version__ = LIBRARY_VERSION

__all__ = [
    "Ndt7Client",
    "ClientConfig",
    "load_config",
    "Measurement",
    "AppInfo",
    "Origin",
    "Subtest",
    "SubtestRun",
    "RunState",
    "SpeedTestSession",
    "SubtestResult",
    "run_subtest",
    "run_all",
    "Result",
    "Ndt7Error",
    "DialError",
    "ProtocolError",
    "TransportError",
    "InternalFault",
]
