"""
ClientConfig - runtime settings of the measurement pipeline

Timeouts, reporting cadence and message sizes. The interval and size values
are design parameters of the protocol draft, so they are configurable rather
than hard-coded in the stages.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

LIBRARY_NAME = "ndt7-client-python"
LIBRARY_VERSION = "0.1.0"

SUBPROTOCOL = "net.measurementlab.ndt.v7"

# Peers must accept messages up to this size.
MAX_MESSAGE_SIZE = 1 << 17


@dataclass
class ClientConfig:
    """Pipeline settings.

    Attributes:
        timeout: Overall deadline of one subtest in seconds (dial included)
        handshake_timeout: Upper bound of the WebSocket opening handshake
        measurement_interval: Minimum time between two client measurements
        counterflow_interval: Period of the counter messages sent while downloading
        upload_duration: Seconds of load generated by the upload subtest
        max_message_size: Largest inbound frame accepted
        initial_message_size: First binary message size used by the upload
        max_load_message_size: Cap of the binary message size
        channel_size: Slots of the channels between stages

    Examples:
        config = ClientConfig()
        config = ClientConfig(timeout=20, upload_duration=5)
        config = ClientConfig.quick()
    """

    timeout: float = 45.0
    handshake_timeout: float = 3.0
    measurement_interval: float = 0.25
    counterflow_interval: float = 0.25
    upload_duration: float = 10.0
    max_message_size: int = MAX_MESSAGE_SIZE
    initial_message_size: int = 1 << 13
    max_load_message_size: int = 1 << 20
    channel_size: int = 1

    def __post_init__(self) -> None:
        for name in (
            "timeout",
            "handshake_timeout",
            "measurement_interval",
            "counterflow_interval",
            "upload_duration",
        ):
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"{name} must be positive: {value}")
        if self.max_message_size < 1:
            raise ValueError(f"max_message_size must be positive: {self.max_message_size}")
        if not 0 < self.initial_message_size <= self.max_load_message_size:
            raise ValueError(
                f"initial_message_size must be in (0, {self.max_load_message_size}]: "
                f"{self.initial_message_size}"
            )
        if self.channel_size < 1:
            raise ValueError(f"channel_size must be at least 1: {self.channel_size}")

    @classmethod
    def quick(cls) -> "ClientConfig":
        """Short runs for smoke tests (3s upload, 15s deadline)"""
        return cls(timeout=15.0, upload_duration=3.0)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    return int(raw) if raw else default


def load_config() -> ClientConfig:
    """Build a ClientConfig from NDT7_* environment variables."""

    defaults = ClientConfig()
    return ClientConfig(
        timeout=_env_float("NDT7_TIMEOUT", defaults.timeout),
        handshake_timeout=_env_float("NDT7_HANDSHAKE_TIMEOUT", defaults.handshake_timeout),
        measurement_interval=_env_float("NDT7_MEASUREMENT_INTERVAL", defaults.measurement_interval),
        counterflow_interval=_env_float("NDT7_COUNTERFLOW_INTERVAL", defaults.counterflow_interval),
        upload_duration=_env_float("NDT7_UPLOAD_DURATION", defaults.upload_duration),
        max_message_size=_env_int("NDT7_MAX_MESSAGE_SIZE", defaults.max_message_size),
    )
