import json

import pytest

from ndt7_client.config import MAX_MESSAGE_SIZE, ClientConfig, load_config
from ndt7_client.models import AppInfo, Measurement, Origin, Subtest
from ndt7_client.types import DialError, InternalFault, ProtocolError, Result, TransportError


def test_result_needs_exactly_one_of_payload_and_error() -> None:
    with pytest.raises(ValueError):
        Result()
    with pytest.raises(ValueError):
        Result(payload=b"x", error=TransportError("boom"))


def test_result_size_and_failed() -> None:
    ok = Result.of(b"abcd", binary=True)
    assert ok.size == 4
    assert ok.binary
    assert not ok.failed

    failed = Result.failure(TransportError("boom"))
    assert failed.size == 0
    assert failed.failed
    # An error envelope must stay truthy.
    assert failed


def test_error_codes() -> None:
    assert DialError("x").code == "DIAL_FAILED"
    assert ProtocolError("x").code == "PROTOCOL_ERROR"
    assert TransportError("x").code == "IO_ERROR"
    assert InternalFault("x").code == "INTERNAL_FAULT"
    assert str(TransportError("read failed")) == "IO_ERROR: read failed"
    assert TransportError("x", code="CUSTOM").code == "CUSTOM"


def test_subtest_paths() -> None:
    assert Subtest.DOWNLOAD.path == "/ndt/v7/download"
    assert Subtest.UPLOAD.path == "/ndt/v7/upload"


def test_measurement_payload_keeps_unknown_fields() -> None:
    raw = {
        "AppInfo": {"ElapsedTime": 1},
        "elapsed": 1.5,
        "origin": "server",
        "subtest": "download",
        "app_info": {"num_bytes": 1024},
        "TCPInfo": {"RTT": 1200},
    }
    m = Measurement.from_payload(json.dumps(raw))
    assert m.origin is Origin.SERVER
    assert m.num_bytes == 1024

    again = json.loads(m.to_payload())
    assert again["TCPInfo"] == {"RTT": 1200}
    assert again["app_info"] == {"num_bytes": 1024}


def test_measurement_payload_omits_unset_fields() -> None:
    m = Measurement(elapsed=0.25, subtest=Subtest.UPLOAD, origin=Origin.CLIENT, app_info=AppInfo(num_bytes=8))
    assert json.loads(m.to_payload()) == {
        "elapsed": 0.25,
        "subtest": "upload",
        "origin": "client",
        "app_info": {"num_bytes": 8},
    }
    assert Measurement(elapsed=0).num_bytes == 0


@pytest.mark.parametrize(
    "payload",
    [
        b"not json",
        b"[1, 2, 3]",
        b'{"app_info": {"num_bytes": 1}}',
        b'{"elapsed": -1}',
        b'{"elapsed": 1, "app_info": {"num_bytes": -5}}',
    ],
)
def test_measurement_from_payload_rejects_invalid(payload: bytes) -> None:
    with pytest.raises(ProtocolError):
        Measurement.from_payload(payload)


def test_config_defaults() -> None:
    config = ClientConfig()
    assert config.timeout == 45.0
    assert config.handshake_timeout == 3.0
    assert config.measurement_interval == 0.25
    assert config.counterflow_interval == 0.25
    assert config.max_message_size == MAX_MESSAGE_SIZE == 1 << 17


@pytest.mark.parametrize(
    "kwargs",
    [
        {"timeout": 0},
        {"handshake_timeout": -1},
        {"measurement_interval": 0},
        {"upload_duration": 0},
        {"max_message_size": 0},
        {"initial_message_size": 2 << 20},
        {"channel_size": 0},
    ],
)
def test_config_rejects_invalid_values(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        ClientConfig(**kwargs)


def test_config_quick_preset() -> None:
    config = ClientConfig.quick()
    assert config.timeout == 15.0
    assert config.upload_duration == 3.0


def test_load_config_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NDT7_TIMEOUT", "20")
    monkeypatch.setenv("NDT7_UPLOAD_DURATION", "5.5")
    monkeypatch.setenv("NDT7_MAX_MESSAGE_SIZE", "4096")
    monkeypatch.delenv("NDT7_HANDSHAKE_TIMEOUT", raising=False)

    config = load_config()
    assert config.timeout == 20.0
    assert config.upload_duration == 5.5
    assert config.max_message_size == 4096
    assert config.handshake_timeout == 3.0


def test_load_config_rejects_invalid_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NDT7_TIMEOUT", "-3")
    with pytest.raises(ValueError):
        load_config()
