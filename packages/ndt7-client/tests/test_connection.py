import pytest
from conftest import FakeWebSocket, normal_close
from websockets.exceptions import ConnectionClosedError
from websockets.frames import Close, CloseCode

from ndt7_client.connection import Connection, as_ndt7_error, is_normal_close
from ndt7_client.types import ProtocolError, TransportError


@pytest.mark.asyncio
async def test_failed_write_poisons_connection_and_aborts() -> None:
    ws = FakeWebSocket(close=False, fail_send_on=2)
    conn = Connection(ws)

    await conn.send_binary(b"a")
    with pytest.raises(ConnectionClosedError) as first:
        await conn.send_text(b"{}")
    with pytest.raises(ConnectionClosedError) as second:
        await conn.send_binary(b"b")

    assert second.value is first.value
    assert ws.send_attempts == 2
    assert conn.write_failed
    assert conn.frames_written == 1
    assert ws.transport.abort_calls == 1


@pytest.mark.asyncio
async def test_normal_close_on_write_does_not_abort() -> None:
    ws = FakeWebSocket(close=False, fail_send_on=1, fail_with=normal_close())
    conn = Connection(ws)

    with pytest.raises(Exception) as exc_info:
        await conn.send_binary(b"a")
    assert is_normal_close(exc_info.value)
    assert ws.transport.abort_calls == 0


@pytest.mark.asyncio
async def test_close_is_idempotent() -> None:
    ws = FakeWebSocket(close=False)
    conn = Connection(ws)

    await conn.close()
    await conn.close()
    assert conn.closed
    assert ws.close_calls == 1


@pytest.mark.asyncio
async def test_abort_skips_closing_transport() -> None:
    ws = FakeWebSocket(close=False)
    conn = Connection(ws)

    conn.abort()
    conn.abort()
    assert ws.transport.abort_calls == 1


def test_message_too_big_maps_to_protocol_error() -> None:
    exc = ConnectionClosedError(None, Close(CloseCode.MESSAGE_TOO_BIG, "frame exceeds limit"))
    error = as_ndt7_error(exc)
    assert isinstance(error, ProtocolError)
    assert error.__cause__ is exc


def test_other_failures_map_to_transport_error() -> None:
    assert isinstance(as_ndt7_error(ConnectionClosedError(None, None)), TransportError)
    assert isinstance(as_ndt7_error(ConnectionResetError("reset")), TransportError)

    already = ProtocolError("bad frame")
    assert as_ndt7_error(already) is already
