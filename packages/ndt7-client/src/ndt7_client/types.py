"""Type definitions for ndt7-client."""

from __future__ import annotations

from dataclasses import dataclass


class Ndt7Error(Exception):
    """A subtest failed."""

    code = "NDT7_ERROR"

    def __init__(self, message: str, *, code: str | None = None):
        if code is not None:
            self.code = code
        self.message = message
        super().__init__(f"{self.code}: {message}")


class DialError(Ndt7Error):
    """The connection or the WebSocket handshake could not be established."""

    code = "DIAL_FAILED"


class ProtocolError(Ndt7Error):
    """A frame violated the size or format expectations of the protocol."""

    code = "PROTOCOL_ERROR"


class TransportError(Ndt7Error):
    """Reading from or writing to the connection failed."""

    code = "IO_ERROR"


class InternalFault(Ndt7Error):
    """An unexpected exception escaped one of the pipeline stages."""

    code = "INTERNAL_FAULT"


@dataclass(frozen=True)
class Result:
    """The unit of data flowing through every pipeline stage.

    Carries either one payload or one terminal error, never both.

    Attributes:
        payload: Raw frame bytes (a serialized measurement for text frames)
        error: Terminal error of the producing stage
        binary: True when the payload belongs to a binary frame
    """

    payload: bytes | None = None
    error: Exception | None = None
    binary: bool = False

    def __post_init__(self) -> None:
        if (self.payload is None) == (self.error is None):
            raise ValueError("Result needs exactly one of payload and error")

    @classmethod
    def of(cls, payload: bytes, *, binary: bool = False) -> Result:
        return cls(payload=payload, binary=binary)

    @classmethod
    def failure(cls, error: Exception) -> Result:
        return cls(error=error)

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def size(self) -> int:
        """Number of payload bytes (0 for an error)."""
        return len(self.payload) if self.payload is not None else 0
