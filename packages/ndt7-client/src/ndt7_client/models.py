"""Measurement data model exchanged with the ndt7 server."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .types import ProtocolError


class Subtest(str, Enum):
    """Direction of a subtest."""

    DOWNLOAD = "download"
    UPLOAD = "upload"

    @property
    def path(self) -> str:
        return f"/ndt/v7/{self.value}"


class Origin(str, Enum):
    """Which side of the connection produced a measurement."""

    CLIENT = "client"
    SERVER = "server"


class AppInfo(BaseModel):
    """Application level counters."""

    model_config = ConfigDict(extra="allow", frozen=True)

    num_bytes: int = Field(ge=0, description="Bytes transferred so far")


class Measurement(BaseModel):
    """One measurement snapshot.

    Fields other than the ones declared here (e.g. the server's TCP or BBR
    info) are kept as extras so a frame can be re-serialized without loss.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    elapsed: float = Field(ge=0, description="Seconds since the subtest started")
    subtest: Subtest | None = None
    origin: Origin | None = None
    app_info: AppInfo | None = None

    @property
    def num_bytes(self) -> int:
        return self.app_info.num_bytes if self.app_info is not None else 0

    def to_payload(self) -> bytes:
        """Serialize as compact JSON, omitting unset fields."""
        return self.model_dump_json(exclude_none=True).encode("utf-8")

    @classmethod
    def from_payload(cls, payload: bytes | str) -> Measurement:
        """Decode a text frame.

        Raises:
            ProtocolError: If the payload is not a JSON measurement object
        """
        try:
            return cls.model_validate_json(payload)
        except ValidationError as e:
            raise ProtocolError(f"Invalid measurement: {e.error_count()} validation error(s)") from e


_peer_frame = TypeAdapter(dict[str, Any])


def parse_peer_frame(payload: bytes | str) -> dict[str, Any]:
    """Decode a text frame sent by the server.

    The server's measurement schema is not ours to enforce: any JSON object
    is accepted.

    Raises:
        ProtocolError: If the payload is not a JSON object
    """
    try:
        return _peer_frame.validate_json(payload)
    except ValidationError as e:
        raise ProtocolError(f"Invalid text frame: {e.error_count()} validation error(s)") from e
