"""Ndt7Client - dials the measurement server and starts subtests."""

from __future__ import annotations

import asyncio
import logging
import ssl
from urllib.parse import urlencode

from websockets.asyncio.client import connect
from websockets.exceptions import WebSocketException
from websockets.typing import Subprotocol

from .config import LIBRARY_NAME, LIBRARY_VERSION, SUBPROTOCOL, ClientConfig
from .connection import Connection
from .models import Subtest
from .subtest import SubtestRun
from .types import DialError

logger = logging.getLogger(__name__)


def _insecure_context() -> ssl.SSLContext:
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


class Ndt7Client:
    """Runs ndt7 subtests against one server.

    Every subtest gets its own connection and its own deadline
    (``config.timeout``, dial included).

    Usage:
        client = Ndt7Client("ndt.example.net")
        run = await client.start_download()
        async with run:
            async for measurement in run:
                print(measurement.elapsed, measurement.num_bytes)
        error = await run.wait()
    """

    def __init__(
        self,
        hostname: str,
        *,
        port: int | None = None,
        scheme: str = "wss",
        insecure: bool = False,
        config: ClientConfig | None = None,
        metadata: dict[str, str] | None = None,
    ):
        """
        Args:
            hostname: Server hostname (server discovery is up to the caller)
            port: Server port, default port of the scheme when None
            scheme: "wss" or "ws"
            insecure: Skip TLS certificate verification
            config: Pipeline settings
            metadata: Extra query parameters sent to the server
        """
        if scheme not in ("ws", "wss"):
            raise ValueError(f"Invalid scheme: {scheme}")
        self.hostname = hostname
        self.port = port
        self.scheme = scheme
        self.insecure = insecure
        self.config = config or ClientConfig()
        self.metadata = dict(metadata or {})

    @property
    def server(self) -> str:
        return self.hostname if self.port is None else f"{self.hostname}:{self.port}"

    def url_for(self, subtest: Subtest) -> str:
        params = {
            "client_library_name": LIBRARY_NAME,
            "client_library_version": LIBRARY_VERSION,
            **self.metadata,
        }
        return f"{self.scheme}://{self.server}{subtest.path}?{urlencode(params)}"

    async def dial(self, subtest: Subtest, timeout: float) -> Connection:
        """Open the WebSocket for ``subtest``.

        Raises:
            DialError: On connection, TLS or handshake failure, or timeout
        """
        url = self.url_for(subtest)
        kwargs = {}
        if self.scheme == "wss" and self.insecure:
            kwargs["ssl"] = _insecure_context()

        logger.debug(f"Connecting to {url}")
        try:
            websocket = await connect(
                url,
                subprotocols=[Subprotocol(SUBPROTOCOL)],
                max_size=self.config.max_message_size,
                open_timeout=timeout,
                **kwargs,
            )
        except TimeoutError as e:
            logger.warning(f"Handshake with {self.server} timed out after {timeout}s")
            raise DialError(f"Connection timeout to {url}") from e
        except (WebSocketException, OSError) as e:
            logger.warning(f"Failed to connect to {self.server}: {e}")
            raise DialError(f"Failed to connect to {url}: {e}") from e

        if websocket.subprotocol != SUBPROTOCOL:
            logger.warning(f"Server did not select {SUBPROTOCOL}: {websocket.subprotocol}")
        logger.info(f"Connected to {self.server} for {subtest.value}")
        return Connection(websocket, max_message_size=self.config.max_message_size)

    async def start(self, subtest: Subtest) -> SubtestRun:
        """Dial and start ``subtest``; the deadline starts counting now.

        Raises:
            DialError: If the connection could not be established in time
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.timeout
        dial_timeout = min(self.config.handshake_timeout, self.config.timeout)

        run = SubtestRun(subtest, self.config)
        await run.open(lambda: self.dial(subtest, dial_timeout))
        run.set_deadline(deadline)
        return run

    async def start_download(self) -> SubtestRun:
        return await self.start(Subtest.DOWNLOAD)

    async def start_upload(self) -> SubtestRun:
        return await self.start(Subtest.UPLOAD)
