"""ndt7-client command line tool.

Runs the download and then the upload subtest against one server.

Usage:
    ndt7-client --hostname ndt.example.net
    ndt7-client --hostname localhost --port 8080 --scheme ws --batch

The exit status is zero on success and the sum of the subtest exit codes
otherwise (1: subtest error, 2: could not connect).
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import replace

from .client import Ndt7Client
from .config import load_config
from .emitter import BatchEmitter, Emitter, InteractiveEmitter
from .models import Subtest
from .runner import run_all

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="ndt7 network performance test client",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--hostname", required=True, help="ndt7 server hostname")
    parser.add_argument("--port", type=int, default=None, help="Server port (scheme default when omitted)")
    parser.add_argument("--scheme", choices=("wss", "ws"), default="wss", help="WebSocket scheme")
    parser.add_argument("--batch", action="store_true", help="Emit JSON events on stdout")
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds after which a subtest is aborted (NDT7_TIMEOUT or 45)",
    )
    parser.add_argument("--insecure", action="store_true", help="Skip TLS certificate verification")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        help="Log level (logs go to stderr)",
    )
    only = parser.add_mutually_exclusive_group()
    only.add_argument("--download-only", action="store_true", help="Skip the upload subtest")
    only.add_argument("--upload-only", action="store_true", help="Skip the download subtest")
    return parser.parse_args(argv)


def _subtests(args: argparse.Namespace) -> tuple[Subtest, ...]:
    if args.download_only:
        return (Subtest.DOWNLOAD,)
    if args.upload_only:
        return (Subtest.UPLOAD,)
    return (Subtest.DOWNLOAD, Subtest.UPLOAD)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )

    config = load_config()
    if args.timeout is not None:
        config = replace(config, timeout=args.timeout)

    client = Ndt7Client(
        args.hostname,
        port=args.port,
        scheme=args.scheme,
        insecure=args.insecure,
        config=config,
    )
    emitter: Emitter = BatchEmitter() if args.batch else InteractiveEmitter()

    try:
        return asyncio.run(run_all(client, emitter, _subtests(args)))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
