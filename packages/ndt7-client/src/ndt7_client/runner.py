"""Running subtests end to end, with a fault boundary around each one."""

from __future__ import annotations

import logging
from typing import Iterable

from .client import Ndt7Client
from .emitter import Emitter
from .models import Subtest
from .types import DialError, InternalFault

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_DIAL_FAILURE = 2


async def run_subtest(client: Ndt7Client, subtest: Subtest, emitter: Emitter) -> int:
    """Run one subtest, reporting every event to ``emitter``.

    Returns:
        EXIT_OK, EXIT_FAILURE (the subtest reported an error) or
        EXIT_DIAL_FAILURE (no connection, zero measurements)

    Raises:
        InternalFault: When a stage raised an unexpected exception. The
            error has already been reported to ``emitter``.
    """
    emitter.on_starting(subtest)
    try:
        try:
            run = await client.start(subtest)
        except DialError as e:
            emitter.on_error(subtest, e)
            return EXIT_DIAL_FAILURE

        emitter.on_connected(subtest, client.server)
        async with run:
            async for measurement in run:
                emitter.on_measurement(subtest, measurement)
        error = await run.wait()
        if error is not None:
            logger.warning(f"{subtest.value} subtest failed: {error}")
            emitter.on_error(subtest, error)
            return EXIT_FAILURE
        return EXIT_OK
    except Exception as e:
        logger.exception(f"Internal fault during {subtest.value} subtest")
        fault = InternalFault(f"{type(e).__name__}: {e}")
        emitter.on_error(subtest, fault)
        raise fault from e
    finally:
        emitter.on_complete(subtest)


async def run_all(
    client: Ndt7Client,
    emitter: Emitter,
    subtests: Iterable[Subtest] = (Subtest.DOWNLOAD, Subtest.UPLOAD),
) -> int:
    """Run the subtests one after another.

    A failed subtest, internal faults included, never prevents the next one
    from being attempted.

    Returns:
        Sum of the subtest exit codes
    """
    code = 0
    for subtest in subtests:
        try:
            code += await run_subtest(client, subtest, emitter)
        except InternalFault:
            # Already logged and reported to the emitter by run_subtest.
            code += EXIT_FAILURE
    return code
