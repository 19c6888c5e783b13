"""Shared utilities for routebench."""

import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog


@asynccontextmanager
async def timed_operation(
    name: str,
    log: structlog.stdlib.BoundLogger | None = None,
    **extra: Any,
) -> AsyncIterator[dict[str, Any]]:
    """Context manager that measures elapsed wall time for an async operation.

    Usage::

        async with timed_operation("provider_call", log=log) as timing:
            reply = await client.generate(prompt)
        record_latency(timing["elapsed_ms"])

    Args:
        name: A label for the operation (used in log messages).
        log: Optional structlog logger; if provided, a debug-level message
             is emitted on exit.
        **extra: Additional key-value pairs forwarded to the log call.

    Yields:
        A mutable dict that will contain ``elapsed_ms`` (whole milliseconds)
        after the block exits, whether or not it raised.
    """
    start = time.perf_counter()
    result: dict[str, Any] = {}
    try:
        yield result
    finally:
        result["elapsed_ms"] = max(0, round((time.perf_counter() - start) * 1000))
        if log:
            log.debug(name, duration_ms=result["elapsed_ms"], **extra)
