"""Deadline enforcement for supervisor calls.

A hung container runtime or process manager must never hold a worker lock
forever. Every supervisor call goes through ``run_with_timeout_async`` so
the caller always gets a result or a ``TimeoutExpired`` within the bound.

Architecture:
    ::

        await run_with_timeout_async(coro, 20.0, operation="docker.start")
        # raises TimeoutExpired(timeout=20.0, elapsed=..., operation=...)

Guardrails:
    - Cancellation happens at the next await; blocking code inside the
      coroutine is not interrupted
    - Don't use very short timeouts (<1s) for process or container I/O

Tags:
    timeout, deadline, resilience, supervisor, botfleet
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable
from typing import TypeVar

T = TypeVar("T")


class TimeoutExpired(TimeoutError):
    """Raised when an operation exceeds its deadline.

    Attributes:
        timeout: The timeout value that was exceeded
        elapsed: How long the operation ran before being interrupted
        operation: Name/description of the operation
    """

    def __init__(
        self,
        timeout: float,
        elapsed: float | None = None,
        operation: str = "operation",
    ):
        self.timeout = timeout
        self.elapsed = elapsed
        self.operation = operation

        msg = f"Operation '{operation}' timed out after {timeout}s"
        if elapsed is not None:
            msg += f" (ran for {elapsed:.2f}s)"
        super().__init__(msg)


async def run_with_timeout_async(
    aw: Awaitable[T],
    timeout_seconds: float,
    operation: str | None = None,
) -> T:
    """Await ``aw`` with a timeout.

    Example:
        >>> await run_with_timeout_async(adapter._do_start(h, env), 20.0, "docker.start")
    """
    if timeout_seconds <= 0:
        raise ValueError(f"Timeout must be positive, got {timeout_seconds}")

    start = time.monotonic()
    try:
        return await asyncio.wait_for(aw, timeout=timeout_seconds)
    except TimeoutError:
        raise TimeoutExpired(
            timeout=timeout_seconds,
            elapsed=time.monotonic() - start,
            operation=operation or "operation",
        ) from None


__all__ = [
    "TimeoutExpired",
    "run_with_timeout_async",
]
