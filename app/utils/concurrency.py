"""
Concurrency utilities.

Provides `call_with_timeout`, which runs a blocking collaborator call on a bounded
worker pool so that no tick waits on it indefinitely.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Callable, TypeVar

T = TypeVar("T")


def call_with_timeout(
    executor: ThreadPoolExecutor,
    timeout: float,
    fn: Callable[..., T],
    *args: Any,
    **kwargs: Any,
) -> T:
    """Run ``fn`` on ``executor`` and wait at most ``timeout`` seconds.

    Raises:
        TimeoutError: the call did not finish in time. The worker keeps
            running in the background; its result is discarded.
        Exception: whatever ``fn`` raised.
    """
    future = executor.submit(fn, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        future.cancel()
        raise TimeoutError(f"{getattr(fn, '__name__', fn)!s} exceeded {timeout:.1f}s") from None
