from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

"""Retry wrapper for flaky integration calls (upload, remote fetch).

Linear backoff: ``base_delay * attempt`` seconds between attempts. Every
attempt is logged at INFO and every failure at WARN; after the last attempt
the final exception is re-raised unchanged.
"""

__all__ = ["with_retry"]

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_retry(
    action_name: str,
    fn: Callable[[], T | Awaitable[T]],
    *,
    retries: int = 3,
    base_delay: float = 0.8,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    on_status: Callable[[str], None] | None = None,
) -> T:
    """Call ``fn`` up to ``retries`` times.

    Args:
        action_name: label used in log lines and status messages
        fn: zero-argument callable; may return a value or an awaitable
        retries: maximum number of attempts (>= 1)
        base_delay: seconds; attempt ``n`` failing waits ``base_delay * n``
        sleep: injectable for tests
        on_status: receives a user-facing message before each backoff

    Raises:
        The exception raised by the last attempt.
    """
    if retries < 1:
        raise ValueError("retries must be >= 1")

    last_error: BaseException | None = None
    for attempt in range(1, retries + 1):
        try:
            logger.info("%s attempt %d/%d", action_name, attempt, retries)
            result = fn()
            if inspect.isawaitable(result):
                result = await result
            return result  # type: ignore[return-value]
        except Exception as e:
            last_error = e
            logger.warning("%s failed (attempt %d/%d): %s", action_name, attempt, retries, e)
            if attempt < retries:
                delay = base_delay * attempt
                if on_status is not None:
                    on_status(
                        f"{action_name} failed (attempt {attempt}/{retries}), "
                        f"retrying in {round(delay)}s..."
                    )
                await sleep(delay)

    assert last_error is not None
    raise last_error
