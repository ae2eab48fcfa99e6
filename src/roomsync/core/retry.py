"""Retry with exponential backoff for external chat calls."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any, TypeVar

from roomsync.models.config import RetryPolicy

logger = logging.getLogger("roomsync.retry")

T = TypeVar("T")

__all__ = ["RetryPolicy", "retry_with_backoff"]


async def retry_with_backoff(
    fn: Callable[..., Coroutine[Any, Any, T]],
    policy: RetryPolicy,
    *args: Any,
    retry_if: Callable[[Exception], bool] | None = None,
    **kwargs: Any,
) -> T:
    """Execute *fn* with exponential backoff retry.

    Only exceptions for which *retry_if* returns true are retried; any other
    exception is raised immediately. Raises the last exception if all
    retries are exhausted.
    """
    last_exc: Exception | None = None
    for attempt in range(1 + policy.max_retries):
        try:
            return await fn(*args, **kwargs)
        except Exception as exc:
            if retry_if is not None and not retry_if(exc):
                raise
            last_exc = exc
            if attempt >= policy.max_retries:
                break
            delay = min(
                policy.base_delay_seconds * (policy.exponential_base**attempt),
                policy.max_delay_seconds,
            )
            logger.warning(
                "Attempt %d/%d failed (%s), retrying in %.1fs",
                attempt + 1,
                policy.max_retries + 1,
                exc,
                delay,
                extra={"attempt": attempt + 1, "delay": delay},
            )
            await asyncio.sleep(delay)

    assert last_exc is not None
    raise last_exc
