from __future__ import annotations

import asyncio
import inspect
import logging
import random
from typing import Any, Awaitable, Callable, TypeVar

from .logging import log_event

T = TypeVar("T")


async def guarded_call(
    action: Callable[[], Awaitable[T] | T],
    *,
    logger: logging.Logger,
    event: str,
    message: str,
    level: str = "warning",
    default: T | None = None,
    reraise: bool = False,
    **fields: Any,
) -> T | None:
    try:
        result = action()
        if inspect.isawaitable(result):
            return await result
        return result
    except asyncio.CancelledError:
        raise
    except Exception as error:
        log_event(
            logger,
            level=level,
            event=event,
            message=message,
            error=str(error),
            **fields,
        )
        if reraise:
            raise
        return default


async def wait_with_stop(stop_event: asyncio.Event | None, timeout_seconds: float) -> bool:
    """Sleep up to ``timeout_seconds``; return True if ``stop_event`` fired."""
    if stop_event is None:
        if timeout_seconds > 0:
            await asyncio.sleep(timeout_seconds)
        return False

    if timeout_seconds <= 0:
        return stop_event.is_set()

    try:
        await asyncio.wait_for(stop_event.wait(), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        return False
    return True


def backoff_seconds(*, attempt: int, base_seconds: float, max_seconds: float) -> float:
    exponential = min(max_seconds, base_seconds * float(2 ** max(0, min(attempt, 32) - 1)))
    jitter = random.uniform(0.0, max(0.0, exponential * 0.25))
    return max(0.0, min(max_seconds, exponential + jitter))
