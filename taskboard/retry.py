"""Bounded retry for async operations."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

T = TypeVar("T")

_LOGGER = logging.getLogger(__name__)


class RetryExhausted(Exception):
    """Raised when every attempt failed or produced an unacceptable result."""

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None, last_result=None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        self.last_result = last_result
        reason = f": {last_error}" if last_error is not None else ""
        super().__init__(f"Gave up after {attempts} attempts{reason}")


async def retry(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    accept: Optional[Callable[[T], bool]] = None,
    retry_on: Tuple[Type[BaseException], ...] = (),
    delay: float = 0.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "operation",
) -> T:
    """Call ``operation`` up to ``attempts`` times.

    An attempt fails when it raises one of ``retry_on`` or when ``accept``
    rejects its result. Other exceptions propagate immediately. ``delay``
    seconds are slept between attempts, never after the last one.
    """

    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    last_error: Optional[BaseException] = None
    last_result = None
    for attempt in range(1, attempts + 1):
        try:
            result = await operation()
        except retry_on as exc:
            last_error = exc
            _LOGGER.warning("%s attempt %s/%s failed: %s", label, attempt, attempts, exc)
        else:
            if accept is None or accept(result):
                return result
            last_error = None
            last_result = result
            _LOGGER.debug("%s attempt %s/%s rejected result %r", label, attempt, attempts, result)

        if attempt < attempts and delay > 0:
            await sleep(delay)

    raise RetryExhausted(attempts, last_error=last_error, last_result=last_result)
