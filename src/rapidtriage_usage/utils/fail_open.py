"""Fail-open decorator for async entry points.

Usage tracking must never block a user action because of an
infrastructure fault. Wrapping an entry point with ``fail_open`` turns
any ``Exception`` into a logged, safe default result.
``asyncio.CancelledError`` is a ``BaseException`` and still propagates.
"""

import functools
import logging
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


def fail_open(
    fallback: Callable[[], T],
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """
    Return a decorator that replaces raised exceptions with ``fallback()``.

    Args:
        fallback: Zero-argument factory for the safe result
    """

    def decorator(fn: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(fn)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            try:
                return await fn(*args, **kwargs)
            except Exception as e:
                logger.error(f"{fn.__qualname__} failed, failing open: {type(e).__name__}: {e}")
                return fallback()

        return wrapper

    return decorator
