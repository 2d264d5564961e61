"""Retry helpers for flaky device links.

Terminals on shop-floor networks drop packets, reboot and briefly refuse
connections. The orchestrator wraps device connects in ``retry_async`` so a
transient failure costs a short backoff instead of a whole sync cycle.

Example:
    session = await retry_async(
        client.connect,
        "10.0.0.20",
        max_attempts=3,
    )

Author: ZK Fleet Team
"""
import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

from .exceptions import TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ============================================
# Retry with Exponential Backoff
# ============================================

# Default exceptions that are considered retryable. Auth and protocol
# errors are deliberate answers from the device and are never retried.
DEFAULT_RETRYABLE_EXCEPTIONS = (
    TransportError,
    ConnectionResetError,
)


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args,
    max_attempts: int = 3,
    backoff_factor: float = 2.0,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    jitter: bool = True,
    retryable_exceptions: tuple = DEFAULT_RETRYABLE_EXCEPTIONS,
    on_retry: Optional[Callable[[Exception, int], None]] = None,
    **kwargs,
) -> T:
    """Retry an async function call with exponential backoff.

    Args:
        func: Async function to call
        *args: Arguments to pass to func
        max_attempts: Maximum attempts (including the first try)
        backoff_factor: Delay multiplier
        initial_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        jitter: Randomize each delay between 50% and 150%
        retryable_exceptions: Exceptions to retry on
        on_retry: Optional callback called before each retry with (exception, attempt)
        **kwargs: Keyword arguments to pass to func

    Returns:
        Result from func
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    delay = initial_delay

    for attempt in range(1, max_attempts + 1):
        try:
            return await func(*args, **kwargs)

        except retryable_exceptions as e:
            if attempt >= max_attempts:
                if max_attempts > 1:
                    logger.error(f"All {max_attempts} attempts failed. Last error: {e}")
                raise

            actual_delay = min(delay, max_delay)
            if jitter:
                actual_delay = actual_delay * (0.5 + random.random())

            if on_retry:
                on_retry(e, attempt)

            logger.warning(
                f"Retry {attempt}/{max_attempts}: {e}. Waiting {actual_delay:.1f}s"
            )
            await asyncio.sleep(actual_delay)
            delay = min(delay * backoff_factor, max_delay)

    raise RuntimeError("Retry logic error")


__all__ = ["DEFAULT_RETRYABLE_EXCEPTIONS", "retry_async"]
