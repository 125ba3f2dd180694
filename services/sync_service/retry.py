"""Retry logic with exponential backoff for network operations."""

import asyncio
import logging
from functools import wraps
from typing import Any, Callable, Optional, Tuple, Type

logger = logging.getLogger(__name__)


def retry_with_exponential_backoff(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    exponential_base: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,)
):
    """
    Decorator to retry a coroutine function with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts
        initial_delay: Initial delay in seconds before first retry
        exponential_base: Base for exponential backoff calculation
        exceptions: Tuple of exception types to catch and retry

    Returns:
        Decorated coroutine function with retry logic
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            last_exception = None

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)

                except exceptions as e:
                    last_exception = e

                    if attempt < max_retries:
                        delay = initial_delay * (exponential_base ** attempt)

                        logger.warning(
                            f"Attempt {attempt + 1}/{max_retries + 1} failed for {func.__name__}: {e}. "
                            f"Retrying in {delay:.2f} seconds..."
                        )

                        await asyncio.sleep(delay)
                    else:
                        logger.error(
                            f"All {max_retries + 1} attempts failed for {func.__name__}: {e}"
                        )

            raise last_exception

        return wrapper

    return decorator


class ExponentialBackoff:
    """Delay sequence for open-ended reconnect loops."""

    def __init__(
        self,
        initial_delay: float = 1.0,
        exponential_base: float = 2.0,
        max_delay: Optional[float] = 60.0
    ):
        self.initial_delay = initial_delay
        self.exponential_base = exponential_base
        self.max_delay = max_delay
        self.attempt = 0

    def next_delay(self) -> float:
        delay = self.initial_delay * (self.exponential_base ** self.attempt)
        self.attempt += 1
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay

    def reset(self) -> None:
        self.attempt = 0
