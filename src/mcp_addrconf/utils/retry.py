"""Backoff for transient failures when starting updater scripts."""
import logging
from functools import wraps
from typing import Any, Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# fork/exec hitting EAGAIN under process pressure
RETRYABLE_EXCEPTIONS = (BlockingIOError,)


def with_retry(
    max_attempts: int = 3,
    min_wait: float = 0.1,
    max_wait: float = 2,
    exceptions: tuple = RETRYABLE_EXCEPTIONS,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Retry a coroutine function with exponential backoff.

    The last exception is re-raised once ``max_attempts`` is used up;
    exceptions outside ``exceptions`` are never retried.
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        name = getattr(func, "__qualname__", type(func).__name__)

        def log_retry(state: RetryCallState) -> None:
            logger.warning(
                f"{name} attempt {state.attempt_number}/{max_attempts} "
                f"failed: {state.outcome.exception()!r}"
            )

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max_attempts),
                wait=wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
                retry=retry_if_exception_type(exceptions),
                before_sleep=log_retry,
                reraise=True,
            ):
                with attempt:
                    return await func(*args, **kwargs)

        return wrapper

    return decorator
