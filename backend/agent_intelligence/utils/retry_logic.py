# backend/agent_intelligence/utils/retry_logic.py
"""
Async retry with exponential backoff for calls to the analysis dependency.

Only the exception types passed in `exceptions` are retried; anything
else (programming errors, validation failures) propagates on the first
attempt.
"""

import asyncio
import functools
import random
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from agent_intelligence.utils.logger import logger


def calculate_backoff(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
) -> float:
    """
    Delay before retry number `attempt` (0-indexed), capped at max_delay.

    With jitter the delay is scaled by a random factor in [0.5, 1.5) so
    parallel callers do not retry in lockstep.
    """
    delay = min(base_delay * exponential_base ** attempt, max_delay)
    if jitter:
        delay *= 0.5 + random.random()
    return delay


def retry_async(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    on_retry: Optional[Callable[[BaseException, int], Any]] = None,
):
    """
    Decorator: retry an async function up to max_retries times.

    Example:
        @retry_async(max_retries=2, base_delay=1.0, exceptions=(ExternalDependencyFailure,))
        async def _complete(self, prompt):
            ...
    """
    def decorator(func: Callable[..., Awaitable[Any]]):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_retries:
                        logger.error(f"[Retry] {func.__name__} gave up after {attempt + 1} attempt(s): {e}")
                        raise

                    delay = calculate_backoff(attempt, base_delay, max_delay)
                    logger.warning(
                        f"[Retry] {func.__name__} attempt {attempt + 1}/{max_retries + 1} failed: {e}; "
                        f"next try in {delay:.2f}s"
                    )
                    if on_retry is not None:
                        outcome = on_retry(e, attempt)
                        if asyncio.iscoroutine(outcome):
                            await outcome

                    await asyncio.sleep(delay)
                    attempt += 1

        return wrapper
    return decorator
