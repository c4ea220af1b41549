"""
Retry utilities with exponential backoff for the Energy Intel services.
"""

import random
import time
from functools import wraps
from typing import Any, Callable, Optional, Tuple, Type

from shared.app_logging.logger import get_logger
from shared.config.settings import get_settings

logger = get_logger("utils.retry")


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""
    pass


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_retries: int = 2,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        backoff_factor: float = 2.0,
        jitter: bool = True,
        retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.jitter = jitter
        self.retryable_exceptions = retryable_exceptions

    @classmethod
    def resolve(
        cls,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        backoff_factor: Optional[float] = None,
        jitter: bool = True,
        retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    ) -> "RetryConfig":
        """Fill unspecified values from the pipeline settings."""
        if None in (max_retries, base_delay, backoff_factor):
            pipeline = get_settings().pipeline
            if max_retries is None:
                max_retries = pipeline.max_retries
            if base_delay is None:
                base_delay = pipeline.retry_delay
            if backoff_factor is None:
                backoff_factor = pipeline.retry_backoff_factor
        return cls(
            max_retries=max_retries,
            base_delay=base_delay,
            max_delay=max_delay if max_delay is not None else max(base_delay * 10, base_delay),
            backoff_factor=backoff_factor,
            jitter=jitter,
            retryable_exceptions=retryable_exceptions,
        )


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate delay for retry attempt with exponential backoff and jitter."""
    delay = config.base_delay * (config.backoff_factor ** attempt)
    delay = min(delay, config.max_delay)

    if config.jitter:
        # +/-10% so parallel callers do not retry in lockstep
        jitter_range = delay * 0.1
        delay += random.uniform(-jitter_range, jitter_range)

    return max(0, delay)


def _call_with_retries(
    func: Callable,
    args: tuple,
    kwargs: dict,
    config: RetryConfig,
    on_retry: Optional[Callable[[Exception, int], None]] = None,
) -> Any:
    name = getattr(func, "__name__", repr(func))

    for attempt in range(config.max_retries + 1):
        try:
            return func(*args, **kwargs)
        except config.retryable_exceptions as e:
            if attempt == config.max_retries:
                logger.error(f"Function {name} failed after {config.max_retries} retries: {e}")
                raise RetryError(f"Function {name} failed after {config.max_retries} retries: {e}") from e

            delay = calculate_delay(attempt, config)
            logger.warning(
                f"Function {name} failed (attempt {attempt + 1}/{config.max_retries + 1}): {e}. "
                f"Retrying in {delay:.2f}s"
            )
            if on_retry:
                on_retry(e, attempt + 1)
            time.sleep(delay)

    raise RetryError(f"Function {name} was never attempted")


def retry(
    max_retries: Optional[int] = None,
    base_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
    backoff_factor: Optional[float] = None,
    jitter: bool = True,
    retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable[[Exception, int], None]] = None,
):
    """
    Decorator for retrying function calls with exponential backoff.

    Exceptions outside ``retryable_exceptions`` propagate immediately.
    Unspecified values are read from the pipeline settings at call time.
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            config = RetryConfig.resolve(
                max_retries=max_retries,
                base_delay=base_delay,
                max_delay=max_delay,
                backoff_factor=backoff_factor,
                jitter=jitter,
                retryable_exceptions=retryable_exceptions,
            )
            return _call_with_retries(func, args, kwargs, config, on_retry)

        return wrapper
    return decorator


def retry_with_backoff(
    func: Callable,
    *args,
    max_retries: Optional[int] = None,
    base_delay: Optional[float] = None,
    backoff_factor: Optional[float] = None,
    retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    **kwargs,
) -> Any:
    """
    Execute a function with retry logic and exponential backoff.

    Raises:
        RetryError: If all retry attempts are exhausted
    """
    config = RetryConfig.resolve(
        max_retries=max_retries,
        base_delay=base_delay,
        backoff_factor=backoff_factor,
        retryable_exceptions=retryable_exceptions,
    )
    return _call_with_retries(func, args, kwargs, config)
