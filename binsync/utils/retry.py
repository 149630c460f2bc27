"""
Retry utilities for binsync
"""

import time
import random
from typing import Callable, Any, Type, Tuple
from functools import wraps
from dataclasses import dataclass

import structlog

from ..exceptions import ConnectionError


@dataclass
class RetryConfig:
    """Exponential backoff settings"""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_exceptions: Tuple[Type[Exception], ...] = (ConnectionError,)

    def delay_for(self, attempt: int) -> float:
        """Sleep time after the given zero-based failed attempt"""
        delay = min(self.base_delay * (self.exponential_base ** attempt), self.max_delay)
        if self.jitter:
            delay *= (0.5 + random.random() * 0.5)
        return delay


def retry(config: RetryConfig = None):
    """
    Decorator for retrying function calls with exponential backoff

    Only exceptions listed in ``config.retryable_exceptions`` are retried;
    anything else propagates on the first failure.
    """
    if config is None:
        config = RetryConfig()

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            logger = structlog.get_logger()
            for attempt in range(config.max_attempts):
                try:
                    return func(*args, **kwargs)
                except config.retryable_exceptions as e:
                    if attempt == config.max_attempts - 1:
                        raise
                    delay = config.delay_for(attempt)
                    logger.warning("Operation failed, retrying",
                                   operation=func.__name__,
                                   attempt=attempt + 1,
                                   max_attempts=config.max_attempts,
                                   delay=round(delay, 2),
                                   error=str(e))
                    time.sleep(delay)
        return wrapper
    return decorator


def retry_on_connection_error(max_attempts: int = 3, base_delay: float = 1.0):
    """Convenience decorator for retrying on connection errors"""
    return retry(RetryConfig(max_attempts=max_attempts, base_delay=base_delay))
