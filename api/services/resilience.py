"""
Resilience utilities for the identity service.

Provides:
- Error taxonomy for identify requests (validation, conflict, store failures)
- Retry logic for conflicting units of work
"""
import functools
import logging
import time
from typing import Callable, TypeVar, Optional
from dataclasses import dataclass

logger = logging.getLogger(__name__)

T = TypeVar('T')


class IdentityValidationError(Exception):
    """Raised when an observation has a bad or missing input shape."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConflictError(Exception):
    """Raised when a concurrent unit of work changed the records we read."""


class StoreUnavailableError(Exception):
    """Raised when the contact store cannot be reached or is closed."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(f"contact_store: {message}")


class StoreIntegrityError(Exception):
    """Raised when stored records violate cluster invariants."""


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 3
    base_delay: float = 0.05  # seconds
    max_delay: float = 2.0  # seconds
    exponential_base: float = 2.0
    retryable_exceptions: tuple = (ConflictError,)


DEFAULT_RETRY_CONFIG = RetryConfig()


def retry_sync(
    config: Optional[RetryConfig] = None,
    on_retry: Optional[Callable[[int, Exception], None]] = None,
):
    """
    Decorator for sync functions with retry logic.

    Each retry calls the wrapped function from scratch, so any state it reads
    must be re-read inside the call.

    Args:
        config: Retry configuration
        on_retry: Optional callback on each retry (retry_num, exception)
    """
    cfg = config or DEFAULT_RETRY_CONFIG

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            last_exception = None

            for attempt in range(cfg.max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except cfg.retryable_exceptions as e:
                    last_exception = e

                    if attempt < cfg.max_retries:
                        delay = min(
                            cfg.base_delay * (cfg.exponential_base ** attempt),
                            cfg.max_delay
                        )
                        logger.warning(
                            f"Retry {attempt + 1}/{cfg.max_retries} for {func.__name__}: {e}. "
                            f"Waiting {delay:.2f}s..."
                        )

                        if on_retry:
                            on_retry(attempt + 1, e)

                        time.sleep(delay)
                    else:
                        logger.error(
                            f"All {cfg.max_retries} retries exhausted for {func.__name__}: {e}"
                        )

            raise last_exception

        return wrapper
    return decorator
