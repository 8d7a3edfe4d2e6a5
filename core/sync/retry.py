"""
Explicit retry policy with exponential backoff.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

from .errors import TransientSyncError

logger = logging.getLogger(__name__)

T = TypeVar('T')

TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (
    TransientSyncError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
    OSError,
)


@dataclass
class RetryPolicy:
    """
    Retries an awaitable on transient errors.

    Attempt ``n`` (1-based) that fails waits ``base_delay * multiplier ** (n - 1)``
    seconds, capped at ``max_delay``, before attempt ``n + 1``. Errors not in
    ``retry_on`` propagate immediately.
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 60.0
    retry_on: Tuple[Type[BaseException], ...] = TRANSIENT_ERRORS
    sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep, repr=False)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @classmethod
    def from_config(cls, config) -> 'RetryPolicy':
        """Build from a RetryConfig"""
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay_seconds,
            multiplier=config.multiplier,
            max_delay=config.max_delay_seconds
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff after the given (1-based) failed attempt"""
        if attempt < 1:
            return 0.0
        return min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)

    def is_retryable(self, error: BaseException) -> bool:
        return isinstance(error, self.retry_on)

    async def call(
        self,
        func: Callable[..., Awaitable[T]],
        *args,
        description: Optional[str] = None,
        **kwargs
    ) -> T:
        """
        Await ``func(*args, **kwargs)`` with retries.

        Raises:
            The last error once attempts are exhausted, or the first
            non-retryable error
        """
        label = description or getattr(func, "__name__", "call")

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                if not self.is_retryable(e) or attempt == self.max_attempts:
                    raise

                delay = self.delay_for(attempt)
                logger.warning(
                    f"{label} failed: {e} (attempt {attempt}/{self.max_attempts}), "
                    f"retrying in {delay:.2f}s"
                )
                await self.sleep(delay)

        raise RuntimeError("unreachable")  # pragma: no cover
