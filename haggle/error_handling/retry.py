"""
Retry helper with exponential backoff.

Used for infrastructure calls that can fail transiently (connecting to the
shared store at startup). Negotiation errors are never retried here.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from .errors import NegotiationError


logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """
    Configuration for retry behavior with exponential backoff.

    Attributes:
        max_retries: Maximum number of attempts
        base_delay_seconds: Delay before the second attempt
        backoff_multiplier: Growth factor applied on each further attempt
    """
    max_retries: int = 3
    base_delay_seconds: float = 0.5
    backoff_multiplier: float = 2.0

    def get_backoff_delay(self, attempt: int) -> float:
        """
        Calculate backoff delay after a failed attempt.

        delay = base_delay_seconds * (backoff_multiplier ^ attempt)

        Args:
            attempt: The failed attempt number (0-indexed)

        Returns:
            Delay in seconds before the next attempt
        """
        return self.base_delay_seconds * (self.backoff_multiplier ** attempt)


async def retry_with_backoff(
    operation: Callable[..., Awaitable[Any]],
    *args,
    config: RetryConfig = None,
    **kwargs
) -> Any:
    """
    Execute an async operation, retrying with exponential backoff.

    NegotiationError subclasses are caller errors and propagate immediately.

    Args:
        operation: Async callable to execute
        config: Retry configuration (defaults to RetryConfig())

    Returns:
        Result from the first successful attempt

    Raises:
        Exception: The last exception encountered once attempts are exhausted
    """
    config = config or RetryConfig()
    name = getattr(operation, "__name__", repr(operation))
    last_exception = None

    for attempt in range(config.max_retries):
        try:
            return await operation(*args, **kwargs)
        except NegotiationError:
            raise
        except Exception as e:
            last_exception = e
            logger.error(
                f"Operation failed: {name} | "
                f"Attempt: {attempt + 1}/{config.max_retries} | "
                f"Error: {type(e).__name__}: {str(e)}"
            )
            if attempt == config.max_retries - 1:
                break
            delay = config.get_backoff_delay(attempt)
            logger.info(f"Waiting {delay:.1f}s before retry...")
            await asyncio.sleep(delay)

    raise last_exception
