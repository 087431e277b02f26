"""
Retry with exponential backoff for store writes.
"""

import logging
import random
import time
from collections.abc import Callable, Sequence
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRY_EXCEPTIONS: tuple[type[Exception], ...] = (OSError, TimeoutError)


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.2,
        max_delay: float = 5.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        exceptions: Sequence[type[Exception]] = DEFAULT_RETRY_EXCEPTIONS,
    ):
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.exceptions = tuple(exceptions)

    def calculate_delay(self, attempt: int) -> float:
        """Delay before retry number `attempt` (0-indexed)."""
        delay = min(self.base_delay * (self.exponential_base**attempt), self.max_delay)
        if self.jitter:
            delay += delay * random.uniform(0, 0.5)
        return delay


def call_with_retry(
    func: Callable[[], T],
    config: RetryConfig,
    description: str = "",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call `func`, retrying on the configured exceptions. Re-raises the last error."""
    name = description or getattr(func, "__name__", "call")
    for attempt in range(config.max_attempts):
        try:
            return func()
        except config.exceptions as e:
            if attempt >= config.max_attempts - 1:
                logger.error(
                    f"All {config.max_attempts} attempts failed for {name}: "
                    f"{type(e).__name__}: {e}"
                )
                raise
            delay = config.calculate_delay(attempt)
            logger.warning(
                f"Retry {attempt + 1}/{config.max_attempts} for {name}: "
                f"{type(e).__name__}: {e}. Waiting {delay:.2f}s"
            )
            sleep(delay)
    raise RuntimeError(f"Retry failed for {name}")
