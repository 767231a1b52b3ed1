"""
Retry Policy

Bounded-attempt exponential backoff for async actions. Only transaction
submission goes through here; read-only queries fail fast.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from loguru import logger


T = TypeVar('T')


@dataclass(frozen=True)
class RetryPolicy:
    """
    Immutable retry settings

    delay(i) = initial_delay * backoff_factor ** (i - 1), where i is the
    1-based number of the attempt that just failed.
    """
    max_attempts: int = 3
    backoff_factor: float = 2.0
    initial_delay: float = 1.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @classmethod
    def from_config(cls, config) -> 'RetryPolicy':
        return cls(
            max_attempts=config.retry_attempts,
            backoff_factor=config.retry_backoff_factor,
            initial_delay=config.retry_initial_delay,
        )

    def delay(self, attempt: int) -> float:
        return self.initial_delay * self.backoff_factor ** (attempt - 1)

    async def execute(
        self,
        action: Callable[[], Awaitable[T]],
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        label: str = "action"
    ) -> T:
        """
        Run action until it succeeds or attempts run out

        Args:
            action: Zero-argument coroutine factory, called once per attempt
            sleep: Awaitable sleep used between attempts
            label: Name used in log lines

        Returns:
            The action's result

        Raises:
            The last exception raised by action, unchanged
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await action()
            except Exception as e:
                if attempt >= self.max_attempts:
                    logger.error(f"✗ {label} failed after {attempt} attempt(s): {e}")
                    raise
                wait = self.delay(attempt)
                logger.warning(
                    f"{label} attempt {attempt}/{self.max_attempts} failed: {e}; "
                    f"retrying in {wait:.1f}s"
                )
                await sleep(wait)
