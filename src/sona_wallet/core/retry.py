"""Shared retry policy.

One place decides how many attempts an operation gets, how long to wait
between them, and which errors are worth another attempt.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Sequence, TypeVar

logger = logging.getLogger("sona_wallet.retry")

T = TypeVar("T")


def _never(exc: BaseException) -> bool:
    return False


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with an explicit backoff schedule.

    ``backoff`` lists the delay before the 2nd, 3rd, ... attempt; when it is
    shorter than ``max_attempts - 1`` its last entry is reused.
    """

    max_attempts: int = 1
    backoff: Sequence[float] = field(default_factory=tuple)
    retry_on: Callable[[BaseException], bool] = _never
    name: str = "operation"

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay_for(self, retry_index: int) -> float:
        """Delay before retry number *retry_index* (0-based)."""
        if not self.backoff:
            return 0.0
        return self.backoff[min(retry_index, len(self.backoff) - 1)]

    async def run(self, fn: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        """Call ``await fn(*args, **kwargs)`` until it succeeds or the policy gives up.

        The last exception is re-raised unchanged.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await fn(*args, **kwargs)
            except Exception as exc:
                if attempt >= self.max_attempts or not self.retry_on(exc):
                    raise
                delay = self.delay_for(attempt - 1)
                logger.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %.2fs",
                    self.name, attempt, self.max_attempts, exc, delay,
                )
                if delay > 0:
                    await asyncio.sleep(delay)
