"""PDUFA Tracker — Bounded Retry Policy.

Shared by the source fetchers and the Discord dispatcher.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

RETRYABLE_STATUS = frozenset({408, 425, 429})


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with a cap and a bounded attempt count.

    Attempt numbers are 1-based: attempt 1 is the first try, so
    ``max_attempts=3`` means one call plus two retries.
    """

    max_attempts: int = 3
    base_delay: float = 2.0
    max_delay: float = 30.0
    factor: float = 2.0

    def can_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts

    def delay_for(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Seconds to wait after a failed ``attempt``.

        A server-provided ``retry_after`` wins over the computed curve but is
        still capped at ``max_delay``.
        """
        if retry_after is not None and retry_after >= 0:
            return min(retry_after, self.max_delay)
        return min(self.base_delay * (self.factor ** (attempt - 1)), self.max_delay)

    async def wait(self, attempt: int, retry_after: Optional[float] = None) -> float:
        delay = self.delay_for(attempt, retry_after)
        if delay > 0:
            await asyncio.sleep(delay)
        return delay

    @staticmethod
    def is_retryable_status(status_code: int) -> bool:
        return status_code in RETRYABLE_STATUS or status_code >= 500

    @staticmethod
    def parse_retry_after(value: Optional[str]) -> Optional[float]:
        """Seconds from a ``Retry-After`` header; HTTP-date values are ignored."""
        if not value:
            return None
        try:
            return float(value)
        except ValueError:
            return None
