import asyncio
import dataclasses
import logging
from typing import Awaitable, Callable

from ledger_sync.connectors.result import Result, RetryableError

log = logging.getLogger(__name__)


class RetryPolicy:
    """
    Retry loop for remote ledger calls.

    Retryable outcomes are retried up to ``max_retries`` times. The wait is the
    server's Retry-After when it sent one, ``default_retry_after`` for a bare
    429, and otherwise ``base_delay * 2^(attempt-1)`` capped at ``max_delay``.
    Terminal outcomes are returned immediately.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        default_retry_after: float = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.default_retry_after = default_retry_after
        self.sleep = sleep

    def delay_for(self, error: RetryableError, attempt: int) -> float:
        if error.retry_after is not None:
            return error.retry_after
        if error.status_code == 429:
            return self.default_retry_after
        return min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))

    async def run(self, call: Callable[[], Awaitable[Result]], description: str = "ledger call") -> Result:
        attempt = 1
        while True:
            result = await call()
            if not isinstance(result, RetryableError):
                return result
            if attempt > self.max_retries:
                log.error(f"{description} failed after {attempt} attempts: {result.message}")
                return dataclasses.replace(result, attempts=attempt)

            delay = self.delay_for(result, attempt)
            log.warning(
                f"{description} failed ({result.message}), retry {attempt}/{self.max_retries} in {delay:.1f}s"
            )
            await self.sleep(delay)
            attempt += 1
