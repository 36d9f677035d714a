"""Backoff retry for idempotent reads.

Works on the client's own error kinds, after the httpx failure has been
mapped: a read is tried again after a NetworkFailure, or after a
RemoteRejection whose status says a gateway or the service itself was
briefly unavailable. Mutations never come through here; they are sent once
and any failure goes to the optimistic rollback path.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from animeverse.core.errors import ClientError, NetworkFailure, RemoteRejection

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Gateway / overload answers, including Cloudflare's 52x family
RETRY_STATUSES = frozenset({502, 503, 504, 520, 521, 522, 523, 524})


@dataclass(frozen=True)
class RetryConfig:
    """How many times a read is tried and how long to wait in between."""

    max_attempts: int = 3
    base_delay: float = 1.0  # seconds before the first retry
    max_delay: float = 30.0
    jitter: float = 0.1  # +/- fraction of the delay
    retry_statuses: frozenset[int] = RETRY_STATUSES

    @classmethod
    def from_settings(cls, settings) -> "RetryConfig":
        return cls(
            max_attempts=settings.max_retry_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        )

    def delay_for(self, retry: int) -> float:
        """Seconds to wait before retry number `retry` (1-based), doubling each time."""
        delay = min(self.base_delay * 2 ** (retry - 1), self.max_delay)
        if self.jitter:
            delay *= 1 + random.uniform(-self.jitter, self.jitter)
        return max(0.0, delay)

    def should_retry(self, error: ClientError) -> bool:
        if isinstance(error, NetworkFailure):
            return True
        return isinstance(error, RemoteRejection) and error.status_code in self.retry_statuses


NO_RETRY = RetryConfig(max_attempts=1)


async def with_retry(call: Callable[[], Awaitable[T]], config: RetryConfig, label: str) -> T:
    """
    Await call(), trying again on transient ClientErrors.

    Usage:
        body = await with_retry(send, RetryConfig.from_settings(settings), "GET /animesPagina/2")

    The last error is re-raised once attempts run out or the error is not
    transient (auth, 4xx, shape mismatches).
    """
    attempt = 1
    while True:
        try:
            return await call()
        except ClientError as e:
            if not config.should_retry(e):
                raise
            if attempt >= config.max_attempts:
                if attempt > 1:
                    logger.error(f"{label}: giving up after {attempt} attempts ({e.kind}: {e.message})")
                raise
            delay = config.delay_for(attempt)
            logger.warning(
                f"{label}: {e.kind} ({e.message}), retry {attempt}/{config.max_attempts - 1} in {delay:.2f}s"
            )
            await asyncio.sleep(delay)
            attempt += 1
