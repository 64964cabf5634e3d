"""
Bounded in-run retries for transient store failures.

Deterministic exponential backoff; the sleep function is injectable so
tests run without waiting.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from reconciler.core.config import Settings, settings
from reconciler.core.errors import TransientStoreError

logger = logging.getLogger("reconciler.retry")

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_seconds: float = 0.5
    max_seconds: float = 8.0

    def backoff(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based), capped."""
        return min(self.max_seconds, self.base_seconds * (2 ** max(0, attempt - 1)))

    @classmethod
    def from_settings(cls, cfg: Optional[Settings] = None) -> "RetryPolicy":
        cfg = cfg or settings
        return cls(
            max_attempts=max(1, int(cfg.RECONCILE_MAX_ATTEMPTS)),
            base_seconds=float(cfg.RECONCILE_BACKOFF_BASE_SECONDS),
            max_seconds=float(cfg.RECONCILE_BACKOFF_MAX_SECONDS),
        )


async def call_with_retries(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "store call",
) -> T:
    """Await `fn()`, retrying TransientStoreError up to policy.max_attempts.

    The final TransientStoreError is re-raised with `attempts` set on it.
    Every other exception propagates immediately.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await fn()
        except TransientStoreError as exc:
            if attempt >= policy.max_attempts:
                exc.attempts = attempt
                raise
            delay = policy.backoff(attempt)
            logger.info(
                "[retry] %s failed (attempt %s/%s), retrying in %.2fs: %s",
                label, attempt, policy.max_attempts, delay, exc.message,
            )
            await sleep(delay)
