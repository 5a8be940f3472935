from __future__ import annotations

import math
from dataclasses import dataclass

from sessionkeeper.logging import get_logger
from sessionkeeper.service.errors import InfrastructureError, RateLimitedError
from sessionkeeper.storage.common import KeyValueStore

logger = get_logger(__name__)

DEFAULT_WINDOW_MS = 60_000


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after_seconds: int = 0


class RateGovernor:
    """Fixed-window request counters kept in the shared store.

    Every call increments the counter and pushes its expiry a full window
    out, so a client that keeps retrying while blocked stays blocked until it
    pauses for one window.
    """

    def __init__(self, store: KeyValueStore, *, fail_open: bool = False) -> None:
        self.store = store
        self.fail_open = fail_open

    async def gate(self, window_ms: int, max_requests: int, key: str) -> RateDecision:
        if max_requests <= 0:
            return RateDecision(allowed=True, limit=max_requests, remaining=0)
        if window_ms <= 0:
            logger.warning(
                "rate_limit_invalid_window",
                key=key,
                window_ms=window_ms,
                message="Invalid rate limit window; defaulting to 60 seconds",
            )
            window_ms = DEFAULT_WINDOW_MS
        try:
            count = await self.store.incr(key)
            await self.store.pexpire(key, window_ms)
        except InfrastructureError as exc:
            if not self.fail_open:
                raise
            logger.warning("rate_limit_store_unavailable", key=key, error=str(exc))
            return RateDecision(allowed=True, limit=max_requests, remaining=max_requests)

        remaining = max(0, max_requests - count)
        if count > max_requests:
            return RateDecision(
                allowed=False,
                limit=max_requests,
                remaining=remaining,
                retry_after_seconds=math.ceil(window_ms / 1000),
            )
        return RateDecision(allowed=True, limit=max_requests, remaining=remaining)

    async def enforce(self, window_ms: int, max_requests: int, key: str) -> RateDecision:
        decision = await self.gate(window_ms, max_requests, key)
        if not decision.allowed:
            logger.info(
                "rate_limit_exceeded",
                key=key,
                limit=decision.limit,
                retry_after=decision.retry_after_seconds,
            )
            raise RateLimitedError(
                decision.retry_after_seconds,
                limit=decision.limit,
                remaining=decision.remaining,
            )
        return decision
