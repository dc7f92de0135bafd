"""Keyed fixed-window token buckets.

One governor gates how many analysis (indexing) requests a caller may start,
another gates outbound calls to the embedding provider. Both are built once by
:func:`build_governors` and shared by reference.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import math
import threading
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from .errors import RateLimited, ValidationFailure

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class RateDecision:
    allowed: bool
    retry_after_seconds: int = 0


@dataclasses.dataclass
class _Bucket:
    points_remaining: int
    window_reset_at: float


class RateGovernor:

    def __init__(
        self,
        points: int,
        duration: float,
        name: str = "default",
        clock: Optional[Callable[[], float]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if points < 1 or duration <= 0:
            raise ValidationFailure(f"Invalid rate limit for {name!r}: {points} points per {duration}s")
        self.points = points
        self.duration = duration
        self.name = name
        self._clock = clock or time.monotonic
        self._sleep = sleep
        self._buckets: Dict[str, _Bucket] = {}
        self._lock = threading.Lock()

    def try_consume(self, key: str, cost: int = 1) -> RateDecision:
        """Take ``cost`` points from the bucket of ``key`` if it has them."""
        if cost < 1:
            raise ValidationFailure(f"cost must be >= 1, got {cost}")

        with self._lock:
            now = self._clock()
            bucket = self._buckets.get(key)
            if bucket is None or now >= bucket.window_reset_at:
                bucket = _Bucket(points_remaining=self.points, window_reset_at=now + self.duration)
                self._buckets[key] = bucket

            if bucket.points_remaining >= cost:
                bucket.points_remaining -= cost
                return RateDecision(allowed=True)

            retry_after = max(1, math.ceil(bucket.window_reset_at - now))
            return RateDecision(allowed=False, retry_after_seconds=retry_after)

    def consume_or_raise(self, key: str, cost: int = 1, message: Optional[str] = None,
                         code: Optional[str] = None) -> None:
        decision = self.try_consume(key, cost)
        if not decision.allowed:
            raise RateLimited(
                decision.retry_after_seconds,
                message=message or f"Rate limit '{self.name}' exceeded",
                code=code,
            )

    async def acquire(self, key: str, cost: int = 1) -> None:
        """Wait until ``cost`` points are available, then take them."""
        while True:
            decision = self.try_consume(key, cost)
            if decision.allowed:
                return
            logger.warning(
                f"Rate limit '{self.name}' reached for {key!r}, waiting {decision.retry_after_seconds}s"
            )
            await self._sleep(decision.retry_after_seconds)

    def remaining(self, key: str) -> int:
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None or self._clock() >= bucket.window_reset_at:
                return self.points
            return bucket.points_remaining

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._buckets.clear()
            else:
                self._buckets.pop(key, None)


@dataclasses.dataclass
class Governors:
    analysis: RateGovernor
    embedding: RateGovernor


def build_governors(cfg: Dict, clock: Optional[Callable[[], float]] = None) -> Governors:
    limits = cfg.get("rate_limits", {})
    analysis = limits.get("analysis", {})
    embedding = limits.get("embedding", {})
    return Governors(
        analysis=RateGovernor(
            points=int(analysis.get("points", 5)),
            duration=float(analysis.get("duration", 300)),
            name="analysis",
            clock=clock,
        ),
        embedding=RateGovernor(
            points=int(embedding.get("points", 100)),
            duration=float(embedding.get("duration", 60)),
            name="embedding",
            clock=clock,
        ),
    )
