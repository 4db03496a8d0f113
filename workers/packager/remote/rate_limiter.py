"""
Rate limiter — process-wide view of the remote API budget.

Every response's ``x-ratelimit-*`` headers refresh one shared snapshot.
The snapshot expires at its reset epoch (or an hour after it was taken
when no reset was reported), after which the limiter reports an unused
budget again.
"""
import logging
import time
from typing import Callable, Mapping, Optional

from packager.io.schema import RateLimitSnapshot

logger = logging.getLogger(__name__)

THROTTLE_PERCENT = 80.0
SLOWDOWN_PERCENT = 90.0
NEAR_LIMIT_REMAINING = 100
RESET_INTERVAL = 3600  # seconds


class RateLimiter:
    """Tracks limit/remaining/reset/used from response headers."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._snapshot: Optional[RateLimitSnapshot] = None

    @property
    def snapshot(self) -> Optional[RateLimitSnapshot]:
        snap = self._snapshot
        if snap is None:
            return None
        now = self._clock()
        expires = snap.reset if snap.reset > 0 else snap.observed_at + RESET_INTERVAL
        if now >= expires:
            logger.debug("Rate-limit snapshot expired, resetting")
            self._snapshot = None
            return None
        return snap

    def reset(self) -> None:
        self._snapshot = None

    def update_from_headers(self, headers: Mapping[str, str]) -> Optional[RateLimitSnapshot]:
        """Refresh the snapshot; responses without rate-limit headers are ignored."""
        lowered = {k.lower(): v for k, v in headers.items()}
        if "x-ratelimit-limit" not in lowered or "x-ratelimit-remaining" not in lowered:
            return None
        try:
            limit = int(lowered["x-ratelimit-limit"])
            remaining = int(lowered["x-ratelimit-remaining"])
            reset = int(lowered.get("x-ratelimit-reset", 0))
            used = int(lowered.get("x-ratelimit-used", limit - remaining))
        except ValueError:
            logger.warning("Ignoring malformed rate-limit headers: %s", lowered)
            return None

        self._snapshot = RateLimitSnapshot(
            limit=limit,
            remaining=remaining,
            reset=reset,
            used=used,
            observed_at=self._clock(),
        )
        if remaining < NEAR_LIMIT_REMAINING:
            logger.warning(
                "Remote API rate limit nearly exhausted: %s/%s remaining, resets in %ss",
                remaining, limit, self.seconds_until_reset(),
            )
        return self._snapshot

    def usage_percent(self) -> float:
        snap = self.snapshot
        return snap.usage_percent if snap else 0.0

    def should_throttle(self) -> bool:
        return self.usage_percent() > THROTTLE_PERCENT

    def is_near_limit(self) -> bool:
        snap = self.snapshot
        return snap is not None and snap.remaining < NEAR_LIMIT_REMAINING

    def recommended_interval(self, base: float) -> float:
        """Stretch a polling interval as the budget runs out."""
        usage = self.usage_percent()
        if usage > SLOWDOWN_PERCENT:
            return base * 3
        if usage > THROTTLE_PERCENT:
            return base * 2
        return base

    def seconds_until_reset(self) -> int:
        snap = self.snapshot
        if snap is None or snap.reset <= 0:
            return 0
        return max(0, int(snap.reset - self._clock()))

    def log_stats(self) -> None:
        snap = self.snapshot
        if snap is None:
            logger.info("Rate limit: no data yet")
            return
        logger.info(
            "Rate limit: %s/%s remaining (%.1f%% used), resets in %ss",
            snap.remaining, snap.limit, snap.usage_percent, self.seconds_until_reset(),
        )


_default_limiter: Optional[RateLimiter] = None


def default_rate_limiter() -> RateLimiter:
    """The process-wide limiter shared by every remote client."""
    global _default_limiter
    if _default_limiter is None:
        _default_limiter = RateLimiter()
    return _default_limiter
