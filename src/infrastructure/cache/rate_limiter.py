from __future__ import annotations

from dataclasses import dataclass

from limits import RateLimitItem, RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter

from src.domain.services import tier_policy


@dataclass(frozen=True)
class RateLimitResult:
    success: bool
    remaining: int
    reset: int  # epoch milliseconds when the window closes
    limit: int


class RateLimiter:
    """Fixed-window per-process limiter keyed by user and tier."""

    def __init__(self, window_seconds: int = tier_policy.RATE_LIMIT_WINDOW_SECONDS) -> None:
        self.window_seconds = window_seconds
        self._storage = MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self._storage)

    @staticmethod
    def limit_for(tier: str) -> int:
        return tier_policy.RATE_LIMITS.get(tier_policy.normalize_tier(tier), tier_policy.RATE_LIMITS["free"])

    def _item(self, tier: str) -> RateLimitItem:
        return RateLimitItemPerSecond(self.limit_for(tier), self.window_seconds)

    def check(self, user_id: str, tier: str) -> RateLimitResult:
        """Consume one slot in the caller's window."""
        item = self._item(tier)
        key = f"{user_id}:{tier_policy.normalize_tier(tier)}"
        success = self._strategy.hit(item, key)
        stats = self._strategy.get_window_stats(item, key)
        return RateLimitResult(
            success=success,
            remaining=max(0, stats.remaining),
            reset=int(stats.reset_time * 1000),
            limit=item.amount,
        )

    def reset(self) -> None:
        self._storage.reset()
