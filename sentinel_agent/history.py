"""
Per-pool tick/price history and rebalance rate limiting.

Both stores are in-memory and owned by a single agent instance.
"""

from collections import deque

import numpy as np

from sentinel_agent.models import PriceSample, TickSample

MIN_VOLATILITY_SAMPLES = 6
DEFAULT_VOLATILITY_BPS = 1000
HOUR_MS = 60 * 60 * 1000

# (std-dev of tick deltas upper bound, bucket in bps)
VOLATILITY_BUCKETS = (
    (5, 500),
    (15, 800),
    (30, 1200),
    (60, 1500),
)
MAX_VOLATILITY_BPS = 2000


def volatility_bps(ticks) -> int:
    """Bucket the dispersion of successive tick moves into a bps estimate."""
    if len(ticks) < MIN_VOLATILITY_SAMPLES:
        return DEFAULT_VOLATILITY_BPS

    values = np.array([s.tick if isinstance(s, TickSample) else s for s in ticks], dtype=np.float64)
    std = float(np.std(np.diff(values)))
    for bound, bucket in VOLATILITY_BUCKETS:
        if std < bound:
            return bucket
    return MAX_VOLATILITY_BPS


class HistoryStore:
    """Bounded FIFO rings of tick and price samples, keyed by pool id."""

    def __init__(self, capacity: int = 48):
        self.capacity = capacity
        self._ticks: dict[str, deque[TickSample]] = {}
        self._prices: dict[str, deque[PriceSample]] = {}

    def _ring(self, rings: dict, pool_id: str) -> deque:
        ring = rings.get(pool_id)
        if ring is None:
            ring = deque(maxlen=self.capacity)
            rings[pool_id] = ring
        return ring

    def record_tick(self, pool_id: str, tick: int, now_ms: int) -> None:
        self._ring(self._ticks, pool_id).append(TickSample(int(tick), now_ms))

    def record_price(self, pool_id: str, price: int, now_ms: int) -> None:
        self._ring(self._prices, pool_id).append(PriceSample(int(price), now_ms))

    def ticks(self, pool_id: str) -> list[TickSample]:
        return list(self._ticks.get(pool_id, ()))

    def prices(self, pool_id: str) -> list[PriceSample]:
        return list(self._prices.get(pool_id, ()))

    def volatility_bps(self, pool_id: str) -> int:
        return volatility_bps(self.ticks(pool_id))


class RateLimiter:
    """Cooldown timestamps plus a sliding one-hour ledger of executed rebalances."""

    def __init__(self):
        self._last_rebalance: dict[str, int] = {}
        self._ledger: dict[str, deque[int]] = {}

    def _prune(self, pool_id: str, now_ms: int) -> deque:
        ledger = self._ledger.setdefault(pool_id, deque())
        cutoff = now_ms - HOUR_MS
        while ledger and ledger[0] < cutoff:
            ledger.popleft()
        return ledger

    def last_rebalance_at(self, pool_id: str) -> int | None:
        return self._last_rebalance.get(pool_id)

    def is_on_cooldown(self, pool_id: str, now_ms: int, cooldown_seconds: int) -> bool:
        last = self._last_rebalance.get(pool_id)
        if last is None:
            return False
        return now_ms - last < cooldown_seconds * 1000

    def can_rebalance(self, pool_id: str, now_ms: int, max_per_hour: int) -> bool:
        return len(self._prune(pool_id, now_ms)) < max_per_hour

    def rebalances_in_window(self, pool_id: str, now_ms: int) -> int:
        return len(self._prune(pool_id, now_ms))

    def record_rebalance(self, pool_id: str, now_ms: int) -> None:
        """Call only once the rebalance transaction is confirmed."""
        self._last_rebalance[pool_id] = now_ms
        self._prune(pool_id, now_ms).append(now_ms)
