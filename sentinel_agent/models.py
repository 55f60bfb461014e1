"""
Value types shared by the reader, the decision core, and the coordinator.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

Q192 = 1 << 192
WAD = 10**18


class Reason(str, Enum):
    NOT_INITIALIZED = "not-initialized"
    MIN_LIQUIDITY = "min-liquidity"
    MIN_SHARES = "min-shares"
    INVALID_RANGE = "invalid-range"
    MAX_SLIPPAGE = "max-slippage"
    ORACLE_ERROR = "oracle-error"
    ORACLE_DEVIATION = "oracle-deviation"
    IN_RANGE = "in-range"
    OUT_OF_RANGE = "out-of-range"
    NEAR_EDGE = "near-edge"
    # Decided by the coordinator before the policy runs
    COOLDOWN = "cooldown"
    RATE_LIMITED = "rate-limited"
    READ_ERROR = "read-error"
    INVALID_NEW_RANGE = "invalid-new-range"


@dataclass(frozen=True)
class PoolIdentity:
    pool_id: str
    name: str


def normalize_pool_id(value) -> str:
    """Return a lowercase 0x-prefixed 32-byte hex id, or raise ValueError."""
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value).hex()
    else:
        raw = str(value).lower()
        if raw.startswith("0x"):
            raw = raw[2:]
    if len(raw) != 64:
        raise ValueError(f"pool id must be 32 bytes, got {value!r}")
    int(raw, 16)
    return "0x" + raw


def pool_id_to_bytes(value) -> bytes:
    """bytes32 form of a pool id, as the hook ABI expects it."""
    return bytes.fromhex(normalize_pool_id(value)[2:])


@dataclass(frozen=True)
class PoolConfig:
    pool: PoolIdentity
    default_tick_width: int = 600
    edge_bps: int = 2000
    max_slippage_bps: int = 300
    tick_spacing: Optional[int] = None
    base_feed: Optional[str] = None
    quote_feed: Optional[str] = None

    @property
    def pool_id(self) -> str:
        return self.pool.pool_id

    @property
    def name(self) -> str:
        return self.pool.name


@dataclass(frozen=True)
class PoolSnapshot:
    active_tick_lower: int
    active_tick_upper: int
    active_liquidity: int
    total_shares: int
    tick_spacing: int
    decimals0: int
    decimals1: int
    price_feed: str
    price_feed_inverted: bool
    max_deviation_bps: int
    is_initialized: bool
    tick: int
    sqrt_price_x96: int

    @property
    def range_width(self) -> int:
        return self.active_tick_upper - self.active_tick_lower

    @property
    def pool_price_x18(self) -> int:
        """AMM spot price of token0 in token1 as 18-decimal fixed point."""
        sqrt_price = int(self.sqrt_price_x96)
        price_x18 = (sqrt_price * sqrt_price * WAD) // Q192
        return (price_x18 * 10 ** int(self.decimals0)) // 10 ** int(self.decimals1)


@dataclass(frozen=True)
class TickSample:
    tick: int
    observed_at_ms: int


@dataclass(frozen=True)
class PriceSample:
    price: int
    observed_at_ms: int


@dataclass(frozen=True)
class WorkItem:
    pool_id: str
    reason: str
    enqueued_at_ms: int


@dataclass(frozen=True)
class Decision:
    action: str
    reason: Reason
    current_tick: Optional[int] = None
    active_lower: Optional[int] = None
    active_upper: Optional[int] = None
    new_lower: Optional[int] = None
    new_upper: Optional[int] = None
    volatility: Optional[int] = None

    SKIP = "skip"
    REBALANCE = "rebalance"

    @classmethod
    def skip(cls, reason: Reason, snapshot: Optional[PoolSnapshot] = None) -> "Decision":
        if snapshot is None:
            return cls(cls.SKIP, reason)
        return cls(
            cls.SKIP,
            reason,
            current_tick=snapshot.tick,
            active_lower=snapshot.active_tick_lower,
            active_upper=snapshot.active_tick_upper,
        )

    @property
    def is_rebalance(self) -> bool:
        return self.action == self.REBALANCE
