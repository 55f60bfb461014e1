"""
Rebalancing policy — the pure decision core shared by every host.

Gates run cheapest first: snapshot-only checks, then the slippage check against
recorded history, then the oracle checks, then the range triggers. Nothing in
this module performs I/O or mutates its inputs.
"""

from dataclasses import dataclass, field
from typing import Optional, Sequence, Union

from sentinel_agent.history import volatility_bps
from sentinel_agent.models import (
    Decision,
    PoolConfig,
    PoolSnapshot,
    PriceSample,
    Reason,
    TickSample,
)
from sentinel_agent.oracle import deviation_bps

BPS = 10_000


@dataclass(frozen=True)
class PolicyLimits:
    """Process-wide thresholds that apply to every pool."""

    min_active_liquidity: int = 0
    min_total_shares: int = 0
    max_deviation_override: Optional[int] = None

    @classmethod
    def from_settings(cls, settings) -> "PolicyLimits":
        return cls(
            min_active_liquidity=settings.min_active_liquidity,
            min_total_shares=settings.min_total_shares,
            max_deviation_override=settings.max_deviation_override,
        )


@dataclass(frozen=True)
class PoolHistory:
    ticks: Sequence[TickSample] = field(default_factory=tuple)
    prices: Sequence[PriceSample] = field(default_factory=tuple)


def align_down(tick: int, spacing: int) -> int:
    """Largest multiple of spacing that is <= tick. spacing must be > 0."""
    return (tick // spacing) * spacing


def edge_threshold(range_width: int, edge_bps: int) -> int:
    return max(1, (range_width * edge_bps) // BPS)


def effective_spacing(snapshot: PoolSnapshot, pool_config: PoolConfig) -> int:
    """Spacing used to align new bounds, or 0 when no usable spacing exists.

    A configured override only applies when it is a multiple of the spacing
    the pool reports, so aligned bounds stay valid ticks for the pool.
    """
    pool_spacing = abs(int(snapshot.tick_spacing))
    if pool_config.tick_spacing:
        override = abs(int(pool_config.tick_spacing))
        if pool_spacing and override % pool_spacing != 0:
            return 0
        return override
    return pool_spacing


def compute_new_range(current_tick: int, half_width: int, spacing: int) -> tuple[int, int]:
    return (
        align_down(current_tick - half_width, spacing),
        align_down(current_tick + half_width, spacing),
    )


def slippage_bps(prices: Sequence[PriceSample]) -> Optional[int]:
    """Move between the latest price sample and the one before it."""
    if len(prices) < 2:
        return None
    return deviation_bps(prices[-1].price, prices[-2].price)


def screen(
    snapshot: PoolSnapshot,
    pool_config: PoolConfig,
    prices: Sequence[PriceSample],
    limits: PolicyLimits,
) -> Optional[Decision]:
    """Gates that need no oracle read. Returns a skip, or None to continue."""
    if not snapshot.is_initialized:
        return Decision.skip(Reason.NOT_INITIALIZED, snapshot)

    if limits.min_active_liquidity > 0 and snapshot.active_liquidity < limits.min_active_liquidity:
        return Decision.skip(Reason.MIN_LIQUIDITY, snapshot)

    if limits.min_total_shares > 0 and snapshot.total_shares < limits.min_total_shares:
        return Decision.skip(Reason.MIN_SHARES, snapshot)

    if snapshot.range_width <= 0 or effective_spacing(snapshot, pool_config) == 0:
        return Decision.skip(Reason.INVALID_RANGE, snapshot)

    move = slippage_bps(prices)
    if move is not None and move > pool_config.max_slippage_bps:
        return Decision.skip(Reason.MAX_SLIPPAGE, snapshot)

    return None


def decide(
    snapshot: PoolSnapshot,
    oracle_price: Union[int, BaseException],
    history: PoolHistory,
    pool_config: PoolConfig,
    limits: PolicyLimits,
) -> Decision:
    """Decide whether a pool needs its active range moved.

    `oracle_price` is the reference price in 18-decimal fixed point, or the
    exception raised while reading it. Any oracle failure is a skip.
    """
    rejected = screen(snapshot, pool_config, history.prices, limits)
    if rejected is not None:
        return rejected

    if isinstance(oracle_price, BaseException) or oracle_price is None:
        return Decision.skip(Reason.ORACLE_ERROR, snapshot)

    if limits.max_deviation_override is not None:
        max_deviation = limits.max_deviation_override
    else:
        max_deviation = snapshot.max_deviation_bps
    if deviation_bps(snapshot.pool_price_x18, int(oracle_price)) > max_deviation:
        return Decision.skip(Reason.ORACLE_DEVIATION, snapshot)

    current = snapshot.tick
    lower = snapshot.active_tick_lower
    upper = snapshot.active_tick_upper

    if current < lower or current > upper:
        reason = Reason.OUT_OF_RANGE
    else:
        threshold = edge_threshold(snapshot.range_width, pool_config.edge_bps)
        if current - lower < threshold or upper - current < threshold:
            reason = Reason.NEAR_EDGE
        else:
            return Decision.skip(Reason.IN_RANGE, snapshot)

    spacing = effective_spacing(snapshot, pool_config)
    new_lower, new_upper = compute_new_range(current, pool_config.default_tick_width, spacing)
    if new_lower >= new_upper:
        return Decision.skip(Reason.INVALID_RANGE, snapshot)

    return Decision(
        Decision.REBALANCE,
        reason,
        current_tick=current,
        active_lower=lower,
        active_upper=upper,
        new_lower=new_lower,
        new_upper=new_upper,
        volatility=volatility_bps(history.ticks),
    )
