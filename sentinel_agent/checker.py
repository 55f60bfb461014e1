"""
One-shot host for the rebalancing policy.

Serverless and oracle-network runners call this once per invocation with no
memory between calls, so there is no history: volatility falls back to the
default bucket and the slippage gate has nothing to compare against. The
result mirrors a Web3 Function response: either `canExec: False` with a
message, or the encoded maintain() call to submit.
"""

import logging
import time

from sentinel_agent.exceptions import SentinelError
from sentinel_agent.lp_manager import encode_maintain
from sentinel_agent.models import TickSample
from sentinel_agent.strategy import PoolHistory, decide, screen

logger = logging.getLogger(__name__)


def check_pool(pool_config, reader, oracle, hook_address, limits, clock=None) -> dict:
    name = pool_config.name
    now = clock() if clock is not None else int(time.time() * 1000)

    try:
        snapshot = reader.read(pool_config.pool_id)
    except SentinelError as e:
        logger.error("[%s] Failed to get pool state: %s", name, e)
        return {"canExec": False, "message": f"Failed to get pool state: {e}"}

    history = PoolHistory(ticks=(TickSample(snapshot.tick, now),), prices=())
    rejected = screen(snapshot, pool_config, history.prices, limits)
    if rejected is not None:
        return {"canExec": False, "message": f"{name}: skip ({rejected.reason.value})"}

    try:
        oracle_price = oracle.read_pool_price(snapshot, pool_config)
    except Exception as e:
        logger.warning("[%s] Oracle read failed: %s", name, e)
        oracle_price = e

    decision = decide(snapshot, oracle_price, history, pool_config, limits)
    if not decision.is_rebalance:
        return {"canExec": False, "message": f"{name}: skip ({decision.reason.value})"}

    logger.info(
        "[%s] Would rebalance (%s) tick=%d -> [%d,%d] vol=%d",
        name,
        decision.reason.value,
        decision.current_tick,
        decision.new_lower,
        decision.new_upper,
        decision.volatility,
    )
    return {
        "canExec": True,
        "callData": [
            {
                "to": hook_address,
                "data": encode_maintain(
                    pool_config.pool_id,
                    decision.new_lower,
                    decision.new_upper,
                    decision.volatility,
                ),
            }
        ],
        "message": f"Rebalancing {name}! New Range: [{decision.new_lower}, {decision.new_upper}]",
    }
