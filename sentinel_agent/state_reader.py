"""
StateReader — reads Sentinel hook pool state and pool-manager slot0 into a
single PoolSnapshot.
"""

import json
import logging
import os

from requests.exceptions import Timeout
from web3 import Web3

from sentinel_agent.exceptions import RpcFailure, RpcTimeout
from sentinel_agent.models import PoolSnapshot, pool_id_to_bytes

logger = logging.getLogger(__name__)

ABI_DIR = os.path.join(os.path.dirname(__file__), "abi")

# Field order of the hook's PoolState struct
POOL_STATE_FIELDS = (
    "activeTickLower",
    "activeTickUpper",
    "activeLiquidity",
    "priceFeed",
    "priceFeedInverted",
    "maxDeviationBps",
    "aToken0",
    "aToken1",
    "idle0",
    "idle1",
    "aave0",
    "aave1",
    "currency0",
    "currency1",
    "decimals0",
    "decimals1",
    "fee",
    "tickSpacing",
    "totalShares",
    "isInitialized",
)


def load_abi(filename: str) -> list:
    with open(os.path.join(ABI_DIR, filename)) as f:
        return json.load(f)


def call_contract(fn, label: str):
    """Run a prepared contract call, mapping transport errors to RpcFailure."""
    try:
        return fn.call()
    except Timeout as e:
        logger.error("RPC timeout on %s: %s", label, e)
        raise RpcTimeout(f"{label} timed out", call=label) from e
    except Exception as e:
        logger.error("RPC call %s failed: %s", label, e)
        raise RpcFailure(f"{label} failed: {e}", call=label) from e


class StateReader:
    """Reads hook and AMM state for one pool at a time. No retries."""

    def __init__(self, hook_contract, pool_manager_contract):
        self.hook = hook_contract
        self.pool_manager = pool_manager_contract

    @classmethod
    def from_web3(cls, w3: Web3, settings) -> "StateReader":
        hook = w3.eth.contract(
            address=Web3.to_checksum_address(settings.hook_address),
            abi=load_abi("sentinel_hook.json"),
        )
        pool_manager = w3.eth.contract(
            address=Web3.to_checksum_address(settings.pool_manager_address),
            abi=load_abi("pool_manager.json"),
        )
        return cls(hook, pool_manager)

    def get_pool_state(self, pool_id: str) -> dict:
        """Hook-level configuration and accounting, keyed by struct field name."""
        pool_id_bytes = pool_id_to_bytes(pool_id)
        result = call_contract(
            self.hook.functions.getPoolState(pool_id_bytes), "getPoolState"
        )
        if isinstance(result, dict):
            return dict(result)
        return dict(zip(POOL_STATE_FIELDS, result))

    def get_slot0(self, pool_id: str) -> dict:
        """AMM-level sqrtPriceX96 and current tick."""
        pool_id_bytes = pool_id_to_bytes(pool_id)
        result = call_contract(
            self.pool_manager.functions.getSlot0(pool_id_bytes), "getSlot0"
        )
        return {
            "sqrtPriceX96": int(result[0]),
            "tick": int(result[1]),
        }

    def read(self, pool_id: str) -> PoolSnapshot:
        """Merge hook state and slot0 into one snapshot."""
        state = self.get_pool_state(pool_id)
        slot0 = self.get_slot0(pool_id)
        return PoolSnapshot(
            active_tick_lower=int(state["activeTickLower"]),
            active_tick_upper=int(state["activeTickUpper"]),
            active_liquidity=int(state["activeLiquidity"]),
            total_shares=int(state["totalShares"]),
            tick_spacing=abs(int(state["tickSpacing"])),
            decimals0=int(state["decimals0"]),
            decimals1=int(state["decimals1"]),
            price_feed=str(state["priceFeed"]),
            price_feed_inverted=bool(state["priceFeedInverted"]),
            max_deviation_bps=int(state["maxDeviationBps"]),
            is_initialized=bool(state["isInitialized"]),
            tick=slot0["tick"],
            sqrt_price_x96=slot0["sqrtPriceX96"],
        )
