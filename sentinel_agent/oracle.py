"""
OracleReader — Chainlink-style aggregator reads normalized to 18-decimal
fixed point. Integer arithmetic only.
"""

import logging

from web3 import Web3

from sentinel_agent.config import PRICE_DECIMALS, ZERO_ADDRESS
from sentinel_agent.exceptions import OracleInvalid, OracleInverted, OracleStale
from sentinel_agent.models import WAD
from sentinel_agent.state_reader import call_contract, load_abi

logger = logging.getLogger(__name__)

INVERSION_NUMERATOR = 10**36
STABLE_LOW = 99 * 10**16  # 0.99
STABLE_HIGH = 101 * 10**16  # 1.01


def normalize_answer(answer: int, decimals: int) -> int:
    """Scale a feed answer to 18 decimals, truncating when the feed has more."""
    if decimals == PRICE_DECIMALS:
        return answer
    if decimals < PRICE_DECIMALS:
        return answer * 10 ** (PRICE_DECIMALS - decimals)
    return answer // 10 ** (decimals - PRICE_DECIMALS)


def invert_price(price: int) -> int:
    if price <= 0:
        raise OracleInverted(f"cannot invert non-positive price {price}")
    inverted = INVERSION_NUMERATOR // price
    if inverted == 0:
        raise OracleInverted(f"inverse of {price} underflows 18-decimal precision")
    return inverted


def deviation_bps(price_a: int, price_b: int) -> int:
    """Relative difference against the midpoint, in basis points."""
    if price_a == 0 or price_b == 0:
        return 10_000
    diff = abs(price_a - price_b)
    avg = (price_a + price_b) // 2
    return (diff * 10_000) // avg


def validate_round(round_data) -> int:
    """Return the raw answer of a finalized, positive round."""
    round_id, answer, _started_at, updated_at, answered_in_round = round_data
    if updated_at == 0 or answered_in_round < round_id:
        raise OracleStale(
            f"round {round_id} not finalized (updatedAt={updated_at}, "
            f"answeredInRound={answered_in_round})"
        )
    if answer <= 0:
        raise OracleInvalid(f"non-positive answer {answer}")
    return int(answer)


class OracleReader:
    """Reads aggregator feeds through a shared Web3 connection."""

    def __init__(self, w3: Web3):
        self.w3 = w3
        self._abi = load_abi("aggregator.json")
        self._feeds = {}

    def _feed(self, address: str):
        checksum = Web3.to_checksum_address(address)
        feed = self._feeds.get(checksum)
        if feed is None:
            feed = self.w3.eth.contract(address=checksum, abi=self._abi)
            self._feeds[checksum] = feed
        return feed

    def read_price(self, feed_address: str, inverted: bool = False) -> int:
        """Latest price as 18-decimal fixed point, optionally inverted."""
        feed = self._feed(feed_address)
        answer = validate_round(
            call_contract(feed.functions.latestRoundData(), "latestRoundData")
        )
        decimals = int(call_contract(feed.functions.decimals(), "decimals"))
        price = normalize_answer(answer, decimals)
        if price == 0:
            raise OracleInvalid(f"answer {answer} with {decimals} decimals truncates to zero")
        if inverted:
            return invert_price(price)
        return price

    def read_pool_price(self, snapshot, pool_config) -> int:
        """Reference price for a pool.

        Uses the hook's own feed when set. Otherwise falls back to the pool's
        configured base feed, divided by its quote feed when one is given.
        """
        if snapshot.price_feed and int(snapshot.price_feed, 16) != int(ZERO_ADDRESS, 16):
            return self.read_price(snapshot.price_feed, snapshot.price_feed_inverted)

        if not pool_config.base_feed:
            raise OracleInvalid(f"no price feed configured for {pool_config.name}")

        base = self.read_price(pool_config.base_feed)
        if pool_config.quote_feed:
            quote = self.read_price(pool_config.quote_feed)
            self._warn_on_depeg(pool_config, quote)
            price = base * WAD // quote
        else:
            price = base
        if snapshot.price_feed_inverted:
            return invert_price(price)
        return price

    def _warn_on_depeg(self, pool_config, quote: int) -> None:
        feed = self._feed(pool_config.quote_feed)
        try:
            description = feed.functions.description().call()
        except Exception as e:
            logger.debug("description() unavailable on %s: %s", pool_config.quote_feed, e)
            return
        if not any(symbol in description.upper() for symbol in ("USDC", "USDT", "DAI")):
            return
        if quote < STABLE_LOW or quote > STABLE_HIGH:
            logger.warning(
                "[%s] Stablecoin depeg on %s: price=%.4f",
                pool_config.name,
                description,
                quote / WAD,
            )
