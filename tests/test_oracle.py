from unittest.mock import MagicMock

import pytest

from conftest import FEED_ADDRESS, make_pool, make_snapshot
from sentinel_agent.config import ZERO_ADDRESS
from sentinel_agent.exceptions import (
    OracleInvalid,
    OracleInverted,
    OracleStale,
    RpcFailure,
)
from sentinel_agent.oracle import (
    OracleReader,
    deviation_bps,
    invert_price,
    normalize_answer,
    validate_round,
)

BASE_FEED = "0x4444444444444444444444444444444444444444"
QUOTE_FEED = "0x5555555555555555555555555555555555555555"


def make_feed(answer, decimals=8, round_id=10, updated_at=1_700_000_000, answered_in_round=None, description="ETH / USD"):
    feed = MagicMock()
    feed.functions.latestRoundData.return_value.call.return_value = (
        round_id,
        answer,
        updated_at - 5,
        updated_at,
        round_id if answered_in_round is None else answered_in_round,
    )
    feed.functions.decimals.return_value.call.return_value = decimals
    feed.functions.description.return_value.call.return_value = description
    return feed


def make_reader(feeds):
    """OracleReader over a mock Web3 whose contracts are looked up by address."""
    w3 = MagicMock()
    w3.eth.contract.side_effect = lambda address, abi: feeds[address]
    return OracleReader(w3)


def test_validate_round_rejects_unset_round():
    with pytest.raises(OracleStale):
        validate_round((10, 100, 0, 0, 10))


def test_validate_round_rejects_unfinalized_round():
    with pytest.raises(OracleStale):
        validate_round((10, 100, 1, 1, 9))


@pytest.mark.parametrize("answer", [0, -1])
def test_validate_round_rejects_non_positive_answer(answer):
    with pytest.raises(OracleInvalid):
        validate_round((10, answer, 1, 1, 10))


def test_staleness_is_checked_before_answer():
    with pytest.raises(OracleStale):
        validate_round((10, -5, 1, 1, 9))


def test_normalize_answer_scales_to_18_decimals():
    assert normalize_answer(2000_00000000, 8) == 2000 * 10**18
    assert normalize_answer(5, 18) == 5
    # more than 18 decimals truncates
    assert normalize_answer(123456789, 20) == 1234567


def test_invert_price():
    assert invert_price(2000 * 10**18) == 5 * 10**14
    assert invert_price(10**18) == 10**18


def test_invert_price_underflow():
    with pytest.raises(OracleInverted):
        invert_price(10**36 + 1)


def test_invert_price_of_zero():
    with pytest.raises(OracleInverted):
        invert_price(0)


def test_deviation_bps():
    assert deviation_bps(10**18, 10**18) == 0
    assert deviation_bps(0, 10**18) == 10_000
    assert deviation_bps(10**18, 11 * 10**17) == deviation_bps(11 * 10**17, 10**18) == 952


def test_read_price_normalizes_feed_answer():
    reader = make_reader({FEED_ADDRESS: make_feed(2000_00000000, decimals=8)})

    assert reader.read_price(FEED_ADDRESS) == 2000 * 10**18


def test_read_price_inverted():
    reader = make_reader({FEED_ADDRESS: make_feed(2000_00000000, decimals=8)})

    assert reader.read_price(FEED_ADDRESS, inverted=True) == 5 * 10**14


def test_read_price_stale_round():
    reader = make_reader({FEED_ADDRESS: make_feed(2000_00000000, round_id=10, answered_in_round=9)})

    with pytest.raises(OracleStale):
        reader.read_price(FEED_ADDRESS)


@pytest.mark.parametrize("inverted", [False, True])
def test_read_price_truncated_to_zero_is_invalid(inverted):
    reader = make_reader({FEED_ADDRESS: make_feed(5, decimals=20)})

    with pytest.raises(OracleInvalid):
        reader.read_price(FEED_ADDRESS, inverted=inverted)


def test_read_price_rpc_failure():
    feed = make_feed(1)
    feed.functions.latestRoundData.return_value.call.side_effect = ConnectionError("boom")
    reader = make_reader({FEED_ADDRESS: feed})

    with pytest.raises(RpcFailure):
        reader.read_price(FEED_ADDRESS)


def test_read_pool_price_uses_hook_feed():
    reader = make_reader({FEED_ADDRESS: make_feed(3_00000000, decimals=8)})
    snapshot = make_snapshot(price_feed=FEED_ADDRESS, price_feed_inverted=True)

    price = reader.read_pool_price(snapshot, make_pool())

    assert price == 10**36 // (3 * 10**18)


def test_read_pool_price_falls_back_to_base_over_quote():
    reader = make_reader(
        {
            BASE_FEED: make_feed(2000_00000000, decimals=8),
            QUOTE_FEED: make_feed(1_00000000, decimals=8, description="USDC / USD"),
        }
    )
    snapshot = make_snapshot(price_feed=ZERO_ADDRESS)
    pool = make_pool(base_feed=BASE_FEED, quote_feed=QUOTE_FEED)

    assert reader.read_pool_price(snapshot, pool) == 2000 * 10**18


def test_read_pool_price_warns_on_stablecoin_depeg(caplog):
    reader = make_reader(
        {
            BASE_FEED: make_feed(2000_00000000, decimals=8),
            QUOTE_FEED: make_feed(95_000000, decimals=8, description="USDC / USD"),
        }
    )
    snapshot = make_snapshot(price_feed=ZERO_ADDRESS)
    pool = make_pool(base_feed=BASE_FEED, quote_feed=QUOTE_FEED)

    with caplog.at_level("WARNING", logger="sentinel_agent.oracle"):
        price = reader.read_pool_price(snapshot, pool)

    assert price == 2000 * 10**18 * 10**18 // (95 * 10**16)
    assert "depeg" in caplog.text


def test_read_pool_price_without_any_feed():
    reader = make_reader({})

    with pytest.raises(OracleInvalid):
        reader.read_pool_price(make_snapshot(price_feed=ZERO_ADDRESS), make_pool())
