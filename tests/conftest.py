import pytest

from sentinel_agent.config import AgentSettings
from sentinel_agent.models import PoolConfig, PoolIdentity, PoolSnapshot

HOOK_ADDRESS = "0x1111111111111111111111111111111111111111"
POOL_MANAGER_ADDRESS = "0x2222222222222222222222222222222222222222"
FEED_ADDRESS = "0x3333333333333333333333333333333333333333"

POOL_A = "0x" + "aa" * 32
POOL_B = "0x" + "bb" * 32
POOL_C = "0x" + "cc" * 32

ONE = 10**18
Q96 = 2**96


def make_snapshot(**overrides) -> PoolSnapshot:
    """Initialized 18/18-decimal pool at price 1.0 with range [-600, 600]."""
    fields = dict(
        active_tick_lower=-600,
        active_tick_upper=600,
        active_liquidity=10**18,
        total_shares=10**18,
        tick_spacing=60,
        decimals0=18,
        decimals1=18,
        price_feed=FEED_ADDRESS,
        price_feed_inverted=False,
        max_deviation_bps=500,
        is_initialized=True,
        tick=0,
        sqrt_price_x96=Q96,
    )
    fields.update(overrides)
    return PoolSnapshot(**fields)


def make_pool(pool_id=POOL_A, name="ETH/USDC", **overrides) -> PoolConfig:
    fields = dict(default_tick_width=600, edge_bps=2000, max_slippage_bps=300)
    fields.update(overrides)
    return PoolConfig(pool=PoolIdentity(pool_id=pool_id, name=name), **fields)


class FakeClock:
    def __init__(self, start_ms=1_700_000_000_000):
        self.now = start_ms

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += int(seconds * 1000)


class FakeReader:
    """Returns a fixed snapshot (or raises) per pool id."""

    def __init__(self, snapshots=None):
        self.snapshots = dict(snapshots or {})
        self.reads = []

    def read(self, pool_id):
        self.reads.append(pool_id)
        result = self.snapshots[pool_id]
        if isinstance(result, BaseException):
            raise result
        return result


class FakeOracle:
    def __init__(self, price=ONE):
        self.price = price
        self.calls = 0

    def read_pool_price(self, snapshot, pool_config):
        self.calls += 1
        if isinstance(self.price, BaseException):
            raise self.price
        return self.price


class FakeHookManager:
    def __init__(self, fail_for=None, on_maintain=None):
        self.calls = []
        self.fail_for = dict(fail_for or {})
        self.on_maintain = on_maintain

    def maintain(self, pool_id, new_lower, new_upper, volatility):
        self.calls.append((pool_id, new_lower, new_upper, volatility))
        if self.on_maintain is not None:
            self.on_maintain()
        if pool_id in self.fail_for:
            raise self.fail_for[pool_id]
        return "0x" + f"{len(self.calls):064x}"


class FakeEvents:
    def __init__(self, batches=None):
        self.batches = list(batches or [])

    def poll(self):
        if not self.batches:
            return []
        return self.batches.pop(0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_settings(tmp_path):
    def _make(pools=None, **overrides):
        fields = dict(
            rpc_url="http://localhost:8545",
            private_key="0x" + "01" * 32,
            hook_address=HOOK_ADDRESS,
            pool_manager_address=POOL_MANAGER_ADDRESS,
            pools=tuple(pools if pools is not None else [make_pool()]),
            decisions_dir=tmp_path / "decisions",
        )
        fields.update(overrides)
        return AgentSettings(**fields)

    return _make
