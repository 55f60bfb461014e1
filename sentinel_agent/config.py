import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv
from eth_utils import is_address, to_checksum_address

from sentinel_agent.exceptions import ConfigError
from sentinel_agent.models import PoolConfig, PoolIdentity, normalize_pool_id

# Load .env files into os.environ BEFORE reading any env-backed settings.
# override=False means Docker/shell env vars take precedence over .env.
load_dotenv(Path(__file__).resolve().parent / ".env", override=False)
load_dotenv(Path.cwd() / ".env", override=False)

REQUIRED_ENV = (
    "RPC_URL",
    "PRIVATE_KEY",
    "HOOK_ADDRESS",
    "POOL_MANAGER_ADDRESS",
    "POOLS",
)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Policy defaults, overridable per process and per pool
DEFAULT_TICK_WIDTH = 600
DEFAULT_EDGE_BPS = 2000
DEFAULT_MAX_SLIPPAGE_BPS = 300
REBALANCE_COOLDOWN_SEC = 120
MAX_REBALANCES_PER_HOUR = 6
TICK_HISTORY_SIZE = 48
CHECK_INTERVAL_SEC = 60
RPC_TIMEOUT_SEC = 30

# Oracle normalization
PRICE_DECIMALS = 18

DECISIONS_DIR = Path.cwd() / "decisions"


@dataclass(frozen=True)
class AgentSettings:
    rpc_url: str
    private_key: str
    hook_address: str
    pool_manager_address: str
    pools: tuple = field(default_factory=tuple)
    ws_rpc_url: Optional[str] = None
    dry_run: bool = False
    check_interval_sec: int = CHECK_INTERVAL_SEC
    default_tick_width: int = DEFAULT_TICK_WIDTH
    default_edge_bps: int = DEFAULT_EDGE_BPS
    default_max_slippage_bps: int = DEFAULT_MAX_SLIPPAGE_BPS
    cooldown_sec: int = REBALANCE_COOLDOWN_SEC
    max_rebalances_per_hour: int = MAX_REBALANCES_PER_HOUR
    history_size: int = TICK_HISTORY_SIZE
    enable_event_listener: bool = True
    min_active_liquidity: int = 0
    min_total_shares: int = 0
    max_deviation_override: Optional[int] = None
    rpc_timeout_sec: int = RPC_TIMEOUT_SEC
    event_start_block: Optional[int] = None
    decisions_dir: Path = DECISIONS_DIR

    def default_pool_config(self, pool_id: str, name: Optional[str] = None) -> PoolConfig:
        """Pool config for a pool discovered at runtime."""
        return PoolConfig(
            pool=PoolIdentity(pool_id=pool_id, name=name or pool_id),
            default_tick_width=self.default_tick_width,
            edge_bps=self.default_edge_bps,
            max_slippage_bps=self.default_max_slippage_bps,
        )


def _flag(value: Optional[str], default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in ("true", "1", "yes")


def _int(env: Mapping[str, str], key: str, default: Optional[int]) -> Optional[int]:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from None


def _address(env: Mapping[str, str], key: str) -> str:
    raw = env[key].strip()
    if not is_address(raw):
        raise ConfigError(f"{key} is not a valid address: {raw!r}")
    return to_checksum_address(raw)


def _optional_feed(entry: dict, key: str, index: int) -> Optional[str]:
    raw = entry.get(key)
    if raw in (None, ""):
        return None
    if not is_address(raw):
        raise ConfigError(f"POOLS[{index}].{key} is not a valid address: {raw!r}")
    return to_checksum_address(raw)


def _positive(value, key: str, index: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"POOLS[{index}].{key} must be an integer, got {value!r}") from None
    if number <= 0:
        raise ConfigError(f"POOLS[{index}].{key} must be positive, got {number}")
    return number


def parse_pools(
    raw: str,
    default_tick_width: int = DEFAULT_TICK_WIDTH,
    default_edge_bps: int = DEFAULT_EDGE_BPS,
    default_max_slippage_bps: int = DEFAULT_MAX_SLIPPAGE_BPS,
) -> tuple:
    """Parse the POOLS JSON array into PoolConfig entries."""
    try:
        entries = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigError(f"POOLS is not valid JSON: {e}") from e
    if not isinstance(entries, list) or not entries:
        raise ConfigError("POOLS must be a non-empty JSON array")

    pools = []
    seen = set()
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict) or "id" not in entry:
            raise ConfigError(f"POOLS[{index}] must be an object with an 'id'")
        try:
            pool_id = normalize_pool_id(entry["id"])
        except ValueError as e:
            raise ConfigError(f"POOLS[{index}].id: {e}") from e
        if pool_id in seen:
            raise ConfigError(f"POOLS[{index}] duplicates pool {pool_id}")
        seen.add(pool_id)

        spacing = entry.get("tickSpacing")
        pools.append(
            PoolConfig(
                pool=PoolIdentity(pool_id=pool_id, name=entry.get("name") or pool_id),
                default_tick_width=_positive(
                    entry.get("defaultTickWidth") or default_tick_width, "defaultTickWidth", index
                ),
                edge_bps=_positive(entry.get("edgeBps") or default_edge_bps, "edgeBps", index),
                max_slippage_bps=_positive(
                    entry.get("maxSlippageBps") or default_max_slippage_bps,
                    "maxSlippageBps",
                    index,
                ),
                tick_spacing=_positive(spacing, "tickSpacing", index) if spacing else None,
                base_feed=_optional_feed(entry, "baseFeed", index),
                quote_feed=_optional_feed(entry, "quoteFeed", index),
            )
        )
    return tuple(pools)


def load_settings(environ: Optional[Mapping[str, str]] = None) -> AgentSettings:
    """Build AgentSettings from the environment. Raises ConfigError."""
    env = os.environ if environ is None else environ

    missing = [key for key in REQUIRED_ENV if not env.get(key)]
    if missing:
        raise ConfigError(f"Missing required env var(s): {', '.join(missing)}")

    default_tick_width = _int(env, "DEFAULT_TICK_WIDTH", DEFAULT_TICK_WIDTH)
    default_edge_bps = _int(env, "DEFAULT_EDGE_BPS", DEFAULT_EDGE_BPS)
    default_max_slippage_bps = _int(env, "MAX_SLIPPAGE_BPS", DEFAULT_MAX_SLIPPAGE_BPS)

    settings = AgentSettings(
        rpc_url=env["RPC_URL"],
        private_key=env["PRIVATE_KEY"],
        hook_address=_address(env, "HOOK_ADDRESS"),
        pool_manager_address=_address(env, "POOL_MANAGER_ADDRESS"),
        pools=parse_pools(
            env["POOLS"],
            default_tick_width=default_tick_width,
            default_edge_bps=default_edge_bps,
            default_max_slippage_bps=default_max_slippage_bps,
        ),
        ws_rpc_url=env.get("WS_RPC_URL") or None,
        dry_run=_flag(env.get("DRY_RUN"), False),
        check_interval_sec=_int(env, "CHECK_INTERVAL_SEC", CHECK_INTERVAL_SEC),
        default_tick_width=default_tick_width,
        default_edge_bps=default_edge_bps,
        default_max_slippage_bps=default_max_slippage_bps,
        cooldown_sec=_int(env, "REBALANCE_COOLDOWN_SEC", REBALANCE_COOLDOWN_SEC),
        max_rebalances_per_hour=_int(env, "MAX_REBALANCES_PER_HOUR", MAX_REBALANCES_PER_HOUR),
        history_size=_int(env, "TICK_HISTORY_SIZE", TICK_HISTORY_SIZE),
        enable_event_listener=_flag(env.get("ENABLE_EVENT_LISTENER"), True),
        min_active_liquidity=_int(env, "MIN_ACTIVE_LIQUIDITY", 0),
        min_total_shares=_int(env, "MIN_TOTAL_SHARES", 0),
        max_deviation_override=_int(env, "MAX_DEVIATION_BPS_OVERRIDE", None),
        rpc_timeout_sec=_int(env, "RPC_TIMEOUT_SEC", RPC_TIMEOUT_SEC),
        event_start_block=_int(env, "EVENT_START_BLOCK", None),
        decisions_dir=Path(env.get("DECISIONS_DIR") or DECISIONS_DIR),
    )

    if settings.check_interval_sec <= 0:
        raise ConfigError("CHECK_INTERVAL_SEC must be positive")
    if settings.history_size < 2:
        raise ConfigError("TICK_HISTORY_SIZE must be at least 2")
    if settings.max_rebalances_per_hour <= 0:
        raise ConfigError("MAX_REBALANCES_PER_HOUR must be positive")
    return settings
