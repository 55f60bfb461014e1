"""
SentinelAgent — the polling host for the Sentinel rebalancing policy.

Each cycle drains event-driven work first, then sweeps every known pool. A
pool is rebalanced at most once per cooldown, at most N times per hour, and
its bookkeeping only changes after the maintain() transaction confirms.
"""

import argparse
import json
import logging
import os
import sys
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Optional

from web3 import Web3

from sentinel_agent import config
from sentinel_agent.checker import check_pool
from sentinel_agent.events import POOL_INITIALIZED, TICK_CROSSED, EventWatcher
from sentinel_agent.exceptions import ConfigError, SentinelError
from sentinel_agent.history import HistoryStore, RateLimiter
from sentinel_agent.lp_manager import HookManager
from sentinel_agent.models import Decision, PoolConfig, Reason, normalize_pool_id
from sentinel_agent.oracle import OracleReader
from sentinel_agent.state_reader import StateReader
from sentinel_agent.strategy import PolicyLimits, PoolHistory, decide, screen
from sentinel_agent.work_queue import WorkQueue

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"

EVENT_REASONS = {
    TICK_CROSSED: "tick-crossed",
    POOL_INITIALIZED: "pool-initialized",
}


def setup_logging(log_dir: Optional[str] = None) -> logging.Logger:
    """Console at INFO, plus a DEBUG decisions.log when log_dir is given."""
    root = logging.getLogger("sentinel_agent")
    root.setLevel(logging.DEBUG)
    root.handlers.clear()

    console = logging.StreamHandler()
    console.setLevel(logging.INFO)
    console.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(console)

    if log_dir is not None:
        os.makedirs(log_dir, exist_ok=True)
        fh = logging.FileHandler(os.path.join(log_dir, "decisions.log"))
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(fh)
    return root


def now_ms() -> int:
    return int(time.time() * 1000)


class SentinelAgent:
    """Single-threaded execution coordinator for every configured pool."""

    def __init__(
        self,
        settings: config.AgentSettings,
        reader,
        oracle,
        hook_manager,
        events=None,
        clock: Callable[[], int] = now_ms,
        wallet_address: Optional[str] = None,
    ):
        self.settings = settings
        self.reader = reader
        self.oracle = oracle
        self.hook_manager = hook_manager
        self.events = events
        self.clock = clock
        self.wallet_address = wallet_address

        self.limits = PolicyLimits.from_settings(settings)
        self.history = HistoryStore(settings.history_size)
        self.limiter = RateLimiter()
        self.queue = WorkQueue()
        self.pools: dict[str, PoolConfig] = {p.pool_id: p for p in settings.pools}

        # Single-flight guard for run_cycle
        self.running = False

        self.decisions_jsonl = None
        if settings.decisions_dir is not None:
            os.makedirs(settings.decisions_dir, exist_ok=True)
            self.decisions_jsonl = os.path.join(settings.decisions_dir, "decisions.jsonl")

    @classmethod
    def connect(cls, settings: config.AgentSettings) -> "SentinelAgent":
        """Wire the agent to a live RPC endpoint and the configured wallet."""
        logger.info("Connecting to RPC: %s", settings.rpc_url)
        w3 = Web3(
            Web3.HTTPProvider(
                settings.rpc_url, request_kwargs={"timeout": settings.rpc_timeout_sec}
            )
        )
        if not w3.is_connected():
            raise ConnectionError(f"Cannot connect to RPC at {settings.rpc_url}")
        logger.info("Connected. Chain ID: %d", w3.eth.chain_id)

        account = w3.eth.account.from_key(settings.private_key)

        events = None
        if settings.enable_event_listener:
            event_w3 = w3
            if settings.ws_rpc_url:
                event_w3 = Web3(Web3.LegacyWebSocketProvider(settings.ws_rpc_url))
            events = EventWatcher(event_w3, settings.hook_address, settings.event_start_block)

        return cls(
            settings,
            reader=StateReader.from_web3(w3, settings),
            oracle=OracleReader(w3),
            hook_manager=HookManager(w3, account, settings.hook_address),
            events=events,
            wallet_address=account.address,
        )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def register_pool(self, pool_id: str) -> PoolConfig:
        pool_config = self.pools.get(pool_id)
        if pool_config is None:
            pool_config = self.settings.default_pool_config(pool_id)
            self.pools[pool_id] = pool_config
            logger.info("Discovered new pool: %s", pool_id)
        return pool_config

    def handle_event(self, event: str, pool_id: str) -> bool:
        """Queue a pool for out-of-cycle evaluation. Returns False on duplicates."""
        pool_id = normalize_pool_id(pool_id)
        if event == POOL_INITIALIZED:
            self.register_pool(pool_id)
        reason = EVENT_REASONS.get(event, event)
        return self.queue.enqueue(pool_id, reason, self.clock())

    def pump_events(self) -> int:
        if self.events is None:
            return 0
        count = 0
        for event, pool_id in self.events.poll():
            try:
                if self.handle_event(event, pool_id):
                    count += 1
            except ValueError as e:
                logger.warning("Ignoring %s with bad pool id %r: %s", event, pool_id, e)
        return count

    # ------------------------------------------------------------------
    # Decision
    # ------------------------------------------------------------------

    def evaluate(self, pool_config: PoolConfig) -> Decision:
        """Eligibility gates, fresh reads, history update, then the policy."""
        pool_id = pool_config.pool_id
        now = self.clock()

        if self.limiter.is_on_cooldown(pool_id, now, self.settings.cooldown_sec):
            return Decision.skip(Reason.COOLDOWN)
        if not self.limiter.can_rebalance(pool_id, now, self.settings.max_rebalances_per_hour):
            return Decision.skip(Reason.RATE_LIMITED)

        try:
            snapshot = self.reader.read(pool_id)
        except SentinelError as e:
            logger.warning("[%s] Snapshot read failed: %s", pool_config.name, e)
            return Decision.skip(Reason.READ_ERROR)

        self.history.record_tick(pool_id, snapshot.tick, now)
        self.history.record_price(pool_id, snapshot.pool_price_x18, now)
        history = PoolHistory(
            ticks=self.history.ticks(pool_id),
            prices=self.history.prices(pool_id),
        )

        rejected = screen(snapshot, pool_config, history.prices, self.limits)
        if rejected is not None:
            return rejected

        try:
            oracle_price = self.oracle.read_pool_price(snapshot, pool_config)
        except Exception as e:
            logger.warning("[%s] Oracle read failed: %s", pool_config.name, e)
            oracle_price = e

        return decide(snapshot, oracle_price, history, pool_config, self.limits)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(self, pool_config: PoolConfig, decision: Decision, source: str) -> bool:
        """Send maintain() for a rebalance decision. True once confirmed."""
        if decision.new_lower is None or decision.new_upper is None or (
            decision.new_lower >= decision.new_upper
        ):
            logger.warning(
                "[%s] Skipping: invalid new range [%s, %s]",
                pool_config.name,
                decision.new_lower,
                decision.new_upper,
            )
            self.log_decision(pool_config, Decision.skip(Reason.INVALID_NEW_RANGE), source)
            return False

        logger.info(
            "[%s] Rebalance (%s, %s) tick=%d range=[%d,%d] -> [%d,%d] vol=%d",
            pool_config.name,
            decision.reason.value,
            source,
            decision.current_tick,
            decision.active_lower,
            decision.active_upper,
            decision.new_lower,
            decision.new_upper,
            decision.volatility,
        )

        if self.settings.dry_run:
            logger.info("[%s] Dry run: maintain() not sent", pool_config.name)
            return False

        tx_hash = self.hook_manager.maintain(
            pool_config.pool_id,
            decision.new_lower,
            decision.new_upper,
            decision.volatility,
        )
        self.limiter.record_rebalance(pool_config.pool_id, self.clock())
        logger.info("[%s] maintain() confirmed tx=%s", pool_config.name, tx_hash)
        return True

    def process_pool(self, pool_config: PoolConfig, source: str) -> bool:
        """Evaluate and, when needed, rebalance one pool. Never raises."""
        try:
            decision = self.evaluate(pool_config)
            self.log_decision(pool_config, decision, source)
            if not decision.is_rebalance:
                return False
            return self.execute(pool_config, decision, source)
        except Exception as e:
            logger.error("[%s] Pool %s failed: %s", pool_config.name, source, e, exc_info=True)
            return False

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def run_cycle(self) -> bool:
        """Drain queued work, then sweep all pools. False if a cycle is already running."""
        if self.running:
            logger.debug("Cycle already running; trigger dropped")
            return False

        self.running = True
        try:
            for item in self.queue.drain():
                # Unknown pools get a one-off config; only PoolInitialized registers them
                pool_config = self.pools.get(item.pool_id) or self.settings.default_pool_config(
                    item.pool_id
                )
                self.process_pool(pool_config, f"event:{item.reason}")

            for pool_config in list(self.pools.values()):
                self.process_pool(pool_config, "sweep")
        except Exception as e:
            logger.error("Cycle error: %s", e, exc_info=True)
        finally:
            self.running = False
        return True

    def log_startup(self) -> None:
        logger.info(
            "Sentinel agent starting | Wallet: %s | Hook: %s | PoolManager: %s | "
            "Pools: %d | Interval: %ds | Dry run: %s",
            self.wallet_address,
            self.settings.hook_address,
            self.settings.pool_manager_address,
            len(self.pools),
            self.settings.check_interval_sec,
            self.settings.dry_run,
        )

    def run(self, once: bool = False) -> None:
        """Main agent loop: events -> cycle -> sleep."""
        self.log_startup()
        while True:
            try:
                self.pump_events()
                self.run_cycle()
                if once:
                    break
                time.sleep(self.settings.check_interval_sec)
            except KeyboardInterrupt:
                logger.info("Agent stopped by user.")
                break

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------

    def log_decision(self, pool_config: PoolConfig, decision: Decision, source: str) -> None:
        """One structured line per decision, mirrored to decisions.jsonl."""
        level = logging.INFO
        if decision.reason in (Reason.COOLDOWN, Reason.RATE_LIMITED):
            level = logging.DEBUG
        logger.log(
            level,
            "DECISION: %s pool=%s reason=%s source=%s | tick=%s | range=[%s,%s] | "
            "new=[%s,%s] vol=%s",
            decision.action,
            pool_config.name,
            decision.reason.value,
            source,
            decision.current_tick,
            decision.active_lower,
            decision.active_upper,
            decision.new_lower,
            decision.new_upper,
            decision.volatility,
        )

        if self.decisions_jsonl is None:
            return
        record = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "pool": pool_config.pool_id,
            "name": pool_config.name,
            "source": source,
            "action": decision.action,
            "reason": decision.reason.value,
            "tick": decision.current_tick,
            "range": [decision.active_lower, decision.active_upper],
            "new_range": [decision.new_lower, decision.new_upper],
            "volatility": decision.volatility,
        }
        with open(self.decisions_jsonl, "a") as f:
            f.write(json.dumps(record) + "\n")


# ======================================================================
# Entry point
# ======================================================================


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sentinel hook rebalancing agent")
    sub = parser.add_subparsers(dest="command")

    run_parser = sub.add_parser("run", help="Poll pools and rebalance (default)")
    run_parser.add_argument("--dry-run", action="store_true", help="Decide but never send maintain()")
    run_parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")

    check_parser = sub.add_parser("check", help="Evaluate one pool and print the result as JSON")
    check_parser.add_argument("--pool-id", required=True, help="32-byte pool id")

    args = parser.parse_args(argv)
    if args.command is None:
        args = parser.parse_args(["run"])
    return args


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging()

    try:
        settings = config.load_settings()
        if args.command == "check":
            pool_id = normalize_pool_id(args.pool_id)
    except (ConfigError, ValueError) as e:
        logger.error("Configuration error: %s", e)
        return 1

    if args.command == "run" and args.dry_run:
        settings = replace(settings, dry_run=True)

    setup_logging(str(settings.decisions_dir))
    agent = SentinelAgent.connect(settings)

    if args.command == "check":
        pool_config = agent.pools.get(pool_id) or settings.default_pool_config(pool_id)
        result = check_pool(
            pool_config,
            agent.reader,
            agent.oracle,
            settings.hook_address,
            agent.limits,
            clock=agent.clock,
        )
        print(json.dumps(result, indent=2))
        return 0

    agent.run(once=args.once)
    return 0


if __name__ == "__main__":
    sys.exit(main())
