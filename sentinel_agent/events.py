"""
EventWatcher — best-effort feed of hook TickCrossed / PoolInitialized events.

Logs are pulled with eth_getLogs over block ranges. Delivery is not
guaranteed; the agent's periodic sweep covers anything missed here.
"""

import logging

from web3 import Web3

from sentinel_agent.models import normalize_pool_id
from sentinel_agent.state_reader import load_abi

logger = logging.getLogger(__name__)

TICK_CROSSED = "TickCrossed"
POOL_INITIALIZED = "PoolInitialized"

EVENT_SIGNATURES = {
    TICK_CROSSED: "TickCrossed(bytes32,int24,int24,int24)",
    POOL_INITIALIZED: "PoolInitialized(bytes32,address,bool,address,address)",
}

# Cap on blocks scanned per poll so a long outage does not produce one huge query
MAX_BLOCK_RANGE = 2000


def _topic_hex(topic) -> str:
    value = topic.hex() if hasattr(topic, "hex") else str(topic)
    if not value.startswith("0x"):
        value = "0x" + value
    return value.lower()


class EventWatcher:
    """Polls the hook's logs and returns (event_name, pool_id) pairs."""

    def __init__(self, w3: Web3, hook_address: str, start_block: int | None = None):
        self.w3 = w3
        self.hook_address = Web3.to_checksum_address(hook_address)
        self.hook = w3.eth.contract(address=self.hook_address, abi=load_abi("sentinel_hook.json"))
        self.next_block = start_block
        self.topics = {
            _topic_hex(Web3.keccak(text=signature)): name
            for name, signature in EVENT_SIGNATURES.items()
        }

    def poll(self) -> list[tuple[str, str]]:
        """Fetch new events since the last successful poll. Never raises."""
        try:
            head = self.w3.eth.block_number
            if self.next_block is None:
                self.next_block = head
            if self.next_block > head:
                return []
            to_block = min(head, self.next_block + MAX_BLOCK_RANGE - 1)
            logs = self.w3.eth.get_logs(
                {
                    "address": self.hook_address,
                    "fromBlock": self.next_block,
                    "toBlock": to_block,
                    "topics": [list(self.topics)],
                }
            )
        except Exception as e:
            logger.warning("Event poll failed, will retry from block %s: %s", self.next_block, e)
            return []

        events = []
        for raw_log in logs:
            decoded = self._decode(raw_log)
            if decoded is not None:
                events.append(decoded)
        self.next_block = to_block + 1
        return events

    def _decode(self, raw_log) -> tuple[str, str] | None:
        try:
            name = self.topics.get(_topic_hex(raw_log["topics"][0]))
            if name is None:
                return None
            event = getattr(self.hook.events, name)().process_log(raw_log)
            return name, normalize_pool_id(event["args"]["poolId"])
        except Exception as e:
            logger.warning("Could not decode hook log: %s", e)
            return None
