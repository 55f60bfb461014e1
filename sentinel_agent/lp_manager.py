"""
Sentinel hook write path: maintain(poolId, newLower, newUpper, volatility).
"""

import logging

from eth_abi import encode as abi_encode
from eth_utils import keccak, to_checksum_address
from web3 import Web3

from sentinel_agent.exceptions import TransactionReverted
from sentinel_agent.models import pool_id_to_bytes
from sentinel_agent.state_reader import load_abi

logger = logging.getLogger(__name__)

MAINTAIN_SIGNATURE = "maintain(bytes32,int24,int24,uint256)"
MAINTAIN_SELECTOR = keccak(text=MAINTAIN_SIGNATURE)[:4]

MAINTAIN_GAS = 1_000_000
RECEIPT_TIMEOUT_SEC = 180


def encode_maintain(pool_id: str, new_lower: int, new_upper: int, volatility: int) -> str:
    """Calldata for a maintain() call, for hosts that return calls instead of sending them."""
    args = abi_encode(
        ["bytes32", "int24", "int24", "uint256"],
        [
            pool_id_to_bytes(pool_id),
            int(new_lower),
            int(new_upper),
            max(0, int(volatility)),
        ],
    )
    return "0x" + (MAINTAIN_SELECTOR + args).hex()


class HookManager:
    """Signs and sends maintain() transactions from the agent wallet."""

    def __init__(self, w3: Web3, account, hook_address: str):
        self.w3 = w3
        self.account = account
        self.hook_address = to_checksum_address(hook_address)
        self.hook = w3.eth.contract(address=self.hook_address, abi=load_abi("sentinel_hook.json"))

    def maintain(self, pool_id: str, new_lower: int, new_upper: int, volatility: int) -> str:
        """Send maintain() and wait for one confirmation.

        Returns the tx hash. Raises TransactionReverted when the receipt
        status is not 1.
        """
        sender = self.account.address
        tx = self.hook.functions.maintain(
            pool_id_to_bytes(pool_id),
            int(new_lower),
            int(new_upper),
            max(0, int(volatility)),
        ).build_transaction(
            {
                "from": sender,
                "nonce": self.w3.eth.get_transaction_count(sender),
                "gas": MAINTAIN_GAS,
                "gasPrice": self.w3.eth.gas_price,
            }
        )
        signed = self.account.sign_transaction(tx)
        tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        logger.debug("maintain() submitted tx=%s", tx_hash.hex())

        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=RECEIPT_TIMEOUT_SEC)
        if receipt["status"] != 1:
            logger.error("Transaction reverted: tx=%s", tx_hash.hex())
            raise TransactionReverted(f"maintain reverted: {tx_hash.hex()}", tx_hash=tx_hash.hex())
        return tx_hash.hex()
