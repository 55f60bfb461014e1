from __future__ import annotations

from typing import Optional


class SentinelError(RuntimeError):
    pass


class ConfigError(SentinelError):
    pass


class RpcFailure(SentinelError):
    def __init__(self, message: str, call: Optional[str] = None) -> None:
        super().__init__(message)
        self.call = call


class RpcTimeout(RpcFailure):
    pass


class OracleError(SentinelError):
    pass


class OracleStale(OracleError):
    pass


class OracleInvalid(OracleError):
    pass


class OracleInverted(OracleError):
    pass


class TransactionReverted(SentinelError):
    def __init__(self, message: str, tx_hash: Optional[str] = None) -> None:
        super().__init__(message)
        self.tx_hash = tx_hash
