"""
proxy_upgrade.chain
===================

The chain client boundary: signing identity, state queries, transaction
submission and receipt waiting.

`ChainClient` is the Protocol the executor and contract views depend on.
`JsonRpcChainClient` implements it against an Ethereum JSON-RPC node with a
local eth-account key.

Gas
---
The gas limit of every signed transaction is the `gas_limit` of the
`TxRequest`, verbatim. This module never calls `eth_estimateGas`: estimating
against state-dependent contract logic (threshold branches, guarded
initializers) is not something an upgrade should depend on. Only the fee
*price* is read from the node (or taken from configuration).

Waiting
-------
`wait_for_receipt` polls `eth_getTransactionReceipt` with a growing interval
until the receipt is present or the timeout elapses. It does not resubmit.
"""

from __future__ import annotations

import time
from typing import Any, Dict, Optional, Protocol

import structlog
from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_utils import to_checksum_address

from .errors import ReceiptTimeout, RpcError, SubmissionError
from .rpc.http import RpcClient
from .types import Address, TxReceipt, TxRequest, TxType, to_int

__all__ = ["ChainClient", "JsonRpcChainClient", "fee_market_max_fee"]

log = structlog.get_logger(__name__)


class ChainClient(Protocol):
    """Minimal interface the upgrade stages need from a chain connection."""

    @property
    def address(self) -> Address: ...

    def get_balance(self, address: Address) -> int: ...

    def call(self, to: Address, data: bytes) -> bytes: ...

    def get_storage_at(self, address: Address, slot: int) -> bytes: ...

    def send_transaction(self, request: TxRequest) -> str: ...

    def wait_for_receipt(self, tx_hash: str, *, timeout_s: float = 300.0) -> TxReceipt: ...


def fee_market_max_fee(base_fee: int, priority_fee: int) -> int:
    """maxFeePerGas = 2 * baseFee + tip; survives several full blocks of base fee growth."""
    return 2 * int(base_fee) + int(priority_fee)


def _hex(data: bytes) -> str:
    return "0x" + bytes(data).hex()


def _from_hex(value: Any) -> bytes:
    if value is None:
        return b""
    s = str(value)
    if s.startswith(("0x", "0X")):
        s = s[2:]
    return bytes.fromhex(s)


class JsonRpcChainClient:
    """
    Chain client over JSON-RPC with a local signing key.

    Parameters
    ----------
    rpc : RpcClient
    account : eth-account LocalAccount (``Account.from_key(...)``)
    chain_id : optional; read once from ``eth_chainId`` when omitted
    gas_price_wei : optional legacy gas price override
    poll_interval_s / max_poll_interval_s / backoff : receipt polling cadence
    """

    def __init__(
        self,
        rpc: RpcClient,
        account: LocalAccount,
        *,
        chain_id: Optional[int] = None,
        gas_price_wei: Optional[int] = None,
        poll_interval_s: float = 1.0,
        max_poll_interval_s: float = 6.0,
        backoff: float = 1.5,
    ) -> None:
        self._rpc = rpc
        self._account = account
        self._chain_id = chain_id
        self._gas_price_wei = gas_price_wei
        self._poll_interval_s = float(poll_interval_s)
        self._max_poll_interval_s = float(max_poll_interval_s)
        self._backoff = float(backoff)

    @classmethod
    def from_key(cls, rpc: RpcClient, private_key: str, **kwargs: Any) -> "JsonRpcChainClient":
        return cls(rpc, Account.from_key(private_key), **kwargs)

    # ------------------------------------------------------------------ identity

    @property
    def address(self) -> Address:
        return self._account.address

    @property
    def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = to_int(self._rpc.request("eth_chainId"))
        return self._chain_id

    # ------------------------------------------------------------------ reads

    def get_balance(self, address: Address) -> int:
        return to_int(self._rpc.request("eth_getBalance", [to_checksum_address(address), "latest"]))

    def get_nonce(self, address: Address) -> int:
        return to_int(self._rpc.request("eth_getTransactionCount", [to_checksum_address(address), "pending"]))

    def call(self, to: Address, data: bytes) -> bytes:
        """Read-only ``eth_call`` against the latest block."""
        res = self._rpc.request(
            "eth_call",
            [{"from": self.address, "to": to_checksum_address(to), "data": _hex(data)}, "latest"],
        )
        return _from_hex(res)

    def get_storage_at(self, address: Address, slot: int) -> bytes:
        res = self._rpc.request("eth_getStorageAt", [to_checksum_address(address), hex(int(slot)), "latest"])
        return _from_hex(res).rjust(32, b"\x00")

    # ------------------------------------------------------------------ fees

    def _fee_fields(self, tx_type: TxType) -> Dict[str, int]:
        if tx_type == TxType.LEGACY:
            price = self._gas_price_wei
            if price is None:
                price = to_int(self._rpc.request("eth_gasPrice"))
            return {"gasPrice": int(price)}

        block = self._rpc.request("eth_getBlockByNumber", ["latest", False]) or {}
        base_fee = block.get("baseFeePerGas")
        if base_fee is None:
            raise SubmissionError("node does not report baseFeePerGas; use a legacy transaction")
        tip = to_int(self._rpc.request("eth_maxPriorityFeePerGas"))
        return {
            "maxPriorityFeePerGas": tip,
            "maxFeePerGas": fee_market_max_fee(to_int(base_fee), tip),
        }

    # ------------------------------------------------------------------ submission

    def build_transaction(self, request: TxRequest) -> Dict[str, Any]:
        """Fill nonce, chain id and fee fields. ``gas`` is copied from the request."""
        tx: Dict[str, Any] = {
            "chainId": self.chain_id,
            "nonce": self.get_nonce(self.address),
            "gas": request.gas_limit,
            "value": int(request.value),
            "data": _hex(request.data),
        }
        if request.to is not None:
            tx["to"] = to_checksum_address(request.to)
        if request.tx_type == TxType.FEE_MARKET:
            tx["type"] = int(TxType.FEE_MARKET)
        tx.update(self._fee_fields(request.tx_type))
        return tx

    def send_transaction(self, request: TxRequest) -> str:
        """
        Sign and broadcast. Anything that goes wrong before the node hands back
        a hash is a SubmissionError.
        """
        try:
            tx = self.build_transaction(request)
            signed = self._account.sign_transaction(tx)
            result = self._rpc.request("eth_sendRawTransaction", [_hex(signed.raw_transaction)])
        except SubmissionError:
            raise
        except RpcError as e:
            raise SubmissionError(str(e)) from e
        except (TypeError, ValueError) as e:
            raise SubmissionError(f"cannot sign transaction: {e}") from e

        if not isinstance(result, str) or not result:
            raise SubmissionError(f"unexpected eth_sendRawTransaction result: {result!r}")
        tx_hash = result if result.startswith("0x") else "0x" + result
        log.debug(
            "tx_submitted",
            tx_hash=tx_hash,
            nonce=tx["nonce"],
            gas=tx["gas"],
            tx_type=int(request.tx_type),
        )
        return tx_hash

    # ------------------------------------------------------------------ receipts

    def get_receipt(self, tx_hash: str) -> Optional[TxReceipt]:
        res = self._rpc.request("eth_getTransactionReceipt", [tx_hash])
        if not res:
            return None
        if not isinstance(res, dict):
            raise RpcError(f"unexpected receipt payload: {type(res)!r}", method="eth_getTransactionReceipt")
        return TxReceipt.from_rpc(res)

    def wait_for_receipt(self, tx_hash: str, *, timeout_s: float = 300.0) -> TxReceipt:
        """
        Block until the receipt is available.

        Raises:
            ReceiptTimeout when the deadline passes first
            RpcError on RPC or payload errors
        """
        deadline = time.monotonic() + float(timeout_s)
        interval = self._poll_interval_s

        while True:
            receipt = self.get_receipt(tx_hash)
            if receipt is not None:
                return receipt

            if time.monotonic() >= deadline:
                raise ReceiptTimeout(tx_hash=tx_hash, timeout_s=float(timeout_s))

            time.sleep(interval)
            interval = min(interval * self._backoff, self._max_poll_interval_s)
