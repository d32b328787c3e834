from __future__ import annotations

import json
from typing import Any, Dict, List

import httpx
import pytest
import respx

from proxy_upgrade.chain import JsonRpcChainClient, fee_market_max_fee
from proxy_upgrade.contracts import EIP1967_IMPLEMENTATION_SLOT
from proxy_upgrade.errors import ReceiptTimeout, SubmissionError
from proxy_upgrade.rpc.http import RpcClient
from proxy_upgrade.types import TxRequest, TxType

from .fakes import PROXY, SIGNER

RPC_URL = "http://localhost:8545"
# well-known development key #0
DEV_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcbc4ac9d7bf4f2ff80"

BASE_FEE = 1_000_000_000
TIP = 1_500_000_000


class FakeNode:
    """Answers JSON-RPC by method name and records what was asked."""

    def __init__(self, **results: Any) -> None:
        self.results: Dict[str, Any] = {
            "eth_chainId": "0x1",
            "eth_getTransactionCount": "0x7",
            "eth_gasPrice": hex(20_000_000_000),
            "eth_getBlockByNumber": {"number": "0x10", "baseFeePerGas": hex(BASE_FEE)},
            "eth_maxPriorityFeePerGas": hex(TIP),
            "eth_sendRawTransaction": "0x" + "ab" * 32,
        }
        self.results.update(results)
        self.calls: List[Dict[str, Any]] = []

    @property
    def methods(self) -> List[str]:
        return [c["method"] for c in self.calls]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.calls.append(body)
        value = self.results[body["method"]]
        if callable(value):
            value = value(body["params"])
        if isinstance(value, dict) and "error" in value:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": value["error"]})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": value})


def make_client(node: FakeNode, **kwargs: Any) -> JsonRpcChainClient:
    respx.post(RPC_URL).mock(side_effect=node)
    return JsonRpcChainClient.from_key(RpcClient(RPC_URL), DEV_KEY, **kwargs)


def test_fee_market_max_fee():
    assert fee_market_max_fee(BASE_FEE, TIP) == 3_500_000_000


@respx.mock
def test_signer_address_and_chain_id_cached():
    node = FakeNode()
    client = make_client(node)

    assert client.address == SIGNER
    assert client.chain_id == 1
    assert client.chain_id == 1
    assert node.methods.count("eth_chainId") == 1


@respx.mock
def test_fee_market_transaction_carries_request_gas_limit():
    node = FakeNode()
    client = make_client(node)
    req = TxRequest(to=PROXY, data=b"\x12\x34", gas_limit=300_000)

    tx = client.build_transaction(req)

    assert tx["gas"] == 300_000
    assert tx["type"] == 2
    assert tx["nonce"] == 7
    assert tx["chainId"] == 1
    assert tx["to"] == PROXY
    assert tx["data"] == "0x1234"
    assert tx["maxPriorityFeePerGas"] == TIP
    assert tx["maxFeePerGas"] == 2 * BASE_FEE + TIP
    assert "gasPrice" not in tx
    assert "eth_estimateGas" not in node.methods
    assert node.calls[1]["params"] == [SIGNER, "pending"]


@respx.mock
def test_legacy_transaction_reads_gas_price():
    node = FakeNode()
    client = make_client(node, chain_id=1)

    tx = client.build_transaction(TxRequest(to=None, data=b"\x60\x80", gas_limit=8_000_000, tx_type=TxType.LEGACY))

    assert tx["gas"] == 8_000_000
    assert tx["gasPrice"] == 20_000_000_000
    assert "to" not in tx
    assert "type" not in tx
    assert "eth_getBlockByNumber" not in node.methods
    assert "eth_estimateGas" not in node.methods


@respx.mock
def test_legacy_gas_price_override_skips_node():
    node = FakeNode()
    client = make_client(node, chain_id=1, gas_price_wei=7)

    tx = client.build_transaction(TxRequest(to=PROXY, data=b"", gas_limit=21_000, tx_type=TxType.LEGACY))

    assert tx["gasPrice"] == 7
    assert "eth_gasPrice" not in node.methods


@respx.mock
def test_fee_market_without_base_fee_is_rejected():
    node = FakeNode(eth_getBlockByNumber={"number": "0x10"})
    client = make_client(node, chain_id=1)

    with pytest.raises(SubmissionError):
        client.send_transaction(TxRequest(to=PROXY, data=b"", gas_limit=100_000))
    assert "eth_sendRawTransaction" not in node.methods


@respx.mock
def test_send_transaction_signs_and_broadcasts():
    node = FakeNode()
    client = make_client(node)

    tx_hash = client.send_transaction(TxRequest(to=PROXY, data=b"\x12\x34\x56\x78", gas_limit=200_000))

    assert tx_hash == "0x" + "ab" * 32
    assert node.methods[-1] == "eth_sendRawTransaction"
    raw = node.calls[-1]["params"][0]
    # EIP-2718 envelope for a type 2 transaction
    assert raw.startswith("0x02")
    assert "eth_estimateGas" not in node.methods


@respx.mock
def test_send_transaction_node_refusal_is_submission_error():
    node = FakeNode(eth_sendRawTransaction={"error": {"code": -32000, "message": "insufficient funds for gas * price + value"}})
    client = make_client(node)

    with pytest.raises(SubmissionError) as ei:
        client.send_transaction(TxRequest(to=PROXY, data=b"", gas_limit=100_000))
    assert "insufficient funds" in str(ei.value)


@respx.mock
def test_wait_for_receipt_polls_until_present():
    pending = [None, None]

    def receipt(params):
        if pending:
            return pending.pop()
        return {
            "transactionHash": params[0],
            "blockNumber": "0x10",
            "status": "0x1",
            "gasUsed": "0x5208",
            "contractAddress": None,
        }

    node = FakeNode(eth_getTransactionReceipt=receipt)
    client = make_client(node, poll_interval_s=0, max_poll_interval_s=0)

    r = client.wait_for_receipt("0xabc", timeout_s=5)

    assert r.succeeded
    assert r.block_number == 16
    assert r.gas_used == 21_000
    assert node.methods.count("eth_getTransactionReceipt") == 3


@respx.mock
def test_wait_for_receipt_reports_revert_status():
    node = FakeNode(eth_getTransactionReceipt={"transactionHash": "0xabc", "blockNumber": "0x10", "status": "0x0"})
    client = make_client(node)

    r = client.wait_for_receipt("0xabc", timeout_s=5)

    assert r.status == 0
    assert not r.succeeded


@respx.mock
def test_wait_for_receipt_times_out():
    node = FakeNode(eth_getTransactionReceipt=None)
    client = make_client(node, poll_interval_s=0)

    with pytest.raises(ReceiptTimeout) as ei:
        client.wait_for_receipt("0xabc", timeout_s=0)
    assert ei.value.tx_hash == "0xabc"
    # nothing is resubmitted while waiting
    assert "eth_sendRawTransaction" not in node.methods


@respx.mock
def test_reads():
    node = FakeNode(
        eth_getBalance="0xde0b6b3a7640000",
        eth_call="0x" + "00" * 31 + "01",
        eth_getStorageAt="0x1234",
    )
    client = make_client(node)

    assert client.get_balance(SIGNER) == 10**18
    assert client.call(PROXY, b"\xaa\xbb\xcc\xdd") == bytes(31) + b"\x01"
    assert client.get_storage_at(PROXY, EIP1967_IMPLEMENTATION_SLOT) == bytes(30) + b"\x12\x34"

    call = next(c for c in node.calls if c["method"] == "eth_call")
    assert call["params"] == [{"from": SIGNER, "to": PROXY, "data": "0xaabbccdd"}, "latest"]
    storage = next(c for c in node.calls if c["method"] == "eth_getStorageAt")
    assert storage["params"][1] == hex(EIP1967_IMPLEMENTATION_SLOT)
