"""
Core datatypes shared by the chain client, the executor and the stages.

- TxRequest: an unsigned transaction request with an explicit gas limit
- TxReceipt: the decoded confirmation record returned by the node
- ImplementationArtifact: one version of compiled contract logic
- StageState: the logical progress of an upgrade
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Mapping, Optional

__all__ = [
    "Address",
    "TxType",
    "TxRequest",
    "TxReceipt",
    "ImplementationArtifact",
    "StageState",
    "to_int",
]

Address = str


class TxType(IntEnum):
    LEGACY = 0
    FEE_MARKET = 2  # EIP-1559


class StageState(IntEnum):
    """Ordered logical state of an upgrade. It only ever moves forward."""

    NOT_DEPLOYED = 0
    DEPLOYED = 1
    INITIALIZED = 2
    PAIR_REGISTERED = 3
    LIVE = 4

    @property
    def label(self) -> str:
        return self.name.replace("_", " ").title().replace(" ", "")


def to_int(value: Any) -> int:
    """Decode a JSON-RPC quantity (0x-hex string or int)."""
    if isinstance(value, int):
        return value
    s = str(value).strip()
    if s.lower().startswith("0x"):
        return int(s, 16) if len(s) > 2 else 0
    return int(s, 10)


@dataclass(frozen=True)
class TxRequest:
    """
    A state-changing transaction, prior to nonce/fee assignment and signing.

    `gas_limit` has no default: every stage states its own ceiling and the
    chain client never estimates one.
    """

    to: Optional[Address]
    data: bytes
    gas_limit: int
    tx_type: TxType = TxType.FEE_MARKET
    value: int = 0

    def __post_init__(self) -> None:
        if isinstance(self.gas_limit, bool) or not isinstance(self.gas_limit, int):
            raise TypeError("gas_limit must be an int")
        if self.gas_limit <= 0:
            raise ValueError("gas_limit must be positive")
        if self.value < 0:
            raise ValueError("value must be non-negative")
        if not isinstance(self.data, (bytes, bytearray)):
            raise TypeError("data must be bytes")
        object.__setattr__(self, "tx_type", TxType(self.tx_type))

    @property
    def is_deploy(self) -> bool:
        return self.to is None


@dataclass(frozen=True)
class TxReceipt:
    tx_hash: str
    block_number: int
    status: int
    contract_address: Optional[Address] = None
    gas_used: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def succeeded(self) -> bool:
        return self.status == 1

    @classmethod
    def from_rpc(cls, obj: Mapping[str, Any]) -> "TxReceipt":
        """Build from an `eth_getTransactionReceipt` result object."""
        status = obj.get("status")
        gas_used = obj.get("gasUsed")
        return cls(
            tx_hash=str(obj.get("transactionHash") or obj.get("txHash") or ""),
            block_number=to_int(obj.get("blockNumber") or 0),
            # pre-Byzantium receipts carry no status; treat as success
            status=to_int(status) if status is not None else 1,
            contract_address=obj.get("contractAddress") or None,
            gas_used=to_int(gas_used) if gas_used is not None else None,
            raw=dict(obj),
        )


@dataclass(frozen=True)
class ImplementationArtifact:
    name: str
    bytecode: bytes
    init_data: bytes = b""

    def __post_init__(self) -> None:
        if not self.bytecode:
            raise ValueError("artifact bytecode is empty")

    @property
    def creation_code(self) -> bytes:
        return bytes(self.bytecode) + bytes(self.init_data)

    @property
    def size(self) -> int:
        return len(self.bytecode)
