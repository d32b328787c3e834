"""
Typed error classes for proxy-upgrade.

They follow the failure taxonomy of an upgrade stage so callers (and the CLI)
can tell apart a read that never completed, a transaction that was rejected
before inclusion, and one that was included but reverted. Everything derives
from `UpgradeError`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Optional

__all__ = [
    "UpgradeError",
    "ConfigError",
    "RpcError",
    "JsonRpcCode",
    "AbiError",
    "PreconditionError",
    "SubmissionError",
    "ReceiptTimeout",
    "RevertError",
    "PostconditionError",
    "from_jsonrpc_error",
]


class UpgradeError(Exception):
    """Base class for all proxy-upgrade errors."""


class ConfigError(UpgradeError):
    """Invalid configuration, params file, or build artifact."""


class JsonRpcCode(IntEnum):
    # JSON-RPC 2.0 spec
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    # Ethereum node conventions (geth / EIP-1474)
    SERVER_ERROR = -32000
    EXECUTION_REVERTED = 3


@dataclass
class RpcError(UpgradeError):
    """Raised when a JSON-RPC call returns an error object or the transport fails."""

    message: str
    method: Optional[str] = None
    code: Optional[int] = None
    data: Optional[Any] = None
    http_status: Optional[int] = None

    def __str__(self) -> str:
        parts = [f"RPC[{self.method or '-'}]"]
        if self.code is not None:
            parts.append(f"code={self.code}")
        parts.append(f"msg={self.message!r}")
        if self.http_status is not None:
            parts.append(f"http={self.http_status}")
        if self.data is not None:
            parts.append(f"data={self.data!r}")
        return " ".join(parts)

    @property
    def code_enum(self) -> Optional[JsonRpcCode]:
        if self.code is None:
            return None
        try:
            return JsonRpcCode(self.code)
        except ValueError:
            return None

    @property
    def is_revert(self) -> bool:
        """The node executed the call and the contract rejected it."""
        return self.code_enum == JsonRpcCode.EXECUTION_REVERTED or "revert" in self.message.lower()


@dataclass
class AbiError(UpgradeError):
    """
    Raised when a function signature cannot be parsed, or call data cannot be
    encoded / return data decoded.
    """

    message: str
    function: Optional[str] = None

    def __str__(self) -> str:
        where = f" [fn={self.function}]" if self.function else ""
        return f"AbiError{where}: {self.message}"


@dataclass
class PreconditionError(UpgradeError):
    """The read-only state query gating a stage could not be completed."""

    stage: str
    message: str

    def __str__(self) -> str:
        return f"precondition check for {self.stage!r} failed: {self.message}"


@dataclass
class SubmissionError(UpgradeError):
    """
    The transaction was rejected before inclusion (insufficient funds, nonce
    conflict, malformed call data, node refusal).
    """

    message: str
    tx_hash: Optional[str] = None

    def __str__(self) -> str:
        suffix = f" tx={self.tx_hash}" if self.tx_hash else ""
        return f"submission rejected{suffix}: {self.message}"


@dataclass
class ReceiptTimeout(UpgradeError):
    """No receipt was observed within the wait budget. The tx may still land."""

    tx_hash: str
    timeout_s: float

    def __str__(self) -> str:
        return f"timeout waiting for receipt (tx={self.tx_hash}, timeout_s={self.timeout_s})"


@dataclass
class RevertError(UpgradeError):
    """The transaction was included but the contract rejected the effect."""

    tx_hash: str
    block_number: Optional[int] = None
    receipt: Optional[Dict[str, Any]] = None

    def __str__(self) -> str:
        block = f" block={self.block_number}" if self.block_number is not None else ""
        return f"transaction reverted on-chain tx={self.tx_hash}{block}"


@dataclass
class PostconditionError(UpgradeError):
    """The transaction succeeded but reading the state back does not show its effect."""

    stage: str
    tx_hash: str

    def __str__(self) -> str:
        return f"{self.stage!r} was included (tx={self.tx_hash}) but its effect is not visible on-chain"


def from_jsonrpc_error(
    err_obj: Dict[str, Any],
    *,
    method: Optional[str] = None,
    http_status: Optional[int] = None,
) -> RpcError:
    """
    Convert a JSON-RPC error object into RpcError.

    `err_obj` should resemble: {"code": int, "message": str, "data": any?}
    """
    code = err_obj.get("code", JsonRpcCode.SERVER_ERROR)
    return RpcError(
        message=str(err_obj.get("message", "Unknown JSON-RPC error")),
        method=method,
        code=int(code) if code is not None else None,
        data=err_obj.get("data"),
        http_status=http_status,
    )
