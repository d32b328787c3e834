"""
proxy_upgrade.contracts
=======================

A thin, typed view over one deployed contract, built from a minimal list of
function signatures (only what a stage needs):

- `read(fn, *args)` performs an ``eth_call`` and decodes the return value
- `build(fn, *args, gas_limit=..., tx_type=...)` produces a `TxRequest`

The view holds no state of its own. Every `read` goes to the chain, so a
precondition always sees current truth.

Also here: the EIP-1967 implementation slot reader and the build artifact
loader used by the deploy stage.

Example
-------
    pair_view = ContractClient(
        chain,
        PROXY,
        ["function setPair(address pair, bool status) external",
         "function isPair(address) view returns (bool)"],
    )
    if not pair_view.read("isPair", LP_PAIR):
        req = pair_view.build("setPair", LP_PAIR, True, gas_limit=100_000)
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

from eth_utils import is_address, to_checksum_address

from .abi import FunctionSignature, parse_signatures
from .chain import ChainClient
from .errors import AbiError, ConfigError
from .types import Address, ImplementationArtifact, TxRequest, TxType

__all__ = [
    "ContractClient",
    "EIP1967_IMPLEMENTATION_SLOT",
    "read_implementation",
    "load_artifact",
    "normalize_address",
]

# bytes32(uint256(keccak256("eip1967.proxy.implementation")) - 1)
EIP1967_IMPLEMENTATION_SLOT = 0x360894A13BA1A3210667C828492DB98DCA3E2076CC3735A920A3CA505D382BBC


def normalize_address(value: str, *, what: str = "address") -> Address:
    """Checksum an address, raising ConfigError for anything that is not one."""
    if not isinstance(value, str) or not is_address(value):
        raise ConfigError(f"invalid {what}: {value!r}")
    return to_checksum_address(value)


class ContractClient:
    """
    Signature-driven client bound to a fixed contract address.

    Parameters
    ----------
    chain : ChainClient used for ``eth_call``
    address : contract address (any case; stored checksummed)
    signatures : human-readable function signatures
    """

    def __init__(self, chain: ChainClient, address: str, signatures: Iterable[str]):
        self._chain = chain
        self._address = normalize_address(address, what="contract address")
        self._functions: Dict[str, FunctionSignature] = parse_signatures(signatures)

    @property
    def address(self) -> Address:
        return self._address

    def function(self, fn: str) -> FunctionSignature:
        try:
            return self._functions[fn]
        except KeyError:
            raise AbiError("function not in interface", function=fn) from None

    def read(self, fn: str, *args: Any) -> Any:
        """Typed read call (no transaction)."""
        sig = self.function(fn)
        if not sig.is_read_only:
            raise AbiError("not a view function; use build()", function=fn)
        raw = self._chain.call(self._address, sig.encode_call(args))
        return sig.decode_output(raw)

    def build(
        self,
        fn: str,
        *args: Any,
        gas_limit: int,
        tx_type: TxType = TxType.FEE_MARKET,
        value: int = 0,
    ) -> TxRequest:
        """Typed write call: a `TxRequest` carrying the caller's gas ceiling."""
        sig = self.function(fn)
        if sig.is_read_only:
            raise AbiError("view function cannot be sent as a transaction", function=fn)
        return TxRequest(
            to=self._address,
            data=sig.encode_call(args),
            gas_limit=gas_limit,
            tx_type=tx_type,
            value=value,
        )


def read_implementation(chain: ChainClient, proxy: str) -> Optional[Address]:
    """Current implementation behind an EIP-1967 proxy, or None if the slot is empty."""
    word = chain.get_storage_at(normalize_address(proxy, what="proxy address"), EIP1967_IMPLEMENTATION_SLOT)
    raw = bytes(word)[-20:]
    if not any(raw):
        return None
    return to_checksum_address(raw)


# --- build artifacts ----------------------------------------------------------


def _bytecode_from_json(doc: Dict[str, Any]) -> Optional[str]:
    bc = doc.get("bytecode")
    # Foundry: {"bytecode": {"object": "0x..."}}; Hardhat: {"bytecode": "0x..."}
    if isinstance(bc, dict):
        bc = bc.get("object")
    return bc if isinstance(bc, str) else None


def load_artifact(path: Union[str, Path], *, init_data: bytes = b"") -> ImplementationArtifact:
    """
    Load creation bytecode from a Foundry or Hardhat build JSON file.

    Unlinked library placeholders (``__$...$__``) are rejected.
    """
    p = Path(path)
    try:
        doc = json.loads(p.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigError(f"artifact not found: {p}") from e
    except ValueError as e:
        raise ConfigError(f"artifact is not valid JSON: {p}") from e
    if not isinstance(doc, dict):
        raise ConfigError(f"artifact must be a JSON object: {p}")

    bc = _bytecode_from_json(doc)
    if not bc:
        raise ConfigError(f"artifact has no bytecode: {p}")
    if "__$" in bc:
        raise ConfigError(f"artifact bytecode has unlinked libraries: {p}")
    hexstr = bc[2:] if bc.startswith(("0x", "0X")) else bc
    try:
        code = bytes.fromhex(hexstr)
    except ValueError as e:
        raise ConfigError(f"artifact bytecode is not hex: {p}") from e
    if not code:
        raise ConfigError(f"artifact bytecode is empty: {p}")

    name = doc.get("contractName") or p.stem
    return ImplementationArtifact(name=str(name), bytecode=code, init_data=bytes(init_data))
