from __future__ import annotations

"""
Minimal human-readable ABI support.

Each stage only needs a handful of functions, so instead of a full JSON ABI
we accept signature strings of the form

    "function isPair(address) view returns (bool)"
    "function initializeV2(address _router, uint256 _swapThreshold, uint16 _slippageBps) external"

and turn them into `FunctionSignature` objects that know their selector and
can encode call data / decode return data via eth-abi.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Sequence, Tuple

import eth_abi
from eth_utils import function_signature_to_4byte_selector, to_checksum_address

from .errors import AbiError

__all__ = [
    "FunctionSignature",
    "parse_signature",
    "parse_signatures",
    "canonical_type",
]

_SIG_RE = re.compile(
    r"""^\s*(?:function\s+)?
        (?P<name>[A-Za-z_$][A-Za-z0-9_$]*)\s*
        \((?P<inputs>[^()]*)\)\s*
        (?P<modifiers>[^()]*?)\s*
        (?:returns\s*\((?P<outputs>[^()]*)\))?\s*$""",
    re.VERBOSE,
)

_MUTABILITIES = ("view", "pure", "payable", "nonpayable")
_DATA_LOCATIONS = {"memory", "calldata", "storage", "indexed"}

# Solidity aliases that the canonical signature spells out
_ALIASES = {"uint": "uint256", "int": "int256", "byte": "bytes1"}


def canonical_type(type_str: str) -> str:
    """Normalize a parameter type: drop aliases, reject what eth-abi cannot encode."""
    t = type_str.strip()
    base, suffix = re.match(r"^([^\[]*)(.*)$", t).groups()  # type: ignore[union-attr]
    base = _ALIASES.get(base, base)
    t = base + suffix
    if not eth_abi.is_encodable_type(t):
        raise AbiError(f"unsupported ABI type: {type_str!r}")
    return t


def _split_params(params: str) -> List[str]:
    """Return the canonical types of a comma separated parameter list."""
    out: List[str] = []
    for raw in params.split(","):
        raw = raw.strip()
        if not raw:
            continue
        words = [w for w in raw.split() if w not in _DATA_LOCATIONS]
        if not words:
            raise AbiError(f"empty parameter in {params!r}")
        out.append(canonical_type(words[0]))
    return out


@dataclass(frozen=True)
class FunctionSignature:
    name: str
    inputs: Tuple[str, ...]
    outputs: Tuple[str, ...] = ()
    mutability: str = "nonpayable"

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.inputs)})"

    @property
    def selector(self) -> bytes:
        return function_signature_to_4byte_selector(self.signature)

    @property
    def is_read_only(self) -> bool:
        return self.mutability in ("view", "pure")

    def encode_call(self, args: Sequence[Any]) -> bytes:
        """Selector followed by the ABI-encoded arguments."""
        if len(args) != len(self.inputs):
            raise AbiError(
                f"expected {len(self.inputs)} argument(s), got {len(args)}",
                function=self.name,
            )
        try:
            return self.selector + eth_abi.encode(list(self.inputs), list(args))
        except Exception as e:
            raise AbiError(f"cannot encode {list(args)!r}: {e}", function=self.name) from e

    def decode_output(self, data: bytes) -> Any:
        """
        Decode return data. A single output is unwrapped; several come back as
        a tuple; none returns None.
        """
        if not self.outputs:
            return None
        try:
            values = eth_abi.decode(list(self.outputs), bytes(data))
        except Exception as e:
            raise AbiError(f"cannot decode return data 0x{bytes(data).hex()}: {e}", function=self.name) from e
        values = tuple(
            to_checksum_address(v) if t == "address" else v
            for t, v in zip(self.outputs, values)
        )
        return values[0] if len(values) == 1 else values


def parse_signature(text: str) -> FunctionSignature:
    m = _SIG_RE.match(text)
    if not m:
        raise AbiError(f"cannot parse function signature: {text!r}")
    modifiers = m.group("modifiers").split()
    mutability = next((w for w in modifiers if w in _MUTABILITIES), "nonpayable")
    return FunctionSignature(
        name=m.group("name"),
        inputs=tuple(_split_params(m.group("inputs"))),
        outputs=tuple(_split_params(m.group("outputs") or "")),
        mutability=mutability,
    )


def parse_signatures(texts: Iterable[str]) -> Dict[str, FunctionSignature]:
    """Parse a signature list into a name-indexed table. Overloads are rejected."""
    table: Dict[str, FunctionSignature] = {}
    for text in texts:
        fn = parse_signature(text)
        if fn.name in table:
            raise AbiError("overloaded functions are not supported", function=fn.name)
        table[fn.name] = fn
    return table
