"""
Upgrade configuration: node endpoint, signer, and the literal values each
stage writes on-chain.

Resolution order (later wins):
  1. built-in defaults (the NOX V2 mainnet upgrade)
  2. a YAML params file
  3. environment variables (PROXY_UPGRADE_*)
  4. explicit overrides (CLI flags)

Environment
-----------
PROXY_UPGRADE_RPC_URL            http(s) JSON-RPC endpoint
PROXY_UPGRADE_PRIVATE_KEY        signer key (0x-hex); never logged
PROXY_UPGRADE_CHAIN_ID           int or 0x-hex; read from the node when unset
PROXY_UPGRADE_PROXY              proxy address
PROXY_UPGRADE_IMPLEMENTATION     new implementation address
PROXY_UPGRADE_ROUTER             router address passed to initializeV2
PROXY_UPGRADE_SWAP_THRESHOLD     uint256, token base units
PROXY_UPGRADE_SLIPPAGE_BPS       0..10000
PROXY_UPGRADE_PAIR               liquidity pair address
PROXY_UPGRADE_ARTIFACT           path to the build JSON of the implementation
PROXY_UPGRADE_RECEIPT_TIMEOUT    seconds to wait for each receipt
PROXY_UPGRADE_GAS_PRICE_WEI      legacy gas price override
PROXY_UPGRADE_UPGRADE_CALL_DATA  0x-hex data for upgradeToAndCall
"""

from __future__ import annotations

import os
import re
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml

from .errors import ConfigError

__all__ = ["UpgradeConfig", "load_config", "load_params_file", "ENV_PREFIX"]

ENV_PREFIX = "PROXY_UPGRADE_"

_DEFAULT_RPC = "http://127.0.0.1:8545"
_HEX_RE = re.compile(r"^0x[0-9a-fA-F]*$")

# NOX V2 mainnet upgrade
DEFAULT_PROXY = "0x0a26c80Be4E060e688d7C23aDdB92cBb5D2C9eCA"
DEFAULT_IMPLEMENTATION = "0xf57a30672a72fa7fbc8004ffcb12dafc7ea882d7"
DEFAULT_ROUTER = "0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D"  # Uniswap V2 router
DEFAULT_SWAP_THRESHOLD = 1000 * 10**18  # 1000 NOX
DEFAULT_SLIPPAGE_BPS = 100  # 1%
DEFAULT_PAIR = "0x07ce5889d2eb681af3bd61db24ab2602c502bd1b"
DEFAULT_ARTIFACT = "out/noxtoken_v2.sol/NONOS_NOX_MAINNET_V2.json"


def _parse_int(name: str, val: Any) -> int:
    """Accepts int, decimal str (underscores allowed), or 0x-hex str."""
    if isinstance(val, bool):
        raise ConfigError(f"{name} must be an integer, got {val!r}")
    if isinstance(val, int):
        return val
    s = str(val).strip().replace("_", "")
    try:
        if _HEX_RE.match(s):
            return int(s, 16)
        return int(s, 10)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {val!r}") from None


def _parse_hex_bytes(name: str, val: Any) -> bytes:
    if isinstance(val, (bytes, bytearray)):
        return bytes(val)
    s = str(val or "").strip()
    if s in ("", "0x"):
        return b""
    if not _HEX_RE.match(s) or len(s) % 2:
        raise ConfigError(f"{name} must be 0x-prefixed hex, got {val!r}")
    return bytes.fromhex(s[2:])


def _ensure_scheme(url: str) -> str:
    if not url.lower().startswith(("http://", "https://")):
        raise ConfigError(f"RPC URL must start with http:// or https://, got: {url!r}")
    return url


@dataclass(frozen=True)
class UpgradeConfig:
    rpc_url: str = _DEFAULT_RPC
    private_key: Optional[str] = field(default=None, repr=False)
    chain_id: Optional[int] = None
    proxy: str = DEFAULT_PROXY
    implementation: Optional[str] = DEFAULT_IMPLEMENTATION
    router: str = DEFAULT_ROUTER
    swap_threshold: int = DEFAULT_SWAP_THRESHOLD
    slippage_bps: int = DEFAULT_SLIPPAGE_BPS
    pair: str = DEFAULT_PAIR
    artifact: str = DEFAULT_ARTIFACT
    receipt_timeout_s: float = 600.0
    gas_price_wei: Optional[int] = None
    upgrade_call_data: bytes = b""
    request_timeout_s: float = 30.0

    def __post_init__(self) -> None:
        _ensure_scheme(self.rpc_url)
        if self.receipt_timeout_s <= 0:
            raise ConfigError("receipt timeout must be positive")

    def with_overrides(self, **overrides: Any) -> "UpgradeConfig":
        """Copy with the given non-None values applied. Unknown keys are rejected."""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ConfigError(f"unknown config keys: {', '.join(sorted(unknown))}")
        return replace(self, **_coerce({k: v for k, v in overrides.items() if v is not None}))

    def require_key(self) -> str:
        if not self.private_key:
            raise ConfigError(f"no signer key: set {ENV_PREFIX}PRIVATE_KEY")
        return self.private_key

    def to_dict(self) -> Dict[str, Any]:
        """Printable view; the private key is masked."""
        data = asdict(self)
        data["private_key"] = "***" if self.private_key else None
        data["upgrade_call_data"] = "0x" + self.upgrade_call_data.hex()
        return data


_INT_KEYS = {"chain_id", "swap_threshold", "slippage_bps", "gas_price_wei"}
_FLOAT_KEYS = {"receipt_timeout_s", "request_timeout_s"}


def _coerce(values: Mapping[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for k, v in values.items():
        if k in _INT_KEYS and v is not None:
            out[k] = _parse_int(k, v)
        elif k in _FLOAT_KEYS and v is not None:
            try:
                out[k] = float(v)
            except (TypeError, ValueError):
                raise ConfigError(f"{k} must be a number, got {v!r}") from None
        elif k == "upgrade_call_data":
            out[k] = _parse_hex_bytes(k, v)
        else:
            out[k] = v
    return out


_ENV_KEYS = {
    "RPC_URL": "rpc_url",
    "PRIVATE_KEY": "private_key",
    "CHAIN_ID": "chain_id",
    "PROXY": "proxy",
    "IMPLEMENTATION": "implementation",
    "ROUTER": "router",
    "SWAP_THRESHOLD": "swap_threshold",
    "SLIPPAGE_BPS": "slippage_bps",
    "PAIR": "pair",
    "ARTIFACT": "artifact",
    "RECEIPT_TIMEOUT": "receipt_timeout_s",
    "GAS_PRICE_WEI": "gas_price_wei",
    "UPGRADE_CALL_DATA": "upgrade_call_data",
}


def _from_env(environ: Mapping[str, str], prefix: str) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for suffix, key in _ENV_KEYS.items():
        v = environ.get(prefix + suffix)
        if v is not None and v != "":
            out[key] = v
    return out


def load_params_file(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load a YAML params file. Keys are the UpgradeConfig field names; the key
    material is not accepted from files.
    """
    p = Path(path)
    try:
        with open(p, "rb") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError as e:
        raise ConfigError(f"params file not found: {p}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"params file is not valid YAML: {p}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError("params YAML must be a mapping at the top level")
    if "private_key" in data:
        raise ConfigError("private_key must come from the environment, not a params file")
    known = {f.name for f in fields(UpgradeConfig)}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"unknown keys in {p}: {', '.join(sorted(map(str, unknown)))}")
    return data


def load_config(
    *,
    params_file: Optional[Union[str, Path]] = None,
    environ: Optional[Mapping[str, str]] = None,
    prefix: str = ENV_PREFIX,
    **overrides: Any,
) -> UpgradeConfig:
    """Resolve defaults, params file, environment and overrides into one config."""
    environ = os.environ if environ is None else environ
    cfg = UpgradeConfig()
    if params_file is not None:
        cfg = cfg.with_overrides(**load_params_file(params_file))
    cfg = cfg.with_overrides(**_from_env(environ, prefix))
    return cfg.with_overrides(**overrides)
