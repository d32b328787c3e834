"""
The four upgrade stages, as tagged descriptors.

| stage                   | precondition           | gas       | default tx type |
|-------------------------|------------------------|-----------|-----------------|
| deploy-implementation   | none (never skipped)   | 8,000,000 | legacy          |
| initialize-config       | v2Initialized()        |   300,000 | EIP-1559        |
| register-pair           | isPair(pair)           |   100,000 | EIP-1559        |
| switch-proxy-target     | none                   |   200,000 | EIP-1559        |

Gas ceilings are constants of the stage, not a function of contract state.
A `StagePolicy` may replace them per invocation, but nothing here estimates.

Each descriptor turns into an `UpgradeStep` with `to_step(chain, context)`;
`report(chain)` re-reads the on-chain values an operator wants to see after
the stage ran.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Optional

from .chain import ChainClient
from .contracts import ContractClient, normalize_address, read_implementation
from .errors import ConfigError
from .executor import UpgradeStep
from .types import Address, ImplementationArtifact, StageState, TxReceipt, TxRequest, TxType

__all__ = [
    "DEPLOY_GAS_LIMIT",
    "INITIALIZE_GAS_LIMIT",
    "SET_PAIR_GAS_LIMIT",
    "UPGRADE_GAS_LIMIT",
    "MAX_BPS",
    "StagePolicy",
    "RunContext",
    "Stage",
    "DeployImplementation",
    "InitializeConfiguration",
    "RegisterPair",
    "SwitchProxyTarget",
    "INITIALIZE_ABI",
    "PAIR_ABI",
    "UPGRADE_ABI",
]

DEPLOY_GAS_LIMIT = 8_000_000
INITIALIZE_GAS_LIMIT = 300_000
SET_PAIR_GAS_LIMIT = 100_000
UPGRADE_GAS_LIMIT = 200_000

MAX_BPS = 10_000
_UINT256_MAX = 2**256 - 1

INITIALIZE_ABI = (
    "function initializeV2(address _router, uint256 _swapThreshold, uint16 _slippageBps) external",
    "function v2Initialized() view returns (bool)",
    "function autoSwapEnabled() view returns (bool)",
    "function uniswapRouter() view returns (address)",
    "function autoSwapThreshold() view returns (uint256)",
)

PAIR_ABI = (
    "function setPair(address pair, bool status) external",
    "function isPair(address) view returns (bool)",
)

UPGRADE_ABI = ("function upgradeToAndCall(address newImplementation, bytes memory data) external",)


@dataclass(frozen=True)
class StagePolicy:
    """Resource bounds of one stage: an explicit gas limit and a tx scheme."""

    gas_limit: int
    tx_type: TxType = TxType.FEE_MARKET

    def __post_init__(self) -> None:
        if isinstance(self.gas_limit, bool) or not isinstance(self.gas_limit, int) or self.gas_limit <= 0:
            raise ConfigError(f"gas_limit must be a positive integer, got {self.gas_limit!r}")
        object.__setattr__(self, "tx_type", TxType(self.tx_type))


@dataclass
class RunContext:
    """Values produced by earlier stages of the same run."""

    deployed_address: Optional[Address] = None


class Stage:
    """Base for stage descriptors. Subclasses are frozen dataclasses."""

    name: ClassVar[str]
    reached: ClassVar[StageState]
    policy: StagePolicy

    def to_step(self, chain: ChainClient, context: RunContext) -> UpgradeStep:
        raise NotImplementedError

    def report(self, chain: ChainClient) -> Dict[str, Any]:
        return {}


@dataclass(frozen=True)
class DeployImplementation(Stage):
    """Create a new implementation contract. Every run yields a new address."""

    artifact: ImplementationArtifact
    policy: StagePolicy = field(default_factory=lambda: StagePolicy(DEPLOY_GAS_LIMIT, TxType.LEGACY))

    name: ClassVar[str] = "deploy-implementation"
    reached: ClassVar[StageState] = StageState.DEPLOYED

    def to_step(self, chain: ChainClient, context: RunContext) -> UpgradeStep:
        request = TxRequest(
            to=None,
            data=self.artifact.creation_code,
            gas_limit=self.policy.gas_limit,
            tx_type=self.policy.tx_type,
        )

        def created(receipt: TxReceipt) -> bool:
            if not receipt.contract_address:
                return False
            context.deployed_address = normalize_address(receipt.contract_address)
            return True

        return UpgradeStep(name=self.name, request=request, reached=self.reached, postcondition=created)


@dataclass(frozen=True)
class InitializeConfiguration(Stage):
    """Call initializeV2(router, threshold, slippage) unless already initialized."""

    proxy: Address
    router: Address
    swap_threshold: int
    slippage_bps: int
    policy: StagePolicy = field(default_factory=lambda: StagePolicy(INITIALIZE_GAS_LIMIT))

    name: ClassVar[str] = "initialize-config"
    reached: ClassVar[StageState] = StageState.INITIALIZED

    def __post_init__(self) -> None:
        object.__setattr__(self, "proxy", normalize_address(self.proxy, what="proxy address"))
        object.__setattr__(self, "router", normalize_address(self.router, what="router address"))
        if not 0 <= int(self.swap_threshold) <= _UINT256_MAX:
            raise ConfigError(f"swap threshold out of uint256 range: {self.swap_threshold}")
        if not 0 <= int(self.slippage_bps) <= MAX_BPS:
            raise ConfigError(f"slippage must be within 0..{MAX_BPS} bps, got {self.slippage_bps}")

    def view(self, chain: ChainClient) -> ContractClient:
        return ContractClient(chain, self.proxy, INITIALIZE_ABI)

    def to_step(self, chain: ChainClient, context: RunContext) -> UpgradeStep:
        proxy = self.view(chain)
        request = proxy.build(
            "initializeV2",
            self.router,
            int(self.swap_threshold),
            int(self.slippage_bps),
            gas_limit=self.policy.gas_limit,
            tx_type=self.policy.tx_type,
        )

        def configured(_: TxReceipt) -> bool:
            return (
                bool(proxy.read("v2Initialized"))
                and proxy.read("uniswapRouter") == self.router
                and proxy.read("autoSwapThreshold") == int(self.swap_threshold)
            )

        return UpgradeStep(
            name=self.name,
            request=request,
            reached=self.reached,
            precondition=lambda: bool(proxy.read("v2Initialized")),
            postcondition=configured,
        )

    def report(self, chain: ChainClient) -> Dict[str, Any]:
        proxy = self.view(chain)
        return {
            "v2Initialized": proxy.read("v2Initialized"),
            "autoSwapEnabled": proxy.read("autoSwapEnabled"),
            "uniswapRouter": proxy.read("uniswapRouter"),
            "autoSwapThreshold": proxy.read("autoSwapThreshold"),
        }


@dataclass(frozen=True)
class RegisterPair(Stage):
    """Flag one liquidity pair in the proxy's allow-list unless already flagged."""

    proxy: Address
    pair: Address
    policy: StagePolicy = field(default_factory=lambda: StagePolicy(SET_PAIR_GAS_LIMIT))

    name: ClassVar[str] = "register-pair"
    reached: ClassVar[StageState] = StageState.PAIR_REGISTERED

    def __post_init__(self) -> None:
        object.__setattr__(self, "proxy", normalize_address(self.proxy, what="proxy address"))
        object.__setattr__(self, "pair", normalize_address(self.pair, what="pair address"))

    def view(self, chain: ChainClient) -> ContractClient:
        return ContractClient(chain, self.proxy, PAIR_ABI)

    def to_step(self, chain: ChainClient, context: RunContext) -> UpgradeStep:
        proxy = self.view(chain)
        request = proxy.build(
            "setPair",
            self.pair,
            True,
            gas_limit=self.policy.gas_limit,
            tx_type=self.policy.tx_type,
        )
        return UpgradeStep(
            name=self.name,
            request=request,
            reached=self.reached,
            precondition=lambda: bool(proxy.read("isPair", self.pair)),
            postcondition=lambda _: bool(proxy.read("isPair", self.pair)),
        )

    def report(self, chain: ChainClient) -> Dict[str, Any]:
        return {"pair": self.pair, "isPair": self.view(chain).read("isPair", self.pair)}


@dataclass(frozen=True)
class SwitchProxyTarget(Stage):
    """
    Point the proxy at the new implementation via upgradeToAndCall.

    No precondition: the transaction is always submitted. When `implementation`
    is None the address deployed earlier in the same run is used.
    """

    proxy: Address
    implementation: Optional[Address] = None
    call_data: bytes = b""
    policy: StagePolicy = field(default_factory=lambda: StagePolicy(UPGRADE_GAS_LIMIT))

    name: ClassVar[str] = "switch-proxy-target"
    reached: ClassVar[StageState] = StageState.LIVE

    def __post_init__(self) -> None:
        object.__setattr__(self, "proxy", normalize_address(self.proxy, what="proxy address"))
        if self.implementation is not None:
            object.__setattr__(
                self, "implementation", normalize_address(self.implementation, what="implementation address")
            )

    def resolve_implementation(self, context: RunContext) -> Address:
        target = self.implementation or context.deployed_address
        if target is None:
            raise ConfigError("no implementation address: pass one or deploy it in the same run")
        return target

    def to_step(self, chain: ChainClient, context: RunContext) -> UpgradeStep:
        proxy = ContractClient(chain, self.proxy, UPGRADE_ABI)
        request = proxy.build(
            "upgradeToAndCall",
            self.resolve_implementation(context),
            bytes(self.call_data),
            gas_limit=self.policy.gas_limit,
            tx_type=self.policy.tx_type,
        )
        return UpgradeStep(name=self.name, request=request, reached=self.reached)

    def report(self, chain: ChainClient) -> Dict[str, Any]:
        return {"proxy": self.proxy, "implementation": read_implementation(chain, self.proxy)}
