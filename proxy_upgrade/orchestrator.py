"""
proxy_upgrade.orchestrator
==========================

Runs an explicit, ordered list of stage descriptors through the step executor:

    NotDeployed -> Deployed -> Initialized -> PairRegistered -> Live

- The stages must be listed in that logical order (any subset is allowed,
  so a run can resume from a later stage).
- The loop stops at the first Failed result. A precondition that cannot be
  read ends the run the same way, as Failed(PreconditionError) with no
  transaction. Earlier effects stay in place; there is no rollback.
- `UpgradeReport.state` only moves forward. Applied and Skipped both count as
  reaching the stage's state.

`probe_state` derives the logical state from the chain itself. It never
caches: each call re-reads the flags and the EIP-1967 slot.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import structlog

from .chain import ChainClient
from .contracts import ContractClient, normalize_address, read_implementation
from .errors import ConfigError, PreconditionError, RpcError
from .executor import DEFAULT_RECEIPT_TIMEOUT_S, Applied, Failed, StepResult, execute
from .stages import INITIALIZE_ABI, PAIR_ABI, RunContext, Stage
from .types import Address, StageState

__all__ = ["UpgradeReport", "UpgradeOrchestrator", "probe_state"]

log = structlog.get_logger(__name__)


@dataclass
class UpgradeReport:
    results: List[StepResult] = field(default_factory=list)
    state: StageState = StageState.NOT_DEPLOYED
    deployed_address: Optional[Address] = None

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def failure(self) -> Optional[Failed]:
        for r in self.results:
            if isinstance(r, Failed):
                return r
        return None

    @property
    def transactions(self) -> int:
        return sum(1 for r in self.results if isinstance(r, Applied))

    def advance(self, to: StageState) -> None:
        if to > self.state:
            self.state = to


class UpgradeOrchestrator:
    """
    Parameters
    ----------
    chain : ChainClient
    stages : ordered stage descriptors
    initial_state : logical state known before the run (e.g. from `probe_state`)
    receipt_timeout_s : wait budget per transaction
    """

    def __init__(
        self,
        chain: ChainClient,
        stages: Sequence[Stage],
        *,
        initial_state: StageState = StageState.NOT_DEPLOYED,
        receipt_timeout_s: float = DEFAULT_RECEIPT_TIMEOUT_S,
    ) -> None:
        self._check_order(stages)
        self._chain = chain
        self._stages = list(stages)
        self._initial_state = initial_state
        self._receipt_timeout_s = float(receipt_timeout_s)

    @staticmethod
    def _check_order(stages: Sequence[Stage]) -> None:
        if not stages:
            raise ConfigError("no stages to run")
        for prev, cur in zip(stages, stages[1:]):
            if cur.reached <= prev.reached:
                raise ConfigError(f"stage {cur.name!r} cannot run after {prev.name!r}")

    @property
    def stages(self) -> List[Stage]:
        return list(self._stages)

    def run(self) -> UpgradeReport:
        report = UpgradeReport(state=self._initial_state)
        context = RunContext()

        for stage in self._stages:
            step = stage.to_step(self._chain, context)
            try:
                result = execute(self._chain, step, receipt_timeout_s=self._receipt_timeout_s)
            except PreconditionError as e:
                # nothing was submitted for this stage; earlier results still stand
                result = Failed(stage.name, e)
            report.results.append(result)

            if isinstance(result, Failed):
                log.error("upgrade_halted", stage=stage.name, state=report.state.label, error=str(result.cause))
                break

            report.advance(stage.reached)
            log.info("upgrade_progress", stage=stage.name, state=report.state.label)

        report.deployed_address = context.deployed_address
        return report


def probe_state(
    chain: ChainClient,
    *,
    proxy: str,
    pair: str,
    implementation: Optional[str] = None,
) -> StageState:
    """
    Read the logical upgrade state from the chain.

    Without a known `implementation` address the best we can say about the
    earliest stage is NOT_DEPLOYED; an on-chain flag of a later stage
    implies the earlier ones.
    """
    proxy = normalize_address(proxy, what="proxy address")
    state = StageState.NOT_DEPLOYED
    if implementation is not None:
        implementation = normalize_address(implementation, what="implementation address")
        state = StageState.DEPLOYED
        if read_implementation(chain, proxy) == implementation:
            return StageState.LIVE

    # Implementations predating the V2 getters revert on this read.
    try:
        initialized = bool(ContractClient(chain, proxy, INITIALIZE_ABI).read("v2Initialized"))
    except RpcError as e:
        if not e.is_revert:
            raise
        log.debug("v2_flag_unavailable", error=str(e))
        return state
    if not initialized:
        return state
    state = max(state, StageState.INITIALIZED)

    if ContractClient(chain, proxy, PAIR_ABI).read("isPair", pair):
        state = max(state, StageState.PAIR_REGISTERED)
    return state
