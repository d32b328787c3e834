from __future__ import annotations

import pytest
from eth_utils import to_checksum_address

from proxy_upgrade.errors import (
    PostconditionError,
    PreconditionError,
    ReceiptTimeout,
    RevertError,
    SubmissionError,
)
from proxy_upgrade.executor import Applied, Failed, Skipped, UpgradeStep, execute
from proxy_upgrade.stages import (
    DeployImplementation,
    InitializeConfiguration,
    RegisterPair,
    RunContext,
    SwitchProxyTarget,
)
from proxy_upgrade.types import ImplementationArtifact, StageState

from .fakes import NEW_IMPL, PAIR, PROXY, ROUTER, SLIPPAGE, THRESHOLD


def _init_stage() -> InitializeConfiguration:
    return InitializeConfiguration(proxy=PROXY, router=ROUTER, swap_threshold=THRESHOLD, slippage_bps=SLIPPAGE)


def _run(chain, stage, context=None):
    return execute(chain, stage.to_step(chain, context or RunContext()))


# --- Initialize Configuration ----------------------------------------------------


def test_initialize_skipped_when_already_initialized(chain):
    chain.initialized = True

    result = _run(chain, _init_stage())

    assert isinstance(result, Skipped)
    assert chain.sent == []


def test_initialize_writes_literal_inputs(chain):
    result = _run(chain, _init_stage())

    assert isinstance(result, Applied)
    assert result.receipt.succeeded
    assert len(chain.sent) == 1
    assert chain.router == to_checksum_address(ROUTER)
    assert chain.threshold == THRESHOLD
    assert chain.slippage == SLIPPAGE


def test_initialize_twice_is_applied_then_skipped(chain):
    first = _run(chain, _init_stage())
    second = _run(chain, _init_stage())

    assert isinstance(first, Applied)
    assert isinstance(second, Skipped)
    assert len(chain.sent) == 1


def test_initialize_precondition_read_failure_submits_nothing(chain):
    chain.broken_reads = True

    with pytest.raises(PreconditionError) as ei:
        _run(chain, _init_stage())

    assert ei.value.stage == "initialize-config"
    assert chain.sent == []


# --- Register Pair ----------------------------------------------------------------


def test_register_pair_skipped_when_flagged(chain):
    chain.pairs[to_checksum_address(PAIR)] = True

    result = _run(chain, RegisterPair(proxy=PROXY, pair=PAIR))

    assert isinstance(result, Skipped)
    assert chain.sent == []


def test_register_pair_sets_flag(chain):
    stage = RegisterPair(proxy=PROXY, pair=PAIR)

    result = _run(chain, stage)

    assert isinstance(result, Applied)
    assert stage.report(chain)["isPair"] is True
    assert isinstance(_run(chain, stage), Skipped)
    assert len(chain.sent) == 1


# --- Switch Proxy Target --------------------------------------------------------------


def test_switch_always_submits(chain):
    stage = SwitchProxyTarget(proxy=PROXY, implementation=NEW_IMPL)

    first = _run(chain, stage)
    second = _run(chain, stage)

    assert isinstance(first, Applied) and isinstance(second, Applied)
    assert len(chain.sent) == 2
    assert chain.implementation == to_checksum_address(NEW_IMPL)


def test_switch_revert_is_failed_not_success(chain):
    chain.revert_functions.add("upgradeToAndCall")

    result = _run(chain, SwitchProxyTarget(proxy=PROXY, implementation=NEW_IMPL))

    assert isinstance(result, Failed)
    assert isinstance(result.cause, RevertError)
    assert result.receipt is not None and result.receipt.status == 0
    assert result.cause.tx_hash == result.receipt.tx_hash


# --- Deploy Implementation ----------------------------------------------------------


def test_deploy_is_never_skipped_and_yields_new_addresses(chain):
    artifact = ImplementationArtifact(name="V2", bytecode=bytes.fromhex("6080604052"))
    stage = DeployImplementation(artifact)

    ctx1, ctx2 = RunContext(), RunContext()
    first = _run(chain, stage, ctx1)
    second = _run(chain, stage, ctx2)

    assert isinstance(first, Applied) and isinstance(second, Applied)
    assert first.receipt.contract_address != second.receipt.contract_address
    assert ctx1.deployed_address != ctx2.deployed_address
    assert [r.to for r in chain.sent] == [None, None]


# --- failure taxonomy --------------------------------------------------------------


def test_submission_rejection_is_failed(chain):
    chain.reject_submissions = "insufficient funds for gas * price + value"

    result = _run(chain, RegisterPair(proxy=PROXY, pair=PAIR))

    assert isinstance(result, Failed)
    assert isinstance(result.cause, SubmissionError)
    assert result.receipt is None


def test_receipt_timeout_is_failed(chain):
    chain.receipt_missing = True

    result = _run(chain, RegisterPair(proxy=PROXY, pair=PAIR))

    assert isinstance(result, Failed)
    assert isinstance(result.cause, ReceiptTimeout)


def test_postcondition_mismatch_is_failed(chain):
    pair_step = RegisterPair(proxy=PROXY, pair=PAIR).to_step(chain, RunContext())
    step = UpgradeStep(
        name="custom",
        request=pair_step.request,
        reached=StageState.PAIR_REGISTERED,
        postcondition=lambda receipt: False,
    )

    result = execute(chain, step)

    assert isinstance(result, Failed)
    assert isinstance(result.cause, PostconditionError)
    assert result.receipt is not None and result.receipt.succeeded


def test_initialize_on_chain_guard_surfaces_as_revert(chain):
    # the precondition is bypassed; the contract's own guard rejects the call
    chain.initialized = True
    step = _init_stage().to_step(chain, RunContext())
    unguarded = UpgradeStep(name=step.name, request=step.request, reached=step.reached)

    result = execute(chain, unguarded)

    assert isinstance(result, Failed)
    assert isinstance(result.cause, RevertError)
