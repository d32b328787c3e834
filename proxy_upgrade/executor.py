"""
The step executor: one upgrade step, at most one transaction.

    precondition? --yes--> Skipped
         | no
    submit(request) --error--> Failed(SubmissionError)
         |
    wait for receipt --timeout--> Failed(ReceiptTimeout)
         |
    status == 0 --------------> Failed(RevertError, receipt)
         |
    postcondition? --no-------> Failed(PostconditionError, receipt)
         | yes
    Applied(receipt)

A precondition that cannot be evaluated raises PreconditionError and nothing
is submitted. Nothing is retried.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Union

import structlog

from .chain import ChainClient
from .errors import PostconditionError, PreconditionError, ReceiptTimeout, RevertError, SubmissionError, UpgradeError
from .types import StageState, TxReceipt, TxRequest

__all__ = [
    "UpgradeStep",
    "Skipped",
    "Applied",
    "Failed",
    "StepResult",
    "execute",
    "DEFAULT_RECEIPT_TIMEOUT_S",
]

log = structlog.get_logger(__name__)

DEFAULT_RECEIPT_TIMEOUT_S = 600.0

Predicate = Callable[[], bool]
PostPredicate = Callable[[TxReceipt], bool]


@dataclass(frozen=True)
class UpgradeStep:
    """
    Stateless description of one step.

    precondition: returns True when the effect is already in place. None means
        "always submit".
    postcondition: given the receipt, returns True when reading the state back
        confirms the effect. None means the successful receipt is enough.
    reached: logical state the upgrade is in once this step is Applied or Skipped.
    """

    name: str
    request: TxRequest
    reached: StageState
    precondition: Optional[Predicate] = None
    postcondition: Optional[PostPredicate] = None


@dataclass(frozen=True)
class Skipped:
    name: str

    ok = True


@dataclass(frozen=True)
class Applied:
    name: str
    receipt: TxReceipt

    ok = True


@dataclass(frozen=True)
class Failed:
    name: str
    cause: UpgradeError
    receipt: Optional[TxReceipt] = None

    ok = False


StepResult = Union[Skipped, Applied, Failed]


def _already_applied(step: UpgradeStep) -> bool:
    if step.precondition is None:
        return False
    try:
        return bool(step.precondition())
    except Exception as e:
        raise PreconditionError(stage=step.name, message=str(e)) from e


def execute(
    chain: ChainClient,
    step: UpgradeStep,
    *,
    receipt_timeout_s: float = DEFAULT_RECEIPT_TIMEOUT_S,
) -> StepResult:
    """Run one step against `chain` and report what happened."""
    slog = log.bind(step=step.name)

    if _already_applied(step):
        slog.info("step_skipped", reason="already applied")
        return Skipped(step.name)

    req = step.request
    slog.info(
        "step_submitting",
        to=req.to or "<create>",
        gas_limit=req.gas_limit,
        tx_type=int(req.tx_type),
        data_len=len(req.data),
    )
    try:
        tx_hash = chain.send_transaction(req)
    except SubmissionError as e:
        slog.error("step_submission_failed", error=str(e))
        return Failed(step.name, e)
    except UpgradeError as e:
        slog.error("step_submission_failed", error=str(e))
        return Failed(step.name, SubmissionError(str(e)))

    slog.info("step_waiting", tx_hash=tx_hash)
    try:
        receipt = chain.wait_for_receipt(tx_hash, timeout_s=receipt_timeout_s)
    except ReceiptTimeout as e:
        slog.error("step_receipt_timeout", tx_hash=tx_hash, timeout_s=receipt_timeout_s)
        return Failed(step.name, e)
    except UpgradeError as e:
        slog.error("step_receipt_failed", tx_hash=tx_hash, error=str(e))
        return Failed(step.name, e)

    if not receipt.succeeded:
        slog.error("step_reverted", tx_hash=tx_hash, block=receipt.block_number)
        err = RevertError(tx_hash=tx_hash, block_number=receipt.block_number, receipt=receipt.raw)
        return Failed(step.name, err, receipt)

    if step.postcondition is not None:
        try:
            confirmed = bool(step.postcondition(receipt))
        except Exception as e:
            # the tx is in; only the read-back failed
            slog.error("step_postcondition_unreadable", tx_hash=tx_hash, error=str(e))
            confirmed = False
        if not confirmed:
            slog.error("step_postcondition_failed", tx_hash=tx_hash, block=receipt.block_number)
            return Failed(step.name, PostconditionError(stage=step.name, tx_hash=tx_hash), receipt)

    slog.info(
        "step_applied",
        tx_hash=tx_hash,
        block=receipt.block_number,
        gas_used=receipt.gas_used,
        contract_address=receipt.contract_address,
    )
    return Applied(step.name, receipt)
