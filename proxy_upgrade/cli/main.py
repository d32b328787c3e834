"""
proxy_upgrade.cli.main
======================

`proxy-upgrade`: run the stages that move a proxy to a new implementation.

Each stage has its own command and is safe to re-run: `initialize` and
`set-pair` check the chain first and do nothing when their effect is already
there. `deploy` and `upgrade` always submit.

Examples
--------
    $ export PROXY_UPGRADE_RPC_URL=https://eth.example.org
    $ export PROXY_UPGRADE_PRIVATE_KEY=0x...
    $ proxy-upgrade status
    $ proxy-upgrade deploy --artifact out/noxtoken_v2.sol/NONOS_NOX_MAINNET_V2.json
    $ proxy-upgrade initialize
    $ proxy-upgrade set-pair
    $ proxy-upgrade upgrade --implementation 0xf57a...
    $ proxy-upgrade run --from-stage initialize-config

Configuration
-------------
Defaults, then `--params FILE.yml`, then PROXY_UPGRADE_* variables, then
flags. See :mod:`proxy_upgrade.config`.

Exit status is 0 when every stage was applied or skipped, 1 otherwise.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
import typer
from eth_utils import is_hexstr, remove_0x_prefix

from ..chain import ChainClient, JsonRpcChainClient
from ..config import ENV_PREFIX, UpgradeConfig, load_config
from ..contracts import load_artifact, read_implementation
from ..errors import ConfigError, UpgradeError
from ..executor import Applied, Failed, Skipped, StepResult
from ..logging import bind_run_context, get_logger, setup_logging
from ..orchestrator import UpgradeOrchestrator, UpgradeReport, probe_state
from ..rpc.http import RpcClient
from ..stages import (
    DEPLOY_GAS_LIMIT,
    INITIALIZE_GAS_LIMIT,
    SET_PAIR_GAS_LIMIT,
    UPGRADE_GAS_LIMIT,
    DeployImplementation,
    InitializeConfiguration,
    RegisterPair,
    Stage,
    StagePolicy,
    SwitchProxyTarget,
)
from ..types import TxType
from ..version import __version__

app = typer.Typer(
    name="proxy-upgrade",
    help="Deploy, configure and switch an upgradeable proxy to a new implementation.",
    no_args_is_help=True,
    add_completion=False,
)

__all__ = ["app", "main", "make_chain"]

log = get_logger(__name__)

STAGE_ORDER = ("deploy-implementation", "initialize-config", "register-pair", "switch-proxy-target")

_WEI_PER_ETH = 10**18


@dataclass
class Ctx:
    config: UpgradeConfig


def make_chain(cfg: UpgradeConfig) -> ChainClient:
    """Build the chain client for a command. Tests replace this."""
    key = cfg.require_key()
    bad_key = f"{ENV_PREFIX}PRIVATE_KEY is not a valid secp256k1 private key"
    # the key itself stays out of the message
    if not is_hexstr(key) or len(remove_0x_prefix(key)) != 64:
        raise ConfigError(bad_key)
    rpc = RpcClient(cfg.rpc_url, timeout=cfg.request_timeout_s)
    try:
        return JsonRpcChainClient.from_key(
            rpc,
            key,
            chain_id=cfg.chain_id,
            gas_price_wei=cfg.gas_price_wei,
        )
    except (TypeError, ValueError):
        rpc.close()
        raise ConfigError(bad_key) from None


def _fail(message: str) -> None:
    log.error("command_failed", error=message)
    typer.echo(f"error: {message}", err=True)
    raise typer.Exit(1)


def _format_eth(wei: int) -> str:
    whole, frac = divmod(int(wei), _WEI_PER_ETH)
    return f"{whole}.{frac:018d}".rstrip("0").rstrip(".") if frac else f"{whole}.0"


def _tx_type_option(default: TxType) -> Any:
    return typer.Option(
        int(default),
        "--tx-type",
        help="Transaction scheme: 0 = legacy, 2 = EIP-1559.",
    )


def _policy(gas_limit: int, tx_type: int) -> StagePolicy:
    try:
        return StagePolicy(gas_limit, TxType(tx_type))
    except ValueError:
        raise typer.BadParameter(f"unsupported tx type {tx_type}; use 0 or 2") from None


@app.callback()
def _root(
    ctx: typer.Context,
    rpc_url: Optional[str] = typer.Option(None, "--rpc-url", help="Node HTTP JSON-RPC URL."),
    chain_id: Optional[int] = typer.Option(None, "--chain-id", help="Expected chain ID (read from the node if unset)."),
    params: Optional[Path] = typer.Option(None, "--params", help="YAML params file with stage values."),
    log_format: Optional[str] = typer.Option(None, "--log-format", help="console | json"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="DEBUG | INFO | WARNING | ERROR"),
) -> None:
    """
    Resolve configuration once for the process.
    """
    setup_logging(level=log_level, log_format=log_format)
    try:
        cfg = load_config(params_file=params, rpc_url=rpc_url, chain_id=chain_id)
    except UpgradeError as e:
        _fail(str(e))
    ctx.obj = Ctx(config=cfg)


# --- output -------------------------------------------------------------------


def _print_json(obj: Any) -> None:
    typer.echo(json.dumps(obj, indent=2, default=str))


def _print_result(result: StepResult) -> None:
    if isinstance(result, Skipped):
        typer.echo(f"[{result.name}] already applied, nothing submitted")
    elif isinstance(result, Applied):
        r = result.receipt
        typer.echo(f"[{result.name}] tx {r.tx_hash} confirmed in block {r.block_number}")
        if r.contract_address:
            typer.echo(f"[{result.name}] contract deployed at {r.contract_address}")
    elif isinstance(result, Failed):
        typer.echo(f"[{result.name}] FAILED: {result.cause}", err=True)


def _print_report(stage: Stage, chain: ChainClient) -> None:
    try:
        details = stage.report(chain)
    except UpgradeError as e:
        log.warning("report_unavailable", stage=stage.name, error=str(e))
        return
    for key, value in details.items():
        typer.echo(f"  {key}: {value}")


def _execute(ctx: typer.Context, stages: List[Stage], *, show_balance: bool = False) -> UpgradeReport:
    cfg: UpgradeConfig = ctx.obj.config
    try:
        chain = make_chain(cfg)
        bind_run_context(signer=chain.address)
        typer.echo(f"Signer: {chain.address}")
        if show_balance:
            typer.echo(f"Balance: {_format_eth(chain.get_balance(chain.address))} ETH")
        orchestrator = UpgradeOrchestrator(chain, stages, receipt_timeout_s=cfg.receipt_timeout_s)
        report = orchestrator.run()
    except UpgradeError as e:
        _fail(str(e))

    for stage, result in zip(stages, report.results):
        _print_result(result)
        if result.ok:
            _print_report(stage, chain)

    if not report.ok:
        if report.deployed_address:
            typer.echo(f"Implementation deployed at: {report.deployed_address}")
            typer.echo(f"Resume with: proxy-upgrade upgrade --implementation {report.deployed_address}")
        failure = report.failure
        _fail(f"{failure.name}: {failure.cause}" if failure else "upgrade failed")
    typer.echo(f"State: {report.state.label}")
    return report


# --- stage commands -------------------------------------------------------------


@app.command("deploy")
def deploy(
    ctx: typer.Context,
    artifact: Optional[Path] = typer.Option(None, "--artifact", "-a", help="Build JSON with the implementation bytecode."),
    tx_type: int = _tx_type_option(TxType.LEGACY),
) -> None:
    """Deploy the implementation bytecode. Not idempotent: every run creates a new contract."""
    cfg: UpgradeConfig = ctx.obj.config
    try:
        art = load_artifact(artifact or cfg.artifact)
    except UpgradeError as e:
        _fail(str(e))
    typer.echo(f"Bytecode length: {art.size} bytes")

    report = _execute(
        ctx,
        [DeployImplementation(art, policy=_policy(DEPLOY_GAS_LIMIT, tx_type))],
        show_balance=True,
    )
    if report.deployed_address:
        typer.echo(f"Implementation deployed at: {report.deployed_address}")
        typer.echo("Record this address; re-running deploy creates another contract.")
        typer.echo(f"Verify with: npx hardhat verify --network mainnet {report.deployed_address}")


@app.command("initialize")
def initialize(
    ctx: typer.Context,
    router: Optional[str] = typer.Option(None, "--router", help="Router address."),
    threshold: Optional[str] = typer.Option(None, "--threshold", help="Swap threshold in token base units."),
    slippage_bps: Optional[int] = typer.Option(None, "--slippage-bps", help="Slippage bound in basis points."),
    tx_type: int = _tx_type_option(TxType.FEE_MARKET),
) -> None:
    """Call initializeV2 on the proxy unless it is already initialized."""
    try:
        cfg = ctx.obj.config.with_overrides(router=router, swap_threshold=threshold, slippage_bps=slippage_bps)
        stage = InitializeConfiguration(
            proxy=cfg.proxy,
            router=cfg.router,
            swap_threshold=cfg.swap_threshold,
            slippage_bps=cfg.slippage_bps,
            policy=_policy(INITIALIZE_GAS_LIMIT, tx_type),
        )
    except UpgradeError as e:
        _fail(str(e))
    typer.echo(f"Router: {stage.router}")
    typer.echo(f"Threshold: {stage.swap_threshold}")
    typer.echo(f"Slippage: {stage.slippage_bps} bps")
    _execute(ctx, [stage])


@app.command("set-pair")
def set_pair(
    ctx: typer.Context,
    pair: Optional[str] = typer.Option(None, "--pair", help="Liquidity pair address."),
    tx_type: int = _tx_type_option(TxType.FEE_MARKET),
) -> None:
    """Register the liquidity pair in the proxy's allow-list unless already registered."""
    try:
        cfg = ctx.obj.config.with_overrides(pair=pair)
        stage = RegisterPair(proxy=cfg.proxy, pair=cfg.pair, policy=_policy(SET_PAIR_GAS_LIMIT, tx_type))
    except UpgradeError as e:
        _fail(str(e))
    _execute(ctx, [stage])


@app.command("upgrade")
def upgrade(
    ctx: typer.Context,
    implementation: Optional[str] = typer.Option(None, "--implementation", help="New implementation address."),
    call_data: Optional[str] = typer.Option(None, "--call-data", help="0x-hex data run after the switch."),
    tx_type: int = _tx_type_option(TxType.FEE_MARKET),
) -> None:
    """Point the proxy at the new implementation (upgradeToAndCall). Always submits."""
    try:
        cfg = ctx.obj.config.with_overrides(implementation=implementation, upgrade_call_data=call_data)
        stage = SwitchProxyTarget(
            proxy=cfg.proxy,
            implementation=cfg.implementation,
            call_data=cfg.upgrade_call_data,
            policy=_policy(UPGRADE_GAS_LIMIT, tx_type),
        )
    except UpgradeError as e:
        _fail(str(e))
    _execute(ctx, [stage])


# --- whole sequence -----------------------------------------------------------


def build_stages(cfg: UpgradeConfig, *, from_stage: str = STAGE_ORDER[0], artifact: Optional[Path] = None) -> List[Stage]:
    """The ordered stage list for `run`, starting at `from_stage`."""
    if from_stage not in STAGE_ORDER:
        raise typer.BadParameter(f"unknown stage {from_stage!r}; choose from {', '.join(STAGE_ORDER)}")
    wanted = STAGE_ORDER[STAGE_ORDER.index(from_stage):]
    deploying = "deploy-implementation" in wanted

    stages: List[Stage] = []
    if deploying:
        stages.append(DeployImplementation(load_artifact(artifact or cfg.artifact)))
    if "initialize-config" in wanted:
        stages.append(
            InitializeConfiguration(
                proxy=cfg.proxy,
                router=cfg.router,
                swap_threshold=cfg.swap_threshold,
                slippage_bps=cfg.slippage_bps,
            )
        )
    if "register-pair" in wanted:
        stages.append(RegisterPair(proxy=cfg.proxy, pair=cfg.pair))
    # a fresh deploy in this run supersedes the configured address
    stages.append(
        SwitchProxyTarget(
            proxy=cfg.proxy,
            implementation=None if deploying else cfg.implementation,
            call_data=cfg.upgrade_call_data,
        )
    )
    return stages


@app.command("run")
def run_all(
    ctx: typer.Context,
    from_stage: str = typer.Option(STAGE_ORDER[0], "--from-stage", help=f"First stage: {' | '.join(STAGE_ORDER)}"),
    artifact: Optional[Path] = typer.Option(None, "--artifact", "-a", help="Build JSON for the deploy stage."),
) -> None:
    """Run the stages in order, stopping at the first failure."""
    try:
        stages = build_stages(ctx.obj.config, from_stage=from_stage, artifact=artifact)
    except UpgradeError as e:
        _fail(str(e))
    report = _execute(ctx, stages, show_balance=True)
    typer.echo(f"Transactions submitted: {report.transactions}")


@app.command("status")
def status(ctx: typer.Context) -> None:
    """Show configuration and the upgrade state read from the chain."""
    cfg: UpgradeConfig = ctx.obj.config
    out: Dict[str, Any] = {"config": cfg.to_dict()}
    try:
        chain = make_chain(cfg)
        out["signer"] = chain.address
        out["balance_wei"] = chain.get_balance(chain.address)
        out["current_implementation"] = read_implementation(chain, cfg.proxy)
        out["state"] = probe_state(
            chain,
            proxy=cfg.proxy,
            pair=cfg.pair,
            implementation=cfg.implementation,
        ).label
    except UpgradeError as e:
        _fail(str(e))
    _print_json(out)


@app.command("version")
def version() -> None:
    """Print the version."""
    typer.echo(f"proxy-upgrade {__version__}")


def main(argv: Optional[List[str]] = None) -> int:
    """
    Run the CLI and return an exit code. Unexpected exceptions are logged and
    turned into exit status 1.
    """
    try:
        rc = app(prog_name="proxy-upgrade", args=argv, standalone_mode=False)
        return int(rc or 0)
    except typer.Exit as e:
        return int(e.exit_code)
    except click.ClickException as e:
        e.show()
        return e.exit_code
    except typer.Abort:
        return 1
    except Exception as e:
        log.exception("unhandled_error", error=str(e))
        typer.echo(f"error: {e}", err=True)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
