import json
import os
from pathlib import Path

import pytest
from eth_utils import to_checksum_address
from typer.testing import CliRunner

from proxy_upgrade.cli import main as cli_main
from proxy_upgrade.cli.main import app, build_stages, main
from proxy_upgrade.config import UpgradeConfig
from proxy_upgrade.stages import InitializeConfiguration, RegisterPair, SwitchProxyTarget

from .fakes import NEW_IMPL, PAIR, SIGNER, FakeChain

runner = CliRunner()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("PROXY_UPGRADE_") or name in ("LOG_LEVEL", "LOG_FORMAT"):
            monkeypatch.delenv(name)


@pytest.fixture
def fake(monkeypatch: pytest.MonkeyPatch) -> FakeChain:
    chain = FakeChain()
    monkeypatch.setattr(cli_main, "make_chain", lambda cfg: chain)
    return chain


@pytest.fixture
def artifact(tmp_path: Path) -> Path:
    p = tmp_path / "NONOS_NOX_MAINNET_V2.json"
    p.write_text(json.dumps({"bytecode": {"object": "0x6080604052348015600f57600080fd5b50"}}))
    return p


def run_cli(args: list, code: int = 0) -> str:
    result = runner.invoke(app, args)
    assert result.exit_code == code, result.output
    return result.output


def test_initialize_then_rerun_is_noop(fake: FakeChain) -> None:
    first = run_cli(["initialize"])
    assert f"Signer: {SIGNER}" in first
    assert "[initialize-config] tx 0x" in first
    assert "v2Initialized: True" in first
    assert "State: Initialized" in first
    assert fake.threshold == 1000 * 10**18
    assert fake.slippage == 100

    second = run_cli(["initialize"])
    assert "already applied, nothing submitted" in second
    assert len(fake.sent) == 1


def test_initialize_flags_override_defaults(fake: FakeChain) -> None:
    run_cli(["initialize", "--threshold", "5000", "--slippage-bps", "250"])

    assert fake.threshold == 5000
    assert fake.slippage == 250
    assert fake.sent[0].gas_limit == 300_000


def test_initialize_rejects_out_of_range_slippage(fake: FakeChain) -> None:
    output = run_cli(["initialize", "--slippage-bps", "20000"], code=1)

    assert "slippage" in output
    assert fake.sent == []


def test_params_file_feeds_stage_values(fake: FakeChain, tmp_path: Path) -> None:
    params = tmp_path / "params.yml"
    params.write_text("slippage_bps: 75\n")

    run_cli(["--params", str(params), "initialize"])

    assert fake.slippage == 75


def test_set_pair(fake: FakeChain) -> None:
    output = run_cli(["set-pair"])

    assert "State: PairRegistered" in output
    assert "isPair: True" in output
    assert fake.pairs[to_checksum_address(PAIR)] is True
    assert fake.sent[0].gas_limit == 100_000


def test_upgrade_revert_exits_nonzero(fake: FakeChain) -> None:
    fake.revert_functions.add("upgradeToAndCall")

    output = run_cli(["upgrade"], code=1)

    assert "[switch-proxy-target] FAILED" in output
    assert "State:" not in output


def test_upgrade_switches_implementation(fake: FakeChain) -> None:
    output = run_cli(["upgrade", "--implementation", NEW_IMPL])

    assert fake.implementation == to_checksum_address(NEW_IMPL)
    assert f"implementation: {to_checksum_address(NEW_IMPL)}" in output
    assert "State: Live" in output


def test_unsupported_tx_type(fake: FakeChain) -> None:
    result = runner.invoke(app, ["upgrade", "--tx-type", "1"])

    assert result.exit_code != 0
    assert fake.sent == []


def test_deploy_prints_new_address(fake: FakeChain, artifact: Path) -> None:
    output = run_cli(["deploy", "--artifact", str(artifact)])

    addr = fake.deployed[0]
    assert "Bytecode length: 17 bytes" in output
    assert "Balance: 5.0 ETH" in output
    assert f"Implementation deployed at: {addr}" in output
    assert f"npx hardhat verify --network mainnet {addr}" in output
    assert fake.sent[0].gas_limit == 8_000_000
    assert int(fake.sent[0].tx_type) == 0


def test_deploy_missing_artifact(fake: FakeChain, tmp_path: Path) -> None:
    output = run_cli(["deploy", "--artifact", str(tmp_path / "nope.json")], code=1)

    assert "artifact not found" in output
    assert fake.sent == []


def test_run_full_sequence(fake: FakeChain, artifact: Path) -> None:
    output = run_cli(["run", "--artifact", str(artifact)])

    assert "Transactions submitted: 4" in output
    assert "State: Live" in output
    assert fake.implementation == fake.deployed[0]


def test_run_reports_deployed_address_when_next_read_fails(fake: FakeChain, artifact: Path) -> None:
    fake.v1_until_upgrade = True

    output = run_cli(["run", "--artifact", str(artifact)], code=1)

    deployed = fake.deployed[0]
    assert f"[deploy-implementation] contract deployed at {deployed}" in output
    assert f"Implementation deployed at: {deployed}" in output
    assert f"proxy-upgrade upgrade --implementation {deployed}" in output
    assert "[initialize-config] FAILED: precondition check" in output
    assert len(fake.sent) == 1


def test_run_from_later_stage_uses_configured_implementation(fake: FakeChain) -> None:
    fake.initialized = True

    output = run_cli(["run", "--from-stage", "register-pair"])

    assert "Transactions submitted: 2" in output
    assert fake.deployed == []
    assert fake.implementation == to_checksum_address(NEW_IMPL)


def test_run_unknown_stage(fake: FakeChain) -> None:
    result = runner.invoke(app, ["run", "--from-stage", "teardown"])

    assert result.exit_code != 0
    assert fake.sent == []


def test_build_stages_order() -> None:
    stages = build_stages(UpgradeConfig(), from_stage="initialize-config")

    assert [type(s) for s in stages] == [InitializeConfiguration, RegisterPair, SwitchProxyTarget]
    assert stages[-1].implementation == to_checksum_address(NEW_IMPL)


def test_status_reports_state(fake: FakeChain) -> None:
    result = runner.invoke(app, ["status"])
    assert result.exit_code == 0, result.output

    data = json.loads(result.stdout)
    assert data["signer"] == SIGNER
    assert data["balance_wei"] == 5 * 10**18
    assert data["state"] == "Deployed"
    assert data["config"]["private_key"] is None
    assert data["current_implementation"] == fake.implementation


def test_status_without_key_fails() -> None:
    output = run_cli(["status"], code=1)

    assert "PRIVATE_KEY" in output


def test_status_with_malformed_key_fails_cleanly(monkeypatch: pytest.MonkeyPatch) -> None:
    bad_key = "0x" + "zz" * 32
    monkeypatch.setenv("PROXY_UPGRADE_PRIVATE_KEY", bad_key)

    output = run_cli(["status"], code=1)

    assert "not a valid secp256k1 private key" in output
    assert bad_key not in output
    assert main(["status"]) == 1

    monkeypatch.setenv("PROXY_UPGRADE_PRIVATE_KEY", "0x1234")
    assert "not a valid secp256k1 private key" in run_cli(["status"], code=1)


def test_json_logs(fake: FakeChain) -> None:
    output = run_cli(["--log-format", "json", "set-pair"])

    assert '"event": "step_applied"' in output


def test_version() -> None:
    assert "proxy-upgrade 0.2.0" in run_cli(["version"])


def test_log_level_is_case_insensitive() -> None:
    assert "proxy-upgrade" in run_cli(["--log-level", "debug", "version"])


def test_main_returns_exit_codes(fake: FakeChain, capsys: pytest.CaptureFixture) -> None:
    assert main(["version"]) == 0
    assert "proxy-upgrade" in capsys.readouterr().out

    fake.revert_functions.add("upgradeToAndCall")
    assert main(["upgrade"]) == 1
