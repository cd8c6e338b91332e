"""Tests for the talos-node-upgrade command."""

import signal
from pathlib import Path
from typing import Dict

import pytest

import talos_node_upgrade
from talos_client.errors import TalosctlError
from talos_client.models import RebootMode
from talos_node_upgrade import EXIT_FAILED, EXIT_INTERRUPTED, EXIT_OK, EXIT_USAGE, main
from tests.conftest import FakeOracle, FakeTalosClient


@pytest.fixture
def wire(monkeypatch: pytest.MonkeyPatch):
    """Replace client construction with fakes and return them."""
    fakes: Dict[str, object] = {
        "client": FakeTalosClient(tag="v1.5.0"),
        "oracle": FakeOracle("abc123"),
    }

    def create_client(node, settings, cancel=None):
        fakes["settings"] = settings
        return fakes["client"]

    monkeypatch.setattr(talos_node_upgrade, "create_talos_client", create_client)
    monkeypatch.setattr(
        talos_node_upgrade, "create_variant_oracle", lambda settings, cancel=None: fakes["oracle"]
    )
    monkeypatch.setattr(talos_node_upgrade, "check_talosctl", lambda: True)
    return fakes


def test_up_to_date_node_exits_zero(wire, capsys) -> None:
    wire["client"] = FakeTalosClient(tag="v1.6.0", image="factory.talos.dev/installer/abc123:v1.6.0")

    assert main(["--node", "node-a", "--tag", "v1.6.0"]) == EXIT_OK

    assert "node is up-to-date (schematic: abc123, tag: v1.6.0)" in capsys.readouterr().out
    assert wire["client"].upgrades == []


def test_dispatch_prints_acknowledgement(wire, capsys) -> None:
    assert main(["--node", "node-a", "--tag", "v1.6.0", "--reboot-mode", "powercycle", "--no-stage"]) == EXIT_OK

    request = wire["client"].upgrades[0]
    assert request.image == "factory.talos.dev/installer/abc123:v1.6.0"
    assert request.reboot_mode == RebootMode.POWERCYCLE
    assert request.stage is False
    assert "upgrade started: Upgrade request received" in capsys.readouterr().out


def test_stage_defaults_to_true(wire) -> None:
    main(["--node", "node-a", "--tag", "v1.6.0"])

    assert wire["client"].upgrades[0].stage is True
    assert wire["client"].upgrades[0].preserve is True


def test_identity_mismatch_exits_non_zero(wire, capsys) -> None:
    wire["client"] = FakeTalosClient(nodename="node-b")

    assert main(["--node", "node-a", "--tag", "v1.6.0"]) == EXIT_FAILED

    output = capsys.readouterr().out
    assert "identity check" in output
    assert "node-a" in output


def test_upgrade_failure_exits_non_zero(wire) -> None:
    wire["client"].errors["upgrade"] = TalosctlError("connection refused")

    assert main(["--node", "node-a", "--tag", "v1.6.0"]) == EXIT_FAILED


def test_dry_run_sends_nothing(wire, capsys) -> None:
    assert main(["--node", "node-a", "--tag", "v1.6.0", "--dry-run"]) == EXIT_OK

    assert wire["client"].upgrades == []
    assert "DRY RUN" in capsys.readouterr().out


def test_wait_until_converged(wire) -> None:
    wire["client"] = FakeTalosClient(tag="v1.5.0", converge=True)

    assert main(["--node", "node-a", "--tag", "v1.6.0", "--wait"]) == EXIT_OK


def test_wait_timeout_exits_non_zero(wire, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(talos_node_upgrade, "wait_for_tag", lambda *args, **kwargs: False)

    assert main(["--node", "node-a", "--tag", "v1.6.0", "--wait"]) == EXIT_FAILED


def test_config_file_is_used(wire, tmp_path: Path) -> None:
    config_file = tmp_path / "nodes.yaml"
    config_file.write_text("talosconfig: /etc/talos/config\nnodes:\n  node-a:\n    reboot_mode: powercycle\n")

    assert main(["--node", "node-a", "--tag", "v1.6.0", "--config", str(config_file)]) == EXIT_OK

    assert wire["settings"].talosconfig == "/etc/talos/config"
    assert wire["client"].upgrades[0].reboot_mode == RebootMode.POWERCYCLE


def test_missing_config_file_is_usage_error(wire, tmp_path: Path) -> None:
    missing = str(tmp_path / "missing.yaml")

    assert main(["--node", "node-a", "--tag", "v1.6.0", "--config", missing]) == EXIT_USAGE


def test_invalid_timeout_is_usage_error(wire) -> None:
    assert main(["--node", "node-a", "--tag", "v1.6.0", "--timeout", "0"]) == EXIT_USAGE


def test_required_arguments() -> None:
    with pytest.raises(SystemExit) as exc_info:
        main(["--node", "node-a"])

    assert exc_info.value.code == 2


def test_sigterm_handler_is_restored(wire) -> None:
    def previous(signum, frame):
        pass

    original = signal.signal(signal.SIGTERM, previous)
    try:
        assert main(["--node", "node-a", "--tag", "v1.6.0"]) == EXIT_OK
        assert signal.getsignal(signal.SIGTERM) is previous
    finally:
        signal.signal(signal.SIGTERM, original)


def test_sigterm_during_cycle_cancels(wire) -> None:
    class TerminatedClient(FakeTalosClient):
        def version(self):
            signal.getsignal(signal.SIGTERM)(signal.SIGTERM, None)
            return super().version()

    wire["client"] = TerminatedClient(tag="v1.5.0")

    assert main(["--node", "node-a", "--tag", "v1.6.0"]) == EXIT_INTERRUPTED
    assert wire["client"].upgrades == []
