"""Tests for the ocimachine CLI."""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
import yaml
from click.testing import CliRunner
from rich.console import Console

from conftest import base_options
from ocimachine.cli import main
from ocimachine.driver import OCIDriver
from ocimachine.errors import ConvergenceTimeoutError, ImageNotFoundError, ProviderError
from ocimachine.models import InstanceRecord
from ocimachine.store import MachineStore

INSTANCE_ID = "ocid1.instance.oc1..node"


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def oci_client():
    client = MagicMock()
    client.launch_instance.return_value = INSTANCE_ID
    client.get_instance_ip.return_value = "129.1.2.3"
    client.get_instance.return_value = SimpleNamespace(lifecycle_state="RUNNING")
    return client


@pytest.fixture(autouse=True)
def _wired(oci_client):
    """Mock the SDK client factory, key generation, and widen the console."""
    wide = Console(width=200)
    with patch("ocimachine.cli.machine.create_client", return_value=oci_client) as factory, \
            patch("ocimachine.driver.write_key_pair", return_value="ssh-rsa AAAA\n"), \
            patch("ocimachine.cli.machine.console", wide), \
            patch("ocimachine.cli._common.console", wide):
        yield factory


def _flag_args(**overrides):
    args = []
    for name, value in base_options(**overrides).items():
        if value is None:
            continue
        args += [f"--{name}", str(value)]
    return args


def _saved(home, name="node1"):
    return json.loads((home / "machines" / name / "config.json").read_text())


def _seed(home, driver_config, name="node1", instance_id=INSTANCE_ID):
    MachineStore(home).save(OCIDriver(
        name, home, config=driver_config, record=InstanceRecord(instance_id=instance_id),
    ))


class TestCreate:
    """ocimachine create"""

    def test_create(self, runner, tmp_machine_home, oci_client):
        result = runner.invoke(
            main, ["--home", str(tmp_machine_home), "create", "node1", *_flag_args()],
        )
        assert result.exit_code == 0, result.output
        assert "node1 is running" in result.output
        assert "tcp://129.1.2.3:2376" in result.output

        saved = _saved(tmp_machine_home)
        assert saved["record"]["instance_id"] == INSTANCE_ID
        assert saved["record"]["ip_address"] == "129.1.2.3"
        oci_client.resolve_image_id.assert_called_once()

    def test_missing_flag(self, runner, tmp_machine_home, oci_client):
        args = _flag_args(**{"oci-vcn-id": None})
        result = runner.invoke(main, ["--home", str(tmp_machine_home), "create", "node1", *args])
        assert result.exit_code == 1
        assert "no OCI VCNID specified" in result.output
        oci_client.launch_instance.assert_not_called()
        assert not (tmp_machine_home / "machines" / "node1").exists()

    def test_env_var_supplies_flag(self, runner, tmp_machine_home):
        args = _flag_args(**{"oci-region": None})
        result = runner.invoke(
            main, ["--home", str(tmp_machine_home), "create", "node1", *args],
            env={"OCI_REGION": "ap-tokyo-1"},
        )
        assert result.exit_code == 0, result.output
        assert _saved(tmp_machine_home)["config"]["region"] == "ap-tokyo-1"

    def test_config_file_fills_gaps(self, runner, tmp_machine_home):
        config_dir = tmp_machine_home / "config"
        config_dir.mkdir()
        (config_dir / "config.yaml").write_text(yaml.dump({
            "oci-region": "eu-frankfurt-1", "oci-ssh-user": "ubuntu",
        }))
        args = _flag_args(**{"oci-region": None})
        result = runner.invoke(main, ["--home", str(tmp_machine_home), "create", "node1", *args])
        assert result.exit_code == 0, result.output

        config = _saved(tmp_machine_home)["config"]
        assert config["region"] == "eu-frankfurt-1"
        assert config["ssh_user"] == "ubuntu"

    def test_config_file_string_false_keeps_standard_mode(self, runner, tmp_machine_home, tmp_path):
        config_file = tmp_path / "flags.yaml"
        config_file.write_text('oci-is-rover: "false"\n')
        result = runner.invoke(
            main,
            ["--home", str(tmp_machine_home), "create", "node1", "--config", str(config_file), *_flag_args()],
        )
        assert result.exit_code == 0, result.output
        assert _saved(tmp_machine_home)["config"]["is_rover"] is False

    def test_bad_poll_interval(self, runner, tmp_machine_home, oci_client):
        args = _flag_args(**{"oci-poll-interval": 0})
        result = runner.invoke(main, ["--home", str(tmp_machine_home), "create", "node1", *args])
        assert result.exit_code == 1
        assert "--oci-poll-interval" in result.output
        oci_client.resolve_image_id.assert_not_called()

    def test_precedence(self, runner, tmp_machine_home, tmp_path):
        config_file = tmp_path / "flags.yaml"
        config_file.write_text(yaml.dump({"oci-region": "from-file", "oci-node-shape": "file-shape"}))
        args = _flag_args(**{"oci-region": None, "oci-node-shape": "flag-shape"})
        result = runner.invoke(
            main,
            ["--home", str(tmp_machine_home), "create", "node1", "--config", str(config_file), *args],
            env={"OCI_REGION": "from-env", "OCI_NODE_SHAPE": "env-shape"},
        )
        assert result.exit_code == 0, result.output

        config = _saved(tmp_machine_home)["config"]
        assert config["region"] == "from-env"
        assert config["shape"] == "flag-shape"

    def test_image_not_found(self, runner, tmp_machine_home, oci_client):
        oci_client.resolve_image_id.side_effect = ImageNotFoundError("Nope-1.0")
        result = runner.invoke(
            main, ["--home", str(tmp_machine_home), "create", "node1", *_flag_args()],
        )
        assert result.exit_code == 1
        assert "Nope-1.0" in result.output
        oci_client.launch_instance.assert_not_called()

    def test_failed_wait_keeps_state(self, runner, tmp_machine_home, oci_client):
        oci_client.wait_for_state.side_effect = ConvergenceTimeoutError("did not reach RUNNING")
        result = runner.invoke(
            main, ["--home", str(tmp_machine_home), "create", "node1", *_flag_args()],
        )
        assert result.exit_code == 1
        assert "ocimachine rm node1" in result.output
        assert _saved(tmp_machine_home)["record"]["instance_id"] == INSTANCE_ID

    def test_existing_machine(self, runner, tmp_machine_home, driver_config):
        _seed(tmp_machine_home, driver_config)
        result = runner.invoke(
            main, ["--home", str(tmp_machine_home), "create", "node1", *_flag_args()],
        )
        assert result.exit_code == 1
        assert "already exists" in result.output


class TestLifecycleCommands:
    """start, stop, restart, kill, rm"""

    @pytest.mark.parametrize("command,method", [
        ("start", "start_instance"),
        ("stop", "stop_instance"),
        ("restart", "restart_instance"),
        ("kill", "terminate_instance"),
    ])
    def test_action(self, runner, tmp_machine_home, driver_config, oci_client, command, method):
        _seed(tmp_machine_home, driver_config)
        result = runner.invoke(main, ["--home", str(tmp_machine_home), command, "node1"])
        assert result.exit_code == 0, result.output
        getattr(oci_client, method).assert_called_once_with(INSTANCE_ID)

    def test_unknown_machine(self, runner, tmp_machine_home):
        result = runner.invoke(main, ["--home", str(tmp_machine_home), "start", "ghost"])
        assert result.exit_code == 1
        assert "does not exist" in result.output

    def test_stop_failure(self, runner, tmp_machine_home, driver_config, oci_client):
        _seed(tmp_machine_home, driver_config)
        oci_client.stop_instance.side_effect = ProviderError("instance action STOP failed")
        result = runner.invoke(main, ["--home", str(tmp_machine_home), "stop", "node1"])
        assert result.exit_code == 1
        assert "STOP failed" in result.output

    def test_rm(self, runner, tmp_machine_home, driver_config, oci_client):
        _seed(tmp_machine_home, driver_config)
        result = runner.invoke(main, ["--home", str(tmp_machine_home), "rm", "node1"])
        assert result.exit_code == 0, result.output
        oci_client.terminate_instance.assert_called_once_with(INSTANCE_ID)
        assert not (tmp_machine_home / "machines" / "node1").exists()

    def test_rm_without_instance(self, runner, tmp_machine_home, driver_config, oci_client):
        _seed(tmp_machine_home, driver_config, instance_id=None)
        result = runner.invoke(main, ["--home", str(tmp_machine_home), "rm", "node1"])
        assert result.exit_code == 0, result.output
        oci_client.terminate_instance.assert_not_called()

    def test_rm_failure_keeps_state(self, runner, tmp_machine_home, driver_config, oci_client):
        _seed(tmp_machine_home, driver_config)
        oci_client.terminate_instance.side_effect = ProviderError("terminate instance failed")
        result = runner.invoke(main, ["--home", str(tmp_machine_home), "rm", "node1"])
        assert result.exit_code == 1
        assert (tmp_machine_home / "machines" / "node1").exists()

    def test_rm_force(self, runner, tmp_machine_home, driver_config, oci_client):
        _seed(tmp_machine_home, driver_config)
        oci_client.terminate_instance.side_effect = ProviderError("terminate instance failed")
        result = runner.invoke(main, ["--home", str(tmp_machine_home), "rm", "-f", "node1"])
        assert result.exit_code == 0, result.output
        assert not (tmp_machine_home / "machines" / "node1").exists()


class TestQueryCommands:
    """ip, url, status, ls, flags"""

    def test_ip_cached(self, runner, tmp_machine_home, driver_config):
        _seed(tmp_machine_home, driver_config)
        result = runner.invoke(main, ["--home", str(tmp_machine_home), "ip", "node1"])
        assert result.exit_code == 0, result.output
        assert "129.1.2.3" in result.output
        assert _saved(tmp_machine_home)["record"]["ip_address"] == "129.1.2.3"

    def test_url(self, runner, tmp_machine_home, driver_config):
        _seed(tmp_machine_home, driver_config)
        result = runner.invoke(main, ["--home", str(tmp_machine_home), "url", "node1"])
        assert "tcp://129.1.2.3:2376" in result.output

    def test_status(self, runner, tmp_machine_home, driver_config, oci_client):
        _seed(tmp_machine_home, driver_config)
        oci_client.get_instance.return_value = SimpleNamespace(lifecycle_state="STOPPED")
        result = runner.invoke(main, ["--home", str(tmp_machine_home), "status", "node1"])
        assert result.exit_code == 0, result.output
        assert "Stopped" in result.output

    def test_ls_empty(self, runner, tmp_machine_home):
        result = runner.invoke(main, ["--home", str(tmp_machine_home), "ls"])
        assert result.exit_code == 0
        assert "No machines found" in result.output

    def test_ls(self, runner, tmp_machine_home, driver_config, oci_client):
        _seed(tmp_machine_home, driver_config, name="alpha")
        _seed(tmp_machine_home, driver_config, name="beta")
        oci_client.get_instance.side_effect = [
            SimpleNamespace(lifecycle_state="RUNNING"),
            ProviderError("get instance failed"),
        ]
        result = runner.invoke(main, ["--home", str(tmp_machine_home), "ls"])
        assert result.exit_code == 0, result.output
        assert "alpha" in result.output
        assert "Running" in result.output
        assert "Error" in result.output

    def test_flags(self, runner):
        result = runner.invoke(main, ["flags"])
        assert result.exit_code == 0
        assert "--oci-vcn-id" in result.output
        assert "OCI_POLL_TIMEOUT" in result.output

    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])
        assert "ocimachine" in result.output
