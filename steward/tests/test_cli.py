"""
Tests for steward/cli.py — Click command wiring.

The orchestrator entry points are patched; these tests only check that
options reach them intact and that exit codes pass through.
"""

import os
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from steward.cli import cli
from steward.locking import NodeLock
from steward.marker import CordonMarker
from steward.models import NodeRole, PowerAction

_PATCH_GET_CONFIG = "steward.cli.get_config"
_PATCH_LOGGING = "steward.cli.configure_logging"
_PATCH_ORCHESTRATOR = "steward.orchestrator.MaintenanceOrchestrator"
_PATCH_AUDIT = "steward.orchestrator.audit_node"
_PATCH_ROLLBACK = "steward.orchestrator.rollback_node"
_PATCH_RESTORE = "steward.orchestrator.restore_node"


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def patched_config(cfg):
    with patch(_PATCH_GET_CONFIG, return_value=cfg) as get_config, patch(_PATCH_LOGGING):
        yield get_config


def _orchestrator_mock(code: int = 0) -> MagicMock:
    cls = MagicMock()
    cls.return_value.run = AsyncMock(return_value=code)
    return cls


class TestHelp:
    def test_group_help_lists_commands(self, runner):
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        for command in ("shutdown", "reboot", "audit", "rollback", "restore", "status"):
            assert command in result.output

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_node_is_required(self, runner, patched_config):
        result = runner.invoke(cli, ["shutdown"])
        assert result.exit_code == 2
        assert "--node" in result.output


class TestConfigErrors:
    def test_config_error_exits_1(self, runner):
        with patch(_PATCH_GET_CONFIG, side_effect=ValueError("bad STEWARD_POLL_INTERVAL_S")):
            result = runner.invoke(cli, ["status"])

        assert result.exit_code == 1
        assert "Config error" in result.output

    def test_missing_env_file(self, runner, tmp_path):
        result = runner.invoke(cli, ["--config", str(tmp_path / "absent.env"), "status"])
        assert result.exit_code == 1
        assert "Cannot read config file" in result.output

    def test_env_file_loaded(self, runner, tmp_path, patched_config):
        env = tmp_path / "steward.env"
        env.write_text("# comment\nSTEWARD_CONFIRM_TOKEN='PROCEED'\n", encoding="utf-8")

        with patch.dict(os.environ):
            os.environ.pop("STEWARD_CONFIRM_TOKEN", None)
            result = runner.invoke(cli, ["--config", str(env), "status"])
            token = os.environ.get("STEWARD_CONFIRM_TOKEN")

        assert result.exit_code == 0
        assert token == "PROCEED"
        patched_config.cache_clear.assert_called()


class TestShutdown:
    def test_options_reach_orchestrator(self, runner, patched_config, cfg):
        cls = _orchestrator_mock(0)
        with patch(_PATCH_ORCHESTRATOR, cls):
            result = runner.invoke(cli, [
                "shutdown", "--node", "worker-2", "--role", "worker",
                "--grace-period", "45", "--force-timeout", "200", "--storage-wait", "90",
                "--dry-run", "--peer-node", "cp-1", "--peer-node", "worker-3",
                "--drain-strategy", "kubectl",
            ])

        assert result.exit_code == 0, result.output
        passed_cfg, options = cls.call_args[0]
        assert passed_cfg is cfg
        assert options.node == "worker-2"
        assert options.role is NodeRole.WORKER
        assert (options.grace_period, options.force_timeout, options.storage_wait) == (45, 200, 90)
        assert options.dry_run is True
        assert options.peer_nodes == ["cp-1", "worker-3"]
        assert options.drain_strategy == "kubectl"
        assert options.action is PowerAction.POWEROFF

    def test_exit_code_passes_through(self, runner, patched_config):
        with patch(_PATCH_ORCHESTRATOR, _orchestrator_mock(3)):
            result = runner.invoke(cli, ["shutdown", "--node", "worker-2"])
        assert result.exit_code == 3

    def test_shutdown_action_reboot(self, runner, patched_config):
        cls = _orchestrator_mock(0)
        with patch(_PATCH_ORCHESTRATOR, cls):
            runner.invoke(cli, ["shutdown", "--node", "worker-2", "--action", "reboot"])
        assert cls.call_args[0][1].action is PowerAction.REBOOT

    def test_reboot_command(self, runner, patched_config):
        cls = _orchestrator_mock(0)
        with patch(_PATCH_ORCHESTRATOR, cls):
            result = runner.invoke(cli, ["reboot", "--node", "cp-1", "--role", "control-plane"])

        assert result.exit_code == 0
        options = cls.call_args[0][1]
        assert options.action is PowerAction.REBOOT
        assert options.role is NodeRole.CONTROL_PLANE

    def test_role_defaults_to_detection(self, runner, patched_config):
        cls = _orchestrator_mock(0)
        with patch(_PATCH_ORCHESTRATOR, cls):
            runner.invoke(cli, ["shutdown", "--node", "worker-2"])
        assert cls.call_args[0][1].role is None

    def test_log_level_override(self, runner, patched_config):
        with patch.dict(os.environ), patch(_PATCH_ORCHESTRATOR, _orchestrator_mock(0)):
            runner.invoke(cli, ["--log-level", "debug", "shutdown", "--node", "worker-2"])
            level = os.environ["STEWARD_LOG_LEVEL"]

        assert level == "DEBUG"
        patched_config.cache_clear.assert_called()


class TestRecoveryCommands:
    def test_audit(self, runner, patched_config):
        audit = AsyncMock(return_value=1)
        with patch(_PATCH_AUDIT, audit):
            result = runner.invoke(cli, ["audit", "--node", "worker-2", "--allow-single-replica"])

        assert result.exit_code == 1
        options = audit.call_args[0][1]
        assert options.dry_run is True
        assert options.allow_single_replica is True

    def test_rollback(self, runner, patched_config, cfg):
        rollback = AsyncMock(return_value=0)
        with patch(_PATCH_ROLLBACK, rollback):
            result = runner.invoke(cli, ["rollback", "--node", "worker-2"])

        assert result.exit_code == 0
        assert rollback.call_args[0] == (cfg, "worker-2")

    def test_restore_wait(self, runner, patched_config):
        restore = AsyncMock(return_value=0)
        with patch(_PATCH_RESTORE, restore):
            result = runner.invoke(cli, ["restore", "--node", "worker-2", "--wait", "600"])

        assert result.exit_code == 0
        assert restore.call_args[1]["wait_s"] == 600.0


class TestStatus:
    def test_lists_markers_and_locks(self, runner, patched_config, cfg):
        CordonMarker(cfg.marker_dir, "worker-2").write("abcd1234")
        NodeLock(cfg.lock_dir, "worker-2").acquire()

        result = runner.invoke(cli, ["status"])

        assert result.exit_code == 0
        assert "worker-2" in result.output
        assert "abcd1234" in result.output

    def test_empty(self, runner, patched_config):
        result = runner.invoke(cli, ["status"])
        assert result.exit_code == 0
