"""
Tests for steward/confirm.py — ConfirmationGate.
"""

import io
from unittest.mock import MagicMock

import click
import pytest
from rich.console import Console

from steward.config import MaintenanceOptions
from steward.confirm import ConfirmationGate
from steward.exceptions import ConfirmationDeclined, InterruptedSession
from steward.models import HealthReport, NodeRole


def _console() -> Console:
    return Console(file=io.StringIO(), width=120, highlight=False)


def _report(*warnings: str) -> HealthReport:
    return HealthReport(node="worker-1", cluster_reachable=True, node_ready=True, warnings=warnings)


class TestConfirm:
    def test_exact_token_accepts(self):
        slog = MagicMock()
        gate = ConfirmationGate(_console(), slog=slog, prompt=lambda text: "YES")

        gate.confirm(_report(), MaintenanceOptions(node="worker-1"), NodeRole.WORKER)

        slog.decision.assert_called_once()
        assert slog.decision.call_args[0][2] is True

    @pytest.mark.parametrize("answer", ["yes", "Y", "", "YES please", "no"])
    def test_anything_else_declines(self, answer):
        gate = ConfirmationGate(_console(), prompt=lambda text: answer)

        with pytest.raises(ConfirmationDeclined) as exc_info:
            gate.confirm(_report(), MaintenanceOptions(node="worker-1"), NodeRole.WORKER)
        assert exc_info.value.answer == answer.strip()

    def test_surrounding_whitespace_tolerated(self):
        gate = ConfirmationGate(_console(), prompt=lambda text: "  YES\n")
        gate.confirm(_report(), MaintenanceOptions(node="worker-1"), NodeRole.WORKER)

    def test_eof_declines(self):
        def _eof(text):
            raise EOFError

        gate = ConfirmationGate(_console(), prompt=_eof)
        with pytest.raises(ConfirmationDeclined):
            gate.confirm(_report(), MaintenanceOptions(node="worker-1"), NodeRole.WORKER)

    def test_click_abort_declines(self):
        def _abort(text):
            raise click.Abort()

        gate = ConfirmationGate(_console(), prompt=_abort)
        with pytest.raises(ConfirmationDeclined):
            gate.confirm(_report(), MaintenanceOptions(node="worker-1"), NodeRole.WORKER)

    def test_custom_token(self):
        gate = ConfirmationGate(_console(), token="worker-1", prompt=lambda text: "worker-1")
        gate.confirm(_report(), MaintenanceOptions(node="worker-1"), NodeRole.WORKER)

    def test_dry_run_auto_accepts_without_prompting(self):
        prompt = MagicMock()
        gate = ConfirmationGate(_console(), prompt=prompt)

        gate.confirm(_report("low memory"), MaintenanceOptions(node="worker-1", dry_run=True), NodeRole.WORKER)

        prompt.assert_not_called()

    def test_report_and_plan_are_shown(self):
        console = _console()
        gate = ConfirmationGate(console, prompt=lambda text: "YES")

        gate.confirm(_report("2 pod(s) cluster-wide are not Running/Succeeded"),
                     MaintenanceOptions(node="worker-1"), NodeRole.WORKER, service="k3s-agent")

        out = console.file.getvalue()
        assert "MAINTENANCE PLAN" in out
        assert "worker-1" in out
        assert "not Running/Succeeded" in out

    def test_guard_wraps_prompt(self):
        entered = []

        class _Guard:
            def __enter__(self):
                entered.append(True)

            def __exit__(self, *exc):
                return False

        gate = ConfirmationGate(_console(), prompt=lambda text: "YES", guard=_Guard)
        gate.confirm(_report(), MaintenanceOptions(node="worker-1"), NodeRole.WORKER)

        assert entered == [True]

    def test_interrupt_propagates(self):
        def _signal(text):
            raise InterruptedSession("SIGINT")

        gate = ConfirmationGate(_console(), prompt=_signal)
        with pytest.raises(InterruptedSession):
            gate.confirm(_report(), MaintenanceOptions(node="worker-1"), NodeRole.WORKER)


class TestConfirmOverride:
    def test_accept(self):
        gate = ConfirmationGate(_console(), prompt=lambda text: "YES")
        gate.confirm_override("1 volume(s) still attached")

    def test_decline(self):
        gate = ConfirmationGate(_console(), prompt=lambda text: "n")
        with pytest.raises(ConfirmationDeclined):
            gate.confirm_override("1 volume(s) still attached")

    def test_dry_run_does_not_prompt(self):
        prompt = MagicMock()
        ConfirmationGate(_console(), prompt=prompt).confirm_override("x", dry_run=True)
        prompt.assert_not_called()
