#!/usr/bin/env python3
"""
Steward — Confirmation Gate

The single interactive checkpoint before the first write.  Shows the
health report and the resolved plan, then requires the exact affirmative
token (``YES`` by default).  Anything else, including end-of-input,
raises :class:`~steward.exceptions.ConfirmationDeclined`.

In dry-run mode the gate auto-accepts; the session-wide dry-run flag
already guarantees nothing downstream is written.

The same gate asks for the storage-timeout override later in the
session (:meth:`ConfirmationGate.confirm_override`).

Author: Steward Project
Version: 0.1.0
"""

import contextlib
import logging
from typing import Callable, ContextManager, Optional

import click
from rich.console import Console

from steward.config import MaintenanceOptions
from steward.display import print_health_report, print_options
from steward.exceptions import ConfirmationDeclined
from steward.log import SessionLogger
from steward.models import HealthReport, NodeRole

log = logging.getLogger(__name__)

PromptFn = Callable[[str], str]


def _click_prompt(text: str) -> str:
    return click.prompt(text, default="", show_default=False)


class ConfirmationGate:
    """Interactive operator checkpoint.

    Args:
        console: Rich console for the report and plan.
        token: Exact answer that means "proceed".
        slog: Session log receiving every ``decision`` record.
        prompt: Reads one answer; defaults to :func:`click.prompt`.
        guard: Context manager factory entered around each blocking
            prompt (lets termination signals interrupt the read).
    """

    def __init__(
        self,
        console: Console,
        *,
        token: str = "YES",
        slog: Optional[SessionLogger] = None,
        prompt: Optional[PromptFn] = None,
        guard: Optional[Callable[[], ContextManager]] = None,
    ) -> None:
        self._console = console
        self._token = token
        self._slog = slog
        self._prompt = prompt or _click_prompt
        self._guard = guard or contextlib.nullcontext

    def _ask(self, question: str) -> str:
        try:
            with self._guard():
                answer = self._prompt(question)
        except (click.Abort, EOFError):
            answer = ""
        return (answer or "").strip()

    def _decide(self, question: str, answer: str) -> None:
        accepted = answer == self._token
        if self._slog is not None:
            self._slog.decision(question, answer, accepted)
        if not accepted:
            log.info("confirm: declined at %r (answer=%r)", question, answer)
            raise ConfirmationDeclined(question, answer)

    def confirm(
        self,
        report: HealthReport,
        options: MaintenanceOptions,
        role: NodeRole,
        *,
        service: Optional[str] = None,
    ) -> None:
        """Show the audit and plan, then require the token.

        Raises:
            ConfirmationDeclined: Any answer other than the exact token.
        """
        print_health_report(report, self._console)
        print_options(options, role, self._console, service=service)

        question = f"Proceed with {options.action.value} of {options.node}"
        if options.dry_run:
            self._console.print("  [cyan]Dry run: confirmation auto-accepted.[/cyan]")
            if self._slog is not None:
                self._slog.decision(question, "dry-run", True)
            return

        if report.warnings:
            self._console.print(
                f"  [yellow]{len(report.warnings)} warning(s) above. "
                "Proceeding accepts them.[/yellow]"
            )
        self._console.print(
            f"  Cordon, drain and {options.action.value} [bold]{options.node}[/bold]?"
        )
        answer = self._ask(f"Type {self._token} to proceed")
        self._decide(question, answer)

    def confirm_override(self, message: str, *, dry_run: bool = False) -> None:
        """Ask the operator to continue despite an unsafe condition.

        Raises:
            ConfirmationDeclined: The operator did not give the token.
        """
        self._console.print(f"  [bold yellow]⚠ {message}[/bold yellow]")
        if dry_run:
            self._console.print("  [cyan]Dry run: the operator would be asked to override here.[/cyan]")
            if self._slog is not None:
                self._slog.decision(message, "dry-run", True)
            return
        answer = self._ask(f"Type {self._token} to continue anyway")
        self._decide(message, answer)
