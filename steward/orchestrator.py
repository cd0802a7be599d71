#!/usr/bin/env python3
"""
Steward — Maintenance Orchestrator

Sequences one maintenance session and maps its outcome to an exit code:

    Preflight → Audit → Confirm → Cordon → Drain → Quiesce → Service → Power

Phases never overlap.  The sequence runs as its own task so the
interrupt handler can cancel it; rollback then happens here, outside the
cancelled task.

Exit codes:
    0    completed, or dry run completed
    1    preflight, cordon, command or internal failure
    3    declined at the confirmation gate or the storage override
    130  interrupted by SIGINT/SIGTERM (node rolled back)

An interrupt before preflight has taken the node lock exits 130
without touching the cluster.  A failure or operator abort after cordoning leaves the node cordoned
with its marker in place; ``steward rollback`` or ``steward restore``
finishes the job.

Also provides the recovery entry points used by the CLI:
    audit_node    read-only health report
    rollback_node uncordon a node left behind by an earlier session
    restore_node  wait for a returned node to be Ready, then uncordon

Author: Steward Project
Version: 0.1.0
"""

import asyncio
import logging
from typing import Optional

from rich.console import Console

from steward.audit import HealthAuditor
from steward.cluster import Collaborators, build_collaborators, node_is_ready
from steward.config import MaintenanceOptions, StewardConfig
from steward.confirm import ConfirmationGate, PromptFn
from steward.display import print_health_report, print_session_summary
from steward.drain import CordonDrainController
from steward.exceptions import (
    CommandError,
    ConfirmationDeclined,
    HealthWarning,
    InterruptedSession,
    PreflightFailure,
    StewardError,
)
from steward.interrupt import EXIT_INTERRUPTED, InterruptHandler
from steward.locking import NodeLock
from steward.log import SessionLogger
from steward.logger import bind_session_context, clear_session_context
from steward.marker import CordonMarker
from steward.models import Phase
from steward.power import PowerController
from steward.preflight import PreflightValidator
from steward.quiesce import StorageQuiescenceWaiter
from steward.retry import Clock, poll_until
from steward.session import MaintenanceSession, new_session_id
from steward.shutdown import ServiceShutdownController

log = logging.getLogger(__name__)

EXIT_OK: int = 0
EXIT_FAILURE: int = 1
EXIT_DECLINED: int = 3


class MaintenanceOrchestrator:
    """Runs one maintenance session end to end.

    Args:
        cfg: Host configuration.
        options: Resolved per-invocation options.
        console: Rich console for the report, prompts and summary.
        collab: Cluster and host clients; built from *cfg* when ``None``.
        prompt: Operator input function (tests inject answers here).
        clock: Time source for every bounded wait.
        slog: Session logger; created under ``cfg.log_dir`` when ``None``.
        lock_factory: Node lock constructor passed to preflight.
    """

    def __init__(
        self,
        cfg: StewardConfig,
        options: MaintenanceOptions,
        *,
        console: Optional[Console] = None,
        collab: Optional[Collaborators] = None,
        prompt: Optional[PromptFn] = None,
        clock: Optional[Clock] = None,
        slog: Optional[SessionLogger] = None,
        lock_factory=None,
    ) -> None:
        self.cfg = cfg
        self.options = options
        self.console = console or Console(highlight=False)
        self.session = MaintenanceSession(options)
        self.slog = slog or SessionLogger(
            cfg.log_dir, self.session.id, options.node, started_at=self.session.started_at
        )
        self.session.slog = self.slog

        if collab is None:
            collab = build_collaborators(
                cfg, dry_run=options.dry_run, on_mutation=self.slog.record_mutation
            )
        elif collab.runner.on_mutation is None:
            collab.runner.on_mutation = self.slog.record_mutation
        self.collab = collab

        self.clock = clock
        self.marker = CordonMarker(cfg.marker_dir, options.node)
        self.interrupt = InterruptHandler(collab, self.marker, self.session)
        self.gate = ConfirmationGate(
            self.console,
            token=cfg.confirm_token,
            slog=self.slog,
            prompt=prompt,
            guard=self.interrupt.prompting,
        )
        self._lock_factory = lock_factory
        self._lock: Optional[NodeLock] = None

    # ── Phase sequence ───────────────────────────────────────────────────

    async def _sequence(self) -> None:
        cfg, opts, session = self.cfg, self.options, self.session

        preflight = await PreflightValidator(
            cfg, self.collab, lock_factory=self._lock_factory
        ).validate(opts)
        self._lock = preflight.lock
        session.role = preflight.role
        stale = self.marker.read()
        if stale is not None:
            session.step(
                f"cordon marker from session {stale.session or '?'} "
                f"({stale.cordoned_at or 'unknown time'}) found; "
                "node is treated as cordoned by steward",
            )
        session.transition(Phase.VALIDATED)

        report = await HealthAuditor(cfg, self.collab, self.slog).audit(opts, preflight.role)
        for line in report.warnings:
            session.warn(HealthWarning("audit", line))
        session.transition(Phase.AUDITED)

        self.gate.confirm(report, opts, preflight.role, service=cfg.service_for(preflight.role))
        session.transition(Phase.CONFIRMED)

        drain = CordonDrainController(cfg, self.collab, session, self.marker, clock=self.clock)
        await drain.cordon()
        await drain.drain()

        await StorageQuiescenceWaiter(
            cfg, self.collab, session, self.gate, clock=self.clock
        ).wait()
        await ServiceShutdownController(cfg, self.collab, session, clock=self.clock).stop()
        await PowerController(cfg, self.collab, session).execute()

    # ── Outcome handling ─────────────────────────────────────────────────

    async def _roll_back(self) -> int:
        signame = self.interrupt.signame or "signal"
        self.slog.step(f"session interrupted by {signame}", level=logging.WARNING)
        if self._lock is None and not self.options.dry_run:
            # Any marker present belongs to another session or an earlier run.
            self.slog.step("interrupted before the node lock was taken; cluster not touched")
            self.console.print(
                f"[bold yellow]Interrupted by {signame}[/bold yellow] during preflight; "
                f"{self.options.node} not touched."
            )
            return EXIT_INTERRUPTED
        if await self.interrupt.rollback():
            self.console.print(
                f"[bold yellow]Interrupted by {signame}:[/bold yellow] "
                f"{self.options.node} left schedulable as it was found."
            )
        else:
            self.console.print(
                f"[bold red]Interrupted by {signame}, rollback failed:[/bold red] "
                f"{self.options.node} is still cordoned. "
                f"Run: steward rollback --node {self.options.node}"
            )
        return EXIT_INTERRUPTED

    def _cordoned_hint(self) -> None:
        if self.session.cordoned and not self.options.dry_run:
            self.console.print(
                f"  [yellow]{self.options.node} remains cordoned.[/yellow] "
                f"Run [bold]steward rollback --node {self.options.node}[/bold] to uncordon."
            )

    async def run(self) -> int:
        """Run the session and return its exit code.  Never raises
        :class:`StewardError`."""
        session = self.session
        bind_session_context(session.id, self.options.node)
        self.slog.session_start({"session": session.id, **self.options.summary()})
        log.info("session %s started for %s", session.id, self.options.node)

        task = asyncio.create_task(self._sequence(), name=f"steward:{session.id}")
        self.interrupt.install(asyncio.get_running_loop(), task)
        code, outcome = EXIT_FAILURE, "failed"
        try:
            await task
            code = EXIT_OK
            outcome = "dry-run" if self.options.dry_run else "completed"
        except asyncio.CancelledError:
            if not self.interrupt.interrupted:
                raise
            code, outcome = await self._roll_back(), "interrupted"
        except InterruptedSession as exc:
            self.interrupt.signame = self.interrupt.signame or exc.signame
            code, outcome = await self._roll_back(), "interrupted"
        except ConfirmationDeclined as exc:
            code, outcome = EXIT_DECLINED, "declined"
            self.console.print(f"[bold yellow]Aborted:[/bold yellow] {exc.message}")
            self._cordoned_hint()
        except PreflightFailure as exc:
            self.slog.error(exc.message, check=exc.check)
            self.console.print(f"[bold red]Preflight failed:[/bold red] {exc.message}")
        except StewardError as exc:
            self.slog.error(exc.message, kind=type(exc).__name__)
            self.console.print(f"[bold red]{type(exc).__name__}:[/bold red] {exc.message}")
            self._cordoned_hint()
        finally:
            self.interrupt.uninstall()
            if self._lock is not None:
                self._lock.release()
            self.slog.session_end(code, outcome)
            print_session_summary(session, code, self.console)
            self.slog.close()
            clear_session_context()
        return code


# ---------------------------------------------------------------------------
# Recovery entry points
# ---------------------------------------------------------------------------

def _standalone_logger(cfg: StewardConfig, node: str, command: str) -> SessionLogger:
    slog = SessionLogger(cfg.log_dir, new_session_id(), node)
    slog.session_start({"command": command, "node": node})
    return slog


async def audit_node(
    cfg: StewardConfig,
    options: MaintenanceOptions,
    *,
    console: Console,
    collab: Optional[Collaborators] = None,
) -> int:
    """Print a read-only health report.  0 when clean, 1 with warnings."""
    collab = collab or build_collaborators(cfg, dry_run=True)
    validator = PreflightValidator(cfg, collab)
    try:
        await validator.check_cluster()
        _node, role = await validator.resolve_node(options)
    except PreflightFailure as exc:
        console.print(f"[bold red]Audit failed:[/bold red] {exc.message}")
        return EXIT_FAILURE
    report = await HealthAuditor(cfg, collab).audit(options, role)
    print_health_report(report, console)
    return EXIT_OK if report.is_clean else EXIT_FAILURE


async def rollback_node(
    cfg: StewardConfig,
    node: str,
    *,
    console: Console,
    collab: Optional[Collaborators] = None,
) -> int:
    """Undo a cordon left behind by an interrupted or crashed session."""
    marker = CordonMarker(cfg.marker_dir, node)
    if not marker.exists():
        console.print(f"No cordon marker for {node}; nothing to roll back.")
        return EXIT_OK

    slog = _standalone_logger(cfg, node, "rollback")
    collab = collab or build_collaborators(cfg, on_mutation=slog.record_mutation)
    try:
        with NodeLock(cfg.lock_dir, node):
            ok = await InterruptHandler(collab, marker, slog=slog).rollback()
    except (PreflightFailure, OSError) as exc:
        console.print(f"[bold red]Rollback refused:[/bold red] {exc}")
        slog.session_end(EXIT_FAILURE, "refused")
        slog.close()
        return EXIT_FAILURE

    code = EXIT_OK if ok else EXIT_FAILURE
    if ok:
        console.print(f"[bold green]{node} uncordoned[/bold green], marker removed.")
    else:
        console.print(f"[bold red]Uncordon of {node} failed;[/bold red] marker kept.")
    slog.session_end(code, "rolled-back" if ok else "failed")
    slog.close()
    return code


async def restore_node(
    cfg: StewardConfig,
    node: str,
    *,
    wait_s: float,
    console: Console,
    collab: Optional[Collaborators] = None,
    clock: Optional[Clock] = None,
) -> int:
    """Bring a node back after maintenance: wait for Ready, then uncordon."""
    marker = CordonMarker(cfg.marker_dir, node)
    if not marker.exists():
        console.print(f"No cordon marker for {node}; it was not cordoned by steward.")
        return EXIT_OK

    slog = _standalone_logger(cfg, node, "restore")
    collab = collab or build_collaborators(cfg, on_mutation=slog.record_mutation)

    async def _ready() -> bool:
        try:
            obj = await collab.kube.get_node(node)
        except CommandError as exc:
            log.debug("restore: node read failed: %s", exc)
            return False
        return obj is not None and node_is_ready(obj)

    def _waiting(_ready_now: bool, remaining: float) -> None:
        slog.step(f"waiting for {node} to report Ready ({remaining:.0f}s left)")

    result = await poll_until(
        _ready, bool,
        deadline_s=wait_s, interval_s=cfg.poll_interval_s,
        clock=clock, on_wait=_waiting,
    )
    if not result.satisfied:
        console.print(
            f"[bold red]{node} not Ready after {wait_s:.0f}s;[/bold red] left cordoned."
        )
        slog.session_end(EXIT_FAILURE, "not-ready")
        slog.close()
        return EXIT_FAILURE

    try:
        with NodeLock(cfg.lock_dir, node):
            ok = await InterruptHandler(collab, marker, slog=slog).rollback()
    except (PreflightFailure, OSError) as exc:
        console.print(f"[bold red]Restore refused:[/bold red] {exc}")
        ok = False
    code = EXIT_OK if ok else EXIT_FAILURE
    if ok:
        console.print(f"[bold green]{node} is Ready and uncordoned.[/bold green]")
    slog.session_end(code, "restored" if ok else "failed")
    slog.close()
    return code
