#!/usr/bin/env python3
"""
Steward Display — Rich Terminal Rendering

Rich-based UI primitives for the steward CLI:

    print_health_report(report, console)   — audit table + warning list
    print_options(options, role, console)  — resolved configuration panel
    print_session_summary(session, code, console)
    print_state(markers, locks, console)   — ``steward status`` output

Every function writes to the console it is given and never calls
``sys.exit``; the caller decides the exit code.

Author: Steward Project
Version: 0.1.0
"""

from datetime import timezone
from typing import Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from steward.config import MaintenanceOptions
from steward.marker import MarkerRecord
from steward.models import HealthReport, NodeRole
from steward.session import MaintenanceSession

# ---------------------------------------------------------------------------
# Style constants
# ---------------------------------------------------------------------------

_OK = Text("● OK", style="bold green")
_WARN = Text("◑ WARN", style="bold yellow")
_FAIL = Text("✗ FAIL", style="bold red")
_SKIP = Text("– SKIPPED", style="dim")

_EXIT_LABELS: dict[int, tuple[str, str]] = {
    0: ("COMPLETED", "bold green"),
    1: ("FAILED", "bold red"),
    3: ("ABORTED BY OPERATOR", "bold yellow"),
    130: ("INTERRUPTED, ROLLED BACK", "bold yellow"),
}


def _cell(ok: bool, *, fatal: bool = False) -> Text:
    if ok:
        return _OK
    return _FAIL if fatal else _WARN


def _names(items, limit: int = 4) -> str:
    items = list(items)
    shown = ", ".join(items[:limit])
    if len(items) > limit:
        shown += f" (+{len(items) - limit} more)"
    return shown


# ---------------------------------------------------------------------------
# Health report
# ---------------------------------------------------------------------------

def make_report_table(report: HealthReport) -> Table:
    """One row per audit check."""
    table = Table(
        show_header=True,
        header_style="bold dim",
        box=box.SIMPLE,
        padding=(0, 1),
        expand=True,
    )
    table.add_column("Check", style="bold", min_width=18)
    table.add_column("Status", min_width=10)
    table.add_column("Details")

    table.add_row(
        "cluster API",
        _cell(report.cluster_reachable, fatal=True),
        "livez/readyz answered" if report.cluster_reachable else "[red]unreachable[/red]",
    )
    table.add_row(
        f"node {report.node}",
        _cell(report.node_ready),
        "Ready" if report.node_ready else "[yellow]not Ready[/yellow]",
    )
    table.add_row(
        "workloads",
        _cell(report.unhealthy_workloads == 0),
        f"{report.unhealthy_workloads} not Running/Succeeded",
    )

    if report.out_of_sync_apps is None:
        table.add_row("reconciler", _SKIP, "[dim]not installed[/dim]")
    else:
        apps = report.out_of_sync_apps
        table.add_row(
            "reconciler",
            _cell(not apps),
            f"{len(apps)} out of sync" + (f": {_names(apps)}" if apps else ""),
        )

    if not report.storage_present:
        table.add_row("storage", _SKIP, "[dim]not installed[/dim]")
    else:
        problems = report.problem_volumes
        table.add_row(
            "storage volumes",
            _cell(not problems),
            f"{len(problems)} in unexpected state" + (f": {_names(problems)}" if problems else ""),
        )
        unplaced = report.unplaced_volumes
        table.add_row(
            "replica placement",
            _cell(not unplaced),
            (
                f"{len(unplaced)} without replica on {_names(report.surviving_nodes)}: {_names(unplaced)}"
                if unplaced
                else f"every volume has a replica on {_names(report.surviving_nodes) or '—'}"
            ),
        )
        if report.storage_managers_ready is not None:
            ready, total = report.storage_managers_ready
            table.add_row("storage managers", _cell(ready == total), f"{ready}/{total} ready")

    if report.available_memory_mb is not None:
        table.add_row("host memory", _OK, f"{report.available_memory_mb} MB available")

    return table


def print_health_report(report: HealthReport, console: Console) -> None:
    ts = report.created_at.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    status = (
        "[bold green]● CLEAN[/bold green]"
        if report.is_clean
        else f"[bold yellow]◑ {len(report.warnings)} WARNING(S)[/bold yellow]"
    )
    console.print()
    console.print(f"  [bold blue]HEALTH AUDIT[/bold blue]  {status}  [dim]{ts}[/dim]")
    console.print(make_report_table(report))
    for line in report.warnings:
        console.print(f"  [yellow]⚠[/yellow] {line}")
    if report.warnings:
        console.print()


# ---------------------------------------------------------------------------
# Configuration panel
# ---------------------------------------------------------------------------

def print_options(
    options: MaintenanceOptions,
    role: Optional[NodeRole],
    console: Console,
    *,
    service: Optional[str] = None,
) -> None:
    """Show the resolved configuration the operator is about to approve."""
    rows = options.summary()
    if role is not None:
        rows["role"] = role.value
    if service:
        rows["service"] = service
    body = Text.from_markup("\n".join(
        f"  [dim]{key:<22}[/dim] {value}" for key, value in rows.items()
    ))
    title = "[bold blue]MAINTENANCE PLAN[/bold blue]"
    if options.dry_run:
        title += "  [bold cyan]DRY RUN[/bold cyan]"
    console.print(Panel(body, title=title, border_style="blue", padding=(0, 1)))


# ---------------------------------------------------------------------------
# Session summary
# ---------------------------------------------------------------------------

def print_session_summary(
    session: MaintenanceSession,
    exit_code: int,
    console: Console,
) -> None:
    label, style = _EXIT_LABELS.get(exit_code, ("FAILED", "bold red"))
    if exit_code == 0 and session.dry_run:
        label = "DRY RUN COMPLETE"
    console.print()
    console.print(
        f"  [bold blue]STEWARD[/bold blue]  [{style}]{label}[/{style}]  "
        f"[dim]node[/dim] {session.node}  [dim]phase[/dim] {session.phase.value}"
    )
    if session.warnings:
        console.print(f"  [yellow]{len(session.warnings)} warning(s):[/yellow]")
        for w in session.warnings:
            console.print(f"    [yellow]⚠[/yellow] {w.message}")
    if session.slog is not None and session.slog.path is not None:
        console.print(f"  [dim]session log:[/dim] {session.slog.path}")
    console.print()


# ---------------------------------------------------------------------------
# State directory listing
# ---------------------------------------------------------------------------

def print_state(
    markers: list[MarkerRecord],
    locks: dict[str, Optional[int]],
    console: Console,
) -> None:
    """Render cordon markers and node locks currently on disk."""
    if not markers and not locks:
        console.print("  [green]No cordon markers or session locks present.[/green]")
        return

    table = Table(show_header=True, header_style="bold dim", box=box.SIMPLE, padding=(0, 1))
    table.add_column("Node", style="bold")
    table.add_column("Kind")
    table.add_column("Session / PID")
    table.add_column("Since", style="dim")
    for m in markers:
        table.add_row(m.node, Text("cordon marker", style="yellow"), f"{m.session or '?'} / {m.pid}", m.cordoned_at)
    for node, pid in locks.items():
        table.add_row(node, Text("session lock", style="cyan"), f"— / {pid if pid else '?'}", "")
    console.print(table)
    if markers:
        console.print(
            "  [dim]A marker means steward cordoned the node.  "
            "Use [bold]steward restore --node NAME[/bold] once it is back, "
            "or [bold]steward rollback --node NAME[/bold] to uncordon now.[/dim]"
        )
