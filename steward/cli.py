#!/usr/bin/env python3
"""
Steward CLI — Command-Line Interface for node maintenance

Entry point for all operator interactions.  Every command that changes
the cluster must run as root; ``--dry-run`` and the read-only commands
do not.

Commands:
    shutdown  Cordon, drain, quiesce storage, stop the agent, power off.
    reboot    Same sequence, ending in a reboot.
    audit     Read-only health report for a node (no confirmation, no changes).
    rollback  Uncordon a node left cordoned by an interrupted session.
    restore   Wait for a returned node to be Ready, then uncordon it.
    status    List cordon markers and session locks on this host.

Global options (accepted by every command):
    --config PATH       Load STEWARD_* settings from a .env file.
    --log-level LEVEL   Override STEWARD_LOG_LEVEL for this invocation.

Exit codes:
    0    Success, or dry run completed.
    1    Preflight, cordon or command failure (or audit warnings).
    3    Operator declined a confirmation.
    130  Interrupted by SIGINT/SIGTERM; the node was rolled back.

Usage::

    steward shutdown --node worker-2 --dry-run
    sudo steward shutdown --node worker-2 --grace-period 60
    sudo steward reboot --node cp-1 --role control-plane --storage-wait 300
    steward audit --node worker-2
    sudo steward rollback --node worker-2
    sudo steward restore --node worker-2 --wait 600
    steward status

Author: Steward Project
Version: 0.1.0
"""

import asyncio
import os
import sys
from typing import Callable, Optional

import click
from rich.console import Console

from steward import __version__
from steward.config import (
    DEFAULT_FORCE_TIMEOUT,
    DEFAULT_GRACE_PERIOD,
    DEFAULT_STORAGE_WAIT,
    DRAIN_STRATEGIES,
    MaintenanceOptions,
    StewardConfig,
    get_config,
)
from steward.logger import configure_logging
from steward.models import NodeRole, PowerAction

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_ROLES = tuple(r.value for r in NodeRole)


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------

def _load_env_file(path: str) -> None:
    """Load key=value pairs from *path* into ``os.environ``.

    Uses ``os.environ.setdefault`` so explicit env vars take precedence.

    Raises:
        click.ClickException: If the file cannot be read.
    """
    try:
        with open(path, encoding="utf-8") as fh:
            for raw in fh:
                line = raw.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                key, _, value = line.partition("=")
                os.environ.setdefault(key.strip(), value.strip().strip("'\""))
    except OSError as exc:
        raise click.ClickException(f"Cannot read config file {path!r}: {exc}")


def _load_config(console: Console) -> StewardConfig:
    try:
        cfg = get_config()
    except Exception as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)
    configure_logging(cfg)
    return cfg


def _maintenance_options(func: Callable) -> Callable:
    """Options shared by ``shutdown`` and ``reboot``."""
    decorators = [
        click.option("--node", required=True, metavar="NAME", help="Node to take down."),
        click.option(
            "--role",
            type=click.Choice(_ROLES, case_sensitive=False),
            default=None,
            help="Node role.  Detected from node labels when omitted.",
        ),
        click.option(
            "--grace-period",
            default=DEFAULT_GRACE_PERIOD,
            show_default=True,
            type=click.IntRange(min=0),
            metavar="SECS",
            help="Pod termination budget (minimum 10).",
        ),
        click.option(
            "--force-timeout",
            default=DEFAULT_FORCE_TIMEOUT,
            show_default=True,
            type=click.IntRange(min=0),
            metavar="SECS",
            help="Bound on the whole drain before forced eviction (minimum 30, above grace).",
        ),
        click.option(
            "--storage-wait",
            default=DEFAULT_STORAGE_WAIT,
            show_default=True,
            type=click.IntRange(min=0),
            metavar="SECS",
            help="How long to wait for volumes to detach.",
        ),
        click.option(
            "--dry-run",
            is_flag=True,
            default=False,
            help="Report every action without changing anything.  No root needed.",
        ),
        click.option(
            "--allow-single-replica",
            is_flag=True,
            default=False,
            help="Do not warn about volumes with no replica on a surviving node.",
        ),
        click.option(
            "--peer-node",
            "peer_nodes",
            multiple=True,
            metavar="NAME",
            help="Surviving node for the replica check.  Repeatable.",
        ),
        click.option(
            "--drain-strategy",
            type=click.Choice(DRAIN_STRATEGIES),
            default="evict",
            show_default=True,
            help="Per-workload eviction, or delegate to kubectl drain.",
        ),
    ]
    for decorator in reversed(decorators):
        func = decorator(func)
    return func


def _run_session(action: PowerAction, **kwargs) -> None:
    from steward.orchestrator import MaintenanceOrchestrator

    console = Console(highlight=False)
    cfg = _load_config(console)
    role = kwargs.pop("role")
    options = MaintenanceOptions(
        node=kwargs.pop("node"),
        role=NodeRole(role) if role else None,
        action=action,
        peer_nodes=list(kwargs.pop("peer_nodes")),
        **kwargs,
    )
    orchestrator = MaintenanceOrchestrator(cfg, options, console=console)
    sys.exit(asyncio.run(orchestrator.run()))


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------

@click.group(
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.version_option(version=__version__, prog_name="steward")
@click.option(
    "--config",
    "config_path",
    default=None,
    metavar="PATH",
    help="Path to a .env file with STEWARD_* settings.",
)
@click.option(
    "--log-level",
    "log_level",
    default=None,
    type=click.Choice(_LOG_LEVELS, case_sensitive=False),
    metavar="LEVEL",
    help="Override STEWARD_LOG_LEVEL for this invocation.",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], log_level: Optional[str]) -> None:
    """Steward — safe maintenance shutdown for Kubernetes nodes.

    Cordons and drains a node, waits for its storage volumes to detach,
    stops the local agent, then reboots or powers off.  Ctrl+C at any
    point rolls the node back to schedulable.

    Global options (--config, --log-level) must come BEFORE the subcommand.

    \b
    Examples:
        steward shutdown --node worker-2 --dry-run
        sudo steward reboot --node worker-2
        steward --log-level DEBUG audit --node worker-2
    """
    ctx.ensure_object(dict)

    if config_path:
        _load_env_file(config_path)
        get_config.cache_clear()

    if log_level:
        os.environ["STEWARD_LOG_LEVEL"] = log_level.upper()
        get_config.cache_clear()


# ---------------------------------------------------------------------------
# shutdown / reboot commands
# ---------------------------------------------------------------------------

@cli.command("shutdown")
@_maintenance_options
@click.option(
    "--action",
    type=click.Choice([a.value for a in PowerAction]),
    default=PowerAction.POWEROFF.value,
    show_default=True,
    help="Terminal power action.",
)
def shutdown_cmd(action: str, **kwargs) -> None:
    """Take a node down for maintenance.

    \b
    Sequence:
        preflight → audit → confirm → cordon → drain
        → storage quiescence → stop agent → sync → power

    \b
    Examples:
        steward shutdown --node worker-2 --dry-run
        sudo steward shutdown --node worker-2 --grace-period 60 --storage-wait 300
    """
    _run_session(PowerAction(action), **kwargs)


@cli.command("reboot")
@_maintenance_options
def reboot_cmd(**kwargs) -> None:
    """Same as ``shutdown --action reboot``.

    \b
    Examples:
        sudo steward reboot --node worker-2
    """
    _run_session(PowerAction.REBOOT, **kwargs)


# ---------------------------------------------------------------------------
# audit command
# ---------------------------------------------------------------------------

@cli.command("audit")
@click.option("--node", required=True, metavar="NAME", help="Node to audit.")
@click.option(
    "--role",
    type=click.Choice(_ROLES, case_sensitive=False),
    default=None,
    help="Node role.  Detected from node labels when omitted.",
)
@click.option("--peer-node", "peer_nodes", multiple=True, metavar="NAME",
              help="Surviving node for the replica check.  Repeatable.")
@click.option("--allow-single-replica", is_flag=True, default=False,
              help="Do not warn about volumes with no replica on a surviving node.")
def audit_cmd(
    node: str,
    role: Optional[str],
    peer_nodes: tuple[str, ...],
    allow_single_replica: bool,
) -> None:
    """Print the pre-shutdown health report.  Changes nothing.

    Exits 0 when the report is clean, 1 when it carries warnings or the
    cluster is unreachable.
    """
    from steward.orchestrator import audit_node

    console = Console(highlight=False)
    cfg = _load_config(console)
    options = MaintenanceOptions(
        node=node,
        role=NodeRole(role) if role else None,
        dry_run=True,
        peer_nodes=list(peer_nodes),
        allow_single_replica=allow_single_replica,
    )
    sys.exit(asyncio.run(audit_node(cfg, options, console=console)))


# ---------------------------------------------------------------------------
# rollback / restore commands
# ---------------------------------------------------------------------------

@cli.command("rollback")
@click.option("--node", required=True, metavar="NAME", help="Node to uncordon.")
def rollback_cmd(node: str) -> None:
    """Uncordon a node that steward cordoned and never restored.

    Only acts when a cordon marker exists; a node cordoned by someone
    else is left alone.
    """
    from steward.orchestrator import rollback_node

    console = Console(highlight=False)
    cfg = _load_config(console)
    sys.exit(asyncio.run(rollback_node(cfg, node, console=console)))


@cli.command("restore")
@click.option("--node", required=True, metavar="NAME", help="Node back from maintenance.")
@click.option(
    "--wait",
    "wait_s",
    default=300.0,
    show_default=True,
    type=click.FloatRange(min=0),
    metavar="SECS",
    help="How long to wait for the node to report Ready.",
)
def restore_cmd(node: str, wait_s: float) -> None:
    """Wait for a node to come back Ready, then uncordon it.

    \b
    Examples:
        sudo steward restore --node worker-2
        sudo steward restore --node worker-2 --wait 900
    """
    from steward.orchestrator import restore_node

    console = Console(highlight=False)
    cfg = _load_config(console)
    sys.exit(asyncio.run(restore_node(cfg, node, wait_s=wait_s, console=console)))


# ---------------------------------------------------------------------------
# status command
# ---------------------------------------------------------------------------

@cli.command("status")
def status_cmd() -> None:
    """List cordon markers and session locks held on this host."""
    from steward.display import print_state
    from steward.locking import NodeLock
    from steward.marker import CordonMarker

    console = Console(highlight=False)
    cfg = _load_config(console)
    print_state(
        CordonMarker.list_all(cfg.marker_dir),
        NodeLock.list_all(cfg.lock_dir),
        console,
    )
