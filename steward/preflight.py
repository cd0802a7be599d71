#!/usr/bin/env python3
"""
Steward — Preflight Validator

Fatal checks run before anything else.  Every failure raises
:class:`~steward.exceptions.PreflightFailure` before any mutating call
and before the confirmation gate is shown.

Checks, in order:

    1. option ranges   grace ≥ 10, force ≥ 30, force > grace,
                       storage wait ≥ 0, known drain strategy
    2. privilege       effective UID 0 (skipped in dry-run)
    3. tools           kubectl; systemctl and pkill unless dry-run
    4. cluster         ``kubectl cluster-info`` answers
    5. inventory       target node exists; role resolved from labels
    6. locality        target node is this host (services and power act locally)
    7. node lock       one mutating session per node (not taken in dry-run)

Author: Steward Project
Version: 0.1.0
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from steward.cluster import Collaborators, node_hostnames, node_is_unschedulable, node_role
from steward.config import (
    DRAIN_STRATEGIES,
    MIN_FORCE_TIMEOUT,
    MIN_GRACE_PERIOD,
    MaintenanceOptions,
    StewardConfig,
)
from steward.exceptions import CommandError, PreflightFailure
from steward.locking import NodeLock
from steward.models import NodeRole

log = logging.getLogger(__name__)

_MUTATING_TOOLS: tuple[str, ...] = ("systemctl", "pkill")


@dataclass
class PreflightResult:
    """What preflight learned about the target.

    Attributes:
        role: Resolved node role.
        node: Node object as returned by the cluster API.
        already_cordoned: Node was unschedulable before the session.
        lock: Held node lock, ``None`` in dry-run.
    """

    role: NodeRole
    node: dict[str, Any]
    already_cordoned: bool
    lock: Optional[NodeLock] = None


def validate_ranges(options: MaintenanceOptions) -> None:
    """Check numeric option ranges and the drain strategy.

    Raises:
        PreflightFailure: On the first violated range.
    """
    if not options.node:
        raise PreflightFailure("A target node is required (--node)", check="options")
    if options.grace_period < MIN_GRACE_PERIOD:
        raise PreflightFailure(
            f"Grace period must be at least {MIN_GRACE_PERIOD}s (got {options.grace_period})",
            check="options",
        )
    if options.force_timeout < MIN_FORCE_TIMEOUT:
        raise PreflightFailure(
            f"Force timeout must be at least {MIN_FORCE_TIMEOUT}s (got {options.force_timeout})",
            check="options",
        )
    if options.force_timeout <= options.grace_period:
        raise PreflightFailure(
            f"Force timeout ({options.force_timeout}s) must be greater than "
            f"grace period ({options.grace_period}s)",
            check="options",
        )
    if options.storage_wait < 0:
        raise PreflightFailure(
            f"Storage wait must not be negative (got {options.storage_wait})",
            check="options",
        )
    if options.drain_strategy not in DRAIN_STRATEGIES:
        raise PreflightFailure(
            f"Unknown drain strategy {options.drain_strategy!r}; "
            f"expected one of {', '.join(DRAIN_STRATEGIES)}",
            check="options",
        )


class PreflightValidator:
    """Runs the fatal pre-mutation checks.

    Args:
        cfg: Host configuration (binaries, state directory).
        collab: Cluster and host clients.
        lock_factory: Builds the node lock; replaced in tests.
    """

    def __init__(
        self,
        cfg: StewardConfig,
        collab: Collaborators,
        *,
        lock_factory: Optional[Callable[[str], NodeLock]] = None,
    ) -> None:
        self._cfg = cfg
        self._collab = collab
        self._lock_factory = lock_factory or (lambda node: NodeLock(cfg.lock_dir, node))

    # ── Individual checks ────────────────────────────────────────────────

    def check_privilege(self, options: MaintenanceOptions) -> None:
        if options.dry_run:
            return
        if not self._collab.host.is_root():
            raise PreflightFailure(
                "steward must run as root (use sudo), or pass --dry-run",
                check="privilege",
            )

    def check_tools(self, options: MaintenanceOptions) -> None:
        required = [self._cfg.kubectl]
        if not options.dry_run:
            required.extend(_MUTATING_TOOLS)
        missing = [tool for tool in required if self._collab.host.which(tool) is None]
        if missing:
            raise PreflightFailure(
                f"Required tool(s) not found on PATH: {', '.join(missing)}",
                check="tools",
            )

    async def check_cluster(self) -> None:
        if not await self._collab.kube.cluster_info():
            raise PreflightFailure(
                "Cannot reach the cluster API (kubectl cluster-info failed); "
                "check KUBECONFIG",
                check="cluster",
            )

    async def resolve_node(self, options: MaintenanceOptions) -> tuple[dict[str, Any], NodeRole]:
        """Look the node up and settle its role.

        An explicit role that disagrees with the node labels wins, with a
        log warning.
        """
        try:
            node = await self._collab.kube.get_node(options.node)
        except CommandError as exc:
            raise PreflightFailure(f"Cannot read node {options.node!r}: {exc}", check="inventory")
        if node is None:
            raise PreflightFailure(
                f"Node {options.node!r} not found in the cluster", check="inventory"
            )
        detected = node_role(node)
        if options.role is None:
            return node, detected
        if options.role is not detected:
            log.warning(
                "preflight: --role %s overrides labels of %s (look like %s)",
                options.role.value, options.node, detected.value,
            )
        return node, options.role

    def check_locality(self, options: MaintenanceOptions, node: dict[str, Any]) -> None:
        """The target must be the machine whose services and power steward controls."""
        claimed = node_hostnames(node) | {options.node.lower()}
        claimed |= {name.split(".", 1)[0] for name in claimed}
        local = self._collab.host.hostnames()
        if claimed.isdisjoint(local):
            raise PreflightFailure(
                f"Node {options.node!r} is not this host ({', '.join(sorted(local)) or 'unknown'}); "
                "run steward on the node being taken down",
                check="locality",
            )

    def acquire_lock(self, options: MaintenanceOptions) -> Optional[NodeLock]:
        if options.dry_run:
            return None
        lock = self._lock_factory(options.node)
        try:
            lock.acquire()
        except OSError as exc:
            raise PreflightFailure(
                f"Cannot create session lock in {self._cfg.lock_dir}: {exc}",
                check="node_lock",
            )
        return lock

    # ── Public API ───────────────────────────────────────────────────────

    async def validate(self, options: MaintenanceOptions) -> PreflightResult:
        """Run every check in order.

        Raises:
            PreflightFailure: On the first failing check.  No lock is held
                when this is raised.
        """
        validate_ranges(options)
        self.check_privilege(options)
        self.check_tools(options)
        await self.check_cluster()
        node, role = await self.resolve_node(options)
        self.check_locality(options, node)
        lock = self.acquire_lock(options)
        log.info(
            "preflight: %s ok (role=%s dry_run=%s)",
            options.node, role.value, options.dry_run,
        )
        return PreflightResult(
            role=role,
            node=node,
            already_cordoned=node_is_unschedulable(node),
            lock=lock,
        )
