#!/usr/bin/env python3
"""
Steward — Health Auditor

Read-only survey of the cluster before anything is changed.  Produces a
frozen :class:`~steward.models.HealthReport`; degraded conditions become
warning lines on the report, never exceptions.  The operator weighs them
at the confirmation gate.

Checks:
    cluster API          /livez and /readyz (falls back to /healthz)
    target node          Ready condition
    workloads            pods cluster-wide not Running/Succeeded
    reconciler           out-of-sync applications (skipped when absent)
    storage              volumes in an unexpected state, manager pods,
                         replica placement on the surviving nodes,
                         settings snapshot (logged only)
    host                 available memory
    diagnostics          recent Warning events for the node (logged only)

A check whose read fails is reported as a warning naming the check; the
audit itself always completes.

Author: Steward Project
Version: 0.1.0
"""

import logging
from typing import Any, Optional

from steward.cluster import Collaborators, node_is_ready, node_role
from steward.config import MaintenanceOptions, StewardConfig
from steward.exceptions import CommandError
from steward.log import SessionLogger
from steward.models import HealthReport, NodeRole, VolumeState

log = logging.getLogger(__name__)

_EXPECTED_VOLUME_STATES = frozenset({"attached", "detached"})
_FAULTED = "faulted"


def problem_volumes(volumes: list[VolumeState]) -> list[str]:
    """Volumes neither attached nor detached, or faulted."""
    return [
        v.name for v in volumes
        if v.state not in _EXPECTED_VOLUME_STATES or v.robustness == _FAULTED
    ]


def unplaced_volumes(volumes: list[VolumeState], surviving: set[str]) -> list[str]:
    """Volumes with no read-write replica on any surviving node."""
    return [v.name for v in volumes if not (v.replica_nodes & surviving)]


def surviving_nodes(
    target: str,
    role: NodeRole,
    nodes: list[dict[str, Any]],
    peer_nodes: Optional[list[str]] = None,
) -> list[str]:
    """Nodes expected to keep serving storage while *target* is down.

    Explicit *peer_nodes* win.  Otherwise the nodes of the opposite role
    (the worker when a control-plane node goes down, and vice versa);
    when the cluster has none, every other node.
    """
    if peer_nodes:
        return sorted(set(peer_nodes) - {target})
    others = [n for n in nodes if n.get("metadata", {}).get("name") != target]
    opposite = [
        n.get("metadata", {}).get("name", "") for n in others
        if node_role(n) is not role
    ]
    if opposite:
        return sorted(opposite)
    return sorted(n.get("metadata", {}).get("name", "") for n in others)


class HealthAuditor:
    """Builds a :class:`HealthReport` for the target node.

    Args:
        cfg: Host configuration (memory threshold).
        collab: Cluster and host clients.  Only reads are used.
        slog: Session log for diagnostics (settings snapshot, events).
    """

    def __init__(
        self,
        cfg: StewardConfig,
        collab: Collaborators,
        slog: Optional[SessionLogger] = None,
    ) -> None:
        self._cfg = cfg
        self._collab = collab
        self._slog = slog

    def _step(self, message: str, **fields: Any) -> None:
        log.info("audit: %s", message)
        if self._slog is not None:
            self._slog.step(message, **fields)

    # ── Individual checks ────────────────────────────────────────────────

    async def _cluster_reachable(self) -> bool:
        kube = self._collab.kube
        if await kube.raw_ok("/livez") and await kube.raw_ok("/readyz"):
            return True
        # Older API servers only expose /healthz.
        return await kube.raw_ok("/healthz")

    async def _storage(
        self,
        options: MaintenanceOptions,
        role: NodeRole,
        warnings: list[str],
    ) -> dict[str, Any]:
        longhorn = self._collab.longhorn
        result: dict[str, Any] = {"storage_present": False}
        if not await longhorn.present():
            self._step("storage layer not installed; storage checks skipped")
            return result
        result["storage_present"] = True

        try:
            snapshot = await longhorn.settings_snapshot()
            self._step("storage settings snapshot", settings=snapshot)
        except CommandError as exc:
            log.warning("audit: settings snapshot failed: %s", exc)

        try:
            ready, total = await longhorn.manager_readiness()
            result["storage_managers_ready"] = (ready, total)
            if ready != total:
                warnings.append(f"Storage manager pods not ready: {ready}/{total}")
        except CommandError as exc:
            warnings.append(f"Could not check storage manager pods: {exc.message}")

        try:
            volumes = await longhorn.list_volumes()
            nodes = await self._collab.kube.list_nodes()
        except CommandError as exc:
            warnings.append(f"Could not read storage volumes: {exc.message}")
            return result

        problems = problem_volumes(volumes)
        result["problem_volumes"] = tuple(problems)
        if problems:
            warnings.append(
                f"{len(problems)} volume(s) in an unexpected state: {', '.join(problems)}"
            )

        survivors = surviving_nodes(options.node, role, nodes, options.peer_nodes)
        result["surviving_nodes"] = tuple(survivors)
        unplaced = unplaced_volumes(volumes, set(survivors))
        result["unplaced_volumes"] = tuple(unplaced)
        if unplaced:
            where = ", ".join(survivors) or "no other node"
            if options.allow_single_replica:
                self._step(
                    f"{len(unplaced)} volume(s) lack a read-write replica on {where}; "
                    "accepted by --allow-single-replica",
                    volumes=unplaced,
                )
            else:
                warnings.append(
                    f"{len(unplaced)} volume(s) lack a read-write replica on {where}: "
                    f"{', '.join(unplaced)}. Redundancy is reduced while "
                    f"{options.node} is down"
                )
        elif volumes:
            self._step(f"every volume has a read-write replica on {', '.join(survivors)}")
        return result

    # ── Public API ───────────────────────────────────────────────────────

    async def audit(self, options: MaintenanceOptions, role: NodeRole) -> HealthReport:
        """Run every check and return the snapshot.  Never mutates."""
        kube = self._collab.kube
        warnings: list[str] = []

        reachable = await self._cluster_reachable()
        if not reachable:
            warnings.append("Cluster API liveness/readiness endpoints did not answer OK")

        node_ready = False
        try:
            node = await kube.get_node(options.node)
            node_ready = node is not None and node_is_ready(node)
        except CommandError as exc:
            log.warning("audit: node read failed: %s", exc)
        if not node_ready:
            warnings.append(f"Node {options.node} is not Ready")

        unhealthy = 0
        try:
            unhealthy = await kube.count_unhealthy_pods()
            if unhealthy:
                warnings.append(f"{unhealthy} pod(s) cluster-wide are not Running/Succeeded")
        except CommandError as exc:
            warnings.append(f"Could not count unhealthy pods: {exc.message}")

        out_of_sync: Optional[tuple[str, ...]] = None
        argo = self._collab.argo
        if await argo.present():
            try:
                out_of_sync = tuple(await argo.out_of_sync())
                if out_of_sync:
                    warnings.append(
                        f"{len(out_of_sync)} application(s) out of sync: {', '.join(out_of_sync)}"
                    )
            except CommandError as exc:
                out_of_sync = ()
                warnings.append(f"Could not read reconciler applications: {exc.message}")
        else:
            self._step("reconciler not installed; sync check skipped")

        storage = await self._storage(options, role, warnings)

        memory = self._collab.host.available_memory_mb()
        if memory < self._cfg.min_available_memory_mb:
            warnings.append(f"Low available memory on this host: {memory} MB")

        events = await kube.node_warning_events(options.node)
        if events:
            self._step(f"{len(events)} recent warning event(s) for {options.node}", events=events)

        report = HealthReport(
            node=options.node,
            cluster_reachable=reachable,
            node_ready=node_ready,
            unhealthy_workloads=unhealthy,
            out_of_sync_apps=out_of_sync,
            available_memory_mb=memory,
            warnings=tuple(warnings),
            **storage,
        )
        if self._slog is not None:
            self._slog.health_report(report)
        log.info("audit: %s complete, %d warning(s)", options.node, len(warnings))
        return report
