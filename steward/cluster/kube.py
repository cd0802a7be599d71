#!/usr/bin/env python3
"""
Steward — Cluster Orchestration API Client

Thin async wrapper over ``kubectl`` covering exactly the surface the
maintenance sequence needs:

    reads    — node get/list, pod list by node and namespace, cluster
               liveness/readiness endpoints, namespace existence, warning
               events for a node (diagnostics only)
    mutates  — cordon, uncordon, pod delete (graceful and forced),
               ``kubectl drain``

All reads use ``-o json`` and are parsed here so callers work with plain
dicts and :class:`~steward.models.Workload` values.

Author: Steward Project
Version: 0.1.0
"""

import json
import logging
from pathlib import Path
from typing import Any, Iterable, Optional

from steward.cluster.base import CommandResult, CommandRunner
from steward.exceptions import CommandError
from steward.models import NodeRole, Workload

logger = logging.getLogger(__name__)

_CONTROL_PLANE_LABELS: tuple[str, ...] = (
    "node-role.kubernetes.io/control-plane",
    "node-role.kubernetes.io/master",
)
_HOSTNAME_LABEL = "kubernetes.io/hostname"
_MIRROR_POD_ANNOTATION = "kubernetes.io/config.mirror"
_FINISHED_PHASES = frozenset({"Succeeded", "Failed"})


# ---------------------------------------------------------------------------
# Object helpers
# ---------------------------------------------------------------------------

def node_is_ready(node: dict[str, Any]) -> bool:
    """``True`` when the node's ``Ready`` condition is ``True``."""
    for cond in node.get("status", {}).get("conditions", []) or []:
        if cond.get("type") == "Ready":
            return cond.get("status") == "True"
    return False


def node_is_unschedulable(node: dict[str, Any]) -> bool:
    """``True`` when the node is cordoned."""
    return bool(node.get("spec", {}).get("unschedulable", False))


def node_hostnames(node: dict[str, Any]) -> set[str]:
    """Names the node is known by: object name and hostname label, lowercased."""
    meta = node.get("metadata", {})
    labels = meta.get("labels", {}) or {}
    names = {meta.get("name") or "", labels.get(_HOSTNAME_LABEL) or ""}
    return {n.lower() for n in names if n}


def node_role(node: dict[str, Any]) -> NodeRole:
    """Infer the node role from its well-known role labels."""
    labels = node.get("metadata", {}).get("labels", {}) or {}
    if any(label in labels for label in _CONTROL_PLANE_LABELS):
        return NodeRole.CONTROL_PLANE
    return NodeRole.WORKER


def _is_daemon_pod(pod: dict[str, Any]) -> bool:
    owners = pod.get("metadata", {}).get("ownerReferences", []) or []
    return any(o.get("kind") == "DaemonSet" for o in owners)


def _is_mirror_pod(pod: dict[str, Any]) -> bool:
    annotations = pod.get("metadata", {}).get("annotations", {}) or {}
    return _MIRROR_POD_ANNOTATION in annotations


def _workload(pod: dict[str, Any]) -> Workload:
    meta = pod.get("metadata", {})
    return Workload(namespace=meta.get("namespace", "default"), name=meta.get("name", ""))


# ---------------------------------------------------------------------------
# KubeClient
# ---------------------------------------------------------------------------

class KubeClient:
    """Async kubectl client.

    Args:
        runner: Shared command runner (carries timeout and dry-run flag).
        kubectl: kubectl binary name or path.
        kubeconfig: Kubeconfig passed with ``--kubeconfig`` when set.
    """

    def __init__(
        self,
        runner: CommandRunner,
        *,
        kubectl: str = "kubectl",
        kubeconfig: Optional[Path] = None,
    ) -> None:
        self._runner = runner
        self._kubectl = kubectl
        self._kubeconfig = kubeconfig

    # ── argv helpers ─────────────────────────────────────────────────────

    def _argv(self, *args: str) -> list[str]:
        argv = [self._kubectl]
        if self._kubeconfig is not None:
            argv += ["--kubeconfig", str(self._kubeconfig)]
        argv.extend(args)
        return argv

    async def _read(self, *args: str, check: bool = False) -> CommandResult:
        return await self._runner.read(*self._argv(*args), check=check)

    async def _read_json(self, *args: str) -> dict[str, Any]:
        result = await self._read(*args, "-o", "json", check=True)
        try:
            return json.loads(result.stdout or "{}")
        except json.JSONDecodeError as exc:
            raise CommandError(result.argv, result.returncode, f"invalid JSON: {exc}")

    async def _items(self, *args: str) -> list[dict[str, Any]]:
        return list((await self._read_json(*args)).get("items", []) or [])

    # ── Reads: cluster ───────────────────────────────────────────────────

    async def cluster_info(self) -> bool:
        """``True`` when ``kubectl cluster-info`` reaches the API server."""
        try:
            return (await self._read("cluster-info")).ok
        except CommandError as exc:
            logger.debug("cluster-info failed: %s", exc)
            return False

    async def raw_ok(self, path: str) -> bool:
        """``True`` when a raw API path (``/readyz``, ``/livez`` …) answers OK."""
        try:
            return (await self._read("get", f"--raw={path}")).ok
        except CommandError as exc:
            logger.debug("get --raw=%s failed: %s", path, exc)
            return False

    async def get_resources(
        self,
        resource: str,
        namespace: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """List any resource kind, including custom resources."""
        args = ["get", resource]
        if namespace:
            args += ["-n", namespace]
        return await self._items(*args)

    async def namespace_exists(self, namespace: str) -> bool:
        try:
            return (await self._read("get", "namespace", namespace)).ok
        except CommandError:
            return False

    # ── Reads: nodes ─────────────────────────────────────────────────────

    async def get_node(self, name: str) -> Optional[dict[str, Any]]:
        """Return the node object, or ``None`` when it does not exist.

        Raises:
            CommandError: For any failure other than NotFound.
        """
        result = await self._read("get", "node", name, "-o", "json")
        if not result.ok:
            if "NotFound" in result.stderr or "not found" in result.stderr:
                return None
            result.raise_for_status()
        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise CommandError(result.argv, result.returncode, f"invalid JSON: {exc}")

    async def list_nodes(self) -> list[dict[str, Any]]:
        return await self._items("get", "nodes")

    # ── Reads: workloads ─────────────────────────────────────────────────

    async def list_pods(
        self,
        *,
        node: Optional[str] = None,
        namespace: Optional[str] = None,
        field_selector: Optional[str] = None,
        label_selector: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """List pods, optionally filtered by node, namespace, or selectors."""
        args = ["get", "pods"]
        args += ["-n", namespace] if namespace else ["--all-namespaces"]
        selectors = []
        if node:
            selectors.append(f"spec.nodeName={node}")
        if field_selector:
            selectors.append(field_selector)
        if selectors:
            args.append(f"--field-selector={','.join(selectors)}")
        if label_selector:
            args += ["-l", label_selector]
        return await self._items(*args)

    async def count_unhealthy_pods(self) -> int:
        """Count pods cluster-wide that are neither Running nor Succeeded."""
        pods = await self.list_pods(
            field_selector="status.phase!=Running,status.phase!=Succeeded"
        )
        return len(pods)

    async def evictable_workloads(
        self,
        node: str,
        excluded_namespaces: Iterable[str] = (),
    ) -> list[Workload]:
        """Workloads on *node* that a drain should evict.

        Excludes node-local system daemons (DaemonSet-owned and static
        mirror pods), finished pods, and pods in *excluded_namespaces*.
        Pods already terminating are included: they are still present.
        """
        excluded = set(excluded_namespaces)
        workloads: list[Workload] = []
        for pod in await self.list_pods(node=node):
            wl = _workload(pod)
            if wl.namespace in excluded:
                continue
            if _is_daemon_pod(pod) or _is_mirror_pod(pod):
                continue
            if pod.get("status", {}).get("phase") in _FINISHED_PHASES:
                continue
            workloads.append(wl)
        return workloads

    async def node_warning_events(self, node: str, limit: int = 10) -> list[str]:
        """Most recent Warning events for *node*, formatted for the log."""
        try:
            events = await self._items(
                "get", "events", "--all-namespaces",
                f"--field-selector=involvedObject.name={node},type=Warning",
            )
        except CommandError as exc:
            logger.debug("event listing failed: %s", exc)
            return []
        events.sort(key=lambda e: e.get("lastTimestamp") or e.get("eventTime") or "")
        lines = [
            f"{e.get('reason', '?')}: {(e.get('message') or '').strip()}"
            for e in events[-limit:]
        ]
        return lines

    async def supports_disable_eviction(self) -> bool:
        try:
            result = await self._read("drain", "--help")
        except CommandError:
            return False
        return "--disable-eviction" in (result.stdout + result.stderr)

    # ── Mutations ────────────────────────────────────────────────────────

    async def cordon(self, node: str) -> CommandResult:
        return await self._runner.mutate(
            *self._argv("cordon", node), description=f"cordon {node}"
        )

    async def uncordon(self, node: str) -> CommandResult:
        return await self._runner.mutate(
            *self._argv("uncordon", node), description=f"uncordon {node}"
        )

    async def delete_pod(
        self,
        workload: Workload,
        *,
        grace_period: int,
        force: bool = False,
    ) -> CommandResult:
        """Request pod termination without waiting for it to finish."""
        args = [
            "delete", "pod", workload.name,
            "-n", workload.namespace,
            f"--grace-period={grace_period}",
            "--wait=false",
            "--ignore-not-found",
        ]
        if force:
            args.append("--force")
        label = "force-delete" if force else "evict"
        return await self._runner.mutate(
            *self._argv(*args), description=f"{label} {workload.key}"
        )

    async def drain(
        self,
        node: str,
        *,
        grace_period: int,
        timeout_s: int,
        disable_eviction: bool = False,
    ) -> CommandResult:
        """Delegate the whole drain to ``kubectl drain``."""
        args = [
            "drain", node,
            "--ignore-daemonsets",
            "--delete-emptydir-data",
            "--force",
            f"--grace-period={grace_period}",
            f"--timeout={timeout_s}s",
        ]
        if disable_eviction:
            args.append("--disable-eviction")
        return await self._runner.mutate(
            *self._argv(*args),
            description=f"drain {node}",
            timeout=float(timeout_s) + 15.0,
            check=False,
        )
