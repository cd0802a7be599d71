#!/usr/bin/env python3
"""
Steward — Distributed Storage API Client (Longhorn)

Read-only view of the storage layer.  Volumes and replicas are joined
into :class:`~steward.models.VolumeState` values; settings are read only
so they can be written to the session log.  Nothing here mutates the
storage layer.

Author: Steward Project
Version: 0.1.0
"""

import logging
from collections import defaultdict
from typing import Any

from steward.cluster.kube import KubeClient
from steward.models import VolumeState

logger = logging.getLogger(__name__)

_VOLUMES = "volumes.longhorn.io"
_REPLICAS = "replicas.longhorn.io"
_SETTINGS = "settings.longhorn.io"

# Settings worth recording before a node goes away.
SNAPSHOT_SETTINGS: tuple[str, ...] = (
    "default-replica-count",
    "replica-auto-balance",
    "replica-soft-anti-affinity",
    "concurrent-replica-rebuild-per-node-limit",
    "replica-replenishment-wait-interval",
)

_MANAGER_SELECTOR = "app=longhorn-manager"


def _pod_ready(pod: dict[str, Any]) -> bool:
    statuses = pod.get("status", {}).get("containerStatuses", []) or []
    return bool(statuses) and all(s.get("ready") for s in statuses)


class LonghornClient:
    """Storage layer reads.

    Args:
        kube: Cluster client used for all resource reads.
        namespace: Storage management namespace.
    """

    def __init__(self, kube: KubeClient, namespace: str = "longhorn-system") -> None:
        self._kube = kube
        self.namespace = namespace

    async def present(self) -> bool:
        """``True`` when the storage namespace exists."""
        return await self._kube.namespace_exists(self.namespace)

    async def _replica_nodes(self) -> dict[str, set[str]]:
        """Map volume name → nodes holding a read-write replica."""
        placement: dict[str, set[str]] = defaultdict(set)
        for rep in await self._kube.get_resources(_REPLICAS, self.namespace):
            spec = rep.get("spec", {})
            if rep.get("status", {}).get("mode") != "RW":
                continue
            volume, node = spec.get("volumeName"), spec.get("nodeID")
            if volume and node:
                placement[volume].add(node)
        return placement

    async def list_volumes(self, *, with_replicas: bool = True) -> list[VolumeState]:
        """All volumes with attachment state and (optionally) replica placement."""
        placement = await self._replica_nodes() if with_replicas else {}
        volumes: list[VolumeState] = []
        for vol in await self._kube.get_resources(_VOLUMES, self.namespace):
            name = vol.get("metadata", {}).get("name", "")
            status = vol.get("status", {})
            spec = vol.get("spec", {})
            volumes.append(VolumeState(
                name=name,
                state=status.get("state", "unknown") or "unknown",
                robustness=status.get("robustness", "unknown") or "unknown",
                attached_node=status.get("currentNodeID") or None,
                replica_nodes=frozenset(placement.get(name, ())),
                replica_count=int(spec.get("numberOfReplicas", 0) or 0),
            ))
        return volumes

    async def attached_volumes(self, node: str) -> list[str]:
        """Names of volumes still attached to *node*.

        A volume reported attached without a node is counted too, since
        the storage layer has not said where it is.
        """
        volumes = await self.list_volumes(with_replicas=False)
        return [v.name for v in volumes if v.attached_to(node)]

    async def settings_snapshot(self) -> dict[str, str]:
        """Values of :data:`SNAPSHOT_SETTINGS` (missing settings omitted)."""
        snapshot: dict[str, str] = {}
        for item in await self._kube.get_resources(_SETTINGS, self.namespace):
            name = item.get("metadata", {}).get("name")
            if name in SNAPSHOT_SETTINGS:
                snapshot[name] = str(item.get("value", ""))
        return snapshot

    async def manager_readiness(self) -> tuple[int, int]:
        """``(ready, total)`` storage manager pods."""
        pods = await self._kube.list_pods(
            namespace=self.namespace, label_selector=_MANAGER_SELECTOR
        )
        ready = sum(1 for p in pods if _pod_ready(p))
        return ready, len(pods)
