#!/usr/bin/env python3
"""
Steward — Reconciliation Tool Client (Argo CD)

Optional collaborator: when the reconciler namespace does not exist the
auditor skips the sync check entirely.

Author: Steward Project
Version: 0.1.0
"""

from dataclasses import dataclass

from steward.cluster.kube import KubeClient

_APPLICATIONS = "applications.argoproj.io"


@dataclass(frozen=True)
class AppStatus:
    """Sync and health status of one reconciler application."""

    name: str
    sync: str
    health: str

    @property
    def synced(self) -> bool:
        return self.sync == "Synced"


class ArgoClient:
    """Reads application status from the reconciler namespace."""

    def __init__(self, kube: KubeClient, namespace: str = "argocd") -> None:
        self._kube = kube
        self.namespace = namespace

    async def present(self) -> bool:
        return await self._kube.namespace_exists(self.namespace)

    async def applications(self) -> list[AppStatus]:
        apps: list[AppStatus] = []
        for item in await self._kube.get_resources(_APPLICATIONS, self.namespace):
            status = item.get("status", {})
            apps.append(AppStatus(
                name=item.get("metadata", {}).get("name", ""),
                sync=status.get("sync", {}).get("status", "Unknown") or "Unknown",
                health=status.get("health", {}).get("status", "Unknown") or "Unknown",
            ))
        return apps

    async def out_of_sync(self) -> list[str]:
        return [a.name for a in await self.applications() if not a.synced]
