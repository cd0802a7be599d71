"""
Steward Cluster — External Collaborators

Async clients for everything a maintenance session reads from or writes
to.  All of them share one :class:`CommandRunner`, which owns the call
timeout and the dry-run guard.

Public API:
    CommandRunner    — read()/mutate() seam with per-call timeout
    CommandResult    — outcome of one external command
    KubeClient       — nodes, pods, events, health endpoints, drain
    LonghornClient   — volumes, replicas, settings, manager readiness
    ArgoClient       — application sync/health status
    HostControl      — systemd, signals, sync, power
    Collaborators    — bundle of the four clients for one session
    build_collaborators — construct the bundle from configuration
"""

import os
from dataclasses import dataclass
from typing import Optional

from .argocd import AppStatus, ArgoClient
from .base import CommandResult, CommandRunner, MutationHook, run_proc
from .host import HostControl
from .kube import KubeClient, node_hostnames, node_is_ready, node_is_unschedulable, node_role
from .longhorn import LonghornClient


@dataclass
class Collaborators:
    """The clients one session talks to, sharing a single runner."""

    runner: CommandRunner
    kube: KubeClient
    longhorn: LonghornClient
    argo: ArgoClient
    host: HostControl


def build_collaborators(
    cfg,
    *,
    dry_run: bool = False,
    on_mutation: Optional[MutationHook] = None,
) -> Collaborators:
    """Wire every collaborator client from a :class:`~steward.config.StewardConfig`."""
    from steward.config import discover_kubeconfig

    kubeconfig = discover_kubeconfig(cfg)
    env = dict(os.environ)
    if kubeconfig is not None:
        env["KUBECONFIG"] = str(kubeconfig)
    runner = CommandRunner(
        timeout=cfg.api_timeout_s,
        env=env,
        dry_run=dry_run,
        on_mutation=on_mutation,
    )
    kube = KubeClient(runner, kubectl=cfg.kubectl, kubeconfig=kubeconfig)
    return Collaborators(
        runner=runner,
        kube=kube,
        longhorn=LonghornClient(kube, cfg.storage_namespace),
        argo=ArgoClient(kube, cfg.reconciler_namespace),
        host=HostControl(runner),
    )


__all__ = [
    "AppStatus",
    "ArgoClient",
    "Collaborators",
    "CommandResult",
    "CommandRunner",
    "HostControl",
    "KubeClient",
    "LonghornClient",
    "MutationHook",
    "build_collaborators",
    "node_hostnames",
    "node_is_ready",
    "node_is_unschedulable",
    "node_role",
    "run_proc",
]
