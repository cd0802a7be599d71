"""
Steward Test Configuration — Shared Fixtures

Two layers of doubles:

    FakeClock    — monotonic time that only moves when the code under test
                   sleeps, so timing bounds are asserted exactly.
    FakeCluster  — stands in for ``run_proc``: answers kubectl, systemctl
                   and pkill invocations from an in-memory cluster and
                   records every argv, so the real clients and the real
                   CommandRunner (dry-run guard included) are exercised.

All fixtures use pytest's function scope so each test starts clean.
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Callable, Optional
from unittest.mock import patch

import pytest

from steward.cluster import (
    ArgoClient,
    Collaborators,
    CommandRunner,
    HostControl,
    KubeClient,
    LonghornClient,
)
from steward.config import MaintenanceOptions, StewardConfig
from steward.log import SessionLogger
from steward.models import NodeRole

_PATCH_RUN_PROC = "steward.cluster.base.run_proc"
_PATCH_OS_SYNC = "steward.cluster.host.os.sync"

_MUTATING_KUBECTL = frozenset({"cordon", "uncordon", "delete", "drain"})


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------

class FakeClock:
    """Monotonic clock advanced only by :meth:`sleep`.

    ``on_sleep`` (if set) runs before each sleep yields, which lets a test
    inject a signal at a precise point of a wait loop.
    """

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []
        self.on_sleep: Optional[Callable[[], None]] = None

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        if self.on_sleep is not None:
            self.on_sleep()
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Cluster
# ---------------------------------------------------------------------------

def make_node(name: str, role: NodeRole = NodeRole.WORKER, *, ready: bool = True) -> dict[str, Any]:
    labels = {"kubernetes.io/hostname": name}
    if role is NodeRole.CONTROL_PLANE:
        labels["node-role.kubernetes.io/control-plane"] = "true"
    return {
        "metadata": {"name": name, "labels": labels},
        "spec": {},
        "status": {"conditions": [{"type": "Ready", "status": "True" if ready else "False"}]},
    }


def make_pod(
    name: str,
    node: str,
    namespace: str = "apps",
    *,
    phase: str = "Running",
    daemonset: bool = False,
) -> dict[str, Any]:
    meta: dict[str, Any] = {"name": name, "namespace": namespace}
    if daemonset:
        meta["ownerReferences"] = [{"kind": "DaemonSet", "name": "ds"}]
    return {"metadata": meta, "spec": {"nodeName": node}, "status": {"phase": phase}}


def make_volume(
    name: str,
    node: Optional[str],
    *,
    state: str = "attached",
    robustness: str = "healthy",
    replicas: int = 2,
) -> dict[str, Any]:
    return {
        "metadata": {"name": name},
        "spec": {"numberOfReplicas": replicas},
        "status": {"state": state, "robustness": robustness, "currentNodeID": node or ""},
    }


def make_replica(volume: str, node: str, mode: str = "RW") -> dict[str, Any]:
    return {"spec": {"volumeName": volume, "nodeID": node}, "status": {"mode": mode}}


class FakeCluster:
    """In-memory cluster answering the commands steward issues.

    Attributes:
        nodes: Node objects by name.
        pods: Pod objects; deletions remove them.
        volumes: Storage volume objects.
        replicas: Storage replica objects.
        apps: Reconciler application objects.
        namespaces: Existing namespaces.
        stubborn: Pod names that ignore graceful deletion.
        immortal: Pod names that ignore every deletion.
        sticky_volumes: Volumes stay attached even after the node empties.
        service_active: Number of ``is-active`` probes that report active.
        calls: Every argv seen, in order.
    """

    def __init__(self) -> None:
        self.nodes: dict[str, dict[str, Any]] = {}
        self.pods: list[dict[str, Any]] = []
        self.volumes: list[dict[str, Any]] = []
        self.replicas: list[dict[str, Any]] = []
        self.apps: list[dict[str, Any]] = []
        self.namespaces: set[str] = {"default", "kube-system"}
        self.stubborn: set[str] = set()
        self.immortal: set[str] = set()
        self.sticky_volumes = False
        self.service_active = 0
        self.cluster_up = True
        self.fail: dict[str, tuple[int, str]] = {}
        self.calls: list[list[str]] = []

    # ── Inspection helpers ───────────────────────────────────────────────

    @property
    def mutating_calls(self) -> list[list[str]]:
        out = []
        for argv in self.calls:
            if argv[0] == "kubectl" and len(argv) > 1 and argv[1] in _MUTATING_KUBECTL:
                if argv[1:3] != ["drain", "--help"]:
                    out.append(argv)
            elif argv[0] == "systemctl" and argv[1] != "is-active":
                out.append(argv)
            elif argv[0] == "pkill":
                out.append(argv)
        return out

    def called(self, *prefix: str) -> bool:
        return any(argv[: len(prefix)] == list(prefix) for argv in self.calls)

    def pod_names(self, node: Optional[str] = None) -> list[str]:
        return [
            p["metadata"]["name"] for p in self.pods
            if node is None or p["spec"]["nodeName"] == node
        ]

    def workload_names(self, node: str) -> list[str]:
        """Pods on *node* that are not DaemonSet-owned."""
        return [
            p["metadata"]["name"] for p in self.pods
            if p["spec"]["nodeName"] == node and not p["metadata"].get("ownerReferences")
        ]

    # ── Command dispatch ─────────────────────────────────────────────────

    async def __call__(self, *argv: str, timeout: float = 30.0, **_kwargs: Any) -> tuple[int, str, str]:
        args = list(argv)
        self.calls.append(args)
        await asyncio.sleep(0)
        key = " ".join(args[:3])
        for prefix, (rc, err) in self.fail.items():
            if key.startswith(prefix):
                return rc, "", err
        if args[0] == "kubectl":
            return self._kubectl(args[1:])
        if args[0] == "systemctl":
            return self._systemctl(args[1:])
        if args[0] == "pkill":
            return 1, "", ""
        return 127, "", f"{args[0]}: not found"

    @staticmethod
    def _json(obj: Any) -> tuple[int, str, str]:
        return 0, json.dumps(obj), ""

    def _volume_view(self) -> list[dict[str, Any]]:
        out = []
        for vol in self.volumes:
            vol = json.loads(json.dumps(vol))
            status = vol["status"]
            node = status.get("currentNodeID")
            if (
                status.get("state") == "attached"
                and node
                and not self.sticky_volumes
                and not self.workload_names(node)
            ):
                status["state"] = "detached"
                status["currentNodeID"] = ""
            out.append(vol)
        return out

    def _kubectl(self, args: list[str]) -> tuple[int, str, str]:
        if not self.cluster_up:
            return 1, "", "The connection to the server was refused"
        verb = args[0]
        if verb == "cluster-info":
            return 0, "Kubernetes control plane is running", ""
        if verb == "cordon":
            self.nodes[args[1]]["spec"]["unschedulable"] = True
            return 0, f"node/{args[1]} cordoned", ""
        if verb == "uncordon":
            self.nodes[args[1]]["spec"].pop("unschedulable", None)
            return 0, f"node/{args[1]} uncordoned", ""
        if verb == "delete":
            return self._delete_pod(args)
        if verb == "drain":
            if args[1] == "--help":
                return 0, "  --disable-eviction=false: ...", ""
            self.pods = [
                p for p in self.pods
                if p["spec"]["nodeName"] != args[1] or p["metadata"]["name"] in self.immortal
            ]
            return 0, f"node/{args[1]} drained", ""
        if verb == "get":
            return self._get(args[1:])
        return 1, "", f"unknown verb {verb}"

    def _delete_pod(self, args: list[str]) -> tuple[int, str, str]:
        name = args[2]
        force = "--force" in args
        if name in self.immortal or (name in self.stubborn and not force):
            return 0, f'pod "{name}" deleted', ""
        self.pods = [p for p in self.pods if p["metadata"]["name"] != name]
        return 0, f'pod "{name}" deleted', ""

    def _get(self, args: list[str]) -> tuple[int, str, str]:
        kind = args[0]
        if kind.startswith("--raw="):
            return 0, "ok", ""
        if kind == "namespace":
            if args[1] in self.namespaces:
                return 0, f"namespace/{args[1]}", ""
            return 1, "", f'namespaces "{args[1]}" not found'
        if kind == "node":
            node = self.nodes.get(args[1])
            if node is None:
                return 1, "", f'Error from server (NotFound): nodes "{args[1]}" not found'
            return self._json(node)
        if kind == "nodes":
            return self._json({"items": list(self.nodes.values())})
        if kind == "pods":
            return self._json({"items": self._select_pods(args)})
        if kind == "events":
            return self._json({"items": []})
        if kind == "volumes.longhorn.io":
            return self._json({"items": self._volume_view()})
        if kind == "replicas.longhorn.io":
            return self._json({"items": self.replicas})
        if kind == "settings.longhorn.io":
            return self._json({"items": [
                {"metadata": {"name": "default-replica-count"}, "value": "2"},
            ]})
        if kind == "applications.argoproj.io":
            return self._json({"items": self.apps})
        return 1, "", f'error: the server doesn\'t have a resource type "{kind}"'

    def _select_pods(self, args: list[str]) -> list[dict[str, Any]]:
        selector = next((a.split("=", 1)[1] for a in args if a.startswith("--field-selector=")), "")
        if "status.phase!=Running" in selector:
            return []
        if "-l" in args:
            return [
                {"metadata": {"name": "longhorn-manager-x"},
                 "status": {"containerStatuses": [{"ready": True}]}},
            ]
        node = None
        for part in selector.split(","):
            if part.startswith("spec.nodeName="):
                node = part.split("=", 1)[1]
        return [p for p in self.pods if node is None or p["spec"]["nodeName"] == node]

    def _systemctl(self, args: list[str]) -> tuple[int, str, str]:
        if args[0] == "is-active":
            if self.service_active > 0:
                self.service_active -= 1
                return 0, "", ""
            return 3, "", ""
        return 0, "", ""


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def cfg(tmp_path: Path) -> StewardConfig:
    """StewardConfig pointing every directory at tmp_path.

    Returns:
        A StewardConfig with short, deterministic intervals.
    """
    return StewardConfig(
        log_dir=tmp_path / "log",
        state_dir=tmp_path / "state",
        api_timeout_s=5.0,
        poll_interval_s=5.0,
        drain_poll_interval_s=2.0,
        force_settle_s=10.0,
        service_stop_wait_s=5.0,
        service_kill_settle_s=3.0,
        drop_caches=False,
        min_available_memory_mb=500,
    )


@pytest.fixture()
def options() -> MaintenanceOptions:
    return MaintenanceOptions(node="worker-1", grace_period=30, force_timeout=120, storage_wait=60)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Cluster fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def cluster() -> FakeCluster:
    """Two-node cluster: cp-1 (control plane) and worker-1 with two pods,
    one DaemonSet pod, and one volume attached to worker-1 with a replica
    on each node.
    """
    fake = FakeCluster()
    fake.nodes["cp-1"] = make_node("cp-1", NodeRole.CONTROL_PLANE)
    fake.nodes["worker-1"] = make_node("worker-1")
    fake.pods = [
        make_pod("web-1", "worker-1"),
        make_pod("db-0", "worker-1", namespace="data"),
        make_pod("node-exporter-a", "worker-1", namespace="monitoring", daemonset=True),
        make_pod("api-1", "cp-1"),
    ]
    fake.namespaces.add("longhorn-system")
    fake.volumes = [make_volume("pvc-data", "worker-1")]
    fake.replicas = [make_replica("pvc-data", "worker-1"), make_replica("pvc-data", "cp-1")]
    return fake


@pytest.fixture()
def fake_host(monkeypatch):
    """Make HostControl's environment reads deterministic."""
    monkeypatch.setattr(HostControl, "is_root", staticmethod(lambda: True))
    monkeypatch.setattr(HostControl, "which", staticmethod(lambda binary: f"/usr/bin/{binary}"))
    monkeypatch.setattr(HostControl, "hostnames", staticmethod(lambda: {"worker-1", "worker-1.lan"}))
    monkeypatch.setattr(HostControl, "available_memory_mb", staticmethod(lambda: 4096))
    monkeypatch.setattr(HostControl, "leftover_processes", staticmethod(lambda pattern: []))
    monkeypatch.setattr(
        HostControl, "leftover_mounts", staticmethod(lambda keywords, mounts_file=None: [])
    )


def make_collab(cfg: StewardConfig, *, dry_run: bool = False) -> Collaborators:
    runner = CommandRunner(timeout=cfg.api_timeout_s, dry_run=dry_run)
    kube = KubeClient(runner, kubectl=cfg.kubectl)
    return Collaborators(
        runner=runner,
        kube=kube,
        longhorn=LonghornClient(kube, cfg.storage_namespace),
        argo=ArgoClient(kube, cfg.reconciler_namespace),
        host=HostControl(runner),
    )


@pytest.fixture()
def wired(cluster: FakeCluster, fake_host):
    """Route every external command to *cluster* for the test's duration."""
    with patch(_PATCH_RUN_PROC, cluster), patch(_PATCH_OS_SYNC):
        yield cluster


@pytest.fixture()
def slog(tmp_path: Path):
    logger = SessionLogger(tmp_path / "log", "test0001", "worker-1", console_level=None)
    yield logger
    logger.close()
