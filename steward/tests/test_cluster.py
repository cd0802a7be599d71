"""
Tests for steward/cluster — CommandRunner dry-run seam and client parsing.

Coverage:
    TestCommandRunner   dry-run suppression, mutation hook, error mapping
    TestKubeClient      node/pod parsing, evictable workload filtering
    TestLonghornClient  volume/replica join, attachment per node
    TestArgoClient      out-of-sync detection
    TestHostControl     mount scan, sync and cache drop accounting
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from steward.cluster import (
    CommandRunner,
    node_hostnames,
    node_is_ready,
    node_is_unschedulable,
    node_role,
)
from steward.exceptions import CommandError
from steward.models import NodeRole, PowerAction, Workload

from conftest import make_collab, make_node, make_pod, make_volume

# ---------------------------------------------------------------------------
# Patch constants
# ---------------------------------------------------------------------------

_PATCH_RUN_PROC = "steward.cluster.base.run_proc"


# ---------------------------------------------------------------------------
# TestCommandRunner
# ---------------------------------------------------------------------------

class TestCommandRunner:
    @pytest.mark.asyncio
    async def test_dry_run_suppresses_mutation(self):
        hook = MagicMock()
        runner = CommandRunner(dry_run=True, on_mutation=hook)

        with patch(_PATCH_RUN_PROC, AsyncMock()) as proc:
            result = await runner.mutate("kubectl", "cordon", "n1", description="cordon n1")

        proc.assert_not_called()
        assert result.ok and result.dry_run
        assert runner.mutations_suppressed == 1
        assert runner.mutations_issued == 0
        hook.assert_called_once_with("cordon n1", ["kubectl", "cordon", "n1"], True, True, "")

    @pytest.mark.asyncio
    async def test_dry_run_still_reads(self):
        runner = CommandRunner(dry_run=True)

        with patch(_PATCH_RUN_PROC, AsyncMock(return_value=(0, "ok", ""))) as proc:
            result = await runner.read("kubectl", "get", "nodes")

        proc.assert_awaited_once()
        assert result.stdout == "ok"

    @pytest.mark.asyncio
    async def test_mutation_failure_raises_and_is_reported(self):
        hook = MagicMock()
        runner = CommandRunner(on_mutation=hook)

        with patch(_PATCH_RUN_PROC, AsyncMock(return_value=(1, "", "forbidden"))):
            with pytest.raises(CommandError) as exc_info:
                await runner.mutate("kubectl", "cordon", "n1", description="cordon n1")

        assert exc_info.value.returncode == 1
        assert "forbidden" in exc_info.value.message
        assert hook.call_args[0][2] is False
        assert runner.mutations_issued == 1

    @pytest.mark.asyncio
    async def test_unchecked_mutation_returns_result(self):
        runner = CommandRunner()

        with patch(_PATCH_RUN_PROC, AsyncMock(return_value=(1, "", ""))):
            result = await runner.mutate("pkill", "-KILL", "-f", "x", description="pkill", check=False)

        assert result.returncode == 1

    @pytest.mark.asyncio
    async def test_timeout_becomes_command_error(self):
        runner = CommandRunner(timeout=2.0)

        with patch(_PATCH_RUN_PROC, AsyncMock(side_effect=asyncio.TimeoutError)):
            with pytest.raises(CommandError) as exc_info:
                await runner.read("kubectl", "get", "nodes")

        assert exc_info.value.returncode is None
        assert "timed out" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_missing_binary_becomes_127(self):
        runner = CommandRunner()

        with patch(_PATCH_RUN_PROC, AsyncMock(side_effect=FileNotFoundError("kubectl"))):
            with pytest.raises(CommandError) as exc_info:
                await runner.read("kubectl", "version")

        assert exc_info.value.returncode == 127

    @pytest.mark.asyncio
    async def test_per_call_timeout_override(self):
        runner = CommandRunner(timeout=30.0)

        with patch(_PATCH_RUN_PROC, AsyncMock(return_value=(0, "", ""))) as proc:
            await runner.read("kubectl", "get", "nodes", timeout=3.0)

        assert proc.call_args.kwargs["timeout"] == 3.0


# ---------------------------------------------------------------------------
# Object helpers
# ---------------------------------------------------------------------------

class TestNodeHelpers:
    def test_ready(self):
        assert node_is_ready(make_node("a")) is True
        assert node_is_ready(make_node("a", ready=False)) is False
        assert node_is_ready({}) is False

    def test_unschedulable(self):
        node = make_node("a")
        assert node_is_unschedulable(node) is False
        node["spec"]["unschedulable"] = True
        assert node_is_unschedulable(node) is True

    def test_role_from_labels(self):
        assert node_role(make_node("cp", NodeRole.CONTROL_PLANE)) is NodeRole.CONTROL_PLANE
        assert node_role(make_node("w")) is NodeRole.WORKER
        legacy = make_node("old")
        legacy["metadata"]["labels"]["node-role.kubernetes.io/master"] = "true"
        assert node_role(legacy) is NodeRole.CONTROL_PLANE

    def test_hostnames_from_name_and_label(self):
        node = make_node("worker-1")
        node["metadata"]["labels"]["kubernetes.io/hostname"] = "Worker-1.lan"
        assert node_hostnames(node) == {"worker-1", "worker-1.lan"}


# ---------------------------------------------------------------------------
# TestKubeClient
# ---------------------------------------------------------------------------

class TestKubeClient:
    @pytest.mark.asyncio
    async def test_get_node_not_found_returns_none(self, cfg, wired):
        kube = make_collab(cfg).kube
        assert await kube.get_node("ghost") is None
        assert (await kube.get_node("worker-1"))["metadata"]["name"] == "worker-1"

    @pytest.mark.asyncio
    async def test_get_node_other_error_raises(self, cfg, wired):
        wired.cluster_up = False
        with pytest.raises(CommandError):
            await make_collab(cfg).kube.get_node("worker-1")

    @pytest.mark.asyncio
    async def test_evictable_workloads_filters(self, cfg, wired):
        wired.pods += [
            make_pod("done", "worker-1", phase="Succeeded"),
            make_pod("coredns", "worker-1", namespace="kube-system"),
        ]
        mirror = make_pod("static", "worker-1")
        mirror["metadata"]["annotations"] = {"kubernetes.io/config.mirror": "x"}
        wired.pods.append(mirror)

        workloads = await make_collab(cfg).kube.evictable_workloads(
            "worker-1", cfg.drain_excluded_namespaces
        )

        assert workloads == [Workload("apps", "web-1"), Workload("data", "db-0")]

    @pytest.mark.asyncio
    async def test_delete_pod_argv(self, cfg, wired):
        await make_collab(cfg).kube.delete_pod(Workload("apps", "web-1"), grace_period=0, force=True)

        argv = wired.calls[-1]
        assert argv[:6] == ["kubectl", "delete", "pod", "web-1", "-n", "apps"]
        assert "--grace-period=0" in argv
        assert "--force" in argv
        assert "--wait=false" in argv

    @pytest.mark.asyncio
    async def test_drain_argv(self, cfg, wired):
        result = await make_collab(cfg).kube.drain(
            "worker-1", grace_period=30, timeout_s=120, disable_eviction=True
        )

        assert result.ok
        argv = wired.calls[-1]
        assert "--ignore-daemonsets" in argv
        assert "--timeout=120s" in argv
        assert "--disable-eviction" in argv

    @pytest.mark.asyncio
    async def test_kubeconfig_flag(self, cfg, wired, tmp_path):
        from steward.cluster import KubeClient

        kube = KubeClient(CommandRunner(), kubeconfig=tmp_path / "kc")
        await kube.cluster_info()

        assert wired.calls[-1][:3] == ["kubectl", "--kubeconfig", str(tmp_path / "kc")]

    @pytest.mark.asyncio
    async def test_invalid_json_raises(self, cfg):
        kube = make_collab(cfg).kube
        with patch(_PATCH_RUN_PROC, AsyncMock(return_value=(0, "not json", ""))):
            with pytest.raises(CommandError):
                await kube.list_nodes()


# ---------------------------------------------------------------------------
# TestLonghornClient
# ---------------------------------------------------------------------------

class TestLonghornClient:
    @pytest.mark.asyncio
    async def test_volume_replica_join(self, cfg, wired):
        wired.sticky_volumes = True
        volumes = await make_collab(cfg).longhorn.list_volumes()

        assert len(volumes) == 1
        vol = volumes[0]
        assert vol.name == "pvc-data"
        assert vol.attached_node == "worker-1"
        assert vol.replica_nodes == frozenset({"worker-1", "cp-1"})
        assert vol.replica_count == 2

    @pytest.mark.asyncio
    async def test_attached_volumes_per_node(self, cfg, wired):
        wired.sticky_volumes = True
        wired.volumes.append(make_volume("pvc-other", "cp-1"))
        wired.volumes.append(make_volume("pvc-free", None, state="detached"))
        longhorn = make_collab(cfg).longhorn

        assert await longhorn.attached_volumes("worker-1") == ["pvc-data"]
        assert await longhorn.attached_volumes("cp-1") == ["pvc-other"]

    @pytest.mark.asyncio
    async def test_attached_without_node_counts_everywhere(self, cfg, wired):
        wired.volumes = [make_volume("pvc-limbo", None)]
        assert await make_collab(cfg).longhorn.attached_volumes("worker-1") == ["pvc-limbo"]

    @pytest.mark.asyncio
    async def test_non_rw_replicas_ignored(self, cfg, wired):
        wired.replicas[1]["status"]["mode"] = "WO"
        volumes = await make_collab(cfg).longhorn.list_volumes()
        assert volumes[0].replica_nodes == frozenset({"worker-1"})

    @pytest.mark.asyncio
    async def test_present_and_managers(self, cfg, wired):
        longhorn = make_collab(cfg).longhorn
        assert await longhorn.present() is True
        assert await longhorn.manager_readiness() == (1, 1)
        assert await longhorn.settings_snapshot() == {"default-replica-count": "2"}


# ---------------------------------------------------------------------------
# TestArgoClient
# ---------------------------------------------------------------------------

class TestArgoClient:
    @pytest.mark.asyncio
    async def test_absent(self, cfg, wired):
        assert await make_collab(cfg).argo.present() is False

    @pytest.mark.asyncio
    async def test_out_of_sync(self, cfg, wired):
        wired.namespaces.add("argocd")
        wired.apps = [
            {"metadata": {"name": "web"}, "status": {"sync": {"status": "Synced"}, "health": {"status": "Healthy"}}},
            {"metadata": {"name": "db"}, "status": {"sync": {"status": "OutOfSync"}, "health": {"status": "Healthy"}}},
            {"metadata": {"name": "new"}, "status": {}},
        ]
        argo = make_collab(cfg).argo

        assert await argo.present() is True
        assert await argo.out_of_sync() == ["db", "new"]


# ---------------------------------------------------------------------------
# TestHostControl
# ---------------------------------------------------------------------------

class TestHostControl:
    def test_leftover_mounts(self, tmp_path):
        from steward.cluster import HostControl

        mounts = tmp_path / "mounts"
        mounts.write_text(
            "/dev/sda1 / ext4 rw 0 0\n"
            "tmpfs /var/lib/kubelet/pods/abc/volumes tmpfs rw 0 0\n"
            "overlay /run/k3s/containerd/io.containerd/rootfs overlay rw 0 0\n"
        )

        found = HostControl.leftover_mounts(("k3s", "kubelet"), mounts_file=mounts)

        assert found == [
            "/var/lib/kubelet/pods/abc/volumes",
            "/run/k3s/containerd/io.containerd/rootfs",
        ]

    def test_hostnames_short_and_fqdn(self):
        from steward.cluster import HostControl

        with patch("steward.cluster.host.socket.gethostname", return_value="Worker-1"), \
                patch("steward.cluster.host.socket.getfqdn", return_value="worker-1.home.lan"):
            assert HostControl.hostnames() == {"worker-1", "worker-1.home.lan"}

    def test_leftover_mounts_unreadable(self, tmp_path):
        from steward.cluster import HostControl

        assert HostControl.leftover_mounts(("k3s",), mounts_file=tmp_path / "missing") == []

    def test_sync_suppressed_in_dry_run(self, cfg):
        collab = make_collab(cfg, dry_run=True)
        with patch("steward.cluster.host.os.sync") as sync:
            collab.host.sync_filesystems()
        sync.assert_not_called()
        assert collab.runner.mutations_suppressed == 1

    def test_sync_issued(self, cfg):
        collab = make_collab(cfg)
        with patch("steward.cluster.host.os.sync") as sync:
            collab.host.sync_filesystems()
        sync.assert_called_once()
        assert collab.runner.mutations_issued == 1

    def test_drop_caches_failure_reported(self, cfg, tmp_path):
        collab = make_collab(cfg)
        assert collab.host.drop_caches(tmp_path / "no" / "such" / "file") is False
        assert collab.host.drop_caches(tmp_path / "drop_caches") is True
        assert (tmp_path / "drop_caches").read_text() == "3\n"

    @pytest.mark.asyncio
    async def test_power_and_is_active(self, cfg, wired):
        host = make_collab(cfg).host
        assert await host.is_active("k3s-agent") is False
        await host.power(PowerAction.REBOOT)
        assert wired.calls[-1] == ["systemctl", "reboot"]
