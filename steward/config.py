#!/usr/bin/env python3
"""
Steward Configuration — Typed, Validated Settings

Two layers of configuration:

    StewardConfig      — host-level operational parameters (STEWARD_* env
                         prefix, optional .env file).  Paths, binaries,
                         namespaces, poll intervals, service unit names.
    MaintenanceOptions — per-invocation values parsed from the command
                         line (target node, grace period, dry-run …).
                         Range validation lives in the preflight validator
                         so violations surface as PreflightFailure.
    get_config()       — @lru_cache factory; call this everywhere

Usage:
    from steward.config import get_config

    cfg = get_config()
    print(cfg.log_dir)             # /var/log/k8s-homelab
    print(cfg.storage_namespace)   # longhorn-system

    # Invalidate cache (e.g. in tests):
    get_config.cache_clear()

Dependencies:
    pydantic>=2.10.0
    pydantic-settings>=2.1.0

Author: Steward Project
Version: 0.1.0
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from steward.models import NodeRole, PowerAction

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_GRACE_PERIOD: int = 30
DEFAULT_FORCE_TIMEOUT: int = 120
DEFAULT_STORAGE_WAIT: int = 180

MIN_GRACE_PERIOD: int = 10
MIN_FORCE_TIMEOUT: int = 30

_K3S_KUBECONFIG = Path("/etc/rancher/k3s/k3s.yaml")

DRAIN_STRATEGIES: tuple[str, ...] = ("evict", "kubectl")


# ---------------------------------------------------------------------------
# Host-level settings
# ---------------------------------------------------------------------------

class StewardConfig(BaseSettings):
    """Steward operational parameters.

    All fields are read from environment variables with the ``STEWARD_``
    prefix (e.g. ``STEWARD_LOG_DIR``).

    Attributes:
        log_dir: Directory for per-invocation session logs.
        state_dir: Directory holding CordonMarker and lock files.  Must
            survive a reboot for ``steward restore`` to work.
        log_level: Python logging level name (case-insensitive).
        kubectl: kubectl binary name or path.
        kubeconfig: Explicit kubeconfig path; discovered when ``None``.
        api_timeout_s: Timeout applied to every external call.
        poll_interval_s: Storage quiescence poll interval.
        drain_poll_interval_s: Pod-gone poll interval during the grace period.
        force_settle_s: Settle pause after forced eviction.
        service_stop_wait_s: Wait after a graceful service stop request.
        service_kill_settle_s: Settle pause between escalation steps.
        storage_namespace: Namespace of the distributed storage layer.
        reconciler_namespace: Namespace of the reconciliation tool.
        drain_excluded_namespaces: Namespaces never evicted by the drain.
        control_plane_service: Local agent unit on control-plane nodes.
        worker_service: Local agent unit on worker nodes.
        control_plane_process: Agent process pattern on control-plane nodes.
        worker_process: Agent process pattern on worker nodes.
        drop_caches: Drop page caches after the filesystem sync.
        confirm_token: Exact answer accepted by the confirmation gate.
        min_available_memory_mb: Low-memory warning threshold.

    Example:
        >>> cfg = StewardConfig()
        >>> cfg.control_plane_service
        'k3s'
    """

    log_dir: Path = Path("/var/log/k8s-homelab")
    state_dir: Path = Path("/var/lib/steward")
    log_level: str = "INFO"

    kubectl: str = "kubectl"
    kubeconfig: Optional[Path] = None
    api_timeout_s: float = Field(30.0, gt=0)

    poll_interval_s: float = Field(5.0, gt=0)
    drain_poll_interval_s: float = Field(2.0, gt=0)
    force_settle_s: float = Field(10.0, ge=0)
    service_stop_wait_s: float = Field(5.0, ge=0)
    service_kill_settle_s: float = Field(3.0, ge=0)

    storage_namespace: str = "longhorn-system"
    reconciler_namespace: str = "argocd"
    drain_excluded_namespaces: list[str] = Field(
        default_factory=lambda: ["kube-system", "longhorn-system"]
    )

    control_plane_service: str = "k3s"
    worker_service: str = "k3s-agent"
    control_plane_process: str = "k3s server"
    worker_process: str = "k3s agent"

    drop_caches: bool = True
    confirm_token: str = "YES"
    min_available_memory_mb: int = 500

    model_config = SettingsConfigDict(
        env_prefix="STEWARD_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalise and validate the logging level string.

        Raises:
            ValueError: If *v* is not a recognised Python logging level.
        """
        valid: set[str] = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = str(v).upper()
        if upper not in valid:
            raise ValueError(
                f"STEWARD_LOG_LEVEL must be one of {sorted(valid)}, got: {v!r}"
            )
        return upper

    def service_for(self, role: NodeRole) -> str:
        """Local orchestration agent unit stopped for *role*."""
        if role is NodeRole.CONTROL_PLANE:
            return self.control_plane_service
        return self.worker_service

    def process_for(self, role: NodeRole) -> str:
        """Command-line pattern of the agent process for *role* (pkill -f)."""
        if role is NodeRole.CONTROL_PLANE:
            return self.control_plane_process
        return self.worker_process

    @property
    def marker_dir(self) -> Path:
        return self.state_dir / "markers"

    @property
    def lock_dir(self) -> Path:
        return self.state_dir / "locks"


def discover_kubeconfig(cfg: StewardConfig) -> Optional[Path]:
    """Resolve the kubeconfig kubectl should use.

    Priority:
        1. ``cfg.kubeconfig`` (``STEWARD_KUBECONFIG``).
        2. ``KUBECONFIG`` already present in the environment.
        3. When running under sudo, the invoking user's ``~/.kube/config``.
        4. The k3s system kubeconfig ``/etc/rancher/k3s/k3s.yaml``.

    Returns:
        Path to a kubeconfig, or ``None`` to let kubectl use its default.
    """
    if cfg.kubeconfig is not None:
        return cfg.kubeconfig
    env_value = os.environ.get("KUBECONFIG")
    if env_value:
        return Path(env_value)
    sudo_user = os.environ.get("SUDO_USER")
    if sudo_user:
        candidate = Path("/home") / sudo_user / ".kube" / "config"
        if candidate.is_file():
            return candidate
    if _K3S_KUBECONFIG.is_file():
        return _K3S_KUBECONFIG
    return None


# ---------------------------------------------------------------------------
# Per-invocation options
# ---------------------------------------------------------------------------

@dataclass
class MaintenanceOptions:
    """Resolved command-line options for one maintenance session.

    Attributes:
        node: Target node name.
        role: Node role; detected from node labels when ``None``.
        grace_period: Pod termination budget in seconds.
        force_timeout: Eviction escalation bound in seconds.
        storage_wait: Volume-detach bound in seconds.
        dry_run: Suppress every mutating call.
        allow_single_replica: Bypass the replica-placement warning.
        action: Terminal power action.
        peer_nodes: Override for the surviving node set used by the
            replica placement check.
        drain_strategy: ``"evict"`` (per-workload eviction) or
            ``"kubectl"`` (delegate to ``kubectl drain``).
    """

    node: str
    role: Optional[NodeRole] = None
    grace_period: int = DEFAULT_GRACE_PERIOD
    force_timeout: int = DEFAULT_FORCE_TIMEOUT
    storage_wait: int = DEFAULT_STORAGE_WAIT
    dry_run: bool = False
    allow_single_replica: bool = False
    action: PowerAction = PowerAction.POWEROFF
    peer_nodes: list[str] = field(default_factory=list)
    drain_strategy: str = "evict"

    def summary(self) -> dict[str, object]:
        """Flat view used by the confirmation gate and the session log."""
        return {
            "node": self.node,
            "role": self.role.value if self.role else "auto",
            "grace_period": self.grace_period,
            "force_timeout": self.force_timeout,
            "storage_wait": self.storage_wait,
            "dry_run": self.dry_run,
            "allow_single_replica": self.allow_single_replica,
            "action": self.action.value,
            "drain_strategy": self.drain_strategy,
        }


# ---------------------------------------------------------------------------
# Cached factory
# ---------------------------------------------------------------------------

@lru_cache(maxsize=1)
def get_config(env_file: Optional[str] = None) -> StewardConfig:
    """Return the cached host configuration.

    Args:
        env_file: Optional ``.env`` file.  Falls back to
            ``/etc/steward/steward.env`` when it exists.

    Returns:
        Fully initialised :class:`StewardConfig`.

    Raises:
        pydantic.ValidationError: If an environment variable fails validation.

    Note:
        Call ``get_config.cache_clear()`` to force a reload.
    """
    if env_file is None:
        default = Path("/etc/steward/steward.env")
        env_file = str(default) if default.exists() else None
    return StewardConfig(_env_file=env_file)
