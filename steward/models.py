#!/usr/bin/env python3
"""
Steward Models

Value types shared by every phase of a maintenance session.  These flow
from the cluster clients through the auditor and controllers to the
CLI output and the session log.

Hierarchy:
    NodeRole      — enum: CONTROL_PLANE | WORKER
    Phase         — enum: session phase, ordered
    PowerAction   — enum: REBOOT | POWEROFF
    Workload      — one pod identity (namespace/name)
    VolumeState   — read-only mirror of one storage volume
    HealthReport  — immutable snapshot produced by the health audit
    DrainPlan     — evictable workloads plus drain timing

Author: Steward Project
Version: 0.1.0
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class NodeRole(str, Enum):
    """Role of the node being taken down.

    Role-specific behaviour is data, not control flow: it selects the
    local agent service to stop and the direction of the replica
    placement check.
    """

    CONTROL_PLANE = "control-plane"
    WORKER = "worker"


class PowerAction(str, Enum):
    """Terminal host action performed by the power controller."""

    REBOOT = "reboot"
    POWEROFF = "poweroff"


class Phase(str, Enum):
    """Session phase.

    Phases advance monotonically in declaration order.  ``ROLLED_BACK``
    is terminal and reachable from any phase at or after ``CORDONED``.
    """

    UNINITIALIZED = "uninitialized"
    VALIDATED = "validated"
    AUDITED = "audited"
    CONFIRMED = "confirmed"
    CORDONED = "cordoned"
    DRAINING = "draining"
    DRAINED = "drained"
    STORAGE_QUIESCENT = "storage-quiescent"
    SERVICE_STOPPED = "service-stopped"
    POWERED_OFF = "powered-off"
    ROLLED_BACK = "rolled-back"

    @property
    def rank(self) -> int:
        """Position in the forward phase order."""
        return _PHASE_ORDER.index(self)

    def at_or_after(self, other: "Phase") -> bool:
        """``True`` when this phase is *other* or a later forward phase."""
        if self is Phase.ROLLED_BACK:
            return other is Phase.ROLLED_BACK
        return self.rank >= other.rank


_PHASE_ORDER: list[Phase] = list(Phase)


@dataclass(frozen=True)
class Workload:
    """A pod identity on the target node."""

    namespace: str
    name: str

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class VolumeState:
    """Read-only mirror of one distributed-storage volume.

    Attributes:
        name: Volume identifier.
        state: Attachment state (``"attached"``, ``"detached"``, or any
            other value the storage layer reports while transitioning).
        robustness: Storage-layer robustness (``healthy``, ``degraded`` …).
        attached_node: Node the volume is currently attached to, if any.
        replica_nodes: Nodes that hold a replica in read-write mode.
        replica_count: Desired replica count from the volume spec.
    """

    name: str
    state: str
    robustness: str = "unknown"
    attached_node: Optional[str] = None
    replica_nodes: frozenset[str] = frozenset()
    replica_count: int = 0

    @property
    def is_attached(self) -> bool:
        return self.state == "attached"

    @property
    def is_detached(self) -> bool:
        return self.state == "detached"

    def attached_to(self, node: str) -> bool:
        """``True`` when attached to *node* (or attached with no node recorded)."""
        if not self.is_attached:
            return False
        return self.attached_node is None or self.attached_node == node


@dataclass(frozen=True)
class HealthReport:
    """Snapshot produced by :class:`~steward.audit.HealthAuditor`.

    Never mutated after creation.  Consumed once by the confirmation gate.

    Attributes:
        node: Target node name.
        cluster_reachable: Liveness and readiness endpoints answered.
        node_ready: Target node reports the ``Ready`` condition.
        unhealthy_workloads: Count of pods cluster-wide not Running/Succeeded.
        out_of_sync_apps: Reconciler applications not Synced; ``None``
            when the reconciler is not installed.
        problem_volumes: Volumes not in an expected attachment state.
        unplaced_volumes: Volumes lacking a healthy replica on a
            surviving node.
        surviving_nodes: Nodes checked for replica placement.
        storage_present: Storage namespace exists.
        storage_managers_ready: ``(ready, total)`` storage manager pods.
        available_memory_mb: Host available memory at audit time.
        warnings: Human-readable warning lines, in discovery order.
        created_at: UTC timestamp of the snapshot.
    """

    node: str
    cluster_reachable: bool
    node_ready: bool
    unhealthy_workloads: int = 0
    out_of_sync_apps: Optional[tuple[str, ...]] = None
    problem_volumes: tuple[str, ...] = ()
    unplaced_volumes: tuple[str, ...] = ()
    surviving_nodes: tuple[str, ...] = ()
    storage_present: bool = False
    storage_managers_ready: Optional[tuple[int, int]] = None
    available_memory_mb: Optional[int] = None
    warnings: tuple[str, ...] = ()
    created_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def reconciler_present(self) -> bool:
        return self.out_of_sync_apps is not None

    @property
    def is_clean(self) -> bool:
        """``True`` when the audit raised no warnings at all."""
        return not self.warnings

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-safe dictionary for the session log."""
        return {
            "node": self.node,
            "cluster_reachable": self.cluster_reachable,
            "node_ready": self.node_ready,
            "unhealthy_workloads": self.unhealthy_workloads,
            "out_of_sync_apps": (
                list(self.out_of_sync_apps)
                if self.out_of_sync_apps is not None else None
            ),
            "problem_volumes": list(self.problem_volumes),
            "unplaced_volumes": list(self.unplaced_volumes),
            "surviving_nodes": list(self.surviving_nodes),
            "storage_present": self.storage_present,
            "storage_managers_ready": (
                list(self.storage_managers_ready)
                if self.storage_managers_ready is not None else None
            ),
            "available_memory_mb": self.available_memory_mb,
            "warnings": list(self.warnings),
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class DrainPlan:
    """Evictable workloads on the target node plus drain timing.

    Derived and ephemeral: rebuilt for the escalation pass.
    """

    node: str
    workloads: list[Workload]
    grace_period: float
    force_timeout: float

    @property
    def keys(self) -> list[str]:
        return [w.key for w in self.workloads]

    def __len__(self) -> int:
        return len(self.workloads)
