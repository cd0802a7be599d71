#!/usr/bin/env python3
"""
Steward — Error Taxonomy

Structured exception types for every failure mode of a maintenance
session.  Fatal errors are raised and stop the session; non-fatal ones
derive from :class:`MaintenanceWarning` and are recorded on the session
instead of raised.

Exception Hierarchy:
    StewardError (base)
    ├── PreflightFailure
    │   └── NodeLockHeld
    ├── ConfirmationDeclined
    ├── CordonFailure
    ├── CommandError
    ├── InterruptedSession
    ├── InvalidTransition
    └── MaintenanceWarning
        ├── HealthWarning
        ├── DrainTimeout
        ├── ResidualWorkload
        ├── StorageQuiesceTimeout
        └── ServiceStopEscalation

Usage:
    from steward.exceptions import PreflightFailure

    try:
        await validator.validate(options)
    except PreflightFailure as e:
        logger.error("preflight failed: %s", e)
"""

from typing import Any, Dict, List, Optional


# =============================================================================
# Base Exception
# =============================================================================

class StewardError(Exception):
    """
    Base exception for all Steward errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# =============================================================================
# Fatal errors
# =============================================================================

class PreflightFailure(StewardError):
    """
    Input, environment, or inventory validation failed.

    Raised before any mutating call and before the confirmation gate is
    shown, so there is never anything to clean up.

    Attributes:
        check: Name of the preflight check that failed
    """

    def __init__(self, message: str, check: str = "preflight"):
        self.check = check
        super().__init__(message, {"check": check})


class NodeLockHeld(PreflightFailure):
    """
    Another live session already holds the lock for this node.

    Attributes:
        node: Target node name
        pid: PID recorded in the lock file
    """

    def __init__(self, node: str, pid: int):
        self.node = node
        self.pid = pid
        super().__init__(
            f"Another maintenance session (PID {pid}) is running against node {node!r}",
            check="node_lock",
        )


class ConfirmationDeclined(StewardError):
    """The operator did not give the exact affirmative answer."""

    def __init__(self, prompt: str, answer: str = ""):
        self.prompt = prompt
        self.answer = answer
        super().__init__(f"Aborted by operator at: {prompt}")


class CordonFailure(StewardError):
    """
    The target node could not be marked unschedulable.

    No CordonMarker is written, so there is nothing to roll back.
    """

    def __init__(self, node: str, reason: str):
        self.node = node
        self.reason = reason
        super().__init__(f"Failed to cordon node {node!r}: {reason}", {"node": node})


class CommandError(StewardError):
    """
    An external command exited non-zero or timed out.

    Attributes:
        argv: Command line that was run
        returncode: Exit status, or ``None`` on timeout
        stderr: Captured standard error (truncated)
    """

    def __init__(self, argv: List[str], returncode: Optional[int], stderr: str = ""):
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr[:500]
        if returncode is None:
            message = f"{argv[0]} timed out"
        else:
            message = f"{argv[0]} exited with status {returncode}"
        if self.stderr.strip():
            message += f": {self.stderr.strip()}"
        super().__init__(message, {"argv": " ".join(self.argv[:4])})


class InterruptedSession(StewardError):
    """A termination signal was received while the session was running."""

    def __init__(self, signame: str):
        self.signame = signame
        super().__init__(f"Session interrupted by {signame}")


class InvalidTransition(StewardError):
    """A phase change that would break the session's ordering guarantees."""

    def __init__(self, current: str, requested: str, reason: str = ""):
        self.current = current
        self.requested = requested
        message = f"Illegal phase transition {current} -> {requested}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


# =============================================================================
# Non-fatal warnings
# =============================================================================

class MaintenanceWarning(StewardError):
    """
    Base class for conditions that are logged but do not stop the session.

    Instances are appended to ``MaintenanceSession.warnings``.
    """


class HealthWarning(MaintenanceWarning):
    """A degraded condition surfaced by the health audit."""

    def __init__(self, check: str, message: str):
        self.check = check
        super().__init__(message, {"check": check})


class DrainTimeout(MaintenanceWarning):
    """Graceful eviction did not finish inside the grace period."""

    def __init__(self, node: str, grace_period: float, remaining: List[str]):
        self.node = node
        self.grace_period = grace_period
        self.remaining = list(remaining)
        super().__init__(
            f"{len(remaining)} workload(s) still on {node} after {grace_period:.0f}s grace period",
            {"remaining": self.remaining},
        )


class ResidualWorkload(MaintenanceWarning):
    """Workloads survived forced eviction; the session proceeds anyway."""

    def __init__(self, node: str, workloads: List[str]):
        self.node = node
        self.workloads = list(workloads)
        super().__init__(
            f"{len(workloads)} workload(s) remain on {node} after forced eviction",
            {"workloads": self.workloads},
        )


class StorageQuiesceTimeout(MaintenanceWarning):
    """Volumes were still attached when the storage wait deadline expired."""

    def __init__(self, deadline_s: float, attached: List[str]):
        self.deadline_s = deadline_s
        self.attached = list(attached)
        super().__init__(
            f"{len(attached)} volume(s) still attached after {deadline_s:.0f}s",
            {"attached": self.attached},
        )


class ServiceStopEscalation(MaintenanceWarning):
    """The local agent service needed a harsher stop step."""

    def __init__(self, service: str, step: str, stopped: bool):
        self.service = service
        self.step = step
        self.stopped = stopped
        state = "stopped" if stopped else "still running"
        super().__init__(
            f"{service} escalated to {step} ({state})",
            {"service": service, "step": step},
        )
