"""
Steward — Safe Maintenance Shutdown for Kubernetes Nodes

Takes one node of a small k3s cluster out of service for maintenance:
cordon, drain, wait for storage volumes to detach, stop the local agent,
then reboot or power off.  An interrupt at any point rolls the node back
to schedulable.

Quick start:
    from steward.config import MaintenanceOptions, get_config
    from steward.orchestrator import MaintenanceOrchestrator

    cfg = get_config()
    opts = MaintenanceOptions(node="worker-2", dry_run=True)
    code = asyncio.run(MaintenanceOrchestrator(cfg, opts).run())
"""

__version__ = "0.1.0"

from .config import MaintenanceOptions, StewardConfig, get_config
from .exceptions import (
    CommandError,
    ConfirmationDeclined,
    CordonFailure,
    InterruptedSession,
    MaintenanceWarning,
    PreflightFailure,
    StewardError,
)
from .log import SessionLogger
from .logger import configure_logging, get_logger
from .models import HealthReport, NodeRole, Phase, PowerAction
from .orchestrator import (
    MaintenanceOrchestrator,
    audit_node,
    restore_node,
    rollback_node,
)

__all__ = [
    "__version__",
    # Config
    "MaintenanceOptions",
    "StewardConfig",
    "get_config",
    # Errors
    "CommandError",
    "ConfirmationDeclined",
    "CordonFailure",
    "InterruptedSession",
    "MaintenanceWarning",
    "PreflightFailure",
    "StewardError",
    # Logging
    "SessionLogger",
    "configure_logging",
    "get_logger",
    # Models
    "HealthReport",
    "NodeRole",
    "Phase",
    "PowerAction",
    # Orchestration
    "MaintenanceOrchestrator",
    "audit_node",
    "restore_node",
    "rollback_node",
]
