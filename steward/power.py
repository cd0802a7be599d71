#!/usr/bin/env python3
"""
Steward — Power Controller

Last phase: flush filesystem buffers, optionally drop page caches,
report anything of the agent that survived, then reboot or power off.
Runs only after the service shutdown controller; in dry-run it logs the
action it would take and returns.

The CordonMarker is deliberately left in place: after the node comes
back, ``steward restore`` uses it to uncordon.

Author: Steward Project
Version: 0.1.0
"""

import logging

from steward.cluster import Collaborators
from steward.config import StewardConfig
from steward.models import NodeRole, Phase
from steward.session import MaintenanceSession

log = logging.getLogger(__name__)

_AGENT_MOUNT_KEYWORDS: tuple[str, ...] = ("k3s", "kubelet")


class PowerController:
    def __init__(
        self,
        cfg: StewardConfig,
        collab: Collaborators,
        session: MaintenanceSession,
    ) -> None:
        self._cfg = cfg
        self._host = collab.host
        self._session = session

    def verify(self) -> list[str]:
        """Leftover agent processes and mounts, as warning lines."""
        role = self._session.role or NodeRole.WORKER
        findings: list[str] = []
        pids = self._host.leftover_processes(self._cfg.process_for(role))
        if pids:
            findings.append(f"agent process(es) still running: {', '.join(map(str, pids))}")
        mounts = self._host.leftover_mounts(_AGENT_MOUNT_KEYWORDS)
        if mounts:
            findings.append(f"{len(mounts)} agent mount point(s) remain")
        for line in findings:
            log.warning("power: %s", line)
            self._session.step(line, level=logging.WARNING)
        if not findings:
            self._session.step("final verification: no agent processes or mounts remain")
        return findings

    async def execute(self) -> None:
        """Sync, verify, and perform the terminal action.

        Raises:
            CommandError: The reboot/poweroff request itself failed.
        """
        session = self._session
        action = session.options.action

        session.step("flushing filesystem buffers")
        self._host.sync_filesystems()
        if self._cfg.drop_caches:
            self._host.drop_caches()

        if session.dry_run:
            session.step(f"dry run: would {action.value} {session.node} now")
            await self._host.power(action)
            return

        self.verify()
        session.step(f"{action.value} {session.node}")
        await self._host.power(action)
        session.transition(Phase.POWERED_OFF)
