#!/usr/bin/env python3
"""
Steward — Service Shutdown Controller

Stops the local orchestration agent (``k3s`` on control-plane nodes,
``k3s-agent`` on workers) with a fixed three-step ladder:

    1. ``systemctl stop``; wait; check ``is-active``.
    2. ``systemctl kill --signal=SIGTERM`` plus ``pkill -TERM`` on the
       agent process; settle; check.
    3. ``pkill -KILL`` on the agent process; settle; check.

Each escalation is recorded as a
:class:`~steward.exceptions.ServiceStopEscalation`.  The ladder is not
retried: an agent that survives step 3 is reported and the session
still proceeds to sync and power.

Author: Steward Project
Version: 0.1.0
"""

import logging
from typing import Optional

from steward.cluster import Collaborators
from steward.config import StewardConfig
from steward.exceptions import ServiceStopEscalation
from steward.models import NodeRole, Phase
from steward.retry import SYSTEM_CLOCK, Clock
from steward.session import MaintenanceSession

log = logging.getLogger(__name__)


class ServiceShutdownController:
    """Stops the local agent service for the session's node role.

    Args:
        cfg: Host configuration (unit names, process patterns, waits).
        collab: Host control client.
        session: Session being advanced.
        clock: Time source for the waits between steps.
    """

    def __init__(
        self,
        cfg: StewardConfig,
        collab: Collaborators,
        session: MaintenanceSession,
        *,
        clock: Optional[Clock] = None,
    ) -> None:
        self._cfg = cfg
        self._host = collab.host
        self._session = session
        self._clock = clock or SYSTEM_CLOCK

    @property
    def role(self) -> NodeRole:
        return self._session.role or NodeRole.WORKER

    @property
    def service(self) -> str:
        return self._cfg.service_for(self.role)

    @property
    def process(self) -> str:
        return self._cfg.process_for(self.role)

    async def _still_running(self) -> bool:
        if await self._host.is_active(self.service):
            return True
        return bool(self._host.leftover_processes(self.process))

    def _escalated(self, step: str, stopped: bool) -> None:
        self._session.warn(ServiceStopEscalation(self.service, step, stopped))

    async def stop(self) -> bool:
        """Run the ladder and advance to ``SERVICE_STOPPED``.

        Returns:
            ``True`` when the agent is confirmed stopped.  Never raises
            for a stubborn agent.
        """
        session = self._session
        service, process = self.service, self.process
        session.step(f"stopping {service}")

        if session.dry_run:
            await self._host.stop_service(service)
            session.step(
                f"dry run: would escalate to SIGTERM then SIGKILL on {process!r} if {service} "
                "does not stop"
            )
            session.transition(Phase.SERVICE_STOPPED)
            return True

        await self._host.stop_service(service)
        await self._clock.sleep(self._cfg.service_stop_wait_s)
        stopped = not await self._still_running()

        if not stopped:
            log.warning("shutdown: %s still running, sending SIGTERM", service)
            await self._host.kill_service(service, "SIGTERM")
            await self._host.pkill(process, "TERM")
            await self._clock.sleep(self._cfg.service_kill_settle_s)
            stopped = not await self._still_running()
            self._escalated("SIGTERM", stopped)

        if not stopped:
            log.warning("shutdown: %s ignored SIGTERM, sending SIGKILL", service)
            await self._host.pkill(process, "KILL")
            await self._clock.sleep(self._cfg.service_kill_settle_s)
            stopped = not await self._still_running()
            self._escalated("SIGKILL", stopped)

        if stopped:
            session.step(f"{service} stopped")
        else:
            log.error("shutdown: %s still running after SIGKILL; continuing", service)
            session.step(f"{service} still running after SIGKILL; continuing to power action")
        session.transition(Phase.SERVICE_STOPPED)
        return stopped
