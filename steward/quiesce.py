#!/usr/bin/env python3
"""
Steward — Storage Quiescence Waiter

Waits for every storage volume attached to the target node to detach
before the local agent is stopped.  This is the data-safety gate of the
whole sequence: powering off with a volume still attached risks replica
corruption.

    * skipped when the storage layer is not installed;
    * polls every ``poll_interval_s`` and stops as soon as nothing is
      attached, bounded by ``--storage-wait`` (returns within the
      deadline plus one poll);
    * on expiry, the still-attached list is shown and the operator must
      type the confirmation token to continue; any other answer aborts
      the session (exit 3) before the service is stopped;
    * dry-run probes once and reports.

Author: Steward Project
Version: 0.1.0
"""

import logging
from typing import Optional

from steward.cluster import Collaborators
from steward.confirm import ConfirmationGate
from steward.config import StewardConfig
from steward.exceptions import CommandError, StorageQuiesceTimeout
from steward.models import Phase
from steward.retry import SYSTEM_CLOCK, Clock, PollResult, poll_until
from steward.session import MaintenanceSession

log = logging.getLogger(__name__)


class StorageQuiescenceWaiter:
    """Bounded wait for volume detachment.

    Args:
        cfg: Host configuration (poll interval).
        collab: Cluster clients.
        session: Session being advanced.
        gate: Asks for the override when the deadline expires.
        clock: Time source for the poll loop.
    """

    def __init__(
        self,
        cfg: StewardConfig,
        collab: Collaborators,
        session: MaintenanceSession,
        gate: ConfirmationGate,
        *,
        clock: Optional[Clock] = None,
    ) -> None:
        self._cfg = cfg
        self._collab = collab
        self._session = session
        self._gate = gate
        self._clock = clock or SYSTEM_CLOCK
        self._last: list[str] = []

    async def _attached(self) -> list[str]:
        try:
            self._last = await self._collab.longhorn.attached_volumes(self._session.node)
        except CommandError as exc:
            # Unknown is not detached: keep the previous answer.
            log.warning("quiesce: volume listing failed: %s", exc)
            if not self._last:
                self._last = ["<unknown>"]
        return self._last

    def _progress(self, attached: list[str], remaining: float) -> None:
        log.info("quiesce: %d volume(s) attached, %.0fs left", len(attached), remaining)
        self._session.step(
            f"waiting for {len(attached)} volume(s) to detach ({remaining:.0f}s left)",
            volumes=attached,
        )

    async def wait(self) -> PollResult[list[str]]:
        """Wait for quiescence and advance to ``STORAGE_QUIESCENT``.

        Raises:
            ConfirmationDeclined: The deadline expired and the operator
                declined the override.
        """
        session = self._session
        opts = session.options

        if not await self._collab.longhorn.present():
            session.step("storage layer not installed; quiescence wait skipped")
            session.transition(Phase.STORAGE_QUIESCENT)
            return PollResult(True, [], 0, 0.0)

        if session.dry_run:
            attached = await self._attached()
            session.step(
                f"dry run: {len(attached)} volume(s) currently attached to {session.node}; "
                f"would wait up to {opts.storage_wait}s for detachment",
                volumes=attached,
            )
            session.transition(Phase.STORAGE_QUIESCENT)
            return PollResult(not attached, attached, 1, 0.0)

        result = await poll_until(
            self._attached,
            lambda attached: not attached,
            deadline_s=opts.storage_wait,
            interval_s=self._cfg.poll_interval_s,
            clock=self._clock,
            on_wait=self._progress,
        )

        if result.satisfied:
            session.step(f"all volumes detached from {session.node} after {result.elapsed_s:.0f}s")
        else:
            warning = StorageQuiesceTimeout(opts.storage_wait, result.value)
            session.warn(warning)
            self._gate.confirm_override(
                f"{len(result.value)} volume(s) still attached to {session.node} after "
                f"{opts.storage_wait}s: {', '.join(result.value)}. Powering off now risks "
                "replica corruption."
            )
            session.step("storage timeout overridden by operator")

        session.transition(Phase.STORAGE_QUIESCENT)
        return result
