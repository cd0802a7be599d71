#!/usr/bin/env python3
"""
Steward — Interrupt Handler / Rollback

Registered once per session.  SIGINT or SIGTERM cancels the running
phase sequence; the orchestrator then calls :meth:`InterruptHandler.rollback`,
which uncordons the node if, and only if, a CordonMarker says steward
cordoned it, then removes the marker.  The session exits with status 130.

Rollback is idempotent: repeated signals, a second call, or a marker
left by an earlier crashed run all converge on "node schedulable, no
marker".  A node that was already cordoned before the session has no
marker and is left cordoned.

Signal handling (POSIX only):
    SIGTERM / SIGINT → cancel the session task (first signal only)
    During a blocking operator prompt the loop handlers are swapped for
    plain handlers that raise :class:`~steward.exceptions.InterruptedSession`
    so the prompt does not swallow the signal.

Author: Steward Project
Version: 0.1.0
"""

import asyncio
import contextlib
import logging
import signal
from typing import Iterator, Optional

from steward.cluster import Collaborators
from steward.exceptions import CommandError, InterruptedSession
from steward.log import SessionLogger
from steward.marker import CordonMarker
from steward.models import Phase
from steward.session import MaintenanceSession

log = logging.getLogger(__name__)

EXIT_INTERRUPTED: int = 130

_SIGNALS: tuple[int, ...] = (signal.SIGINT, signal.SIGTERM)


class InterruptHandler:
    """Signal-driven cancellation plus idempotent rollback.

    Args:
        collab: Cluster clients (uncordon).
        marker: Marker for the target node.
        session: Session to mark ``ROLLED_BACK``; optional for the
            standalone ``steward rollback`` command.
        slog: Session log; defaults to the session's.
    """

    def __init__(
        self,
        collab: Collaborators,
        marker: CordonMarker,
        session: Optional[MaintenanceSession] = None,
        slog: Optional[SessionLogger] = None,
    ) -> None:
        self._collab = collab
        self._marker = marker
        self._session = session
        self._slog = slog or (session.slog if session is not None else None)
        self._lock = asyncio.Lock()
        self._done = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._task: Optional[asyncio.Task] = None
        self.signame: Optional[str] = None

    @property
    def interrupted(self) -> bool:
        return self.signame is not None

    # ── Signal plumbing ──────────────────────────────────────────────────

    def install(self, loop: asyncio.AbstractEventLoop, task: asyncio.Task) -> None:
        """Route SIGINT/SIGTERM on *loop* to cancellation of *task*.

        No-op where ``loop.add_signal_handler`` is unavailable.
        """
        self._loop, self._task = loop, task
        try:
            for sig in _SIGNALS:
                loop.add_signal_handler(sig, self._on_signal, sig)
        except (NotImplementedError, RuntimeError):
            self._loop = None

    def uninstall(self) -> None:
        if self._loop is None:
            return
        for sig in _SIGNALS:
            self._loop.remove_signal_handler(sig)
        self._loop = None

    def _on_signal(self, sig: int) -> None:
        name = signal.Signals(sig).name
        if self.signame is not None:
            log.warning("interrupt: %s received while already handling %s", name, self.signame)
            return
        self.signame = name
        log.warning("interrupt: %s received, cancelling session", name)
        if self._slog is not None:
            self._slog.step(f"{name} received; rolling back", level=logging.WARNING)
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def _raise_interrupt(self, signum: int, frame) -> None:
        self.signame = self.signame or signal.Signals(signum).name
        raise InterruptedSession(self.signame)

    @contextlib.contextmanager
    def prompting(self) -> Iterator[None]:
        """Let a signal break out of a blocking prompt."""
        loop = self._loop
        if loop is None:
            yield
            return
        for sig in _SIGNALS:
            loop.remove_signal_handler(sig)
            signal.signal(sig, self._raise_interrupt)
        try:
            yield
        finally:
            for sig in _SIGNALS:
                loop.add_signal_handler(sig, self._on_signal, sig)

    # ── Rollback ─────────────────────────────────────────────────────────

    async def rollback(self) -> bool:
        """Uncordon the node if steward cordoned it, then drop the marker.

        Returns:
            ``True`` when the node is schedulable (or was never cordoned
            by steward) and no marker remains; ``False`` when the
            uncordon failed and the marker was kept for a later
            ``steward rollback``.
        """
        async with self._lock:
            if self._done:
                return True
            node = self._marker.node
            if not self._marker.exists():
                log.info("rollback: no cordon marker for %s; nothing to undo", node)
                if self._slog is not None:
                    self._slog.step("rollback: no cordon marker, node left as found")
                self._done = True
                return True

            if self._collab.runner.dry_run:
                await self._collab.kube.uncordon(node)
                log.info("rollback: dry run, marker for %s kept", node)
                self._done = True
                return True

            try:
                await self._collab.kube.uncordon(node)
            except CommandError as exc:
                log.error("rollback: uncordon %s failed: %s", node, exc)
                if self._slog is not None:
                    self._slog.error(
                        f"rollback: uncordon failed, marker kept: {exc.message}",
                        marker=str(self._marker.path),
                    )
                return False

            self._marker.remove()
            self._done = True
            log.info("rollback: %s uncordoned, marker removed", node)
            session = self._session
            if session is not None and session.cordoned:
                session.transition(Phase.ROLLED_BACK)
            elif self._slog is not None:
                self._slog.step(f"rollback: {node} uncordoned, marker removed")
            return True
