#!/usr/bin/env python3
"""
Steward — Cordon/Drain Controller

Marks the target node unschedulable and evicts its workloads.

Controller states::

    UNCORDONED → CORDONED → DRAINING → DRAINED
                                     ↘ FORCE_DRAINED   (grace period expired)

Cordon:
    The CordonMarker is written immediately after the cordon call
    succeeds and before anything else happens.  A node that is already
    unschedulable is left alone: no cordon call, and no marker unless one
    is already present from an earlier steward session.

Drain ("evict" strategy):
    1. Enumerate evictable workloads (DaemonSet and mirror pods,
       finished pods and excluded namespaces are skipped).
    2. Request graceful termination for all of them concurrently.
    3. Poll until they are gone, bounded by the grace period.
    4. If any remain: re-enumerate, force-delete (zero grace), bounded
       by the rest of the force timeout, then settle briefly.
    5. Anything still present is recorded as ResidualWorkload and the
       session carries on.

Drain ("kubectl" strategy):
    Delegate to ``kubectl drain`` with the same grace period and the
    force timeout as its deadline, then run the same residual check.
    ``kubectl drain`` cannot skip namespaces, so when the node hosts
    workloads in an excluded namespace the evict strategy runs instead.

Author: Steward Project
Version: 0.1.0
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional

from steward.cluster import Collaborators, node_is_unschedulable
from steward.config import StewardConfig
from steward.exceptions import CommandError, CordonFailure, DrainTimeout, ResidualWorkload
from steward.marker import CordonMarker
from steward.models import DrainPlan, Phase, Workload
from steward.retry import SYSTEM_CLOCK, Clock, poll_until
from steward.session import MaintenanceSession

log = logging.getLogger(__name__)


class DrainState(str, Enum):
    UNCORDONED = "uncordoned"
    CORDONED = "cordoned"
    DRAINING = "draining"
    DRAINED = "drained"
    FORCE_DRAINED = "force-drained"


@dataclass
class DrainOutcome:
    """Result of one drain pass.

    Attributes:
        strategy: ``"evict"`` or ``"kubectl"``.
        forced: Escalation to forced termination happened.
        planned: Workloads present when the drain started.
        residual: Workloads still present at the end.
        elapsed_s: Time spent in the drain phase.
    """

    strategy: str
    forced: bool = False
    planned: list[str] = field(default_factory=list)
    residual: list[str] = field(default_factory=list)
    elapsed_s: float = 0.0


class CordonDrainController:
    """Cordon and drain one node.

    Args:
        cfg: Host configuration (excluded namespaces, poll and settle
            intervals).
        collab: Cluster clients.
        session: Session being advanced.
        marker: Marker for the target node.
        clock: Time source for the grace-period poll and settle pause.
    """

    def __init__(
        self,
        cfg: StewardConfig,
        collab: Collaborators,
        session: MaintenanceSession,
        marker: CordonMarker,
        *,
        clock: Optional[Clock] = None,
    ) -> None:
        self._cfg = cfg
        self._collab = collab
        self._session = session
        self._marker = marker
        self._clock = clock or SYSTEM_CLOCK
        self.state = DrainState.UNCORDONED

    @property
    def _kube(self):
        return self._collab.kube

    # ── Cordon ───────────────────────────────────────────────────────────

    def _write_marker(self) -> None:
        runner = self._collab.runner
        argv = ["write", str(self._marker.path)]
        if self._session.dry_run:
            runner.record_mutation("write cordon marker", argv, True, dry_run=True)
            return
        self._marker.write(self._session.id)
        runner.record_mutation("write cordon marker", argv, True)

    async def cordon(self) -> bool:
        """Make the node unschedulable.  Idempotent.

        Returns:
            ``True`` when this call cordoned the node, ``False`` when it
            was already unschedulable.

        Raises:
            CordonFailure: The node could not be read or cordoned.  No
                marker exists afterwards.
        """
        session = self._session
        node_name = session.node
        try:
            node = await self._kube.get_node(node_name)
        except CommandError as exc:
            raise CordonFailure(node_name, exc.message)
        if node is None:
            raise CordonFailure(node_name, "node no longer exists")

        if node_is_unschedulable(node):
            if self._marker.exists():
                session.step(f"{node_name} already cordoned by an earlier steward session")
            else:
                session.step(
                    f"{node_name} was already cordoned before this session; "
                    "it will stay cordoned on rollback"
                )
            self.state = DrainState.CORDONED
            session.transition(Phase.CORDONED)
            return False

        try:
            await self._kube.cordon(node_name)
        except CommandError as exc:
            raise CordonFailure(node_name, exc.message)
        except asyncio.CancelledError:
            # The request may already have reached the API server.
            try:
                self._write_marker()
            except OSError as exc:
                log.error("drain: marker write after interrupted cordon failed: %s", exc)
            raise

        try:
            self._write_marker()
        except OSError as exc:
            log.error("drain: marker write failed, undoing cordon: %s", exc)
            await self._kube.uncordon(node_name)
            raise CordonFailure(node_name, f"cannot write cordon marker: {exc}")

        self.state = DrainState.CORDONED
        session.transition(Phase.CORDONED)
        return True

    # ── Drain helpers ────────────────────────────────────────────────────

    async def build_plan(self) -> DrainPlan:
        opts = self._session.options
        workloads = await self._kube.evictable_workloads(
            self._session.node, self._cfg.drain_excluded_namespaces
        )
        return DrainPlan(
            node=self._session.node,
            workloads=workloads,
            grace_period=opts.grace_period,
            force_timeout=opts.force_timeout,
        )

    async def _remaining(self, last: list[str]) -> list[str]:
        try:
            return (await self.build_plan()).keys
        except CommandError as exc:
            log.warning("drain: workload listing failed: %s", exc)
            return last

    async def _replan(self, previous: DrainPlan, remaining: list[str]) -> DrainPlan:
        """Fresh plan for the escalation pass, else the last known survivors."""
        try:
            return await self.build_plan()
        except CommandError as exc:
            log.warning("drain: workload listing failed, escalating on last known set: %s", exc)
            keys = set(remaining)
            return replace(previous, workloads=[w for w in previous.workloads if w.key in keys])

    async def _shielded(self) -> list[str]:
        """Workloads in excluded namespaces that ``kubectl drain`` would evict."""
        excluded = set(self._cfg.drain_excluded_namespaces)
        if not excluded:
            return []
        every = await self._kube.evictable_workloads(self._session.node)
        return [w.key for w in every if w.namespace in excluded]

    def _request_all(
        self,
        workloads: list[Workload],
        *,
        grace_period: int,
        force: bool,
    ) -> list[asyncio.Task]:
        return [
            asyncio.create_task(
                self._kube.delete_pod(w, grace_period=grace_period, force=force),
                name=f"evict:{w.key}",
            )
            for w in workloads
        ]

    @staticmethod
    async def _collect(tasks: list[asyncio.Task]) -> list[str]:
        """Cancel unfinished requests and return the keys of failed ones."""
        for task in tasks:
            if not task.done():
                task.cancel()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        failed = []
        for task, result in zip(tasks, results):
            if isinstance(result, CommandError):
                failed.append(task.get_name().split(":", 1)[1])
        return failed

    def _finish(self, outcome: DrainOutcome, start: float) -> DrainOutcome:
        outcome.elapsed_s = self._clock.monotonic() - start
        self.state = DrainState.FORCE_DRAINED if outcome.forced else DrainState.DRAINED
        self._session.force_drained = outcome.forced
        if outcome.residual:
            self._session.warn(ResidualWorkload(self._session.node, outcome.residual))
        self._session.step(
            f"drain finished in {outcome.elapsed_s:.0f}s "
            f"({'forced' if outcome.forced else 'graceful'}, "
            f"{len(outcome.residual)} residual)",
            strategy=outcome.strategy,
        )
        return outcome

    # ── Strategies ───────────────────────────────────────────────────────

    async def _drain_evict(self, start: float) -> DrainOutcome:
        session = self._session
        opts = session.options
        plan = await self.build_plan()
        outcome = DrainOutcome(strategy="evict", planned=plan.keys)
        session.step(f"{len(plan)} evictable workload(s) on {session.node}", workloads=plan.keys)
        if not plan:
            return self._finish(outcome, start)

        if session.dry_run:
            for w in plan.workloads:
                await self._kube.delete_pod(w, grace_period=opts.grace_period)
            session.step("dry run: grace wait and escalation skipped")
            return self._finish(outcome, start)

        tasks = self._request_all(plan.workloads, grace_period=opts.grace_period, force=False)
        last = plan.keys

        def _progress(remaining: list[str], left: float) -> None:
            log.info("drain: %d workload(s) still terminating, %.0fs of grace left", len(remaining), left)

        try:
            result = await poll_until(
                lambda: self._remaining(last),
                lambda remaining: not remaining,
                deadline_s=opts.grace_period,
                interval_s=self._cfg.drain_poll_interval_s,
                clock=self._clock,
                on_wait=_progress,
            )
        finally:
            failed = await self._collect(tasks)
        if failed:
            session.step(f"{len(failed)} eviction request(s) failed", workloads=failed)
        if result.satisfied:
            return self._finish(outcome, start)

        # Escalation
        outcome.forced = True
        self.state = DrainState.FORCE_DRAINED
        session.warn(DrainTimeout(session.node, opts.grace_period, result.value))
        plan = await self._replan(plan, result.value)
        if plan:
            budget = max(float(opts.force_timeout - opts.grace_period), 1.0)
            force_tasks = self._request_all(plan.workloads, grace_period=0, force=True)
            try:
                _done, pending = await asyncio.wait(force_tasks, timeout=budget)
                if pending:
                    log.warning("drain: %d forced deletion(s) still pending after %.0fs", len(pending), budget)
            finally:
                await self._collect(force_tasks)
            await self._clock.sleep(self._cfg.force_settle_s)
        outcome.residual = await self._remaining(plan.keys)
        return self._finish(outcome, start)

    async def _drain_kubectl(self, start: float) -> DrainOutcome:
        session = self._session
        opts = session.options
        shielded = await self._shielded()
        if shielded:
            session.step(
                f"{len(shielded)} workload(s) in excluded namespaces; "
                "kubectl drain would evict them, using the evict strategy",
                workloads=shielded,
            )
            return await self._drain_evict(start)
        plan = await self.build_plan()
        outcome = DrainOutcome(strategy="kubectl", planned=plan.keys)
        session.step(f"{len(plan)} evictable workload(s) on {session.node}", workloads=plan.keys)
        disable_eviction = await self._kube.supports_disable_eviction()
        result = await self._kube.drain(
            session.node,
            grace_period=opts.grace_period,
            timeout_s=opts.force_timeout,
            disable_eviction=disable_eviction,
        )
        if session.dry_run:
            return self._finish(outcome, start)
        last = plan.keys
        if not result.ok:
            outcome.forced = True
            last = await self._remaining(last)
            session.warn(DrainTimeout(session.node, opts.force_timeout, last))
            await self._clock.sleep(self._cfg.force_settle_s)
        outcome.residual = await self._remaining(last)
        return self._finish(outcome, start)

    # ── Public API ───────────────────────────────────────────────────────

    async def drain(self) -> DrainOutcome:
        """Evict workloads from the cordoned node.

        Raises:
            InvalidTransition: The node was not cordoned first.
        """
        self._session.transition(Phase.DRAINING)
        self.state = DrainState.DRAINING
        start = self._clock.monotonic()
        if self._session.options.drain_strategy == "kubectl":
            outcome = await self._drain_kubectl(start)
        else:
            outcome = await self._drain_evict(start)
        self._session.transition(Phase.DRAINED)
        return outcome
