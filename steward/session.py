#!/usr/bin/env python3
"""
Steward — Maintenance Session

Top-level aggregate for one invocation.  Owns the resolved options, the
current phase and the warnings collected along the way.  Phases are
changed only through :meth:`MaintenanceSession.transition`, which enforces
the ordering rules:

    * forward phases advance one step at a time, in declaration order
      (so ``DRAINING`` is never reached without ``CORDONED``);
    * ``ROLLED_BACK`` is terminal and reachable only from ``CORDONED``
      or a later forward phase;
    * ``POWERED_OFF`` is never reached in dry-run mode.

Author: Steward Project
Version: 0.1.0
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from steward.config import MaintenanceOptions
from steward.exceptions import InvalidTransition, MaintenanceWarning
from steward.log import SessionLogger
from steward.models import NodeRole, Phase


def new_session_id() -> str:
    return uuid.uuid4().hex[:8]


@dataclass
class MaintenanceSession:
    """State of one maintenance session.

    Attributes:
        options: Resolved per-invocation options.
        slog: Session event log; ``None`` in unit tests that do not need one.
        id: Short identifier written to every session record and marker.
        phase: Current phase.
        role: Node role, resolved during preflight when not given.
        started_at: UTC start timestamp.
        warnings: Non-fatal conditions recorded so far.
        force_drained: Graceful eviction did not finish inside the grace period.
    """

    options: MaintenanceOptions
    slog: Optional[SessionLogger] = None
    id: str = field(default_factory=new_session_id)
    phase: Phase = Phase.UNINITIALIZED
    role: Optional[NodeRole] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    warnings: list[MaintenanceWarning] = field(default_factory=list)
    force_drained: bool = False

    def __post_init__(self) -> None:
        if self.role is None:
            self.role = self.options.role

    @property
    def node(self) -> str:
        return self.options.node

    @property
    def dry_run(self) -> bool:
        return self.options.dry_run

    @property
    def cordoned(self) -> bool:
        """``True`` once the session has cordoned and not yet rolled back."""
        return self.phase is not Phase.ROLLED_BACK and self.phase.at_or_after(Phase.CORDONED)

    def transition(self, new: Phase) -> None:
        """Move to *new*, enforcing phase ordering.

        Raises:
            InvalidTransition: The move would skip, repeat or reverse a
                phase, roll back before cordoning, or power off in dry-run.
        """
        old = self.phase
        if old is Phase.ROLLED_BACK:
            raise InvalidTransition(old.value, new.value, "session already rolled back")
        if new is Phase.ROLLED_BACK:
            if not old.at_or_after(Phase.CORDONED):
                raise InvalidTransition(old.value, new.value, "node was never cordoned")
        else:
            if new.rank != old.rank + 1:
                raise InvalidTransition(old.value, new.value)
            if new is Phase.POWERED_OFF and self.dry_run:
                raise InvalidTransition(old.value, new.value, "dry-run")
        self.phase = new
        if self.slog is not None:
            self.slog.phase_change(old.value, new.value)

    def warn(self, warning: MaintenanceWarning) -> None:
        """Record a non-fatal condition on the session and in the log."""
        self.warnings.append(warning)
        if self.slog is not None:
            self.slog.warning(warning)

    def step(self, message: str, **fields) -> None:
        if self.slog is not None:
            self.slog.step(message, **fields)
