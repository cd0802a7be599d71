#!/usr/bin/env python3
"""
Steward — Session Event Logger

Append-only record of one maintenance session: every phase transition,
every mutating call (issued or suppressed), every operator decision and
every non-fatal warning.  Independent of the structlog pipeline in
:mod:`steward.logger` so a session record is written even when that
pipeline was never configured.

Files:
    {log_dir}/steward-{node}-{YYYY-mm-dd-HHMMSS}.log   (one per invocation)

Each line is a JSON object::

    {
      "timestamp": "2026-10-19T08:15:02Z",
      "level":     "INFO",
      "event":     "phase",
      "session":   "3f2a9c1e",
      "node":      "worker-1",
      "phase":     "cordoned",
      "from":      "confirmed",
      "to":        "cordoned"
    }

Public API:
    SessionLogger                  — one instance per session
    SessionLogger.session_start    — resolved options
    SessionLogger.phase_change     — phase transition
    SessionLogger.step             — progress inside a phase
    SessionLogger.record_mutation  — CommandRunner hook (action / dry_run)
    SessionLogger.decision         — operator prompt and answer
    SessionLogger.health_report    — audit snapshot
    SessionLogger.warning          — non-fatal MaintenanceWarning
    SessionLogger.session_end      — exit code and duration

Author: Steward Project
Version: 0.1.0
"""

import json
import logging
import shlex
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from rich.logging import RichHandler

from steward.exceptions import MaintenanceWarning

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Standard LogRecord attributes, excluded when serialising extras to JSON.
_STDLIB_RECORD_FIELDS: frozenset[str] = frozenset({
    "args", "asctime", "created", "exc_info", "exc_text",
    "filename", "funcName", "levelname", "levelno", "lineno",
    "message", "module", "msecs", "msg", "name", "pathname",
    "process", "processName", "relativeCreated", "stack_info",
    "taskName", "thread", "threadName",
})

_LOGGER_PREFIX: str = "steward.session"


def session_log_path(log_dir: Path, node: str, started_at: datetime) -> Path:
    """Per-invocation log file path."""
    stamp = started_at.strftime("%Y-%m-%d-%H%M%S")
    return log_dir / f"steward-{node}-{stamp}.log"


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------

class _JsonFormatter(logging.Formatter):
    """Emit each :class:`logging.LogRecord` as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "level": record.levelname,
            "event": record.message,
        }
        for key, value in record.__dict__.items():
            if key in _STDLIB_RECORD_FIELDS or key.startswith("_"):
                continue
            if key == "event":
                continue
            payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class _ConsoleFormatter(logging.Formatter):
    """Render ``event`` plus its ``summary`` field for the Rich console."""

    def format(self, record: logging.LogRecord) -> str:
        summary = getattr(record, "summary", "")
        event = record.getMessage()
        return f"{event}: {summary}" if summary else event


# ---------------------------------------------------------------------------
# SessionLogger
# ---------------------------------------------------------------------------

class SessionLogger:
    """Structured, append-only event log for one maintenance session.

    A dedicated named logger (``steward.session.<id>``) with
    ``propagate = False`` keeps session records out of the structlog
    root chain.  The file handler is opened in append mode.

    Args:
        log_dir: Directory for session log files.
        session_id: Short session identifier included in every record.
        node: Target node name included in every record.
        started_at: Session start (names the file).
        console_level: Minimum level mirrored to the console via
            :class:`rich.logging.RichHandler`.  ``None`` disables the mirror.

    Note:
        This class never raises.  A log directory that cannot be created
        or a file that cannot be written loses records, not the session.
    """

    def __init__(
        self,
        log_dir: Path,
        session_id: str,
        node: str,
        *,
        started_at: Optional[datetime] = None,
        console_level: Optional[str] = "INFO",
    ) -> None:
        self.session_id = session_id
        self.node = node
        self.phase: str = "uninitialized"
        self.started_at = started_at or datetime.now(timezone.utc)
        self.path: Optional[Path] = None

        self._logger: logging.Logger = logging.getLogger(f"{_LOGGER_PREFIX}.{session_id}")
        self._logger.setLevel(logging.DEBUG)
        self._logger.propagate = False

        if self._logger.handlers:
            return

        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except Exception:
            pass  # Non-fatal; the file handler below will fail too

        self._attach_file_handler(session_log_path(log_dir, node, self.started_at))
        if console_level is not None:
            self._attach_console_handler(console_level)

    # ── Handler setup (private) ───────────────────────────────────────────

    def _attach_file_handler(self, path: Path) -> None:
        try:
            handler = logging.FileHandler(str(path), mode="a", encoding="utf-8")
            handler.setFormatter(_JsonFormatter())
            handler.setLevel(logging.DEBUG)
            self._logger.addHandler(handler)
            self.path = path
        except Exception:
            pass  # Fail silently

    def _attach_console_handler(self, console_level: str) -> None:
        try:
            level = getattr(logging, console_level.upper(), logging.INFO)
            handler = RichHandler(level=level, show_path=False, rich_tracebacks=False)
            handler.setFormatter(_ConsoleFormatter())
            handler.setLevel(level)
            self._logger.addHandler(handler)
        except Exception:
            pass  # Fail silently

    # ── Internal emit helper ──────────────────────────────────────────────

    def _emit(self, level: int, event: str, **fields: Any) -> None:
        """Emit one record with session context, swallowing all exceptions."""
        try:
            self._logger.log(
                level,
                event,
                extra={
                    "session": self.session_id,
                    "node": self.node,
                    "phase": self.phase,
                    **fields,
                },
            )
        except Exception:
            pass  # Never raise on logging failures

    # ── Public helpers ────────────────────────────────────────────────────

    def session_start(self, options: dict[str, Any]) -> None:
        self._emit(
            logging.INFO, "session_start",
            options=options,
            summary=" ".join(f"{k}={v}" for k, v in options.items()),
        )

    def phase_change(self, old: str, new: str) -> None:
        """Record a phase transition and adopt *new* as the record context."""
        self.phase = new
        self._emit(
            logging.INFO, "phase",
            **{"from": old, "to": new},
            summary=f"{old} -> {new}",
        )

    def step(self, message: str, *, level: int = logging.INFO, **fields: Any) -> None:
        """Progress inside a phase (counts, waits, verification results)."""
        self._emit(level, "step", text=message, summary=message, **fields)

    def record_mutation(
        self,
        description: str,
        argv: list[str],
        success: bool,
        dry_run: bool,
        detail: str,
    ) -> None:
        """:data:`~steward.cluster.base.MutationHook` implementation.

        Issued calls become ``action`` events (WARNING on failure);
        suppressed calls become ``dry_run`` events.
        """
        command = shlex.join(argv)
        if dry_run:
            self._emit(
                logging.INFO, "dry_run",
                description=description, command=command,
                summary=f"would {description}",
            )
            return
        fields: dict[str, Any] = {
            "description": description,
            "command": command,
            "success": success,
        }
        if detail:
            fields["detail"] = detail
        self._emit(
            logging.INFO if success else logging.WARNING,
            "action",
            summary=f"{description} ({'ok' if success else 'failed'})",
            **fields,
        )

    def decision(self, prompt: str, answer: str, accepted: bool) -> None:
        self._emit(
            logging.INFO if accepted else logging.WARNING,
            "decision",
            prompt=prompt,
            answer=answer,
            accepted=accepted,
            summary=f"{prompt} -> {'accepted' if accepted else 'declined'}",
        )

    def health_report(self, report: Any) -> None:
        """Record a :class:`~steward.models.HealthReport` snapshot."""
        try:
            data = report.to_dict()
        except Exception:
            data = {"repr": repr(report)}
        warnings = data.get("warnings") or []
        self._emit(
            logging.WARNING if warnings else logging.INFO,
            "health_report",
            report=data,
            summary=f"{len(warnings)} warning(s)",
        )

    def warning(self, warning: MaintenanceWarning) -> None:
        self._emit(
            logging.WARNING, "warning",
            kind=type(warning).__name__,
            text=warning.message,
            details=warning.details,
            summary=warning.message,
        )

    def error(self, message: str, **fields: Any) -> None:
        self._emit(logging.ERROR, "error", text=message, summary=message, **fields)

    def session_end(self, exit_code: int, outcome: str) -> None:
        duration = (datetime.now(timezone.utc) - self.started_at).total_seconds()
        self._emit(
            logging.INFO if exit_code == 0 else logging.WARNING,
            "session_end",
            exit_code=exit_code,
            outcome=outcome,
            duration_s=round(duration, 1),
            summary=f"{outcome} (exit {exit_code}, {duration:.0f}s)",
        )

    def close(self) -> None:
        """Flush and detach every handler.  Safe to call twice."""
        for handler in list(self._logger.handlers):
            try:
                handler.flush()
                handler.close()
            except Exception:
                pass
            self._logger.removeHandler(handler)
