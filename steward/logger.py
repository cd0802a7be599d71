#!/usr/bin/env python3
"""
Steward — Structured Logging

Configures structlog for module diagnostics (``logging.getLogger(__name__)``
in every module).  Two sinks:

    File    — rotating JSON at {log_dir}/steward.log (10 MB, 5 backups)
    Console — human-readable on stderr, WARNING+ by default

Session records (phases, actions, decisions) are written separately by
:class:`steward.log.SessionLogger`.  While a session runs its id and node
are bound as context variables, so every diagnostic line from that run
carries ``session`` and ``node`` too.

Public API:
    configure_logging      initialise structlog + stdlib handlers
    get_logger             bound structlog logger for a module
    bind_session_context   attach session/node to every diagnostic line
    clear_session_context  drop them again

Author: Steward Project
Version: 0.1.0
"""

import io
import logging
import logging.handlers
import sys
from typing import Any, Optional

import structlog

from steward.config import StewardConfig

_LOG_FILE_NAME = "steward.log"
_MAX_BYTES = 10 * 1024 * 1024
_BACKUP_COUNT = 5

# Applied to structlog-native and foreign (stdlib) records alike.
_SHARED_PROCESSORS: list[Any] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.ExceptionRenderer(),
]


# ---------------------------------------------------------------------------
# Handler builders
# ---------------------------------------------------------------------------

def _formatter(renderer: Any) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=_SHARED_PROCESSORS,
    )


def _file_handler(cfg: StewardConfig, level: int) -> Optional[logging.Handler]:
    """Rotating JSON handler, or ``None`` when the log directory is unusable
    (typically an unprivileged dry run)."""
    try:
        cfg.log_dir.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            filename=cfg.log_dir / _LOG_FILE_NAME,
            maxBytes=_MAX_BYTES,
            backupCount=_BACKUP_COUNT,
            encoding="utf-8",
        )
    except OSError as exc:
        print(f"steward: file logging disabled ({exc})", file=sys.stderr)
        return None
    handler.setFormatter(_formatter(structlog.processors.JSONRenderer()))
    handler.setLevel(level)
    return handler


def _console_handler(level: int) -> logging.Handler:
    # UTF-8 so node names and rich glyphs never fail on LANG=C hosts.
    raw = getattr(sys.stderr, "buffer", None)
    stream: io.TextIOBase
    if raw is not None:
        stream = io.TextIOWrapper(
            raw, encoding="utf-8", errors="backslashreplace", line_buffering=True
        )
    else:
        stream = sys.stderr
    handler = logging.StreamHandler(stream)
    handler.setFormatter(_formatter(structlog.dev.ConsoleRenderer(colors=False)))
    handler.setLevel(level)
    return handler


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def configure_logging(cfg: StewardConfig, *, console_level: str = "WARNING") -> None:
    """Initialise structlog and stdlib logging.

    Idempotent: a handler kind already present on the root logger is not
    added again.

    Args:
        cfg: Supplies ``log_dir`` and ``log_level`` (file threshold).
        console_level: Minimum level for the stderr handler.
    """
    file_level = getattr(logging, cfg.log_level.upper(), logging.INFO)
    con_level = getattr(logging, console_level.upper(), logging.WARNING)

    structlog.configure(
        processors=_SHARED_PROCESSORS + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(file_level),
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    if not any(isinstance(h, logging.handlers.RotatingFileHandler) for h in root.handlers):
        handler = _file_handler(cfg, file_level)
        if handler is not None:
            root.addHandler(handler)
    if not any(type(h) is logging.StreamHandler for h in root.handlers):
        root.addHandler(_console_handler(con_level))
    root.setLevel(logging.DEBUG)


def get_logger(name: str = "steward") -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_session_context(session_id: str, node: str) -> None:
    structlog.contextvars.bind_contextvars(session=session_id, node=node)


def clear_session_context() -> None:
    structlog.contextvars.unbind_contextvars("session", "node")
