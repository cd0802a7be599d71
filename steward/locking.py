#!/usr/bin/env python3
"""
Steward — Node Lock

Guarantees at most one mutating session per node.  The lock is a PID file
created with ``O_CREAT | O_EXCL``; a second invocation fails fast with
:class:`~steward.exceptions.NodeLockHeld` instead of queueing.

Stale lock files (recorded process no longer alive) are removed and the
acquisition retried once.

File:
    {state_dir}/locks/{node}.lock   (contains the holder's PID)

Usage::

    with NodeLock(cfg.lock_dir, "worker-1"):
        ...

Author: Steward Project
Version: 0.1.0
"""

import logging
import os
from pathlib import Path
from typing import Optional

from steward.exceptions import NodeLockHeld

log = logging.getLogger(__name__)


def pid_alive(pid: int) -> bool:
    """``True`` when a process with *pid* exists."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)  # signal 0 tests process existence
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by another user.
        return True
    return True


class NodeLock:
    """Exclusive per-node session lock.

    Args:
        lock_dir: Directory holding lock files.
        node: Node being locked.
    """

    def __init__(self, lock_dir: Path, node: str) -> None:
        self.lock_dir = lock_dir
        self.node = node
        self._held = False

    @property
    def path(self) -> Path:
        return self.lock_dir / f"{self.node}.lock"

    @property
    def held(self) -> bool:
        return self._held

    def holder(self) -> Optional[int]:
        """PID recorded in the lock file, or ``None``."""
        try:
            return int(self.path.read_text(encoding="utf-8").strip())
        except (FileNotFoundError, ValueError):
            return None

    def _try_create(self) -> bool:
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(str(os.getpid()))
        return True

    def acquire(self) -> None:
        """Take the lock or fail immediately.

        Raises:
            NodeLockHeld: A live process already holds the lock.
            OSError: The lock directory is not writable.
        """
        if self._held:
            return
        self.lock_dir.mkdir(parents=True, exist_ok=True)
        if self._try_create():
            self._held = True
            log.debug("lock: acquired %s", self.path)
            return

        pid = self.holder()
        if pid is not None and pid != os.getpid() and pid_alive(pid):
            raise NodeLockHeld(self.node, pid)

        log.info("lock: removing stale lock %s (pid=%s)", self.path, pid)
        self.path.unlink(missing_ok=True)
        if not self._try_create():
            raise NodeLockHeld(self.node, self.holder() or 0)
        self._held = True

    def release(self) -> None:
        """Drop the lock if this instance holds it.  Safe to call twice."""
        if not self._held:
            return
        try:
            if self.holder() == os.getpid():
                self.path.unlink(missing_ok=True)
        except OSError as exc:
            log.warning("lock: failed to remove %s: %s", self.path, exc)
        self._held = False
        log.debug("lock: released %s", self.path)

    def __enter__(self) -> "NodeLock":
        self.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()

    @staticmethod
    def list_all(lock_dir: Path) -> dict[str, Optional[int]]:
        """Map node name → holder PID for every lock file present."""
        if not lock_dir.is_dir():
            return {}
        return {p.stem: NodeLock(lock_dir, p.stem).holder() for p in sorted(lock_dir.glob("*.lock"))}
