#!/usr/bin/env python3
"""
Steward — Local Host Control

OS-level collaborator: the service manager (systemd), process signals,
filesystem sync, page-cache drop, and the final reboot/poweroff.  Reads
(service status, leftover processes and mounts, available memory) always
run; every mutation goes through the shared :class:`CommandRunner` so
dry-run suppresses it and the session log records it.

Author: Steward Project
Version: 0.1.0
"""

import logging
import os
import shutil
import socket
from pathlib import Path
from typing import Iterable, Optional

import psutil

from steward.cluster.base import CommandResult, CommandRunner
from steward.exceptions import CommandError
from steward.models import PowerAction

logger = logging.getLogger(__name__)

_DROP_CACHES = Path("/proc/sys/vm/drop_caches")
_PROC_MOUNTS = Path("/proc/mounts")


class HostControl:
    """Local service manager, signals, sync, and power actions.

    Args:
        runner: Shared command runner (carries timeout and dry-run flag).
    """

    def __init__(self, runner: CommandRunner) -> None:
        self._runner = runner

    # ── Environment reads ────────────────────────────────────────────────

    @staticmethod
    def is_root() -> bool:
        return os.geteuid() == 0

    @staticmethod
    def which(binary: str) -> Optional[str]:
        return shutil.which(binary)

    @staticmethod
    def hostnames() -> set[str]:
        """Short and fully qualified names of this machine, lowercased."""
        names = {n.lower() for n in (socket.gethostname(), socket.getfqdn()) if n}
        return names | {n.split(".", 1)[0] for n in names}

    @staticmethod
    def available_memory_mb() -> int:
        return int(psutil.virtual_memory().available // (1024 * 1024))

    @staticmethod
    def leftover_processes(pattern: str) -> list[int]:
        """PIDs whose command line contains *pattern*."""
        pids: list[int] = []
        for proc in psutil.process_iter(["pid", "cmdline"]):
            cmdline = " ".join(proc.info.get("cmdline") or [])
            if pattern in cmdline and proc.info["pid"] != os.getpid():
                pids.append(proc.info["pid"])
        return pids

    @staticmethod
    def leftover_mounts(keywords: Iterable[str], mounts_file: Path = _PROC_MOUNTS) -> list[str]:
        """Mount points whose line mentions any of *keywords*."""
        words = tuple(keywords)
        try:
            lines = mounts_file.read_text(encoding="utf-8").splitlines()
        except OSError as exc:
            logger.debug("cannot read %s: %s", mounts_file, exc)
            return []
        found = []
        for line in lines:
            parts = line.split()
            if len(parts) >= 2 and any(w in line for w in words):
                found.append(parts[1])
        return found

    # ── Service manager ──────────────────────────────────────────────────

    async def is_active(self, unit: str) -> bool:
        """``True`` while systemd reports *unit* active."""
        try:
            result = await self._runner.read("systemctl", "is-active", "--quiet", unit)
        except CommandError as exc:
            logger.warning("systemctl is-active %s failed: %s", unit, exc)
            return False
        return result.ok

    async def stop_service(self, unit: str) -> CommandResult:
        return await self._runner.mutate(
            "systemctl", "stop", unit,
            description=f"stop service {unit}", check=False,
        )

    async def kill_service(self, unit: str, signal_name: str = "SIGTERM") -> CommandResult:
        return await self._runner.mutate(
            "systemctl", "kill", f"--signal={signal_name}", unit,
            description=f"signal {signal_name} to {unit}", check=False,
        )

    async def pkill(self, pattern: str, signal_name: str = "KILL") -> CommandResult:
        """Signal every process matching *pattern*; exit 1 means none matched."""
        return await self._runner.mutate(
            "pkill", f"-{signal_name}", "-f", pattern,
            description=f"pkill -{signal_name} {pattern!r}", check=False,
        )

    # ── Filesystem and power ─────────────────────────────────────────────

    def sync_filesystems(self) -> None:
        """Flush filesystem buffers (suppressed in dry-run)."""
        if self._runner.dry_run:
            self._runner.record_mutation("sync filesystems", ["sync"], True, dry_run=True)
            return
        os.sync()
        self._runner.record_mutation("sync filesystems", ["sync"], True)

    def drop_caches(self, path: Path = _DROP_CACHES) -> bool:
        """Drop page caches; a failure is reported, never raised."""
        argv = ["echo", "3", ">", str(path)]
        if self._runner.dry_run:
            self._runner.record_mutation("drop page caches", argv, True, dry_run=True)
            return True
        try:
            path.write_text("3\n", encoding="ascii")
        except OSError as exc:
            self._runner.record_mutation("drop page caches", argv, False, detail=str(exc))
            return False
        self._runner.record_mutation("drop page caches", argv, True)
        return True

    async def power(self, action: PowerAction) -> CommandResult:
        """Issue the terminal reboot or poweroff."""
        return await self._runner.mutate(
            "systemctl", action.value,
            description=f"{action.value} host",
        )
