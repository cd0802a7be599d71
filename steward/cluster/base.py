#!/usr/bin/env python3
"""
Steward — External Command Runner

Every collaborator (kubectl, systemctl, pkill …) is reached through an
external command with a bounded timeout.  This module is the single seam
those calls pass through, split into two paths:

    read()    — informational queries; always executed, even in dry-run.
    mutate()  — state-changing calls; suppressed in dry-run, and every
                outcome (success, failure, suppressed) is reported to the
                ``on_mutation`` hook so the session log records it.

Module-level helper:
    run_proc — run an external command with timeout, return (rc, stdout, stderr)

Author: Steward Project
Version: 0.1.0
"""

import asyncio
import logging
import shlex
from dataclasses import dataclass
from typing import Any, Callable, Optional

from steward.exceptions import CommandError

logger = logging.getLogger(__name__)

# (description, argv, success, dry_run, detail)
MutationHook = Callable[[str, list[str], bool, bool, str], None]


@dataclass
class CommandResult:
    """Outcome of one external command.

    Attributes:
        argv: Command line that was run.
        returncode: Process exit status (``0`` for suppressed dry-run calls).
        stdout: Decoded standard output.
        stderr: Decoded standard error.
        dry_run: ``True`` when the call was suppressed.
    """

    argv: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    dry_run: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def raise_for_status(self) -> "CommandResult":
        if not self.ok:
            raise CommandError(self.argv, self.returncode, self.stderr)
        return self


async def run_proc(
    *args: str,
    timeout: float = 30.0,
    **popen_kwargs: Any,
) -> tuple[int, str, str]:
    """Run an external command with timeout.

    Args:
        *args: Command and arguments passed to ``asyncio.create_subprocess_exec``.
        timeout: Maximum seconds to wait for the process to finish.
        **popen_kwargs: Extra kwargs forwarded to ``create_subprocess_exec``.

    Returns:
        ``(returncode, stdout, stderr)`` as ``(int, str, str)``.

    Raises:
        asyncio.TimeoutError: Process did not complete within *timeout*.
        FileNotFoundError: The executable does not exist.
    """
    proc = await asyncio.create_subprocess_exec(
        *args,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        **popen_kwargs,
    )
    try:
        stdout_b, stderr_b = await asyncio.wait_for(
            proc.communicate(), timeout=timeout
        )
        return (proc.returncode or 0,
                stdout_b.decode(errors="replace"),
                stderr_b.decode(errors="replace"))
    except (asyncio.TimeoutError, asyncio.CancelledError):
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise


class CommandRunner:
    """Executes external commands with a uniform timeout and dry-run guard.

    Args:
        timeout: Default per-call timeout in seconds.
        env: Environment for child processes (``None`` inherits).
        dry_run: When ``True``, :meth:`mutate` logs and returns without
            running anything.
        on_mutation: Hook called once per mutating call with
            ``(description, argv, success, dry_run, detail)``.
    """

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        env: Optional[dict[str, str]] = None,
        dry_run: bool = False,
        on_mutation: Optional[MutationHook] = None,
    ) -> None:
        self.timeout = timeout
        self.env = env
        self.dry_run = dry_run
        self.on_mutation = on_mutation
        self.mutations_issued: int = 0
        self.mutations_suppressed: int = 0

    async def _exec(self, argv: list[str], timeout: Optional[float]) -> CommandResult:
        effective = self.timeout if timeout is None else timeout
        kwargs: dict[str, Any] = {}
        if self.env is not None:
            kwargs["env"] = self.env
        try:
            rc, out, err = await run_proc(*argv, timeout=effective, **kwargs)
        except asyncio.TimeoutError:
            logger.warning("%s timed out after %.0fs", argv[0], effective)
            raise CommandError(argv, None, f"timed out after {effective:.0f}s")
        except FileNotFoundError as exc:
            raise CommandError(argv, 127, str(exc))
        return CommandResult(argv, rc, out, err)

    async def read(
        self,
        *argv: str,
        timeout: Optional[float] = None,
        check: bool = False,
    ) -> CommandResult:
        """Run an informational command.  Executed even in dry-run.

        Raises:
            CommandError: On timeout, missing binary, or (with *check*)
                a non-zero exit status.
        """
        result = await self._exec(list(argv), timeout)
        if check:
            result.raise_for_status()
        return result

    async def mutate(
        self,
        *argv: str,
        description: str,
        timeout: Optional[float] = None,
        check: bool = True,
    ) -> CommandResult:
        """Run a state-changing command, or log it in dry-run.

        Args:
            *argv: Command line.
            description: Short operator-facing label (``"cordon worker-1"``).
            timeout: Per-call override of the default timeout.
            check: Raise :class:`CommandError` on a non-zero exit.

        Returns:
            The command result; a synthetic success in dry-run.
        """
        args = list(argv)
        if self.dry_run:
            self.record_mutation(description, args, True, dry_run=True)
            return CommandResult(args, 0, dry_run=True)

        try:
            result = await self._exec(args, timeout)
        except CommandError as exc:
            self.record_mutation(description, args, False, detail=str(exc))
            raise
        self.record_mutation(
            description, args, result.ok, detail=result.stderr.strip()[:200]
        )
        if check:
            result.raise_for_status()
        return result

    def record_mutation(
        self,
        description: str,
        argv: list[str],
        success: bool,
        *,
        dry_run: bool = False,
        detail: str = "",
    ) -> None:
        """Account for one mutating action and forward it to the hook.

        Used directly by collaborators whose mutations are not external
        commands (filesystem sync, cache drop).
        """
        if dry_run:
            self.mutations_suppressed += 1
            logger.info("[dry-run] would %s: %s", description, shlex.join(argv))
        else:
            self.mutations_issued += 1
        if self.on_mutation is not None:
            self.on_mutation(description, argv, success, dry_run, detail)
