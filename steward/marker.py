#!/usr/bin/env python3
"""
Steward — Cordon Marker

Durable record that steward cordoned a node.  The marker is written the
instant the cordon call succeeds and removed only once the node is
confirmed uncordoned, so its presence is the sole crash-recovery signal
for ``steward rollback`` and ``steward restore``.

File:
    {state_dir}/markers/{node}.json

    {
      "node":        "worker-1",
      "session":     "3f2a9c1e",
      "pid":         4211,
      "cordoned_at": "2026-10-19T08:15:02Z"
    }

Writes are atomic (temp file in the same directory, fsync, rename), so a
crash leaves either no marker or a complete one.

Author: Steward Project
Version: 0.1.0
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class MarkerRecord:
    """Contents of one marker file."""

    node: str
    session: str
    pid: int
    cordoned_at: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MarkerRecord":
        return cls(
            node=str(data.get("node", "")),
            session=str(data.get("session", "")),
            pid=int(data.get("pid", 0) or 0),
            cordoned_at=str(data.get("cordoned_at", "")),
        )


class CordonMarker:
    """Marker file for one node.

    Args:
        marker_dir: Directory holding marker files (must survive reboot).
        node: Node the marker belongs to.
    """

    def __init__(self, marker_dir: Path, node: str) -> None:
        self.marker_dir = marker_dir
        self.node = node

    @property
    def path(self) -> Path:
        return self.marker_dir / f"{self.node}.json"

    def exists(self) -> bool:
        return self.path.is_file()

    def write(self, session_id: str) -> MarkerRecord:
        """Atomically create (or replace) the marker.

        Raises:
            OSError: The marker could not be made durable.
        """
        record = MarkerRecord(
            node=self.node,
            session=session_id,
            pid=os.getpid(),
            cordoned_at=datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        )
        self.marker_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.node}.", suffix=".tmp", dir=self.marker_dir
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(record.__dict__, fh)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        self._fsync_dir()
        log.debug("marker: wrote %s", self.path)
        return record

    def _fsync_dir(self) -> None:
        try:
            dir_fd = os.open(self.marker_dir, os.O_RDONLY)
        except OSError:
            return
        try:
            os.fsync(dir_fd)
        except OSError as exc:
            log.debug("marker: directory fsync failed: %s", exc)
        finally:
            os.close(dir_fd)

    def read(self) -> Optional[MarkerRecord]:
        """Return the marker contents, or ``None`` when absent.

        A marker that exists but cannot be parsed still counts as present;
        it is returned with only the node name filled in.
        """
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return MarkerRecord.from_dict(json.loads(text))
        except (ValueError, TypeError) as exc:
            log.warning("marker: %s is unreadable (%s)", self.path, exc)
            return MarkerRecord(node=self.node, session="", pid=0, cordoned_at="")

    def remove(self) -> bool:
        """Delete the marker.  Idempotent; returns ``True`` if one was removed."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        log.debug("marker: removed %s", self.path)
        return True

    @staticmethod
    def list_all(marker_dir: Path) -> list[MarkerRecord]:
        """Every marker currently present in *marker_dir*."""
        if not marker_dir.is_dir():
            return []
        records = []
        for path in sorted(marker_dir.glob("*.json")):
            record = CordonMarker(marker_dir, path.stem).read()
            if record is not None:
                records.append(record)
        return records
