"""
Append-only deploy log.

One line per executed command:

    <ISO8601 timestamp> <target> <stage> <exit-code> <duration-ms>

Entries are kept in memory and, when a path is given, appended to a file.
Writers may be concurrent; each append is serialized under a lock and
entries are never modified once written. The file is opened when the log is
created, so an unusable path fails before anything runs; a later write
failure is logged and counted, and the run carries on.
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

from deployer.shared.domain.exceptions import DeployLogError
from deployer.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class DeployLogEntry:
    timestamp: datetime
    target: str
    stage: str
    exit_code: int
    duration_ms: int

    def format(self) -> str:
        return (
            f"{self.timestamp.isoformat(timespec='milliseconds')} "
            f"{self.target} {self.stage} {self.exit_code} {self.duration_ms}"
        )


class DeployLog:
    """Thread- and task-safe append-only command log."""

    def __init__(self, path: Optional[Path | str] = None):
        self.path = Path(path) if path else None
        self._lock = threading.Lock()
        self._entries: List[DeployLogEntry] = []
        self.write_failures = 0
        if self.path is not None:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "a", encoding="utf-8"):
                    pass
            except OSError as e:
                raise DeployLogError(
                    f"cannot open deploy log {self.path}: {e.strerror or e}",
                    {"path": str(self.path)},
                ) from e

    def record(
        self,
        target: str,
        stage: str,
        exit_code: int,
        duration_ms: int,
        timestamp: Optional[datetime] = None,
    ) -> DeployLogEntry:
        entry = DeployLogEntry(
            timestamp=timestamp or datetime.now(timezone.utc),
            target=target,
            stage=stage,
            exit_code=exit_code,
            duration_ms=duration_ms,
        )
        line = entry.format()
        with self._lock:
            self._entries.append(entry)
            if self.path is not None:
                try:
                    with open(self.path, "a", encoding="utf-8") as fh:
                        fh.write(line + "\n")
                except OSError as e:
                    self.write_failures += 1
                    logger.error("deploy_log_write_failed", path=str(self.path), line=line, error=str(e))
        logger.info("command_logged", target=target, stage=stage, exit_code=exit_code, duration_ms=duration_ms)
        return entry

    @property
    def entries(self) -> Tuple[DeployLogEntry, ...]:
        with self._lock:
            return tuple(self._entries)

    def lines(self) -> List[str]:
        return [entry.format() for entry in self.entries]

    def for_target(self, target: str) -> List[DeployLogEntry]:
        return [entry for entry in self.entries if entry.target == target]
