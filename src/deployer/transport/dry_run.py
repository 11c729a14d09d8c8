"""Dry-run transport: records what would run, executes nothing."""

from pathlib import Path
from typing import List, Optional

from deployer.shared.infrastructure.execution.command_executor import CommandResult
from deployer.transport.base import Transport


class DryRunTransport(Transport):
    """Succeeds every command without touching the target."""

    name = "dry-run"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.recorded: List[str] = []

    async def execute(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        self.recorded.append(command)
        return CommandResult(command, 0, f"[dry-run] {self.target.name}: {command}\n", "", 0.0)

    async def transfer(self, local_path: Path | str, remote_path: str, timeout: Optional[float] = None) -> CommandResult:
        description = f"transfer {local_path} -> {remote_path}"
        self.recorded.append(description)
        return CommandResult(description, 0, f"[dry-run] {self.target.name}: {description}\n", "", 0.0)
