"""Local shell transport."""

import asyncio
import shutil
import time
from pathlib import Path
from typing import Optional

from deployer.shared.infrastructure.execution.command_executor import CommandResult
from deployer.shared.infrastructure.logging import get_logger
from deployer.transport.base import Transport

logger = get_logger(__name__)


def _copy(source: Path, destination: Path) -> None:
    if source.is_dir():
        shutil.copytree(source, destination, dirs_exist_ok=True)
    else:
        if destination.is_dir():
            destination = destination / source.name
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, destination)


class LocalShellTransport(Transport):
    """Runs commands through /bin/sh on this machine."""

    name = "local"

    async def execute(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        return await self.executor.run_async(command, shell=True, timeout=timeout)

    async def transfer(self, local_path: Path | str, remote_path: str, timeout: Optional[float] = None) -> CommandResult:
        description = f"copy {local_path} {remote_path}"
        source = Path(local_path)
        start = time.perf_counter()
        try:
            await asyncio.wait_for(asyncio.to_thread(_copy, source, Path(remote_path)), timeout=timeout)
        except asyncio.TimeoutError:
            return CommandResult(description, -1, "", "Transfer timed out", time.perf_counter() - start, is_timeout=True)
        except OSError as e:
            logger.warning("local_transfer_failed", source=str(source), destination=remote_path, error=str(e))
            return CommandResult(description, 1, "", str(e), time.perf_counter() - start)
        return CommandResult(description, 0, "", "", time.perf_counter() - start)
