"""
Transport adapter interface.

A transport runs commands and copies files against one target. Connection
and authentication failures raise TransportError; a command that ran and
exited nonzero is reported through CommandResult, not raised.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from deployer.plan.domain.models import Target
from deployer.secrets.provider import CredentialHandle
from deployer.shared.infrastructure.config import settings
from deployer.shared.infrastructure.execution.command_executor import CommandExecutor, CommandResult


class Transport(ABC):
    """Execute commands and transfer files on a single target."""

    name = "transport"

    def __init__(
        self,
        target: Target,
        credential: Optional[CredentialHandle] = None,
        executor: Optional[CommandExecutor] = None,
    ):
        self.target = target
        self.credential = credential
        self.executor = executor or CommandExecutor(default_timeout=settings.command_timeout)

    async def connect(self) -> None:
        """Establish or verify connectivity. Raises TransportError."""

    async def close(self) -> None:
        """Release anything acquired by connect()."""

    @abstractmethod
    async def execute(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        """Run a shell command on the target."""

    @abstractmethod
    async def transfer(self, local_path: Path | str, remote_path: str, timeout: Optional[float] = None) -> CommandResult:
        """Copy a local file or directory to the target."""

    async def __aenter__(self) -> "Transport":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    def __repr__(self) -> str:
        return f"{type(self).__name__}(target={self.target.name!r})"
