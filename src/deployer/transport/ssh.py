"""
Secure remote shell transport.

Drives the system ``ssh`` and ``scp`` clients in batch mode, so host keys,
agents and ssh_config behave exactly as they do for an operator. The
target's credential, when set, is a private key: either a path to a key
file or the key material itself (written to a 0600 temp file for the
lifetime of the connection).

ssh reserves exit status 255 for its own errors (unreachable host, refused
authentication); that status raises TransportError. Every other status is
the remote command's.
"""

import contextlib
import os
import tempfile
from pathlib import Path
from typing import List, Optional

from deployer.shared.domain.exceptions import TransportError
from deployer.shared.infrastructure.config import settings
from deployer.shared.infrastructure.execution.command_executor import EXIT_SPAWN_FAILED, CommandResult
from deployer.shared.infrastructure.logging import get_logger
from deployer.transport.base import Transport

logger = get_logger(__name__)

SSH_ERROR_STATUS = 255


class SecureShellTransport(Transport):
    """Runs commands on a remote host over ssh."""

    name = "ssh"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._identity_file: Optional[str] = None
        self._temp_identity = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        self._prepare_identity()
        result = await self.executor.run_async(
            self._ssh_args("true"),
            timeout=settings.ssh_connect_timeout + 5,
            display=f"ssh {self.target.address} true",
        )
        self._raise_for_transport(result)
        logger.debug("ssh_connected", target=self.target.name, host=self.target.host)

    async def close(self) -> None:
        if self._temp_identity and self._identity_file:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(self._identity_file)
        self._identity_file = None
        self._temp_identity = False

    # ------------------------------------------------------------------
    # Capability
    # ------------------------------------------------------------------

    async def execute(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        self._prepare_identity()
        result = await self.executor.run_async(
            self._ssh_args(command),
            timeout=timeout,
            display=f"ssh {self.target.address} {command}",
        )
        self._raise_for_transport(result)
        return result

    async def transfer(self, local_path: Path | str, remote_path: str, timeout: Optional[float] = None) -> CommandResult:
        self._prepare_identity()
        args = [settings.scp_binary, "-r", "-q", "-P", str(self.target.port)]
        args += self._common_options()
        args += [str(local_path), f"{self.target.address}:{remote_path}"]
        result = await self.executor.run_async(
            args,
            timeout=timeout,
            display=f"scp {local_path} {self.target.address}:{remote_path}",
        )
        self._raise_for_transport(result)
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _common_options(self) -> List[str]:
        options = [
            "-o", "BatchMode=yes",
            "-o", f"ConnectTimeout={settings.ssh_connect_timeout}",
            "-o", f"StrictHostKeyChecking={settings.ssh_strict_host_key_checking}",
        ]
        if self._identity_file:
            options += ["-i", self._identity_file, "-o", "IdentitiesOnly=yes"]
        return options

    def _ssh_args(self, command: str) -> List[str]:
        args = [settings.ssh_binary, "-p", str(self.target.port)]
        args += self._common_options()
        args += [self.target.address, "--", command]
        return args

    def _prepare_identity(self) -> None:
        if self._identity_file or self.credential is None:
            return
        secret = self.credential.reveal()
        if "PRIVATE KEY-----" in secret:
            fd, path = tempfile.mkstemp(prefix="deploy-key-")
            with os.fdopen(fd, "w") as fh:
                fh.write(secret if secret.endswith("\n") else secret + "\n")
            os.chmod(path, 0o600)
            self._identity_file = path
            self._temp_identity = True
        else:
            self._identity_file = os.path.expanduser(secret)

    def _raise_for_transport(self, result: CommandResult) -> None:
        if result.exit_code == SSH_ERROR_STATUS:
            raise TransportError(
                f"ssh to {self.target.host}:{self.target.port} failed: {result.stderr.strip()[:300]}",
                {"target": self.target.name, "host": self.target.host},
            )
        if result.exit_code == EXIT_SPAWN_FAILED:
            error = TransportError(
                f"cannot start ssh client: {result.stderr.strip()}",
                {"target": self.target.name},
            )
            error.non_retryable = True
            raise error
