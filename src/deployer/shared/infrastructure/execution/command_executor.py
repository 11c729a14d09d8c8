"""
Command Executor Service.

Executes system commands asynchronously as their own process group.
Handles timeouts, cancellation, output capturing, and logging.
"""

import asyncio
import contextlib
import os
import shlex
import signal
import time
from dataclasses import dataclass
from pathlib import Path

from deployer.shared.infrastructure.config import settings
from deployer.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

# Exit codes reported when no process status is available.
EXIT_TIMEOUT = -1
EXIT_SPAWN_FAILED = -2


@dataclass(frozen=True)
class CommandResult:
    """Result of a command execution."""
    command: str
    exit_code: int
    stdout: str
    stderr: str
    duration: float
    is_timeout: bool = False

    @property
    def is_success(self) -> bool:
        """Check if command succeeded."""
        return self.exit_code == 0 and not self.is_timeout

    @property
    def duration_ms(self) -> int:
        return int(self.duration * 1000)


def _signal_group(process: asyncio.subprocess.Process, sig: signal.Signals) -> None:
    with contextlib.suppress(ProcessLookupError, PermissionError):
        os.killpg(process.pid, sig)


async def _terminate(process: asyncio.subprocess.Process, grace: float, shown: str) -> None:
    """SIGTERM the process group, escalate to SIGKILL after ``grace`` seconds, then reap."""
    _signal_group(process, signal.SIGTERM)
    try:
        await asyncio.wait_for(process.wait(), timeout=grace)
        return
    except asyncio.TimeoutError:
        logger.warning("command_kill_escalated", command=shown, grace=grace)
    _signal_group(process, signal.SIGKILL)
    await process.wait()


class CommandExecutor:
    """
    Async subprocess wrapper.

    Cancelling the awaiting task terminates the whole process group, so
    in-flight commands (including ssh sessions) do not outlive a cancelled run.
    A group that ignores SIGTERM is killed after ``kill_grace`` seconds.
    """

    def __init__(self, default_timeout: float = 600.0, kill_grace: float | None = None):
        self.default_timeout = default_timeout
        self.kill_grace = settings.command_kill_grace if kill_grace is None else kill_grace

    async def run_async(
        self,
        command: str | list[str],
        cwd: str | Path | None = None,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
        shell: bool = False,
        display: str | None = None,
    ) -> CommandResult:
        """
        Execute a command asynchronously.

        Args:
            command: Command string or list of arguments
            cwd: Working directory
            env: Environment variables (merges with os.environ)
            timeout: Execution timeout in seconds
            shell: Run through /bin/sh
            display: Text used for logging instead of the raw command

        Returns:
            CommandResult object
        """
        start_time = time.perf_counter()
        timeout_val = timeout if timeout is not None else self.default_timeout

        if isinstance(command, str) and not shell:
            cmd_args = shlex.split(command)
        else:
            cmd_args = command

        run_env = os.environ.copy()
        if env:
            run_env.update(env)

        cmd_str = command if isinstance(command, str) else shlex.join(command)
        shown = display or cmd_str
        logger.debug("executing_command", command=shown, cwd=str(cwd) if cwd else "cwd", timeout=timeout_val)

        try:
            if shell:
                process = await asyncio.create_subprocess_shell(
                    cmd_str,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=cwd,
                    env=run_env,
                    start_new_session=True,
                )
            else:
                process = await asyncio.create_subprocess_exec(
                    *cmd_args,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=cwd,
                    env=run_env,
                    start_new_session=True,
                )
        except OSError as e:
            logger.error("command_spawn_failed", command=shown, error=str(e))
            return CommandResult(
                command=shown,
                exit_code=EXIT_SPAWN_FAILED,
                stdout="",
                stderr=f"Execution error: {e!s}",
                duration=time.perf_counter() - start_time,
            )

        try:
            stdout_data, stderr_data = await asyncio.wait_for(process.communicate(), timeout=timeout_val)
        except asyncio.TimeoutError:
            logger.warning("command_timeout", command=shown, timeout=timeout_val)
            await _terminate(process, self.kill_grace, shown)
            return CommandResult(
                command=shown,
                exit_code=EXIT_TIMEOUT,
                stdout="",
                stderr="Command timed out",
                duration=time.perf_counter() - start_time,
                is_timeout=True,
            )
        except asyncio.CancelledError:
            logger.warning("command_cancelled", command=shown)
            await asyncio.shield(_terminate(process, self.kill_grace, shown))
            raise

        duration = time.perf_counter() - start_time
        exit_code = process.returncode
        stdout_str = stdout_data.decode("utf-8", errors="replace")
        stderr_str = stderr_data.decode("utf-8", errors="replace")

        if exit_code != 0:
            logger.warning("command_failed", command=shown, exit_code=exit_code, stderr_snippet=stderr_str[:200])
        else:
            logger.debug("command_success", command=shown, duration=duration)

        return CommandResult(
            command=shown,
            exit_code=exit_code,
            stdout=stdout_str,
            stderr=stderr_str,
            duration=duration,
        )
