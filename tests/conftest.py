"""Shared test fixtures for Deployer Core test suite."""

import asyncio
from collections import Counter
from typing import Dict, List, Optional, Tuple

import pytest

from deployer.engine.application.deploy_log import DeployLog
from deployer.engine.application.engine import ExecutionEngine
from deployer.plan.application.loader import build_plan
from deployer.shared.domain.exceptions import TransportError
from deployer.shared.infrastructure.execution.command_executor import CommandResult
from deployer.shared.infrastructure.resilience import RetryConfig
from deployer.transport.base import Transport


class FakeCluster:
    """
    In-memory stand-in for a fleet of hosts.

    exit_codes maps a command (or a (target, command) pair) to its exit status;
    anything unlisted exits 0. delays overrides the default delay per command.
    """

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.delays: Dict[str, float] = {}
        self.exit_codes: Dict = {}
        self.connect_failures: Dict[str, int] = {}
        self.execute_failures: Dict[Tuple[str, str], int] = {}
        self.calls: List[Tuple[str, str]] = []
        self.connects: Counter = Counter()
        self.closed: List[str] = []
        self.active = 0
        self.max_active = 0

    def factory(self, target) -> "FakeTransport":
        return FakeTransport(target, self)

    def commands_for(self, target: str) -> List[str]:
        return [cmd for name, cmd in self.calls if name == target]


class FakeTransport(Transport):
    name = "fake"

    def __init__(self, target, cluster: FakeCluster):
        super().__init__(target)
        self.cluster = cluster

    async def connect(self) -> None:
        name = self.target.name
        self.cluster.connects[name] += 1
        if self.cluster.connect_failures.get(name, 0) > 0:
            self.cluster.connect_failures[name] -= 1
            raise TransportError(f"connection refused by {name}")

    async def close(self) -> None:
        self.cluster.closed.append(self.target.name)

    async def execute(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        return await self._run(command)

    async def transfer(self, local_path, remote_path, timeout: Optional[float] = None) -> CommandResult:
        return await self._run(f"transfer {local_path} {remote_path}")

    async def _run(self, command: str) -> CommandResult:
        cluster = self.cluster
        name = self.target.name
        key = (name, command)
        if cluster.execute_failures.get(key, 0) > 0:
            cluster.execute_failures[key] -= 1
            raise TransportError(f"connection reset by {name}")

        cluster.calls.append(key)
        cluster.active += 1
        cluster.max_active = max(cluster.max_active, cluster.active)
        delay = cluster.delays.get(command, cluster.delay)
        try:
            if delay:
                await asyncio.sleep(delay)
        finally:
            cluster.active -= 1

        code = cluster.exit_codes.get(key, cluster.exit_codes.get(command, 0))
        return CommandResult(command, code, f"{command}\n", "" if code == 0 else "boom\n", delay)


FAST_RETRY = RetryConfig(max_attempts=3, initial_delay=0.0, jitter=False, retryable_exceptions=(TransportError,))


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
def deploy_log():
    return DeployLog()


@pytest.fixture
def make_engine(cluster, deploy_log):
    """Build an ExecutionEngine wired to the fake cluster."""

    def _make(parallelism: int = 4, **kwargs) -> ExecutionEngine:
        kwargs.setdefault("retry_config", FAST_RETRY)
        kwargs.setdefault("deploy_log", deploy_log)
        return ExecutionEngine(transport_factory=cluster.factory, parallelism=parallelism, **kwargs)

    return _make


@pytest.fixture
def make_plan():
    """Build a Plan from stage specs and a list of target names."""

    def _make(stages: list, targets: List[str] = ("A",), **extra):
        data = {
            "name": "test-plan",
            "targets": {name: {"host": f"{name.lower()}.example.com"} for name in targets},
            "stages": stages,
        }
        data.update(extra)
        return build_plan(data)

    return _make


@pytest.fixture
def plan_file(tmp_path):
    """Write a YAML plan into a temp dir and return its path."""

    def _write(content: str, name: str = "plan.yaml"):
        path = tmp_path / name
        path.write_text(content)
        return path

    return _write
