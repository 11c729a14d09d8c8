"""
Plan domain models.

Plan, Stage, Target and Command are frozen once loaded. ExecutionResult is
written once per (stage, target) pair by the engine and collected into an
ExecutionReport.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from string import Template
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from deployer.plan.domain.enums import (
    CommandKind,
    FailurePolicy,
    ResultStatus,
    RunStatus,
    TransportKind,
)
from deployer.shared.domain.base_model import BaseDomainModel
from deployer.shared.domain.exceptions import CancellationError, CommandError, TransportError

ALL_TARGETS = "*"


@dataclass(frozen=True)
class Command(BaseDomainModel):
    """A single unit of work: a shell command or a file transfer."""

    kind: CommandKind
    text: str = ""
    source: str = ""
    destination: str = ""

    @classmethod
    def run(cls, text: str) -> "Command":
        return cls(kind=CommandKind.RUN, text=text)

    @classmethod
    def transfer(cls, source: str, destination: str) -> "Command":
        return cls(kind=CommandKind.TRANSFER, source=source, destination=destination)

    def render(self, variables: Mapping[str, str]) -> "Command":
        """Substitute ``${name}`` references; unknown references are left for the shell."""
        return replace(
            self,
            text=Template(self.text).safe_substitute(variables),
            source=Template(self.source).safe_substitute(variables),
            destination=Template(self.destination).safe_substitute(variables),
        )

    def describe(self) -> str:
        if self.kind is CommandKind.TRANSFER:
            return f"transfer {self.source} -> {self.destination}"
        return self.text


@dataclass(frozen=True)
class Target(BaseDomainModel):
    """
    A deployment destination.

    ``credential`` is the name of a secret, resolved through a secret
    provider at execution time. The secret itself never lives here.
    """

    name: str
    host: str = "localhost"
    user: Optional[str] = None
    port: int = 22
    transport: TransportKind = TransportKind.LOCAL
    credential: Optional[str] = None
    tags: Tuple[str, ...] = ()

    @property
    def address(self) -> str:
        return f"{self.user}@{self.host}" if self.user else self.host

    def matches(self, selector: Tuple[str, ...]) -> bool:
        if not selector or ALL_TARGETS in selector:
            return True
        return self.name in selector or any(tag in selector for tag in self.tags)


@dataclass(frozen=True)
class Stage(BaseDomainModel):
    """A named unit of work with a failure policy."""

    name: str
    commands: Tuple[Command, ...]
    selector: Tuple[str, ...] = ()
    policy: FailurePolicy = FailurePolicy.ABORT
    rollback: Tuple[Command, ...] = ()
    cleanup: bool = False
    needs: Tuple[str, ...] = ()
    timeout: Optional[float] = None


@dataclass(frozen=True)
class SourceSpec(BaseDomainModel):
    """Where the application files come from."""

    repo: Optional[str] = None
    ref: str = "main"
    path: Optional[str] = None


@dataclass(frozen=True)
class Plan(BaseDomainModel):
    """Validated, ordered set of deployment stages."""

    name: str
    stages: Tuple[Stage, ...]
    targets: Tuple[Target, ...]
    variables: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    source: Optional[SourceSpec] = None

    @property
    def stage_names(self) -> Tuple[str, ...]:
        return tuple(stage.name for stage in self.stages)

    def target(self, name: str) -> Target:
        for target in self.targets:
            if target.name == name:
                return target
        raise KeyError(name)

    def targets_for(self, stage: Stage, selected: Tuple[Target, ...] | None = None) -> Tuple[Target, ...]:
        pool = self.targets if selected is None else selected
        return tuple(target for target in pool if target.matches(stage.selector))


@dataclass(frozen=True)
class ExecutionResult(BaseDomainModel):
    """Outcome of one stage on one target."""

    stage: str
    target: str
    status: ResultStatus
    exit_code: int
    started_at: datetime
    duration_ms: int
    stdout: str = ""
    stderr: str = ""
    error_kind: Optional[str] = None
    error: Optional[str] = None
    rolled_back: bool = False
    commands_run: int = 0

    @property
    def success(self) -> bool:
        return self.status is ResultStatus.SUCCEEDED


@dataclass
class ExecutionReport(BaseDomainModel):
    """All results of a run, in the order they reached a terminal state."""

    plan_name: str
    status: RunStatus = RunStatus.PENDING
    results: list = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    dry_run: bool = False

    @property
    def success(self) -> bool:
        return self.status is RunStatus.COMPLETED

    @property
    def cancelled(self) -> bool:
        return self.status is RunStatus.CANCELLED

    def results_for(self, target: str) -> list:
        return [r for r in self.results if r.target == target]

    def result(self, stage: str, target: str) -> Optional[ExecutionResult]:
        for r in self.results:
            if r.stage == stage and r.target == target:
                return r
        return None

    @property
    def exit_code(self) -> int:
        """0 on full success, else the code of the most severe failure kind."""
        if self.cancelled:
            return CancellationError.exit_code
        if any(r.status is ResultStatus.UNREACHABLE for r in self.results):
            return TransportError.exit_code
        if any(not r.success for r in self.results):
            return CommandError.exit_code
        return 0

    def to_json(self):
        data = super().to_json()
        data["success"] = self.success
        data["exitCode"] = self.exit_code
        return data
