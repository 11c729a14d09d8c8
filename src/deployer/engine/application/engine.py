"""
Execution Engine.

Runs a Plan against its targets:
- Stages run in declared order, one after another.
- Within a stage, targets run concurrently, bounded by ``parallelism``.
- A target never starts stage N+1 before its stage N result is recorded.
- A failed stage applies its failure policy (abort, continue, rollback).
- Cleanup stages run for every selected target regardless of earlier
  failures, exactly once.
- cancel() stops new executions and cancels in-flight commands.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Set

from deployer.engine.application.deploy_log import DeployLog
from deployer.plan.domain.enums import CommandKind, FailurePolicy, ResultStatus, RunStatus
from deployer.plan.domain.models import (
    Command,
    ExecutionReport,
    ExecutionResult,
    Plan,
    Stage,
    Target,
)
from deployer.shared.domain.exceptions import (
    CancellationError,
    CommandError,
    SecretNotFoundError,
    TransportError,
)
from deployer.shared.infrastructure.config import settings
from deployer.shared.infrastructure.execution.command_executor import CommandResult
from deployer.shared.infrastructure.logging import get_logger
from deployer.shared.infrastructure.resilience import RetryConfig, RetryExhausted, with_retry_async
from deployer.transport.base import Transport
from deployer.transport.factory import TransportFactory, create_transport

logger = get_logger(__name__)

# Exit code recorded when a command never produced one (target unreachable).
EXIT_UNREACHABLE = 255


@dataclass
class _TargetState:
    """Mutable per-target bookkeeping for a single run."""

    target: Target
    halted: bool = False
    succeeded: Set[str] = field(default_factory=set)
    transport: Optional[Transport] = None


class ExecutionEngine:
    """Drives transports stage by stage and collects an ExecutionReport."""

    def __init__(
        self,
        transport_factory: Optional[TransportFactory] = None,
        parallelism: Optional[int] = None,
        deploy_log: Optional[DeployLog] = None,
        retry_config: Optional[RetryConfig] = None,
        variables: Optional[Mapping[str, str]] = None,
        command_timeout: Optional[float] = None,
        dry_run: bool = False,
    ):
        self.transport_factory = transport_factory or create_transport
        self.parallelism = settings.parallelism if parallelism is None else parallelism
        if self.parallelism < 1:
            raise ValueError("parallelism must be at least 1")
        self.deploy_log = deploy_log or DeployLog()
        self.retry_config = retry_config or RetryConfig.for_transport()
        self.variables = dict(variables or {})
        self.command_timeout = command_timeout or settings.command_timeout
        self.dry_run = dry_run
        self._cancel_event = asyncio.Event()

    # =========================================================================
    # Public API
    # =========================================================================

    def cancel(self) -> None:
        """Stop issuing new executions and cancel in-flight ones."""
        if not self._cancel_event.is_set():
            logger.warning("run_cancellation_requested")
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    async def run(self, plan: Plan, targets: Optional[Iterable[Target]] = None) -> ExecutionReport:
        """
        Execute every stage of ``plan`` across ``targets`` (default: all plan targets).

        Returns:
            ExecutionReport with one result per (stage, target) pair that reached
            a terminal state
        """
        selected = plan.targets if targets is None else tuple(targets)
        states: Dict[str, _TargetState] = {t.name: _TargetState(target=t) for t in selected}
        report = ExecutionReport(
            plan_name=plan.name,
            status=RunStatus.RUNNING,
            started_at=datetime.now(timezone.utc),
            dry_run=self.dry_run,
        )

        logger.info(
            "run_started",
            plan=plan.name,
            stages=len(plan.stages),
            targets=[t.name for t in selected],
            parallelism=self.parallelism,
            dry_run=self.dry_run,
        )

        try:
            for stage in plan.stages:
                if self.cancelled:
                    break
                runnable = self._runnable_states(plan, stage, selected, states)
                if not runnable:
                    logger.info("stage_skipped", stage=stage.name, reason="no_runnable_targets")
                    continue
                await self._run_stage(plan, stage, runnable, report)
        finally:
            await self._close_transports(states.values())

        report.finished_at = datetime.now(timezone.utc)
        if self.cancelled:
            report.status = RunStatus.CANCELLED
        elif all(r.success for r in report.results):
            report.status = RunStatus.COMPLETED
        else:
            report.status = RunStatus.FAILED

        logger.info(
            "run_completed",
            plan=plan.name,
            status=report.status.value,
            results=len(report.results),
            failed=sum(1 for r in report.results if not r.success),
            duration_ms=int((report.finished_at - report.started_at).total_seconds() * 1000),
        )
        return report

    # =========================================================================
    # Stage scheduling
    # =========================================================================

    def _runnable_states(
        self,
        plan: Plan,
        stage: Stage,
        selected: tuple,
        states: Dict[str, _TargetState],
    ) -> List[_TargetState]:
        runnable = []
        for target in plan.targets_for(stage, selected):
            state = states[target.name]
            if stage.cleanup:
                runnable.append(state)
                continue
            if state.halted:
                continue
            missing = [name for name in stage.needs if name not in state.succeeded]
            if missing:
                logger.info("stage_skipped", stage=stage.name, target=target.name, reason="needs_not_met", missing=missing)
                continue
            runnable.append(state)
        return runnable

    async def _run_stage(
        self,
        plan: Plan,
        stage: Stage,
        runnable: List[_TargetState],
        report: ExecutionReport,
    ) -> None:
        logger.info(
            "stage_started",
            stage=stage.name,
            targets=[s.target.name for s in runnable],
            policy=stage.policy.value,
            cleanup=stage.cleanup,
        )
        semaphore = asyncio.Semaphore(self.parallelism)

        async def guarded(state: _TargetState) -> None:
            async with semaphore:
                if self.cancelled:
                    return
                await self._run_target_stage(plan, stage, state, report)

        tasks = [asyncio.create_task(guarded(state), name=f"{stage.name}:{state.target.name}") for state in runnable]
        cancel_waiter = asyncio.create_task(self._cancel_event.wait())
        try:
            pending = set(tasks)
            while pending:
                done, _ = await asyncio.wait(pending | {cancel_waiter}, return_when=asyncio.FIRST_COMPLETED)
                pending -= done
                if cancel_waiter in done:
                    for task in pending:
                        task.cancel()
                    break
            results = await asyncio.gather(*tasks, return_exceptions=True)
        except asyncio.CancelledError:
            self.cancel()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        finally:
            cancel_waiter.cancel()

        for task, outcome in zip(tasks, results):
            if isinstance(outcome, Exception):
                logger.error("target_execution_crashed", task=task.get_name(), error=str(outcome))
                raise outcome

        logger.info("stage_completed", stage=stage.name)

    # =========================================================================
    # One stage on one target
    # =========================================================================

    async def _run_target_stage(
        self,
        plan: Plan,
        stage: Stage,
        state: _TargetState,
        report: ExecutionReport,
    ) -> ExecutionResult:
        target = state.target
        variables = self._variables_for(plan, target)
        timeout = stage.timeout or self.command_timeout
        started_at = datetime.now(timezone.utc)
        start = time.perf_counter()

        stdout: List[str] = []
        stderr: List[str] = []
        commands_run = 0
        exit_code = 0
        status = ResultStatus.SUCCEEDED
        error: Optional[Exception] = None

        def finish(status: ResultStatus, error: Optional[Exception], rolled_back: bool = False) -> ExecutionResult:
            result = ExecutionResult(
                stage=stage.name,
                target=target.name,
                status=status,
                exit_code=exit_code,
                started_at=started_at,
                duration_ms=int((time.perf_counter() - start) * 1000),
                stdout="".join(stdout),
                stderr="".join(stderr),
                error_kind=type(error).__name__ if error else None,
                error=str(error) if error else None,
                rolled_back=rolled_back,
                commands_run=commands_run,
            )
            self._record(report, result)
            return result

        logger.debug("target_stage_started", stage=stage.name, target=target.name)
        try:
            transport = await self._transport_for(state)
            for command in stage.commands:
                if self.cancelled:
                    raise CancellationError("Run cancelled before command started")
                result = await self._execute(transport, command.render(variables), stage.name, target, timeout)
                commands_run += 1
                exit_code = result.exit_code
                stdout.append(result.stdout)
                stderr.append(result.stderr)
                if not result.is_success:
                    raise CommandError(command.render(variables).describe(), result.exit_code, result.stderr)
        except CommandError as e:
            status, error = ResultStatus.FAILED, e
        except (TransportError, SecretNotFoundError) as e:
            status, error, exit_code = ResultStatus.UNREACHABLE, e, EXIT_UNREACHABLE
        except CancellationError as e:
            status, error = ResultStatus.CANCELLED, e
        except asyncio.CancelledError:
            state.halted = True
            finish(ResultStatus.CANCELLED, CancellationError("Run cancelled while command was in flight"))
            raise

        rolled_back = False
        if status is ResultStatus.SUCCEEDED:
            state.succeeded.add(stage.name)
        elif status is ResultStatus.FAILED:
            try:
                rolled_back = await self._apply_policy(plan, stage, state, error, timeout)
            except asyncio.CancelledError:
                # rollback interrupted; the stage itself still failed
                finish(status, error)
                raise
        else:
            state.halted = True
            logger.error(
                "target_halted",
                stage=stage.name,
                target=target.name,
                reason=status.value,
                error=str(error),
            )

        return finish(status, error, rolled_back)

    async def _apply_policy(
        self,
        plan: Plan,
        stage: Stage,
        state: _TargetState,
        error: Exception,
        timeout: float,
    ) -> bool:
        """Apply the stage's failure policy. Returns True if compensating commands all succeeded."""
        target = state.target
        if stage.policy is FailurePolicy.CONTINUE:
            logger.warning("stage_failed_continuing", stage=stage.name, target=target.name, error=str(error))
            return False

        state.halted = True
        if stage.policy is FailurePolicy.ABORT or not stage.rollback:
            logger.error("stage_failed_aborting", stage=stage.name, target=target.name, error=str(error))
            return False

        logger.warning("rollback_started", stage=stage.name, target=target.name, commands=len(stage.rollback))
        variables = self._variables_for(plan, target)
        log_stage = f"{stage.name}:rollback"
        try:
            transport = await self._transport_for(state)
            for command in stage.rollback:
                result = await self._execute(transport, command.render(variables), log_stage, target, timeout)
                if not result.is_success:
                    logger.error(
                        "rollback_failed",
                        stage=stage.name,
                        target=target.name,
                        command=result.command,
                        exit_code=result.exit_code,
                    )
                    return False
        except TransportError as e:
            logger.error("rollback_failed", stage=stage.name, target=target.name, error=str(e))
            return False

        logger.info("rollback_completed", stage=stage.name, target=target.name)
        return True

    # =========================================================================
    # Transport plumbing
    # =========================================================================

    async def _transport_for(self, state: _TargetState) -> Transport:
        if state.transport is not None:
            return state.transport

        transport = self.transport_factory(state.target)
        try:
            await with_retry_async(
                transport.connect,
                self.retry_config,
                operation_name="connect",
                target=state.target.name,
            )
        except RetryExhausted as e:
            raise TransportError(str(e.last_error), {"target": state.target.name}) from e
        state.transport = transport
        return transport

    async def _execute(
        self,
        transport: Transport,
        command: Command,
        stage_name: str,
        target: Target,
        timeout: float,
    ) -> CommandResult:
        async def attempt() -> CommandResult:
            if command.kind is CommandKind.TRANSFER:
                return await transport.transfer(command.source, command.destination, timeout=timeout)
            return await transport.execute(command.text, timeout=timeout)

        start = time.perf_counter()
        try:
            result = await with_retry_async(
                attempt,
                self.retry_config,
                operation_name="execute",
                target=target.name,
                stage=stage_name,
            )
        except RetryExhausted as e:
            self.deploy_log.record(target.name, stage_name, EXIT_UNREACHABLE, int((time.perf_counter() - start) * 1000))
            raise TransportError(str(e.last_error), {"target": target.name}) from e
        except TransportError:
            self.deploy_log.record(target.name, stage_name, EXIT_UNREACHABLE, int((time.perf_counter() - start) * 1000))
            raise

        self.deploy_log.record(target.name, stage_name, result.exit_code, result.duration_ms)
        return result

    async def _close_transports(self, states: Iterable[_TargetState]) -> None:
        for state in states:
            if state.transport is None:
                continue
            try:
                await state.transport.close()
            except Exception as e:
                logger.warning("transport_close_failed", target=state.target.name, error=str(e))
            state.transport = None

    # =========================================================================
    # Helpers
    # =========================================================================

    def _variables_for(self, plan: Plan, target: Target) -> Dict[str, str]:
        variables = dict(plan.variables)
        variables.update(self.variables)
        variables["target"] = target.name
        variables["host"] = target.host
        return variables

    def _record(self, report: ExecutionReport, result: ExecutionResult) -> None:
        report.results.append(result)
        log = logger.info if result.success else logger.warning
        log(
            "stage_result",
            stage=result.stage,
            target=result.target,
            status=result.status.value,
            exit_code=result.exit_code,
            duration_ms=result.duration_ms,
            rolled_back=result.rolled_back,
        )
