"""
Deployment runner.

Glue between the CLI and the engine: selects targets, fetches the source
tree once, prepares runtime variables and runs the plan.
"""

import asyncio
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import List, Optional, Tuple

from deployer.engine.application.deploy_log import DeployLog
from deployer.engine.application.engine import ExecutionEngine
from deployer.plan.domain.models import ExecutionReport, Plan, Target
from deployer.secrets.provider import EnvironmentSecretProvider, SecretProvider
from deployer.shared.domain.exceptions import CancellationError, PlanLoadError
from deployer.shared.infrastructure.logging import get_logger
from deployer.source.checkout import GitCheckoutProvider, SourceCheckoutProvider, provider_for
from deployer.transport.factory import TransportFactory, create_transport

logger = get_logger(__name__)

NO_CACHE_FLAG = "--no-cache"


@dataclass
class RunOptions:
    """Per-run switches coming from the command line."""

    target_names: List[str] = field(default_factory=list)
    dry_run: bool = False
    no_cache: bool = False
    parallelism: Optional[int] = None
    ref: Optional[str] = None
    log_path: Optional[Path] = None


def select_targets(plan: Plan, names: List[str]) -> Tuple[Target, ...]:
    """
    Resolve ``--target`` names (or tags) against the plan.

    Raises:
        PlanLoadError: If a name matches neither a target nor a tag
    """
    if not names:
        return plan.targets
    selected = []
    for name in names:
        matches = [t for t in plan.targets if t.name == name or name in t.tags]
        if not matches:
            known = ", ".join(t.name for t in plan.targets)
            raise PlanLoadError(f"unknown target '{name}' (known: {known})", location="--target")
        selected.extend(t for t in matches if t not in selected)
    return tuple(selected)


class DeploymentRunner:
    """Runs a loaded plan end to end."""

    def __init__(
        self,
        secrets: Optional[SecretProvider] = None,
        checkout_provider: Optional[SourceCheckoutProvider] = None,
        transport_factory: Optional[TransportFactory] = None,
    ):
        self.secrets = secrets or EnvironmentSecretProvider()
        self.checkout_provider = checkout_provider
        self.transport_factory = transport_factory
        self.engine: Optional[ExecutionEngine] = None
        self._cancelled = False
        self._fetch_task: Optional[asyncio.Task] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Cancel the run, whether it is still fetching the source or already executing."""
        self._cancelled = True
        if self._fetch_task is not None and not self._fetch_task.done():
            logger.warning("checkout_cancelled")
            self._fetch_task.cancel()
        if self.engine is not None:
            self.engine.cancel()

    async def run(self, plan: Plan, options: RunOptions) -> ExecutionReport:
        """
        Fetch the source tree once, then execute ``plan``.

        Raises:
            PlanLoadError: If a ``--target`` name is unknown
            DeployLogError: If the deploy log cannot be opened
            CheckoutError: If the source tree cannot be fetched
            CancellationError: If cancel() is called before any stage starts
        """
        targets = select_targets(plan, options.target_names)
        deploy_log = DeployLog(options.log_path)
        variables = {"no_cache": NO_CACHE_FLAG if options.no_cache else ""}

        self._fetch_task = asyncio.create_task(self._fetch_source(plan, options))
        try:
            source_dir = await self._fetch_task
        except asyncio.CancelledError:
            if not self._cancelled:
                raise
            raise CancellationError("Run cancelled while fetching the source tree") from None
        if self._cancelled:
            raise CancellationError("Run cancelled before any stage started")
        if source_dir is not None:
            variables["source_dir"] = str(source_dir)

        factory = self.transport_factory or partial(
            create_transport,
            secrets=self.secrets,
            dry_run=options.dry_run,
        )
        self.engine = ExecutionEngine(
            transport_factory=factory,
            parallelism=options.parallelism,
            deploy_log=deploy_log,
            variables=variables,
            dry_run=options.dry_run,
        )
        return await self.engine.run(plan, targets)

    async def _fetch_source(self, plan: Plan, options: RunOptions) -> Optional[Path]:
        provider = self.checkout_provider
        if provider is None:
            if plan.source is None:
                return None
            provider = provider_for(plan.source)

        ref = options.ref or (plan.source.ref if plan.source else "main")
        if options.dry_run and isinstance(provider, GitCheckoutProvider):
            path = provider.checkout_path(ref)
            logger.info("checkout_skipped", reason="dry_run", path=str(path))
            return path

        return await provider.fetch(ref)
