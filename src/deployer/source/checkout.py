"""
Source checkout providers.

A provider is invoked once before the plan runs and yields the local file
tree that commands reference as ``${source_dir}``.
"""

import re
from abc import ABC, abstractmethod
from pathlib import Path

from deployer.plan.domain.models import SourceSpec
from deployer.shared.domain.exceptions import CheckoutError
from deployer.shared.infrastructure.config import settings
from deployer.shared.infrastructure.execution.command_executor import CommandExecutor
from deployer.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class SourceCheckoutProvider(ABC):
    """Produces a local file tree for a ref."""

    @abstractmethod
    async def fetch(self, ref: str) -> Path:
        """Return the path of the checked-out tree."""


class LocalDirectoryProvider(SourceCheckoutProvider):
    """Uses an existing directory as-is; the ref is ignored."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    async def fetch(self, ref: str) -> Path:
        if not self.path.is_dir():
            raise CheckoutError(f"Source directory does not exist: {self.path}")
        return self.path.resolve()


class GitCheckoutProvider(SourceCheckoutProvider):
    """
    Shallow git checkout of a single ref.

    Re-running against an existing checkout fetches the ref and force-checks
    it out, so the working tree always matches the remote.
    """

    def __init__(self, repo: str, workdir: Path | str | None = None, executor: CommandExecutor | None = None):
        self.repo = repo
        self.workdir = Path(workdir or settings.checkout_dir)
        self.executor = executor or CommandExecutor(default_timeout=settings.command_timeout)

    def checkout_path(self, ref: str) -> Path:
        repo_name = Path(self.repo.rstrip("/")).stem or "source"
        safe_ref = re.sub(r"[^A-Za-z0-9._-]+", "-", ref)
        return self.workdir / f"{repo_name}-{safe_ref}"

    async def fetch(self, ref: str) -> Path:
        target = self.checkout_path(ref)
        logger.info("checkout_started", repo=self.repo, ref=ref, path=str(target))

        if (target / ".git").exists():
            steps = [
                ["git", "-C", str(target), "fetch", "--depth", "1", "origin", ref],
                ["git", "-C", str(target), "checkout", "--force", "FETCH_HEAD"],
                ["git", "-C", str(target), "clean", "-fdx"],
            ]
        else:
            target.parent.mkdir(parents=True, exist_ok=True)
            steps = [["git", "clone", "--depth", "1", "--branch", ref, self.repo, str(target)]]

        for step in steps:
            result = await self.executor.run_async(step)
            if not result.is_success:
                raise CheckoutError(
                    f"git failed with status {result.exit_code}: {result.stderr.strip()[:500]}",
                    {"repo": self.repo, "ref": ref},
                )

        logger.info("checkout_completed", repo=self.repo, ref=ref, path=str(target))
        return target


def provider_for(source: SourceSpec) -> SourceCheckoutProvider:
    if source.repo:
        return GitCheckoutProvider(source.repo)
    return LocalDirectoryProvider(source.path or ".")
