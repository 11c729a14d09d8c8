"""
Tests for the deployment runner.

Target selection, source fetching, deploy log setup and cancellation that
arrives before the engine has started.
"""

import asyncio
from pathlib import Path

import pytest

from deployer.engine.application.runner import DeploymentRunner, RunOptions, select_targets
from deployer.plan.domain.enums import RunStatus
from deployer.shared.domain.exceptions import CancellationError, DeployLogError, PlanLoadError
from deployer.source.checkout import SourceCheckoutProvider


class SlowCheckout(SourceCheckoutProvider):
    """Checkout that takes ``delay`` seconds and records whether it finished."""

    def __init__(self, path: Path, delay: float):
        self.path = path
        self.delay = delay
        self.finished = False

    async def fetch(self, ref: str) -> Path:
        await asyncio.sleep(self.delay)
        self.finished = True
        return self.path


STAGES = [
    {"name": "deploy", "commands": ["deploy ${source_dir}"]},
    {"name": "prune", "cleanup": True, "commands": ["prune"]},
]


class TestSelectTargets:

    def test_names_and_tags(self, make_plan):
        plan = make_plan(STAGES, targets=["A", "B"])

        assert [t.name for t in select_targets(plan, [])] == ["A", "B"]
        assert [t.name for t in select_targets(plan, ["B"])] == ["B"]

    def test_unknown_name(self, make_plan):
        with pytest.raises(PlanLoadError, match="unknown target 'nope'"):
            select_targets(make_plan(STAGES), ["nope"])


class TestDeploymentRunner:

    @pytest.mark.asyncio
    async def test_source_dir_reaches_commands(self, make_plan, cluster, tmp_path):
        runner = DeploymentRunner(checkout_provider=SlowCheckout(tmp_path, 0), transport_factory=cluster.factory)

        report = await runner.run(make_plan(STAGES), RunOptions())

        assert report.status is RunStatus.COMPLETED
        assert cluster.commands_for("A") == [f"deploy {tmp_path}", "prune"]

    @pytest.mark.asyncio
    async def test_cancel_during_checkout(self, make_plan, cluster, tmp_path):
        checkout = SlowCheckout(tmp_path, 0.5)
        runner = DeploymentRunner(checkout_provider=checkout, transport_factory=cluster.factory)
        asyncio.get_running_loop().call_later(0.1, runner.cancel)

        with pytest.raises(CancellationError) as exc:
            await asyncio.wait_for(runner.run(make_plan(STAGES), RunOptions()), timeout=2)

        assert exc.value.exit_code == 130
        assert not checkout.finished
        assert runner.engine is None
        assert cluster.calls == []

    @pytest.mark.asyncio
    async def test_cancel_before_run(self, make_plan, cluster, tmp_path):
        runner = DeploymentRunner(checkout_provider=SlowCheckout(tmp_path, 0), transport_factory=cluster.factory)
        runner.cancel()

        with pytest.raises(CancellationError):
            await runner.run(make_plan(STAGES), RunOptions())

        assert cluster.calls == []

    @pytest.mark.asyncio
    async def test_unusable_log_path_fails_before_checkout(self, make_plan, cluster, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        checkout = SlowCheckout(tmp_path, 0)
        runner = DeploymentRunner(checkout_provider=checkout, transport_factory=cluster.factory)

        with pytest.raises(DeployLogError) as exc:
            await runner.run(make_plan(STAGES), RunOptions(log_path=blocker / "deploy.log"))

        assert exc.value.exit_code == 2
        assert not checkout.finished
        assert cluster.calls == []
