"""
Run Command - execute a deployment plan.

Exit codes:
    0   every stage succeeded on every target
    2   plan could not be loaded (or an unknown --target was given)
    3   at least one stage failed
    4   at least one target was unreachable
    130 the run was cancelled
"""

import asyncio
import contextlib
import json
import signal
from pathlib import Path
from typing import List, Optional

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from deployer.engine.application.runner import DeploymentRunner, RunOptions
from deployer.plan.application.loader import load_plan
from deployer.plan.domain.enums import ResultStatus
from deployer.plan.domain.models import ExecutionReport
from deployer.shared.domain.exceptions import DeployError, PlanLoadError
from deployer.shared.infrastructure.config import settings
from deployer.shared.infrastructure.logging import get_logger

console = Console()
logger = get_logger(__name__)

STATUS_STYLES = {
    ResultStatus.SUCCEEDED: "[green]succeeded[/green]",
    ResultStatus.FAILED: "[red]failed[/red]",
    ResultStatus.UNREACHABLE: "[magenta]unreachable[/magenta]",
    ResultStatus.CANCELLED: "[yellow]cancelled[/yellow]",
}


def render_report(report: ExecutionReport) -> None:
    """Print the per-stage, per-target results as a table."""
    table = Table(title=f"Deployment: {report.plan_name}", box=box.SIMPLE_HEAVY)
    table.add_column("Stage", style="cyan")
    table.add_column("Target")
    table.add_column("Status")
    table.add_column("Exit", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Notes", style="dim")

    for result in report.results:
        notes = []
        if result.rolled_back:
            notes.append("rolled back")
        if result.error and not result.success:
            notes.append(result.error.splitlines()[0][:80])
        table.add_row(
            result.stage,
            result.target,
            STATUS_STYLES[result.status],
            str(result.exit_code),
            f"{result.duration_ms} ms",
            "; ".join(notes),
        )

    console.print(table)

    failed = sum(1 for r in report.results if not r.success)
    if report.success:
        summary = f"[bold green]✓ Deployment completed[/bold green] ({len(report.results)} results)"
    elif report.cancelled:
        summary = "[bold yellow]Deployment cancelled[/bold yellow]"
    else:
        summary = f"[bold red]✗ Deployment failed[/bold red] ({failed} of {len(report.results)} results failed)"
    if report.dry_run:
        summary += " [dim](dry run)[/dim]"
    console.print(Panel.fit(summary, border_style="green" if report.success else "red"))


async def _run_async(plan_file: Path, options: RunOptions) -> ExecutionReport:
    plan = load_plan(plan_file)
    runner = DeploymentRunner()

    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError, RuntimeError):
        loop.add_signal_handler(signal.SIGINT, runner.cancel)
        loop.add_signal_handler(signal.SIGTERM, runner.cancel)
    try:
        return await runner.run(plan, options)
    finally:
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.remove_signal_handler(signal.SIGINT)
            loop.remove_signal_handler(signal.SIGTERM)


def run_command(
    plan_file: Path = typer.Argument(..., help="Deployment plan (.yaml, .yml or .json)"),
    target: Optional[List[str]] = typer.Option(
        None, "--target", "-t", help="Target name or tag to deploy to (repeatable, default: all)"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would run without executing anything"),
    no_cache: bool = typer.Option(False, "--no-cache", help="Expose --no-cache to commands as ${no_cache}"),
    parallelism: Optional[int] = typer.Option(
        None, "--parallelism", "-p", min=1, help="Max targets running concurrently per stage"
    ),
    ref: Optional[str] = typer.Option(None, "--ref", help="Source ref to check out (overrides the plan)"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Deploy log path (default from settings)"),
    json_output: bool = typer.Option(False, "--json", help="Print the execution report as JSON"),
):
    """
    Run a deployment plan against its targets.
    """
    options = RunOptions(
        target_names=list(target or []),
        dry_run=dry_run,
        no_cache=no_cache,
        parallelism=parallelism,
        ref=ref,
        log_path=log_file or Path(settings.deploy_log_path),
    )

    try:
        report = asyncio.run(_run_async(plan_file, options))
    except PlanLoadError as e:
        console.print(f"[red]Plan error:[/red] {e}")
        raise typer.Exit(PlanLoadError.exit_code)
    except DeployError as e:
        logger.error("deployment_error", error=str(e), error_type=type(e).__name__)
        console.print(f"[red]Deployment error:[/red] {e}")
        raise typer.Exit(e.exit_code)

    if json_output:
        typer.echo(json.dumps(report.to_json(), indent=2))
    else:
        render_report(report)

    raise typer.Exit(report.exit_code)
