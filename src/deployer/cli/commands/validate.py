"""Validate Command - load a plan and show what it would do, without running it."""

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from deployer.plan.application.loader import load_plan
from deployer.shared.domain.exceptions import PlanLoadError

console = Console()


def validate_command(
    plan_file: Path = typer.Argument(..., help="Deployment plan (.yaml, .yml or .json)"),
):
    """
    Check a deployment plan and print its stages and targets.
    """
    try:
        plan = load_plan(plan_file)
    except PlanLoadError as e:
        console.print(f"[red]Plan error:[/red] {e}")
        raise typer.Exit(PlanLoadError.exit_code)

    targets = Table(title="Targets")
    targets.add_column("Name", style="cyan")
    targets.add_column("Transport")
    targets.add_column("Address")
    targets.add_column("Tags", style="dim")
    for target in plan.targets:
        targets.add_row(target.name, target.transport.value, f"{target.address}:{target.port}", ", ".join(target.tags))

    stages = Table(title="Stages")
    stages.add_column("#", justify="right")
    stages.add_column("Stage", style="cyan")
    stages.add_column("Policy")
    stages.add_column("Targets")
    stages.add_column("Commands", justify="right")
    stages.add_column("Flags", style="dim")
    for index, stage in enumerate(plan.stages, start=1):
        flags = []
        if stage.cleanup:
            flags.append("cleanup")
        if stage.rollback:
            flags.append(f"rollback({len(stage.rollback)})")
        if stage.needs:
            flags.append("needs " + ",".join(stage.needs))
        stages.add_row(
            str(index),
            stage.name,
            stage.policy.value,
            ", ".join(t.name for t in plan.targets_for(stage)),
            str(len(stage.commands)),
            " ".join(flags),
        )

    console.print(targets)
    console.print(stages)
    console.print(f"[green]✓ Plan '{plan.name}' is valid[/green]")
