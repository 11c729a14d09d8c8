"""
Deployer CLI
============

The main entry point for the ``deploy`` command.

Usage:
    deploy run <plan-file> [--target NAME]... [--dry-run] [--no-cache]
    deploy validate <plan-file>
    deploy version
"""

import sys

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from deployer import __version__
from deployer.cli.commands.run import run_command
from deployer.cli.commands.validate import validate_command
from deployer.shared.infrastructure.logging import configure_logging

app = typer.Typer(
    name="deploy",
    help="Deployment orchestrator - run staged deploys against local and remote targets",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()


@app.callback()
def _setup(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    configure_logging(stream=sys.stderr, level="DEBUG" if verbose else None)


app.command(name="run")(run_command)
app.command(name="validate")(validate_command)


@app.command()
def version():
    """Show Deployer version info."""
    table = Table(show_header=False, box=None)
    table.add_row("Deployer Core", f"[bold green]v{__version__}[/bold green]")
    table.add_row("Python", sys.version.split()[0])
    table.add_row("Platform", sys.platform)

    console.print(Panel(table, title="[bold blue]Deployer[/bold blue]", expand=False))


def main():
    """Entry point for setuptools."""
    app()


if __name__ == "__main__":
    app()
