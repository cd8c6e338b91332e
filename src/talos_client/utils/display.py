"""
Display utilities for presenting upgrade decisions.
"""

from rich.console import Console
from rich.table import Table

from ..models import UpgradeOutcome, UpgradeSettings

console = Console()


def display_run_header(node: str, tag: str) -> None:
    """Display the run header."""
    console.print(f"[bold blue]🚀 Checking node [cyan]{node}[/cyan] against [green]{tag}[/green][/bold blue]")


def display_settings(settings: UpgradeSettings) -> None:
    """Display the effective connection and upgrade settings."""
    console.print(f"[dim]talosconfig: {settings.talosconfig or '~/.talos/config (default)'}[/dim]")
    if settings.context:
        console.print(f"[dim]Context: {settings.context}[/dim]")
    if settings.endpoints:
        console.print(f"[dim]Endpoints: {', '.join(settings.endpoints)}[/dim]")
    console.print(f"[dim]Kubeconfig: {settings.kubeconfig or 'in-cluster or default'}[/dim]")
    console.print(
        f"[dim]Staged: {'yes' if settings.staged else 'no'}, reboot mode: {settings.reboot_mode.value}[/dim]"
    )


def display_outcome(outcome: UpgradeOutcome) -> None:
    """Display the state the cycle ended in."""
    table = Table(title=f"Node {outcome.node}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Running tag", outcome.running_tag or "N/A")
    table.add_row("Schematic", outcome.variant or "N/A")
    table.add_row("Result", outcome.state.value)
    if outcome.image:
        table.add_row("New image", outcome.image)
    if outcome.acknowledgement:
        table.add_row("Acknowledgement", str(outcome.acknowledgement))

    console.print(table)


def display_error(message: str) -> None:
    """Display error message."""
    console.print(f"[red]{message}[/red]")


def display_warning(message: str) -> None:
    """Display warning message."""
    console.print(f"[yellow]{message}[/yellow]")


def display_success(message: str) -> None:
    """Display success message."""
    console.print(f"[green]{message}[/green]")
