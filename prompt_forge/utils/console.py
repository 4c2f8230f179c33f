"""
Rich console utilities for dual-mode CLI output.

Human mode (--format text) prints Rich tables and colored status lines.
Agent mode (--format json) buffers everything into one JSON document that
is written to stdout by output_mode.flush_json().

Examples:
    >>> from prompt_forge.utils.console import output_mode, success
    >>> output_mode.format = "json"
    >>> success("Prompt saved")
    >>> output_mode.flush_json()
    {"status": "success", "message": "Prompt saved"}
"""

from __future__ import annotations

import json
import sys
from contextlib import contextmanager
from dataclasses import asdict
from typing import TYPE_CHECKING, Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

if TYPE_CHECKING:
    from prompt_forge.storage.migrations import MigrationResult
    from prompt_forge.storage.models import MethodologyRecord, PromptRecord


class OutputMode:
    """
    Output mode configuration for dual-mode CLI.

    Attributes:
        format: "text" (human) or "json" (agent)
        quiet: If True, suppress info messages and tables in human mode
    """

    def __init__(self, format_type: str = "text", quiet: bool = False):
        if format_type not in ["text", "json"]:
            raise ValueError(f"Invalid format: {format_type}. Must be 'text' or 'json'")

        self.format = format_type
        self.quiet = quiet
        self._json_buffer: dict[str, Any] = {}

    def is_human(self) -> bool:
        return self.format == "text"

    def is_agent(self) -> bool:
        return self.format == "json"

    def add_json(self, key: str, value: Any) -> None:
        """Add key-value pair to the JSON buffer (agent mode)."""
        self._json_buffer[key] = value

    def flush_json(self) -> None:
        """
        Output buffered JSON to stdout and clear the buffer.

        No-op in human mode or when nothing was buffered.
        """
        if self.is_agent() and self._json_buffer:
            json.dump(self._json_buffer, sys.stdout, indent=2)
            sys.stdout.write("\n")
            sys.stdout.flush()
            self._json_buffer.clear()


# Global output mode instance (set by CLI flags)
output_mode = OutputMode()

# Global Rich console instances for human mode
console = Console()  # stdout
console_err = Console(stderr=True)  # stderr


@contextmanager
def spinner(message: str):
    """
    Show a Rich spinner while the block runs (human mode only).

    Examples:
        >>> with spinner("Applying migrations..."):
        ...     result = init_store(config)
    """
    if output_mode.is_human():
        with console.status(f"[bold blue]{message}", spinner="dots") as status:
            yield status
    else:
        yield None


def success(message: str) -> None:
    """Green checkmark in human mode, status/message keys in agent mode."""
    if output_mode.is_human():
        console.print(f"[green]✓[/green] {message}")
    elif output_mode.is_agent():
        output_mode.add_json("status", "success")
        output_mode.add_json("message", message)


def error(message: str) -> None:
    """Red X to stderr in human mode, status/error keys in agent mode."""
    if output_mode.is_human():
        console_err.print(f"[red]✗[/red] {message}", style="red")
    elif output_mode.is_agent():
        output_mode.add_json("status", "error")
        output_mode.add_json("error", message)


def warning(message: str) -> None:
    """Yellow warning in human mode, warning key in agent mode."""
    if output_mode.is_human():
        console.print(f"[yellow]⚠[/yellow] {message}", style="yellow")
    elif output_mode.is_agent():
        output_mode.add_json("warning", message)


def info(message: str) -> None:
    """Blue info line in human mode unless quiet. Silent for agents."""
    if output_mode.is_human() and not output_mode.quiet:
        console.print(f"[blue]ℹ[/blue] {message}")


def prompt_to_dict(record: PromptRecord) -> dict[str, Any]:
    """JSON-ready dict of a PromptRecord."""
    data = asdict(record)
    data["change_kind"] = record.change_kind.value
    return data


def print_prompt_table(records: list[PromptRecord], title: str = "Prompt History") -> None:
    """
    Print prompt records as a table.

    Human mode: Rich table with id, version, lineage, kind, title and time
    Agent mode: Buffers the records under "prompts"

    Args:
        records: Records to show, in display order
        title: Table title
    """
    if output_mode.is_agent():
        output_mode.add_json("prompts", [prompt_to_dict(r) for r in records])
        return

    if output_mode.quiet:
        return

    table = Table(title=title, box=box.ROUNDED)

    table.add_column("ID", justify="right", style="cyan", no_wrap=True)
    table.add_column("Version", justify="right")
    table.add_column("Lineage", justify="right", style="magenta")
    table.add_column("Kind")
    table.add_column("Title")
    table.add_column("Created", style="dim")

    kind_styles = {
        "initial": "[green]initial[/green]",
        "manual_edit": "manual_edit",
        "methodology_apply": "[yellow]methodology_apply[/yellow]",
    }

    for record in records:
        table.add_row(
            str(record.id),
            f"v{record.version_number}",
            str(record.lineage_root_id),
            kind_styles.get(record.change_kind.value, record.change_kind.value),
            record.title or "",
            record.created_at,
        )

    console.print(table)


def print_prompt(record: PromptRecord) -> None:
    """Print one record with its full content in a panel (agent: "prompt" key)."""
    if output_mode.is_agent():
        output_mode.add_json("prompt", prompt_to_dict(record))
        return

    subtitle = (
        f"v{record.version_number} • lineage {record.lineage_root_id} "
        f"• {record.change_kind.value}"
    )
    if record.parent_id is not None:
        subtitle += f" • parent {record.parent_id}"

    console.print(
        Panel(
            record.content,
            title=f"[bold cyan]#{record.id}[/bold cyan] {record.title or ''}",
            subtitle=subtitle,
            border_style="cyan",
        )
    )


def print_methodology_table(records: list[MethodologyRecord]) -> None:
    """Print methodologies by name (agent: "methodologies" key)."""
    if output_mode.is_agent():
        output_mode.add_json(
            "methodologies",
            [
                {
                    "id": m.id,
                    "name": m.name,
                    "kind": m.kind.value,
                    "path": m.path,
                    "description": m.description,
                }
                for m in records
            ],
        )
        return

    if output_mode.quiet:
        return

    table = Table(title="Methodologies", box=box.ROUNDED)
    table.add_column("ID", justify="right", style="cyan")
    table.add_column("Name", style="bold")
    table.add_column("Kind", style="magenta")
    table.add_column("Path", style="dim")

    for m in records:
        table.add_row(str(m.id), m.name, m.kind.value, m.path)

    console.print(table)


def print_migration_table(result: MigrationResult) -> None:
    """
    Print the state of every migration unit after a run.

    Human mode: Rich table of unit name, state and failure cause
    Agent mode: Buffers applied/skipped/failed lists under "migrations"
    """
    causes = {f.unit_name: str(f.cause) for f in result.failures}

    if output_mode.is_agent():
        output_mode.add_json(
            "migrations",
            {
                "applied": result.applied,
                "skipped": result.skipped,
                "failed": [
                    {"unit": name, "error": causes[name]} for name in result.failed_units
                ],
                "states": {name: state.value for name, state in result.states.items()},
                "reset_performed": result.reset_performed,
                "halted": result.halted,
            },
        )
        return

    if output_mode.quiet or not result.states:
        return

    table = Table(title="Migrations", box=box.ROUNDED)
    table.add_column("Unit", style="cyan", no_wrap=True)
    table.add_column("State", justify="center")
    table.add_column("Error", style="red")

    state_styles = {
        "applied": "[green]applied[/green]",
        "failed": "[red]failed[/red]",
        "pending": "[yellow]pending[/yellow]",
    }

    for name, state in result.states.items():
        table.add_row(
            name,
            state_styles.get(state.value, state.value),
            causes.get(name, ""),
        )

    console.print(table)
