"""Progress and summary reporting for render runs.

The orchestrator talks to a ``RenderReporter`` passed in by its caller: the
CLI uses the rich console reporter, tests use the collecting one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from diagrender.models import BackendAvailability, DiagramFile, RenderResult


class RenderReporter(Protocol):
    def start(self, total: int, availability: dict[str, BackendAvailability]) -> None: ...

    def update(self, file: DiagramFile, index: int, total: int) -> None: ...

    def complete(self, result: RenderResult) -> None: ...

    def error(self, message: str) -> None: ...


def summary_level(result: RenderResult) -> str:
    """Notification tone for a finished run: info, warning or error."""
    if result.availability_error or (result.total_files and result.success_count == 0):
        return "error"
    if result.failure_count:
        return "warning"
    return "info"


def summary_message(result: RenderResult) -> str:
    if result.availability_error:
        return f"Rendering unavailable: {result.availability_error}"
    if result.total_files == 0:
        if result.skipped:
            return f"No diagrams rendered ({len(result.skipped)} skipped)"
        return "No diagram files found"
    message = (
        f"Rendered {result.success_count} of {result.total_files} diagram(s) "
        f"in {result.duration:.1f}s"
    )
    if result.failure_count:
        message += f", {result.failure_count} failed"
    if result.skipped:
        message += f", {len(result.skipped)} skipped"
    return message


class NullReporter:
    def start(self, total: int, availability: dict[str, BackendAvailability]) -> None:
        pass

    def update(self, file: DiagramFile, index: int, total: int) -> None:
        pass

    def complete(self, result: RenderResult) -> None:
        pass

    def error(self, message: str) -> None:
        pass


@dataclass
class CollectingReporter:
    """Records every event; used by tests and embedding callers."""

    started: list[tuple[int, dict[str, BackendAvailability]]] = field(default_factory=list)
    updates: list[str] = field(default_factory=list)
    results: list[RenderResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def start(self, total: int, availability: dict[str, BackendAvailability]) -> None:
        self.started.append((total, availability))

    def update(self, file: DiagramFile, index: int, total: int) -> None:
        self.updates.append(file.display_name)

    def complete(self, result: RenderResult) -> None:
        self.results.append(result)

    def error(self, message: str) -> None:
        self.errors.append(message)


_LEVEL_STYLES = {"info": "green", "warning": "yellow", "error": "red"}


class ConsoleReporter:
    """Human-readable progress on a rich console (stderr by default)."""

    def __init__(self, console: Console | None = None, verbose: bool = False) -> None:
        self.console = console or Console(stderr=True)
        self.verbose = verbose

    def start(self, total: int, availability: dict[str, BackendAvailability]) -> None:
        if self.verbose:
            self.console.print(availability_table(availability))
        self.console.print(f"[bold]Rendering {total} diagram(s)[/bold]")

    def update(self, file: DiagramFile, index: int, total: int) -> None:
        self.console.print(
            f"  [dim][{index}/{total}][/dim] {escape(file.display_name)} ({file.type.label})"
        )

    def complete(self, result: RenderResult) -> None:
        level = summary_level(result)
        style = _LEVEL_STYLES[level]

        if result.by_type:
            table = Table(title="By type", show_header=True, header_style="bold")
            table.add_column("Type")
            table.add_column("Files", justify="right")
            for diagram_type, count in sorted(result.by_type.items(), key=lambda kv: kv[0].value):
                table.add_row(diagram_type.label, str(count))
            self.console.print(table)

        for skipped in result.skipped:
            self.console.print(
                f"[yellow]Skipped[/yellow] {escape(skipped.file)}: {escape(skipped.reason)}"
            )
        for error in result.errors:
            self.console.print(
                f"[red]Failed[/red] {escape(error.file)} ({error.type.label}): "
                f"{escape(error.message)}"
            )
            if self.verbose and error.stack:
                self.console.print(f"[dim]{escape(error.stack)}[/dim]")

        self.console.print(f"[{style}]{escape(summary_message(result))}[/{style}]")

    def error(self, message: str) -> None:
        self.console.print(f"[red]Error:[/red] {escape(message)}")


def availability_table(availability: dict[str, BackendAvailability]) -> Table:
    table = Table(title="Backends", show_header=True, header_style="bold")
    table.add_column("Backend")
    table.add_column("Status")
    table.add_column("Types")
    table.add_column("Details")
    for name, state in availability.items():
        status = "[green]available[/green]" if state.available else "[red]unavailable[/red]"
        types = ", ".join(sorted(t.value for t in state.supported_types)) or "-"
        table.add_row(escape(name), status, types, escape(state.message))
    return table
