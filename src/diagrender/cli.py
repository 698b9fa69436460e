"""diagrender CLI entry point."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import questionary
import typer
from rich.console import Console

import diagrender
from diagrender.classify import Classifier, TypePrompt
from diagrender.config.loader import DiagramRenderConfig, load_config
from diagrender.errors import DiagramRenderError
from diagrender.logging import configure_logging
from diagrender.models import DiagramType
from diagrender.orchestrator import Orchestrator
from diagrender.reporting import ConsoleReporter, availability_table
from diagrender.validation import ConfirmCallback, ValidationResult

app = typer.Typer(
    name="diagrender",
    help="Render Mermaid, PlantUML, GraphViz and Structurizr diagrams to SVG/PNG.",
    no_args_is_help=True,
)

# Progress and errors go to stderr; command results go to stdout
_stderr_console = Console(stderr=True)
_stdout_console = Console()

PROCEED_CHOICE = "Proceed with Rendering"
CANCEL_CHOICE = "Cancel Rendering"
SKIP_CHOICE = "Skip this file"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"diagrender {diagrender.__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Render diagram sources through interchangeable backends.

    Commands:
        render   - Render every diagram under the source directory
        check    - Show which rendering backends are available
        classify - Print the detected diagram type of a file
    """


# ==================== Interactive prompts ====================


def ask_diagram_type(name: str, choices: tuple[DiagramType, ...]) -> DiagramType | None:
    """Ask which language an unrecognised file is written in."""
    options = [questionary.Choice(t.label, value=t.value) for t in choices]
    options.append(questionary.Choice(SKIP_CHOICE, value=SKIP_CHOICE))
    answer = questionary.select(
        f"Cannot detect the diagram type of {name}. Which type is it?",
        choices=options,
    ).ask()
    if answer is None or answer == SKIP_CHOICE:
        return None
    return DiagramType(answer)


def ask_proceed_despite_errors(invalid: list[ValidationResult]) -> bool:
    """Show validation errors and ask whether to render anyway."""
    for result in invalid:
        _stderr_console.print(f"[red]Invalid[/red] {result.file_path}")
        for error in result.errors:
            _stderr_console.print(f"  line {error.line}: {error.message}")
    answer = questionary.select(
        f"{len(invalid)} Structurizr file(s) failed validation.",
        choices=[PROCEED_CHOICE, CANCEL_CHOICE],
    ).ask()
    return answer == PROCEED_CHOICE


def _always_proceed(_invalid: list[ValidationResult]) -> bool:
    return True


def _prompts(
    interactive: bool, assume_yes: bool
) -> tuple[TypePrompt | None, ConfirmCallback | None]:
    confirm: ConfirmCallback | None = None
    if assume_yes:
        confirm = _always_proceed
    elif interactive:
        confirm = ask_proceed_despite_errors
    return (ask_diagram_type if interactive else None), confirm


def _load(config_path: Path | None) -> DiagramRenderConfig:
    try:
        return load_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        _stderr_console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(2) from e


# ==================== Commands ====================


@app.command()
def render(
    config: Path | None = typer.Option(None, "--config", "-c", help="Config file path."),
    source: Path | None = typer.Option(None, "--source", "-s", help="Source directory."),
    output: Path | None = typer.Option(None, "--output", "-o", help="Output directory."),
    concurrency: int | None = typer.Option(
        None, "--concurrency", "-j", min=1, max=50, clamp=True, help="Files per concurrent batch."
    ),
    validate: bool | None = typer.Option(
        None, "--validate/--no-validate", help="Validate Structurizr files before rendering."
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Render even if validation fails."),
    interactive: bool | None = typer.Option(
        None,
        "--interactive/--no-interactive",
        help="Prompt for unknown diagram types (default: when stdin is a terminal).",
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging and stack traces."),
) -> None:
    """Render every diagram under the source directory."""
    cfg = _load(config)
    if concurrency is not None:
        cfg.concurrency = concurrency
    if validate is not None:
        cfg.validation.enabled = validate
    configure_logging("DEBUG" if verbose else cfg.log_level)

    if interactive is None:
        interactive = sys.stdin.isatty()
    prompt, confirm = _prompts(interactive, yes)

    orchestrator = Orchestrator.from_config(
        cfg,
        reporter=ConsoleReporter(_stderr_console, verbose=verbose),
        prompt=prompt,
        confirm=confirm,
    )
    try:
        result = asyncio.run(orchestrator.run(source, output))
    except DiagramRenderError as e:
        _stderr_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(2) from e

    if result.availability_error or result.failure_count:
        raise typer.Exit(1)


@app.command()
def check(
    config: Path | None = typer.Option(None, "--config", "-c", help="Config file path."),
) -> None:
    """Check the configured backends and show which are available."""
    cfg = _load(config)
    configure_logging("WARNING")

    orchestrator = Orchestrator.from_config(cfg)
    availability = asyncio.run(orchestrator.check_backends())
    _stdout_console.print(availability_table(availability))

    if not any(state.available for state in availability.values()):
        raise typer.Exit(1)


@app.command()
def classify(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Diagram source file."),
) -> None:
    """Print the diagram type detected for FILE."""
    configure_logging("WARNING")
    detected = Classifier().classify(file)
    if detected is None:
        _stderr_console.print(f"[yellow]Unknown diagram type:[/yellow] {file}")
        raise typer.Exit(1)
    typer.echo(detected.value)


def cli() -> None:
    """Run the CLI application."""
    app()


if __name__ == "__main__":
    cli()
