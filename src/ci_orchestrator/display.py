"""Rich-based terminal display layer for pipeline progress.

Provides formatted output for the pipeline header, the stage table,
coverage and cleanup summaries, cross-compile results, error panels,
and the final summary.  Uses a module-level
:class:`~rich.console.Console` singleton for consistent output.

.. rubric:: Design decisions

* **Module-level Console singleton** -- all display functions share
  ``_console`` so that Rich formatting is consistent across the session.
* **Functions, not a class** -- each display function is standalone and
  stateless, making them easy to test and compose.
"""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from src.pipeline_shared import __version__
from src.pipeline_shared.models import StageStatus

# ---------------------------------------------------------------------------
# Module-level Console singleton
# ---------------------------------------------------------------------------

_console = Console()

_STATUS_STYLE = {
    StageStatus.PASSED: "[green]PASSED[/green]",
    StageStatus.FAILED: "[red]FAILED[/red]",
    StageStatus.RUNNING: "[yellow]RUNNING[/yellow]",
    StageStatus.SKIPPED: "[dim]SKIPPED[/dim]",
    StageStatus.PENDING: "[dim]PENDING[/dim]",
}


# ---------------------------------------------------------------------------
# Display functions
# ---------------------------------------------------------------------------


def print_pipeline_header(state: Any) -> None:
    """Print a Rich panel header identifying the run.

    Parameters
    ----------
    state:
        A ``PipelineRunState`` instance (or duck-typed dict/object with
        ``run_id``, ``beat_name`` and the two switches).
    """
    header = Text()
    header.append("CI Orchestrator", style="bold white")
    header.append(f" v{__version__}\n", style="dim")
    header.append("Run: ", style="bold")
    header.append(f"{_get_attr(state, 'run_id', 'unknown')}\n", style="cyan")
    header.append("Unit: ", style="bold")
    header.append(f"{_get_attr(state, 'beat_name', 'unknown')}\n", style="green")
    header.append("Environment: ", style="bold")
    header.append("yes" if _get_attr(state, "use_environment", False) else "no")
    header.append("  System tests: ", style="bold")
    header.append("yes" if _get_attr(state, "run_system_tests", False) else "no")

    _console.print(
        Panel(
            header,
            title="[bold]Pipeline Overview[/bold]",
            border_style="blue",
            expand=False,
        )
    )


def print_stage_table(state: Any) -> None:
    """Print a Rich table showing the status of each planned stage.

    Parameters
    ----------
    state:
        A ``PipelineRunState`` instance.
    """
    table = Table(title="Stage Status", show_header=True, header_style="bold magenta")
    table.add_column("Stage", style="cyan", min_width=25)
    table.add_column("Status", justify="center", min_width=12)
    table.add_column("Exit", justify="right", min_width=6)
    table.add_column("Duration", justify="right", min_width=10)

    exit_codes = _get_attr(state, "stage_exit_codes", {})
    durations = _get_attr(state, "stage_durations", {})

    for stage in _get_attr(state, "planned_stages", []):
        status = state.stage_status(stage) if hasattr(state, "stage_status") else StageStatus.PENDING
        code = exit_codes.get(stage)
        duration = durations.get(stage)
        table.add_row(
            stage,
            _STATUS_STYLE[status],
            "-" if code is None else str(code),
            "-" if duration is None else f"{duration:.1f}s",
        )

    _console.print(table)


def print_coverage_summary(summary: Any, limit: int = 15) -> None:
    """Print statement coverage per file, lowest first.

    Parameters
    ----------
    summary:
        A ``CoverageSummary`` instance.
    limit:
        Maximum number of file rows shown.
    """
    percent = _get_attr(summary, "percent", 0.0)
    style = "green" if percent >= 80 else "yellow" if percent >= 50 else "red"

    table = Table(show_header=True, header_style="bold")
    table.add_column("File", style="cyan", min_width=30)
    table.add_column("Statements", justify="right")
    table.add_column("Covered", justify="right")
    table.add_column("%", justify="right")

    files = _get_attr(summary, "files", {})
    for name, cov in sorted(files.items(), key=lambda item: item[1].percent)[:limit]:
        table.add_row(name, str(cov.statements), str(cov.covered), f"{cov.percent:.1f}")

    _console.print(
        Panel(
            table,
            title=f"[bold]Coverage {percent:.1f}%[/bold]",
            border_style=style,
            expand=False,
        )
    )


def print_cleanup_results(results: list[Any]) -> None:
    """Print one row per teardown step."""
    table = Table(title="Environment Teardown", show_header=True, header_style="bold magenta")
    table.add_column("Step", style="cyan", min_width=20)
    table.add_column("Outcome", justify="center", min_width=10)
    table.add_column("Detail")

    for result in results:
        outcome = _get_attr(result, "outcome", "unknown")
        if hasattr(outcome, "value"):
            outcome = outcome.value
        if outcome == "failed":
            shown = "[red]FAILED[/red]"
        elif outcome == "removed":
            shown = "[green]REMOVED[/green]"
        else:
            shown = f"[dim]{str(outcome).upper()}[/dim]"
        detail = _get_attr(result, "detail", "") or ""
        table.add_row(_get_attr(result, "step", "?"), shown, detail.splitlines()[0] if detail else "")

    _console.print(table)


def print_crosscompile_results(result: Any) -> None:
    """Print produced artifacts and per-target failures."""
    table = Table(title="Cross-compile", show_header=True, header_style="bold magenta")
    table.add_column("Target", style="cyan", min_width=16)
    table.add_column("Result", justify="center", min_width=8)
    table.add_column("Artifact / error")

    for target, path in _get_attr(result, "artifacts", {}).items():
        table.add_row(target, "[green]OK[/green]", path)
    for target, error in _get_attr(result, "failures", {}).items():
        table.add_row(target, "[red]FAILED[/red]", error.splitlines()[0] if error else "")

    _console.print(table)


def print_error_panel(error: str | Exception) -> None:
    """Print an error message in a red Rich panel.

    Parameters
    ----------
    error:
        Error message string or Exception instance.
    """
    _console.print(
        Panel(
            Text(str(error), style="bold white"),
            title="[bold red]Error[/bold red]",
            border_style="red",
            expand=False,
        )
    )


def print_final_summary(state: Any) -> None:
    """Print the final pipeline summary.

    Parameters
    ----------
    state:
        A ``PipelineRunState`` instance.
    """
    status = _get_attr(state, "status", "unknown")
    interrupted = _get_attr(state, "interrupted", False)

    if interrupted:
        style = "yellow"
        title = "Pipeline Interrupted"
    elif status == "passed":
        style = "green"
        title = "Pipeline Passed"
    elif status == "failed":
        style = "red"
        title = "Pipeline Failed"
    else:
        style = "yellow"
        title = "Pipeline Status"

    planned = _get_attr(state, "planned_stages", [])
    completed = _get_attr(state, "completed_stages", [])

    content = Text()
    content.append("Run ID: ", style="bold")
    content.append(f"{_get_attr(state, 'run_id', 'unknown')}\n", style="cyan")
    content.append("Status: ", style="bold")
    content.append(f"{status}\n", style=style)
    content.append(f"Stages Completed: {len(completed)}/{len(planned)}\n")

    failed_stage = _get_attr(state, "failed_stage", "")
    if failed_stage:
        code = _get_attr(state, "stage_exit_codes", {}).get(failed_stage, "?")
        content.append(f"Failed Stage: {failed_stage} (exit {code})\n", style="red")

    coverage = _get_attr(state, "coverage_percent", None)
    if coverage is not None:
        content.append("Coverage: ", style="bold")
        content.append(f"{coverage:.1f}%\n", style="cyan")

    if interrupted:
        reason = _get_attr(state, "interrupt_reason", "")
        content.append(f"\nInterrupted: {reason}\n", style="yellow")

    _console.print(
        Panel(
            content,
            title=f"[bold]{title}[/bold]",
            border_style=style,
            expand=False,
        )
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_attr(obj: Any, name: str, default: Any = None) -> Any:
    """Get attribute from object or dict, with fallback to default."""
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)
