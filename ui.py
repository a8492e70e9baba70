"""
Rich terminal UI components for planrunner.

WHY THIS FILE EXISTS:
--------------------
The CLI streams a step's log as it happens and then summarises the run.
Rich gives us colored log lines, tables for the plan and the summary, and
panels for results and analyses.

COMPONENTS:
----------
- show_plan() - The plan's execution order as a table
- show_log_entry() - Execution log lines
- show_step_result() - One step's outcome
- show_run_summary() - Every executed step at a glance
- show_analysis() - Analysis text from an information step
- RichTerminal - Terminal sink that prints mirrored command output
"""

from typing import Optional

from rich import box
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from schemas import (
    ExecutionLogEntry,
    LogType,
    PlanDocument,
    StepResult,
    StepStatus,
)

# Global console instance for consistent output
console = Console()


# =============================================================================
# COLOR SCHEMES
# =============================================================================

LOG_STYLES = {
    LogType.INFO: ("blue", "ℹ"),
    LogType.COMMAND: ("cyan", "$"),
    LogType.FILE: ("magenta", "▸"),
    LogType.SUCCESS: ("green", "✓"),
    LogType.ERROR: ("red", "✗"),
    LogType.WARNING: ("yellow", "⚠"),
}

STATUS_COLORS = {
    StepStatus.PENDING: "dim",
    StepStatus.EXECUTING: "yellow",
    StepStatus.SUCCEEDED: "green",
    StepStatus.FAILED: "red",
}


# =============================================================================
# HEADER/SECTION UTILITIES
# =============================================================================

def show_header(title: str, subtitle: str = "") -> None:
    """Display a styled header."""
    console.print()
    console.rule(f"[bold blue]{title}[/bold blue]")
    if subtitle:
        console.print(f"[dim]{subtitle}[/dim]", justify="center")
    console.print()


def show_success(message: str) -> None:
    console.print(f"[green]✓[/green] {message}")


def show_error(message: str) -> None:
    console.print(f"[red]✗[/red] {message}")


def show_warning(message: str) -> None:
    console.print(f"[yellow]⚠[/yellow] {message}")


def show_info(message: str) -> None:
    console.print(f"[blue]ℹ[/blue] {message}")


# =============================================================================
# PLAN DISPLAY
# =============================================================================

def show_plan(plan: PlanDocument, statuses: Optional[dict[int, StepStatus]] = None) -> None:
    """
    Display the plan's execution order.

    Args:
        plan: The loaded plan document
        statuses: Optional step statuses to color the rows with
    """
    request = plan.metadata.user_request or "Execution plan"
    show_header("Plan", request[:80] + "..." if len(request) > 80 else request)

    if plan.planning.analysis:
        console.print(Panel(
            plan.planning.analysis,
            title="[bold]Analysis[/bold]",
            border_style="blue",
            box=box.ROUNDED
        ))

    table = Table(
        box=box.ROUNDED,
        show_header=True,
        header_style="bold",
        title="[bold]Steps[/bold]"
    )
    table.add_column("#", justify="right", style="cyan", width=3)
    table.add_column("Step", style="white")
    table.add_column("Status", justify="center")

    statuses = statuses or {}
    for i, step in enumerate(plan.steps):
        status = statuses.get(i, StepStatus.PENDING)
        color = STATUS_COLORS.get(status, "white")
        table.add_row(str(i), step, f"[{color}]{status.value}[/{color}]")

    console.print(table)

    counts = [
        f"{len(plan.packages)} packages",
        f"{len(plan.files_to_create)} files to create",
        f"{len(plan.files_to_modify)} files to modify",
        f"{len(plan.code_blocks)} code blocks",
    ]
    console.print(f"[dim]{' | '.join(counts)}[/dim]")


# =============================================================================
# LOG DISPLAY
# =============================================================================

def show_log_entry(step_index: int, entry: ExecutionLogEntry, verbose: bool = False) -> None:
    """Print one log line; details only when verbose or for errors."""
    color, icon = LOG_STYLES.get(entry.type, ("white", "·"))
    line = Text()
    line.append(f"[{step_index}] ", style="dim")
    line.append(f"{icon} ", style=color)
    line.append(entry.message)
    if entry.command and entry.type != LogType.COMMAND:
        line.append(f"  ({entry.command})", style="dim")
    console.print(line)

    if entry.details and (verbose or entry.type == LogType.ERROR):
        console.print(Text(entry.details, style="dim"), overflow="fold")


# =============================================================================
# RESULT DISPLAY
# =============================================================================

def show_step_result(step_index: int, step: str, result: StepResult) -> None:
    """
    Display the result of executing a step.

    Args:
        step_index: Index of the step in the execution order
        step: The step's text
        result: The StepResult to display
    """
    color = "green" if result.success else "red"

    content = Text()
    content.append(f"{step}\n\n", style="bold")
    content.append(result.message)
    if result.failure:
        content.append(f"\n\nFailure: {result.failure.value}", style="red")

    console.print(Panel(
        content,
        title=f"[{color}]Step {step_index} {'Succeeded' if result.success else 'Failed'}[/{color}]",
        border_style=color,
        box=box.ROUNDED
    ))


def show_run_summary(plan: PlanDocument, results: dict[int, StepResult]) -> None:
    """Table of every executed step and its outcome."""
    table = Table(
        box=box.ROUNDED,
        show_header=True,
        header_style="bold",
        title="[bold]Run Summary[/bold]"
    )
    table.add_column("#", justify="right", style="cyan", width=3)
    table.add_column("Step", style="white", max_width=50)
    table.add_column("Result", justify="center")
    table.add_column("Message", style="dim", max_width=60)

    for index, result in results.items():
        outcome = "[green]✓[/green]" if result.success else "[red]✗[/red]"
        message = result.message if len(result.message) <= 120 else result.message[:117] + "..."
        table.add_row(str(index), plan.steps[index], outcome, message)

    console.print(table)

    failed = sum(1 for r in results.values() if not r.success)
    if failed:
        show_error(f"{failed} of {len(results)} steps failed")
    else:
        show_success(f"All {len(results)} steps succeeded")


def show_analysis(step_index: int, text: str) -> None:
    """Display analysis text produced by an information step."""
    console.print(Panel(
        Markdown(text),
        title=f"[bold]Step {step_index} Analysis[/bold]",
        border_style="blue",
        box=box.ROUNDED
    ))


def show_thinking(message: str = "Working..."):
    """
    Context manager that shows a spinner while processing.

    Usage:
        with show_thinking("Loading plan..."):
            plan = load_plan(path)
    """
    return console.status(f"[bold blue]{message}[/bold blue]", spinner="dots")


# =============================================================================
# TERMINAL SINK
# =============================================================================

class RichTerminal:
    """
    Terminal sink for mirrored command output.

    Called as terminal(text, is_error). Long output is cut to max_lines
    unless the sink is verbose.
    """

    def __init__(self, verbose: bool = False, max_lines: int = 20):
        self.verbose = verbose
        self.max_lines = max_lines

    def __call__(self, text: str, is_error: bool = False) -> None:
        lines = text.rstrip().split("\n")
        if not self.verbose and len(lines) > self.max_lines:
            hidden = len(lines) - self.max_lines
            lines = lines[:self.max_lines] + [f"... ({hidden} more lines)"]

        console.print(Panel(
            Text("\n".join(lines)),
            border_style="red" if is_error else "dim",
            box=box.SIMPLE
        ))
