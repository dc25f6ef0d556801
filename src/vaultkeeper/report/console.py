"""
Console reports for vaultkeeper.

Renders execution results, previews, validation results and policy listings
with Rich. Every function takes an optional Console so the CLI (and tests)
can redirect output.

Design Principles:
    - Status at a glance: icons and colors per step
    - Summary first, step detail after
    - Nothing here touches the vault; these only format result objects
"""

from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from vaultkeeper.engine import ExecutionResult, PreviewResult, StepStatus
from vaultkeeper.policy.storage import PolicyDiff
from vaultkeeper.schema import PolicyDefinition, PolicyMetadata, ValidationResult

# Status icons
ICON_SUCCESS = "[green]✓[/green]"
ICON_ERROR = "[red]✗[/red]"
ICON_SKIPPED = "[yellow]⊘[/yellow]"
ICON_PENDING = "[dim]○[/dim]"

STATUS_ICONS = {
    StepStatus.SUCCESS: ICON_SUCCESS,
    StepStatus.FAILED: ICON_ERROR,
    StepStatus.SKIPPED: ICON_SKIPPED,
}


def _truncate(s: str, max_len: int) -> str:
    """Truncate string with ellipsis."""
    if len(s) <= max_len:
        return s
    return s[: max_len - 3] + "..."


def print_execution_result(
    result: ExecutionResult,
    console: Console | None = None,
    verbose: bool = False,
) -> None:
    """
    Print an execution result: header, step table, files and commit.

    Args:
        result: The result to print
        console: Rich Console instance (creates one if not provided)
        verbose: Show step previews and outputs
    """
    if console is None:
        console = Console()

    header = Text()
    header.append(" Policy ", style="bold")
    header.append(result.policy_name, style="bold cyan")
    header.append(" │ ", style="dim")
    if result.success:
        header.append("SUCCESS", style="bold green")
    elif result.retryable:
        header.append("RETRYABLE", style="bold yellow")
    else:
        header.append("FAILED", style="bold red")
    console.print(Panel(header, expand=False))
    console.print(f"  {escape(result.message)}")
    if result.retryable and result.retry_after_ms is not None:
        console.print(f"  [yellow]Retry after {result.retry_after_ms}ms[/yellow]")
    console.print()

    if result.step_results:
        table = Table(show_header=True, header_style="bold", show_lines=verbose, expand=True)
        table.add_column("#", style="dim", width=3, justify="right")
        table.add_column("Status", width=6, justify="center")
        table.add_column("Step", style="cyan")
        table.add_column("Tool", style="magenta")
        table.add_column("Details", overflow="fold")

        for i, step in enumerate(result.step_results, start=1):
            if step.status == StepStatus.SKIPPED:
                details = f"[yellow]{escape(step.skip_reason or '')}[/yellow]"
            elif step.status == StepStatus.FAILED:
                details = f"[red]{escape(_truncate(step.message, 80))}[/red]"
            else:
                details = escape(_truncate(step.message, 60))
                if verbose and step.preview:
                    details += f"\n[dim]{escape(_truncate(step.preview, 100))}[/dim]"
            table.add_row(str(i), STATUS_ICONS[step.status], step.step_id, step.tool, details)
        console.print(table)
        console.print()

    if result.files_modified:
        console.print(f"[bold]Files Modified ({len(result.files_modified)})[/bold]")
        for path in result.files_modified:
            console.print(f"    • {path}")
        console.print()

    if result.git_commit:
        console.print(f"  [dim]Commit:[/dim] {result.git_commit}")
    if result.summary:
        console.print(f"  [dim]Summary:[/dim] {escape(result.summary)}")
    console.print(f"  [dim]Duration:[/dim] {result.duration_ms:.1f}ms")


def print_preview(result: PreviewResult, console: Console | None = None) -> None:
    """Print what a policy would do."""
    if console is None:
        console = Console()

    console.print(Panel(Text.assemble((" Preview ", "bold"), (result.policy_name, "bold cyan")), expand=False))

    if result.variable_errors:
        console.print("[red]Variables would be rejected:[/red]")
        for error in result.variable_errors:
            console.print(f"    • {escape(error)}")
        console.print()

    if result.resolved_variables:
        console.print("[bold]Variables[/bold]")
        for name, value in result.resolved_variables.items():
            console.print(f"    {name} = {escape(repr(value))}")
        console.print()

    if result.condition_results:
        console.print("[bold]Conditions[/bold]")
        for condition_id, met in result.condition_results.items():
            icon = ICON_SUCCESS if met else ICON_ERROR
            console.print(f"    {icon} {condition_id}")
        console.print()

    table = Table(show_header=True, header_style="bold", show_lines=True, expand=True)
    table.add_column("Run", width=4, justify="center")
    table.add_column("Step", style="cyan")
    table.add_column("Tool", style="magenta")
    table.add_column("Parameters", overflow="fold")
    for step in result.steps_to_execute:
        icon = ICON_SKIPPED if step.skipped else ICON_PENDING
        params = "\n".join(
            escape(f"{key}={_truncate(str(value), 60)}") for key, value in step.resolved_params.items()
        )
        if step.skipped:
            params += f"\n[yellow]{escape(step.skip_reason or '')}[/yellow]"
        table.add_row(icon, step.step_id, step.tool, params)
    console.print(table)
    console.print()

    if result.files_affected:
        console.print(f"[bold]Files Affected ({len(result.files_affected)})[/bold]")
        for path in result.files_affected:
            console.print(f"    • {path}")


def print_validation(result: ValidationResult, console: Console | None = None) -> None:
    """Print validation errors and warnings."""
    if console is None:
        console = Console()

    if result.valid:
        name = result.policy.name if result.policy else "policy"
        console.print(f"{ICON_SUCCESS} [green]Policy '{name}' is valid[/green]")
    else:
        console.print(f"{ICON_ERROR} [red]Policy is invalid[/red]")

    for issue in result.errors:
        console.print(f"  [red]error[/red] [dim]({issue.type})[/dim] {escape(str(issue))}")
    for issue in result.warnings:
        console.print(f"  [yellow]warning[/yellow] [dim]({issue.type})[/dim] {escape(str(issue))}")


def print_policy_list(policies: list[PolicyMetadata], console: Console | None = None) -> None:
    """Print stored policies as a table."""
    if console is None:
        console = Console()

    if not policies:
        console.print("[dim]No policies found[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    table.add_column("Variables", style="dim")
    table.add_column("Modified", style="dim")
    for policy in policies:
        variables = ", ".join(
            f"{v}*" if v in policy.required_variables else v for v in policy.variables
        )
        table.add_row(policy.name, policy.description, variables, policy.last_modified[:19])
    console.print(table)


def print_policy(policy: PolicyDefinition, console: Console | None = None) -> None:
    """Print one policy's declarations."""
    if console is None:
        console = Console()

    console.print(Panel(Text(policy.name, style="bold cyan"), expand=False))
    if policy.description:
        console.print(f"  {escape(policy.description)}")
    console.print()

    if policy.variables:
        console.print("[bold]Variables[/bold]")
        for name, spec in policy.variables.items():
            details: list[Any] = [spec.type.value]
            if spec.required:
                details.append("required")
            if spec.default is not None:
                details.append(f"default={spec.default!r}")
            if spec.enum:
                details.append(f"one of {', '.join(spec.enum)}")
            console.print(f"    {name} [dim]({'; '.join(str(d) for d in details)})[/dim]")
        console.print()

    if policy.conditions:
        console.print("[bold]Conditions[/bold]")
        for condition in policy.conditions:
            target = condition.section or condition.field or ""
            console.print(f"    {condition.id}: {condition.check.value} {condition.path} {target}".rstrip())
        console.print()

    console.print("[bold]Steps[/bold]")
    for i, step in enumerate(policy.steps, start=1):
        when = f" [dim]when {step.when}[/dim]" if step.when else ""
        console.print(f"  {i:>2}. [cyan]{step.id}[/cyan] → {step.tool.value}{when}")


def print_diff(old_name: str, new_name: str, diff: PolicyDiff, console: Console | None = None) -> None:
    """Print identifier-level differences between two policies."""
    if console is None:
        console = Console()

    if not diff.has_changes:
        console.print(f"[dim]No differences between {old_name} and {new_name}[/dim]")
        return

    console.print(f"[bold]{old_name}[/bold] → [bold]{new_name}[/bold]")
    for kind in ("variables", "steps", "conditions"):
        for change, marker in (("added", "[green]+[/green]"), ("removed", "[red]-[/red]"), ("changed", "[yellow]~[/yellow]")):
            for item in getattr(diff, f"{kind}_{change}"):
                console.print(f"  {marker} {kind[:-1]} {item}")
