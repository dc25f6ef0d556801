"""
CLI entry point for vaultkeeper.

Typer-based command-line interface. All user interactions with stored
policies flow through these commands.

Commands:
    validate    Validate a policy file (or a stored policy)
    preview     Show what a policy would do, without changing anything
    execute     Run a policy against the vault
    list        List stored policies
    show        Show a stored policy's declarations
    import      Validate a policy file and store it
    export      Print (or write) a stored policy's text
    delete      Remove a stored policy
    diff        Compare two stored policies

Architecture Note:
    The CLI is intentionally thin. It parses arguments and delegates to the
    engine and the policy store, so the core logic is usable without it.
"""

import json
import logging
import traceback
from pathlib import Path
from typing import Annotated, Any, NoReturn, Optional

import typer
import yaml
from rich.console import Console
from rich.markup import escape

from vaultkeeper import __version__
from vaultkeeper.engine import Engine
from vaultkeeper.errors import VaultkeeperError
from vaultkeeper.policy.parser import load_policy_file
from vaultkeeper.policy.storage import PolicyStore
from vaultkeeper.report import (
    build_execution_dict,
    build_preview_dict,
    build_validation_dict,
    print_diff,
    print_execution_result,
    print_policy,
    print_policy_list,
    print_preview,
    print_validation,
    to_json,
)
from vaultkeeper.schema import EngineConfig, PolicyDefinition, ValidationResult, load_config

app = typer.Typer(
    name="vaultkeeper",
    help="Run declarative YAML policies against a Markdown vault.",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()


class _State:
    vault: Path = Path.cwd()
    config: EngineConfig = EngineConfig()
    verbose: bool = False


state = _State()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]vaultkeeper[/bold] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    vault: Annotated[
        Path,
        typer.Option(
            "--vault",
            help="Vault root directory. Defaults to the current directory.",
            file_okay=False,
            resolve_path=True,
        ),
    ] = Path("."),
    config_path: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="Engine configuration YAML file.",
            exists=True,
            dir_okay=False,
            resolve_path=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable debug logging.",
        ),
    ] = False,
) -> None:
    """
    vaultkeeper - policy-driven edits to a Markdown vault.

    Policies are YAML documents declaring variables, conditions and steps.
    Steps run in order; with --commit the whole run is one git commit or
    nothing at all.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    state.vault = vault
    state.verbose = verbose
    try:
        state.config = load_config(config_path) if config_path else EngineConfig()
    except (OSError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Error loading config: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)


# =============================================================================
# Helpers
# =============================================================================


def _store() -> PolicyStore:
    return PolicyStore(state.vault, config=state.config)


def parse_var(raw: str) -> tuple[str, Any]:
    """
    Parse a --var option of the form key=value.

    The value is decoded as JSON when possible (so 3, true and ["a"] keep
    their types); otherwise it stays a string.

    Raises:
        typer.BadParameter: If there is no '='
    """
    key, sep, value = raw.partition("=")
    if not sep or not key.strip():
        raise typer.BadParameter(f"Expected key=value, got {raw!r}")
    try:
        decoded = json.loads(value)
    except json.JSONDecodeError:
        decoded = value
    return key.strip(), decoded


def _parse_vars(raw_vars: list[str] | None) -> dict[str, Any]:
    return dict(parse_var(raw) for raw in raw_vars or [])


def _load(policy_ref: str) -> ValidationResult:
    """Load a policy from a file path, or from the store by name."""
    path = Path(policy_ref)
    if path.suffix in (".yaml", ".yml") and path.is_file():
        return load_policy_file(path)
    return _store().load(policy_ref)


def _load_valid(policy_ref: str, json_output: bool) -> PolicyDefinition:
    try:
        result = _load(policy_ref)
    except VaultkeeperError as e:
        _fail(e, json_output)
    if result.policy is None:
        if json_output:
            print(to_json(build_validation_dict(result)))
        else:
            print_validation(result, console)
        raise typer.Exit(code=1)
    return result.policy


def _fail(error: Exception, json_output: bool) -> NoReturn:
    """Report an error and exit with code 1."""
    if json_output:
        _output_json_error(error)
    else:
        console.print(f"[red]{escape(str(error))}[/red]")
        if state.verbose:
            console.print(f"[dim]{traceback.format_exc()}[/dim]")
    raise typer.Exit(code=1)


def _output_json_error(error: Exception) -> None:
    """Output an error in JSON format."""
    if isinstance(error, VaultkeeperError):
        output = {"error": True, **error.to_dict()}
    else:
        output = {"error": True, "error_type": type(error).__name__, "message": str(error)}
    print(json.dumps(output, indent=2, default=str))


JsonOption = Annotated[bool, typer.Option("--json", help="Output results in JSON format.")]
VarOption = Annotated[
    Optional[list[str]],
    typer.Option("--var", help="Variable value as key=value (repeatable)."),
]
PolicyArgument = Annotated[str, typer.Argument(help="Stored policy name, or a path to a policy YAML file.")]


# =============================================================================
# Commands
# =============================================================================


@app.command()
def validate(policy: PolicyArgument, json_output: JsonOption = False) -> None:
    """
    Validate a policy and report errors and warnings.

    Example:
        $ vaultkeeper validate policies/daily-log.yaml
    """
    try:
        result = _load(policy)
    except VaultkeeperError as e:
        _fail(e, json_output)

    if json_output:
        print(to_json(build_validation_dict(result)))
    else:
        print_validation(result, console)
    raise typer.Exit(code=0 if result.valid else 1)


@app.command()
def preview(policy: PolicyArgument, var: VarOption = None, json_output: JsonOption = False) -> None:
    """
    Show resolved parameters and skipped steps without touching the vault.

    Example:
        $ vaultkeeper preview daily-log --var entry="Shipped the release"
    """
    definition = _load_valid(policy, json_output)
    variables = _parse_vars(var)
    result = Engine(state.vault, config=state.config).preview(definition, variables)

    if json_output:
        print(to_json(build_preview_dict(result)))
    else:
        print_preview(result, console)
    raise typer.Exit(code=1 if result.variable_errors else 0)


@app.command()
def execute(
    policy: PolicyArgument,
    var: VarOption = None,
    commit: Annotated[
        bool,
        typer.Option("--commit", help="Commit all changes as one git commit (rolled back on failure)."),
    ] = False,
    json_output: JsonOption = False,
) -> None:
    """
    Run a policy against the vault.

    Example:
        $ vaultkeeper execute daily-log --var entry="Shipped the release" --commit
    """
    definition = _load_valid(policy, json_output)
    variables = _parse_vars(var)
    result = Engine(state.vault, config=state.config).execute(definition, variables, commit=commit)

    if json_output:
        print(to_json(build_execution_dict(result)))
    else:
        print_execution_result(result, console, verbose=state.verbose)
    raise typer.Exit(code=0 if result.success else 1)


@app.command("list")
def list_policies(json_output: JsonOption = False) -> None:
    """List stored policies."""
    policies = _store().list_policies()
    if json_output:
        print(json.dumps([p.model_dump() for p in policies], indent=2))
    else:
        print_policy_list(policies, console)


@app.command()
def show(name: str, json_output: JsonOption = False) -> None:
    """Show a stored policy's variables, conditions and steps."""
    definition = _load_valid(name, json_output)
    if json_output:
        print(json.dumps(definition.model_dump(mode="json"), indent=2))
    else:
        print_policy(definition, console)


@app.command("import")
def import_policy(
    file: Annotated[
        Path,
        typer.Argument(help="Policy YAML file to import.", exists=True, dir_okay=False, readable=True),
    ],
    overwrite: Annotated[
        bool,
        typer.Option("--overwrite", help="Replace an existing policy with the same name."),
    ] = False,
    json_output: JsonOption = False,
) -> None:
    """Validate a policy file and store it under its declared name."""
    try:
        definition = _store().import_policy(file.read_text(encoding="utf-8"), overwrite=overwrite)
    except VaultkeeperError as e:
        _fail(e, json_output)

    if json_output:
        print(json.dumps({"imported": definition.name}, indent=2))
    else:
        console.print(f"[green]✓[/green] Imported policy [bold]{definition.name}[/bold]")


@app.command()
def export(
    name: str,
    out: Annotated[
        Optional[Path],
        typer.Option("--out", "-o", help="Write to this file instead of stdout.", dir_okay=False),
    ] = None,
    json_output: JsonOption = False,
) -> None:
    """Print a stored policy's YAML, or write it to a file."""
    try:
        content = _store().export_policy(name)
    except VaultkeeperError as e:
        _fail(e, json_output)

    if out is not None:
        out.write_text(content, encoding="utf-8")
        if json_output:
            print(json.dumps({"exported": name, "path": str(out)}, indent=2))
        else:
            console.print(f"[green]✓[/green] Exported [bold]{name}[/bold] to {out}")
    elif json_output:
        print(json.dumps({"name": name, "content": content}, indent=2))
    else:
        print(content, end="")


@app.command()
def delete(name: str, json_output: JsonOption = False) -> None:
    """Remove a stored policy."""
    try:
        _store().delete(name)
    except VaultkeeperError as e:
        _fail(e, json_output)

    if json_output:
        print(json.dumps({"deleted": name}, indent=2))
    else:
        console.print(f"[green]✓[/green] Deleted policy [bold]{name}[/bold]")


@app.command()
def diff(old: str, new: str, json_output: JsonOption = False) -> None:
    """Compare two stored policies by variable, step and condition."""
    try:
        result = _store().diff(old, new)
    except VaultkeeperError as e:
        _fail(e, json_output)

    if json_output:
        print(json.dumps({"old": old, "new": new, "has_changes": result.has_changes, **result.to_dict()}, indent=2))
    else:
        print_diff(old, new, result, console)


if __name__ == "__main__":
    app()
