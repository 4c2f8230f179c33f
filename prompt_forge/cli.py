"""
CLI entrypoint for Prompt Forge.

Operator surface over the versioned prompt store, with dual-mode output:
- Human-friendly output: Rich spinners, tables, colored text
- Agent-friendly output: Structured JSON for automation (--format json)

Commands:
    migrate: Apply pending migration units (offers destructive reset on failure)
    reset: Drop every table and view in the store
    save: Save text as the next prompt version
    history: List the most recent prompt versions
    lineage: Show every version of one lineage
    latest: Show the latest version of every lineage
    show: Show one prompt record with its content
    methodologies: List methodologies, optionally by kind
    validate: Validate a configuration file

Exit codes:
    0: Success
    1: Configuration or input error
    2: Store or migration error
    3: Record not found

Examples:
    # Bring the store up to date
    prompt-forge migrate --config prompt_forge.config.yaml

    # Save from a file, starting a new lineage
    prompt-forge save --file draft.txt --new-lineage

    # Agent mode
    prompt-forge history --limit 5 --format json
"""

import sys
from pathlib import Path

import typer
from rich.traceback import install as install_rich_traceback

from prompt_forge.config.loader import load_config
from prompt_forge.config.schema import ForgeConfig
from prompt_forge.exceptions import (
    ConfigurationError,
    DatabaseError,
    MigrationFailure,
    NotFoundError,
    PromptForgeError,
    ValidationError,
)
from prompt_forge.storage.db import connect, list_methodologies, reset_store
from prompt_forge.storage.migrations import init_store
from prompt_forge.storage.queries import (
    by_lineage,
    history as recent_history,
    latest_per_lineage,
    require_prompt,
)
from prompt_forge.utils.console import (
    error,
    info,
    output_mode,
    print_methodology_table,
    print_migration_table,
    print_prompt,
    print_prompt_table,
    spinner,
    success,
    warning,
)
from prompt_forge.utils.logging import setup_logging
from prompt_forge.versioning.lineage import LineageManager

# Install Rich tracebacks for better error messages
install_rich_traceback(show_locals=False)

# Exit codes
EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1  # Config or input rejected
EXIT_DB_ERROR = 2  # Store or migration failure
EXIT_NOT_FOUND = 3  # Referenced record does not exist

CONFIG_ENVVAR = "PROMPT_FORGE_CONFIG"

app = typer.Typer(
    name="prompt-forge",
    help="Versioned prompt store with lineages and methodologies",
    add_completion=False,
)

ConfigOption = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to YAML configuration file (defaults apply when omitted)",
    envvar=CONFIG_ENVVAR,
    file_okay=True,
    dir_okay=False,
)
FormatOption = typer.Option(
    "text",
    "--format",
    "-f",
    help="Output format: 'text' (human-friendly) or 'json' (machine-readable)",
)
VerboseOption = typer.Option(False, "--verbose", "-v", help="Enable debug logging")


def _setup(format: str, verbose: bool) -> None:
    if format not in ("text", "json"):
        error(f"Invalid format: {format}. Must be 'text' or 'json'")
        raise typer.Exit(EXIT_CONFIG_ERROR)
    output_mode.format = format
    # JSON logs would interleave with Rich output in human mode
    setup_logging(verbose=verbose, quiet_logs=output_mode.is_human())


def _fail(message: str, exit_code: int) -> None:
    """Report an error in the current output mode and exit."""
    error(message)
    output_mode.flush_json()
    raise typer.Exit(exit_code)


def _exit_code_for(exc: PromptForgeError) -> int:
    if isinstance(exc, (ConfigurationError, ValidationError)):
        return EXIT_CONFIG_ERROR
    if isinstance(exc, NotFoundError):
        return EXIT_NOT_FOUND
    return EXIT_DB_ERROR


def _load_config(config: Path | None) -> ForgeConfig:
    try:
        return load_config(config)
    except ConfigurationError as e:
        _fail(f"Configuration error: {e}", EXIT_CONFIG_ERROR)


def _connect(config: ForgeConfig):
    return connect(config.store.db_path, config.store.busy_timeout_seconds)


def _open_store(config: ForgeConfig) -> None:
    """Migrate the store on the way in; any failed unit is fatal here."""
    try:
        init_store(config, raise_on_failure=True)
    except MigrationFailure as e:
        _fail(f"{e}. Run 'prompt-forge migrate' to recover.", EXIT_DB_ERROR)
    except DatabaseError as e:
        _fail(f"Store error: {e}", EXIT_DB_ERROR)


@app.command()
def migrate(
    config: Path | None = ConfigOption,
    on_failure: str | None = typer.Option(
        None,
        "--on-failure",
        help="Override the failure policy: 'continue' or 'halt'",
    ),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Accept the destructive reset if a migration fails (for automation)",
    ),
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """
    Apply pending migration units to the store.

    When a unit fails you are asked whether to wipe the store so the next
    start re-applies every unit. Declining follows the failure policy.
    In JSON mode the reset is only performed with --yes.

    Exit codes:
      0: Store is current
      1: Configuration error
      2: A migration failed (or the index is unreadable)
    """
    _setup(format, verbose)
    forge_config = _load_config(config)

    if on_failure is not None:
        if on_failure not in ("continue", "halt"):
            _fail(
                f"Invalid --on-failure: {on_failure}. Must be 'continue' or 'halt'",
                EXIT_CONFIG_ERROR,
            )
        forge_config.migrations.on_failure = on_failure

    def confirm_reset(failure: MigrationFailure) -> bool:
        error(str(failure))
        if yes:
            return True
        if output_mode.is_agent():
            return False
        return typer.confirm(
            "Wipe the database so every migration is re-applied on next start?",
            default=False,
        )

    try:
        with spinner("Applying migrations..."):
            result = init_store(forge_config, confirm_reset=confirm_reset)
    except DatabaseError as e:
        _fail(f"Store error: {e}", EXIT_DB_ERROR)

    print_migration_table(result)

    if result.reset_performed:
        warning("Store wiped. Run 'prompt-forge migrate' again to rebuild it.")
    if result.failures:
        _fail(
            f"{len(result.failures)} migration(s) failed: "
            f"{', '.join(result.failed_units)}",
            EXIT_DB_ERROR,
        )

    if result.applied:
        success(f"Applied {len(result.applied)} migration(s)")
    else:
        success("Store is up to date")
    output_mode.flush_json()


@app.command()
def reset(
    config: Path | None = ConfigOption,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """
    Drop every table and view in the store, including the migration ledger.

    Destructive. All prompts, methodologies and credentials are lost.
    """
    _setup(format, verbose)
    forge_config = _load_config(config)

    if not yes:
        if output_mode.is_agent():
            _fail("Refusing to reset without --yes in JSON mode", EXIT_CONFIG_ERROR)
        if not typer.confirm(
            f"Permanently wipe {forge_config.store.db_path}?", default=False
        ):
            info("Reset cancelled")
            raise typer.Exit(EXIT_SUCCESS)

    try:
        with _connect(forge_config) as conn:
            dropped = reset_store(conn)
    except DatabaseError as e:
        _fail(f"Store error: {e}", EXIT_DB_ERROR)

    success(f"Store wiped ({len(dropped)} objects dropped)")
    if output_mode.is_agent():
        output_mode.add_json("dropped", dropped)
    output_mode.flush_json()


@app.command()
def save(
    content: str | None = typer.Argument(
        None, help="Prompt text ('-' reads standard input)"
    ),
    file: Path | None = typer.Option(
        None, "--file", help="Read the prompt text from a file", dir_okay=False
    ),
    new_lineage: bool = typer.Option(
        False, "--new-lineage", help="Start a new lineage with this text"
    ),
    lineage: int | None = typer.Option(
        None, "--lineage", help="Continue this lineage instead of the latest record"
    ),
    config: Path | None = ConfigOption,
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """
    Save text as the next version of the most recent prompt.

    The first save in an empty store, or any save with --new-lineage,
    starts a new lineage at version 1.
    """
    _setup(format, verbose)

    if file is not None:
        try:
            content = file.read_text(encoding="utf-8")
        except OSError as e:
            _fail(f"Cannot read {file}: {e}", EXIT_CONFIG_ERROR)
    elif content == "-":
        content = sys.stdin.read()
    if content is None:
        _fail("Provide prompt text, '-' for stdin, or --file", EXIT_CONFIG_ERROR)

    forge_config = _load_config(config)
    _open_store(forge_config)

    try:
        with _connect(forge_config) as conn:
            manager = LineageManager(conn, forge_config.editor.title_max_length)
            record = manager.save(
                content, new_lineage=new_lineage, lineage_root_id=lineage
            )
    except PromptForgeError as e:
        _fail(str(e), _exit_code_for(e))

    if record.is_root:
        success(f"Prompt {record.id} saved as initial version")
    else:
        success(
            f"Prompt {record.id} saved as version {record.version_number} "
            f"of lineage {record.lineage_root_id}"
        )
    if output_mode.is_agent():
        print_prompt(record)
    output_mode.flush_json()


@app.command()
def history(
    limit: int | None = typer.Option(
        None, "--limit", "-n", help="Number of records (default from config)"
    ),
    config: Path | None = ConfigOption,
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """List the most recently saved prompt versions, newest first."""
    _setup(format, verbose)
    forge_config = _load_config(config)
    _open_store(forge_config)

    try:
        with _connect(forge_config) as conn:
            records = recent_history(conn, limit or forge_config.editor.history_limit)
    except PromptForgeError as e:
        _fail(str(e), _exit_code_for(e))

    if records:
        print_prompt_table(records)
    else:
        info("No prompts saved yet")
        print_prompt_table([])
    output_mode.flush_json()


@app.command()
def lineage(
    root_id: int = typer.Argument(..., help="Id of the lineage root"),
    config: Path | None = ConfigOption,
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """Show every version of one lineage, oldest first."""
    _setup(format, verbose)
    forge_config = _load_config(config)
    _open_store(forge_config)

    try:
        with _connect(forge_config) as conn:
            records = by_lineage(conn, root_id)
    except PromptForgeError as e:
        _fail(str(e), _exit_code_for(e))

    print_prompt_table(records, title=f"Lineage {root_id}")
    output_mode.flush_json()


@app.command()
def latest(
    config: Path | None = ConfigOption,
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """Show the latest version of every lineage."""
    _setup(format, verbose)
    forge_config = _load_config(config)
    _open_store(forge_config)

    with _connect(forge_config) as conn:
        records = latest_per_lineage(conn)

    if not records:
        info("No prompts saved yet")
    print_prompt_table(records, title="Latest Versions")
    output_mode.flush_json()


@app.command()
def show(
    prompt_id: int = typer.Argument(..., help="Prompt record id"),
    config: Path | None = ConfigOption,
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """Show one prompt record with its full content."""
    _setup(format, verbose)
    forge_config = _load_config(config)
    _open_store(forge_config)

    try:
        with _connect(forge_config) as conn:
            record = require_prompt(conn, prompt_id)
    except PromptForgeError as e:
        _fail(str(e), _exit_code_for(e))

    print_prompt(record)
    output_mode.flush_json()


@app.command()
def methodologies(
    kind: str | None = typer.Option(
        None, "--kind", "-k", help="Only this kind: intent, technique or evasion"
    ),
    config: Path | None = ConfigOption,
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """List the methodologies available for prompt transforms."""
    _setup(format, verbose)
    forge_config = _load_config(config)
    _open_store(forge_config)

    try:
        with _connect(forge_config) as conn:
            records = list_methodologies(conn, kind)
    except PromptForgeError as e:
        _fail(str(e), _exit_code_for(e))

    print_methodology_table(records)
    output_mode.flush_json()


@app.command()
def validate(
    config: Path = typer.Option(
        ...,
        "--config",
        "-c",
        help="Path to YAML configuration file",
        file_okay=True,
        dir_okay=False,
    ),
    format: str = FormatOption,
):
    """
    Validate a configuration file without touching the store.

    Exit codes:
      0: Configuration is valid
      1: Configuration is invalid
    """
    _setup(format, verbose=False)

    try:
        forge_config = load_config(config)
    except ConfigurationError as e:
        if output_mode.is_agent():
            output_mode.add_json("valid", False)
        _fail(f"Validation failed: {e}", EXIT_CONFIG_ERROR)

    success("Configuration is valid")
    info(f"Database: {forge_config.store.db_path}")
    info(f"Migration failure policy: {forge_config.migrations.on_failure}")

    if output_mode.is_agent():
        output_mode.add_json("valid", True)
        output_mode.add_json("config", forge_config.model_dump())
    output_mode.flush_json()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
    ),
):
    """
    Prompt Forge - versioned prompt store with branching lineages.

    Use 'prompt-forge COMMAND --help' for detailed command documentation.
    """
    if version:
        from rich.console import Console

        console = Console()
        console.print(f"[bold cyan]prompt-forge[/bold cyan] version {_read_version()}")
        raise typer.Exit(EXIT_SUCCESS)

    if ctx.invoked_subcommand is None:
        from rich.console import Console

        console = Console()
        console.print("[yellow]Use --help to see available commands[/yellow]")


def _read_version() -> str:
    """Read version from package metadata, falling back to the package's own."""
    from importlib.metadata import PackageNotFoundError, version

    try:
        return version("prompt-forge")
    except PackageNotFoundError:
        from prompt_forge import __version__

        return __version__


if __name__ == "__main__":
    app()
