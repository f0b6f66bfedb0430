"""walkthrough command line: list, validate and run step scripts."""

import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional

import typer
from rich.console import Console
from rich.table import Table

from walkthrough.config import Settings
from walkthrough.console import ConsoleSurface
from walkthrough.engine.errors import WalkthroughError
from walkthrough.engine.loader import ScriptEntry, ScriptLoader, normalize_scripts
from walkthrough.engine.runner import RealActionRunner
from walkthrough.engine.schema import find_unreachable_steps, validate_script
from walkthrough.engine.session import WalkthroughSession
from walkthrough.engine.state import FileRunStateStore
from walkthrough.utils.diagnostics import DiagnosticCollector
from walkthrough.utils.logging_config import configure_logging

logger = logging.getLogger(__name__)

app = typer.Typer(help="Run interactive step-script walkthroughs.")
console = Console()

EXIT_CODES = {'success': 0, 'failure': 1, 'cancel': 2}


def _load_scripts(path: Path) -> List[ScriptEntry]:
    loader = ScriptLoader(path if path.is_dir() else path.parent)
    if path.is_dir():
        return loader.discover()
    return loader.load_bundle(path)


def _parse_vars(pairs: List[str]) -> Dict[str, str]:
    variables = {}
    for pair in pairs:
        key, sep, value = pair.partition('=')
        if not sep or not key:
            raise typer.BadParameter(f"Expected KEY=VALUE, got {pair!r}", param_hint='--var')
        variables[key] = value
    return variables


def _settings() -> Settings:
    try:
        return Settings()
    except ValueError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(code=1)


@app.command("list")
def list_scripts(
    scripts: Optional[Path] = typer.Option(None, "--scripts", help="Bundle file or directory to search"),
):
    """Show the scripts a bundle offers."""
    settings = _settings()
    configure_logging(settings.log_level)

    try:
        entries = _load_scripts(scripts or settings.scripts_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    table = Table(title="Walkthrough Scripts")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Steps", justify="right")
    table.add_column("Description")
    for entry in entries:
        table.add_row(entry.id, entry.name, str(len(entry.steps)), entry.description or "")
    console.print(table)


@app.command()
def validate(path: Path = typer.Argument(..., help="Script or bundle file (JSON or YAML)")):
    """Check scripts for schema and graph errors."""
    settings = _settings()
    configure_logging(settings.log_level)

    try:
        document = ScriptLoader(path.parent).read_document(path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    # A single script file is validated as-is
    entries = normalize_scripts(document)
    targets = [(entry.id, entry.as_input()) for entry in entries] or [(path.stem, document)]

    failed = 0
    for script_id, raw in targets:
        try:
            script = validate_script(raw)
        except WalkthroughError as e:
            failed += 1
            console.print(f"[red]✗[/red] {script_id}: {e}")
            continue

        console.print(f"[green]✓[/green] {script_id}: {len(script.steps)} steps")
        for step_id in find_unreachable_steps(script):
            console.print(f"  [yellow]warning:[/yellow] step '{step_id}' is unreachable")

    if failed:
        raise typer.Exit(code=1)


@app.command()
def run(
    script_id: Optional[str] = typer.Argument(None, help="Script to run (default: first script)"),
    scripts: Optional[Path] = typer.Option(None, "--scripts", help="Bundle file or directory to search"),
    resume: bool = typer.Option(False, "--resume", help="Replay answers saved by the last run"),
    restart: bool = typer.Option(False, "--restart", help="Clear saved answers before running"),
    var: List[str] = typer.Option([], "--var", help="Seed a variable, KEY=VALUE (repeatable)"),
    state_file: Optional[Path] = typer.Option(None, "--state-file", help="YAML file for saved run state"),
    max_steps: Optional[int] = typer.Option(None, "--max-steps", min=1, help="Step ceiling per run"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Echo commands before running them"),
    diagnostics_dir: Optional[Path] = typer.Option(
        None, "--diagnostics-dir", help="Write a diagnostic log here when a run fails"
    ),
):
    """Run a walkthrough interactively."""
    if resume and restart:
        raise typer.BadParameter("--resume and --restart are mutually exclusive")

    settings = _settings()
    configure_logging("DEBUG" if verbose else settings.log_level)
    initial_vars = _parse_vars(var)

    try:
        entries = _load_scripts(scripts or settings.scripts_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    runner = RealActionRunner(verbose=verbose or settings.verbose, timeout=settings.command_timeout)
    diagnostics = DiagnosticCollector()
    surface = ConsoleSurface(runner, console)
    session = WalkthroughSession(
        entries,
        FileRunStateStore(state_file or settings.state_file),
        runner,
        surface.emit,
        workspace=str(Path.cwd()),
        max_steps=max_steps or settings.max_steps,
        diagnostics=diagnostics,
    )
    surface.session = session

    async def _run():
        await session.initialize()
        if resume:
            return await session.resume(script_id, initial_vars)
        if restart:
            return await session.restart(script_id, initial_vars)
        return await session.start(script_id, initial_vars)

    try:
        result = asyncio.run(_run())
    except KeyboardInterrupt:
        session.dispose()
        console.print("\n[yellow]Interrupted[/yellow]")
        raise typer.Exit(code=EXIT_CODES['cancel'])

    if diagnostics.has_failures():
        console.print(diagnostics.get_summary())
        if diagnostics_dir is not None:
            diagnostics_dir.mkdir(parents=True, exist_ok=True)
            log_path = diagnostics.save_log(str(diagnostics_dir))
            console.print(f"Diagnostic log saved to {log_path}")

    if result is None:
        raise typer.Exit(code=EXIT_CODES['failure'])
    raise typer.Exit(code=EXIT_CODES.get(result.status, 1))


def main():
    app()


if __name__ == "__main__":
    main()
