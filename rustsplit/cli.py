"""Typer-based CLI for rustsplit."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from . import __version__
from .cache import AnalysisCache, CacheStore
from .config import BACKUP_DIR_NAME, cache_dir, find_workspace_root
from .config_manager import load_settings
from .diff_engine import DiffEngine
from .document import Document
from .errors import ExtractionCancelled, RustSplitError, ValidationFailed
from .extractor import create_orchestrator
from .models import ExtractionReport, ExtractionRequest, RefactorResult, StepStatus

app = typer.Typer(
    help="🦀 rustsplit: move Rust code into its own module.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
cache_app = typer.Typer(help="🗄️  Inspect or clear the analysis cache.", no_args_is_help=True)
app.add_typer(cache_app, name="cache")

console = Console()


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"rustsplit v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output."),
):
    """rustsplit: extract a selection of Rust code into a new module."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _workspace_root(file_path: Path, root: Optional[Path]) -> Path:
    if root is not None:
        return root.resolve()
    found = find_workspace_root(file_path)
    if found is None:
        typer.echo(f"❌ No Cargo.toml found above {file_path}. Pass --root explicitly.")
        raise typer.Exit(1)
    return found


def _print_report(report: ExtractionReport) -> None:
    table = Table(show_header=False, box=None)
    table.add_row("Module", report.module_path)
    table.add_row("Registered in", report.registration_file or "[yellow]not registered[/yellow]")
    table.add_row("Method", report.extraction_method)
    for kind, names in report.items.items():
        if names:
            table.add_row(kind.capitalize(), ", ".join(names))
    if report.impl_context:
        trait = report.impl_context.get("trait")
        target = report.impl_context.get("target")
        table.add_row("Impl context", f"{trait} for {target}" if trait else str(target))
    if report.public_exports:
        table.add_row("Public exports", ", ".join(report.public_exports))
    table.add_row("Validation attempts", str(report.attempts))
    for fix in report.applied_fixes:
        table.add_row("Applied fix", fix)
    console.print(table)


# ===================================================================
# analyze
# ===================================================================

@app.command("analyze")
def analyze(
    file_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Rust source file."),
    start_line: int = typer.Argument(..., help="First line of the selection (1-based)."),
    end_line: int = typer.Argument(..., help="Last line of the selection (inclusive)."),
    root: Optional[Path] = typer.Option(None, "--root", "-r", help="Workspace root (defaults to nearest Cargo.toml)."),
    no_expand: bool = typer.Option(False, "--no-expand", help="Use the raw line range as-is."),
    as_json: bool = typer.Option(False, "--json", help="Print the analysis as JSON."),
):
    """🔍 Show what an extraction of the given lines would involve.

    Example:
      rsplit analyze src/models/user.rs 10 25
    """
    workspace = _workspace_root(file_path, root)
    orchestrator = create_orchestrator(workspace, use_cargo=False)
    try:
        document = Document.load(file_path)
        request = ExtractionRequest(
            source_path=file_path.resolve(),
            module_name="analysis",
            selection=document.selection_for_lines(start_line, end_line),
            expand_selection=not no_expand,
        )
        result, span = asyncio.run(orchestrator.analyze(request))
    except RustSplitError as e:
        typer.echo(f"❌ Error: {e}")
        raise typer.Exit(1)

    if as_json:
        payload = result.to_dict()
        payload["span"] = {"start_line": span.start.line + 1, "end_line": span.end.line + 1}
        typer.echo(json.dumps(payload, indent=2))
        return

    table = Table(title=f"Analysis of {file_path.name}:{span.start.line + 1}-{span.end.line + 1}")
    table.add_column("Property", style="cyan")
    table.add_column("Value")
    for kind, names in result.item_names().items():
        table.add_row(kind.capitalize(), ", ".join(names) or "-")
    table.add_row("Used types", ", ".join(sorted(result.used_types)) or "-")
    table.add_row("Used traits", ", ".join(sorted(result.used_traits)) or "-")
    table.add_row("Visibility", result.visibility.value)
    table.add_row("Generics", "yes" if result.has_generic_params else "no")
    if result.impl_context is not None:
        table.add_row("Inside impl", result.impl_context.render_header())
    console.print(table)


# ===================================================================
# extract
# ===================================================================

def _run_extraction(request: ExtractionRequest, workspace: Path, validate: bool, auto_apply: bool) -> None:
    orchestrator = create_orchestrator(workspace, use_cargo=validate)

    try:
        preview = asyncio.run(orchestrator.extract(_dry_run(request)))
    except RustSplitError as e:
        typer.echo(f"❌ Error: {e}")
        raise typer.Exit(1)

    for path, text in preview.diffs.items():
        console.print(Panel(Syntax(text, "rust" if path == _label(preview.module_path, workspace) else "diff"), title=path))

    if request.dry_run:
        typer.echo("📋 Preview only mode - no changes applied")
        return

    if not auto_apply and not typer.confirm("\n❓ Apply extraction?", default=False):
        typer.echo("❌ Extraction cancelled")
        return

    typer.echo(f"📤 Extracting to module '{request.module_name}'...")
    try:
        report = asyncio.run(orchestrator.extract(request))
    except ValidationFailed as e:
        typer.echo(f"❌ {e}")
        for diagnostic in e.diagnostics:
            typer.echo(f"   {diagnostic}")
        if e.report.rolled_back:
            typer.echo("↩️  Changes were rolled back")
        elif e.report.backup_id:
            typer.echo(f"   Rollback with: rsplit rollback {e.report.backup_id}")
        raise typer.Exit(1)
    except ExtractionCancelled as e:
        typer.echo(f"❌ {e}")
        raise typer.Exit(1)
    except RustSplitError as e:
        typer.echo(f"❌ Error: {e}")
        raise typer.Exit(1)

    typer.echo(f"✅ Extracted to {report.module_path}")
    _print_report(report)
    if report.public_exports:
        typer.echo(f"💡 Usage: {report.usage}")
    if report.backup_id:
        typer.echo(f"💾 Backup created: {report.backup_id}")


def _dry_run(request: ExtractionRequest) -> ExtractionRequest:
    return ExtractionRequest(
        source_path=request.source_path,
        module_name=request.module_name,
        selection=request.selection,
        module_path=request.module_path,
        symbol_name=request.symbol_name,
        summary=request.summary,
        expand_selection=request.expand_selection,
        validate=False,
        dry_run=True,
    )


def _label(path: str, workspace: Path) -> str:
    try:
        return Path(path).resolve().relative_to(workspace).as_posix()
    except ValueError:
        return path


@app.command("extract")
def extract(
    file_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Rust source file."),
    start_line: int = typer.Argument(..., help="First line to extract (1-based)."),
    end_line: int = typer.Argument(..., help="Last line to extract (inclusive)."),
    module_name: str = typer.Argument(..., help="Name of the new module."),
    module_path: Optional[str] = typer.Option(None, "--path", help="Target file, e.g. src/models/billing.rs."),
    symbol: Optional[str] = typer.Option(None, "--symbol", help="Declaration name; preferred over the line numbers when found."),
    summary: Optional[str] = typer.Option(None, "--summary", "-s", help="Doc comment for the new module."),
    root: Optional[Path] = typer.Option(None, "--root", "-r", help="Workspace root (defaults to nearest Cargo.toml)."),
    no_expand: bool = typer.Option(False, "--no-expand", help="Extract the raw line range as-is."),
    no_validate: bool = typer.Option(False, "--no-validate", help="Skip cargo check validation."),
    preview_only: bool = typer.Option(False, "--preview", "-p", help="Preview changes without applying."),
    auto_apply: bool = typer.Option(False, "--yes", "-y", help="Apply changes without confirmation."),
):
    """📤 Extract a line range into a new module.

    Example:
      rsplit extract src/models/user.rs 30 40 user_display
      rsplit extract src/lib.rs 5 20 billing --path src/services/billing.rs --preview
    """
    workspace = _workspace_root(file_path, root)
    try:
        selection = Document.load(file_path).selection_for_lines(start_line, end_line)
    except RustSplitError as e:
        typer.echo(f"❌ Error: {e}")
        raise typer.Exit(1)

    typer.echo(f"📤 Planning extraction of lines {start_line}-{end_line} to '{module_name}'...")
    request = ExtractionRequest(
        source_path=file_path.resolve(),
        module_name=module_name,
        selection=selection,
        module_path=module_path,
        symbol_name=symbol,
        summary=summary,
        expand_selection=not no_expand,
        validate=not no_validate,
        dry_run=preview_only,
    )
    _run_extraction(request, workspace, not no_validate, auto_apply)


@app.command("extract-symbol")
def extract_symbol(
    file_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Rust source file."),
    symbol: str = typer.Argument(..., help="Name of the declaration to extract."),
    module_name: str = typer.Argument(..., help="Name of the new module."),
    module_path: Optional[str] = typer.Option(None, "--path", help="Target file, e.g. src/models/billing.rs."),
    summary: Optional[str] = typer.Option(None, "--summary", "-s", help="Doc comment for the new module."),
    root: Optional[Path] = typer.Option(None, "--root", "-r", help="Workspace root (defaults to nearest Cargo.toml)."),
    no_validate: bool = typer.Option(False, "--no-validate", help="Skip cargo check validation."),
    preview_only: bool = typer.Option(False, "--preview", "-p", help="Preview changes without applying."),
    auto_apply: bool = typer.Option(False, "--yes", "-y", help="Apply changes without confirmation."),
):
    """📤 Extract a declaration, found by name, into a new module.

    Example:
      rsplit extract-symbol src/models/user.rs index_users user_index
    """
    workspace = _workspace_root(file_path, root)
    typer.echo(f"📤 Planning extraction of '{symbol}' to '{module_name}'...")
    request = ExtractionRequest(
        source_path=file_path.resolve(),
        module_name=module_name,
        symbol_name=symbol,
        module_path=module_path,
        summary=summary,
        validate=not no_validate,
        dry_run=preview_only,
    )
    _run_extraction(request, workspace, not no_validate, auto_apply)


# ===================================================================
# refactor-file
# ===================================================================

_STEP_STYLES = {
    StepStatus.COMPLETE: "[green]complete[/green]",
    StepStatus.FAILED: "[red]failed[/red]",
    StepStatus.PENDING: "[yellow]pending[/yellow]",
}


def _print_refactor(result: RefactorResult) -> None:
    table = Table(title=f"Refactoring plan for {result.file_path}")
    table.add_column("#", justify="right")
    table.add_column("Action", style="cyan")
    table.add_column("Symbol")
    table.add_column("Module")
    table.add_column("Status")
    for step in result.steps:
        status = _STEP_STYLES[step.status]
        if step.error:
            status += f"\n{escape(step.error)}"
        table.add_row(
            str(step.step_number), step.action, step.symbol_name or "-", step.module_path or "-", status,
        )
    console.print(table)


@app.command("refactor-file")
def refactor_file(
    file_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Rust source file."),
    symbols: Optional[List[str]] = typer.Option(
        None, "--symbol", "-s", help="Symbol to move; repeat for several. Defaults to every public item.",
    ),
    target_dir: Optional[str] = typer.Option(None, "--target-dir", "-t", help="Directory for all new modules, e.g. src/domain."),
    root: Optional[Path] = typer.Option(None, "--root", "-r", help="Workspace root (defaults to nearest Cargo.toml)."),
    no_validate: bool = typer.Option(False, "--no-validate", help="Skip cargo check validation."),
    preview_only: bool = typer.Option(False, "--preview", "-p", help="Show the plan without applying it."),
    auto_apply: bool = typer.Option(False, "--yes", "-y", help="Apply changes without confirmation."),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON."),
):
    """🧩 Split a file into modules, one per symbol.

    Structs and enums go to src/models/, types with methods to
    src/services/ and the rest to src/utils/ unless --target-dir is given.

    Example:
      rsplit refactor-file src/models/user.rs --preview
      rsplit refactor-file src/lib.rs -s Config -s load_config -t src/config --yes
    """
    workspace = _workspace_root(file_path, root)
    orchestrator = create_orchestrator(workspace, use_cargo=not no_validate)

    def run(dry_run: bool) -> RefactorResult:
        try:
            return asyncio.run(orchestrator.refactor_file(
                file_path.resolve(),
                symbols=symbols or None,
                target_dir=target_dir,
                validate=not (no_validate or dry_run),
                dry_run=dry_run,
            ))
        except RustSplitError as e:
            typer.echo(f"❌ Error: {e}")
            raise typer.Exit(1)

    if preview_only:
        result = run(dry_run=True)
    else:
        if not auto_apply:
            _print_refactor(run(dry_run=True))
            if not typer.confirm("\n❓ Apply refactoring?", default=False):
                typer.echo("❌ Refactoring cancelled")
                return
        result = run(dry_run=False)

    if as_json:
        typer.echo(json.dumps(result.to_dict(), indent=2))
    else:
        _print_refactor(result)
        typer.echo(result.summary())
        if preview_only:
            typer.echo("📋 Preview only mode - no changes applied")
    if not result.success and not preview_only:
        raise typer.Exit(1)


# ===================================================================
# rollback / backups
# ===================================================================

@app.command("rollback")
def rollback(
    backup_id: str = typer.Argument(..., help="Backup ID printed by 'rsplit extract'."),
    root: Path = typer.Option(Path("."), "--root", "-r", help="Workspace root."),
):
    """↩️  Restore the files changed by an extraction."""
    engine = DiffEngine(cache_dir(root.resolve()) / BACKUP_DIR_NAME)
    if engine.rollback(backup_id):
        typer.echo(f"✅ Rolled back {backup_id}")
    else:
        typer.echo(f"❌ Backup not found: {backup_id}")
        raise typer.Exit(1)


@app.command("backups")
def backups(
    root: Path = typer.Option(Path("."), "--root", "-r", help="Workspace root."),
):
    """💾 List extraction backups, newest first."""
    engine = DiffEngine(cache_dir(root.resolve()) / BACKUP_DIR_NAME)
    entries = engine.list_backups()
    if not entries:
        typer.echo("No backups found.")
        return
    table = Table(show_header=True)
    table.add_column("ID", style="cyan")
    table.add_column("When")
    table.add_column("Description")
    table.add_column("Files", justify="right")
    for entry in entries:
        description = entry["description"] + (" (rolled back)" if entry.get("rolled_back") else "")
        table.add_row(entry["backup_id"], entry["timestamp"][:19], description, str(len(entry["files"])))
    console.print(table)


# ===================================================================
# cache
# ===================================================================

def _open_cache(root: Path) -> AnalysisCache:
    workspace = root.resolve()
    settings = load_settings(workspace)
    return AnalysisCache(settings.cache_max_entries, store=CacheStore(workspace, settings.cache_max_entries))


@cache_app.command("stats")
def cache_stats(
    root: Path = typer.Option(Path("."), "--root", "-r", help="Workspace root."),
):
    """📊 Show analysis cache statistics."""
    cache = _open_cache(root)
    stats = cache.lifetime_stats()
    typer.echo(f"Entries: {stats.entry_count}")
    typer.echo(f"Hits: {stats.hits}")
    typer.echo(f"Misses: {stats.misses}")
    typer.echo(f"Hit rate: {stats.hit_rate:.0%}")


@cache_app.command("clear")
def cache_clear(
    root: Path = typer.Option(Path("."), "--root", "-r", help="Workspace root."),
):
    """🧹 Remove every cached analysis for the workspace."""
    cache = _open_cache(root)
    count = cache.lifetime_stats().entry_count
    cache.clear()
    typer.echo(f"✅ Cleared {count} cached analysis result(s)")


if __name__ == "__main__":
    app()
