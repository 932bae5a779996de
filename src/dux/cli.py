"""CLI interface for dux."""

from pathlib import Path
from typing import Optional

import typer
from loguru import logger

from dux import __version__
from dux import cache
from dux.analyzer import find_build_artifacts, find_large_files
from dux.config import default_config_path, load_settings
from dux.display import (
    confirm_action,
    console,
    format_count,
    format_size,
    show_artifacts,
    show_deletion_preview,
    show_deletion_progress,
    show_deletion_summary,
    show_error,
    show_large_files,
    show_scan_summary,
    show_scanning_progress,
)
from dux.errors import ScanError
from dux.log import setup_logging
from dux.models import StaleThreshold
from dux.session import Session

# Create Typer app
app = typer.Typer(
    name="dux",
    help="Interactive terminal disk usage analyzer - find what fills your disk and delete it",
    add_completion=False,
)

PathArgument = typer.Argument(Path("."), help="Directory to analyze")
MaxDepthOption = typer.Option(None, "--max-depth", "-d", min=0, help="Maximum depth to scan")
FollowSymlinksOption = typer.Option(False, "--follow-symlinks", "-L", help="Follow symbolic links")
CrossFilesystemsOption = typer.Option(
    False, "--cross-filesystems", "-x", help="Descend into other mounted filesystems"
)
NoCacheOption = typer.Option(False, "--no-cache", help="Neither read nor write the cache")
RescanOption = typer.Option(False, "--rescan", help="Ignore the cache and scan again")
VerboseOption = typer.Option(False, "--verbose", help="Show debug logging")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"dux version {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """dux - interactive terminal disk usage analyzer."""
    # If no command specified, browse the current directory
    if ctx.invoked_subcommand is None:
        ctx.invoke(
            browse,
            path=Path("."),
            max_depth=None,
            follow_symlinks=False,
            cross_filesystems=False,
            no_cache=False,
            rescan=False,
            verbose=False,
        )


def _open_session(
    path: Path,
    max_depth: Optional[int],
    follow_symlinks: bool,
    cross_filesystems: bool,
    no_cache: bool,
    rescan: bool,
) -> Session:
    settings = load_settings()
    config = settings.scan_config(
        max_depth=max_depth,
        follow_symlinks=follow_symlinks,
        cross_filesystems=cross_filesystems,
        force_rescan=rescan,
    )
    try:
        return Session(path, config=config, use_cache=not no_cache, settings=settings)
    except ScanError as e:
        show_error(str(e))
        raise typer.Exit(1)


def _load_tree(session: Session) -> None:
    """Start the session with a spinner showing live scan counters."""
    session.start_async()
    with show_scanning_progress() as progress:
        task = progress.add_task(f"Scanning {session.root}...", total=None)
        while not session.wait_ready(timeout=0.1):
            if session.scan_error is not None or not session.scanning:
                break
            snapshot = session.scan_progress()
            if snapshot is not None and snapshot.total_entries:
                progress.update(
                    task,
                    description=(
                        f"Scanning {session.root}... {format_count(snapshot.total_entries)} items, "
                        f"{format_size(snapshot.bytes_scanned)}"
                    ),
                )

    if session.scan_error is not None:
        show_error(str(session.scan_error))
        raise typer.Exit(1)


def _top_rows(session: Session, top: int) -> list:
    tree = session.tree
    rows = []
    for index in tree.children_of(0)[:top]:
        node = tree.get(index)
        if node is not None:
            rows.append((node.name, node.size, node.kind, node.skip_reason))
    return rows


@app.command()
def browse(
    path: Path = PathArgument,
    max_depth: Optional[int] = MaxDepthOption,
    follow_symlinks: bool = FollowSymlinksOption,
    cross_filesystems: bool = CrossFilesystemsOption,
    no_cache: bool = NoCacheOption,
    rescan: bool = RescanOption,
    verbose: bool = VerboseOption,
) -> None:
    """Browse disk usage interactively (default)."""
    setup_logging(verbose=verbose, console=False)
    session = _open_session(path, max_depth, follow_symlinks, cross_filesystems, no_cache, rescan)

    from dux.tui import run_tui

    try:
        run_tui(session)
    finally:
        if session.deleting:
            console.print("[dim]Finishing deletion...[/dim]")
        session.close()

    stats = session.stats
    if stats.items_deleted:
        console.print(
            f"[green]Freed {format_size(stats.bytes_freed)} "
            f"({format_count(stats.items_deleted)} items)[/green]"
        )
    if session.engine is not None and session.engine.failures:
        console.print(f"[red]{len(session.engine.failures)} deletions failed[/red]")
        for failure in session.engine.failures:
            console.print(f"  [red]✗[/red] {failure.path}: {failure.error}")


@app.command()
def scan(
    path: Path = PathArgument,
    top: int = typer.Option(20, "--top", "-n", min=1, help="Number of entries to show"),
    max_depth: Optional[int] = MaxDepthOption,
    follow_symlinks: bool = FollowSymlinksOption,
    cross_filesystems: bool = CrossFilesystemsOption,
    no_cache: bool = NoCacheOption,
    rescan: bool = RescanOption,
    verbose: bool = VerboseOption,
) -> None:
    """Scan a directory and show its largest entries."""
    setup_logging(verbose=verbose)
    session = _open_session(path, max_depth, follow_symlinks, cross_filesystems, no_cache, rescan)
    _load_tree(session)

    show_scan_summary(
        _top_rows(session, top),
        session.scan_stats,
        session.tree.total_size,
        from_cache=session.loaded_from_cache,
    )
    session.close()


@app.command()
def large(
    path: Path = PathArgument,
    top: int = typer.Option(20, "--top", "-n", min=1, help="Number of files to show"),
    no_cache: bool = NoCacheOption,
    rescan: bool = RescanOption,
    verbose: bool = VerboseOption,
) -> None:
    """List the largest files under a directory."""
    setup_logging(verbose=verbose)
    session = _open_session(path, None, False, False, no_cache, rescan)
    _load_tree(session)

    show_large_files(find_large_files(session.tree, limit=top))
    session.close()


@app.command()
def artifacts(
    path: Path = PathArgument,
    stale: Optional[StaleThreshold] = typer.Option(
        None, "--stale", "-s", help="Staleness threshold (1d, 7d, 30d, 90d, all)"
    ),
    stale_only: bool = typer.Option(False, "--stale-only", help="Only list stale artifacts"),
    delete: bool = typer.Option(False, "--delete", help="Delete the stale artifacts"),
    yes: bool = typer.Option(False, "-y", "--yes", help="Skip confirmation prompts"),
    no_cache: bool = NoCacheOption,
    rescan: bool = RescanOption,
    verbose: bool = VerboseOption,
) -> None:
    """Find build artifacts (target/, node_modules/, ...) and their staleness."""
    setup_logging(verbose=verbose)
    session = _open_session(path, None, False, False, no_cache, rescan)
    _load_tree(session)

    threshold = stale or session.settings.stale_threshold
    entries = find_build_artifacts(
        session.tree, threshold, patterns=session.settings.pattern_table()
    )
    if stale_only or delete:
        entries = [entry for entry in entries if entry.is_stale]
    show_artifacts(entries, threshold)

    if not delete or not entries:
        session.close()
        return

    preview = session.preview_delete([entry.index for entry in entries])
    console.print()
    show_deletion_preview(preview)
    if not yes and not confirm_action("\nDelete these artifacts?"):
        console.print("[yellow]Cancelled[/yellow]")
        session.close()
        return

    handle = session.request_delete([item.index for item in preview.items])
    with show_deletion_progress() as progress:
        task = progress.add_task("Deleting...", total=max(1, preview.count))
        while not handle.wait(timeout=0.1):
            progress.update(task, completed=handle.progress().completed)
        progress.update(task, completed=max(1, preview.count))

    show_deletion_summary(handle.progress())
    session.close()


@app.command("cache-path")
def cache_path(path: Path = PathArgument) -> None:
    """Show where the cache for a directory is stored."""
    target = cache.cache_path_for(path)
    console.print(str(target))
    if not target.exists():
        console.print("[dim](no cache yet)[/dim]")


@app.command("clear-cache")
def clear_cache(
    path: Optional[Path] = typer.Argument(None, help="Only clear the cache of this directory"),
) -> None:
    """Remove cached scans."""
    removed = cache.clear_cache(path)
    logger.debug("Removed {} cache files", removed)
    if removed:
        console.print(f"[green]Removed {removed} cache file{'s' if removed != 1 else ''}[/green]")
    else:
        console.print("[dim]No cache files to remove[/dim]")


@app.command()
def config() -> None:
    """Show current settings."""
    settings = load_settings()
    console.print(f"[bold]Settings file:[/bold] {default_config_path()}")
    console.print(f"  Stale threshold: {settings.stale_threshold.label}")
    console.print(f"  Workers: {settings.workers or 'auto'}")
    console.print(f"  Probe timeout: {settings.probe_timeout}s")
    if settings.extra_skip_patterns:
        console.print("  Extra skip patterns:")
        for pattern in settings.extra_skip_patterns:
            console.print(f"    • {pattern}")
    if settings.artifact_patterns:
        console.print("  Artifact pattern overrides:")
        for name, label in settings.artifact_patterns.items():
            console.print(f"    • {name}: {label or '(removed)'}")
    console.print(f"[bold]Cache directory:[/bold] {cache.default_cache_dir()}")


if __name__ == "__main__":
    app()
