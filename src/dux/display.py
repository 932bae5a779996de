"""Rich terminal display for dux."""

from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from dux.categories import get_regenerate_hint
from dux.models import (
    ArtifactEntry,
    DeletionPreview,
    DeletionProgress,
    LargeFileEntry,
    NodeKind,
    ScanStats,
    SkipReason,
    StaleThreshold,
)

console = Console()

_KB = 1024
_MB = _KB * 1024
_GB = _MB * 1024
_TB = _GB * 1024


def format_size(size_bytes: int) -> str:
    """Format bytes to human-readable string (binary units)."""
    if size_bytes >= _TB:
        return f"{size_bytes / _TB:.1f} TB"
    elif size_bytes >= _GB:
        return f"{size_bytes / _GB:.1f} GB"
    elif size_bytes >= _MB:
        return f"{size_bytes / _MB:.1f} MB"
    elif size_bytes >= _KB:
        return f"{size_bytes / _KB:.1f} KB"
    else:
        return f"{size_bytes} B"


def format_count(count: int) -> str:
    """Format a number with thousands separators."""
    return f"{count:,}"


def size_percentage(size: int, total: int) -> float:
    """Size as a percentage of total (0 when total is 0)."""
    if total <= 0:
        return 0.0
    return (size / total) * 100


def size_bar(percentage: float, width: int = 20) -> str:
    """Text bar proportional to a percentage."""
    filled = round(max(0.0, min(percentage, 100.0)) / 100 * width)
    return "█" * filled + "░" * (width - filled)


def kind_icon(kind: NodeKind, skip_reason: SkipReason | None = None) -> str:
    """Get icon for a node kind."""
    if kind is NodeKind.SKIPPED:
        return "[dim]⊘[/dim]" if skip_reason is not SkipReason.TIMEOUT else "[yellow]⧗[/yellow]"
    icons = {
        NodeKind.DIRECTORY: "[blue]▸[/blue]",
        NodeKind.FILE: " ",
        NodeKind.SYMLINK: "[cyan]↪[/cyan]",
    }
    return icons.get(kind, "?")


def skip_label(skip_reason: SkipReason | None) -> str:
    """Short explanation shown next to a skipped directory."""
    labels = {
        SkipReason.PATTERN: "skipped",
        SkipReason.TIMEOUT: "timed out",
        SkipReason.MOUNT: "other filesystem",
        SkipReason.ERROR: "unreadable",
    }
    return labels.get(skip_reason, "skipped")


def show_scan_summary(
    rows: list[tuple[str, int, NodeKind, SkipReason | None]],
    stats: ScanStats,
    total: int,
    from_cache: bool = False,
) -> None:
    """
    Display the largest entries directly under the scan root.

    Args:
        rows: (name, size, kind, skip_reason) tuples, largest first
        stats: Scan statistics
        total: Total size of the root
        from_cache: Whether the tree came from the cache
    """
    source = " [dim](cached)[/dim]" if from_cache else ""
    table = Table(title=f"{stats.root_path}{source}", show_header=True, header_style="bold")
    table.add_column("", width=2)
    table.add_column("Name")
    table.add_column("Size", justify="right")
    table.add_column("%", justify="right")
    table.add_column("", no_wrap=True)

    for name, size, kind, reason in rows:
        percentage = size_percentage(size, total)
        label = f"[dim]{name} ({skip_label(reason)})[/dim]" if kind is NodeKind.SKIPPED else name
        table.add_row(
            kind_icon(kind, reason),
            label,
            format_size(size),
            f"{percentage:.1f}%",
            f"[blue]{size_bar(percentage)}[/blue]",
        )

    console.print(table)
    details = (
        f"[bold]Total:[/bold] {format_size(total)}\n"
        f"  Files: {format_count(stats.file_count)}\n"
        f"  Directories: {format_count(stats.dir_count)}"
    )
    if stats.skipped:
        details += f"\n  Skipped: {format_count(stats.skipped)}"
    if stats.errors:
        details += f"\n  [yellow]Unreadable: {format_count(stats.errors)}[/yellow]"
    if not from_cache:
        details += f"\n  [dim]Scanned in {stats.elapsed_seconds:.2f}s[/dim]"
    console.print(Panel(details, title="Summary", border_style="blue"))


def show_large_files(entries: list[LargeFileEntry]) -> None:
    """Display the large files view."""
    if not entries:
        console.print("[dim]No files found.[/dim]")
        return

    table = Table(title="Large Files", show_header=True, header_style="bold")
    table.add_column("Size", justify="right")
    table.add_column("%", justify="right")
    table.add_column("Path")

    for entry in entries:
        table.add_row(format_size(entry.size), f"{entry.percentage:.1f}%", entry.relative_path)

    console.print(table)


def show_artifacts(entries: list[ArtifactEntry], threshold: StaleThreshold) -> None:
    """Display build artifacts with their staleness."""
    if not entries:
        console.print("[dim]No build artifacts found.[/dim]")
        return

    table = Table(
        title=f"Build Artifacts (stale after {threshold.label})",
        show_header=True,
        header_style="bold",
    )
    table.add_column("", width=2)
    table.add_column("Type")
    table.add_column("Size", justify="right")
    table.add_column("%", justify="right")
    table.add_column("Path")

    stale_total = 0
    for entry in entries:
        if entry.is_stale:
            stale_total += entry.size
        table.add_row(
            "[yellow]●[/yellow]" if entry.is_stale else "[green]○[/green]",
            entry.category,
            format_size(entry.size),
            f"{entry.percentage:.1f}%",
            entry.relative_path,
        )

    console.print(table)
    console.print(f"[yellow]Stale artifacts: {format_size(stale_total)}[/yellow]")

    hints = {}
    for entry in entries:
        hint = get_regenerate_hint(entry.category)
        if hint:
            hints.setdefault(entry.category, hint)
    if hints:
        console.print("\n[bold]Regenerate with:[/bold]")
        for label, hint in hints.items():
            console.print(f"  {label}: [cyan]{hint}[/cyan]")


def show_deletion_preview(preview: DeletionPreview) -> None:
    """Display what a deletion would remove."""
    table = Table(title="Deletion Preview", show_header=True, header_style="bold")
    table.add_column("Size", justify="right")
    table.add_column("Path")

    for item in preview.samples:
        table.add_row(format_size(item.size), item.path)
    if preview.more_count:
        table.add_row("", f"[dim]...and {preview.more_count} more[/dim]")

    console.print(table)
    for path in preview.blocked:
        console.print(f"[red]✗ Protected, will not delete:[/red] {path}")
    console.print(
        f"\n[bold]Total to delete: {format_size(preview.total_size)} "
        f"in {format_count(preview.count)} items[/bold]"
    )


def show_deletion_progress() -> Progress:
    """Create and return a progress bar for deletion."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        TimeElapsedColumn(),
        console=console,
    )


def show_deletion_summary(progress: DeletionProgress) -> None:
    """Display the result of a deletion batch."""
    console.print()
    if progress.failure_count:
        console.print("[bold yellow]Deletion finished with errors[/bold yellow]")
    else:
        console.print("[bold green]Deletion complete![/bold green]")
    console.print()

    table = Table(show_header=False)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Space freed", format_size(progress.bytes_freed))
    table.add_row("Items deleted", str(progress.completed - progress.failure_count))
    if progress.failure_count:
        table.add_row("[red]Failed[/red]", str(progress.failure_count))
    console.print(table)

    for failure in progress.failures:
        console.print(f"  [red]✗[/red] {failure.path}: {failure.error}")


def show_scanning_progress() -> Progress:
    """Create progress display for scanning."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    )


def show_error(message: str) -> None:
    console.print(f"[red]Error: {message}[/red]")


def confirm_action(message: str) -> bool:
    """Ask for confirmation."""
    from rich.prompt import Confirm

    return Confirm.ask(message)
