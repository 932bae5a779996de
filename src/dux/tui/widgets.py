"""Custom widgets for the dux TUI."""

from textual.reactive import reactive
from textual.widgets import Static

from dux.display import format_count, format_size
from dux.models import DeletionProgress, ScanProgress, SessionStats


class ScanStatus(Static):
    """Live counters while a scan runs."""

    def update_progress(self, progress: ScanProgress | None) -> None:
        if progress is None:
            self.update("[dim]Loading...[/dim]")
            return
        if progress.finalizing:
            self.update("[cyan]Computing sizes...[/cyan]")
            return
        current = progress.current_path or ""
        self.update(
            f"[bold cyan]Scanning[/bold cyan] "
            f"{format_count(progress.files_scanned)} files, "
            f"{format_count(progress.dirs_scanned)} dirs, "
            f"{format_size(progress.bytes_scanned)}"
            + (f", [yellow]{format_count(progress.errors)} errors[/yellow]" if progress.errors else "")
            + f"\n[dim]{current}[/dim]"
        )


class StatsBar(Static):
    """Footer line: totals, space reclaimed, selection and deletion progress."""

    total: reactive[int] = reactive(0)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.stats = SessionStats()
        self.from_cache = False
        self.selected = 0
        self.selected_size = 0
        self.deletion: DeletionProgress | None = None
        self.view_label = "Tree"

    def refresh_stats(
        self,
        total: int,
        stats: SessionStats,
        from_cache: bool,
        selected: int,
        selected_size: int,
        deletion: DeletionProgress | None,
        view_label: str,
    ) -> None:
        self.stats = stats
        self.from_cache = from_cache
        self.selected = selected
        self.selected_size = selected_size
        self.deletion = deletion
        self.view_label = view_label
        self.total = total
        self.refresh()

    def render(self) -> str:
        parts = [
            f"[bold]{self.view_label}[/bold]",
            f"Total: [bold]{format_size(self.total)}[/bold]",
        ]
        if self.stats.items_deleted:
            parts.append(
                f"Freed: [green]{format_size(self.stats.bytes_freed)}[/green] "
                f"({format_count(self.stats.items_deleted)} items)"
            )
        if self.selected:
            parts.append(
                f"Selected: [cyan]{format_count(self.selected)}[/cyan] "
                f"({format_size(self.selected_size)})"
            )
        if self.deletion is not None and not self.deletion.done:
            parts.append(
                f"[yellow]Deleting {self.deletion.completed}/{self.deletion.total} "
                f"({self.deletion.percent:.0f}%)[/yellow]"
            )
        elif self.deletion is not None and self.deletion.failure_count:
            parts.append(f"[red]{self.deletion.failure_count} failed[/red]")
        if self.from_cache:
            parts.append("[dim]cached[/dim]")
        return "  │  ".join(parts)
