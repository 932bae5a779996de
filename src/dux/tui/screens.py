"""TUI screens for dux."""

from enum import Enum

from rich.text import Text
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal
from textual.screen import ModalScreen, Screen
from textual.widgets import Button, DataTable, Footer, Header, Static

from dux.display import format_size, kind_icon, size_bar, size_percentage, skip_label
from dux.errors import DeletionInProgressError, DuxError
from dux.models import DeletionPreview, NodeKind
from dux.tui.widgets import ScanStatus, StatsBar

# Rows rendered in the flat views
MAX_LIST_ROWS = 1000


class ViewMode(str, Enum):
    TREE = "Tree"
    LARGE_FILES = "Large Files"
    BUILD_ARTIFACTS = "Build Artifacts"

    def next(self) -> "ViewMode":
        members = list(ViewMode)
        return members[(members.index(self) + 1) % len(members)]


class BrowserScreen(Screen):
    """Tree, large files and build artifacts over the session's tree."""

    BINDINGS = [
        # The table would otherwise consume these keys itself
        Binding("enter", "toggle_expand", "Expand", priority=True),
        Binding("right", "expand", "Expand", show=False, priority=True),
        Binding("left", "collapse", "Collapse", show=False, priority=True),
        Binding("space", "toggle_select", "Select"),
        Binding("shift+down", "select_down", "Extend", show=False),
        Binding("shift+up", "select_up", "Extend", show=False),
        Binding("shift+end", "select_to_last", "Extend", show=False),
        Binding("shift+home", "select_to_first", "Extend", show=False),
        Binding("shift+pagedown", "select_page_down", "Extend", show=False),
        Binding("shift+pageup", "select_page_up", "Extend", show=False),
        Binding("escape", "clear_selection", "Clear"),
        Binding("d", "delete", "Delete"),
        Binding("delete", "delete", "Delete", show=False),
        Binding("tab", "cycle_view", "View"),
        Binding("s", "cycle_stale", "Stale"),
        Binding("r", "rescan", "Rescan"),
    ]

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.view_mode = ViewMode.TREE
        self._rows: list[int] = []
        self._was_ready = False

    @property
    def session(self):
        return self.app.session

    def compose(self) -> ComposeResult:
        yield Header()
        yield ScanStatus(id="scan-status")
        yield DataTable(id="browser-table", cursor_type="row", zebra_stripes=True)
        yield StatsBar(id="stats-bar")
        yield Footer()

    def on_mount(self) -> None:
        self.sub_title = str(self.session.root)
        self.set_interval(0.2, self._tick)
        self._tick()

    # -------------------------------------------------------------------------
    # Refresh
    # -------------------------------------------------------------------------

    def _tick(self) -> None:
        session = self.session
        status = self.query_one("#scan-status", ScanStatus)

        if session.scan_error is not None:
            status.update(f"[red]Error: {session.scan_error}[/red]")
            return

        if not session.ready:
            self._was_ready = False
            status.display = True
            status.update_progress(session.scan_progress())
            return

        if not self._was_ready:
            self._was_ready = True
            status.display = False
            if session.loaded_from_cache:
                self.notify("Loaded from cache (press r to rescan)", timeout=3)
            self.refresh_table()

        if session.poll():
            self.refresh_table()
        self._update_stats()

    def refresh_table(self) -> None:
        """Rebuild rows for the current view, keeping the cursor on the same node."""
        table = self.query_one("#browser-table", DataTable)
        current = self.current_node()
        old_row = table.cursor_row

        table.clear(columns=True)
        if self.view_mode is ViewMode.TREE:
            self._fill_tree(table)
        elif self.view_mode is ViewMode.LARGE_FILES:
            self._fill_large_files(table)
        else:
            self._fill_artifacts(table)

        if not self._rows:
            return
        row = self._rows.index(current) if current in self._rows else min(old_row, len(self._rows) - 1)
        table.move_cursor(row=max(0, row))

    def _mark(self, index: int) -> str:
        return "[cyan]●[/cyan]" if index in self.session.selection else " "

    def _fill_tree(self, table: DataTable) -> None:
        tree = self.session.tree
        table.add_columns("", "", "Name", "Size", "%", "")
        total = tree.total_size
        with tree.lock:
            self._rows = tree.visible_nodes()
            for index in self._rows:
                node = tree.get(index)
                depth = tree.depth_of(index)
                if node.is_expandable:
                    arrow = "▾ " if node.expanded else "▸ "
                else:
                    arrow = "  "
                name = Text("  " * depth + arrow + node.name)
                if node.kind is NodeKind.SKIPPED:
                    name.append(f"  ({skip_label(node.skip_reason)})")
                    name.stylize("dim")
                elif node.is_directory:
                    name.stylize("bold")
                percentage = size_percentage(node.size, total)
                table.add_row(
                    self._mark(index),
                    kind_icon(node.kind, node.skip_reason),
                    name,
                    format_size(node.size),
                    f"{percentage:.1f}%",
                    f"[blue]{size_bar(percentage, 15)}[/blue]",
                    key=str(index),
                )

    def _fill_large_files(self, table: DataTable) -> None:
        views = self.session.views
        views.ensure(self.session.tree)
        table.add_columns("", "Size", "%", "Path")
        entries = views.large_files[:MAX_LIST_ROWS]
        self._rows = [entry.index for entry in entries]
        for entry in entries:
            table.add_row(
                self._mark(entry.index),
                format_size(entry.size),
                f"{entry.percentage:.1f}%",
                Text(entry.relative_path),
                key=str(entry.index),
            )

    def _fill_artifacts(self, table: DataTable) -> None:
        views = self.session.views
        views.ensure(self.session.tree)
        table.add_columns("", "", "Type", "Size", "%", "Path")
        entries = views.build_artifacts[:MAX_LIST_ROWS]
        self._rows = [entry.index for entry in entries]
        for entry in entries:
            table.add_row(
                self._mark(entry.index),
                "[yellow]stale[/yellow]" if entry.is_stale else "[green]fresh[/green]",
                entry.category,
                format_size(entry.size),
                f"{entry.percentage:.1f}%",
                Text(entry.relative_path),
                key=str(entry.index),
            )

    def _update_stats(self) -> None:
        session = self.session
        tree = session.tree
        selected = session.selection.indices()
        label = self.view_mode.value
        if self.view_mode is ViewMode.BUILD_ARTIFACTS:
            label += f" (stale > {session.views.stale_threshold.label})"
        self.query_one("#stats-bar", StatsBar).refresh_stats(
            total=tree.total_size,
            stats=session.stats,
            from_cache=session.loaded_from_cache,
            selected=len(selected),
            selected_size=sum(tree.size_of(index) for index in selected),
            deletion=session.deletion_progress(),
            view_label=label,
        )

    # -------------------------------------------------------------------------
    # Cursor helpers
    # -------------------------------------------------------------------------

    def current_node(self) -> int | None:
        table = self.query_one("#browser-table", DataTable)
        row = table.cursor_row
        if 0 <= row < len(self._rows):
            return self._rows[row]
        return None

    def _move_cursor_to(self, row: int) -> None:
        if self._rows:
            table = self.query_one("#browser-table", DataTable)
            table.move_cursor(row=max(0, min(row, len(self._rows) - 1)))

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    def action_toggle_expand(self) -> None:
        index = self.current_node()
        if index is None or self.view_mode is not ViewMode.TREE:
            return
        self.session.toggle_expanded(index)
        self.refresh_table()

    def action_expand(self) -> None:
        index = self.current_node()
        if index is None or self.view_mode is not ViewMode.TREE:
            return
        self.session.expand(index)
        self.refresh_table()

    def action_collapse(self) -> None:
        index = self.current_node()
        if index is None or self.view_mode is not ViewMode.TREE:
            return
        tree = self.session.tree
        node = tree.get(index)
        if node is not None and node.expanded and node.has_children:
            self.session.collapse(index)
        elif node is not None and node.parent is not None:
            # Jump to the parent when already collapsed
            self.session.collapse(node.parent)
            self.refresh_table()
            self._move_cursor_to(self._rows.index(node.parent))
            return
        self.refresh_table()

    def action_toggle_select(self) -> None:
        index = self.current_node()
        if index is not None:
            self.session.toggle_select(index)
            self.refresh_table()

    def _select_move(self, step: int) -> None:
        table = self.query_one("#browser-table", DataTable)
        current = self.current_node()
        self._move_cursor_to(table.cursor_row + step)
        self.session.move_select(current, self.current_node())
        self.refresh_table()

    def action_select_down(self) -> None:
        self._select_move(1)

    def action_select_up(self) -> None:
        self._select_move(-1)

    def _select_range_to(self, row: int) -> None:
        table = self.query_one("#browser-table", DataTable)
        start = table.cursor_row
        self._move_cursor_to(row)
        low, high = sorted((start, table.cursor_row))
        self.session.selection.add_all(self._rows[low : high + 1])
        self.refresh_table()

    def action_select_to_last(self) -> None:
        self._select_range_to(len(self._rows) - 1)

    def action_select_to_first(self) -> None:
        self._select_range_to(0)

    def _page_rows(self) -> int:
        table = self.query_one("#browser-table", DataTable)
        # Minus the header row
        return max(1, table.size.height - 1)

    def action_select_page_down(self) -> None:
        table = self.query_one("#browser-table", DataTable)
        self._select_range_to(table.cursor_row + self._page_rows())

    def action_select_page_up(self) -> None:
        table = self.query_one("#browser-table", DataTable)
        self._select_range_to(table.cursor_row - self._page_rows())

    def action_clear_selection(self) -> None:
        self.session.clear_select()
        self.refresh_table()

    def action_delete(self) -> None:
        session = self.session
        if not session.ready:
            return
        if session.deleting:
            self.notify("A deletion is already running", severity="warning")
            return

        indices = session.selection.indices()
        if not indices:
            current = self.current_node()
            indices = [current] if current is not None else []
        preview = session.preview_delete(indices)
        if preview.is_empty:
            self.notify("Nothing to delete", severity="warning")
            return

        def on_confirm(confirmed: bool) -> None:
            if confirmed:
                self._start_delete(indices)

        self.app.push_screen(ConfirmDeleteScreen(preview), on_confirm)

    def _start_delete(self, indices: list[int]) -> None:
        try:
            handle = self.session.request_delete(indices)
        except DeletionInProgressError as e:
            self.notify(str(e), severity="warning")
            return
        self.session.clear_select()
        self.notify(f"Deleting {handle.preview.count} items ({format_size(handle.preview.total_size)})")
        self.refresh_table()

    def action_cycle_view(self) -> None:
        self.view_mode = self.view_mode.next()
        # Rows differ per view, so a selection would be invisible
        self.session.clear_select()
        if self.session.ready:
            self.refresh_table()

    def action_cycle_stale(self) -> None:
        threshold = self.session.cycle_stale_threshold()
        self.notify(f"Stale threshold: {threshold.label}", timeout=2)
        if self.view_mode is ViewMode.BUILD_ARTIFACTS and self.session.ready:
            self.refresh_table()

    def action_rescan(self) -> None:
        try:
            self.session.request_rescan(background=True)
        except DuxError as e:
            self.notify(str(e), severity="warning")
            return
        self._rows = []
        self.query_one("#browser-table", DataTable).clear(columns=True)


class ConfirmDeleteScreen(ModalScreen[bool]):
    """Deletion preview with confirmation."""

    BINDINGS = [
        Binding("y", "confirm", "Yes, Delete"),
        Binding("n", "cancel", "Cancel"),
        Binding("escape", "cancel", "Cancel"),
    ]

    def __init__(self, preview: DeletionPreview):
        super().__init__()
        self.preview = preview

    def compose(self) -> ComposeResult:
        with Container(id="confirm-container"):
            yield Static("[bold red]Delete these items?[/bold red]", id="confirm-title")
            yield DataTable(id="confirm-table", show_cursor=False)
            yield Static("", id="confirm-total")
            with Horizontal(id="confirm-buttons"):
                yield Button("Delete", variant="error", id="btn-delete")
                yield Button("Cancel", variant="default", id="btn-cancel")

    def on_mount(self) -> None:
        table = self.query_one("#confirm-table", DataTable)
        table.add_columns("Size", "Path")
        for item in self.preview.samples:
            table.add_row(format_size(item.size), Text(item.path))
        if self.preview.more_count:
            table.add_row("", f"[dim]...and {self.preview.more_count} more[/dim]")

        lines = [
            f"\n[bold]Total: {format_size(self.preview.total_size)} in {self.preview.count} items[/bold]"
        ]
        for path in self.preview.blocked:
            lines.append(f"[red]Protected, will not delete: {path}[/red]")
        self.query_one("#confirm-total", Static).update("\n".join(lines))

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "btn-delete":
            self.action_confirm()
        else:
            self.action_cancel()

    def action_confirm(self) -> None:
        self.dismiss(True)

    def action_cancel(self) -> None:
        self.dismiss(False)
