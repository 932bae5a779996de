"""Main TUI application for dux."""

from textual.app import App
from textual.binding import Binding

from dux.session import Session
from dux.tui.screens import BrowserScreen


class DuxApp(App):
    """Interactive disk usage browser."""

    TITLE = "dux"
    SUB_TITLE = "Disk Usage Explorer"

    CSS_PATH = "styles.tcss"

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("?", "help", "Help"),
    ]

    def __init__(self, session: Session):
        super().__init__()
        self.session = session

    def on_mount(self) -> None:
        """Called when the app is mounted."""
        if self.session.tree is None and not self.session.scanning:
            self.session.start_async()
        self.push_screen(BrowserScreen())

    def action_help(self) -> None:
        """Show help information."""
        self.notify(
            "Arrows to move, Enter/Right to expand, Left to collapse, Space to select, "
            "Shift+Arrows/PgUp/PgDn to extend, Esc to clear, D to delete, Tab to switch view, "
            "S to cycle stale threshold, R to rescan, Q to quit",
            title="Help",
            timeout=8,
        )


def run_tui(session: Session) -> None:
    """Run the interactive browser.

    Closing the session afterwards is left to the caller so pending
    deletions can finish outside the full-screen interface.

    Args:
        session: Session to browse (started in the background if needed)
    """
    app = DuxApp(session)
    app.run()
