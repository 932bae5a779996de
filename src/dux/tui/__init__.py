"""Textual browser for dux."""

from dux.tui.app import DuxApp, run_tui

__all__ = ["DuxApp", "run_tui"]
