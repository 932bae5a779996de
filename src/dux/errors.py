"""Exception types for dux."""

from pathlib import Path


class DuxError(Exception):
    """Base class for all dux errors."""


class ScanError(DuxError):
    """A scan could not be performed at all (the root itself is unusable)."""

    def __init__(self, path: Path | str, message: str | None = None):
        self.path = Path(path)
        super().__init__(message or f"Cannot scan {self.path}")


class RootNotFoundError(ScanError):
    def __init__(self, path: Path | str):
        super().__init__(path, f"Path does not exist: {path}")


class NotADirectoryScanError(ScanError):
    def __init__(self, path: Path | str):
        super().__init__(path, f"Path is not a directory: {path}")


class RootPermissionError(ScanError):
    def __init__(self, path: Path | str):
        super().__init__(path, f"Permission denied: {path}")


class ScanCancelled(ScanError):
    def __init__(self, path: Path | str):
        super().__init__(path, f"Scan was cancelled: {path}")


class CacheError(DuxError):
    """Structural or integrity problem with a cache file."""


class DeletionError(DuxError):
    """Problem with a deletion request as a whole."""


class DeletionInProgressError(DeletionError):
    def __init__(self) -> None:
        super().__init__("A deletion batch is already in progress")


class InvalidParent(DuxError, ValueError):
    """Parent index is out of range, tombstoned, or not a directory."""

    def __init__(self, index: int, reason: str = "invalid parent"):
        self.index = index
        super().__init__(f"Invalid parent {index}: {reason}")


class RootRemovalError(DuxError, IndexError):
    """The root node can never be removed."""

    def __init__(self) -> None:
        super().__init__("The root node cannot be removed")
