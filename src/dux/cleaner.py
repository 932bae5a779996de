"""Deletion with safety checks and background execution for dux."""

import os
import queue
import shutil
import stat
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Iterable, Optional

from loguru import logger

from dux.errors import DeletionInProgressError
from dux.models import (
    DeletionEvent,
    DeletionFailure,
    DeletionItem,
    DeletionPreview,
    DeletionProgress,
)
from dux.scanner import allocated_size
from dux.tree import ROOT, DiskTree

# Paths that should NEVER be deleted
BLOCKED_PATHS = [
    "/",
    "~",
]

DEFAULT_DELETE_WORKERS = 8


def is_path_safe(path: Path | str) -> bool:
    """
    Check if a path is safe to delete.

    Args:
        path: Path to check

    Returns:
        True if safe to delete, False otherwise
    """
    path_str = str(Path(path).expanduser())
    for blocked in BLOCKED_PATHS:
        if path_str == str(Path(blocked).expanduser()):
            return False
    return True


def _disk_usage(path: Path) -> int:
    total = 0
    for dirpath, dirnames, filenames in os.walk(path):
        for name in dirnames + filenames:
            try:
                total += allocated_size(os.lstat(os.path.join(dirpath, name)))
            except OSError:
                continue
    return total


def delete_path(path: Path | str, known_size: Optional[int] = None) -> tuple[int, str | None]:
    """
    Delete a path (file, symlink or directory tree).

    A path that no longer exists counts as deleted.

    Args:
        path: Path to delete
        known_size: Size already known to the caller; measured when None

    Returns:
        Tuple of (bytes_freed, error_message)
    """
    path = Path(path)
    try:
        st = os.lstat(path)
    except FileNotFoundError:
        return 0, None
    except OSError as e:
        return 0, f"OS error: {e}"

    try:
        if stat.S_ISLNK(st.st_mode):
            # Only the link goes away, whatever the tree counted behind it
            size = allocated_size(st)
            path.unlink()
        elif stat.S_ISDIR(st.st_mode):
            size = known_size if known_size is not None else _disk_usage(path)
            shutil.rmtree(path)
        else:
            size = known_size if known_size is not None else allocated_size(st)
            path.unlink()
        return size, None

    except FileNotFoundError:
        return 0, None
    except PermissionError as e:
        return 0, f"Permission denied: {e}"
    except OSError as e:
        return 0, f"OS error: {e}"


def top_level_indices(tree: DiskTree, indices: Iterable[int]) -> list[int]:
    """
    Drop the root, dead indices and anything whose ancestor is also requested.

    Order of first appearance is kept.
    """
    requested: list[int] = []
    seen: set[int] = set()
    for index in indices:
        if index == ROOT or index in seen or not tree.is_live(index):
            continue
        seen.add(index)
        requested.append(index)

    return [
        index
        for index in requested
        if not any(ancestor in seen for ancestor in tree.ancestors(index))
    ]


def preview_deletion(tree: DiskTree, indices: Iterable[int]) -> DeletionPreview:
    """
    Dry-run summary of a deletion request.

    Args:
        tree: Tree the indices refer to
        indices: Requested node indices

    Returns:
        DeletionPreview with the deduplicated items and any blocked paths
    """
    preview = DeletionPreview()
    with tree.lock:
        for index in top_level_indices(tree, indices):
            node = tree.get(index)
            path = tree.path_of(index)
            if node is None or path is None:
                continue
            if not is_path_safe(path):
                preview.blocked.append(str(path))
                continue
            preview.items.append(
                DeletionItem(
                    index=index,
                    path=str(path),
                    size=node.size,
                    is_directory=node.is_directory,
                    parent=node.parent,
                )
            )
    return preview


class DeletionHandle:
    """
    Observes one background deletion batch.

    Workers report through a queue; the interactive loop drains it with
    :meth:`events` and reads :meth:`progress` without ever blocking.
    """

    def __init__(self, preview: DeletionPreview):
        self.preview = preview
        self._progress = DeletionProgress(total=preview.count)
        self._lock = threading.Lock()
        self._events: "queue.Queue[DeletionEvent]" = queue.Queue()
        self._finished = threading.Event()
        for path in preview.blocked:
            self._progress.failures.append(
                DeletionFailure(path=path, error="Refusing to delete a protected path")
            )
        if self._progress.done:
            self._finished.set()

    @property
    def done(self) -> bool:
        return self._finished.is_set()

    def progress(self) -> DeletionProgress:
        with self._lock:
            return self._progress.model_copy(deep=True)

    def events(self) -> list[DeletionEvent]:
        """Drain all events received so far."""
        drained = []
        while True:
            try:
                drained.append(self._events.get_nowait())
            except queue.Empty:
                return drained

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the batch finishes. Returns False on timeout."""
        return self._finished.wait(timeout)

    def _record(self, event: DeletionEvent) -> None:
        with self._lock:
            self._progress.completed += 1
            if event.succeeded:
                self._progress.bytes_freed += event.size
            else:
                self._progress.failures.append(DeletionFailure(path=event.path, error=event.error))
            finished = self._progress.done
        self._events.put(event)
        if finished:
            self._finished.set()


class DeletionEngine:
    """
    Deletes tree entries from the model first and from disk in the background.

    Example:
        engine = DeletionEngine(tree)
        handle = engine.delete([selected_index])
        handle.wait()
    """

    def __init__(self, tree: DiskTree, max_workers: int = DEFAULT_DELETE_WORKERS):
        self.tree = tree
        self.max_workers = max_workers
        self.failures: list[DeletionFailure] = []
        self._current: Optional[DeletionHandle] = None
        self._lock = threading.Lock()

    @property
    def busy(self) -> bool:
        with self._lock:
            return self._current is not None and not self._current.done

    @property
    def current(self) -> Optional[DeletionHandle]:
        return self._current

    def delete(self, indices: Iterable[int]) -> DeletionHandle:
        """
        Start deleting ``indices``.

        Every top-level item is tombstoned in the tree before any filesystem
        work begins; a failed removal is reported but the node stays removed.

        Args:
            indices: Node indices, possibly nested or including the root

        Returns:
            Handle for observing the batch

        Raises:
            DeletionInProgressError: If a previous batch is still running
        """
        with self._lock:
            if self._current is not None and not self._current.done:
                raise DeletionInProgressError()

            with self.tree.lock:
                preview = preview_deletion(self.tree, indices)
                handle = DeletionHandle(preview)
                for item in preview.items:
                    self.tree.remove_node(item.index)
            self._current = handle

        self.failures.extend(handle.progress().failures)
        if not preview.items:
            return handle

        logger.info("Deleting {} items ({} bytes)", preview.count, preview.total_size)
        executor = ThreadPoolExecutor(
            max_workers=min(self.max_workers, preview.count), thread_name_prefix="dux-delete"
        )
        for item in preview.items:
            executor.submit(self._run, handle, item)
        # Workers are not daemons; they finish even if the caller exits
        executor.shutdown(wait=False)
        return handle

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait for the current batch, if any."""
        handle = self._current
        return handle.wait(timeout) if handle is not None else True

    def _run(self, handle: DeletionHandle, item: DeletionItem) -> None:
        freed, error = delete_path(item.path, known_size=item.size)
        if error:
            logger.warning("Failed to delete {}: {}", item.path, error)
            with self._lock:
                self.failures.append(DeletionFailure(path=item.path, error=error))
        else:
            logger.debug("Deleted {} ({} bytes)", item.path, freed)
            self._refresh_parent_mtime(item)
        handle._record(DeletionEvent(index=item.index, path=item.path, size=freed, error=error))

    def _refresh_parent_mtime(self, item: DeletionItem) -> None:
        """Record the parent's new mtime so a saved cache still matches the disk."""
        if item.parent is None:
            return
        # Stat under the lock so the last writer always sees every removal
        with self.tree.lock:
            parent = self.tree.get(item.parent)
            path = self.tree.path_of(item.parent)
            if parent is None or path is None:
                return
            try:
                parent.mtime = os.stat(path).st_mtime
            except OSError as e:
                logger.debug("Cannot stat {}: {}", path, e)
