"""One interactive session over a scan root.

Startup tries the cache and falls back to a scan; commands from the front
end are routed to the tree, the selection and the deletion engine; closing
waits for in-flight deletions and writes the final tree back to the cache.
"""

import threading
from pathlib import Path
from typing import Iterable, Optional

from loguru import logger

from dux import cache
from dux.analyzer import ComputedViews
from dux.cleaner import DeletionEngine, DeletionHandle, preview_deletion
from dux.config import Settings
from dux.errors import CacheError, DeletionInProgressError, DuxError, ScanError
from dux.models import (
    CacheMetadata,
    DeletionEvent,
    DeletionPreview,
    DeletionProgress,
    NodeKind,
    ScanConfig,
    ScanProgress,
    ScanStats,
    SessionStats,
    StaleThreshold,
)
from dux.scanner import Scanner, resolve_root
from dux.selection import Selection
from dux.tree import ROOT, DiskTree


class Session:
    """
    Presentation-facing facade over scanning, caching, selection and deletion.

    Example:
        session = Session("~/Projects")
        session.start()
        session.toggle_select(some_index)
        session.request_delete()
        session.close()
    """

    def __init__(
        self,
        root: Path | str,
        config: Optional[ScanConfig] = None,
        cache_dir: Path | str | None = None,
        use_cache: bool = True,
        settings: Optional[Settings] = None,
    ):
        self.root = resolve_root(root)
        self.config = config or ScanConfig()
        self.cache_dir = cache_dir
        self.use_cache = use_cache
        self.settings = settings or Settings()

        self.tree: Optional[DiskTree] = None
        self.scan_stats: Optional[ScanStats] = None
        self.cache_meta: Optional[CacheMetadata] = None
        self.loaded_from_cache = False
        self.scan_error: Optional[DuxError] = None

        self.selection = Selection()
        self.views = ComputedViews(self.settings.stale_threshold, self.settings.pattern_table())
        self.engine: Optional[DeletionEngine] = None

        self._scanner: Optional[Scanner] = None
        self._scan_thread: Optional[threading.Thread] = None
        self._modified = False

    # -------------------------------------------------------------------------
    # Startup
    # -------------------------------------------------------------------------

    @property
    def ready(self) -> bool:
        return self.tree is not None and not self.scanning

    @property
    def scanning(self) -> bool:
        return self._scan_thread is not None and self._scan_thread.is_alive()

    def start(self, scanner: Optional[Scanner] = None) -> DiskTree:
        """
        Load the tree from cache or scan it.

        Args:
            scanner: Scanner to use, so progress can be watched from outside

        Raises:
            ScanError: If the root cannot be scanned
        """
        if self.use_cache and not self.config.force_rescan:
            entry = cache.load_entry(self.root, self.config, self.cache_dir)
            if entry is not None:
                meta, tree = entry
                self.cache_meta = meta
                self._install(tree, self._stats_from_cache(tree), from_cache=True)
                logger.info("Loaded {} from cache", self.root)
                return tree

        tree, _ = self._scan(scanner)
        return tree

    def start_async(self) -> None:
        """Run :meth:`start` on a background thread; watch :meth:`scan_progress`."""
        if self.scanning:
            return
        self.scan_error = None
        self._scanner = Scanner(self.config)
        self._scan_thread = threading.Thread(
            target=self._start_in_background, name="dux-session-scan", daemon=True
        )
        self._scan_thread.start()

    def _start_in_background(self) -> None:
        try:
            self.start(self._scanner)
        except DuxError as e:
            logger.warning("Scan of {} failed: {}", self.root, e)
            self.scan_error = e
        except OSError as e:
            logger.warning("Scan of {} failed: {}", self.root, e)
            self.scan_error = ScanError(self.root, str(e))

    def wait_ready(self, timeout: Optional[float] = None) -> bool:
        if self._scan_thread is not None:
            self._scan_thread.join(timeout)
        return self.ready

    def scan_progress(self) -> Optional[ScanProgress]:
        return self._scanner.progress() if self._scanner is not None else None

    def cancel_scan(self) -> None:
        if self._scanner is not None:
            self._scanner.cancel()

    def request_rescan(self, background: bool = False) -> None:
        """
        Discard the current tree and scan again, ignoring the cache.

        Raises:
            DeletionInProgressError: If a deletion batch is still running
        """
        if self.engine is not None and self.engine.busy:
            raise DeletionInProgressError()
        self.config = self.config.model_copy(update={"force_rescan": True})
        if background:
            self.start_async()
        else:
            self.start()

    def _scan(self, scanner: Optional[Scanner] = None) -> tuple[DiskTree, ScanStats]:
        self._scanner = scanner or Scanner(self.config)
        tree, stats = self._scanner.scan(self.root)
        self.cache_meta = None
        self._install(tree, stats, from_cache=False)
        if self.use_cache:
            self._save()
        return tree, stats

    def _install(self, tree: DiskTree, stats: ScanStats, from_cache: bool) -> None:
        self.tree = tree
        self.scan_stats = stats
        self.loaded_from_cache = from_cache
        self.engine = DeletionEngine(tree)
        self.selection.clear()
        self.views.mark_dirty()
        self._modified = False

    def _stats_from_cache(self, tree: DiskTree) -> ScanStats:
        dirs = sum(1 for node in tree.iter_live() if node.kind is NodeKind.DIRECTORY) - 1
        skipped = sum(1 for node in tree.iter_live() if node.kind is NodeKind.SKIPPED)
        return ScanStats(
            root_path=str(self.root),
            bytes_scanned=tree.total_size,
            file_count=tree.total_files,
            dir_count=max(0, dirs),
            skipped=skipped,
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def require_tree(self) -> DiskTree:
        if self.tree is None:
            raise DuxError("No tree loaded yet")
        return self.tree

    @property
    def stats(self) -> SessionStats:
        return self.tree.stats if self.tree is not None else SessionStats()

    @property
    def modified(self) -> bool:
        return self._modified

    def visible_nodes(self, view_root: int = ROOT) -> list[int]:
        return self.tree.visible_nodes(view_root) if self.tree is not None else []

    def deletion_progress(self) -> Optional[DeletionProgress]:
        handle = self.engine.current if self.engine is not None else None
        return handle.progress() if handle is not None else None

    @property
    def deleting(self) -> bool:
        return self.engine is not None and self.engine.busy

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def expand(self, index: int) -> None:
        self.require_tree().set_expanded(index, True)

    def collapse(self, index: int) -> None:
        self.require_tree().set_expanded(index, False)

    def toggle_expanded(self, index: int) -> None:
        self.require_tree().toggle_expanded(index)

    def toggle_select(self, index: int) -> bool:
        return self.selection.toggle(index)

    def move_select(self, current: Optional[int], new: Optional[int]) -> None:
        self.selection.move_and_extend(current, new)

    def extend_select(self, index: int, ordered: Optional[list[int]] = None) -> None:
        self.selection.extend_to(index, ordered if ordered is not None else self.visible_nodes())

    def clear_select(self) -> None:
        self.selection.clear()

    def preview_delete(self, indices: Optional[Iterable[int]] = None) -> DeletionPreview:
        targets = self.selection.indices() if indices is None else list(indices)
        return preview_deletion(self.require_tree(), targets)

    def request_delete(self, indices: Optional[Iterable[int]] = None) -> DeletionHandle:
        """
        Delete ``indices`` (the selection when None) in the background.

        Raises:
            DeletionInProgressError: If a previous batch is still running
        """
        tree = self.require_tree()
        targets = self.selection.indices() if indices is None else list(indices)
        handle = self.engine.delete(targets)
        if handle.preview.items:
            self._modified = True
        self.selection.prune(tree)
        if indices is None:
            self.selection.clear()
        self.views.mark_dirty()
        return handle

    def poll(self) -> list[DeletionEvent]:
        """Drain deletion events; the computed views go dirty if any arrived."""
        handle = self.engine.current if self.engine is not None else None
        if handle is None:
            return []
        events = handle.events()
        if events:
            self.views.mark_dirty()
        return events

    def cycle_stale_threshold(self) -> StaleThreshold:
        return self.views.cycle_threshold()

    # -------------------------------------------------------------------------
    # Shutdown
    # -------------------------------------------------------------------------

    def close(self, save: bool = True) -> Optional[Path]:
        """
        End the session.

        In-flight deletions run to completion first so the saved tree matches
        the disk. A scan still running is cancelled and nothing is saved.

        Returns:
            Path of the written cache file, if one was written
        """
        if self.scanning:
            self.cancel_scan()
            self._scan_thread.join()
            return None

        if self.engine is not None:
            self.engine.wait()

        if save and self.use_cache and self.tree is not None and self._modified:
            return self._save()
        return None

    def _save(self) -> Optional[Path]:
        try:
            path = cache.save(self.tree, self.root, self.config, self.cache_dir)
        except CacheError as e:
            logger.warning("{}", e)
            return None
        self._modified = False
        return path
