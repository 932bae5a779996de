"""Parallel filesystem walker that builds a DiskTree.

Directory listings run on a ThreadPoolExecutor. Results are merged into the
tree by the thread that called :meth:`Scanner.scan`, so the arena only ever has
one writer during the build. Before a directory is listed its metadata is
probed with a bounded wait; a probe that does not come back in time (hung
network or FUSE mount) marks the directory as skipped instead of stalling the
whole scan.
"""

import os
import queue
import stat
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from loguru import logger

from dux.categories import get_skip_patterns
from dux.errors import (
    NotADirectoryScanError,
    RootNotFoundError,
    RootPermissionError,
    ScanCancelled,
    ScanError,
)
from dux.models import NodeKind, ScanConfig, ScanProgress, ScanStats, SkipReason
from dux.tree import ROOT, DiskTree

# Minimum seconds between progress callbacks
PROGRESS_INTERVAL = 0.1


def allocated_size(st: os.stat_result) -> int:
    """
    Bytes actually allocated on disk for an entry.

    Falls back to the apparent size on platforms without ``st_blocks``.
    """
    blocks = getattr(st, "st_blocks", None)
    if blocks is None:
        return st.st_size
    return blocks * 512


def probe_stat(path: str) -> os.stat_result:
    """Metadata probe issued before a directory is listed."""
    return os.stat(path)


def is_skipped_path(path: Path | str, root: Path | str, patterns: list[str]) -> bool:
    """
    Check whether a directory matches the skip list.

    Patterns that also match the scan root are ignored, so a scan started
    inside a skipped location still descends.
    """
    path_str = f"{path}/"
    root_str = f"{root}/"
    if path_str == root_str:
        return False
    return any(pattern in path_str and pattern not in root_str for pattern in patterns)


def resolve_root(root: Path | str) -> Path:
    """
    Validate and normalise a scan root.

    Raises:
        RootNotFoundError: If the path does not exist
        NotADirectoryScanError: If the path is not a directory
        RootPermissionError: If the path cannot be read
    """
    path = Path(root).expanduser()
    try:
        path = path.resolve(strict=True)
    except FileNotFoundError:
        raise RootNotFoundError(path) from None
    except PermissionError:
        raise RootPermissionError(path) from None
    except OSError as e:
        raise ScanError(path, f"Cannot resolve {path}: {e}") from e

    if not path.is_dir():
        raise NotADirectoryScanError(path)
    if not os.access(path, os.R_OK | os.X_OK):
        raise RootPermissionError(path)
    return path


class _ProbeRequest:
    __slots__ = ("path", "done", "result", "error")

    def __init__(self, path: str):
        self.path = path
        self.done = threading.Event()
        self.result: Optional[os.stat_result] = None
        self.error: Optional[OSError] = None


class MetadataProber:
    """
    Runs metadata probes on daemon threads.

    A probe stuck in the kernel cannot be interrupted, so a timed-out worker
    is abandoned and a replacement is started in its place. Daemon threads
    never hold up interpreter exit.
    """

    def __init__(self, workers: int):
        self._requests: "queue.Queue[Optional[_ProbeRequest]]" = queue.Queue()
        self._lock = threading.Lock()
        self._threads = 0
        for _ in range(max(1, workers)):
            self._spawn()

    @property
    def thread_count(self) -> int:
        with self._lock:
            return self._threads

    def _spawn(self) -> None:
        with self._lock:
            self._threads += 1
        worker = threading.Thread(target=self._worker, name="dux-probe", daemon=True)
        worker.start()

    def _worker(self) -> None:
        while True:
            request = self._requests.get()
            if request is None:
                return
            try:
                request.result = probe_stat(request.path)
            except OSError as e:
                request.error = e
            request.done.set()

    def probe(self, path: str, timeout: float) -> Optional[os.stat_result]:
        """
        Stat ``path`` with a bounded wait.

        Returns:
            The stat result, or None if the probe timed out

        Raises:
            OSError: If the probe itself failed
        """
        request = _ProbeRequest(path)
        self._requests.put(request)
        if not request.done.wait(timeout):
            self._spawn()
            return None
        if request.error is not None:
            raise request.error
        return request.result

    def close(self) -> None:
        # Stuck workers never read their sentinel; they die with the process
        for _ in range(self.thread_count):
            self._requests.put(None)


@dataclass
class _Entry:
    name: str
    kind: NodeKind
    size: int
    mtime: Optional[float]
    dev: int
    ino: int
    broken: bool = False


@dataclass
class _Listing:
    entries: list[_Entry] = field(default_factory=list)
    errors: int = 0
    timed_out: bool = False


class Scanner:
    """
    Walks a directory tree in parallel.

    Example:
        scanner = Scanner(ScanConfig(max_depth=3))
        tree, stats = scanner.scan("~/Projects")
    """

    def __init__(
        self,
        config: Optional[ScanConfig] = None,
        progress_callback: Optional[Callable[[ScanProgress], None]] = None,
    ):
        self.config = config or ScanConfig()
        self.progress_callback = progress_callback
        self._progress = ScanProgress()
        self._progress_lock = threading.Lock()
        self._cancelled = threading.Event()
        self._last_report = 0.0
        self._visited: set[tuple[int, int]] = set()
        self._patterns = get_skip_patterns(
            self.config.skip_patterns, self.config.extra_skip_patterns
        )

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def progress(self) -> ScanProgress:
        """Snapshot of the running (or finished) scan."""
        with self._progress_lock:
            return self._progress.model_copy()

    def cancel(self) -> None:
        """Ask a running scan to stop; :meth:`scan` then raises ScanCancelled."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def scan(self, root: Path | str) -> tuple[DiskTree, ScanStats]:
        """
        Build a tree for ``root``.

        Args:
            root: Directory to scan

        Returns:
            Tuple of (tree, stats)

        Raises:
            ScanError: If the root is missing, not a directory or unreadable
            ScanCancelled: If :meth:`cancel` was called during the scan
        """
        started = time.monotonic()
        root_path = resolve_root(root)
        root_stat = os.stat(root_path)
        root_dev = root_stat.st_dev
        self._visited = {(root_stat.st_dev, root_stat.st_ino)}
        self._progress = ScanProgress(current_path=str(root_path))

        logger.info(
            "Scanning {} (workers={}, max_depth={})",
            root_path,
            self.config.effective_workers,
            self.config.max_depth,
        )

        tree = DiskTree(root_path, root_mtime=root_stat.st_mtime)
        prober = MetadataProber(self.config.effective_workers)
        executor = ThreadPoolExecutor(
            max_workers=self.config.effective_workers, thread_name_prefix="dux-scan"
        )
        pending: dict[Future, tuple[int, Path, int]] = {}

        def submit(index: int, path: Path, depth: int) -> None:
            future = executor.submit(self._read_directory, prober, str(path))
            pending[future] = (index, path, depth)

        try:
            if self.config.max_depth != 0:
                try:
                    listing = self._read_directory(prober, str(root_path))
                except PermissionError:
                    raise RootPermissionError(root_path) from None
                except OSError as e:
                    raise ScanError(root_path, f"Cannot list {root_path}: {e}") from e
                if listing.timed_out:
                    raise ScanError(
                        root_path,
                        f"{root_path} did not respond within {self.config.probe_timeout}s",
                    )
                self._merge(tree, ROOT, root_path, 0, listing, root_dev, submit)

            while pending:
                if self._cancelled.is_set():
                    raise ScanCancelled(root_path)
                done, _ = wait(list(pending), timeout=PROGRESS_INTERVAL, return_when=FIRST_COMPLETED)
                for future in done:
                    index, path, depth = pending.pop(future)
                    try:
                        listing = future.result()
                    except OSError as e:
                        logger.debug("Cannot list {}: {}", path, e)
                        self._mark_skipped(tree, index, SkipReason.ERROR)
                        self._bump(errors=1)
                        continue
                    if listing.timed_out:
                        logger.warning(
                            "Skipping {}: no response within {}s", path, self.config.probe_timeout
                        )
                        self._mark_skipped(tree, index, SkipReason.TIMEOUT)
                        self._bump(skipped=1)
                        continue
                    self._merge(tree, index, path, depth, listing, root_dev, submit)
                self._report()

            if self._cancelled.is_set():
                raise ScanCancelled(root_path)
        except ScanCancelled:
            logger.info("Scan of {} cancelled", root_path)
            raise
        finally:
            executor.shutdown(wait=True, cancel_futures=True)
            prober.close()

        with self._progress_lock:
            self._progress.finalizing = True
        self._report(force=True)

        tree.aggregate_sizes()
        tree.sort_by_size()

        progress = self.progress()
        stats = ScanStats(
            root_path=str(root_path),
            bytes_scanned=tree.total_size,
            file_count=progress.files_scanned,
            dir_count=progress.dirs_scanned,
            errors=progress.errors,
            skipped=progress.skipped,
            elapsed_seconds=time.monotonic() - started,
        )

        with self._progress_lock:
            self._progress.finalizing = False
            self._progress.done = True
        self._report(force=True)

        logger.info(
            "Scanned {}: {} files, {} dirs, {} bytes, {} errors, {} skipped in {:.2f}s",
            root_path,
            stats.file_count,
            stats.dir_count,
            stats.bytes_scanned,
            stats.errors,
            stats.skipped,
            stats.elapsed_seconds,
        )
        return tree, stats

    # -------------------------------------------------------------------------
    # Worker side
    # -------------------------------------------------------------------------

    def _read_directory(self, prober: MetadataProber, path: str) -> _Listing:
        """List one directory. Runs on a pool thread; never touches the tree."""
        if self._cancelled.is_set():
            return _Listing()
        if prober.probe(path, self.config.probe_timeout) is None:
            return _Listing(timed_out=True)

        listing = _Listing()
        with os.scandir(path) as entries:
            for entry in entries:
                try:
                    listing.entries.append(self._describe(entry))
                except OSError as e:
                    logger.debug("Cannot stat {}: {}", entry.path, e)
                    listing.errors += 1
        return listing

    def _describe(self, entry: os.DirEntry) -> _Entry:
        if entry.is_symlink():
            link_stat = entry.stat(follow_symlinks=False)
            if not self.config.follow_symlinks:
                return _Entry(
                    entry.name,
                    NodeKind.SYMLINK,
                    allocated_size(link_stat),
                    link_stat.st_mtime,
                    link_stat.st_dev,
                    link_stat.st_ino,
                )
            try:
                st = entry.stat(follow_symlinks=True)
            except OSError:
                return _Entry(
                    entry.name,
                    NodeKind.SYMLINK,
                    allocated_size(link_stat),
                    link_stat.st_mtime,
                    link_stat.st_dev,
                    link_stat.st_ino,
                    broken=True,
                )
        else:
            st = entry.stat(follow_symlinks=False)

        if stat.S_ISDIR(st.st_mode):
            return _Entry(entry.name, NodeKind.DIRECTORY, 0, st.st_mtime, st.st_dev, st.st_ino)
        return _Entry(
            entry.name, NodeKind.FILE, allocated_size(st), st.st_mtime, st.st_dev, st.st_ino
        )

    # -------------------------------------------------------------------------
    # Coordinator side
    # -------------------------------------------------------------------------

    def _merge(
        self,
        tree: DiskTree,
        index: int,
        path: Path,
        depth: int,
        listing: _Listing,
        root_dev: int,
        submit: Callable[[int, Path, int], None],
    ) -> None:
        files = dirs = skipped = 0
        errors = listing.errors
        bytes_found = 0
        child_depth = depth + 1
        max_depth = self.config.max_depth

        for entry in listing.entries:
            if entry.broken:
                logger.debug("Broken symlink {}", path / entry.name)
                errors += 1

            if entry.kind is not NodeKind.DIRECTORY:
                tree.insert_child(index, entry.name, entry.kind, size=entry.size, mtime=entry.mtime)
                if entry.kind is NodeKind.FILE:
                    files += 1
                bytes_found += entry.size
                continue

            child_path = path / entry.name
            reason = self._skip_reason(child_path, entry, tree.root_path, root_dev)
            if reason is not None:
                logger.debug("Skipping {} ({})", child_path, reason.value)
                tree.insert_child(
                    index, entry.name, NodeKind.SKIPPED, mtime=entry.mtime, skip_reason=reason
                )
                skipped += 1
                continue

            key = (entry.dev, entry.ino)
            if self.config.follow_symlinks and key in self._visited:
                # Already reached through another link
                tree.insert_child(index, entry.name, NodeKind.SYMLINK, mtime=entry.mtime)
                continue
            self._visited.add(key)

            child = tree.insert_child(index, entry.name, NodeKind.DIRECTORY, mtime=entry.mtime)
            dirs += 1
            if max_depth is None or child_depth < max_depth:
                submit(child, child_path, child_depth)

        self._bump(
            files=files,
            dirs=dirs,
            bytes_found=bytes_found,
            errors=errors,
            skipped=skipped,
            current_path=str(path),
        )

    def _skip_reason(
        self, path: Path, entry: _Entry, root: Path, root_dev: int
    ) -> Optional[SkipReason]:
        if is_skipped_path(path, root, self._patterns):
            return SkipReason.PATTERN
        if not self.config.cross_filesystems and entry.dev != root_dev:
            return SkipReason.MOUNT
        return None

    def _mark_skipped(self, tree: DiskTree, index: int, reason: SkipReason) -> None:
        node = tree.get(index)
        if node is not None:
            node.kind = NodeKind.SKIPPED
            node.skip_reason = reason
        # Counted as a directory when queued; it was never listed
        self._bump(dirs=-1)

    def _bump(
        self,
        files: int = 0,
        dirs: int = 0,
        bytes_found: int = 0,
        errors: int = 0,
        skipped: int = 0,
        current_path: Optional[str] = None,
    ) -> None:
        with self._progress_lock:
            self._progress.files_scanned += files
            self._progress.dirs_scanned += dirs
            self._progress.bytes_scanned += bytes_found
            self._progress.errors += errors
            self._progress.skipped += skipped
            if current_path is not None:
                self._progress.current_path = current_path

    def _report(self, force: bool = False) -> None:
        if self.progress_callback is None:
            return
        now = time.monotonic()
        if not force and now - self._last_report < PROGRESS_INTERVAL:
            return
        self._last_report = now
        self.progress_callback(self.progress())


def scan(
    root: Path | str,
    config: Optional[ScanConfig] = None,
    progress_callback: Optional[Callable[[ScanProgress], None]] = None,
) -> tuple[DiskTree, ScanStats]:
    """Scan ``root`` with a one-off :class:`Scanner`."""
    return Scanner(config, progress_callback).scan(root)
