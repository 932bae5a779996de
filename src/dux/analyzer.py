"""Derived views over a scanned tree: large files and build artifacts."""

import time
from typing import Optional

from dux.categories import DEFAULT_PATTERN_TABLE
from dux.display import size_percentage
from dux.models import ArtifactEntry, LargeFileEntry, NodeKind, StaleThreshold
from dux.tree import ROOT, DiskTree


def find_large_files(tree: DiskTree, limit: Optional[int] = None) -> list[LargeFileEntry]:
    """
    All files in the tree, largest first.

    Args:
        tree: Tree to search
        limit: Keep only the first N entries

    Returns:
        List of LargeFileEntry
    """
    with tree.lock:
        total = tree.total_size
        entries = [
            LargeFileEntry(
                index=node.index,
                relative_path=tree.relative_path_of(node.index),
                size=node.size,
                percentage=size_percentage(node.size, total),
            )
            for node in tree.iter_live()
            if node.kind is NodeKind.FILE
        ]

    entries.sort(key=lambda e: e.size, reverse=True)
    return entries[:limit] if limit is not None else entries


def classify_artifact(name: str, patterns: Optional[dict[str, str]] = None) -> Optional[str]:
    """Artifact label for a directory name, or None if it is not an artifact."""
    table = DEFAULT_PATTERN_TABLE if patterns is None else patterns
    return table.get(name)


def newest_descendant_mtime(tree: DiskTree, index: int) -> Optional[float]:
    """Most recent mtime among ``index`` and every directory below it."""
    newest = None
    stack = [index]
    while stack:
        node = tree.get(stack.pop())
        if node is None or not node.is_directory:
            continue
        if node.mtime is not None and (newest is None or node.mtime > newest):
            newest = node.mtime
        stack.extend(node.children)
    return newest


def is_stale(newest_mtime: Optional[float], threshold: StaleThreshold, now: float) -> bool:
    duration = threshold.duration
    if duration is None:
        return True
    if newest_mtime is None:
        return False
    return now - newest_mtime > duration.total_seconds()


def find_build_artifacts(
    tree: DiskTree,
    threshold: StaleThreshold = StaleThreshold.SEVEN_DAYS,
    patterns: Optional[dict[str, str]] = None,
    now: Optional[float] = None,
) -> list[ArtifactEntry]:
    """
    Directories that look like regenerable build output, largest first.

    An artifact nested inside another artifact (``target/debug/build``) is
    not reported on its own; the outermost match covers it.

    Args:
        tree: Tree to search
        threshold: Age after which an artifact is flagged stale
        patterns: Directory name to label table (defaults to the built-in one)
        now: Reference time in epoch seconds (defaults to the current time)

    Returns:
        List of ArtifactEntry
    """
    now = time.time() if now is None else now
    entries = []
    with tree.lock:
        total = tree.total_size
        for node in tree.iter_live():
            if node.index == ROOT or not node.is_directory:
                continue
            label = classify_artifact(node.name, patterns)
            if label is None:
                continue
            if any(
                ancestor != ROOT and classify_artifact(tree.get(ancestor).name, patterns)
                for ancestor in tree.ancestors(node.index)
            ):
                continue

            newest = newest_descendant_mtime(tree, node.index)
            entries.append(
                ArtifactEntry(
                    index=node.index,
                    relative_path=tree.relative_path_of(node.index),
                    size=node.size,
                    percentage=size_percentage(node.size, total),
                    category=label,
                    newest_mtime=newest,
                    is_stale=is_stale(newest, threshold, now),
                )
            )

    entries.sort(key=lambda e: e.size, reverse=True)
    return entries


def restale(
    entries: list[ArtifactEntry], threshold: StaleThreshold, now: Optional[float] = None
) -> None:
    """Recompute staleness flags in place without looking at the tree."""
    now = time.time() if now is None else now
    for entry in entries:
        entry.is_stale = is_stale(entry.newest_mtime, threshold, now)


class ComputedViews:
    """Large files and build artifacts, rebuilt only when the tree changes."""

    def __init__(
        self,
        stale_threshold: StaleThreshold = StaleThreshold.SEVEN_DAYS,
        patterns: Optional[dict[str, str]] = None,
    ):
        self.large_files: list[LargeFileEntry] = []
        self.build_artifacts: list[ArtifactEntry] = []
        self.stale_threshold = stale_threshold
        self.patterns = patterns
        self.dirty = True

    def rebuild(self, tree: DiskTree, now: Optional[float] = None) -> None:
        self.large_files = find_large_files(tree)
        self.build_artifacts = find_build_artifacts(
            tree, self.stale_threshold, self.patterns, now
        )
        self.dirty = False

    def ensure(self, tree: DiskTree) -> None:
        if self.dirty:
            self.rebuild(tree)

    def mark_dirty(self) -> None:
        self.dirty = True

    def cycle_threshold(self, now: Optional[float] = None) -> StaleThreshold:
        """Advance to the next threshold, touching only the staleness flags."""
        self.stale_threshold = self.stale_threshold.next()
        restale(self.build_artifacts, self.stale_threshold, now)
        return self.stale_threshold
