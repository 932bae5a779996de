"""Arena-backed disk usage tree.

Every node lives in one flat list and refers to its parent and children by
integer index. Removing a node replaces its slot with ``None`` (a tombstone)
so indices held elsewhere stay valid for the rest of the session; slots are
only reclaimed when the tree is compacted for saving.
"""

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional

from dux.errors import InvalidParent, RootRemovalError
from dux.models import NodeKind, SessionStats, SkipReason

ROOT = 0


@dataclass(slots=True)
class TreeNode:
    """A single filesystem entry."""

    index: int
    name: str
    kind: NodeKind
    parent: Optional[int]
    size: int = 0
    file_count: int = 0
    mtime: Optional[float] = None
    skip_reason: Optional[SkipReason] = None
    expanded: bool = False
    children: list[int] = field(default_factory=list)

    @property
    def is_directory(self) -> bool:
        return self.kind.is_directory

    @property
    def is_skipped(self) -> bool:
        return self.kind is NodeKind.SKIPPED

    @property
    def has_children(self) -> bool:
        return bool(self.children)

    @property
    def is_expandable(self) -> bool:
        return self.kind is NodeKind.DIRECTORY and bool(self.children)


class DiskTree:
    """Hierarchical size model over an arena of optional nodes."""

    def __init__(self, root_path: Path | str, root_mtime: Optional[float] = None):
        self.root_path = Path(root_path)
        root = TreeNode(
            index=ROOT,
            name=self.root_path.name or str(self.root_path),
            kind=NodeKind.DIRECTORY,
            parent=None,
            mtime=root_mtime,
            expanded=True,
        )
        self._nodes: list[Optional[TreeNode]] = [root]
        self.stats = SessionStats()
        # Serializes mutations; readers take it for consistent snapshots
        self.lock = threading.RLock()

    def __len__(self) -> int:
        """Number of slots, tombstones included."""
        return len(self._nodes)

    def __repr__(self) -> str:
        return f"DiskTree({str(self.root_path)!r}, live={self.live_count()}, size={self.total_size})"

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    def insert_child(
        self,
        parent: int,
        name: str,
        kind: NodeKind,
        size: int = 0,
        mtime: Optional[float] = None,
        skip_reason: Optional[SkipReason] = None,
    ) -> int:
        """
        Append a new live node under ``parent``.

        Sizes are not propagated here; call :meth:`aggregate_sizes` once the
        build is complete.

        Args:
            parent: Index of a live directory node
            name: Path segment of the new entry
            kind: Entry type
            size: Size in bytes (files and symlinks)
            mtime: Modification time, if known
            skip_reason: Why a skipped directory was not descended

        Returns:
            Index of the new node

        Raises:
            InvalidParent: If parent is out of range, tombstoned or not a directory
        """
        with self.lock:
            if parent < 0 or parent >= len(self._nodes):
                raise InvalidParent(parent, "out of range")
            parent_node = self._nodes[parent]
            if parent_node is None:
                raise InvalidParent(parent, "tombstoned")
            if parent_node.kind is not NodeKind.DIRECTORY:
                raise InvalidParent(parent, f"not a directory ({parent_node.kind.value})")

            index = len(self._nodes)
            node = TreeNode(
                index=index,
                name=name,
                kind=kind,
                parent=parent,
                size=size,
                file_count=1 if kind is NodeKind.FILE else 0,
                mtime=mtime,
                skip_reason=skip_reason,
            )
            self._nodes.append(node)
            parent_node.children.append(index)
            return index

    def aggregate_sizes(self) -> None:
        """Recompute every directory's size and file count from its children."""
        with self.lock:
            # Children always have higher indices than their parents
            for node in reversed(self._nodes):
                if node is None or node.kind is not NodeKind.DIRECTORY:
                    continue
                total_size = 0
                total_files = 0
                for child_index in node.children:
                    child = self._nodes[child_index]
                    if child is not None:
                        total_size += child.size
                        total_files += child.file_count
                node.size = total_size
                node.file_count = total_files

    def sort_by_size(self) -> None:
        """Order every child list by size, largest first."""
        with self.lock:
            for node in self._nodes:
                if node is not None and node.children:
                    node.children.sort(key=lambda i: (-self._size(i), self._name(i)))

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, index: int) -> Optional[TreeNode]:
        """Node at ``index``, or None when out of range or tombstoned."""
        if 0 <= index < len(self._nodes):
            return self._nodes[index]
        return None

    @property
    def root(self) -> TreeNode:
        node = self._nodes[ROOT]
        assert node is not None, "root node must exist"
        return node

    def is_live(self, index: int) -> bool:
        return self.get(index) is not None

    def size_of(self, index: int) -> int:
        with self.lock:
            return self._size(index)

    def kind_of(self, index: int) -> Optional[NodeKind]:
        node = self.get(index)
        return node.kind if node else None

    def children_of(self, index: int) -> list[int]:
        with self.lock:
            node = self.get(index)
            return list(node.children) if node else []

    def ancestors(self, index: int) -> list[int]:
        """Indices from the parent of ``index`` up to the root."""
        result = []
        node = self.get(index)
        while node is not None and node.parent is not None:
            result.append(node.parent)
            node = self.get(node.parent)
        return result

    def depth_of(self, index: int) -> int:
        return len(self.ancestors(index))

    def path_of(self, index: int) -> Optional[Path]:
        """Full filesystem path, rebuilt from parent links."""
        node = self.get(index)
        if node is None:
            return None
        parts = []
        while node is not None and node.parent is not None:
            parts.append(node.name)
            node = self.get(node.parent)
        return self.root_path.joinpath(*reversed(parts))

    def relative_path_of(self, index: int) -> Optional[str]:
        path = self.path_of(index)
        if path is None:
            return None
        if index == ROOT:
            return "."
        return str(path.relative_to(self.root_path))

    def find_by_path(self, path: Path | str) -> Optional[int]:
        """Index of the live node at ``path``, if any."""
        try:
            relative = Path(path).relative_to(self.root_path)
        except ValueError:
            return None

        current = ROOT
        for part in relative.parts:
            for child_index in self.children_of(current):
                child = self.get(child_index)
                if child is not None and child.name == part:
                    current = child_index
                    break
            else:
                return None
        return current

    def iter_live(self) -> Iterator[TreeNode]:
        """Iterate over live nodes in index order."""
        for node in self._nodes:
            if node is not None:
                yield node

    def live_count(self) -> int:
        return sum(1 for node in self._nodes if node is not None)

    @property
    def total_size(self) -> int:
        return self.root.size

    @property
    def total_files(self) -> int:
        return self.root.file_count

    # -------------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------------

    def remove_node(self, index: int) -> int:
        """
        Tombstone ``index`` and all of its live descendants.

        The removed size is subtracted from every ancestor up to the root in
        the same locked section, so readers never see a half-propagated size.

        Args:
            index: Node to remove

        Returns:
            Bytes freed (0 if the node was already tombstoned)

        Raises:
            RootRemovalError: If index is the root
            IndexError: If index is out of range
        """
        with self.lock:
            if index == ROOT:
                raise RootRemovalError()
            if index < 0 or index >= len(self._nodes):
                raise IndexError(f"Node index out of range: {index}")

            node = self._nodes[index]
            if node is None:
                return 0

            parent = self._nodes[node.parent] if node.parent is not None else None
            if parent is not None:
                parent.children.remove(index)

            stack = [index]
            while stack:
                current = stack.pop()
                current_node = self._nodes[current]
                if current_node is None:
                    continue
                stack.extend(current_node.children)
                self._nodes[current] = None

            ancestor = parent
            while ancestor is not None:
                ancestor.size = max(0, ancestor.size - node.size)
                ancestor.file_count = max(0, ancestor.file_count - node.file_count)
                ancestor = self._nodes[ancestor.parent] if ancestor.parent is not None else None

            self.stats.bytes_freed += node.size
            self.stats.items_deleted += 1
            return node.size

    # -------------------------------------------------------------------------
    # Presentation helpers (expansion state is never persisted)
    # -------------------------------------------------------------------------

    def set_expanded(self, index: int, expanded: bool) -> None:
        node = self.get(index)
        if node is not None and node.kind is NodeKind.DIRECTORY:
            node.expanded = expanded

    def toggle_expanded(self, index: int) -> None:
        node = self.get(index)
        if node is not None:
            self.set_expanded(index, not node.expanded)

    def expand_to(self, index: int) -> None:
        """Expand every ancestor so ``index`` becomes visible."""
        for ancestor in self.ancestors(index):
            self.set_expanded(ancestor, True)

    def visible_nodes(self, view_root: int = ROOT) -> list[int]:
        """Indices in display order, following expansion state."""
        with self.lock:
            if self.get(view_root) is None:
                return []
            result = []
            stack = [view_root]
            while stack:
                index = stack.pop()
                node = self._nodes[index]
                if node is None:
                    continue
                result.append(index)
                if node.expanded:
                    stack.extend(reversed(node.children))
            return result

    # -------------------------------------------------------------------------
    # Persistence support
    # -------------------------------------------------------------------------

    def compacted(self) -> "DiskTree":
        """Copy with tombstoned slots squeezed out and indices renumbered."""
        with self.lock:
            new_tree = DiskTree(self.root_path, root_mtime=self.root.mtime)
            remap = {ROOT: ROOT}
            new_root = new_tree.root
            new_root.size = self.root.size
            new_root.file_count = self.root.file_count

            for node in self._nodes[1:]:
                if node is None or node.parent not in remap:
                    continue
                new_index = new_tree.insert_child(
                    remap[node.parent],
                    node.name,
                    node.kind,
                    size=node.size,
                    mtime=node.mtime,
                    skip_reason=node.skip_reason,
                )
                new_tree._nodes[new_index].file_count = node.file_count
                remap[node.index] = new_index

            new_tree.sort_by_size()
            return new_tree

    def check_consistency(self) -> list[int]:
        """
        Directories whose size differs from the sum of their live children.

        Returns:
            Offending indices (empty when the size invariant holds)
        """
        with self.lock:
            bad = []
            for node in self.iter_live():
                if node.kind is not NodeKind.DIRECTORY:
                    continue
                expected = sum(self._size(child) for child in node.children)
                if expected != node.size:
                    bad.append(node.index)
            return bad

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _size(self, index: int) -> int:
        node = self.get(index)
        return node.size if node else 0

    def _name(self, index: int) -> str:
        node = self.get(index)
        return node.name if node else ""
