"""Multi-selection state for the browser."""

from enum import Enum
from typing import Iterable, Optional

from dux.tree import ROOT, DiskTree


class SelectionMode(str, Enum):
    IDLE = "idle"
    SELECTING = "selecting"


class Selection:
    """
    Ordered set of node indices plus an anchor for range extension.

    The first toggle enters ``selecting`` mode; removing the last item or
    clearing returns to ``idle``. While selecting, cursor movement adds the
    rows it passes over. The root is never selectable and the tree is never
    touched.
    """

    def __init__(self) -> None:
        self._items: dict[int, None] = {}
        self.anchor: Optional[int] = None
        self.mode = SelectionMode.IDLE

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, index: int) -> bool:
        return index in self._items

    def __iter__(self):
        return iter(list(self._items))

    @property
    def is_selecting(self) -> bool:
        return self.mode is SelectionMode.SELECTING

    def contains(self, index: int) -> bool:
        return index in self._items

    def indices(self) -> list[int]:
        """Selected indices in the order they were added."""
        return list(self._items)

    def toggle(self, index: int) -> bool:
        """
        Flip ``index`` in or out of the selection.

        Returns:
            True if the index is selected afterwards
        """
        if index == ROOT:
            return False
        if index in self._items:
            del self._items[index]
            if not self._items:
                self.clear()
            return False
        self._items[index] = None
        self.anchor = index
        self.mode = SelectionMode.SELECTING
        return True

    def add(self, index: Optional[int]) -> None:
        if index is None or index == ROOT:
            return
        self._items[index] = None
        if self.anchor is None:
            self.anchor = index
        self.mode = SelectionMode.SELECTING

    def add_all(self, indices: Iterable[Optional[int]]) -> None:
        for index in indices:
            self.add(index)

    def move_and_extend(self, current: Optional[int], new: Optional[int]) -> None:
        """Add the row the cursor leaves and the row it lands on."""
        self.add(current)
        self.add(new)

    def extend_to(self, index: int, ordered: list[int]) -> None:
        """
        Add every row between the anchor and ``index``.

        Args:
            index: Row the range ends at
            ordered: Indices in display order
        """
        if index not in ordered:
            return
        end = ordered.index(index)
        start = ordered.index(self.anchor) if self.anchor in ordered else end
        low, high = sorted((start, end))
        self.add_all(ordered[low : high + 1])

    def clear(self) -> None:
        self._items.clear()
        self.anchor = None
        self.mode = SelectionMode.IDLE

    def prune(self, tree: DiskTree) -> None:
        """Forget indices that are no longer live."""
        for index in [i for i in self._items if not tree.is_live(i)]:
            del self._items[index]
        if self.anchor is not None and not tree.is_live(self.anchor):
            self.anchor = None
        if not self._items:
            self.clear()
