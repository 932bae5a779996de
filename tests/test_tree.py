"""Tests for the arena tree."""

from pathlib import Path

import pytest

from dux.errors import InvalidParent, RootRemovalError
from dux.models import NodeKind, SkipReason
from dux.tree import ROOT, DiskTree


def live_names(tree: DiskTree) -> set[str]:
    return {tree.relative_path_of(node.index) for node in tree.iter_live()}


class TestInsertChild:
    def test_root_is_expanded_directory(self):
        tree = DiskTree("/data")
        assert tree.root.kind == NodeKind.DIRECTORY
        assert tree.root.expanded is True
        assert tree.root.parent is None
        assert len(tree) == 1

    def test_returns_increasing_indices(self):
        tree = DiskTree("/data")
        first = tree.insert_child(ROOT, "a", NodeKind.DIRECTORY)
        second = tree.insert_child(first, "b", NodeKind.FILE, size=10)
        assert (first, second) == (1, 2)
        assert tree.children_of(first) == [second]
        assert tree.get(second).parent == first

    def test_file_counts_itself(self):
        tree = DiskTree("/data")
        index = tree.insert_child(ROOT, "f", NodeKind.FILE, size=10)
        assert tree.get(index).file_count == 1

    def test_out_of_range_parent(self):
        tree = DiskTree("/data")
        with pytest.raises(InvalidParent):
            tree.insert_child(5, "x", NodeKind.FILE)
        with pytest.raises(InvalidParent):
            tree.insert_child(-1, "x", NodeKind.FILE)

    def test_tombstoned_parent(self, sample_tree):
        c = sample_tree.find_by_path("/data/a/c")
        sample_tree.remove_node(c)
        with pytest.raises(InvalidParent):
            sample_tree.insert_child(c, "x", NodeKind.FILE)

    def test_file_parent(self, sample_tree):
        f = sample_tree.find_by_path("/data/f.txt")
        with pytest.raises(InvalidParent):
            sample_tree.insert_child(f, "x", NodeKind.FILE)

    def test_skipped_parent(self):
        tree = DiskTree("/data")
        skipped = tree.insert_child(
            ROOT, "gdrive", NodeKind.SKIPPED, skip_reason=SkipReason.PATTERN
        )
        with pytest.raises(InvalidParent):
            tree.insert_child(skipped, "x", NodeKind.FILE)

    def test_invalid_parent_is_value_error(self):
        tree = DiskTree("/data")
        with pytest.raises(ValueError):
            tree.insert_child(99, "x", NodeKind.FILE)


class TestAggregate:
    def test_sizes_sum_children(self, sample_tree):
        assert sample_tree.total_size == 2200
        assert sample_tree.size_of(sample_tree.find_by_path("/data/a")) == 1500
        assert sample_tree.size_of(sample_tree.find_by_path("/data/a/c")) == 500
        assert sample_tree.check_consistency() == []

    def test_file_counts(self, sample_tree):
        assert sample_tree.total_files == 4
        assert sample_tree.get(sample_tree.find_by_path("/data/a/c")).file_count == 2

    def test_skipped_contributes_nothing(self):
        tree = DiskTree("/data")
        tree.insert_child(ROOT, "f", NodeKind.FILE, size=100)
        tree.insert_child(ROOT, "cloud", NodeKind.SKIPPED, skip_reason=SkipReason.TIMEOUT)
        tree.aggregate_sizes()
        assert tree.total_size == 100

    def test_sort_by_size_descending(self, sample_tree):
        sizes = [sample_tree.size_of(i) for i in sample_tree.children_of(ROOT)]
        assert sizes == sorted(sizes, reverse=True)


class TestRemoveNode:
    def test_propagates_to_every_ancestor(self, sample_tree):
        d = sample_tree.find_by_path("/data/a/c/d.txt")
        freed = sample_tree.remove_node(d)
        assert freed == 300
        assert sample_tree.size_of(sample_tree.find_by_path("/data/a/c")) == 200
        assert sample_tree.size_of(sample_tree.find_by_path("/data/a")) == 1200
        assert sample_tree.total_size == 1900
        assert sample_tree.total_files == 3
        assert sample_tree.check_consistency() == []

    def test_tombstones_whole_subtree_and_nothing_else(self, sample_tree):
        before = live_names(sample_tree)
        c = sample_tree.find_by_path("/data/a/c")
        sample_tree.remove_node(c)
        removed = before - live_names(sample_tree)
        assert removed == {"a/c", "a/c/d.txt", "a/c/e.txt"}
        assert not sample_tree.is_live(c)
        assert c not in sample_tree.children_of(sample_tree.find_by_path("/data/a"))

    def test_indices_stay_valid(self, sample_tree):
        f = sample_tree.find_by_path("/data/f.txt")
        slots = len(sample_tree)
        sample_tree.remove_node(sample_tree.find_by_path("/data/a"))
        assert len(sample_tree) == slots
        assert sample_tree.get(f).name == "f.txt"

    def test_already_removed_returns_zero(self, sample_tree):
        a = sample_tree.find_by_path("/data/a")
        assert sample_tree.remove_node(a) == 1500
        assert sample_tree.remove_node(a) == 0
        assert sample_tree.total_size == 700

    def test_descendant_of_removed_returns_zero(self, sample_tree):
        a = sample_tree.find_by_path("/data/a")
        d = sample_tree.find_by_path("/data/a/c/d.txt")
        sample_tree.remove_node(a)
        assert sample_tree.remove_node(d) == 0
        assert sample_tree.total_size == 700

    def test_root_cannot_be_removed(self, sample_tree):
        with pytest.raises(RootRemovalError):
            sample_tree.remove_node(ROOT)
        with pytest.raises(IndexError):
            sample_tree.remove_node(ROOT)

    def test_out_of_range(self, sample_tree):
        with pytest.raises(IndexError):
            sample_tree.remove_node(len(sample_tree) + 3)

    def test_session_stats(self, sample_tree):
        sample_tree.remove_node(sample_tree.find_by_path("/data/f.txt"))
        sample_tree.remove_node(sample_tree.find_by_path("/data/a/b.txt"))
        assert sample_tree.stats.bytes_freed == 1700
        assert sample_tree.stats.items_deleted == 2

    def test_absent_reads(self, sample_tree):
        c = sample_tree.find_by_path("/data/a/c")
        sample_tree.remove_node(c)
        assert sample_tree.get(c) is None
        assert sample_tree.size_of(c) == 0
        assert sample_tree.children_of(c) == []
        assert sample_tree.kind_of(c) is None
        assert sample_tree.path_of(c) is None


class TestPaths:
    def test_path_rebuilt_from_parents(self, sample_tree):
        d = sample_tree.find_by_path("/data/a/c/d.txt")
        assert sample_tree.path_of(d) == Path("/data/a/c/d.txt")
        assert sample_tree.relative_path_of(d) == "a/c/d.txt"
        assert sample_tree.relative_path_of(ROOT) == "."

    def test_find_by_path_outside_root(self, sample_tree):
        assert sample_tree.find_by_path("/elsewhere/a") is None
        assert sample_tree.find_by_path("/data/missing") is None
        assert sample_tree.find_by_path("/data") == ROOT

    def test_depth_and_ancestors(self, sample_tree):
        d = sample_tree.find_by_path("/data/a/c/d.txt")
        c = sample_tree.find_by_path("/data/a/c")
        a = sample_tree.find_by_path("/data/a")
        assert sample_tree.ancestors(d) == [c, a, ROOT]
        assert sample_tree.depth_of(d) == 3


class TestVisibleNodes:
    def test_only_root_children_when_collapsed(self, sample_tree):
        visible = sample_tree.visible_nodes()
        names = [sample_tree.get(i).name for i in visible]
        assert names == ["data", "a", "f.txt"]

    def test_expanding_shows_children_in_order(self, sample_tree):
        a = sample_tree.find_by_path("/data/a")
        sample_tree.set_expanded(a, True)
        names = [sample_tree.get(i).name for i in sample_tree.visible_nodes()]
        assert names == ["data", "a", "b.txt", "c", "f.txt"]

    def test_expand_to(self, sample_tree):
        d = sample_tree.find_by_path("/data/a/c/d.txt")
        sample_tree.expand_to(d)
        assert d in sample_tree.visible_nodes()

    def test_files_cannot_expand(self, sample_tree):
        f = sample_tree.find_by_path("/data/f.txt")
        sample_tree.toggle_expanded(f)
        assert sample_tree.get(f).expanded is False


class TestCompacted:
    def test_drops_tombstones(self, sample_tree):
        sample_tree.remove_node(sample_tree.find_by_path("/data/a/c"))
        compact = sample_tree.compacted()
        assert len(compact) == compact.live_count() == sample_tree.live_count()
        assert live_names(compact) == live_names(sample_tree)
        assert compact.total_size == sample_tree.total_size
        assert compact.check_consistency() == []
