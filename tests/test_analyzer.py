"""Tests for the large files and build artifacts views."""

from datetime import timedelta

import pytest

from dux.analyzer import (
    ComputedViews,
    classify_artifact,
    find_build_artifacts,
    find_large_files,
    is_stale,
    newest_descendant_mtime,
    restale,
)
from dux.models import NodeKind, StaleThreshold
from dux.tree import ROOT, DiskTree

DAY = timedelta(days=1).total_seconds()
NOW = 1_000 * DAY


@pytest.fixture
def project_tree():
    """Projects with build output of different ages.

    /p
        old/target/         newest mtime 90 days ago, 5000 bytes
        recent/node_modules newest mtime 30 days ago, 3000 bytes
        fresh/target/debug  nested artifact dir touched 1 day ago
        src/main.rs
    """
    tree = DiskTree("/p")
    old = tree.insert_child(ROOT, "old", NodeKind.DIRECTORY, mtime=NOW - 200 * DAY)
    old_target = tree.insert_child(old, "target", NodeKind.DIRECTORY, mtime=NOW - 95 * DAY)
    deps = tree.insert_child(old_target, "deps", NodeKind.DIRECTORY, mtime=NOW - 90 * DAY)
    tree.insert_child(deps, "lib.rlib", NodeKind.FILE, size=5000, mtime=NOW - 1 * DAY)

    recent = tree.insert_child(ROOT, "recent", NodeKind.DIRECTORY, mtime=NOW - 30 * DAY)
    modules = tree.insert_child(recent, "node_modules", NodeKind.DIRECTORY, mtime=NOW - 30 * DAY)
    tree.insert_child(modules, "index.js", NodeKind.FILE, size=3000)

    fresh = tree.insert_child(ROOT, "fresh", NodeKind.DIRECTORY, mtime=NOW - 400 * DAY)
    fresh_target = tree.insert_child(fresh, "target", NodeKind.DIRECTORY, mtime=NOW - 300 * DAY)
    debug = tree.insert_child(fresh_target, "debug", NodeKind.DIRECTORY, mtime=NOW - 1 * DAY)
    build = tree.insert_child(debug, "build", NodeKind.DIRECTORY, mtime=NOW - 1 * DAY)
    tree.insert_child(build, "out.o", NodeKind.FILE, size=1000)

    src = tree.insert_child(ROOT, "src", NodeKind.DIRECTORY, mtime=NOW)
    tree.insert_child(src, "main.rs", NodeKind.FILE, size=200)
    tree.aggregate_sizes()
    tree.sort_by_size()
    return tree


def by_path(entries):
    return {entry.relative_path: entry for entry in entries}


class TestLargeFiles:
    def test_files_only_largest_first(self, sample_tree):
        entries = find_large_files(sample_tree)
        assert [e.relative_path for e in entries] == [
            "a/b.txt",
            "f.txt",
            "a/c/d.txt",
            "a/c/e.txt",
        ]
        assert entries[0].percentage == pytest.approx(1000 / 2200 * 100)

    def test_limit(self, sample_tree):
        assert len(find_large_files(sample_tree, limit=2)) == 2

    def test_removed_files_disappear(self, sample_tree):
        sample_tree.remove_node(sample_tree.find_by_path("/data/a"))
        assert [e.relative_path for e in find_large_files(sample_tree)] == ["f.txt"]


class TestClassifyArtifact:
    def test_known_names(self):
        assert classify_artifact("target") is not None
        assert classify_artifact("node_modules") is not None

    def test_unknown_name(self):
        assert classify_artifact("src") is None

    def test_custom_table(self):
        assert classify_artifact("out", {"out": "Custom"}) == "Custom"
        assert classify_artifact("target", {"out": "Custom"}) is None


class TestStaleness:
    def test_newest_descendant_ignores_files(self, project_tree):
        target = project_tree.find_by_path("/p/old/target")
        assert newest_descendant_mtime(project_tree, target) == NOW - 90 * DAY

    def test_newest_descendant_includes_nested_dirs(self, project_tree):
        target = project_tree.find_by_path("/p/fresh/target")
        assert newest_descendant_mtime(project_tree, target) == NOW - 1 * DAY

    def test_is_stale_thresholds(self):
        forty_days_ago = NOW - 40 * DAY
        assert is_stale(forty_days_ago, StaleThreshold.THIRTY_DAYS, NOW)
        assert not is_stale(forty_days_ago, StaleThreshold.NINETY_DAYS, NOW)
        assert is_stale(forty_days_ago, StaleThreshold.ALL, NOW)

    def test_missing_mtime(self):
        assert not is_stale(None, StaleThreshold.ONE_DAY, NOW)
        assert is_stale(None, StaleThreshold.ALL, NOW)


class TestBuildArtifacts:
    def test_finds_outermost_artifacts(self, project_tree):
        entries = by_path(find_build_artifacts(project_tree, now=NOW))
        assert set(entries) == {"old/target", "recent/node_modules", "fresh/target"}

    def test_sorted_by_size(self, project_tree):
        sizes = [e.size for e in find_build_artifacts(project_tree, now=NOW)]
        assert sizes == [5000, 3000, 1000]

    def test_seven_day_flags(self, project_tree):
        entries = by_path(find_build_artifacts(project_tree, StaleThreshold.SEVEN_DAYS, now=NOW))
        assert entries["old/target"].is_stale
        assert entries["recent/node_modules"].is_stale
        assert not entries["fresh/target"].is_stale

    def test_ninety_day_flags(self, project_tree):
        entries = by_path(find_build_artifacts(project_tree, StaleThreshold.NINETY_DAYS, now=NOW))
        assert not entries["old/target"].is_stale
        assert not entries["recent/node_modules"].is_stale

    def test_root_named_like_artifact_still_reports_children(self):
        tree = DiskTree("/work/target")
        inner = tree.insert_child(ROOT, "node_modules", NodeKind.DIRECTORY, mtime=NOW)
        tree.insert_child(inner, "x.js", NodeKind.FILE, size=10)
        tree.aggregate_sizes()
        entries = find_build_artifacts(tree, now=NOW)
        assert [e.relative_path for e in entries] == ["node_modules"]

    def test_files_are_not_artifacts(self):
        tree = DiskTree("/p")
        tree.insert_child(ROOT, "target", NodeKind.FILE, size=10)
        tree.aggregate_sizes()
        assert find_build_artifacts(tree, now=NOW) == []

    def test_restale_only_changes_flags(self, project_tree):
        entries = find_build_artifacts(project_tree, StaleThreshold.SEVEN_DAYS, now=NOW)
        before = [(e.relative_path, e.size) for e in entries]
        restale(entries, StaleThreshold.ALL, now=NOW)
        assert all(e.is_stale for e in entries)
        assert [(e.relative_path, e.size) for e in entries] == before


class TestComputedViews:
    def test_rebuild_clears_dirty(self, project_tree):
        views = ComputedViews()
        assert views.dirty
        views.rebuild(project_tree, now=NOW)
        assert not views.dirty
        assert len(views.build_artifacts) == 3
        assert len(views.large_files) == 4

    def test_cycle_threshold(self, project_tree):
        views = ComputedViews(StaleThreshold.SEVEN_DAYS)
        views.rebuild(project_tree, now=NOW)
        assert views.cycle_threshold(now=NOW) is StaleThreshold.THIRTY_DAYS
        flags = {e.relative_path: e.is_stale for e in views.build_artifacts}
        assert flags == {
            "old/target": True,
            "recent/node_modules": False,
            "fresh/target": False,
        }
        assert not views.dirty

    def test_cycle_wraps_around(self):
        views = ComputedViews(StaleThreshold.ALL)
        assert views.cycle_threshold(now=NOW) is StaleThreshold.ONE_DAY


class TestStaleTargetScenario:
    def test_threshold_change_without_rescan(self):
        tree = DiskTree("/work")
        project = tree.insert_child(ROOT, "project", NodeKind.DIRECTORY, mtime=NOW)
        target = tree.insert_child(project, "target", NodeKind.DIRECTORY, mtime=NOW - 60 * DAY)
        release = tree.insert_child(target, "release", NodeKind.DIRECTORY, mtime=NOW - 40 * DAY)
        tree.insert_child(release, "app", NodeKind.FILE, size=4096, mtime=NOW)
        tree.aggregate_sizes()

        views = ComputedViews(StaleThreshold.THIRTY_DAYS)
        views.rebuild(tree, now=NOW)
        entry = views.build_artifacts[0]
        assert entry.relative_path == "project/target"
        assert entry.is_stale

        assert views.cycle_threshold(now=NOW) is StaleThreshold.NINETY_DAYS
        assert views.build_artifacts[0] is entry
        assert not entry.is_stale
        assert not views.dirty
