"""Tests for the cache codec and cache file handling."""

import os

import pytest

from dux import cache
from dux.errors import CacheError
from dux.models import CacheMetadata, NodeKind, ScanConfig, SkipReason
from dux.scanner import scan
from dux.tree import ROOT, DiskTree


def snapshot(tree: DiskTree) -> set[tuple]:
    """Structure of a tree independent of slot numbering."""
    return {
        (
            tree.relative_path_of(node.index),
            node.kind,
            node.size,
            node.file_count,
            node.skip_reason,
        )
        for node in tree.iter_live()
    }


def make_meta(tree: DiskTree, **overrides) -> CacheMetadata:
    values = dict(
        version=cache.CACHE_VERSION,
        root_path=str(tree.root_path),
        scan_time=0.0,
        total_size=tree.total_size,
        node_count=tree.live_count(),
    )
    values.update(overrides)
    return CacheMetadata(**values)


class TestCodec:
    def test_round_trip_preserves_structure(self, sample_tree):
        data = cache.encode_cache(sample_tree, make_meta(sample_tree))
        meta, decoded = cache.decode_cache(data)
        assert meta.root_path == "/data"
        assert snapshot(decoded) == snapshot(sample_tree)
        assert decoded.total_size == 2200
        assert decoded.check_consistency() == []

    def test_round_trip_after_removal(self, sample_tree):
        sample_tree.remove_node(sample_tree.find_by_path("/data/a/c"))
        data = cache.encode_cache(sample_tree, make_meta(sample_tree))
        _, decoded = cache.decode_cache(data)
        assert snapshot(decoded) == snapshot(sample_tree)
        assert len(decoded) == sample_tree.live_count()
        assert decoded.find_by_path("/data/a/c") is None

    def test_skip_reason_and_mtime_survive(self):
        tree = DiskTree("/data")
        tree.insert_child(ROOT, "cloud", NodeKind.SKIPPED, mtime=12.5, skip_reason=SkipReason.TIMEOUT)
        tree.aggregate_sizes()
        _, decoded = cache.decode_cache(cache.encode_cache(tree, make_meta(tree)))
        node = decoded.get(decoded.find_by_path("/data/cloud"))
        assert node.skip_reason is SkipReason.TIMEOUT
        assert node.mtime == 12.5

    def test_expansion_is_not_persisted(self, sample_tree):
        sample_tree.set_expanded(sample_tree.find_by_path("/data/a"), True)
        _, decoded = cache.decode_cache(cache.encode_cache(sample_tree, make_meta(sample_tree)))
        assert decoded.get(decoded.find_by_path("/data/a")).expanded is False

    def test_bad_magic(self, sample_tree):
        data = cache.encode_cache(sample_tree, make_meta(sample_tree))
        with pytest.raises(CacheError):
            cache.decode_cache(b"XXXX" + data[4:])

    def test_unknown_version(self, sample_tree):
        data = bytearray(cache.encode_cache(sample_tree, make_meta(sample_tree)))
        data[4:8] = (cache.CACHE_VERSION + 1).to_bytes(4, "little")
        with pytest.raises(CacheError, match="version"):
            cache.decode_cache(bytes(data))

    def test_corrupted_payload(self, sample_tree):
        data = bytearray(cache.encode_cache(sample_tree, make_meta(sample_tree)))
        data[len(data) // 2] ^= 0xFF
        with pytest.raises(CacheError):
            cache.decode_cache(bytes(data))

    def test_truncated(self, sample_tree):
        data = cache.encode_cache(sample_tree, make_meta(sample_tree))
        for cut in (0, 6, len(data) // 2, len(data) - 1):
            with pytest.raises(CacheError):
                cache.decode_cache(data[:cut])

    def test_node_count_mismatch(self, sample_tree):
        data = cache.encode_cache(sample_tree, make_meta(sample_tree, node_count=99))
        with pytest.raises(CacheError, match="nodes"):
            cache.decode_cache(data)


class TestCachePath:
    def test_stable_per_root(self, tmp_path, cache_dir):
        first = cache.cache_path_for(tmp_path, cache_dir)
        assert first == cache.cache_path_for(str(tmp_path), cache_dir)
        assert first.parent == cache_dir
        assert first.suffix == cache.CACHE_SUFFIX

    def test_distinct_roots(self, tmp_path, cache_dir):
        (tmp_path / "x").mkdir()
        (tmp_path / "y").mkdir()
        assert cache.cache_path_for(tmp_path / "x", cache_dir) != cache.cache_path_for(
            tmp_path / "y", cache_dir
        )


class TestSaveAndLoad:
    def test_unchanged_tree_loads(self, scan_root, cache_dir):
        config = ScanConfig()
        tree, _ = scan(scan_root, config)
        path = cache.save(tree, scan_root, config, cache_dir)
        assert path.exists()

        loaded = cache.load(scan_root, config, cache_dir)
        assert loaded is not None
        assert snapshot(loaded) == snapshot(tree)
        assert loaded.total_size == tree.total_size

    def test_no_temp_files_left(self, scan_root, cache_dir):
        tree, _ = scan(scan_root)
        cache.save(tree, scan_root, ScanConfig(), cache_dir)
        assert [p.name for p in cache_dir.iterdir()] == [
            cache.cache_path_for(scan_root, cache_dir).name
        ]

    def test_deletions_are_saved(self, scan_root, cache_dir):
        config = ScanConfig()
        tree, _ = scan(scan_root, config)
        docs = tree.find_by_path(scan_root.resolve() / "docs")
        tree.remove_node(docs)
        cache.save(tree, scan_root, config, cache_dir)

        loaded = cache.load(scan_root, config, cache_dir)
        assert loaded is not None
        assert loaded.find_by_path(scan_root.resolve() / "docs") is None
        assert loaded.total_size == tree.total_size

    def test_missing_file(self, scan_root, cache_dir):
        assert cache.load(scan_root, ScanConfig(), cache_dir) is None

    def test_corrupt_file_is_ignored(self, scan_root, cache_dir):
        tree, _ = scan(scan_root)
        path = cache.save(tree, scan_root, ScanConfig(), cache_dir)
        path.write_bytes(b"DUXC garbage")
        assert cache.load(scan_root, ScanConfig(), cache_dir) is None

    def test_changed_sampled_directory_invalidates(self, scan_root, cache_dir):
        tree, _ = scan(scan_root)
        cache.save(tree, scan_root, ScanConfig(), cache_dir)
        target = scan_root / "a" / "b"
        st = os.stat(target)
        os.utime(target, (st.st_atime, st.st_mtime + 100))
        assert cache.load(scan_root, ScanConfig(), cache_dir) is None

    def test_changed_root_invalidates(self, scan_root, cache_dir):
        tree, _ = scan(scan_root)
        cache.save(tree, scan_root, ScanConfig(), cache_dir)
        st = os.stat(scan_root)
        os.utime(scan_root, (st.st_atime, st.st_mtime + 100))
        assert cache.load(scan_root, ScanConfig(), cache_dir) is None

    def test_removed_sampled_directory_invalidates(self, scan_root, cache_dir):
        tree, _ = scan(scan_root)
        cache.save(tree, scan_root, ScanConfig(), cache_dir)
        st = os.stat(scan_root / "a")
        (scan_root / "a" / "c" / "small.bin").unlink()
        (scan_root / "a" / "c").rmdir()
        os.utime(scan_root / "a", (st.st_atime, st.st_mtime))
        assert cache.load(scan_root, ScanConfig(), cache_dir) is None

    def test_config_mismatch_invalidates(self, scan_root, cache_dir):
        tree, _ = scan(scan_root)
        cache.save(tree, scan_root, ScanConfig(), cache_dir)
        assert cache.load(scan_root, ScanConfig(follow_symlinks=True), cache_dir) is None
        assert cache.load(scan_root, ScanConfig(max_depth=2), cache_dir) is None
        # Worker count does not affect the result
        assert cache.load(scan_root, ScanConfig(workers=2), cache_dir) is not None

    def test_change_before_save_invalidates(self, scan_root, cache_dir):
        tree, _ = scan(scan_root)
        target = scan_root / "a" / "b"
        st = os.stat(target)
        os.utime(target, (st.st_atime, st.st_mtime + 100))
        cache.save(tree, scan_root, ScanConfig(), cache_dir)
        assert cache.load(scan_root, ScanConfig(), cache_dir) is None

    def test_samples_use_tree_mtimes(self, scan_root, cache_dir):
        tree, _ = scan(scan_root)
        b = tree.find_by_path(scan_root.resolve() / "a" / "b")
        tree.get(b).mtime = 12345.0
        tree.root.mtime = 54321.0
        cache.save(tree, scan_root, ScanConfig(), cache_dir)

        data = cache.cache_path_for(scan_root, cache_dir).read_bytes()
        meta, _ = cache.decode_cache(data)
        assert meta.root_mtime == 54321.0
        assert {s.path: s.mtime for s in meta.samples}["a/b"] == 12345.0

    def test_samples_recorded(self, scan_root, cache_dir):
        tree, _ = scan(scan_root)
        cache.save(tree, scan_root, ScanConfig(), cache_dir)
        meta, _ = cache.load_entry(scan_root, ScanConfig(), cache_dir)
        sampled = {sample.path for sample in meta.samples}
        assert {"a", "a/b", "a/c", "docs"} == sampled

    def test_unwritable_cache_dir(self, scan_root, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        tree, _ = scan(scan_root)
        with pytest.raises(CacheError):
            cache.save(tree, scan_root, ScanConfig(), blocker / "cache")


class TestClearCache:
    def test_clear_one_root(self, scan_root, cache_dir):
        tree, _ = scan(scan_root)
        cache.save(tree, scan_root, ScanConfig(), cache_dir)
        assert cache.clear_cache(scan_root, cache_dir) == 1
        assert cache.clear_cache(scan_root, cache_dir) == 0

    def test_clear_all(self, scan_root, cache_dir):
        tree, _ = scan(scan_root)
        cache.save(tree, scan_root, ScanConfig(), cache_dir)
        (cache_dir / "other.dux").write_bytes(b"")
        assert cache.clear_cache(cache_dir=cache_dir) == 2
        assert list(cache_dir.iterdir()) == []
