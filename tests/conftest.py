"""Shared fixtures for dux tests."""

import os
from pathlib import Path

import pytest

from dux.models import NodeKind
from dux.tree import ROOT, DiskTree


def make_file(path: Path, size: int) -> Path:
    """Create a file with ``size`` bytes of non-compressible-ish content."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(os.urandom(size))
    return path


@pytest.fixture
def cache_dir(tmp_path):
    directory = tmp_path / "cache"
    directory.mkdir()
    return directory


@pytest.fixture
def scan_root(tmp_path):
    """Small directory tree on disk.

    root/
        a/b/big.bin      (40 KB)
        a/c/small.bin    (8 KB)
        docs/readme.txt  (4 KB)
        top.bin          (12 KB)
    """
    root = tmp_path / "root"
    make_file(root / "a" / "b" / "big.bin", 40 * 1024)
    make_file(root / "a" / "c" / "small.bin", 8 * 1024)
    make_file(root / "docs" / "readme.txt", 4 * 1024)
    make_file(root / "top.bin", 12 * 1024)
    return root


@pytest.fixture
def sample_tree():
    """In-memory tree with known sizes.

    /data (root)
        a/        -> 1500
            b.txt -> 1000
            c/    -> 500
                d.txt -> 300
                e.txt -> 200
        f.txt     -> 700
    """
    tree = DiskTree("/data")
    a = tree.insert_child(ROOT, "a", NodeKind.DIRECTORY)
    tree.insert_child(a, "b.txt", NodeKind.FILE, size=1000)
    c = tree.insert_child(a, "c", NodeKind.DIRECTORY)
    tree.insert_child(c, "d.txt", NodeKind.FILE, size=300)
    tree.insert_child(c, "e.txt", NodeKind.FILE, size=200)
    tree.insert_child(ROOT, "f.txt", NodeKind.FILE, size=700)
    tree.aggregate_sizes()
    tree.sort_by_size()
    return tree
