"""On-disk snapshot of a scanned tree.

File layout (integers are unsigned 32-bit little endian)::

    "DUXC" | version | meta_len | metadata JSON | tree_len | tree JSON | crc32

The CRC covers every byte before it. The tree payload is a list of
``[parent, name, kind, size, file_count, mtime, skip_reason]`` records in
index order, root first; tombstoned slots are squeezed out when writing.
"""

import hashlib
import json
import os
import struct
import tempfile
import time
import zlib
from pathlib import Path
from typing import Optional

from loguru import logger
from platformdirs import user_cache_dir
from pydantic import ValidationError

from dux.errors import CacheError
from dux.models import (
    SPOT_CHECK_LIMIT,
    CachedScanConfig,
    CacheMetadata,
    DirectorySample,
    NodeKind,
    ScanConfig,
    SkipReason,
)
from dux.tree import ROOT, DiskTree

CACHE_MAGIC = b"DUXC"
CACHE_VERSION = 1
CACHE_SUFFIX = ".dux"

_U32 = struct.Struct("<I")
_HEADER_SIZE = len(CACHE_MAGIC) + _U32.size


def default_cache_dir() -> Path:
    """Per-user cache directory."""
    return Path(user_cache_dir("dux"))


def _normalize_root(root: Path | str) -> Path:
    return Path(root).expanduser().resolve()


def cache_path_for(root: Path | str, cache_dir: Path | str | None = None) -> Path:
    """Cache file used for a scan root."""
    digest = hashlib.sha256(str(_normalize_root(root)).encode("utf-8")).hexdigest()[:16]
    directory = Path(cache_dir) if cache_dir is not None else default_cache_dir()
    return directory / f"{digest}{CACHE_SUFFIX}"


# =============================================================================
# Codec
# =============================================================================


def encode_cache(tree: DiskTree, meta: CacheMetadata) -> bytes:
    """Serialize a tree and its metadata into the cache file format."""
    records = []
    remap: dict[int, int] = {}
    with tree.lock:
        for node in tree.iter_live():
            if node.parent is not None and node.parent not in remap:
                continue
            remap[node.index] = len(records)
            records.append(
                [
                    remap[node.parent] if node.parent is not None else None,
                    node.name,
                    node.kind.value,
                    node.size,
                    node.file_count,
                    node.mtime,
                    node.skip_reason.value if node.skip_reason else None,
                ]
            )

    meta_bytes = meta.model_dump_json().encode("utf-8")
    tree_bytes = json.dumps(records, separators=(",", ":")).encode("utf-8")
    body = b"".join(
        [
            CACHE_MAGIC,
            _U32.pack(CACHE_VERSION),
            _U32.pack(len(meta_bytes)),
            meta_bytes,
            _U32.pack(len(tree_bytes)),
            tree_bytes,
        ]
    )
    return body + _U32.pack(zlib.crc32(body) & 0xFFFFFFFF)


def _read_block(data: bytes, offset: int, end: int) -> tuple[bytes, int]:
    if offset + _U32.size > end:
        raise CacheError("Truncated cache file")
    (length,) = _U32.unpack_from(data, offset)
    offset += _U32.size
    if offset + length > end:
        raise CacheError("Truncated cache file")
    return data[offset : offset + length], offset + length


def decode_cache(data: bytes) -> tuple[CacheMetadata, DiskTree]:
    """
    Parse a cache file.

    Args:
        data: Raw file contents

    Returns:
        Tuple of (metadata, tree)

    Raises:
        CacheError: On bad magic, unknown version, checksum mismatch or any
            structural problem
    """
    if len(data) < _HEADER_SIZE + _U32.size:
        raise CacheError("Truncated cache file")
    if data[: len(CACHE_MAGIC)] != CACHE_MAGIC:
        raise CacheError("Not a dux cache file")
    (version,) = _U32.unpack_from(data, len(CACHE_MAGIC))
    if version != CACHE_VERSION:
        raise CacheError(f"Unsupported cache version {version}")

    end = len(data) - _U32.size
    (stored_crc,) = _U32.unpack_from(data, end)
    if zlib.crc32(data[:end]) & 0xFFFFFFFF != stored_crc:
        raise CacheError("Checksum mismatch")

    meta_bytes, offset = _read_block(data, _HEADER_SIZE, end)
    tree_bytes, offset = _read_block(data, offset, end)
    if offset != end:
        raise CacheError("Trailing bytes before checksum")

    try:
        meta = CacheMetadata.model_validate_json(meta_bytes)
    except ValidationError as e:
        raise CacheError(f"Invalid cache metadata: {e}") from e
    if meta.version != version:
        raise CacheError("Metadata version does not match header")

    try:
        records = json.loads(tree_bytes)
    except ValueError as e:
        raise CacheError(f"Invalid tree payload: {e}") from e

    return meta, _rebuild_tree(meta, records)


def _rebuild_tree(meta: CacheMetadata, records: object) -> DiskTree:
    if not isinstance(records, list) or not records:
        raise CacheError("Empty tree payload")
    root_record = records[0]
    if not isinstance(root_record, list) or len(root_record) != 7 or root_record[0] is not None:
        raise CacheError("First record is not a root")

    tree = DiskTree(meta.root_path, root_mtime=meta.root_mtime)
    try:
        for position, record in enumerate(records[1:], start=1):
            parent, name, kind, size, file_count, mtime, skip_reason = record
            if not isinstance(parent, int) or parent >= position:
                raise CacheError(f"Record {position} has invalid parent {parent!r}")
            index = tree.insert_child(
                parent,
                name,
                NodeKind(kind),
                size=int(size),
                mtime=mtime,
                skip_reason=SkipReason(skip_reason) if skip_reason else None,
            )
            tree.get(index).file_count = int(file_count)
    except (TypeError, ValueError) as e:
        raise CacheError(f"Malformed tree record: {e}") from e

    if len(tree) != meta.node_count:
        raise CacheError(f"Expected {meta.node_count} nodes, found {len(tree)}")

    tree.aggregate_sizes()
    tree.sort_by_size()
    return tree


# =============================================================================
# Staleness
# =============================================================================


def sample_directories(tree: DiskTree, limit: int = SPOT_CHECK_LIMIT) -> list[DirectorySample]:
    """Scan-time mtimes of the largest directories, for later spot checks."""
    with tree.lock:
        directories = [
            node
            for node in tree.iter_live()
            if node.kind is NodeKind.DIRECTORY and node.index != ROOT and node.mtime is not None
        ]
        directories.sort(key=lambda node: node.size, reverse=True)
        return [
            DirectorySample(
                path=tree.relative_path_of(node.index), mtime=node.mtime, size=node.size
            )
            for node in directories[:limit]
        ]


def spot_check_mtimes(meta: CacheMetadata, root: Path | str) -> bool:
    """True if every sampled directory still exists with the same mtime."""
    root_path = Path(root)
    for sample in meta.samples:
        try:
            mtime = os.stat(root_path / sample.path).st_mtime
        except OSError:
            logger.debug("Cache sample {} is gone", sample.path)
            return False
        if mtime != sample.mtime:
            logger.debug("Cache sample {} changed", sample.path)
            return False
    return True


def is_cache_valid(meta: CacheMetadata, root: Path | str, config: ScanConfig) -> bool:
    """
    Decide whether a decoded cache still describes ``root``.

    Args:
        meta: Decoded metadata
        root: Scan root (resolved)
        config: Scan configuration of the current run

    Returns:
        False on root or configuration mismatch, root mtime change, or a
        failed spot check
    """
    root_path = _normalize_root(root)
    if meta.root_path != str(root_path):
        logger.debug("Cache root {} does not match {}", meta.root_path, root_path)
        return False
    if meta.config != CachedScanConfig.from_scan_config(config):
        logger.debug("Cache was written with a different scan configuration")
        return False
    try:
        root_mtime = os.stat(root_path).st_mtime
    except OSError:
        return False
    if meta.root_mtime != root_mtime:
        logger.debug("Root mtime changed since the cache was written")
        return False
    return spot_check_mtimes(meta, root_path)


# =============================================================================
# Files
# =============================================================================


def save(
    tree: DiskTree,
    root_path: Path | str,
    config: ScanConfig,
    cache_dir: Path | str | None = None,
) -> Path:
    """
    Write the cache file for ``root_path`` atomically.

    Returns:
        Path of the written file

    Raises:
        CacheError: If the file could not be written
    """
    root = _normalize_root(root_path)
    snapshot = tree.compacted()

    # Recorded mtimes are the ones held in the tree, never fresh stats
    meta = CacheMetadata(
        version=CACHE_VERSION,
        root_path=str(root),
        root_mtime=snapshot.root.mtime,
        scan_time=time.time(),
        total_size=snapshot.total_size,
        node_count=len(snapshot),
        config=CachedScanConfig.from_scan_config(config),
        samples=sample_directories(snapshot),
    )
    data = encode_cache(snapshot, meta)

    target = cache_path_for(root, cache_dir)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(dir=target.parent, prefix=".", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_name, target)
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise
    except OSError as e:
        raise CacheError(f"Cannot write cache {target}: {e}") from e

    logger.info("Saved cache for {} ({} nodes, {} bytes)", root, meta.node_count, len(data))
    return target


def load_entry(
    root_path: Path | str,
    config: ScanConfig,
    cache_dir: Path | str | None = None,
) -> Optional[tuple[CacheMetadata, DiskTree]]:
    """Like :func:`load`, but also returns the metadata."""
    root = _normalize_root(root_path)
    path = cache_path_for(root, cache_dir)
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.warning("Cannot read cache {}: {}", path, e)
        return None

    try:
        meta, tree = decode_cache(data)
    except CacheError as e:
        logger.info("Ignoring cache {}: {}", path, e)
        return None

    if not is_cache_valid(meta, root, config):
        logger.info("Cache for {} is stale", root)
        return None
    return meta, tree


def load(
    root_path: Path | str,
    config: ScanConfig,
    cache_dir: Path | str | None = None,
) -> Optional[DiskTree]:
    """
    Load a cached tree if it is still valid for ``root_path``.

    Returns:
        The tree, or None when there is no usable cache
    """
    entry = load_entry(root_path, config, cache_dir)
    return entry[1] if entry else None


def clear_cache(root: Path | str | None = None, cache_dir: Path | str | None = None) -> int:
    """
    Remove cache files.

    Args:
        root: Only remove the cache of this root (all caches when None)
        cache_dir: Cache directory override

    Returns:
        Number of files removed
    """
    directory = Path(cache_dir) if cache_dir is not None else default_cache_dir()
    targets = [cache_path_for(root, directory)] if root is not None else list(
        directory.glob(f"*{CACHE_SUFFIX}")
    )
    removed = 0
    for target in targets:
        try:
            target.unlink()
            removed += 1
        except FileNotFoundError:
            continue
    return removed
