"""Data models for dux."""

import os
from datetime import timedelta
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

# Number of largest directories whose mtimes are spot-checked on cache load
SPOT_CHECK_LIMIT = 32

# Number of sample paths shown in a deletion preview
PREVIEW_SAMPLE_LIMIT = 5

DEFAULT_PROBE_TIMEOUT = 5.0


class NodeKind(str, Enum):
    """Type of filesystem entry held by a tree node."""

    FILE = "file"
    DIRECTORY = "directory"
    SYMLINK = "symlink"
    SKIPPED = "skipped"  # Directory that was never descended

    @property
    def is_directory(self) -> bool:
        return self in (NodeKind.DIRECTORY, NodeKind.SKIPPED)


class SkipReason(str, Enum):
    """Why a directory was not descended."""

    PATTERN = "pattern"  # Matched the skip list (cloud-sync mounts, /proc, ...)
    TIMEOUT = "timeout"  # Metadata probe did not return in time
    MOUNT = "mount"  # Different filesystem than the scan root
    ERROR = "error"  # Listing failed (permission denied, vanished)


class StaleThreshold(str, Enum):
    """How old a build artifact must be before it is flagged stale."""

    ONE_DAY = "1d"
    SEVEN_DAYS = "7d"
    THIRTY_DAYS = "30d"
    NINETY_DAYS = "90d"
    ALL = "all"

    @property
    def label(self) -> str:
        return "All" if self is StaleThreshold.ALL else self.value

    @property
    def duration(self) -> Optional[timedelta]:
        """Age after which an artifact is stale, or None when everything is."""
        days = {
            StaleThreshold.ONE_DAY: 1,
            StaleThreshold.SEVEN_DAYS: 7,
            StaleThreshold.THIRTY_DAYS: 30,
            StaleThreshold.NINETY_DAYS: 90,
        }.get(self)
        return timedelta(days=days) if days is not None else None

    def next(self) -> "StaleThreshold":
        members = list(StaleThreshold)
        return members[(members.index(self) + 1) % len(members)]


def default_workers() -> int:
    """Worker count used when none is configured."""
    return min(32, (os.cpu_count() or 1) + 4)


class ScanConfig(BaseModel):
    """Configuration consumed by the scanner."""

    max_depth: Optional[int] = Field(None, ge=0, description="Maximum depth to scan (None = unlimited)")
    follow_symlinks: bool = Field(False, description="Follow symbolic links")
    cross_filesystems: bool = Field(False, description="Descend into other mounted filesystems")
    force_rescan: bool = Field(False, description="Ignore any cached tree")
    workers: int = Field(0, ge=0, description="Listing worker threads (0 = auto)")
    probe_timeout: float = Field(
        DEFAULT_PROBE_TIMEOUT, gt=0, description="Seconds to wait for a directory metadata probe"
    )
    skip_patterns: Optional[list[str]] = Field(
        None, description="Replaces the built-in skip list when set"
    )
    extra_skip_patterns: list[str] = Field(
        default_factory=list, description="Added to the skip list"
    )

    @property
    def effective_workers(self) -> int:
        return self.workers or default_workers()


class CachedScanConfig(BaseModel):
    """Scan configuration that affects whether a cached tree can be reused."""

    follow_symlinks: bool = False
    cross_filesystems: bool = False
    max_depth: Optional[int] = None

    @classmethod
    def from_scan_config(cls, config: ScanConfig) -> "CachedScanConfig":
        return cls(
            follow_symlinks=config.follow_symlinks,
            cross_filesystems=config.cross_filesystems,
            max_depth=config.max_depth,
        )


class ScanProgress(BaseModel):
    """Point-in-time snapshot of a running scan."""

    files_scanned: int = 0
    dirs_scanned: int = 0
    bytes_scanned: int = 0
    errors: int = 0
    skipped: int = 0
    current_path: Optional[str] = None
    finalizing: bool = False
    done: bool = False

    @property
    def total_entries(self) -> int:
        return self.files_scanned + self.dirs_scanned


class ScanStats(BaseModel):
    """Summary of a completed scan."""

    root_path: str = Field(..., description="Root that was scanned")
    bytes_scanned: int = Field(0, description="Total allocated bytes found")
    file_count: int = Field(0, description="Number of files")
    dir_count: int = Field(0, description="Number of directories")
    errors: int = Field(0, description="Entries that could not be read")
    skipped: int = Field(0, description="Directories that were not descended")
    elapsed_seconds: float = Field(0.0, description="Wall-clock scan time")

    @property
    def item_count(self) -> int:
        return self.file_count + self.dir_count


class SessionStats(BaseModel):
    """Statistics tracked during a session."""

    bytes_freed: int = Field(0, description="Bytes removed from the tree by deletions")
    items_deleted: int = Field(0, description="Top-level items deleted")


class DirectorySample(BaseModel):
    """Stored mtime of one of the largest directories, for staleness checks."""

    path: str = Field(..., description="Path relative to the scan root")
    mtime: float = Field(..., description="Modification time at scan")
    size: int = Field(0, description="Directory size at scan")


class CacheMetadata(BaseModel):
    """Metadata block stored in a cache file."""

    version: int
    root_path: str
    root_mtime: Optional[float] = None
    scan_time: float
    total_size: int = 0
    node_count: int = 0
    config: CachedScanConfig = Field(default_factory=CachedScanConfig)
    samples: list[DirectorySample] = Field(default_factory=list)


class DeletionItem(BaseModel):
    """One top-level entry in a deletion request."""

    index: int
    path: str
    size: int
    is_directory: bool = False
    parent: Optional[int] = Field(None, description="Index of the containing directory")


class DeletionPreview(BaseModel):
    """Dry-run summary shown before a deletion is confirmed."""

    items: list[DeletionItem] = Field(default_factory=list)
    blocked: list[str] = Field(default_factory=list, description="Paths refused by safety checks")

    @property
    def count(self) -> int:
        return len(self.items)

    @property
    def total_size(self) -> int:
        return sum(item.size for item in self.items)

    @property
    def samples(self) -> list[DeletionItem]:
        """Representative items, largest first."""
        ordered = sorted(self.items, key=lambda item: item.size, reverse=True)
        return ordered[:PREVIEW_SAMPLE_LIMIT]

    @property
    def more_count(self) -> int:
        return max(0, self.count - PREVIEW_SAMPLE_LIMIT)

    @property
    def is_empty(self) -> bool:
        return not self.items


class DeletionFailure(BaseModel):
    """A filesystem removal that failed."""

    path: str
    error: str


class DeletionEvent(BaseModel):
    """Message sent by a deletion worker when one item finishes."""

    index: int
    path: str
    size: int
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class DeletionProgress(BaseModel):
    """Snapshot of a deletion batch."""

    total: int = 0
    completed: int = 0
    bytes_freed: int = 0
    failures: list[DeletionFailure] = Field(default_factory=list)

    @property
    def done(self) -> bool:
        return self.completed >= self.total

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    @property
    def percent(self) -> float:
        return (self.completed / self.total) * 100 if self.total > 0 else 100.0


class LargeFileEntry(BaseModel):
    """Row in the large files view."""

    index: int
    relative_path: str
    size: int
    percentage: float = 0.0


class ArtifactEntry(BaseModel):
    """Row in the build artifacts view (derived, never stored)."""

    index: int
    relative_path: str
    size: int
    percentage: float = 0.0
    category: str
    newest_mtime: Optional[float] = None
    is_stale: bool = False


class ArtifactCategory(BaseModel):
    """A family of build-artifact directories recognised by name."""

    id: str = Field(..., description="Unique identifier for the category")
    label: str = Field(..., description="Short label shown in the artifacts view")
    names: list[str] = Field(..., description="Exact directory names that belong to this category")
    regenerate: Optional[str] = Field(None, description="How the contents come back after deletion")
