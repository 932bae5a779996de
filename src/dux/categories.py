"""Skip list and build-artifact pattern definitions for dux."""

from dux.models import ArtifactCategory

# =============================================================================
# Skip list - directories that are never descended
# =============================================================================

# Substrings matched against "<directory path>/". Cloud-sync providers expose
# their remote trees as FUSE / File Provider mounts that hydrate on access, and
# virtual filesystems never finish listing, so walking them either downloads
# data or hangs.
SKIP_PATTERNS: list[str] = [
    # Cloud-sync mounts
    "/Library/CloudStorage/",  # Google Drive, OneDrive, Dropbox, Box (macOS File Provider)
    "/Library/Mobile Documents/",  # iCloud Drive
    "/Library/Group Containers/UBF8T346G9.OneDriveStandaloneSuite/",
    "/.gvfs/",  # GNOME virtual filesystem mounts (Google Drive on Linux)
    "/gvfs/",
    "/keybase/",
    # Virtual and system filesystems
    "/proc/",
    "/sys/",
    "/dev/",
    "/Volumes/",  # Mounted volumes (possibly network or external)
    "/.Spotlight-V100/",
    "/.fseventsd/",
    "/.DocumentRevisions-V100/",
    "/.MobileBackups/",
    ".timemachine/",
    "CoreSimulator/Volumes/",
    "/private/var/folders/",
    "/private/var/db/dyld/",
    "/private/var/db/uuidtext/",
]


def get_skip_patterns(
    override: list[str] | None = None,
    extra: list[str] | None = None,
) -> list[str]:
    """
    Resolve the effective skip list.

    Args:
        override: Replaces the built-in list when not None
        extra: Appended to the resulting list

    Returns:
        List of path substrings
    """
    patterns = list(SKIP_PATTERNS if override is None else override)
    for pattern in extra or []:
        if pattern not in patterns:
            patterns.append(pattern)
    return patterns


# =============================================================================
# Build artifacts - directories that can be regenerated by a build tool
# =============================================================================

ARTIFACT_CATEGORIES: dict[str, ArtifactCategory] = {
    "rust": ArtifactCategory(
        id="rust",
        label="Rust",
        names=["target"],
        regenerate="cargo build",
    ),
    "xcode": ArtifactCategory(
        id="xcode",
        label="Xcode",
        names=["DerivedData", "Build"],
        regenerate="Rebuild in Xcode",
    ),
    "node": ArtifactCategory(
        id="node",
        label="Node",
        names=["node_modules"],
        regenerate="npm install",
    ),
    "generic": ArtifactCategory(
        id="generic",
        label="Build",
        names=["build", "dist"],
    ),
    "gradle": ArtifactCategory(
        id="gradle",
        label="Gradle",
        names=[".gradle"],
        regenerate="./gradlew build",
    ),
    "python": ArtifactCategory(
        id="python",
        label="Python",
        names=["__pycache__", ".tox", ".venv", "venv"],
        regenerate="Recreate the virtualenv and reinstall requirements",
    ),
    "cocoapods": ArtifactCategory(
        id="cocoapods",
        label="CocoaPods",
        names=["Pods"],
        regenerate="pod install",
    ),
    "next_nuxt": ArtifactCategory(
        id="next_nuxt",
        label="Next/Nuxt",
        names=[".next", ".nuxt"],
        regenerate="npm run build",
    ),
    "vendor": ArtifactCategory(
        id="vendor",
        label="Vendor",
        names=["vendor"],
    ),
    "cache": ArtifactCategory(
        id="cache",
        label="Cache",
        names=[".cache"],
    ),
}


def get_all_categories() -> list[ArtifactCategory]:
    """Get all artifact categories."""
    return list(ARTIFACT_CATEGORIES.values())


def get_regenerate_hint(label: str) -> str | None:
    """Command that rebuilds the artifacts shown under ``label``, if known."""
    for category in get_all_categories():
        if category.label == label:
            return category.regenerate
    return None


def build_pattern_table(overrides: dict[str, str] | None = None) -> dict[str, str]:
    """
    Map directory names to artifact labels.

    Args:
        overrides: Extra or replacement ``{directory name: label}`` entries.
            An empty label removes the name from the table.

    Returns:
        Dict of directory name to label
    """
    table = {
        name: category.label
        for category in get_all_categories()
        for name in category.names
    }
    for name, label in (overrides or {}).items():
        if label:
            table[name] = label
        else:
            table.pop(name, None)
    return table


DEFAULT_PATTERN_TABLE = build_pattern_table()
