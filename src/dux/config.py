"""User settings for dux."""

import json
import os
import tempfile
from pathlib import Path
from typing import Optional

from loguru import logger
from platformdirs import user_config_dir
from pydantic import BaseModel, Field, ValidationError

from dux.categories import build_pattern_table
from dux.models import DEFAULT_PROBE_TIMEOUT, ScanConfig, StaleThreshold


class Settings(BaseModel):
    """Persistent preferences, stored as JSON in the user config directory."""

    stale_threshold: StaleThreshold = Field(
        StaleThreshold.SEVEN_DAYS, description="Default build artifact staleness threshold"
    )
    artifact_patterns: dict[str, str] = Field(
        default_factory=dict,
        description="Directory name to artifact label overrides (empty label removes a name)",
    )
    extra_skip_patterns: list[str] = Field(
        default_factory=list, description="Path substrings added to the skip list"
    )
    workers: int = Field(0, ge=0, description="Scan worker threads (0 = auto)")
    probe_timeout: float = Field(
        DEFAULT_PROBE_TIMEOUT, gt=0, description="Seconds to wait for a directory probe"
    )

    def pattern_table(self) -> dict[str, str]:
        return build_pattern_table(self.artifact_patterns)

    def scan_config(self, **overrides) -> ScanConfig:
        """ScanConfig seeded from these settings, with CLI overrides applied."""
        values = {
            "workers": self.workers,
            "probe_timeout": self.probe_timeout,
            "extra_skip_patterns": list(self.extra_skip_patterns),
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return ScanConfig(**values)


def default_config_path() -> Path:
    return Path(user_config_dir("dux")) / "config.json"


def load_settings(path: Optional[Path] = None) -> Settings:
    """
    Load settings, falling back to defaults.

    A missing file yields defaults silently; an unreadable or invalid file
    yields defaults with a warning.
    """
    config_path = path or default_config_path()
    if not config_path.exists():
        return Settings()

    try:
        with open(config_path, encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Failed to read settings {}: {}", config_path, e)
        return Settings()

    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        logger.warning("Invalid settings in {}, using defaults: {}", config_path, e)
        return Settings()


def save_settings(settings: Settings, path: Optional[Path] = None) -> bool:
    """Write settings atomically. Returns False if the file could not be written."""
    config_path = path or default_config_path()
    temp_path: Optional[Path] = None
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            dir=config_path.parent,
            prefix=f".{config_path.name}_tmp",
            suffix=".json",
            delete=False,
        ) as f:
            temp_path = Path(f.name)
            f.write(settings.model_dump_json(indent=2))
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, config_path)
        temp_path = None
        return True
    except OSError as e:
        logger.error("Failed to save settings to {}: {}", config_path, e)
        return False
    finally:
        if temp_path is not None:
            temp_path.unlink(missing_ok=True)
