"""Tests for user settings."""

import json

from dux.config import Settings, load_settings, save_settings
from dux.models import StaleThreshold


class TestLoadSettings:
    def test_missing_file_gives_defaults(self, tmp_path):
        settings = load_settings(tmp_path / "config.json")
        assert settings == Settings()
        assert settings.stale_threshold is StaleThreshold.SEVEN_DAYS

    def test_reads_values(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"stale_threshold": "30d", "workers": 4}))
        settings = load_settings(path)
        assert settings.stale_threshold is StaleThreshold.THIRTY_DAYS
        assert settings.workers == 4

    def test_invalid_json_gives_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        assert load_settings(path) == Settings()

    def test_invalid_values_give_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"stale_threshold": "forever"}))
        assert load_settings(path) == Settings()


class TestSaveSettings:
    def test_round_trip(self, tmp_path):
        path = tmp_path / "nested" / "config.json"
        settings = Settings(stale_threshold=StaleThreshold.ALL, extra_skip_patterns=["/nfs/"])
        assert save_settings(settings, path) is True
        assert load_settings(path) == settings
        assert [p.name for p in path.parent.iterdir()] == ["config.json"]

    def test_unwritable_location(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        assert save_settings(Settings(), blocker / "config.json") is False


class TestScanConfig:
    def test_settings_seed_scan_config(self):
        settings = Settings(workers=3, probe_timeout=1.5, extra_skip_patterns=["/nfs/"])
        config = settings.scan_config()
        assert config.workers == 3
        assert config.probe_timeout == 1.5
        assert config.extra_skip_patterns == ["/nfs/"]

    def test_none_overrides_ignored(self):
        config = Settings().scan_config(max_depth=None, follow_symlinks=True)
        assert config.max_depth is None
        assert config.follow_symlinks is True

    def test_pattern_table_applies_overrides(self):
        table = Settings(artifact_patterns={"out": "Custom", "target": ""}).pattern_table()
        assert table["out"] == "Custom"
        assert "target" not in table
