"""Tests for logging setup."""

import pytest
from loguru import logger

from dux.log import setup_logging


@pytest.fixture(autouse=True)
def reset_logger():
    yield
    logger.remove()


class TestSetupLogging:
    def test_file_sink(self, tmp_path):
        log_file = setup_logging(console=False, log_dir=tmp_path / "logs")
        assert log_file == tmp_path / "logs" / "dux.log"
        logger.info("hello from the test")
        logger.complete()
        logger.remove()
        assert "hello from the test" in log_file.read_text()

    def test_unusable_directory(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        assert setup_logging(console=False, log_dir=blocker / "logs") is None
