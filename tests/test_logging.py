"""
Tests for logging configuration.
"""

import logging
from logging.handlers import RotatingFileHandler

import pytest

from agriadvisor.utils.logging_config import setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestSetupLogging:
    """Test level and directory wiring."""

    def test_level_and_files(self, tmp_path, restore_root_logger):
        root = setup_logging(level="warning", log_dir=tmp_path, debug=False)

        assert root.level == logging.WARNING
        console = [h for h in root.handlers if not isinstance(h, RotatingFileHandler)]
        assert console[0].level == logging.WARNING

        files = sorted(h.baseFilename for h in root.handlers if isinstance(h, RotatingFileHandler))
        assert files == [str(tmp_path / "agriadvisor.log"), str(tmp_path / "agriadvisor_errors.log")]

    def test_debug_level_keeps_file_at_info(self, tmp_path, restore_root_logger):
        root = setup_logging(level="DEBUG", log_dir=tmp_path)

        file_levels = sorted(h.level for h in root.handlers if isinstance(h, RotatingFileHandler))
        assert file_levels == [logging.INFO, logging.ERROR]
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_unknown_level_rejected(self, tmp_path, restore_root_logger):
        with pytest.raises(ValueError):
            setup_logging(level="chatty", log_dir=tmp_path)
