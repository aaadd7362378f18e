"""Tests for isoforge.utils.logging module."""

import logging
from unittest.mock import MagicMock

from rich.logging import RichHandler

from isoforge.utils.logging import ProgressLogger, Timer, setup_logging


class TestSetupLogging:
    """Tests for logger configuration."""

    def test_rich_handler_installed(self):
        setup_logging(verbosity=2)
        logger = logging.getLogger("isoforge")
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0], RichHandler)
        assert logger.handlers[0].level == logging.DEBUG

    def test_quiet_level(self):
        setup_logging(verbosity=0)
        assert logging.getLogger("isoforge").handlers[0].level == logging.WARNING

    def test_log_file(self, tmp_path):
        log_file = tmp_path / "run.log"
        setup_logging(verbosity=0, log_file=log_file)
        logging.getLogger("isoforge.test").debug("written to file")

        for handler in logging.getLogger("isoforge").handlers:
            handler.flush()
        assert "written to file" in log_file.read_text()
        setup_logging(verbosity=1)


class TestProgressLogger:
    """Tests for periodic progress messages."""

    def test_logs_every_interval(self):
        logger = MagicMock()
        progress = ProgressLogger(logger, interval=10, description="Reads")
        for _ in range(25):
            progress.update()

        assert progress.count == 25
        assert logger.info.call_count == 2

    def test_batch_update_crossing_interval(self):
        logger = MagicMock()
        progress = ProgressLogger(logger, total=100, interval=10)
        progress.update(15)
        assert logger.info.call_count == 1
        assert "15/100" in logger.info.call_args[0][0]

    def test_finish(self):
        logger = MagicMock()
        progress = ProgressLogger(logger, description="Reads")
        progress.update(3)
        progress.finish()
        assert logger.info.call_args[0][0] == "Reads: Complete (3 items)"


class TestTimer:
    """Tests for the Timer context manager."""

    def test_logs_elapsed(self):
        logger = MagicMock()
        with Timer("Clustering", logger) as timer:
            pass
        assert timer.elapsed >= 0
        assert logger.info.call_args[0][0].startswith("Clustering completed in")
