"""Tests for tariff_sync.core.logging."""

import logging

import pytest
from rich.console import Console
from rich.logging import RichHandler

from tariff_sync.core.config import LoggingConfig
from tariff_sync.core.logging import configure_logging


@pytest.fixture(autouse=True)
def restore_logger():
    logger = logging.getLogger("tariff_sync")
    handlers, level = list(logger.handlers), logger.level
    yield
    logger.handlers = handlers
    logger.setLevel(level)


class TestConfigureLogging:
    def test_installs_single_rich_handler(self):
        configure_logging(LoggingConfig(level="warning"))
        configure_logging(LoggingConfig(level="warning"))
        logger = logging.getLogger("tariff_sync")
        assert sum(isinstance(h, RichHandler) for h in logger.handlers) == 1
        assert logger.level == logging.WARNING

    def test_verbose_forces_debug(self):
        configure_logging(LoggingConfig(level="ERROR"), verbose=True)
        assert logging.getLogger("tariff_sync").level == logging.DEBUG

    def test_quiets_httpx(self):
        configure_logging()
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_messages_reach_console(self):
        console = Console(record=True, width=120)
        configure_logging(LoggingConfig(level="INFO"), console=console)
        logging.getLogger("tariff_sync.test").info("hello from %s", "tests")
        assert "hello from tests" in console.export_text()
