"""Tests for logging setup in the entry point."""

from __future__ import annotations

import logging
from collections.abc import Iterator

import pytest
import structlog

from contour_plus.__main__ import configure_logging
from contour_plus.config import ControllerSettings


@pytest.fixture(autouse=True)
def _restore_logging() -> Iterator[None]:
    names = ("", "kubernetes.client.rest", "urllib3")
    levels = {name: logging.getLogger(name).level for name in names}
    yield
    for name, level in levels.items():
        logging.getLogger(name).setLevel(level)
    structlog.reset_defaults()


class TestConfigureLogging:
    def test_sets_root_level(self) -> None:
        configure_logging(ControllerSettings(log_level="warning"))
        assert logging.getLogger().level == logging.WARNING

    def test_client_loggers_quiet_unless_debug(self) -> None:
        configure_logging(ControllerSettings(log_level="INFO"))
        assert logging.getLogger("kubernetes.client.rest").level == logging.WARNING

        configure_logging(ControllerSettings(log_level="DEBUG", log_format="console"))
        assert logging.getLogger("kubernetes.client.rest").level == logging.DEBUG
        assert logging.getLogger("urllib3").level == logging.DEBUG

    def test_unknown_level_falls_back_to_info(self) -> None:
        configure_logging(ControllerSettings(log_level="chatty"))
        assert logging.getLogger().level == logging.INFO
