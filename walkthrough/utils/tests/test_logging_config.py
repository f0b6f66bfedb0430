"""Tests for logging setup."""

import logging
import sys

import pytest

from walkthrough.utils import logging_config
from walkthrough.utils.logging_config import configure_logging


@pytest.fixture(autouse=True)
def reset_guard():
    """Let each test configure logging from scratch."""
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    if hasattr(configure_logging, "has_run"):
        del configure_logging.has_run
    yield
    if hasattr(configure_logging, "has_run"):
        del configure_logging.has_run
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)


def test_configures_stderr_handler():
    configure_logging("DEBUG")

    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 1
    assert root.handlers[0].stream is sys.stderr
    assert root.handlers[0].formatter._fmt == logging_config.LOG_FORMAT


def test_only_first_call_applies():
    configure_logging("ERROR")
    configure_logging("DEBUG")

    assert logging.getLogger().level == logging.ERROR


def test_unknown_level_falls_back_to_warning():
    configure_logging("LOUD")

    assert logging.getLogger().level == logging.WARNING
