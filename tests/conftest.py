"""
Pytest configuration and fixtures.

Add any shared fixtures or pytest configuration here.
"""

import logging
import sys
from typing import Any

import pytest

from pyremote._internal.lifecycle import LifecycleManager
from pyremote._internal.transfer_handlers import TransferHandlerRegistry
from pyremote.config import load_config


def pytest_configure(config):
    """Configure pytest with custom settings."""
    # Set up logging
    log_level = logging.DEBUG if config.getoption("--debug-pyremote") else logging.INFO

    # Configure root logger
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Set specific logger levels
    logging.getLogger("pyremote").setLevel(log_level)
    logging.getLogger("asyncio").setLevel(log_level)

    # If custom log file is specified, add file handler
    custom_log_file = config.getoption("--pyremote-log-file")
    if custom_log_file:
        file_handler = logging.FileHandler(custom_log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
            )
        )
        logging.getLogger().addHandler(file_handler)


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--debug-pyremote",
        action="store_true",
        default=False,
        help="Enable debug logging for pyremote (shows every message on the wire)",
    )
    parser.addoption(
        "--pyremote-log-file",
        action="store",
        default=None,
        help="Log pyremote debug output to specified file",
    )


@pytest.fixture(autouse=True)
def reset_singletons():
    """Give every test a fresh handler registry, lifecycle manager and config."""
    TransferHandlerRegistry._instance = None
    LifecycleManager._instance = None
    load_config.cache_clear()
    yield
    TransferHandlerRegistry._instance = None
    LifecycleManager._instance = None
    load_config.cache_clear()


class RecordingEndpoint:
    """Endpoint double that records posts and lets tests inject messages."""

    def __init__(self) -> None:
        self.listeners: list[Any] = []
        self.posted: list[tuple[Any, list[Any]]] = []
        self.started = 0
        self.closed = 0

    def add_listener(self, listener):
        self.listeners.append(listener)

    def remove_listener(self, listener):
        if listener in self.listeners:
            self.listeners.remove(listener)

    def post(self, payload, ports=()):
        self.posted.append((payload, list(ports)))

    def start(self):
        self.started += 1

    def close(self):
        self.closed += 1

    def deliver(self, payload, ports=()):
        for listener in list(self.listeners):
            listener(payload, list(ports))


@pytest.fixture
def recording_endpoint():
    return RecordingEndpoint()
