"""Pytest configuration and shared fixtures for termnotify tests.

This module provides reusable fixtures for testing:
- env_setup: (autouse) Sets TERMNOTIFY_* environment variables
- socket_dir: Short private directory for a Unix socket
- presenter: In-memory presentation backend
- service: NotificationService wired to the in-memory presenter

Usage:
    def test_something(service, presenter):
        ticket = service.send(NotificationRequest(message="hi", wait=True))
        presenter.interact(ticket.identifier, ClickResult.CLICKED)
"""

import os
import shutil
import tempfile
from collections.abc import Generator
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from termnotify.daemon.actions import ActionHandler
from termnotify.daemon.presenter import MemoryPresenter
from termnotify.daemon.registry import CorrelationRegistry
from termnotify.daemon.service import NotificationService


@pytest.fixture(autouse=True)
def env_setup() -> Generator[None, None, None]:
    """Set environment variables for all tests.

    This fixture runs automatically before each test so no test depends
    on the developer's own TERMNOTIFY_* environment or a running daemon.
    """
    env_vars = {
        "TERMNOTIFY_PRESENTER": "memory",
        "TERMNOTIFY_REQUEST_TIMEOUT_SECONDS": "30.0",
        "TERMNOTIFY_CONNECT_TIMEOUT_SECONDS": "2.0",
        "TERMNOTIFY_SHUTDOWN_GRACE_SECONDS": "1.0",
        "TERMNOTIFY_LOG_LEVEL": "DEBUG",
    }
    # Store original values
    original = {k: os.environ.get(k) for k in env_vars}
    os.environ.update(env_vars)
    yield
    # Restore original values
    for key, value in original.items():
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value


# Configure pytest-asyncio
pytest_plugins = ["pytest_asyncio"]


@pytest.fixture
def socket_dir() -> Generator[Path, None, None]:
    """Create a short private directory for a Unix socket.

    Unix socket paths are limited to 104-108 chars, so this lives directly
    under /tmp rather than pytest's deep tmp_path.
    """
    path = Path(tempfile.mkdtemp(prefix="tn_", dir="/tmp"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def presenter() -> MemoryPresenter:
    return MemoryPresenter()


@pytest.fixture
def mock_actions() -> MagicMock:
    """ActionHandler double that records click actions without running them."""
    return MagicMock(spec=ActionHandler)


@pytest.fixture
def service(presenter: MemoryPresenter, mock_actions: MagicMock) -> NotificationService:
    return NotificationService(presenter, registry=CorrelationRegistry(), actions=mock_actions)
