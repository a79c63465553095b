"""
Shared fixtures for the test suite.
"""

import os
from datetime import datetime
from pathlib import Path

import pytest

from stellar.config.settings import Config, StateConfig
from stellar.organizer import FolderOrganizer
from stellar.utils.logging_config import LoggingConfig


@pytest.fixture
def target(tmp_path):
    """Empty folder to organize."""
    folder = tmp_path / "inbox"
    folder.mkdir()
    return folder


@pytest.fixture
def make_file():
    """Factory creating a file with content and an optional mtime."""

    def _make(path: Path, content: bytes = b"data", modified: datetime = None) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        if modified is not None:
            stamp = modified.timestamp()
            os.utime(path, (stamp, stamp))
        return path

    return _make


@pytest.fixture
def config(tmp_path):
    """Configuration keeping all state inside the test folder."""
    cfg = Config()
    cfg.state = StateConfig(state_directory=tmp_path / "state")
    cfg.logging = LoggingConfig(console_output=False, file_output=False)
    cfg.watcher.debounce_seconds = 0.0
    cfg.watcher.poll_interval = 0.01
    return cfg


@pytest.fixture
def organizer(config):
    """Organizer using the isolated configuration."""
    return FolderOrganizer(config=config)
