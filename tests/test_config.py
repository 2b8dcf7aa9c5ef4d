"""Tests for settings and constants."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from termnotify.config import TermNotifySettings, default_socket_dir
from termnotify.constants import is_all_groups


class TestTermNotifySettings:
    def test_loads_from_environment(self):
        settings = TermNotifySettings()

        assert settings.presenter == "memory"
        assert settings.request_timeout_seconds == 30.0
        assert settings.shutdown_grace_seconds == 1.0
        assert settings.log_level == "DEBUG"

    def test_socket_paths(self, monkeypatch):
        monkeypatch.setenv("TERMNOTIFY_SOCKET_DIR", "/tmp/tn-test")
        settings = TermNotifySettings()

        assert settings.get_socket_path() == Path("/tmp/tn-test/termnotify.sock")
        assert settings.get_pid_path() == Path("/tmp/tn-test/termnotify.pid")

    def test_default_socket_dir_prefers_runtime_dir(self, monkeypatch):
        monkeypatch.setenv("XDG_RUNTIME_DIR", "/run/user/1000")
        assert default_socket_dir() == Path("/run/user/1000/termnotify")

    def test_default_socket_dir_falls_back_to_home(self, monkeypatch):
        monkeypatch.delenv("XDG_RUNTIME_DIR", raising=False)
        assert default_socket_dir() == Path.home() / ".termnotify"

    def test_log_level_case_insensitive(self, monkeypatch):
        monkeypatch.setenv("TERMNOTIFY_LOG_LEVEL", "warning")
        assert TermNotifySettings().log_level == "WARNING"

    def test_rejects_unknown_presenter(self):
        with pytest.raises(ValidationError):
            TermNotifySettings(presenter="growl")

    def test_rejects_non_positive_timeout(self):
        with pytest.raises(ValidationError):
            TermNotifySettings(request_timeout_seconds=0)


@pytest.mark.parametrize(
    ("group", "expected"),
    [(None, True), ("ALL", True), ("all", True), ("aLl", True), ("ci", False), ("", False)],
)
def test_is_all_groups(group, expected):
    assert is_all_groups(group) is expected
