"""Configuration settings for termnotify.

This module provides Pydantic Settings for configuration management.
All settings are loaded from environment variables with the TERMNOTIFY_
prefix (or a .env file). Every setting has a working default so the
daemon starts without any configuration.
"""

import os
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from termnotify.constants import PID_NAME, SOCKET_DIR_NAME, SOCKET_NAME

# Type alias for presentation backend selection
PresenterBackend = Literal["memory", "notify-send"]

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def default_socket_dir() -> Path:
    """Return the per-user private directory that holds the socket.

    Prefers $XDG_RUNTIME_DIR (already private to the user on most Linux
    systems), falling back to a dot-directory in the home directory.
    """
    runtime_dir = os.environ.get("XDG_RUNTIME_DIR")
    if runtime_dir:
        return Path(runtime_dir) / SOCKET_DIR_NAME
    return Path.home() / f".{SOCKET_DIR_NAME}"


class TermNotifySettings(BaseSettings):
    """Configuration settings for the termnotify daemon and client.

    Attributes:
        socket_dir: Private directory holding the socket and PID file
        presenter: Notification backend used by the daemon
        app_name: Application name shown by the notification backend
        request_timeout_seconds: Ceiling for requests that do not wait
        connect_timeout_seconds: Client connection timeout
        shutdown_grace_seconds: How long shutdown waits for open connections
        log_level: Logging level
    """

    model_config = SettingsConfigDict(
        env_prefix="TERMNOTIFY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Allow extra env vars without error
    )

    socket_dir: Path | None = Field(
        default=None,
        description="Directory for the daemon socket (default: $XDG_RUNTIME_DIR/termnotify)",
    )

    presenter: PresenterBackend = Field(
        default="notify-send",
        description="Notification backend ('memory' or 'notify-send')",
    )
    app_name: str = Field(
        default="termnotify",
        description="Application name passed to the notification backend",
    )

    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Ceiling for send/remove/list requests that do not wait",
    )
    connect_timeout_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Client socket connection timeout",
    )
    shutdown_grace_seconds: float = Field(
        default=5.0,
        ge=0,
        description="How long shutdown waits for in-flight connections",
    )

    log_level: LogLevel = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_log_level(cls, value: object) -> object:
        """Accept log levels in any case."""
        if isinstance(value, str):
            return value.strip().upper()
        return value

    def get_socket_dir(self) -> Path:
        """Get the socket directory, expanding user home."""
        if self.socket_dir is None:
            return default_socket_dir()
        return self.socket_dir.expanduser()

    def get_socket_path(self) -> Path:
        """Get the full path of the daemon socket."""
        return self.get_socket_dir() / SOCKET_NAME

    def get_pid_path(self) -> Path:
        """Get the full path of the daemon PID file."""
        return self.get_socket_dir() / PID_NAME
