"""DaemonClient - Client driver for termnotify daemon IPC.

This module provides the synchronous client each short-lived termnotify
invocation uses. Every request opens its own connection, writes one framed
request, blocks reading one framed response, and closes.

Errors form a small closed taxonomy so the caller can pick an exit code:

    DaemonClientError
    ├── DaemonConnectionError       exit 1 (runtime error)
    │   └── DaemonNotRunningError   exit 72 (no daemon listening)
    ├── DaemonTimeoutError          exit 1
    └── DaemonProtocolError         exit 1

Usage:
    client = DaemonClient()
    response = client.notify("build finished", group="ci-1")

    # Block until the user reacts
    response = client.notify("deploy?", group="dlg", wait=True)
    print(response.click_action)
"""

from __future__ import annotations

import errno
import logging
import socket
from pathlib import Path
from typing import Any

from termnotify.config import TermNotifySettings
from termnotify.constants import RESPONSE_GRACE_SECONDS, ExitCode
from termnotify.daemon.framing import (
    FrameError,
    FrameTooLargeError,
    encode_frame,
    recv_frame,
)
from termnotify.daemon.protocol import (
    NotificationRequest,
    NotificationResponse,
    RequestAction,
)

logger = logging.getLogger(__name__)

__all__ = [
    "DaemonClient",
    "DaemonClientError",
    "DaemonConnectionError",
    "DaemonNotRunningError",
    "DaemonTimeoutError",
    "DaemonProtocolError",
]

# connect() errnos meaning nobody is listening at the socket path
_NOT_RUNNING_ERRNOS = frozenset({errno.ENOENT, errno.ECONNREFUSED})


# =============================================================================
# Exceptions
# =============================================================================


class DaemonClientError(Exception):
    """Base exception for daemon client errors."""

    exit_code: int = ExitCode.RUNTIME_ERROR


class DaemonConnectionError(DaemonClientError):
    """Raised when connecting to or talking with the daemon fails."""


class DaemonNotRunningError(DaemonConnectionError):
    """Raised when no daemon is listening on the socket."""

    exit_code = ExitCode.DAEMON_NOT_RUNNING


class DaemonTimeoutError(DaemonClientError):
    """Raised when a request times out."""


class DaemonProtocolError(DaemonClientError):
    """Raised when the daemon's reply cannot be decoded."""


# =============================================================================
# DaemonClient
# =============================================================================


class DaemonClient:
    """Synchronous one-request-per-connection client for the termnotify daemon.

    Attributes:
        socket_path: Path to the Unix socket.
        connect_timeout: Timeout for the connection in seconds.
        request_timeout: Timeout for a response to a request that does not
            wait. Requests that wait block without a timeout.
    """

    def __init__(
        self,
        socket_path: Path | str | None = None,
        connect_timeout: float | None = None,
        request_timeout: float | None = None,
        settings: TermNotifySettings | None = None,
    ) -> None:
        """Initialize the daemon client.

        Args:
            socket_path: Path to Unix socket (default from settings).
            connect_timeout: Connection timeout in seconds.
            request_timeout: Response timeout in seconds; defaults to the
                daemon's request ceiling plus a grace period.
            settings: Settings to use (default: loaded from environment).
        """
        if socket_path is None or connect_timeout is None or request_timeout is None:
            settings = settings or TermNotifySettings()
        self.socket_path = Path(socket_path) if socket_path else settings.get_socket_path()

        if connect_timeout is not None:
            self.connect_timeout = connect_timeout
        else:
            self.connect_timeout = settings.connect_timeout_seconds

        if request_timeout is not None:
            self.request_timeout = request_timeout
        else:
            self.request_timeout = settings.request_timeout_seconds + RESPONSE_GRACE_SECONDS

    # =========================================================================
    # Request/Response
    # =========================================================================

    def send(self, request: NotificationRequest) -> NotificationResponse:
        """Send one request and return the daemon's response.

        Args:
            request: The request to send.

        Returns:
            The decoded response (which may itself report a failure).

        Raises:
            DaemonNotRunningError: If no daemon is listening.
            DaemonConnectionError: If the connection fails or drops.
            DaemonTimeoutError: If the daemon does not answer in time.
            DaemonProtocolError: If the response cannot be decoded.
        """
        try:
            frame = encode_frame(request.to_json().encode("utf-8"))
        except FrameError as e:
            raise DaemonProtocolError(f"Request too large: {e}") from e

        sock = self._connect()
        try:
            return self._exchange(sock, frame, wait=request.wait)
        finally:
            sock.close()

    def _connect(self) -> socket.socket:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.settimeout(self.connect_timeout)
            sock.connect(str(self.socket_path))
        except (FileNotFoundError, ConnectionRefusedError) as e:
            sock.close()
            raise DaemonNotRunningError(
                f"Daemon is not running (no listener at {self.socket_path}). "
                "Start it with: termnotify-daemon"
            ) from e
        except TimeoutError as e:
            sock.close()
            raise DaemonTimeoutError("Connection timed out") from e
        except OSError as e:
            sock.close()
            if e.errno in _NOT_RUNNING_ERRNOS:
                raise DaemonNotRunningError(
                    f"Daemon is not running (no listener at {self.socket_path})"
                ) from e
            raise DaemonConnectionError(f"Connection failed: {e}") from e
        return sock

    def _exchange(self, sock: socket.socket, frame: bytes, wait: bool) -> NotificationResponse:
        """Write the request frame and read the response frame.

        Raises:
            DaemonConnectionError: If the socket fails or closes early.
            DaemonTimeoutError: If the operation times out.
            DaemonProtocolError: If response parsing fails.
        """
        try:
            sock.settimeout(self.request_timeout)
            sock.sendall(frame)
        except TimeoutError as e:
            raise DaemonTimeoutError("Send timed out") from e
        except BrokenPipeError as e:
            raise DaemonConnectionError("Connection lost (broken pipe)") from e
        except OSError as e:
            raise DaemonConnectionError(f"Send failed: {e}") from e

        try:
            # Waiting requests resolve on human time; no ceiling
            sock.settimeout(None if wait else self.request_timeout)
            payload = recv_frame(sock)
        except TimeoutError as e:
            raise DaemonTimeoutError("Receive timed out") from e
        except FrameTooLargeError as e:
            raise DaemonProtocolError(str(e)) from e
        except FrameError as e:
            raise DaemonConnectionError("Connection closed by daemon") from e
        except OSError as e:
            raise DaemonConnectionError(f"Receive failed: {e}") from e

        response = NotificationResponse.from_json(payload)
        if response is None:
            raise DaemonProtocolError("Invalid JSON response")
        return response

    # =========================================================================
    # High-Level Commands
    # =========================================================================

    def notify(self, message: str, wait: bool = False, **fields: Any) -> NotificationResponse:
        """Send a notification.

        Args:
            message: Notification body.
            wait: Block until the user reacts.
            **fields: Other NotificationRequest fields (title, group, ...).

        Example:
            >>> response = client.notify("confirm?", group="dlg", wait=True)
            >>> response.click_action
            <ClickResult.CLICKED: 'clicked'>
        """
        request = NotificationRequest(action=RequestAction.SEND, message=message, wait=wait, **fields)
        return self.send(request)

    def remove(self, group: str) -> NotificationResponse:
        """Remove delivered notifications for ``group`` ("ALL" for every one)."""
        return self.send(NotificationRequest(action=RequestAction.REMOVE, group=group))

    def list(self, group: str | None = None) -> NotificationResponse:
        """List delivered notifications, optionally for one group."""
        return self.send(NotificationRequest(action=RequestAction.LIST, group=group))
