"""Notification daemon and its client driver.

The daemon owns the notification backend and outlives the short-lived
termnotify invocations that talk to it over a Unix socket. Each
invocation opens one connection, sends one length-prefixed JSON request,
and reads one response.

Architecture:
    - DaemonServer: Unix socket server, one task per connection
    - NotificationService: send/remove/list and interaction correlation
    - CorrelationRegistry: wait tokens, group supersession
    - Presenter: pluggable presentation backend (memory, notify-send)
    - DaemonClient: synchronous client used by the CLI

Usage:
    # Server
    >>> from termnotify.daemon import DaemonServer
    >>> server = DaemonServer()
    >>> await server.start()

    # Client
    >>> from termnotify.daemon import DaemonClient
    >>> response = DaemonClient().notify("tests passed", group="ci")
    >>> response.success
    True
"""

from termnotify.daemon.client import (
    DaemonClient,
    DaemonClientError,
    DaemonConnectionError,
    DaemonNotRunningError,
    DaemonProtocolError,
    DaemonTimeoutError,
)
from termnotify.daemon.framing import (
    FrameError,
    FrameTooLargeError,
    TruncatedFrameError,
    decode_length,
    encode_frame,
)
from termnotify.daemon.presenter import (
    MemoryPresenter,
    NotifySendPresenter,
    PresentationError,
    PresentedItem,
    Presenter,
    create_presenter,
)
from termnotify.daemon.protocol import (
    ClickResult,
    NotificationInfo,
    NotificationRequest,
    NotificationResponse,
    RequestAction,
)
from termnotify.daemon.registry import CorrelationRegistry
from termnotify.daemon.server import (
    DaemonServer,
    is_daemon_running,
    run_daemon,
    stop_daemon,
)
from termnotify.daemon.service import NotificationService

__all__ = [
    # Server
    "DaemonServer",
    "is_daemon_running",
    "run_daemon",
    "stop_daemon",
    # Client
    "DaemonClient",
    "DaemonClientError",
    "DaemonConnectionError",
    "DaemonNotRunningError",
    "DaemonProtocolError",
    "DaemonTimeoutError",
    # Core
    "NotificationService",
    "CorrelationRegistry",
    # Presentation
    "Presenter",
    "PresentedItem",
    "PresentationError",
    "MemoryPresenter",
    "NotifySendPresenter",
    "create_presenter",
    # Protocol
    "RequestAction",
    "ClickResult",
    "NotificationRequest",
    "NotificationResponse",
    "NotificationInfo",
    "FrameError",
    "FrameTooLargeError",
    "TruncatedFrameError",
    "encode_frame",
    "decode_length",
]
