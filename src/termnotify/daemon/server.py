"""Daemon server for termnotify.

This module provides the Unix socket server that owns the notification
backend. Short-lived clients connect, send one framed request, and read one
framed response; the connection then closes.

Features:
    - Unix socket in a private, owner-only directory
    - Peer credential check before any byte is read
    - One asyncio task per connection; the correlation registry is the
      only state shared between connections
    - Requests that do not wait are bounded by request_timeout_seconds;
      waiting requests block until the user reacts or the wait is
      superseded, removed, or the client disconnects
    - Graceful shutdown on SIGTERM/SIGINT, socket and PID file cleanup

Protocol:
    Frame := uint32_be length ++ JSON payload
    {"action": "send", "message": "build finished", "group": "ci-1", "wait": false}
    {"success": true, "exitCode": 0}
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
import time
from concurrent.futures import Future
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING, Any

from termnotify.config import TermNotifySettings
from termnotify.constants import SOCKET_DIR_MODE, SOCKET_FILE_MODE, ExitCode
from termnotify.daemon import peercred
from termnotify.daemon.framing import FrameError, encode_frame, read_frame
from termnotify.daemon.presenter import Presenter, create_presenter
from termnotify.daemon.protocol import (
    NotificationRequest,
    NotificationResponse,
    RequestAction,
)
from termnotify.daemon.service import NotificationService

if TYPE_CHECKING:
    from asyncio import StreamReader, StreamWriter

logger = logging.getLogger(__name__)

__all__ = [
    "DaemonServer",
    "is_daemon_running",
    "stop_daemon",
    "run_daemon",
    "main",
]


# =============================================================================
# PID File Management
# =============================================================================


def write_pid_file(pid_path: Path) -> None:
    """Write current PID to PID file."""
    try:
        pid_path.write_text(str(os.getpid()))
    except OSError as e:
        logger.warning(f"Failed to write PID file: {e}")


def remove_pid_file(pid_path: Path) -> None:
    """Remove PID file if it exists."""
    try:
        pid_path.unlink(missing_ok=True)
    except OSError as e:
        logger.debug(f"Failed to remove PID file: {e}")


def read_pid_file(pid_path: Path) -> int | None:
    """Read PID from PID file.

    Returns:
        PID as integer or None if not found/invalid.
    """
    try:
        return int(pid_path.read_text().strip())
    except (OSError, ValueError):
        return None


def is_daemon_running(pid_path: Path) -> bool:
    """Check if a daemon process owns ``pid_path``.

    A PID file naming a dead process is removed.
    """
    pid = read_pid_file(pid_path)
    if pid is None:
        return False

    try:
        os.kill(pid, 0)  # Check if process exists
        return True
    except OSError:
        remove_pid_file(pid_path)
        return False


def stop_daemon(pid_path: Path, timeout: float = 5.0) -> bool:
    """Stop the daemon named by ``pid_path``.

    Sends SIGTERM, waits up to ``timeout`` seconds, then sends SIGKILL.

    Returns:
        True if a daemon was stopped, False if none was running.
    """
    pid = read_pid_file(pid_path)
    if pid is None:
        return False

    try:
        os.kill(pid, signal.SIGTERM)
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            time.sleep(0.1)
            try:
                os.kill(pid, 0)
            except OSError:
                remove_pid_file(pid_path)
                return True
        os.kill(pid, signal.SIGKILL)
        remove_pid_file(pid_path)
        return True
    except OSError:
        remove_pid_file(pid_path)
        return False


# =============================================================================
# Daemon Server
# =============================================================================


class DaemonServer:
    """Unix socket server for the termnotify daemon.

    Attributes:
        socket_path: Path to the Unix socket.
        pid_path: Path to the PID file.
        service: Notification operations and interaction correlation.
        request_timeout: Ceiling for requests that do not wait.
    """

    def __init__(
        self,
        socket_path: Path | None = None,
        presenter: Presenter | None = None,
        settings: TermNotifySettings | None = None,
        pid_path: Path | None = None,
    ) -> None:
        """Initialize the daemon server.

        Args:
            socket_path: Path for the Unix socket (default from settings).
            presenter: Optional pre-configured presentation backend.
            settings: Settings to use (default: loaded from environment).
            pid_path: Path for the PID file (default: beside the socket).
        """
        self.settings = settings or TermNotifySettings()
        self.socket_path = socket_path or self.settings.get_socket_path()
        self.pid_path = pid_path or self.socket_path.with_suffix(".pid")
        self.request_timeout = self.settings.request_timeout_seconds
        self.shutdown_grace = self.settings.shutdown_grace_seconds

        if presenter is None:
            presenter = create_presenter(self.settings.presenter, app_name=self.settings.app_name)
        self.service = NotificationService(presenter)

        self._server: asyncio.Server | None = None
        self._shutdown_event = asyncio.Event()
        self._stopped = False
        self._client_count = 0
        self._connections: set[asyncio.Task[Any]] = set()

    # =========================================================================
    # Connection handling
    # =========================================================================

    async def handle_client(
        self,
        reader: StreamReader,
        writer: StreamWriter,
    ) -> None:
        """Handle one client connection: one request, one response, close.

        Args:
            reader: Async stream reader.
            writer: Async stream writer.
        """
        self._client_count += 1
        client_id = self._client_count
        task = asyncio.current_task()
        if task is not None:
            self._connections.add(task)

        try:
            if not self._authorize(writer):
                logger.warning(f"Client {client_id} rejected: peer is not the daemon's user")
                return

            try:
                payload = await asyncio.wait_for(read_frame(reader), timeout=self.request_timeout)
            except FrameError as e:
                logger.warning(f"Client {client_id} sent a bad frame: {e}")
                return
            except asyncio.TimeoutError:
                logger.warning(f"Client {client_id} timed out before sending a request")
                return

            request = NotificationRequest.from_json(payload)
            if request is None:
                response: NotificationResponse | None = NotificationResponse.err(
                    "Invalid request format"
                )
            else:
                response = await self._dispatch(request, reader, client_id)

            if response is None:
                return

            writer.write(encode_frame(response.to_json().encode("utf-8")))
            await writer.drain()

        except asyncio.CancelledError:
            pass
        except (ConnectionResetError, BrokenPipeError):
            logger.debug(f"Client {client_id} connection lost")
        except Exception as e:
            logger.error(f"Client {client_id} error: {e}")
        finally:
            if task is not None:
                self._connections.discard(task)
            try:
                writer.close()
                await writer.wait_closed()
            except (OSError, asyncio.CancelledError):
                pass
            logger.debug(f"Client {client_id} disconnected")

    def _authorize(self, writer: StreamWriter) -> bool:
        sock = writer.get_extra_info("socket")
        return sock is not None and peercred.is_same_user(sock)

    async def _dispatch(
        self,
        request: NotificationRequest,
        reader: StreamReader,
        client_id: int,
    ) -> NotificationResponse | None:
        """Dispatch a request to the appropriate handler.

        Returns:
            Response to send back, or None if the client went away.
        """
        logger.debug(f"Client {client_id}: {request.action.value} (group={request.group!r})")
        try:
            match request.action:
                case RequestAction.SEND:
                    return await self._handle_send(request, reader, client_id)
                case RequestAction.REMOVE:
                    return await self._bounded(self.service.remove, request.group)
                case RequestAction.LIST:
                    return await self._bounded(self.service.list, request.group)
        except asyncio.TimeoutError:
            logger.warning(f"Client {client_id}: {request.action.value} timed out")
            return NotificationResponse.err("Request timed out")
        except Exception as e:
            logger.error(f"Handler error ({request.action.value}): {e}")
            return NotificationResponse.err(str(e))

    async def _bounded(self, func: Any, *args: Any, timeout: float | None = None) -> Any:
        """Run a blocking service call in the executor under the request ceiling."""
        loop = asyncio.get_running_loop()
        return await asyncio.wait_for(
            loop.run_in_executor(None, func, *args),
            timeout=timeout if timeout is not None else self.request_timeout,
        )

    async def _handle_send(
        self,
        request: NotificationRequest,
        reader: StreamReader,
        client_id: int,
    ) -> NotificationResponse | None:
        """Handle send: present, then answer now or after the user reacts."""
        if not request.wait:
            ticket = await self._bounded(self.service.send, request)
            return ticket.future.result()

        # Waiting requests have no ceiling, presentation included
        loop = asyncio.get_running_loop()
        ticket = await loop.run_in_executor(None, self.service.send, request)
        if ticket.future.done():
            return ticket.future.result()

        logger.debug(f"Client {client_id} waiting on {ticket.token}")
        outcome = await self._wait_for_outcome(ticket.future, reader)
        if outcome is None:
            if self.service.registry.cancel(ticket.token):
                logger.info(f"Client {client_id} disconnected; wait {ticket.token} cancelled")
                return None
            # Resolved between the disconnect and the cancel
            return ticket.future.result()
        return outcome

    async def _wait_for_outcome(
        self,
        future: Future[NotificationResponse],
        reader: StreamReader,
    ) -> NotificationResponse | None:
        """Wait for ``future`` or for the client to close its end.

        Returns:
            The response, or None if the client disconnected first.
        """
        waiter = asyncio.wrap_future(future)
        disconnect = asyncio.ensure_future(self._wait_for_disconnect(reader))
        try:
            done, _ = await asyncio.wait(
                {waiter, disconnect},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            disconnect.cancel()

        if waiter in done:
            return waiter.result()
        return None

    @staticmethod
    async def _wait_for_disconnect(reader: StreamReader) -> None:
        # Bytes after the request frame are ignored; only EOF matters
        while await reader.read(1024):
            pass

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _prepare_socket_dir(self) -> None:
        socket_dir = self.socket_path.parent
        try:
            socket_dir.mkdir(mode=SOCKET_DIR_MODE, parents=True)
        except FileExistsError:
            # An existing directory keeps the mode its owner gave it
            pass
        else:
            # mkdir's mode is masked by the umask
            os.chmod(socket_dir, SOCKET_DIR_MODE)

        # Clean up stale socket
        if self.socket_path.exists() or self.socket_path.is_symlink():
            try:
                self.socket_path.unlink()
            except OSError as e:
                logger.error(f"Failed to remove stale socket: {e}")
                raise

    async def start(self) -> None:
        """Start the daemon server and serve until stop() is called."""
        self._prepare_socket_dir()

        self._server = await asyncio.start_unix_server(
            self.handle_client,
            path=str(self.socket_path),
        )

        # Set socket permissions (rw for owner only)
        os.chmod(self.socket_path, SOCKET_FILE_MODE)

        write_pid_file(self.pid_path)

        logger.info(f"Daemon started on {self.socket_path} (PID {os.getpid()})")

        await self._shutdown_event.wait()

    async def stop(self) -> None:
        """Stop the daemon server gracefully.

        Pending waits are answered with an error so their connections can
        finish; connections still open after the grace period are cancelled.
        """
        if self._stopped:
            return
        self._stopped = True
        logger.info("Shutting down daemon...")

        if self._server:
            self._server.close()

        answered = await asyncio.get_running_loop().run_in_executor(None, self.service.shutdown)
        if answered:
            logger.info(f"Answered {answered} pending waits")

        if self._connections:
            _, still_open = await asyncio.wait(
                set(self._connections), timeout=self.shutdown_grace
            )
            for task in still_open:
                task.cancel()

        if self._server:
            try:
                await asyncio.wait_for(self._server.wait_closed(), timeout=self.shutdown_grace)
            except asyncio.TimeoutError:
                logger.warning("Timed out waiting for connections to close")

        # Clean up socket
        try:
            self.socket_path.unlink(missing_ok=True)
        except OSError as e:
            logger.debug(f"Failed to remove socket: {e}")

        remove_pid_file(self.pid_path)
        self._shutdown_event.set()

        logger.info("Daemon stopped")


def setup_signals(server: DaemonServer) -> None:
    """Set up signal handlers for graceful shutdown.

    Args:
        server: DaemonServer instance to stop on signal.
    """
    loop = asyncio.get_running_loop()

    def handle_signal(sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}, shutting down...")
        asyncio.create_task(server.stop())

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, partial(handle_signal, sig))


async def run_daemon(settings: TermNotifySettings | None = None) -> None:
    """Run the daemon server until a shutdown signal arrives.

    Args:
        settings: Settings to use (default: loaded from environment).
    """
    settings = settings or TermNotifySettings()
    server = DaemonServer(settings=settings, pid_path=settings.get_pid_path())
    setup_signals(server)
    await server.start()


def setup_logging(log_level: str) -> None:
    """Configure logging to stderr."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stderr,
    )


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="termnotify-daemon",
        description="termnotify daemon: owns notifications, serves termnotify clients",
    )
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--stop", action="store_true", help="Stop the running daemon")
    group.add_argument("--status", action="store_true", help="Report whether the daemon is running")
    parser.add_argument("--socket-dir", type=Path, help="Directory for the socket (TERMNOTIFY_SOCKET_DIR)")
    parser.add_argument(
        "--presenter",
        choices=["memory", "notify-send"],
        help="Notification backend (TERMNOTIFY_PRESENTER)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
        help="Logging level (TERMNOTIFY_LOG_LEVEL)",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Main entry point with CLI handling."""
    from dotenv import load_dotenv

    load_dotenv()
    args = parse_arguments(argv)

    overrides: dict[str, Any] = {}
    if args.socket_dir is not None:
        overrides["socket_dir"] = args.socket_dir
    if args.presenter is not None:
        overrides["presenter"] = args.presenter
    if args.log_level is not None:
        overrides["log_level"] = args.log_level
    settings = TermNotifySettings(**overrides)

    setup_logging(settings.log_level)
    pid_path = settings.get_pid_path()

    if args.stop:
        if stop_daemon(pid_path):
            print("Daemon stopped", file=sys.stderr)
            return ExitCode.SUCCESS
        print("Daemon not running", file=sys.stderr)
        return ExitCode.DAEMON_NOT_RUNNING

    if args.status:
        if is_daemon_running(pid_path):
            print(f"Daemon running (PID {read_pid_file(pid_path)})", file=sys.stderr)
            print(f"Socket: {settings.get_socket_path()}", file=sys.stderr)
            return ExitCode.SUCCESS
        print("Daemon not running", file=sys.stderr)
        return ExitCode.DAEMON_NOT_RUNNING

    if is_daemon_running(pid_path):
        print(f"Daemon already running (PID {read_pid_file(pid_path)})", file=sys.stderr)
        return ExitCode.RUNTIME_ERROR

    try:
        asyncio.run(run_daemon(settings))
    except KeyboardInterrupt:
        pass
    return ExitCode.SUCCESS


if __name__ == "__main__":
    sys.exit(main())
