"""Integration tests for the termnotify daemon server and client IPC.

This module provides end-to-end tests for daemon communication:
- Client -> Unix Socket -> Server -> NotificationService -> Presenter
- Waiting requests resolved by interaction, supersession, removal,
  client disconnect and shutdown
- Rejection of bad frames, bad payloads and foreign peers

Tests use a private temporary socket directory and the in-memory presenter
so no desktop session is needed.

Usage:
    pytest tests/integration/test_daemon_integration.py -v
"""

from __future__ import annotations

import asyncio
import json
import os
import struct
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from unittest.mock import patch

import pytest

from termnotify.config import TermNotifySettings
from termnotify.constants import ExitCode
from termnotify.daemon import (
    ClickResult,
    DaemonClient,
    DaemonConnectionError,
    DaemonServer,
    MemoryPresenter,
    NotificationRequest,
    PresentedItem,
)
from termnotify.daemon.framing import encode_frame, read_frame

pytestmark = pytest.mark.integration


class SlowPresenter(MemoryPresenter):
    """Memory presenter whose present() blocks for ``delay`` seconds."""

    def __init__(self, delay: float) -> None:
        super().__init__()
        self.delay = delay

    def present(self, item: PresentedItem) -> None:
        time.sleep(self.delay)
        super().present(item)


# =============================================================================
# Helpers
# =============================================================================


@asynccontextmanager
async def running_server(
    socket_dir: Path,
    presenter: MemoryPresenter | None = None,
    request_timeout: float = 5.0,
) -> AsyncIterator[DaemonServer]:
    """Start a DaemonServer in the background and stop it afterwards."""
    settings = TermNotifySettings(
        socket_dir=socket_dir,
        presenter="memory",
        request_timeout_seconds=request_timeout,
        shutdown_grace_seconds=1.0,
    )
    server = DaemonServer(
        socket_path=settings.get_socket_path(),
        presenter=presenter or MemoryPresenter(),
        settings=settings,
        pid_path=settings.get_pid_path(),
    )
    start_task = asyncio.create_task(server.start())

    try:
        # Wait for server to start
        for _ in range(50):
            if server.socket_path.exists():
                break
            await asyncio.sleep(0.05)
        yield server
    finally:
        await server.stop()
        if not start_task.done():
            start_task.cancel()
            try:
                await start_task
            except asyncio.CancelledError:
                pass


async def in_thread(func, *args, **kwargs):
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, lambda: func(*args, **kwargs))


async def wait_for_pending(server: DaemonServer, count: int = 1) -> None:
    for _ in range(100):
        if len(server.service.registry) >= count:
            return
        await asyncio.sleep(0.02)
    raise AssertionError(f"expected {count} pending waits, have {len(server.service.registry)}")


async def wait_for_presented(server: DaemonServer, presenter: MemoryPresenter, identifier: str) -> None:
    """Wait until the item on screen for ``identifier`` belongs to the live wait."""
    for _ in range(100):
        items = presenter.enumerate(identifier)
        if items and server.service.registry.is_pending(items[0].token or ""):
            return
        await asyncio.sleep(0.02)
    raise AssertionError(f"no waiting item presented for {identifier}")


def client_for(server: DaemonServer) -> DaemonClient:
    return DaemonClient(socket_path=server.socket_path, request_timeout=5.0)


# =============================================================================
# Send / Remove / List
# =============================================================================


class TestRequests:
    @pytest.mark.asyncio
    async def test_server_start_and_stop(self, socket_dir: Path):
        async with running_server(socket_dir) as server:
            assert server.socket_path.exists()
            assert server.socket_path.stat().st_mode & 0o777 == 0o600
            assert server.socket_path.parent.stat().st_mode & 0o777 == 0o700
            assert server.pid_path.exists()

        assert not server.socket_path.exists()
        assert not server.pid_path.exists()

    @pytest.mark.asyncio
    async def test_send_without_wait(self, socket_dir: Path):
        async with running_server(socket_dir) as server:
            client = client_for(server)
            response = await in_thread(client.notify, "build finished", group="ci-1")

            assert response.success is True
            assert response.exit_code == ExitCode.SUCCESS
            assert response.click_action is None

            listed = await in_thread(client.list, "ALL")
            assert [n.identifier for n in listed.notifications] == ["ci-1"]
            assert listed.notifications[0].body == "build finished"

    @pytest.mark.asyncio
    async def test_list_empty(self, socket_dir: Path):
        async with running_server(socket_dir) as server:
            response = await in_thread(client_for(server).list)

            assert response.success is True
            assert response.notifications == ()

    @pytest.mark.asyncio
    async def test_remove_all(self, socket_dir: Path):
        async with running_server(socket_dir) as server:
            client = client_for(server)
            await in_thread(client.notify, "a", group="a")
            await in_thread(client.notify, "b", group="b")

            response = await in_thread(client.remove, "all")
            assert response.success is True

            listed = await in_thread(client.list)
            assert listed.notifications == ()

    @pytest.mark.asyncio
    async def test_remove_unknown_group_succeeds(self, socket_dir: Path):
        async with running_server(socket_dir) as server:
            response = await in_thread(client_for(server).remove, "ghost")
            assert response.success is True

    @pytest.mark.asyncio
    async def test_denied_permission(self, socket_dir: Path):
        async with running_server(socket_dir, MemoryPresenter(authorized=False)) as server:
            response = await in_thread(client_for(server).notify, "hi")

            assert response.success is False
            assert response.exit_code == ExitCode.NOT_AUTHORIZED

    @pytest.mark.asyncio
    async def test_request_past_ceiling_times_out(self, socket_dir: Path):
        async with running_server(socket_dir, SlowPresenter(1.5), request_timeout=0.5) as server:
            response = await in_thread(client_for(server).notify, "slow", group="g")

            assert response.success is False
            assert response.exit_code == ExitCode.RUNTIME_ERROR
            assert response.error == "Request timed out"


# =============================================================================
# Socket directory
# =============================================================================


class TestSocketDirectory:
    @pytest.mark.asyncio
    async def test_missing_directory_created_private(self, socket_dir: Path):
        run_dir = socket_dir / "run" / "termnotify"
        async with running_server(run_dir) as server:
            assert server.socket_path.parent == run_dir
            assert run_dir.stat().st_mode & 0o777 == 0o700

    @pytest.mark.asyncio
    async def test_existing_directory_mode_untouched(self, socket_dir: Path):
        os.chmod(socket_dir, 0o755)
        async with running_server(socket_dir) as server:
            assert server.socket_path.exists()
            assert socket_dir.stat().st_mode & 0o777 == 0o755


# =============================================================================
# Waiting requests
# =============================================================================


class TestWaiting:
    @pytest.mark.asyncio
    async def test_wait_resolved_by_click(self, socket_dir: Path):
        presenter = MemoryPresenter()
        async with running_server(socket_dir, presenter) as server:
            pending = asyncio.ensure_future(
                in_thread(client_for(server).notify, "deploy?", group="dlg", wait=True)
            )
            await wait_for_presented(server, presenter, "dlg")

            assert presenter.interact("dlg", ClickResult.CLICKED) is True
            response = await asyncio.wait_for(pending, timeout=5)

            assert response.success is True
            assert response.click_action is ClickResult.CLICKED

    @pytest.mark.asyncio
    async def test_supersession(self, socket_dir: Path):
        presenter = MemoryPresenter()
        async with running_server(socket_dir, presenter) as server:
            client = client_for(server)
            first = asyncio.ensure_future(in_thread(client.notify, "one", group="dlg", wait=True))
            await wait_for_pending(server)

            second = asyncio.ensure_future(in_thread(client.notify, "two", group="dlg", wait=True))

            response = await asyncio.wait_for(first, timeout=5)
            assert response.success is True
            assert response.click_action is ClickResult.SUPERSEDED
            assert not second.done()

            await wait_for_presented(server, presenter, "dlg")
            presenter.interact("dlg", ClickResult.CLOSED)
            response = await asyncio.wait_for(second, timeout=5)
            assert response.click_action is ClickResult.CLOSED

    @pytest.mark.asyncio
    async def test_remove_resolves_wait(self, socket_dir: Path):
        async with running_server(socket_dir) as server:
            client = client_for(server)
            pending = asyncio.ensure_future(in_thread(client.notify, "x", group="g", wait=True))
            await wait_for_pending(server)

            await in_thread(client.remove, "ALL")
            response = await asyncio.wait_for(pending, timeout=5)

            assert response.click_action is ClickResult.CLOSED

    @pytest.mark.asyncio
    async def test_client_disconnect_cancels_wait(self, socket_dir: Path):
        async with running_server(socket_dir) as server:
            reader, writer = await asyncio.open_unix_connection(str(server.socket_path))
            request = NotificationRequest(message="x", group="g", wait=True)
            writer.write(encode_frame(request.to_json().encode()))
            await writer.drain()
            await wait_for_pending(server)

            writer.close()
            await writer.wait_closed()

            for _ in range(100):
                if len(server.service.registry) == 0:
                    break
                await asyncio.sleep(0.02)
            assert len(server.service.registry) == 0

    @pytest.mark.asyncio
    async def test_shutdown_answers_waits(self, socket_dir: Path):
        async with running_server(socket_dir) as server:
            pending = asyncio.ensure_future(
                in_thread(client_for(server).notify, "x", group="g", wait=True)
            )
            await wait_for_pending(server)

            await server.stop()
            response = await asyncio.wait_for(pending, timeout=5)

            assert response.success is False
            assert response.error == "Daemon shutting down"
            assert not server.socket_path.exists()


# =============================================================================
# Rejections
# =============================================================================


class TestRejections:
    @pytest.mark.asyncio
    async def test_malformed_payload(self, socket_dir: Path):
        async with running_server(socket_dir) as server:
            reader, writer = await asyncio.open_unix_connection(str(server.socket_path))
            writer.write(encode_frame(b'{"action": "send", "wait": "soon"}'))
            await writer.drain()

            response = json.loads(await read_frame(reader))

            assert response["success"] is False
            assert response["exitCode"] == ExitCode.RUNTIME_ERROR
            assert response["error"] == "Invalid request format"

            writer.close()
            await writer.wait_closed()

    @pytest.mark.asyncio
    async def test_oversize_frame_closed_without_response(self, socket_dir: Path):
        async with running_server(socket_dir) as server:
            reader, writer = await asyncio.open_unix_connection(str(server.socket_path))
            writer.write(struct.pack(">I", 1_000_000))
            await writer.drain()

            assert await asyncio.wait_for(reader.read(), timeout=5) == b""

            writer.close()
            await writer.wait_closed()

    @pytest.mark.asyncio
    async def test_foreign_peer_rejected(self, socket_dir: Path):
        presenter = MemoryPresenter()
        async with running_server(socket_dir, presenter) as server:
            with patch("termnotify.daemon.server.peercred.is_same_user", return_value=False):
                with pytest.raises(DaemonConnectionError):
                    await in_thread(client_for(server).notify, "hi")

            assert presenter.enumerate() == []
