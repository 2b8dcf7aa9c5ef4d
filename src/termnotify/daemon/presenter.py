"""Notification presentation backends.

The daemon core never renders anything itself. It talks to a Presenter,
which shows items, removes them, lists what is on screen, and reports user
interactions back through a handler the core installs.

API Contract:
    - present(item) -> None, raises PresentationError
    - clear(identifier | None) -> None (None clears everything)
    - enumerate(identifier | None) -> list[PresentedItem]
    - set_interaction_handler(handler) -> None
    - close() -> None

Interaction handlers may be called from any thread.

Backends:
    - memory: Tracks delivered items in memory; interactions are reported
      by calling interact(). Used headless and in tests.
    - notify-send: Renders through libnotify's notify-send executable,
      one watcher thread per item.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from termnotify.config import PresenterBackend
from termnotify.daemon.protocol import ClickResult, NotificationInfo

logger = logging.getLogger(__name__)

__all__ = [
    "PresentedItem",
    "PresentationError",
    "InteractionHandler",
    "Presenter",
    "MemoryPresenter",
    "NotifySendPresenter",
    "create_presenter",
]


class PresentationError(Exception):
    """Raised when the backend refuses or fails to present an item.

    Attributes:
        denied: True when the cause is a denied notification permission.
    """

    def __init__(self, message: str, *, denied: bool = False) -> None:
        super().__init__(message)
        self.denied = denied


@dataclass(frozen=True, slots=True)
class PresentedItem:
    """A notification as handed to the backend.

    Attributes:
        identifier: Replacement key; the group identifier or the wait token.
        user_info: Opaque metadata returned verbatim on interaction
            (click-action payloads and the wait token).
    """

    identifier: str
    body: str = ""
    title: str = ""
    subtitle: str = ""
    sound: str | None = None
    app_icon: str | None = None
    content_image: str | None = None
    sender: str | None = None
    interruption_level: str = "active"
    relevance_score: float | None = None
    user_info: dict[str, Any] = field(default_factory=dict)

    @property
    def token(self) -> str | None:
        return self.user_info.get("token")

    def to_info(self) -> NotificationInfo:
        return NotificationInfo(
            identifier=self.identifier,
            title=self.title,
            subtitle=self.subtitle,
            body=self.body,
        )


InteractionHandler = Callable[[PresentedItem, ClickResult], bool]


@runtime_checkable
class Presenter(Protocol):
    """Protocol defining the interface for presentation backends."""

    def present(self, item: PresentedItem) -> None: ...

    def clear(self, identifier: str | None) -> None: ...

    def enumerate(self, identifier: str | None = None) -> list[PresentedItem]: ...

    def set_interaction_handler(self, handler: InteractionHandler) -> None: ...

    def close(self) -> None: ...


class MemoryPresenter:
    """In-memory backend that records delivered items.

    Presenting an item with an identifier that is already delivered
    replaces it. Interactions are reported by calling interact(), from
    any thread.

    Attributes:
        authorized: When False, present() fails as if permission was denied.
    """

    def __init__(self, authorized: bool = True) -> None:
        self.authorized = authorized
        self._lock = threading.Lock()
        self._delivered: dict[str, PresentedItem] = {}
        self._handler: InteractionHandler | None = None

    def set_interaction_handler(self, handler: InteractionHandler) -> None:
        self._handler = handler

    def present(self, item: PresentedItem) -> None:
        if not self.authorized:
            raise PresentationError(
                "Notifications not allowed. Enable notifications for termnotify.",
                denied=True,
            )

        with self._lock:
            self._delivered.pop(item.identifier, None)
            self._delivered[item.identifier] = item

        logger.info(f"Presented {item.identifier}: {item.title!r} {item.body!r}")

    def clear(self, identifier: str | None) -> None:
        with self._lock:
            if identifier is None:
                self._delivered.clear()
            else:
                self._delivered.pop(identifier, None)

    def enumerate(self, identifier: str | None = None) -> list[PresentedItem]:
        with self._lock:
            if identifier is None:
                return list(self._delivered.values())
            item = self._delivered.get(identifier)
            return [item] if item is not None else []

    def interact(self, identifier: str, result: ClickResult) -> bool:
        """Report a user interaction with a delivered item.

        The item is no longer delivered afterwards.

        Returns:
            True if the interaction resolved a waiting request.
        """
        with self._lock:
            item = self._delivered.pop(identifier, None)
        if item is None:
            logger.debug(f"Interaction with unknown item {identifier}")
            return False
        return self._report(item, result)

    def close(self) -> None:
        self.clear(None)

    def _report(self, item: PresentedItem, result: ClickResult) -> bool:
        handler = self._handler
        if handler is None:
            return False
        return handler(item, result)


# notify-send urgency per interruption level
_URGENCY = {
    "passive": "low",
    "active": "normal",
    "timeSensitive": "normal",
    "critical": "critical",
}

# Action key notify-send prints when the notification body is clicked
_DEFAULT_ACTION = "default"


@dataclass(slots=True)
class _Watcher:
    item: PresentedItem
    process: subprocess.Popen[str]
    server_id: str | None = None
    suppressed: bool = False


class NotifySendPresenter(MemoryPresenter):
    """libnotify backend driving the notify-send executable.

    Each item runs ``notify-send --wait --print-id`` in a subprocess watched
    by a daemon thread. The first output line is the notification id (reused
    with --replace-id when the same identifier is presented again); an
    invoked action is printed before the process exits.
    """

    def __init__(self, app_name: str = "termnotify", executable: str = "notify-send") -> None:
        super().__init__()
        self.app_name = app_name
        self.executable = shutil.which(executable) or executable
        self._watchers: dict[str, _Watcher] = {}

    def present(self, item: PresentedItem) -> None:
        with self._lock:
            previous = self._watchers.pop(item.identifier, None)
        replace_id = None
        if previous is not None:
            replace_id = previous.server_id
            self._stop(previous)

        args = self._build_args(item, replace_id)
        try:
            process = subprocess.Popen(
                args,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                stdin=subprocess.DEVNULL,
                text=True,
            )
        except FileNotFoundError as e:
            raise PresentationError(f"{self.executable} not found; install libnotify") from e
        except OSError as e:
            raise PresentationError(f"Failed to run {self.executable}: {e}") from e

        watcher = _Watcher(item=item, process=process)
        with self._lock:
            self._delivered.pop(item.identifier, None)
            self._delivered[item.identifier] = item
            self._watchers[item.identifier] = watcher

        threading.Thread(
            target=self._watch,
            args=(watcher,),
            name=f"notify-send-{item.identifier[:8]}",
            daemon=True,
        ).start()
        logger.info(f"Presented {item.identifier} via notify-send")

    def clear(self, identifier: str | None) -> None:
        with self._lock:
            if identifier is None:
                stopping = list(self._watchers.values())
                self._watchers.clear()
            else:
                watcher = self._watchers.pop(identifier, None)
                stopping = [watcher] if watcher is not None else []
        for watcher in stopping:
            self._stop(watcher)
        super().clear(identifier)

    def _build_args(self, item: PresentedItem, replace_id: str | None) -> list[str]:
        args = [
            self.executable,
            "--wait",
            "--print-id",
            f"--action={_DEFAULT_ACTION}=Open",
            f"--app-name={item.sender or self.app_name}",
            f"--urgency={_URGENCY.get(item.interruption_level, 'normal')}",
        ]
        if replace_id:
            args.append(f"--replace-id={replace_id}")
        if item.app_icon:
            args.append(f"--icon={item.app_icon}")
        if item.content_image:
            args.append(f"--hint=string:image-path:{item.content_image}")
        if item.sound:
            sound = "message-new-instant" if item.sound.lower() == "default" else item.sound
            args.append(f"--hint=string:sound-name:{sound}")

        body = "\n".join(part for part in (item.subtitle, item.body) if part)
        args += ["--", item.title or self.app_name, body]
        return args

    def _watch(self, watcher: _Watcher) -> None:
        action = None
        assert watcher.process.stdout is not None
        for line in watcher.process.stdout:
            line = line.strip()
            if not line:
                continue
            if watcher.server_id is None and line.isdigit():
                watcher.server_id = line
                continue
            action = line
        returncode = watcher.process.wait()

        identifier = watcher.item.identifier
        with self._lock:
            if watcher.suppressed or self._watchers.get(identifier) is not watcher:
                return
            del self._watchers[identifier]
            self._delivered.pop(identifier, None)

        if returncode != 0:
            logger.warning(f"notify-send exited with {returncode} for {identifier}")

        if action == _DEFAULT_ACTION:
            result = ClickResult.CLICKED
        elif action:
            result = ClickResult.ACTION_BUTTON
        else:
            result = ClickResult.CLOSED
        self._report(watcher.item, result)

    @staticmethod
    def _stop(watcher: _Watcher) -> None:
        watcher.suppressed = True
        if watcher.process.poll() is None:
            watcher.process.terminate()


def create_presenter(backend: PresenterBackend = "memory", *, app_name: str = "termnotify") -> Presenter:
    """Create a presentation backend.

    Args:
        backend: The backend to use ('memory' or 'notify-send').
        app_name: Application name shown by the backend.

    Returns:
        An instance implementing the Presenter protocol.

    Raises:
        ValueError: If an unknown backend is specified.
    """
    match backend:
        case "memory":
            logger.info("Creating MemoryPresenter")
            return MemoryPresenter()

        case "notify-send":
            logger.info(f"Creating NotifySendPresenter with app_name={app_name}")
            return NotifySendPresenter(app_name=app_name)

        case _:
            raise ValueError(
                f"Unknown presenter backend: {backend!r}. "
                f"Valid options are: 'memory', 'notify-send'"
            )
