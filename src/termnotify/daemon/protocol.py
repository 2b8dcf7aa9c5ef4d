"""JSON protocol definitions for daemon IPC communication.

This module defines the request and response records exchanged between the
termnotify client and daemon. Each record travels as the payload of exactly
one length-prefixed frame (see termnotify.daemon.framing).

Protocol Overview:
    - One request frame and one response frame per connection
    - Payloads are UTF-8 JSON objects with camelCase keys
    - Request:  {"action": "send", "message": "...", "group": "...", "wait": false}
    - Response: {"success": true, "exitCode": 0, "clickAction": "clicked"}

Actions:
    - send: Present a notification, optionally waiting for the user
    - remove: Remove delivered notifications for a group (or "ALL")
    - list: Summarise delivered notifications, optionally for one group
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from termnotify.constants import ExitCode

__all__ = [
    "RequestAction",
    "ClickResult",
    "NotificationRequest",
    "NotificationResponse",
    "NotificationInfo",
]

# Optional string fields of a request, in wire order (attribute, JSON key)
_REQUEST_STRING_FIELDS: tuple[tuple[str, str], ...] = (
    ("message", "message"),
    ("title", "title"),
    ("subtitle", "subtitle"),
    ("sound", "sound"),
    ("open_url", "openURL"),
    ("execute", "execute"),
    ("activate", "activate"),
    ("app_icon", "appIcon"),
    ("content_image", "contentImage"),
    ("group", "group"),
    ("sender", "sender"),
    ("interruption_level", "interruptionLevel"),
)


class RequestAction(str, Enum):
    """Available request actions."""

    SEND = "send"
    REMOVE = "remove"
    LIST = "list"


class ClickResult(str, Enum):
    """How a waited-on notification was resolved."""

    CLICKED = "clicked"
    CLOSED = "closed"
    SUPERSEDED = "timed-out-by-supersession"
    ACTION_BUTTON = "actionButton"


def _load_object(data: str | bytes) -> dict[str, Any] | None:
    """Decode a JSON object, returning None for anything else."""
    try:
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        parsed = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


@dataclass(frozen=True, slots=True)
class NotificationRequest:
    """Protocol message for daemon requests.

    Immutable once constructed; a client builds exactly one per invocation.

    Attributes:
        action: What the daemon should do.
        message: Notification body (send).
        title: Notification title.
        subtitle: Notification subtitle.
        sound: Sound name ("default" for the system sound).
        open_url: URL opened when the notification is clicked.
        execute: Shell command run when the notification is clicked.
        activate: Application identifier brought forward when clicked.
        app_icon: Path to a custom application icon.
        content_image: Path to an image attached to the notification.
        group: Replacement key; also the filter for remove and list.
        sender: Application identifier to present the notification as.
        interruption_level: passive, active, timeSensitive or critical.
        relevance_score: Priority within notification summaries (0.0-1.0).
        wait: Block until the user interacts with the notification.
    """

    action: RequestAction = RequestAction.SEND
    message: str | None = None
    title: str | None = None
    subtitle: str | None = None
    sound: str | None = None
    open_url: str | None = None
    execute: str | None = None
    activate: str | None = None
    app_icon: str | None = None
    content_image: str | None = None
    group: str | None = None
    sender: str | None = None
    interruption_level: str | None = None
    relevance_score: float | None = None
    wait: bool = False

    @classmethod
    def from_json(cls, data: str | bytes) -> NotificationRequest | None:
        """Parse a NotificationRequest from JSON.

        Args:
            data: JSON string or bytes to parse.

        Returns:
            Parsed NotificationRequest or None if invalid.

        Example:
            >>> req = NotificationRequest.from_json('{"action": "list"}')
            >>> req.action
            <RequestAction.LIST: 'list'>
        """
        parsed = _load_object(data)
        if parsed is None:
            return None

        try:
            action = RequestAction(parsed.get("action"))
        except ValueError:
            return None

        values: dict[str, Any] = {}
        for attr, key in _REQUEST_STRING_FIELDS:
            value = parsed.get(key)
            if value is not None and not isinstance(value, str):
                return None
            values[attr] = value

        score = parsed.get("relevanceScore")
        if score is not None:
            # bool is an int subclass but never a valid score
            if isinstance(score, bool) or not isinstance(score, (int, float)):
                return None
            score = float(score)

        wait = parsed.get("wait", False)
        if not isinstance(wait, bool):
            return None

        return cls(action=action, relevance_score=score, wait=wait, **values)

    def to_json(self) -> str:
        """Serialize to a JSON string, omitting absent optional fields."""
        message: dict[str, Any] = {"action": self.action.value}
        for attr, key in _REQUEST_STRING_FIELDS:
            value = getattr(self, attr)
            if value is not None:
                message[key] = value
        if self.relevance_score is not None:
            message["relevanceScore"] = self.relevance_score
        message["wait"] = self.wait
        return json.dumps(message)


@dataclass(frozen=True, slots=True)
class NotificationInfo:
    """Summary of one delivered notification, returned by list."""

    identifier: str
    title: str = ""
    subtitle: str = ""
    body: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "identifier": self.identifier,
            "title": self.title,
            "subtitle": self.subtitle,
            "body": self.body,
        }

    @classmethod
    def from_dict(cls, data: Any) -> NotificationInfo | None:
        if not isinstance(data, dict):
            return None
        identifier = data.get("identifier")
        if not isinstance(identifier, str):
            return None
        return cls(
            identifier=identifier,
            title=str(data.get("title") or ""),
            subtitle=str(data.get("subtitle") or ""),
            body=str(data.get("body") or ""),
        )


@dataclass(frozen=True, slots=True)
class NotificationResponse:
    """Protocol message for daemon responses.

    Produced exactly once per request and transmitted exactly once.

    Attributes:
        success: Whether the operation succeeded.
        exit_code: Exit-code class for the invoking process.
        error: Human-readable error if failed.
        click_action: How a waited-on notification was resolved.
        notifications: Delivered-notification summaries (list only).
    """

    success: bool
    exit_code: int = ExitCode.SUCCESS
    error: str | None = None
    click_action: ClickResult | None = None
    notifications: tuple[NotificationInfo, ...] | None = None

    @classmethod
    def from_json(cls, data: str | bytes) -> NotificationResponse | None:
        """Parse a NotificationResponse from JSON.

        Args:
            data: JSON string or bytes to parse.

        Returns:
            Parsed NotificationResponse or None if invalid.
        """
        parsed = _load_object(data)
        if parsed is None:
            return None

        success = parsed.get("success")
        exit_code = parsed.get("exitCode", ExitCode.SUCCESS if success else ExitCode.RUNTIME_ERROR)
        if not isinstance(success, bool) or isinstance(exit_code, bool) or not isinstance(exit_code, int):
            return None

        error = parsed.get("error")
        if error is not None and not isinstance(error, str):
            return None

        click_action = None
        if parsed.get("clickAction") is not None:
            try:
                click_action = ClickResult(parsed["clickAction"])
            except ValueError:
                return None

        notifications = None
        if parsed.get("notifications") is not None:
            raw = parsed["notifications"]
            if not isinstance(raw, list):
                return None
            infos = [NotificationInfo.from_dict(item) for item in raw]
            if any(info is None for info in infos):
                return None
            notifications = tuple(infos)

        return cls(
            success=success,
            exit_code=exit_code,
            error=error,
            click_action=click_action,
            notifications=notifications,
        )

    def to_json(self) -> str:
        """Serialize to a JSON string, omitting absent optional fields."""
        response: dict[str, Any] = {
            "success": self.success,
            "exitCode": int(self.exit_code),
        }

        if self.error is not None:
            response["error"] = self.error

        if self.click_action is not None:
            response["clickAction"] = self.click_action.value

        if self.notifications is not None:
            response["notifications"] = [info.to_dict() for info in self.notifications]

        return json.dumps(response)

    @classmethod
    def ok(
        cls,
        click_action: ClickResult | None = None,
        notifications: list[NotificationInfo] | tuple[NotificationInfo, ...] | None = None,
    ) -> NotificationResponse:
        """Create a successful response."""
        return cls(
            success=True,
            exit_code=ExitCode.SUCCESS,
            click_action=click_action,
            notifications=tuple(notifications) if notifications is not None else None,
        )

    @classmethod
    def err(
        cls,
        error: str,
        exit_code: int = ExitCode.RUNTIME_ERROR,
        click_action: ClickResult | None = None,
    ) -> NotificationResponse:
        """Create an error response."""
        return cls(success=False, exit_code=exit_code, error=error, click_action=click_action)

    @classmethod
    def superseded(cls) -> NotificationResponse:
        """Response for a wait displaced by a newer request in its group."""
        return cls.ok(click_action=ClickResult.SUPERSEDED)
