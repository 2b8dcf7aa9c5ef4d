"""Notification operations behind the daemon's request router.

NotificationService turns decoded requests into presenter calls and
correlates user interactions with waiting requests through the
CorrelationRegistry. Every method is synchronous and thread-safe; the
server calls them from executor threads, and the presenter calls
handle_interaction() from its own delivery threads.

Send flow:
    1. Mint a wait token; the item identifier is the group or the token.
    2. If waiting, register the token (superseding the group's previous
       wait). If not waiting but grouped, supersede the group's wait.
    3. Present the item. On failure, cancel the token and answer with an
       error response.
    4. Answer immediately unless waiting; otherwise the ticket's future is
       resolved later by an interaction, supersession, removal or shutdown.
"""

from __future__ import annotations

import logging
import uuid
from concurrent.futures import Future
from dataclasses import dataclass

from termnotify.constants import ExitCode, is_all_groups
from termnotify.daemon.actions import ActionError, ActionHandler
from termnotify.daemon.presenter import PresentationError, PresentedItem, Presenter
from termnotify.daemon.protocol import (
    ClickResult,
    NotificationRequest,
    NotificationResponse,
)
from termnotify.daemon.registry import CorrelationRegistry

logger = logging.getLogger(__name__)

__all__ = ["NotificationService", "SendTicket", "normalize_interruption_level"]

_INTERRUPTION_LEVELS = {
    "passive": "passive",
    "active": "active",
    "timesensitive": "timeSensitive",
    "critical": "critical",
}


def normalize_interruption_level(level: str | None) -> str:
    """Map a client-supplied level onto passive/active/timeSensitive/critical."""
    if level is None:
        return "active"
    return _INTERRUPTION_LEVELS.get(level.lower(), "active")


def _clamp_score(score: float | None) -> float | None:
    if score is None:
        return None
    return max(0.0, min(1.0, score))


@dataclass(slots=True)
class SendTicket:
    """Handle for one send request.

    Attributes:
        token: Wait token minted for the request.
        identifier: Identifier of the presented item.
        future: Resolved exactly once with the request's response.
    """

    token: str
    identifier: str
    future: Future[NotificationResponse]


class NotificationService:
    """Send, remove and list notifications and correlate interactions."""

    def __init__(
        self,
        presenter: Presenter,
        registry: CorrelationRegistry | None = None,
        actions: ActionHandler | None = None,
    ) -> None:
        self.presenter = presenter
        self.registry = registry or CorrelationRegistry()
        self.actions = actions or ActionHandler()
        self.presenter.set_interaction_handler(self.handle_interaction)

    def send(self, request: NotificationRequest) -> SendTicket:
        """Present a notification.

        Args:
            request: A send request.

        Returns:
            Ticket whose future is already resolved unless the request waits
            and presentation succeeded.
        """
        token = uuid.uuid4().hex
        identifier = request.group or token
        future: Future[NotificationResponse] = Future()
        ticket = SendTicket(token=token, identifier=identifier, future=future)

        if request.wait:
            self.registry.register(token, request.group, future.set_result)
        elif request.group is not None:
            self.registry.supersede(request.group)

        item = self._build_item(request, token, identifier)
        try:
            self.presenter.present(item)
        except PresentationError as e:
            logger.warning(f"Presentation of {identifier} failed: {e}")
            exit_code = ExitCode.NOT_AUTHORIZED if e.denied else ExitCode.RUNTIME_ERROR
            # A concurrent supersession may already have answered this wait
            if not request.wait or self.registry.cancel(token):
                future.set_result(NotificationResponse.err(str(e), exit_code))
            return ticket
        except Exception:
            self.registry.cancel(token)
            raise

        if not request.wait:
            future.set_result(NotificationResponse.ok())
        return ticket

    def remove(self, group: str | None) -> NotificationResponse:
        """Remove delivered notifications for ``group`` (or all).

        Pending waits on removed items are answered as closed. Removing a
        group that does not exist still succeeds.
        """
        closed = NotificationResponse.ok(click_action=ClickResult.CLOSED)
        if is_all_groups(group):
            self.presenter.clear(None)
            count = self.registry.resolve_all(closed)
            logger.info(f"Removed all notifications ({count} waits closed)")
        else:
            assert group is not None
            self.presenter.clear(group)
            self.registry.resolve(group, closed)
            logger.info(f"Removed notifications for group {group!r}")
        return NotificationResponse.ok()

    def list(self, group: str | None) -> NotificationResponse:
        """Summarise delivered notifications, optionally for one group."""
        identifier = None if is_all_groups(group) else group
        items = self.presenter.enumerate(identifier)
        return NotificationResponse.ok(notifications=[item.to_info() for item in items])

    def handle_interaction(self, item: PresentedItem, result: ClickResult) -> bool:
        """Answer the request waiting on ``item``, running click actions first.

        Called by the presenter from any thread.

        Returns:
            True if a waiting request was answered.
        """
        response = NotificationResponse.ok(click_action=result)
        if result is ClickResult.CLICKED:
            try:
                self.actions.perform(item.user_info)
            except ActionError as e:
                logger.warning(f"Click action for {item.identifier} failed: {e}")
                response = NotificationResponse.err(
                    str(e), ExitCode.ACTION_FAILED, click_action=result
                )

        # Prefer the token carried by the item; fall back to its identifier
        key = item.token or item.identifier
        return self.registry.resolve(key, response)

    def shutdown(self) -> int:
        """Answer every pending wait with an error and close the presenter.

        Returns:
            Number of waits answered.
        """
        count = self.registry.resolve_all(NotificationResponse.err("Daemon shutting down"))
        self.presenter.close()
        return count

    @staticmethod
    def _build_item(request: NotificationRequest, token: str, identifier: str) -> PresentedItem:
        user_info: dict[str, object] = {"token": token, "wait": request.wait}
        if request.open_url:
            user_info["openURL"] = request.open_url
        if request.execute:
            user_info["execute"] = request.execute
        if request.activate:
            user_info["activate"] = request.activate

        return PresentedItem(
            identifier=identifier,
            body=request.message or "",
            title=request.title or "",
            subtitle=request.subtitle or "",
            sound=request.sound,
            app_icon=request.app_icon,
            content_image=request.content_image,
            sender=request.sender,
            interruption_level=normalize_interruption_level(request.interruption_level),
            relevance_score=_clamp_score(request.relevance_score),
            user_info=user_info,
        )
