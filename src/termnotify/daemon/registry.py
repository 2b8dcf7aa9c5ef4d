"""Correlation registry for requests waiting on user interaction.

When a client sends a notification with ``wait`` set, its connection stays
open until the user reacts. The registry maps the request's wait token to
the callback that answers that connection, and maps each group identifier
to the one token currently live for that group so a newer request in the
same group can supersede the older one.

Key space:
    Lookups are two-tier. A key is first treated as a wait token; if no
    token matches, it is treated as a presented item's identifier (the
    group identifier) and resolved through the group table. Ungrouped
    items use their token as their identifier, so both tiers agree.

Thread safety:
    Connection workers (asyncio, via executor threads) and notification
    backends (their own delivery threads) all call in. A single lock
    covers every operation, so register, supersede, resolve and cancel are
    each one atomic step and the two tables never diverge.

Callbacks:
    Callbacks are invoked exactly once, while the lock is held, so a
    supersession is complete before the superseding request returns from
    register(). They must be fast and must not call back into the
    registry; setting a future's result is the intended use.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

from termnotify.daemon.protocol import NotificationResponse

logger = logging.getLogger(__name__)

__all__ = ["CorrelationRegistry", "ResponseCallback"]

ResponseCallback = Callable[[NotificationResponse], None]


@dataclass(slots=True)
class _PendingEntry:
    callback: ResponseCallback
    group: str | None


class CorrelationRegistry:
    """Pending-callback table plus group-to-token table under one lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: dict[str, _PendingEntry] = {}
        self._groups: dict[str, str] = {}

    # =========================================================================
    # Mutating operations
    # =========================================================================

    def register(
        self,
        token: str,
        group: str | None,
        callback: ResponseCallback,
    ) -> str | None:
        """Register a pending callback for ``token``.

        If ``group`` already has a live token, that token is removed and its
        callback is resolved as superseded before the new token is inserted.

        Args:
            token: Fresh wait token.
            group: Optional group identifier.
            callback: Receives the response exactly once.

        Returns:
            The superseded token, or None.

        Raises:
            ValueError: If ``token`` is already registered.
        """
        with self._lock:
            if token in self._pending:
                raise ValueError(f"Wait token already registered: {token}")

            superseded = None
            if group is not None:
                superseded = self._supersede_locked(group)

            self._pending[token] = _PendingEntry(callback=callback, group=group)
            if group is not None:
                self._groups[group] = token

        logger.debug(f"Registered wait token {token} (group={group!r})")
        return superseded

    def supersede(self, group: str) -> str | None:
        """Resolve the live wait for ``group`` as superseded, if any.

        Used when a request that does not wait replaces a group's item.

        Returns:
            The superseded token, or None.
        """
        with self._lock:
            return self._supersede_locked(group)

    def resolve(self, key: str, response: NotificationResponse) -> bool:
        """Deliver ``response`` to the callback registered under ``key``.

        ``key`` is looked up as a wait token first, then as an item
        identifier through the group table. Resolving an unknown or already
        resolved key is a no-op.

        Returns:
            True if a callback was invoked.
        """
        with self._lock:
            token = key if key in self._pending else self._groups.get(key)
            if token is None:
                logger.debug(f"No pending wait for {key}")
                return False

            entry = self._remove_locked(token)
            self._invoke(token, entry.callback, response)
            return True

    def cancel(self, token: str) -> bool:
        """Remove ``token`` without invoking its callback.

        Used when presentation fails or the waiting client disconnects, so
        a stray interaction can never resolve it later.

        Returns:
            True if the token was still pending.
        """
        with self._lock:
            if token not in self._pending:
                return False
            self._remove_locked(token)

        logger.debug(f"Cancelled wait token {token}")
        return True

    def resolve_all(self, response: NotificationResponse) -> int:
        """Deliver ``response`` to every pending callback and clear both tables.

        Returns:
            Number of callbacks invoked.
        """
        with self._lock:
            entries = list(self._pending.items())
            self._pending.clear()
            self._groups.clear()
            for token, entry in entries:
                self._invoke(token, entry.callback, response)
            return len(entries)

    # =========================================================================
    # Read-only views
    # =========================================================================

    def is_pending(self, token: str) -> bool:
        with self._lock:
            return token in self._pending

    def token_for_group(self, group: str) -> str | None:
        with self._lock:
            return self._groups.get(group)

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def stats(self) -> dict[str, int]:
        """Get registry statistics."""
        with self._lock:
            return {"pending": len(self._pending), "groups": len(self._groups)}

    # =========================================================================
    # Internals (caller holds the lock)
    # =========================================================================

    def _supersede_locked(self, group: str) -> str | None:
        old_token = self._groups.get(group)
        if old_token is None:
            return None
        entry = self._remove_locked(old_token)
        logger.info(f"Wait token {old_token} superseded in group {group!r}")
        self._invoke(old_token, entry.callback, NotificationResponse.superseded())
        return old_token

    def _remove_locked(self, token: str) -> _PendingEntry:
        entry = self._pending.pop(token)
        # Only drop the group mapping if it still points at this token
        if entry.group is not None and self._groups.get(entry.group) == token:
            del self._groups[entry.group]
        return entry

    @staticmethod
    def _invoke(token: str, callback: ResponseCallback, response: NotificationResponse) -> None:
        try:
            callback(response)
        except Exception as e:
            logger.error(f"Callback for wait token {token} failed: {e}")
