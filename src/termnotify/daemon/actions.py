"""Click actions attached to a notification.

When a notification is clicked, the payloads carried in its user info are
acted on: a URL is opened, a shell command is started, an application is
brought to the foreground. Commands run in the background; the click is
answered as soon as they have been started.
"""

from __future__ import annotations

import logging
import subprocess
import sys
import webbrowser
from typing import Any

logger = logging.getLogger(__name__)

__all__ = ["ActionError", "ActionHandler"]


class ActionError(Exception):
    """Raised when a click action could not be carried out."""


class ActionHandler:
    """Carries out the click actions in a notification's user info."""

    def __init__(self, shell: str = "/bin/sh") -> None:
        self.shell = shell

    def perform(self, user_info: dict[str, Any]) -> None:
        """Run every action present in ``user_info``.

        All actions are attempted; failures are collected.

        Raises:
            ActionError: If any action failed.
        """
        failures: list[str] = []

        url = user_info.get("openURL")
        if url:
            try:
                self.open_url(url)
            except ActionError as e:
                failures.append(str(e))

        command = user_info.get("execute")
        if command:
            try:
                self.execute(command)
            except ActionError as e:
                failures.append(str(e))

        app = user_info.get("activate")
        if app:
            try:
                self.activate(app)
            except ActionError as e:
                failures.append(str(e))

        if failures:
            raise ActionError("; ".join(failures))

    def open_url(self, url: str) -> None:
        logger.info(f"Opening {url}")
        if not webbrowser.open(url):
            raise ActionError(f"Failed to open URL: {url}")

    def execute(self, command: str) -> None:
        logger.info(f"Executing {command!r}")
        try:
            subprocess.Popen(
                [self.shell, "-c", command],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            raise ActionError(f"Failed to execute command: {e}") from e

    def activate(self, app: str) -> None:
        if sys.platform != "darwin":
            logger.warning(f"Activating {app} is not supported on {sys.platform}")
            return

        logger.info(f"Activating {app}")
        try:
            subprocess.run(["open", "-b", app], check=True, capture_output=True)
        except (OSError, subprocess.CalledProcessError) as e:
            raise ActionError(f"Failed to activate {app}: {e}") from e
