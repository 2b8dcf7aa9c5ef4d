"""termnotify - Desktop notifications for short-lived terminal commands.

A long-running daemon owns the notification backend and listens on a
private Unix socket. Short-lived client invocations send one request each
and can optionally block until the user reacts to the notification.
"""

__version__ = "1.0.0"
__all__ = ["__version__"]
