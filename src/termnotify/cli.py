"""Command-line front end for termnotify.

Each invocation is a short-lived client: it builds one request, hands it to
the daemon through DaemonClient, prints the outcome, and exits with the
response's exit code.

Usage:
    termnotify [send] --message TEXT [--title T] [--group G] [--wait] ...
    echo "build done" | termnotify --group ci
    termnotify remove GROUP|ALL
    termnotify list [GROUP|ALL]

Exit codes:
    0   success
    1   runtime error
    2   usage error
    70  notifications not authorized
    71  click action failed
    72  daemon not running
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import TextIO

from termnotify import __version__
from termnotify.config import TermNotifySettings
from termnotify.constants import ALL_GROUPS, ExitCode
from termnotify.daemon.client import DaemonClient, DaemonClientError
from termnotify.daemon.protocol import (
    NotificationRequest,
    NotificationResponse,
    RequestAction,
)
from termnotify.daemon.server import setup_logging

logger = logging.getLogger(__name__)

__all__ = ["build_parser", "build_request", "main"]

_SUBCOMMANDS = {"send", "remove", "list"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="termnotify",
        description="Post desktop notifications through the termnotify daemon",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
        default="WARNING",
        help="Logging level for the client (default: WARNING)",
    )
    subparsers = parser.add_subparsers(dest="command")

    send = subparsers.add_parser("send", help="Post a notification (default)")
    send.add_argument("--message", "-m", help="Notification body (read from stdin if omitted)")
    send.add_argument("--title", help="Notification title")
    send.add_argument("--subtitle", help="Notification subtitle")
    send.add_argument("--sound", help="Sound name ('default' for the system sound)")
    send.add_argument("--open", dest="open_url", metavar="URL", help="URL to open on click")
    send.add_argument("--execute", metavar="COMMAND", help="Shell command to run on click")
    send.add_argument("--activate", metavar="BUNDLE_ID", help="Application to activate on click")
    send.add_argument("--appIcon", dest="app_icon", metavar="PATH", help="Application icon")
    send.add_argument("--contentImage", dest="content_image", metavar="PATH", help="Attached image")
    send.add_argument("--group", help="Group identifier; replaces the group's previous notification")
    send.add_argument("--sender", help="Application to post as")
    send.add_argument(
        "--interruptionLevel",
        dest="interruption_level",
        metavar="LEVEL",
        help="passive, active, timeSensitive or critical",
    )
    send.add_argument(
        "--relevanceScore",
        dest="relevance_score",
        type=float,
        metavar="SCORE",
        help="Relevance between 0.0 and 1.0",
    )
    send.add_argument("--wait", action="store_true", help="Block until the user reacts")

    remove = subparsers.add_parser("remove", help="Remove delivered notifications")
    remove.add_argument("group", help=f"Group identifier, or {ALL_GROUPS}")

    list_ = subparsers.add_parser("list", help="List delivered notifications")
    list_.add_argument("group", nargs="?", default=ALL_GROUPS, help=f"Group identifier (default: {ALL_GROUPS})")

    return parser


def _normalise_argv(argv: list[str]) -> list[str]:
    """Insert the default 'send' subcommand where none was given."""
    index = 0
    # Skip global options
    while index < len(argv) and argv[index].startswith("--log-level"):
        index += 1 if "=" in argv[index] else 2
    if index >= len(argv):
        return argv + ["send"]
    if argv[index] in _SUBCOMMANDS or argv[index] in {"-h", "--help", "--version"}:
        return argv
    return argv[:index] + ["send"] + argv[index:]


def _read_message(args: argparse.Namespace, stdin: TextIO) -> str | None:
    if args.message is not None:
        return args.message
    if stdin is not None and not stdin.isatty():
        return stdin.read().strip()
    return None


def build_request(args: argparse.Namespace, stdin: TextIO | None = None) -> NotificationRequest:
    """Turn parsed arguments into a request.

    Raises:
        ValueError: If a send has no message.
    """
    if args.command == "remove":
        return NotificationRequest(action=RequestAction.REMOVE, group=args.group)
    if args.command == "list":
        return NotificationRequest(action=RequestAction.LIST, group=args.group)

    message = _read_message(args, stdin if stdin is not None else sys.stdin)
    if not message:
        raise ValueError("A message is required (--message or stdin)")

    return NotificationRequest(
        action=RequestAction.SEND,
        message=message,
        title=args.title,
        subtitle=args.subtitle,
        sound=args.sound,
        open_url=args.open_url,
        execute=args.execute,
        activate=args.activate,
        app_icon=args.app_icon,
        content_image=args.content_image,
        group=args.group,
        sender=args.sender,
        interruption_level=args.interruption_level,
        relevance_score=args.relevance_score,
        wait=args.wait,
    )


def print_response(response: NotificationResponse, out: TextIO, err: TextIO) -> int:
    """Print a response and return the exit code for it."""
    if not response.success:
        print(f"Error: {response.error or 'unknown error'}", file=err)
        return int(response.exit_code) or ExitCode.RUNTIME_ERROR

    if response.notifications is not None:
        for info in response.notifications:
            fields = (info.identifier, info.title, info.subtitle, info.body)
            print("\t".join(field.replace("\t", " ").replace("\n", " ") for field in fields), file=out)
    if response.click_action is not None:
        print(response.click_action.value, file=out)
    return int(response.exit_code)


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the termnotify command."""
    from dotenv import load_dotenv

    load_dotenv()
    argv = list(sys.argv[1:] if argv is None else argv)
    parser = build_parser()
    args = parser.parse_args(_normalise_argv(argv))

    setup_logging(args.log_level)

    try:
        request = build_request(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return ExitCode.USAGE_ERROR

    client = DaemonClient(settings=TermNotifySettings())
    try:
        response = client.send(request)
    except DaemonClientError as e:
        logger.debug(f"Request failed: {e!r}")
        print(f"Error: {e}", file=sys.stderr)
        return e.exit_code

    return print_response(response, sys.stdout, sys.stderr)


if __name__ == "__main__":
    sys.exit(main())
