"""termnotify constants.

Everything here is part of the wire contract or the process contract and
must match between client and daemon builds. User-tunable settings live in
termnotify.config.
"""

from enum import IntEnum

# =============================================================================
# Wire contract
# =============================================================================

# Frame header: 4-byte big-endian unsigned length
FRAME_HEADER_SIZE = 4

# Largest valid payload length; 1_000_000 and above is rejected
MAX_FRAME_LENGTH = 999_999

# Group sentinel meaning "every item" (compared case-insensitively)
ALL_GROUPS = "ALL"

# =============================================================================
# Filesystem layout
# =============================================================================

SOCKET_DIR_NAME = "termnotify"
SOCKET_NAME = "termnotify.sock"
PID_NAME = "termnotify.pid"

# Owner-only permissions for the socket directory and socket file
SOCKET_DIR_MODE = 0o700
SOCKET_FILE_MODE = 0o600

# =============================================================================
# Timing
# =============================================================================

# Extra time a client allows beyond the daemon's own request ceiling
RESPONSE_GRACE_SECONDS = 5.0


# =============================================================================
# Exit codes
# =============================================================================


class ExitCode(IntEnum):
    """Exit-code classes surfaced to the invoking process."""

    SUCCESS = 0
    RUNTIME_ERROR = 1
    USAGE_ERROR = 2
    NOT_AUTHORIZED = 70
    ACTION_FAILED = 71
    DAEMON_NOT_RUNNING = 72


def is_all_groups(group: str | None) -> bool:
    """Return True if ``group`` selects every item.

    A missing group and the ``ALL`` sentinel (any case) both mean "all".
    """
    return group is None or group.upper() == ALL_GROUPS
