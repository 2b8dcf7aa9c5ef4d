"""Peer credential lookup for Unix domain sockets.

The daemon trusts a connection only when the connecting process runs as
the same effective user as the daemon. The kernel reports the peer's
credentials; nothing sent over the socket is consulted.

Supported platforms:
    - Linux: SO_PEERCRED (struct ucred: pid, uid, gid)
    - macOS / BSD: LOCAL_PEERCRED (struct xucred: version, uid, ...)

On any other platform, or if the lookup fails, the peer is unknown and
is_same_user() returns False.
"""

from __future__ import annotations

import logging
import os
import socket
import struct
import sys
from typing import Any

logger = logging.getLogger(__name__)

__all__ = ["get_peer_uid", "is_same_user"]

# struct ucred { pid_t pid; uid_t uid; gid_t gid; }
_UCRED = struct.Struct("iII")

# struct xucred { u_int cr_version; uid_t cr_uid; short cr_ngroups; gid_t cr_groups[16]; }
_XUCRED_SIZE = 76
_XUCRED_HEAD = struct.Struct("2I")

# <sys/un.h>: SOL_LOCAL and LOCAL_PEERCRED are not exported by the socket module
_SOL_LOCAL = 0
_LOCAL_PEERCRED = 0x001


def get_peer_uid(sock: Any) -> int | None:
    """Return the effective user id of the process at the other end of ``sock``.

    Args:
        sock: A connected AF_UNIX stream socket (or asyncio's TransportSocket).

    Returns:
        The peer uid, or None if the platform cannot report it.
    """
    try:
        if hasattr(socket, "SO_PEERCRED"):
            raw = sock.getsockopt(socket.SOL_SOCKET, socket.SO_PEERCRED, _UCRED.size)
            _pid, uid, _gid = _UCRED.unpack(raw)
            return uid

        if sys.platform == "darwin" or "bsd" in sys.platform:
            level = getattr(socket, "SOL_LOCAL", _SOL_LOCAL)
            option = getattr(socket, "LOCAL_PEERCRED", _LOCAL_PEERCRED)
            raw = sock.getsockopt(level, option, _XUCRED_SIZE)
            _version, uid = _XUCRED_HEAD.unpack_from(raw)
            return uid

    except (OSError, struct.error) as e:
        logger.warning(f"Peer credential lookup failed: {e}")
        return None

    logger.warning(f"Peer credentials are not supported on {sys.platform}")
    return None


def is_same_user(sock: Any) -> bool:
    """Check that the peer runs as this process's effective user."""
    uid = get_peer_uid(sock)
    return uid is not None and uid == os.geteuid()
