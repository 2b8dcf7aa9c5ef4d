"""Integration tests for termnotify.

This package contains tests that run a real DaemonServer on a Unix socket
and talk to it with the real DaemonClient:

- test_daemon_integration.py: Daemon IPC (client -> socket -> server -> presenter)

Integration tests use:
- Private temporary socket directories
- The in-memory presenter in place of a desktop notification server
- Real component interactions (not mocked)

Usage:
    # Run all integration tests
    pytest tests/integration/ -v
"""
