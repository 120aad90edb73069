"""Remote execution over pooled SSH connections.

Key Components:
    - ConnectionPool: one persistent ssh session per server
    - run_remote: run a command on every server, with optional ``cwd``
    - copy_files: rsync files with configuration-derived defaults
"""

from shipr.remote.commands import build_remote_command, copy_files, run_remote
from shipr.remote.pool import Connection, ConnectionPool, Remote

__all__ = [
    "Connection",
    "ConnectionPool",
    "Remote",
    "build_remote_command",
    "copy_files",
    "run_remote",
]
