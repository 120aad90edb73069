"""Enumerations for shipr task states and file transfer directions."""

from enum import Enum


class TaskState(str, Enum):
    """Runtime state of a task within a single scheduler run.

    A task moves ``pending -> running -> done | errored`` exactly once per run.
    """

    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    ERRORED = "errored"

    def __str__(self) -> str:
        return self.value


class CopyDirection(str, Enum):
    """Direction of a file synchronization between local and remote hosts."""

    LOCAL_TO_REMOTE = "localToRemote"
    REMOTE_TO_LOCAL = "remoteToLocal"

    def __str__(self) -> str:
        return self.value
