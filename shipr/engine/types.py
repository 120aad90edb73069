"""Lifecycle event types emitted by the task scheduler.

The scheduler reports progress through a closed set of event variants,
delivered to subscribed listeners in the order they happen:

- TaskStarted: a task moved to ``running``
- TaskFinished: a task completed and moved to ``done``
- TaskFailed: a task body raised and the task moved to ``errored``
- TaskNotFound: a requested task or a dependency is not registered

Example:
    Printing failures only::

        def on_event(event: TaskEvent) -> None:
            if isinstance(event, TaskFailed):
                print(f"{event.task} failed: {event.error.message}")

        scheduler.subscribe(on_event)
"""

from collections.abc import Callable
from dataclasses import dataclass

from shipr.exceptions import TaskExecutionError


@dataclass(frozen=True)
class TaskStarted:
    """A task started running."""

    task: str
    timestamp: float
    """Monotonic clock reading (``time.perf_counter``) at start."""


@dataclass(frozen=True)
class TaskFinished:
    """A task completed successfully."""

    task: str
    timestamp: float
    duration: float
    """Elapsed seconds between start and completion."""


@dataclass(frozen=True)
class TaskFailed:
    """A task body raised."""

    task: str
    timestamp: float
    duration: float
    error: TaskExecutionError
    """Structured error; the original exception is ``error.__cause__``."""


@dataclass(frozen=True)
class TaskNotFound:
    """A name reachable from the run request is not registered."""

    task: str
    required_by: str | None = None
    """Task declaring the missing dependency; None for a requested name."""


TaskEvent = TaskStarted | TaskFinished | TaskFailed | TaskNotFound

EventListener = Callable[[TaskEvent], None]
