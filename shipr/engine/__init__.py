"""Task scheduling and orchestration engine.

This package provides the core of shipr: a dependency-based task scheduler
with blocking-task mutual exclusion, the lifecycle event types it emits, the
execution context threaded through a run, and the ``Shipr`` facade that
shiprfiles program against.

Key Components:
    - TaskScheduler (shipr.engine.scheduler): task graph and readiness loop
    - Shipr (shipr.engine.orchestrator): facade exposed to shiprfiles
    - ExecutionContext (shipr.engine.context): output sinks and process settings

Event Types:
    - TaskStarted, TaskFinished, TaskFailed, TaskNotFound

Example:
    >>> from shipr.engine.orchestrator import Shipr
    >>> shipr = Shipr(environment="staging")
    >>> shipr.task("build", [], build)
    >>> shipr.task("default", ["build"])
    >>> result = await shipr.start(["default"])
"""

from shipr.engine.context import ExecutionContext
from shipr.engine.types import (
    EventListener,
    TaskEvent,
    TaskFailed,
    TaskFinished,
    TaskNotFound,
    TaskStarted,
)

__all__ = [
    "EventListener",
    "ExecutionContext",
    "TaskEvent",
    "TaskFailed",
    "TaskFinished",
    "TaskNotFound",
    "TaskStarted",
]
