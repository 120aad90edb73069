"""
Dependency-based task scheduling with blocking-task mutual exclusion.

This module provides the task graph and the readiness loop that executes it.
Tasks are registered by name with a list of dependency names and a body; the
graph is validated when a run starts, not at registration, so a shiprfile may
reference tasks it defines later.

Execution Flow:
    1. The closure of the requested names is computed, dependencies first.
       Unknown names are reported as TaskNotFound events and fail the run
       before anything starts.
    2. The closure is checked for dependency cycles (DependencyCycleError).
    3. Every task of the closure is reset to ``pending``.
    4. Ready tasks are started, the loop waits for the first completion,
       records it, and recomputes readiness. There is no worker limit: every
       ready task starts immediately.
    5. The run ends when nothing is running and nothing is ready.

Readiness:
    A pending task is ready when all of its dependencies are ``done``, no
    blocking task is ``running``, and, if the task itself is blocking, no task
    at all is ``running``. Readiness is re-evaluated after each start within a
    scan, so a blocking task always runs alone.

Error Handling:
    - A failing body moves its task to ``errored`` and emits TaskFailed
    - Dependents of an errored task are never ready; they stay ``pending``
    - Independent branches already started run to completion

Example:
    >>> scheduler = TaskScheduler()
    >>> scheduler.register("build", [], build)
    >>> scheduler.register("test", ["build"], run_tests)
    >>> scheduler.register("migrate", ["build"], migrate, blocking=True)
    >>> result = await scheduler.run(["test", "migrate"])
    >>> result.success
    True
"""

import asyncio
import inspect
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

import structlog

from shipr.engine.types import (
    EventListener,
    TaskEvent,
    TaskFailed,
    TaskFinished,
    TaskNotFound,
    TaskStarted,
)
from shipr.enums import TaskState
from shipr.exceptions import DependencyCycleError, TaskExecutionError

log = structlog.get_logger(__name__)

DEFAULT_TASK = "default"

TaskBody = Callable[[], Any]


def noop() -> None:
    """Body of alias tasks, which only group their dependencies."""


@dataclass
class Task:
    """A named unit of work with declared dependencies.

    Attributes:
        name: Unique task name
        dependencies: Names of tasks that must be ``done`` before this one
        body: Zero-argument callable. Coroutine functions are awaited; plain
            functions run in a worker thread and an awaitable they return is
            awaited too.
        blocking: If True, the task runs with no other task running
        state: Runtime state within the current run
        started_at: ``time.perf_counter`` reading at start
        finished_at: ``time.perf_counter`` reading at completion
        error: Structured error of the last failed run
    """

    name: str
    dependencies: tuple[str, ...] = ()
    body: TaskBody = noop
    blocking: bool = False
    state: TaskState = TaskState.PENDING
    started_at: float | None = None
    finished_at: float | None = None
    error: TaskExecutionError | None = None

    @property
    def is_alias(self) -> bool:
        """True when the task has no body of its own."""
        return self.body is noop

    def reset(self) -> None:
        self.state = TaskState.PENDING
        self.started_at = None
        self.finished_at = None
        self.error = None


@dataclass
class RunResult:
    """Outcome of one scheduler run.

    Attributes:
        requested: Task names the run was asked to execute
        states: Final state of every task in the requested closure
        missing: Unregistered names found while resolving the request
        failed: Names of tasks whose body raised
    """

    requested: list[str]
    states: dict[str, TaskState] = field(default_factory=dict)
    missing: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """True when every requested task reached ``done``."""
        if self.missing or self.failed:
            return False
        return all(self.states.get(name) is TaskState.DONE for name in self.requested)

    @property
    def skipped(self) -> list[str]:
        """Tasks that never started because a dependency failed."""
        return [name for name, state in self.states.items() if state is TaskState.PENDING]


class TaskScheduler:
    """Register tasks and run dependency-ordered subsets of them.

    The task table is only mutated by the control loop in :meth:`run`, never
    from inside task bodies, so no lock guards it. A scheduler runs one
    request at a time.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}
        self._listeners: list[EventListener] = []

    @property
    def tasks(self) -> Mapping[str, Task]:
        """Read-only view of registered tasks, in registration order."""
        return MappingProxyType(self._tasks)

    def register(
        self,
        name: str,
        dependencies: Iterable[str] | str = (),
        body: TaskBody | None = None,
        *,
        blocking: bool = False,
    ) -> Task:
        """Add a task, replacing any task already registered under ``name``.

        Dependencies need not be registered yet; they are validated when a
        run starts.

        Args:
            name: Unique task name
            dependencies: Dependency names, or a single name
            body: Task body; None registers an alias task
            blocking: Run the task in total mutual exclusion with all others

        Returns:
            The registered Task
        """
        if isinstance(dependencies, str):
            dependencies = (dependencies,)

        if name in self._tasks:
            log.warning("task_replaced", task=name)

        task = Task(
            name=name,
            dependencies=tuple(dependencies),
            body=body if body is not None else noop,
            blocking=blocking,
        )
        self._tasks[name] = task
        return task

    def subscribe(self, listener: EventListener) -> None:
        """Call ``listener`` with every lifecycle event of subsequent runs."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: EventListener) -> None:
        self._listeners.remove(listener)

    def _emit(self, event: TaskEvent) -> None:
        for listener in list(self._listeners):
            listener(event)

    def resolve(self, names: Sequence[str]) -> tuple[list[str], list[TaskNotFound]]:
        """Compute the closure of ``names``, dependencies before dependents.

        Args:
            names: Requested task names

        Returns:
            Tuple of (ordered registered names, one TaskNotFound per unknown
            name). Each unknown name is reported once, attributed to the first
            task found requiring it.
        """
        order: list[str] = []
        missing: list[TaskNotFound] = []
        seen: set[str] = set()

        def visit(name: str, required_by: str | None) -> None:
            if name in seen:
                return
            seen.add(name)

            task = self._tasks.get(name)
            if task is None:
                missing.append(TaskNotFound(task=name, required_by=required_by))
                return

            for dependency in task.dependencies:
                visit(dependency, name)
            order.append(name)

        for name in names:
            visit(name, None)

        return order, missing

    def find_cycle(self, names: Iterable[str]) -> list[str] | None:
        """Return a dependency cycle reachable from ``names``, if any.

        All names reachable from ``names`` must be registered.

        Returns:
            The cycle as a path whose first and last names are equal, or None
        """
        in_progress: set[str] = set()
        finished: set[str] = set()
        path: list[str] = []

        def visit(name: str) -> list[str] | None:
            in_progress.add(name)
            path.append(name)

            for dependency in self._tasks[name].dependencies:
                if dependency in in_progress:
                    return path[path.index(dependency) :] + [dependency]
                if dependency not in finished:
                    cycle = visit(dependency)
                    if cycle:
                        return cycle

            path.pop()
            in_progress.discard(name)
            finished.add(name)
            return None

        for name in names:
            if name not in finished:
                cycle = visit(name)
                if cycle:
                    return cycle
        return None

    def _is_ready(self, task: Task, closure: list[Task]) -> bool:
        if task.state is not TaskState.PENDING:
            return False

        if any(self._tasks[dep].state is not TaskState.DONE for dep in task.dependencies):
            return False

        running = [other for other in closure if other.state is TaskState.RUNNING]
        if any(other.blocking for other in running):
            return False

        return not (task.blocking and running)

    async def run(self, names: Sequence[str] | None = None) -> RunResult:
        """Execute the requested tasks and everything they depend on.

        Args:
            names: Task names to run; empty or None runs ``default``

        Returns:
            RunResult describing the final state of the run. Task failures
            and unknown names are reported through events and the result,
            not raised.

        Raises:
            DependencyCycleError: If the requested closure contains a cycle.
                Raised before any task starts.
        """
        requested = list(names or []) or [DEFAULT_TASK]
        order, missing = self.resolve(requested)

        if missing:
            for event in missing:
                log.info("task_not_found", task=event.task, required_by=event.required_by)
                self._emit(event)
            return RunResult(requested=requested, missing=[event.task for event in missing])

        cycle = self.find_cycle(order)
        if cycle:
            log.info("dependency_cycle", cycle=cycle)
            raise DependencyCycleError(cycle)

        closure = [self._tasks[name] for name in order]
        for task in closure:
            task.reset()

        log.info("run_started", requested=requested, total_tasks=len(closure))

        in_flight: dict[asyncio.Task[BaseException | None], Task] = {}
        while True:
            for task in closure:
                if self._is_ready(task, closure):
                    in_flight[self._start(task)] = task

            if not in_flight:
                break

            done, _ = await asyncio.wait(in_flight.keys(), return_when=asyncio.FIRST_COMPLETED)
            for finished in done:
                self._complete(in_flight.pop(finished), finished.result())

        result = RunResult(
            requested=requested,
            states={task.name: task.state for task in closure},
            failed=[task.name for task in closure if task.state is TaskState.ERRORED],
        )
        if result.skipped:
            log.info("tasks_skipped", tasks=result.skipped)
        log.info("run_complete", success=result.success, failed=result.failed)
        return result

    def _start(self, task: Task) -> "asyncio.Task[BaseException | None]":
        task.state = TaskState.RUNNING
        task.started_at = time.perf_counter()
        log.info("task_started", task=task.name, blocking=task.blocking)
        self._emit(TaskStarted(task=task.name, timestamp=task.started_at))
        return asyncio.create_task(self._execute(task), name=f"shipr:{task.name}")

    async def _execute(self, task: Task) -> BaseException | None:
        """Run a task body, returning the exception it raised, if any."""
        if task.is_alias:
            return None

        try:
            if inspect.iscoroutinefunction(task.body):
                await task.body()
            else:
                result = await asyncio.to_thread(task.body)
                if inspect.isawaitable(result):
                    await result
        except Exception as e:
            return e
        return None

    def _complete(self, task: Task, error: BaseException | None) -> None:
        task.finished_at = time.perf_counter()
        assert task.started_at is not None
        duration = task.finished_at - task.started_at

        if error is None:
            task.state = TaskState.DONE
            log.info("task_completed", task=task.name, execution_time=duration)
            self._emit(TaskFinished(task=task.name, timestamp=task.finished_at, duration=duration))
            return

        task.state = TaskState.ERRORED
        task.error = TaskExecutionError.from_exception(task.name, error)
        log.info("task_failed", task=task.name, error=str(error), execution_time=duration)
        self._emit(
            TaskFailed(
                task=task.name,
                timestamp=task.finished_at,
                duration=duration,
                error=task.error,
            )
        )
