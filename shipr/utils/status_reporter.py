"""Human-readable progress reporting for scheduler lifecycle events."""

import traceback
from collections.abc import Mapping

import click

from shipr.engine.context import ExecutionContext
from shipr.engine.scheduler import Task
from shipr.engine.types import TaskEvent, TaskFailed, TaskFinished, TaskNotFound, TaskStarted
from shipr.exceptions import TaskExecutionError


def format_duration(seconds: float) -> str:
    """Render an elapsed time the way people read it: 850 μs, 12 ms, 1.5 s, 2.1 min."""
    if seconds < 1e-3:
        return f"{seconds * 1e6:.0f} μs"
    if seconds < 1:
        return f"{seconds * 1e3:.0f} ms"
    if seconds < 60:
        return f"{seconds:.2f} s"
    if seconds < 3600:
        return f"{seconds / 60:.1f} min"
    return f"{seconds / 3600:.1f} h"


def format_error(error: object) -> str:
    """Render any error raised by a task body as text.

    Priority:
        1. An object carrying a boolean ``show_stack`` attribute renders as
           ``str(error)``; such errors format themselves.
        2. An exception with a traceback renders the full traceback,
           including chained causes.
        3. Anything else is coerced to a string and given a synthetic
           traceback pointing at the reporting site.

    A TaskExecutionError is unwrapped to its cause, and captured command
    output is appended.
    """
    if isinstance(error, TaskExecutionError):
        text = format_error(error.__cause__) if error.__cause__ is not None else error.message
        if error.output:
            text = f"{text}\n\nCaptured output:\n{error.output.rstrip()}"
        return text

    if isinstance(getattr(error, "show_stack", None), bool):
        return str(error)

    if isinstance(error, BaseException) and error.__traceback__ is not None:
        return "".join(traceback.format_exception(error)).rstrip()

    label = type(error).__name__ if isinstance(error, BaseException) else "Error"
    stack = "".join(traceback.format_stack()[:-1])
    return f"Traceback (most recent call last):\n{stack}{label}: {error}"


class StatusReporter:
    """Render scheduler events to the run's log.

    Alias tasks (registered without a body) are not announced when they
    start; their completion lists the dependencies they group.
    """

    def __init__(
        self,
        context: ExecutionContext,
        tasks: Mapping[str, Task],
        color: bool = False,
    ) -> None:
        """Initialize reporter.

        Args:
            context: Run context whose ``log`` receives the messages
            tasks: Live view of registered tasks
            color: Style task names, durations and errors with ANSI colors
        """
        self.context = context
        self.tasks = tasks
        self.color = color

    def _style(self, text: str, fg: str) -> str:
        return click.style(text, fg=fg) if self.color else text

    def _name(self, task: str) -> str:
        return f"'{self._style(task, 'cyan')}'"

    def _is_alias(self, name: str) -> bool:
        task = self.tasks.get(name)
        return task is not None and task.is_alias

    def __call__(self, event: TaskEvent) -> None:
        if isinstance(event, TaskStarted):
            self.report_task_start(event)
        elif isinstance(event, TaskFinished):
            self.report_task_finished(event)
        elif isinstance(event, TaskFailed):
            self.report_task_failed(event)
        elif isinstance(event, TaskNotFound):
            self.report_task_not_found(event)

    def report_task_start(self, event: TaskStarted) -> None:
        if self._is_alias(event.task):
            return
        self.context.log(f"\nRunning {self._name(event.task)} task...")

    def report_task_finished(self, event: TaskFinished) -> None:
        if self._is_alias(event.task):
            dependencies = ", ".join(self.tasks[event.task].dependencies)
            self.context.log(f"Finished {self._name(event.task)} {self._style(f'[ {dependencies} ]', 'cyan')}")
            return

        duration = self._style(format_duration(event.duration), "magenta")
        self.context.log(f"Finished {self._name(event.task)} after {duration}")

    def report_task_failed(self, event: TaskFailed) -> None:
        duration = self._style(format_duration(event.duration), "magenta")
        self.context.log(f"{self._name(event.task)} {self._style('errored after', 'red')} {duration}")
        self.context.log(format_error(event.error))

    def report_task_not_found(self, event: TaskNotFound) -> None:
        message = f"Task '{event.task}' is not in your shiprfile"
        if event.required_by:
            message = f"{message} (required by '{event.required_by}')"
        self.context.log(self._style(message, "red"))
        self.context.log("Please check the documentation for proper shiprfile formatting")
