"""Custom exception hierarchy for shipr.

This module defines a structured exception hierarchy that lets the CLI and the
lifecycle reporter render failures without inspecting ad-hoc error shapes.

Exception Hierarchy:
    ShiprError (base)
    ├── ConfigurationError
    ├── GraphError
    │   └── DependencyCycleError
    ├── TaskExecutionError
    └── CommandError

Example Usage:
    >>> from shipr.exceptions import ConfigurationError
    >>> try:
    ...     config = resolve_config(document, "staging")
    ... except KeyError as e:
    ...     raise ConfigurationError("Environment not found") from e
"""


class ShiprError(Exception):
    """Base exception for all shipr errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        """Initialize exception.

        Args:
            message: Error message
        """
        self.message = message
        super().__init__(message)


class ConfigurationError(ShiprError):
    """Configuration-related errors.

    Raised before any task executes.

    Examples:
        - Selected environment missing from the environment document
        - No servers configured when the SSH pool is initialized
        - Invalid YAML in an environment document
        - Unset environment variable referenced with ${VAR}
    """

    pass


class GraphError(ShiprError):
    """Task graph errors detected before task bodies run."""

    pass


class DependencyCycleError(GraphError):
    """The dependency relation of the requested tasks contains a cycle.

    Attributes:
        cycle: Task names forming the cycle, first name repeated at the end
    """

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = cycle
        super().__init__(f"Dependency cycle detected: {' -> '.join(cycle)}")


class TaskExecutionError(ShiprError):
    """A task body raised.

    The originating exception is chained as ``__cause__``. When the cause is a
    :class:`CommandError`, its captured output is exposed as ``output``.

    Attributes:
        task_name: Name of the failed task
        output: Captured command output, if the failure came from a command
    """

    def __init__(
        self,
        message: str,
        task_name: str | None = None,
        output: str | None = None,
    ) -> None:
        """Initialize exception.

        Args:
            message: Error message
            task_name: Name of the failed task
            output: Captured command output (stdout followed by stderr)
        """
        self.task_name = task_name
        self.output = output

        full_message = message
        if task_name:
            full_message = f"{message} (task: {task_name})"

        super().__init__(full_message)
        # Preserve original message
        self.message = message

    @classmethod
    def from_exception(cls, task_name: str, error: BaseException) -> "TaskExecutionError":
        """Wrap an exception raised by a task body."""
        output = error.output if isinstance(error, CommandError) else None
        wrapped = cls(str(error) or type(error).__name__, task_name=task_name, output=output)
        wrapped.__cause__ = error
        return wrapped


class CommandError(ShiprError):
    """A local or remote command failed.

    Raised on a non-zero exit status, or when the buffered output of the
    command exceeds the configured bound.

    Attributes:
        command: The command string that was executed
        stdout: Captured standard output
        stderr: Captured standard error
        returncode: Exit status (None when the process was killed)
        host: Remote host the command ran on, None for local commands
        max_buffer_exceeded: True when the failure is an output overflow
    """

    def __init__(
        self,
        message: str,
        command: str,
        stdout: str = "",
        stderr: str = "",
        returncode: int | None = None,
        host: str | None = None,
        max_buffer_exceeded: bool = False,
    ) -> None:
        self.command = command
        self.stdout = stdout
        self.stderr = stderr
        self.returncode = returncode
        self.host = host
        self.max_buffer_exceeded = max_buffer_exceeded

        full_message = message
        if host:
            full_message = f"{message} (host: {host})"

        super().__init__(full_message)
        self.message = message

    @property
    def output(self) -> str:
        """Captured stdout followed by captured stderr."""
        return "".join(part for part in (self.stdout, self.stderr) if part)
