"""Execution context for a shipr run.

The ExecutionContext carries the output sinks, the user-facing log function
and the process working directory. One context is created per run and passed
explicitly to the command runners, the SSH pool and the reporter.
"""

import os
import sys
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TextIO


def _default_stdout() -> TextIO:
    return sys.stdout


def _default_stderr() -> TextIO:
    return sys.stderr


@dataclass
class ExecutionContext:
    """Sinks and process settings shared by everything running in one run.

    Attributes:
        stdout: Sink for streamed command stdout, None to disable streaming
        stderr: Sink for streamed command stderr, None to disable streaming
        log_func: Callable receiving user-facing log messages; defaults to
            writing the formatted message to ``stdout``
        cwd: Working directory for local commands, None for the process cwd
        env: Environment for local commands, None to inherit the process env
        prefix: Marker written before every streamed output line
    """

    stdout: TextIO | None = field(default_factory=_default_stdout)
    stderr: TextIO | None = field(default_factory=_default_stderr)
    log_func: Callable[..., None] | None = None
    cwd: Path | str | None = None
    env: Mapping[str, str] | None = None
    prefix: str = "@ "

    def log(self, *args: Any) -> None:
        """Write a user-facing message.

        A first argument containing ``%`` is a format string for the rest,
        as in ``log("Deploying %s to %s", branch, host)``. Otherwise the
        arguments are joined with spaces.
        """
        if len(args) > 1 and isinstance(args[0], str) and "%" in args[0]:
            message = args[0] % args[1:]
        else:
            message = " ".join(str(arg) for arg in args)

        if self.log_func is not None:
            self.log_func(message)
            return

        sink = self.stdout or sys.stdout
        sink.write(message + "\n")
        sink.flush()

    def child_env(self, extra: Mapping[str, str] | None = None) -> dict[str, str] | None:
        """Environment for a child process, None meaning inherit unchanged."""
        if self.env is None and not extra:
            return None
        env = dict(os.environ if self.env is None else self.env)
        if extra:
            env.update(extra)
        return env
