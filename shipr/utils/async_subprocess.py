"""Async subprocess utilities with live, prefixed output streaming.

Commands run as asyncio subprocesses. Their stdout and stderr are read line by
line; every line is written to the run's output sinks with a fixed prefix as
soon as it arrives, and is also buffered so the caller gets the full output
back.

This module offers two main functions:
    - run_shell_command: Execute a shell command string (pipes, &&, etc.)
    - run_command: Execute an argument list without a shell (used for ssh/rsync)

Example:
    >>> from shipr.utils.async_subprocess import run_shell_command
    >>> result = await run_shell_command('echo "hello"', context=context)
    >>> result.stdout
    'hello\\n'

Thread Safety:
    These functions are safe to call concurrently from multiple async tasks.
    Each call creates an independent subprocess; sinks are written one whole
    line at a time.
"""

import asyncio
import contextlib
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

from shipr.engine.context import ExecutionContext
from shipr.exceptions import CommandError

DEFAULT_MAX_BUFFER = 1000 * 1024


@dataclass
class CommandResult:
    """Outcome of a command that exited with status 0.

    Attributes:
        command: The command as executed
        stdout: Full decoded standard output
        stderr: Full decoded standard error
        returncode: Exit status
        host: Remote host for commands run over SSH, None for local commands
    """

    command: str
    stdout: str
    stderr: str
    returncode: int = 0
    host: str | None = None


class OutputLimitExceeded(Exception):
    """Raised internally when a stream outgrows its buffer bound."""


class LinePrefixer:
    """Write lines to a sink, each preceded by a fixed prefix."""

    def __init__(self, sink: TextIO | None, prefix: str) -> None:
        self.sink = sink
        self.prefix = prefix

    def write(self, line: str) -> None:
        if self.sink is None:
            return
        self.sink.write(self.prefix + line)
        self.sink.flush()


async def _pump(
    reader: asyncio.StreamReader,
    prefixer: LinePrefixer,
    chunks: list[str],
    max_buffer: int,
) -> None:
    """Copy a process stream into ``chunks`` and the prefixed sink until EOF."""
    total = 0
    while True:
        try:
            line = await reader.readline()
        except ValueError as e:
            # A single line longer than the reader limit, which is max_buffer + 1
            raise OutputLimitExceeded() from e
        if not line:
            return

        text = line.decode("utf-8", errors="replace")
        total += len(text)
        if total > max_buffer:
            raise OutputLimitExceeded()

        chunks.append(text)
        prefixer.write(text)


async def _kill(process: asyncio.subprocess.Process) -> None:
    # The process may already have exited and been reaped
    with contextlib.suppress(ProcessLookupError):
        process.kill()
    await process.wait()


async def _communicate(
    process: asyncio.subprocess.Process,
    command: str,
    context: ExecutionContext,
    prefix: str,
    max_buffer: int,
    timeout: float | None,
    check: bool,
    host: str | None,
) -> CommandResult:
    stdout_chunks: list[str] = []
    stderr_chunks: list[str] = []

    assert process.stdout is not None
    assert process.stderr is not None
    readers = [
        asyncio.create_task(_pump(process.stdout, LinePrefixer(context.stdout, prefix), stdout_chunks, max_buffer)),
        asyncio.create_task(_pump(process.stderr, LinePrefixer(context.stderr, prefix), stderr_chunks, max_buffer)),
    ]

    try:
        await asyncio.wait_for(asyncio.gather(*readers), timeout=timeout)
    except OutputLimitExceeded:
        for reader in readers:
            reader.cancel()
        await _kill(process)
        raise CommandError(
            f"Output exceeded max_buffer of {max_buffer} characters: {command}",
            command=command,
            stdout="".join(stdout_chunks),
            stderr="".join(stderr_chunks),
            host=host,
            max_buffer_exceeded=True,
        ) from None
    except TimeoutError:
        await _kill(process)
        raise
    except asyncio.CancelledError:
        for reader in readers:
            reader.cancel()
        await _kill(process)
        raise

    returncode = await process.wait()
    stdout = "".join(stdout_chunks)
    stderr = "".join(stderr_chunks)

    if check and returncode != 0:
        raise CommandError(
            f"Command failed with exit code {returncode}: {command}",
            command=command,
            stdout=stdout,
            stderr=stderr,
            returncode=returncode,
            host=host,
        )

    return CommandResult(command=command, stdout=stdout, stderr=stderr, returncode=returncode, host=host)


async def run_shell_command(
    command: str,
    *,
    context: ExecutionContext | None = None,
    cwd: Path | str | None = None,
    env: Mapping[str, str] | None = None,
    max_buffer: int = DEFAULT_MAX_BUFFER,
    timeout: float | None = None,
    check: bool = True,
    prefix: str | None = None,
) -> CommandResult:
    """Run a shell command, streaming prefixed output to the context sinks.

    Args:
        command: Complete shell command string, passed to /bin/sh -c
        context: Run context supplying sinks, cwd and env. Without one,
            output is only buffered.
        cwd: Working directory, defaults to ``context.cwd``
        env: Extra environment variables for this command
        max_buffer: Maximum characters buffered per stream
        timeout: Maximum seconds to wait. The process is killed if exceeded.
        check: If True (default), raise CommandError on non-zero exit
        prefix: Line prefix, defaults to ``context.prefix``

    Returns:
        CommandResult with the full stdout and stderr

    Raises:
        CommandError: On non-zero exit (when check=True) or when either
            stream exceeds max_buffer
        TimeoutError: If timeout is exceeded
    """
    context = context or ExecutionContext(stdout=None, stderr=None)
    process = await asyncio.create_subprocess_shell(
        command,
        cwd=cwd if cwd is not None else context.cwd,
        env=context.child_env(env),
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        limit=max_buffer + 1,
    )
    return await _communicate(
        process,
        command,
        context,
        context.prefix if prefix is None else prefix,
        max_buffer,
        timeout,
        check,
        host=None,
    )


async def run_command(
    *args: str,
    context: ExecutionContext | None = None,
    cwd: Path | str | None = None,
    max_buffer: int = DEFAULT_MAX_BUFFER,
    timeout: float | None = None,
    check: bool = True,
    prefix: str | None = None,
    host: str | None = None,
    display: str | None = None,
) -> CommandResult:
    """Run a command from discrete arguments without shell interpolation.

    Args:
        *args: Executable followed by its arguments
        context: Run context supplying sinks
        cwd: Working directory
        max_buffer: Maximum characters buffered per stream
        timeout: Maximum seconds to wait
        check: If True (default), raise CommandError on non-zero exit
        prefix: Line prefix, defaults to ``context.prefix``
        host: Remote host the command targets, attached to results and errors
        display: Command string reported in results and errors, defaults to
            the space-joined arguments

    Returns:
        CommandResult with the full stdout and stderr

    Raises:
        CommandError: On non-zero exit (when check=True) or buffer overflow
        FileNotFoundError: If the executable is not found
    """
    context = context or ExecutionContext(stdout=None, stderr=None)
    process = await asyncio.create_subprocess_exec(
        *args,
        cwd=cwd,
        env=context.child_env(),
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        limit=max_buffer + 1,
    )
    return await _communicate(
        process,
        display or " ".join(args),
        context,
        context.prefix if prefix is None else prefix,
        max_buffer,
        timeout,
        check,
        host=host,
    )
