"""Pytest configuration and shared fixtures."""

import io

import pytest

from shipr.engine.context import ExecutionContext
from shipr.engine.orchestrator import Shipr
from shipr.engine.scheduler import TaskScheduler


@pytest.fixture
def stdout() -> io.StringIO:
    """In-memory sink for streamed stdout."""
    return io.StringIO()


@pytest.fixture
def stderr() -> io.StringIO:
    """In-memory sink for streamed stderr."""
    return io.StringIO()


@pytest.fixture
def messages() -> list[str]:
    """User-facing log messages, one string per call."""
    return []


@pytest.fixture
def context(stdout: io.StringIO, stderr: io.StringIO, messages: list[str]) -> ExecutionContext:
    """ExecutionContext writing to in-memory sinks and collecting log messages."""
    return ExecutionContext(
        stdout=stdout,
        stderr=stderr,
        log_func=messages.append,
    )


@pytest.fixture
def scheduler() -> TaskScheduler:
    """Empty TaskScheduler."""
    return TaskScheduler()


@pytest.fixture
def shipr(context: ExecutionContext) -> Shipr:
    """Shipr instance for the staging environment."""
    return Shipr("staging", context=context)
