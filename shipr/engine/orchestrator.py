"""
Deployment orchestrator exposed to shiprfiles.

The Shipr class is the object a shiprfile's ``configure(shipr)`` hook
receives. It ties together the environment configuration, the task scheduler,
the SSH connection pool and the lifecycle reporter:

- ``init_config`` resolves the effective configuration of the selected
  environment
- ``task`` / ``blocking_task`` register tasks with the scheduler
- ``local`` / ``remote`` / ``copy`` are awaited from task bodies
- ``start`` runs the requested tasks

Example shiprfile::

    def configure(shipr):
        shipr.init_config({
            "default": {"deploy_to": "/srv/app"},
            "staging": {"servers": ["deploy@staging.example.com"]},
        })

        async def build():
            await shipr.local("make build")

        async def publish():
            await shipr.copy("dist/", shipr.config.deploy_to)
            await shipr.remote("systemctl --user restart app", cwd=shipr.config.deploy_to)

        shipr.task("build", [], build)
        shipr.blocking_task("publish", ["build"], publish)
        shipr.task("default", ["publish"])
"""

from collections.abc import Callable, Iterable, Mapping, Sequence
from pathlib import Path
from typing import Any

import structlog

from shipr.config.settings import EffectiveConfig, load_environment_document, resolve_config
from shipr.engine.context import ExecutionContext
from shipr.engine.scheduler import RunResult, Task, TaskBody, TaskScheduler
from shipr.engine.types import EventListener
from shipr.exceptions import ConfigurationError
from shipr.remote.commands import copy_files, run_remote
from shipr.remote.pool import ConnectionPool
from shipr.utils.async_subprocess import DEFAULT_MAX_BUFFER, CommandResult, run_shell_command
from shipr.utils.status_reporter import StatusReporter

log = structlog.get_logger(__name__)


class Shipr:
    """Register deployment tasks and run them against one environment.

    Attributes:
        environment: Name of the selected environment
        context: Output sinks and process settings of the run
        config: Effective configuration, set by :meth:`init_config`
        pool: SSH connection pool, set by :meth:`initialize`
        scheduler: Task scheduler holding the registered tasks
    """

    def __init__(
        self,
        environment: str = "default",
        *,
        context: ExecutionContext | None = None,
        max_buffer: int = DEFAULT_MAX_BUFFER,
        color: bool = False,
        report: bool = True,
    ) -> None:
        """Initialize orchestrator.

        Args:
            environment: Environment to deploy
            context: Run context; defaults to the process stdout/stderr
            max_buffer: Default output bound of local and remote commands
            color: Colorize lifecycle messages
            report: Subscribe the lifecycle reporter to scheduler events
        """
        self.environment = environment
        self.context = context or ExecutionContext()
        self.max_buffer = max_buffer
        self.config: EffectiveConfig | None = None
        self.pool: ConnectionPool | None = None
        self.scheduler = TaskScheduler()

        if report:
            self.scheduler.subscribe(StatusReporter(self.context, self.scheduler.tasks, color=color))

    @property
    def tasks(self) -> Mapping[str, Task]:
        return self.scheduler.tasks

    def init_config(self, document: Mapping[str, Any] | str | Path) -> "Shipr":
        """Resolve the effective configuration of the selected environment.

        Args:
            document: Mapping of environment name to settings, or the path of
                a YAML file holding one

        Returns:
            self, for chaining

        Raises:
            ConfigurationError: If the environment is missing from the document
        """
        if isinstance(document, str | Path):
            document = load_environment_document(document)

        self.config = resolve_config(document, self.environment)
        log.info("config_initialized", environment=self.environment)
        return self

    def initialize(self) -> "Shipr":
        """Prepare the run: open the SSH connection pool."""
        return self.init_pool()

    def init_pool(self) -> "Shipr":
        """Create the connection pool from the configured servers.

        Raises:
            ConfigurationError: If configuration is missing or has no servers
        """
        if self.config is None:
            raise ConfigurationError("Configuration not initialized, call init_config() in your shiprfile")

        servers = self.config.server_list
        if not servers:
            raise ConfigurationError("Servers not filled")

        self.pool = ConnectionPool(
            servers,
            context=self.context,
            key=self.config.key,
            strict=self.config.strict,
            max_buffer=self.max_buffer,
        )
        return self

    def task(
        self,
        name: str,
        dependencies: Iterable[str] | str | TaskBody | None = None,
        body: TaskBody | None = None,
        *,
        blocking: bool = False,
    ) -> Task:
        """Register a task.

        ``task(name, body)`` is accepted as a shorthand for a task without
        dependencies. A task without a body groups its dependencies under one
        name. Registering an existing name replaces the earlier task.
        """
        if callable(dependencies) and body is None:
            body, dependencies = dependencies, None
        return self.scheduler.register(name, dependencies or (), body, blocking=blocking)

    def blocking_task(
        self,
        name: str,
        dependencies: Iterable[str] | str | TaskBody | None = None,
        body: TaskBody | None = None,
    ) -> Task:
        """Register a task that runs with no other task running."""
        return self.task(name, dependencies, body, blocking=True)

    def subscribe(self, listener: EventListener) -> None:
        self.scheduler.subscribe(listener)

    def log(self, *args: Any) -> None:
        """Write a message to the run's log."""
        self.context.log(*args)

    async def local(self, command: str, **options: Any) -> CommandResult:
        """Run a command on the local machine.

        Options are ``cwd``, ``env``, ``max_buffer``, ``timeout`` and
        ``check``; see :func:`shipr.utils.async_subprocess.run_shell_command`.

        Raises:
            CommandError: On non-zero exit or output overflow
        """
        self.log(f'Running "{command}" on local.')
        options.setdefault("max_buffer", self.max_buffer)
        return await run_shell_command(command, context=self.context, **options)

    async def remote(self, command: str, **options: Any) -> list[CommandResult]:
        """Run a command on every configured server.

        A ``cwd`` option runs the command from that remote directory.
        """
        return await run_remote(self._require_pool(), command, **options)

    async def copy(self, src: str, dest: str, **options: Any) -> list[CommandResult]:
        """Synchronize files with every configured server.

        ``ignores`` and ``rsync`` default to the configured values.
        """
        return await copy_files(self._require_pool(), self.config, src, dest, **options)

    def _require_pool(self) -> ConnectionPool:
        if self.pool is None:
            raise ConfigurationError("SSH pool not initialized, call initialize() first")
        return self.pool

    async def start(self, names: Sequence[str] | None = None) -> RunResult:
        """Run the requested tasks, ``default`` when none are given."""
        return await self.scheduler.run(names)

    async def close(self) -> None:
        """Close the SSH connection pool, if one was opened."""
        if self.pool is not None:
            await self.pool.close()
            self.pool = None


ConfigureHook = Callable[[Shipr], Any]
