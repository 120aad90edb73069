"""
SSH connection pooling for remote commands and file transfers.

Each configured server gets one Connection. A connection drives the system
``ssh`` client through an OpenSSH control master, so every command of a run
reuses one persistent session per host. File transfers use ``rsync`` over the
same master.

Every connection serializes the commands it is given; the pool runs a command
on all connections concurrently.
"""

import asyncio
import shlex
import tempfile
from collections.abc import Awaitable, Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

import structlog

from shipr.engine.context import ExecutionContext
from shipr.enums import CopyDirection
from shipr.exceptions import ConfigurationError
from shipr.utils.async_subprocess import DEFAULT_MAX_BUFFER, CommandResult, run_command

log = structlog.get_logger(__name__)

CONTROL_PERSIST_SECONDS = 60


@dataclass(frozen=True)
class Remote:
    """A remote target parsed from ``[user@]host[:port]``."""

    host: str
    user: str | None = None
    port: int | None = None

    @classmethod
    def parse(cls, server: str) -> "Remote":
        """Parse a server string.

        Raises:
            ConfigurationError: If the host is empty or the port is invalid
        """
        user, _, address = server.strip().rpartition("@")
        host, port = address, None

        if address.startswith("["):
            host, _, rest = address[1:].partition("]")
            if rest.startswith(":"):
                port = rest[1:]
        elif address.count(":") == 1:
            host, _, port = address.partition(":")

        if not host:
            raise ConfigurationError(f"Invalid server: {server!r}")

        try:
            port_number = int(port) if port else None
        except ValueError as e:
            raise ConfigurationError(f"Invalid port in server {server!r}") from e

        return cls(host=host, user=user or None, port=port_number)

    @property
    def destination(self) -> str:
        """``user@host`` form understood by ssh and rsync."""
        return f"{self.user}@{self.host}" if self.user else self.host

    def __str__(self) -> str:
        port = f":{self.port}" if self.port else ""
        return f"{self.destination}{port}"


class Connection:
    """A persistent SSH session to one remote target."""

    def __init__(
        self,
        remote: Remote,
        *,
        context: ExecutionContext,
        key: str | None = None,
        strict: bool | str | None = None,
        control_dir: Path | str | None = None,
        max_buffer: int = DEFAULT_MAX_BUFFER,
    ) -> None:
        self.remote = remote
        self.context = context
        self.key = key
        self.strict = strict
        self.control_dir = Path(control_dir or tempfile.gettempdir())
        self.max_buffer = max_buffer
        self.used = False
        self._lock = asyncio.Lock()

    @property
    def output_prefix(self) -> str:
        return f"@{self.remote.host} "

    def ssh_options(self) -> list[str]:
        """Options shared by commands, transfers and master control."""
        options = [
            "-o",
            "BatchMode=yes",
            "-o",
            "ControlMaster=auto",
            "-o",
            f"ControlPath={self.control_dir / 'shipr-%C'}",
            "-o",
            f"ControlPersist={CONTROL_PERSIST_SECONDS}",
        ]
        if self.remote.port:
            options += ["-p", str(self.remote.port)]
        if self.key:
            options += ["-i", self.key]
        if self.strict is not None:
            value = self.strict if isinstance(self.strict, str) else ("yes" if self.strict else "no")
            options += ["-o", f"StrictHostKeyChecking={value}"]
        return options

    async def run(
        self,
        command: str,
        *,
        tty: bool = False,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run a command on the remote host.

        Raises:
            CommandError: On non-zero exit or output overflow, with ``host`` set
        """
        args = ["ssh", *self.ssh_options()]
        if tty:
            args.append("-tt")
        args += [self.remote.destination, command]

        async with self._lock:
            self.used = True
            log.debug("remote_command", host=str(self.remote), command=command)
            return await run_command(
                *args,
                context=self.context,
                max_buffer=self.max_buffer,
                timeout=timeout,
                prefix=self.output_prefix,
                host=str(self.remote),
                display=command,
            )

    async def copy(
        self,
        src: str,
        dest: str,
        *,
        direction: CopyDirection | str = CopyDirection.LOCAL_TO_REMOTE,
        ignores: Iterable[str] = (),
        rsync: Sequence[str] = (),
        timeout: float | None = None,
    ) -> CommandResult:
        """Synchronize files between the local machine and this host with rsync."""
        direction = CopyDirection(direction)
        if direction is CopyDirection.LOCAL_TO_REMOTE:
            source, target = src, f"{self.remote.destination}:{dest}"
        else:
            source, target = f"{self.remote.destination}:{src}", dest

        args = [
            "rsync",
            "--archive",
            "--compress",
            *(f"--exclude={pattern}" for pattern in ignores),
            *rsync,
            "--rsh",
            shlex.join(["ssh", *self.ssh_options()]),
            source,
            target,
        ]

        async with self._lock:
            self.used = True
            log.debug("remote_copy", host=str(self.remote), source=source, target=target)
            return await run_command(
                *args,
                context=self.context,
                max_buffer=self.max_buffer,
                timeout=timeout,
                prefix=self.output_prefix,
                host=str(self.remote),
            )

    async def close(self) -> None:
        """Ask the control master of this connection to exit, if one was started."""
        if not self.used:
            return

        async with self._lock:
            self.used = False
            result = await run_command(
                "ssh",
                *self.ssh_options(),
                "-O",
                "exit",
                self.remote.destination,
                check=False,
                host=str(self.remote),
            )
        log.debug("connection_closed", host=str(self.remote), returncode=result.returncode)


async def _settle(calls: Iterable[Awaitable[CommandResult]]) -> list[CommandResult]:
    """Await every call, then raise the first failure if any."""
    results = await asyncio.gather(*calls, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return list(results)


class ConnectionPool:
    """One Connection per configured server, shared by every task of a run."""

    def __init__(
        self,
        servers: str | Sequence[str],
        *,
        context: ExecutionContext | None = None,
        key: str | None = None,
        strict: bool | str | None = None,
        max_buffer: int = DEFAULT_MAX_BUFFER,
    ) -> None:
        if isinstance(servers, str):
            servers = [servers] if servers else []
        if not servers:
            raise ConfigurationError("Servers not filled")

        self.context = context or ExecutionContext()
        self.connections = [
            Connection(
                Remote.parse(server),
                context=self.context,
                key=key,
                strict=strict,
                max_buffer=max_buffer,
            )
            for server in servers
        ]
        log.info("connection_pool_initialized", servers=[str(c.remote) for c in self.connections])

    async def run(self, command: str, **options: object) -> list[CommandResult]:
        """Run a command on every connection concurrently.

        Every host settles before this returns or raises, so no command is
        left running when one host fails.

        Returns:
            One CommandResult per connection, in server order

        Raises:
            CommandError: The first failure in server order
        """
        return await _settle(c.run(command, **options) for c in self.connections)

    async def copy(self, src: str, dest: str, **options: object) -> list[CommandResult]:
        """Synchronize files with every connection concurrently."""
        return await _settle(c.copy(src, dest, **options) for c in self.connections)

    async def close(self) -> None:
        await asyncio.gather(*(c.close() for c in self.connections))
        log.info("connection_pool_closed")
