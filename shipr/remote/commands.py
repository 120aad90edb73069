"""Remote command shaping and file synchronization defaults.

These helpers sit between the shiprfile-facing facade and the connection
pool. They only shape what is handed to the pool: the command string and the
option set. Errors from the pool propagate unchanged.
"""

from typing import Any, Protocol

from shipr.config.settings import EffectiveConfig


class RemotePool(Protocol):
    """The pool operations the facade relies on."""

    async def run(self, command: str, **options: Any) -> Any: ...

    async def copy(self, src: str, dest: str, **options: Any) -> Any: ...


def build_remote_command(command: str, cwd: str | None = None) -> str:
    """Prefix ``command`` with a ``cd`` into ``cwd``, escaping double quotes."""
    if not cwd:
        return command
    escaped = cwd.replace('"', '\\"')
    return f'cd "{escaped}" && {command}'


async def run_remote(pool: RemotePool, command: str, **options: Any) -> Any:
    """Run a command on every remote host.

    A ``cwd`` option is folded into the command and not forwarded.
    """
    cwd = options.pop("cwd", None)
    return await pool.run(build_remote_command(command, cwd), **options)


async def copy_files(
    pool: RemotePool,
    config: EffectiveConfig | None,
    src: str,
    dest: str,
    **options: Any,
) -> Any:
    """Synchronize files, defaulting ``ignores`` and ``rsync`` from configuration."""
    options.setdefault("ignores", list(config.ignores) if config else [])
    options.setdefault("rsync", list(config.rsync) if config else [])
    return await pool.copy(src, dest, **options)
