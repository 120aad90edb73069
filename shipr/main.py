"""CLI entry point for shipr."""

import asyncio
import importlib
import importlib.util
import inspect
import os
import sys
from pathlib import Path

import click
import structlog

from shipr.config.settings import ShiprSettings
from shipr.engine.context import ExecutionContext
from shipr.engine.orchestrator import ConfigureHook, Shipr
from shipr.exceptions import ConfigurationError, ShiprError
from shipr.utils.logging_config import configure_logging

log = structlog.get_logger(__name__)

SHIPRFILE_NAME = "shiprfile.py"


def find_shiprfile(explicit: str | None, start: Path) -> Path | None:
    """Locate the shiprfile.

    An explicit path is used as given. Otherwise ``shiprfile.py`` is searched
    in ``start`` and then in each of its parents.
    """
    if explicit:
        path = Path(explicit)
        return path.resolve() if path.is_file() else None

    for directory in (start, *start.parents):
        candidate = directory / SHIPRFILE_NAME
        if candidate.is_file():
            return candidate
    return None


def load_shiprfile(path: Path) -> ConfigureHook:
    """Import a shiprfile and return its ``configure`` hook.

    Raises:
        ConfigurationError: If the file cannot be imported as a module or does
            not define a callable ``configure``
    """
    spec = importlib.util.spec_from_file_location("shiprfile", path)
    if spec is None or spec.loader is None:
        raise ConfigurationError(f"Cannot load shiprfile: {path}")

    # Sibling modules of the shiprfile are importable from it
    if str(path.parent) not in sys.path:
        sys.path.insert(0, str(path.parent))

    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    hook = getattr(module, "configure", None)
    if not callable(hook):
        raise ConfigurationError(f"{path} must define a configure(shipr) function")
    return hook


async def _run(
    shiprfile: Path,
    tasks: list[str],
    environment: str,
    settings: ShiprSettings,
    list_tasks: bool,
) -> int:
    shipr = Shipr(
        environment,
        context=ExecutionContext(prefix=settings.output_prefix),
        max_buffer=settings.max_buffer,
        color=sys.stdout.isatty(),
    )

    configured = load_shiprfile(shiprfile)(shipr)
    if inspect.isawaitable(configured):
        await configured

    if list_tasks:
        for name, task in shipr.tasks.items():
            dependencies = f" [{', '.join(task.dependencies)}]" if task.dependencies else ""
            blocking = " (blocking)" if task.blocking else ""
            click.echo(f"{name}{dependencies}{blocking}")
        return 0

    shipr.initialize()
    try:
        result = await shipr.start(tasks)
    finally:
        await shipr.close()

    return 0 if result.success else 1


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("tasks", nargs=-1)
@click.option("-e", "--env", "environment", default=None, help="Environment to run tasks in (default: default)")
@click.option(
    "--cwd",
    type=click.Path(exists=True, file_okay=False),
    default=None,
    help="Change to this working directory",
)
@click.option("-f", "--shiprfile", default=None, help="Path to the shiprfile")
@click.option("-r", "--require", "requires", multiple=True, help="Import the given module first")
@click.option("--list-tasks", is_flag=True, help="List registered tasks and exit")
@click.option("--log-level", default=None, help="Structured logging level")
def cli(
    tasks: tuple[str, ...],
    environment: str | None,
    cwd: str | None,
    shiprfile: str | None,
    requires: tuple[str, ...],
    list_tasks: bool,
    log_level: str | None,
) -> None:
    """shipr: run deployment tasks locally and over SSH.

    Runs the given TASKS, or the 'default' task when none are given.

    Examples:
        shipr -e staging deploy
        shipr --list-tasks
    """
    settings = ShiprSettings()
    configure_logging(log_level or settings.log_level)

    if cwd:
        os.chdir(cwd)

    path = find_shiprfile(shiprfile or settings.shiprfile, Path.cwd())
    if path is None:
        click.echo(click.style("shiprfile not found", fg="red"), err=True)
        sys.exit(1)

    try:
        for module in requires:
            importlib.import_module(module)
        exit_code = asyncio.run(
            _run(path, list(tasks), environment or settings.environment, settings, list_tasks)
        )
    except ShiprError as e:
        click.echo(click.style(f"Error: {e.message}", fg="red"), err=True)
        log.debug("run_error", exc_info=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        sys.exit(130)
    except Exception as e:
        click.echo(click.style(f"Unexpected error: {e}", fg="red"), err=True)
        log.error("run_unexpected_error", exc_info=True)
        sys.exit(1)

    sys.exit(exit_code)


if __name__ == "__main__":
    cli()
