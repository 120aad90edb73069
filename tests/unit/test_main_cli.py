"""Unit tests for the shipr CLI entry point.

This module tests:
- Locating and loading the shiprfile
- Running tasks and the resulting exit codes
- Error handling for configuration and graph errors
- Task listing and help text
"""

import textwrap
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from shipr.exceptions import ConfigurationError
from shipr.main import cli, find_shiprfile, load_shiprfile

SHIPRFILE = """
def configure(shipr):
    shipr.init_config({
        "default": {},
        "staging": {"servers": "deploy@staging.example.com"},
    })

    async def test():
        result = await shipr.local('echo "hello"')
        if result.stdout != "hello\\n":
            raise RuntimeError("test not passing")

    async def broken():
        await shipr.local("exit 3")

    shipr.task("test", test)
    shipr.task("broken", broken)
    shipr.blocking_task("release", ["test"], lambda: None)
    shipr.task("default", ["test"])
"""


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def cli_runner():
    """Create a Click CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def no_logging_configuration():
    """Keep structlog bound to pytest's streams rather than the runner's."""
    with patch("shipr.main.configure_logging") as mock:
        yield mock


@pytest.fixture
def project(tmp_path, monkeypatch) -> Path:
    """Directory holding a shiprfile, used as the working directory."""
    (tmp_path / "shiprfile.py").write_text(textwrap.dedent(SHIPRFILE))
    monkeypatch.chdir(tmp_path)
    for name in ("SHIPR_ENVIRONMENT", "SHIPR_SHIPRFILE"):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


# =============================================================================
# Tests for shiprfile discovery
# =============================================================================


class TestFindShiprfile:
    """Test find_shiprfile."""

    def test_in_start_directory(self, tmp_path):
        """Test a shiprfile in the start directory is found."""
        (tmp_path / "shiprfile.py").write_text("")

        assert find_shiprfile(None, tmp_path) == tmp_path / "shiprfile.py"

    def test_in_parent_directory(self, tmp_path):
        """Test the search walks up to parent directories."""
        (tmp_path / "shiprfile.py").write_text("")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)

        assert find_shiprfile(None, nested) == tmp_path / "shiprfile.py"

    def test_explicit_path(self, tmp_path):
        """Test an explicit path is used as given."""
        path = tmp_path / "deploy.py"
        path.write_text("")

        assert find_shiprfile(str(path), Path("/")) == path.resolve()

    def test_explicit_path_missing(self, tmp_path):
        """Test a missing explicit path is not found."""
        assert find_shiprfile(str(tmp_path / "missing.py"), tmp_path) is None


class TestLoadShiprfile:
    """Test load_shiprfile."""

    def test_returns_configure(self, tmp_path):
        """Test the configure hook is returned."""
        path = tmp_path / "shiprfile.py"
        path.write_text("def configure(shipr):\n    return 'configured'\n")

        assert load_shiprfile(path)(None) == "configured"

    def test_missing_configure(self, tmp_path):
        """Test a shiprfile without configure raises ConfigurationError."""
        path = tmp_path / "shiprfile.py"
        path.write_text("TASKS = []\n")

        with pytest.raises(ConfigurationError, match="configure"):
            load_shiprfile(path)


# =============================================================================
# Tests for running tasks
# =============================================================================


class TestRunTasks:
    """Test the CLI run command."""

    def test_run_task(self, cli_runner, project):
        """Test a successful task exits with 0."""
        result = cli_runner.invoke(cli, ["-e", "staging", "test"])

        assert result.exit_code == 0, result.output
        assert "Running 'test' task..." in result.output
        assert "Running \"echo \"hello\"\" on local." in result.output
        assert "@ hello" in result.output
        assert "Finished 'test' after" in result.output

    def test_default_task(self, cli_runner, project):
        """Test no task names run the default task."""
        result = cli_runner.invoke(cli, ["-e", "staging"])

        assert result.exit_code == 0, result.output
        assert "Finished 'default' [ test ]" in result.output

    def test_environment_from_settings(self, cli_runner, project, monkeypatch):
        """Test SHIPR_ENVIRONMENT selects the environment."""
        monkeypatch.setenv("SHIPR_ENVIRONMENT", "staging")

        result = cli_runner.invoke(cli, ["test"])

        assert result.exit_code == 0, result.output

    def test_failing_task(self, cli_runner, project):
        """Test a failing task exits with 1."""
        result = cli_runner.invoke(cli, ["-e", "staging", "broken"])

        assert result.exit_code == 1
        assert "'broken' errored after" in result.output
        assert "exit code 3" in result.output

    def test_unknown_task(self, cli_runner, project):
        """Test an unknown task exits with 1."""
        result = cli_runner.invoke(cli, ["-e", "staging", "ghost"])

        assert result.exit_code == 1
        assert "Task 'ghost' is not in your shiprfile" in result.output

    def test_missing_environment(self, cli_runner, project):
        """Test an undeclared environment exits with 1."""
        result = cli_runner.invoke(cli, ["-e", "production", "test"])

        assert result.exit_code == 1
        assert 'Error: Environment "production" not found in config' in result.output

    def test_default_environment_without_servers(self, cli_runner, project):
        """Test running without servers exits with 1."""
        result = cli_runner.invoke(cli, ["test"])

        assert result.exit_code == 1
        assert "Servers not filled" in result.output

    def test_cycle(self, cli_runner, tmp_path, monkeypatch):
        """Test a dependency cycle exits with 1."""
        (tmp_path / "shiprfile.py").write_text(
            textwrap.dedent(
                """
                def configure(shipr):
                    shipr.init_config({"default": {"servers": "web"}})
                    shipr.task("a", ["b"], lambda: None)
                    shipr.task("b", ["a"], lambda: None)
                """
            )
        )
        monkeypatch.chdir(tmp_path)

        result = cli_runner.invoke(cli, ["-e", "default", "a"])

        assert result.exit_code == 1
        assert "Dependency cycle detected" in result.output

    def test_async_configure(self, cli_runner, tmp_path, monkeypatch):
        """Test an async configure hook is awaited."""
        (tmp_path / "shiprfile.py").write_text(
            textwrap.dedent(
                """
                async def configure(shipr):
                    shipr.init_config({"default": {"servers": "web"}})
                    shipr.task("noop", lambda: None)
                """
            )
        )
        monkeypatch.chdir(tmp_path)

        result = cli_runner.invoke(cli, ["-e", "default", "noop"])

        assert result.exit_code == 0, result.output

    def test_configure_raises(self, cli_runner, tmp_path, monkeypatch):
        """Test an unexpected error in the shiprfile exits with 1."""
        (tmp_path / "shiprfile.py").write_text("def configure(shipr):\n    raise RuntimeError('broken shiprfile')\n")
        monkeypatch.chdir(tmp_path)

        result = cli_runner.invoke(cli, [])

        assert result.exit_code == 1
        assert "Unexpected error: broken shiprfile" in result.output

    def test_logging_level_option(self, cli_runner, project, no_logging_configuration):
        """Test --log-level reaches the logging configuration."""
        cli_runner.invoke(cli, ["--log-level", "debug", "--list-tasks"])

        no_logging_configuration.assert_called_once_with("debug")


class TestShiprfileLocation:
    """Test the shiprfile options."""

    def test_shiprfile_not_found(self, cli_runner, tmp_path, monkeypatch):
        """Test a missing shiprfile exits with 1."""
        monkeypatch.chdir(tmp_path)

        result = cli_runner.invoke(cli, ["-f", str(tmp_path / "missing.py")])

        assert result.exit_code == 1
        assert "shiprfile not found" in result.output

    def test_explicit_shiprfile(self, cli_runner, project, tmp_path_factory, monkeypatch):
        """Test -f points at a shiprfile outside the working directory."""
        monkeypatch.chdir(tmp_path_factory.mktemp("elsewhere"))

        result = cli_runner.invoke(cli, ["-f", str(project / "shiprfile.py"), "-e", "staging", "test"])

        assert result.exit_code == 0, result.output

    def test_cwd_option(self, cli_runner, project, tmp_path_factory, monkeypatch):
        """Test --cwd changes directory before looking for the shiprfile."""
        monkeypatch.chdir(tmp_path_factory.mktemp("elsewhere"))

        result = cli_runner.invoke(cli, ["--cwd", str(project), "-e", "staging", "test"])

        assert result.exit_code == 0, result.output

    def test_require_module(self, cli_runner, project):
        """Test --require imports a module before running."""
        result = cli_runner.invoke(cli, ["-r", "json", "-e", "staging", "test"])

        assert result.exit_code == 0, result.output

    def test_require_missing_module(self, cli_runner, project):
        """Test a missing --require module exits with 1."""
        result = cli_runner.invoke(cli, ["-r", "shipr_no_such_module", "-e", "staging", "test"])

        assert result.exit_code == 1


class TestListAndHelp:
    """Test informational options."""

    def test_list_tasks(self, cli_runner, project):
        """Test --list-tasks prints registered tasks without running them."""
        result = cli_runner.invoke(cli, ["--list-tasks"])

        assert result.exit_code == 0, result.output
        assert "test" in result.output
        assert "release [test] (blocking)" in result.output
        assert "default [test]" in result.output
        assert "Running" not in result.output

    def test_help(self, cli_runner):
        """Test --help shows usage."""
        result = cli_runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        assert "TASKS" in result.output
        assert "--env" in result.output
