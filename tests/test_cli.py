"""Tests for CLI commands."""

import json
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Iterator
from unittest.mock import Mock, patch

import pytest  # type: ignore[import-not-found]
import yaml  # type: ignore[import-untyped]
from click.testing import CliRunner  # type: ignore[import-not-found]

from tilo.cli.main import cli
from tilo.core.messages import Request, Response
from tilo.core.models import ALL_TASKS, Notification
from tilo.core.quantifier import MONTH
from tilo.daemon.ipc import IPCError


@pytest.fixture  # type: ignore[misc]
def runner() -> CliRunner:
    """Create CLI test runner."""
    return CliRunner()


@pytest.fixture  # type: ignore[misc]
def temp_dir() -> Iterator[Path]:
    """Create temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture  # type: ignore[misc]
def client() -> Iterator[Mock]:
    """Replace the IPC client used by the commands."""
    with patch("tilo.cli.main.IPCClient") as client_class:
        instance = client_class.return_value
        instance.call.return_value = Response().add_line("pong")
        yield instance


def invoke(runner: CliRunner, temp_dir: Path, *args: str):  # type: ignore[no-untyped-def]
    return runner.invoke(
        cli,
        ["--config", str(temp_dir / "config.yml"), "--socket", str(temp_dir / "server"), *args],
        obj={},
    )


class TestCLICommands:
    """Test task commands."""

    def test_version(self, runner: CliRunner) -> None:
        """Test --version flag."""
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_help(self, runner: CliRunner) -> None:
        """Test --help flag."""
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "activity timer" in result.output

    def test_ping(self, runner: CliRunner, temp_dir: Path, client: Mock) -> None:
        """Test ping prints the response body."""
        result = invoke(runner, temp_dir, "ping")

        assert result.exit_code == 0
        assert "pong" in result.output
        client.call.assert_called_once_with(Request("ping"))

    def test_start_command(self, runner: CliRunner, temp_dir: Path, client: Mock) -> None:
        """Test start sends the task name."""
        client.call.return_value = Response().add_line("Now", "Since")

        result = invoke(runner, temp_dir, "start", "writing")

        assert result.exit_code == 0
        client.call.assert_called_once_with(Request("start", tasks=["writing"]))

    def test_start_invalid_name(self, runner: CliRunner, temp_dir: Path, client: Mock) -> None:
        """Test invalid task names are rejected before sending."""
        result = invoke(runner, temp_dir, "start", "no spaces")

        assert result.exit_code == 1
        client.call.assert_not_called()

    @pytest.mark.parametrize("command", ["stop", "abort", "current", "resume", "shutdown"])
    def test_simple_commands(
        self, runner: CliRunner, temp_dir: Path, client: Mock, command: str
    ) -> None:
        """Test commands without arguments map to their operation."""
        result = invoke(runner, temp_dir, command)

        assert result.exit_code == 0
        client.call.assert_called_once_with(Request(command))

    def test_recent_with_count(self, runner: CliRunner, temp_dir: Path, client: Mock) -> None:
        """Test -n becomes the limit option."""
        result = invoke(runner, temp_dir, "recent", "-n", "3")

        assert result.exit_code == 0
        client.call.assert_called_once_with(Request("recent", options={"limit": "3"}))

    def test_query(self, runner: CliRunner, temp_dir: Path, client: Mock) -> None:
        """Test query resolves parameters on the client side."""
        result = invoke(runner, temp_dir, "query", ALL_TASKS, "--months-ago=0,1")

        assert result.exit_code == 0
        request = client.call.call_args[0][0]
        assert request.operation == "query"
        assert request.tasks == [ALL_TASKS]
        assert [q.kind for q in request.quantities] == [MONTH, MONTH]

    def test_query_defaults_to_today(
        self, runner: CliRunner, temp_dir: Path, client: Mock
    ) -> None:
        """Test query without parameters asks for today."""
        result = invoke(runner, temp_dir, "query", "writing,reading")

        assert result.exit_code == 0
        request = client.call.call_args[0][0]
        assert request.tasks == ["writing", "reading"]
        assert len(request.quantities) == 1

    def test_query_help_lists_parameters(self, runner: CliRunner) -> None:
        """Test query help describes every time range parameter."""
        result = runner.invoke(cli, ["query", "--help"])

        assert result.exit_code == 0
        assert "weeks-ago=N" in result.output
        assert "The previous week" in result.output
        assert "between=YYYY-MM-DD,YYYY-MM-DD" in result.output

    def test_query_bad_parameter(self, runner: CliRunner, temp_dir: Path, client: Mock) -> None:
        """Test unknown parameters fail locally."""
        result = invoke(runner, temp_dir, "query", "writing", "--fortnight")

        assert result.exit_code == 1
        client.call.assert_not_called()

    def test_error_response(self, runner: CliRunner, temp_dir: Path, client: Mock) -> None:
        """Test an error response exits with status 1."""
        client.call.return_value = Response.failure("No active task")

        result = invoke(runner, temp_dir, "abort")

        assert result.exit_code == 1

    def test_server_unreachable(self, runner: CliRunner, temp_dir: Path, client: Mock) -> None:
        """Test connection failures exit with status 1."""
        client.call.side_effect = IPCError("Failed to connect to daemon")

        result = invoke(runner, temp_dir, "ping")

        assert result.exit_code == 1

    def test_listen(self, runner: CliRunner, temp_dir: Path, client: Mock) -> None:
        """Test listen prints one JSON line per notification."""
        since = datetime(2019, 5, 14, 9, 0, 0)
        client.listen.return_value = iter(
            [Notification("writing", since), Notification.shutdown(since)]
        )

        result = invoke(runner, temp_dir, "listen")

        assert result.exit_code == 0
        lines = [json.loads(line) for line in result.output.splitlines()]
        assert [line["task"] for line in lines] == ["writing", "--shutdown"]


class TestConfigCommands:
    """Test configuration commands."""

    def test_config_path(self, runner: CliRunner, temp_dir: Path) -> None:
        """Test the path follows --config."""
        result = invoke(runner, temp_dir, "config", "path")

        assert result.exit_code == 0
        assert str(temp_dir / "config.yml") in result.output

    def test_config_show_json(self, runner: CliRunner, temp_dir: Path) -> None:
        """Test JSON output includes the socket override."""
        result = invoke(runner, temp_dir, "config", "show", "--json")

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["server"]["socket"] == str(temp_dir / "server")

    def test_config_get(self, runner: CliRunner, temp_dir: Path) -> None:
        """Test getting a single key."""
        result = invoke(runner, temp_dir, "config", "get", "server.recent_limit")

        assert result.exit_code == 0
        assert result.output.strip() == "5"

    def test_config_get_missing(self, runner: CliRunner, temp_dir: Path) -> None:
        """Test unknown keys exit with status 1."""
        result = invoke(runner, temp_dir, "config", "get", "nope")

        assert result.exit_code == 1

    def test_config_set(self, runner: CliRunner, temp_dir: Path) -> None:
        """Test set converts and persists the value."""
        result = invoke(runner, temp_dir, "config", "set", "server.recent_limit", "10")

        assert result.exit_code == 0
        with open(temp_dir / "config.yml") as f:
            assert yaml.safe_load(f)["server"]["recent_limit"] == 10

    def test_config_set_invalid(self, runner: CliRunner, temp_dir: Path) -> None:
        """Test invalid values are rejected."""
        result = invoke(runner, temp_dir, "config", "set", "logging.level", "LOUD")

        assert result.exit_code == 1
        assert not (temp_dir / "config.yml").exists()
