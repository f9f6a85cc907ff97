"""
Unit tests for the tablesync CLI interface.
"""

import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import yaml
from click.testing import CliRunner

from tablesync import __version__
from tablesync.cli import handle_errors, main
from tablesync.config import TablesyncConfig
from tablesync.exceptions import ConfigurationError


@pytest.fixture
def runner():
    """Click test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def restore_logging():
    """Commands reconfigure root logging; put it back afterwards."""
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    yield
    root.handlers = saved_handlers
    root.setLevel(saved_level)


@pytest.fixture
def database(recording_pool, fake_introspector):
    """Route the CLI's pool and catalog reads to the recording fakes."""
    with patch("tablesync.cli.ConnectionPool", return_value=recording_pool), patch(
        "tablesync.registry.SchemaIntrospector", return_value=fake_introspector
    ):
        yield recording_pool


class TestCLIMain:
    """Test main CLI functionality."""

    def test_cli_help(self, runner):
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "keep PostgreSQL tables in sync" in result.output

    def test_cli_version(self, runner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_missing_config_option(self, runner):
        result = runner.invoke(main, ["sync"])
        assert result.exit_code != 0
        assert "--config" in result.output


class TestHandleErrors:
    def test_tablesync_error_exits_1(self):
        @handle_errors
        def failing():
            raise ConfigurationError("bad settings")

        with pytest.raises(SystemExit) as exc_info:
            failing()
        assert exc_info.value.code == 1

    def test_unexpected_error_exits_1(self):
        @handle_errors
        def failing():
            raise RuntimeError("boom")

        with pytest.raises(SystemExit) as exc_info:
            failing()
        assert exc_info.value.code == 1

    def test_passes_result_through(self):
        @handle_errors
        def ok():
            return 42

        assert ok() == 42


class TestInitCommand:
    def test_init_writes_loadable_config(self, runner, tmp_path):
        output = tmp_path / "tablesync.yaml"

        result = runner.invoke(main, ["init", "-o", str(output)])

        assert result.exit_code == 0
        assert "Configuration file created" in result.output
        config = TablesyncConfig.from_yaml(output)
        users = config.get_schema("users")
        assert users.effective_primary_key == "id"
        assert users.indexes == ["email"]
        assert users.field("password").server_only

    def test_init_keeps_existing_file(self, runner, tmp_path):
        output = tmp_path / "tablesync.yaml"
        output.write_text("keep: me\n")

        result = runner.invoke(main, ["init", "-o", str(output)], input="n\n")

        assert result.exit_code == 0
        assert output.read_text() == "keep: me\n"


class TestValidateConfigCommand:
    def test_valid(self, runner, config_yaml):
        result = runner.invoke(main, ["validate-config", "-c", str(config_yaml)])

        assert result.exit_code == 0
        assert "Configuration is valid" in result.output
        assert "users" in result.output
        assert "groups" in result.output

    def test_invalid(self, runner, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("schemas:\n  - name: t\n    fields: []\n")

        result = runner.invoke(main, ["validate-config", "-c", str(path)])

        assert result.exit_code == 1
        assert "Error" in result.output


class TestPlanCommand:
    def test_plan_runs_nothing(self, runner, config_yaml, database):
        result = runner.invoke(main, ["plan", "-c", str(config_yaml)])

        assert result.exit_code == 0, result.output
        assert 'CREATE TABLE "public"."users"' in result.output
        assert 'CREATE INDEX "users_email"' in result.output
        assert database.executed == []
        assert database.closed

    def test_plan_selected_schema(self, runner, config_yaml, database):
        result = runner.invoke(main, ["plan", "-c", str(config_yaml), "-s", "groups"])

        assert result.exit_code == 0, result.output
        assert '"public"."groups"' in result.output
        assert '"public"."users"' not in result.output

    def test_plan_unknown_schema(self, runner, config_yaml, database):
        result = runner.invoke(main, ["plan", "-c", str(config_yaml), "-s", "nope"])

        assert result.exit_code == 1
        assert "not found" in result.output


class TestSyncCommand:
    def test_sync_creates_tables(self, runner, config_yaml, database):
        result = runner.invoke(main, ["sync", "-c", str(config_yaml)])

        assert result.exit_code == 0, result.output
        assert database.connection.transactions == 2
        assert database.executed[0].startswith('CREATE TABLE "public"."users"')
        assert database.executed[-1].startswith('CREATE TABLE "public"."groups"')
        assert "created" in result.output

    def test_sync_dry_run(self, runner, config_yaml, database):
        result = runner.invoke(main, ["sync", "-c", str(config_yaml), "--dry-run"])

        assert result.exit_code == 0, result.output
        assert "Dry run mode" in result.output
        assert "planned" in result.output
        assert database.executed == []

    def test_sync_statement_failure(self, runner, config_yaml, failing_pool, fake_introspector):
        pool = failing_pool("CREATE INDEX")
        with patch("tablesync.cli.ConnectionPool", return_value=pool), patch(
            "tablesync.registry.SchemaIntrospector", return_value=fake_introspector
        ):
            result = runner.invoke(main, ["sync", "-c", str(config_yaml)])

        assert result.exit_code == 1
        assert "Error" in result.output
        assert pool.connection.rolled_back
        assert pool.closed


class TestInspectCommand:
    def test_inspect(self, runner, config_yaml, recording_pool, test_table_live):
        introspector = MagicMock()
        introspector.read = AsyncMock(return_value=test_table_live)

        with patch("tablesync.cli.ConnectionPool", return_value=recording_pool), patch(
            "tablesync.cli.SchemaIntrospector", return_value=introspector
        ) as introspector_cls:
            result = runner.invoke(main, ["inspect", "-c", str(config_yaml), "test", "-n", "audit"])

        assert result.exit_code == 0, result.output
        assert introspector_cls.call_args.kwargs["namespace"] == "audit"
        data = yaml.safe_load(result.output)
        assert data["name"] == "test"
        assert [f["name"] for f in data["fields"]] == ["a", "b", "c"]
        assert data["primary_key"] == "a"


class TestConnectionCommand:
    @pytest.fixture
    def pool(self):
        pool = MagicMock()
        pool.initialize = AsyncMock()
        pool.close = AsyncMock()
        pool.test_connection = AsyncMock()
        return pool

    def test_connected(self, runner, config_yaml, pool):
        pool.test_connection.return_value = {
            "status": "connected",
            "database": "appdb",
            "user": "app",
            "schema": "public",
            "version": "PostgreSQL 16.2, compiled by gcc",
        }

        with patch("tablesync.cli.ConnectionPool", return_value=pool):
            result = runner.invoke(main, ["test-connection", "-c", str(config_yaml)])

        assert result.exit_code == 0
        assert "Connected successfully" in result.output
        assert "PostgreSQL 16.2" in result.output
        pool.close.assert_awaited_once()

    def test_failed(self, runner, config_yaml, pool):
        pool.test_connection.return_value = {"status": "failed", "error": "refused"}

        with patch("tablesync.cli.ConnectionPool", return_value=pool):
            result = runner.invoke(main, ["test-connection", "-c", str(config_yaml)])

        assert result.exit_code == 1
        assert "Connection failed: refused" in result.output
