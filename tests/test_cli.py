"""Tests for the flydb command line."""

import io
from textwrap import dedent

import pytest
from rich.console import Console

from flydb.migrations.cli import async_main, create_parser


@pytest.fixture
def console():
    return Console(file=io.StringIO(), width=200)


@pytest.fixture
def config_file(tmp_path, scripts_dir):
    """Connection file with two SQLite targets."""
    path = tmp_path / "db-connections.yml"
    path.write_text(dedent(f"""
        global:
          scripts_path: {scripts_dir}
          active_connection: alpha

        alpha:
          url: sqlite+aiosqlite:///{tmp_path / 'alpha.db'}

        beta:
          url: sqlite+aiosqlite:///{tmp_path / 'beta.db'}
    """))
    return path


def run(config_file, console, *argv):
    args = create_parser().parse_args(["--config", str(config_file), *argv])
    return async_main(args, console)


def output(console) -> str:
    return console.file.getvalue()


class TestParser:
    """Tests for argument parsing."""

    def test_migrate_args(self):
        """Test migrate options."""
        args = create_parser().parse_args(["migrate", "--version", "3", "--target", "prod"])

        assert args.command == "migrate"
        assert args.version == "3"
        assert args.target == "prod"

    def test_rollback_defaults(self):
        """Test rollback without options means previous version on all targets."""
        args = create_parser().parse_args(["rollback"])

        assert args.version is None
        assert args.target is None

    def test_command_required(self):
        """Test a command must be given."""
        with pytest.raises(SystemExit):
            create_parser().parse_args([])


class TestCommands:
    """Tests for command execution."""

    @pytest.mark.asyncio
    async def test_migrate_and_version(self, config_file, console, standard_scripts):
        """Test migrate then version across the fleet."""
        assert await run(config_file, console, "migrate") == 0
        assert await run(config_file, console, "version") == 0

        text = output(console)
        assert "alpha" in text
        assert "beta" in text
        assert "migrated to version 2" in text
        assert "current version 2" in text

    @pytest.mark.asyncio
    async def test_rollback_failure_exit_code(self, config_file, console, standard_scripts):
        """Test a failed outcome gives exit code 1."""
        assert await run(config_file, console, "rollback", "--version", "0") == 1
        assert "FAILED" in output(console)

    @pytest.mark.asyncio
    async def test_status(self, config_file, console, standard_scripts):
        """Test status shows installed and pending scripts."""
        await run(config_file, console, "migrate", "--version", "1", "--target", "alpha")

        assert await run(config_file, console, "status") == 0

        text = output(console)
        assert "Migration status for alpha" in text
        assert "create_users" in text
        assert "Applied: 1" in text
        assert "Pending: 1" in text

    @pytest.mark.asyncio
    async def test_unknown_target(self, config_file, console):
        """Test an unknown target prints an error and exits 1."""
        assert await run(config_file, console, "init", "--target", "gamma") == 1
        assert "Unknown connection 'gamma'" in output(console)

    @pytest.mark.asyncio
    async def test_bad_config(self, tmp_path, console):
        """Test an unreadable connection file exits 1."""
        path = tmp_path / "bad.yml"
        path.write_text("alpha: [1, 2\n")

        assert await run(path, console, "init") == 1
        assert "Error:" in output(console)

    @pytest.mark.asyncio
    async def test_create(self, config_file, console, scripts_dir, write_script):
        """Test create writes the next forward and rollback scripts."""
        write_script("V1__create_users.sql", "CREATE TABLE users (id INTEGER)")

        assert await run(config_file, console, "create", "Add Email") == 0

        assert (scripts_dir / "V2__add_email.sql").exists()
        assert (scripts_dir / "R2__add_email.sql").exists()

    @pytest.mark.asyncio
    async def test_create_without_rollback(self, config_file, console, scripts_dir):
        """Test --no-rollback skips the rollback script."""
        assert await run(config_file, console, "create", "init", "--no-rollback") == 0

        assert (scripts_dir / "V1__init.sql").exists()
        assert not (scripts_dir / "R1__init.sql").exists()
