"""Tests for the history table store."""

import pytest

from flydb.connection import open_connection
from flydb.migrations.base import (
    InvalidArgumentError,
    InvalidStateError,
    MigrationScript,
    RollbackError,
    ScriptNotFoundError,
    VersionNotFoundError,
)
from flydb.migrations.dialects import MySQLDialect
from flydb.migrations.executor import MigrationExecutor
from flydb.migrations.version_store import VersionStore


async def install(conn, store, *versions):
    """Apply trivial forward scripts for the given versions."""
    executor = MigrationExecutor(conn, store.dialect)
    for version in versions:
        await executor.apply(
            MigrationScript(
                version,
                f"V{version}__t{version}.sql",
                f"CREATE TABLE t{version} (id INTEGER)",
            )
        )


class TestInit:
    """Tests for VersionStore.init."""

    @pytest.mark.asyncio
    async def test_creates_table(self, sqlite_target, repository, inspect_db):
        """Test the history table is created."""
        async with open_connection(sqlite_target) as conn:
            store = VersionStore(conn, repository)
            assert await store.exists() is False
            assert await store.init() is True

        assert "flydb_schema_history" in inspect_db(sqlite_target).tables()

    @pytest.mark.asyncio
    async def test_idempotent(self, sqlite_target, repository):
        """Test repeated init calls are harmless."""
        async with open_connection(sqlite_target) as conn:
            store = VersionStore(conn, repository)
            await store.init()
            await install(conn, store, "1")

            assert await store.init() is False
            assert await store.init() is False
            assert await store.current_version() == "1"

    @pytest.mark.asyncio
    async def test_sqlite_uses_baseline_dialect(self, sqlite_target, repository):
        """Test products without a dialect use the MySQL baseline."""
        async with open_connection(sqlite_target) as conn:
            assert isinstance(VersionStore(conn, repository).dialect, MySQLDialect)


class TestVersions:
    """Tests for version lookups."""

    @pytest.mark.asyncio
    async def test_current_version_without_table(self, sqlite_target, repository):
        """Test a missing history table reads as version 0."""
        async with open_connection(sqlite_target) as conn:
            assert await VersionStore(conn, repository).current_version() == "0"

    @pytest.mark.asyncio
    async def test_current_version_empty(self, sqlite_target, repository):
        """Test an empty history table reads as version 0."""
        async with open_connection(sqlite_target) as conn:
            store = VersionStore(conn, repository)
            await store.init()
            assert await store.current_version() == "0"

    @pytest.mark.asyncio
    async def test_current_version_is_numeric(self, sqlite_target, repository):
        """Test version 10 is above version 9."""
        async with open_connection(sqlite_target) as conn:
            store = VersionStore(conn, repository)
            await store.init()
            await install(conn, store, "9", "10")

            assert await store.current_version() == "10"
            assert await store.previous_version("10") == "9"

    @pytest.mark.asyncio
    async def test_failure_rows_do_not_count(self, sqlite_target, repository):
        """Test a failure row never becomes the current version."""
        async with open_connection(sqlite_target) as conn:
            store = VersionStore(conn, repository)
            await store.init()
            await install(conn, store, "1")
            await conn.execute(
                store.dialect.insert_version_sql(
                    version="2",
                    description="broken",
                    script="V2__broken.sql",
                    checksum="x",
                    installed_by="test",
                    execution_time=0,
                    success=False,
                )
            )

            assert await store.current_version() == "1"
            assert await store.rollback_targets("0", "5") == ["1"]

    @pytest.mark.asyncio
    async def test_previous_version_missing(self, sqlite_target, repository):
        """Test there is no version below the first one."""
        async with open_connection(sqlite_target) as conn:
            store = VersionStore(conn, repository)
            await store.init()
            await install(conn, store, "1")

            with pytest.raises(VersionNotFoundError):
                await store.previous_version("1")

    @pytest.mark.asyncio
    async def test_rollback_targets_descending(self, sqlite_target, repository):
        """Test the rollback range is (target, current], highest first."""
        async with open_connection(sqlite_target) as conn:
            store = VersionStore(conn, repository)
            await store.init()
            await install(conn, store, "1", "2", "3", "4")

            assert await store.rollback_targets("1", "4") == ["4", "3", "2"]
            assert await store.rollback_targets("3", "3") == []

    @pytest.mark.asyncio
    async def test_history(self, sqlite_target, repository):
        """Test history rows are complete and ascending."""
        async with open_connection(sqlite_target) as conn:
            store = VersionStore(conn, repository)
            await store.init()
            await install(conn, store, "2", "1")

            rows = await store.history()

        assert [r.version for r in rows] == ["1", "2"]
        assert rows[0].script == "V1__t1.sql"
        assert rows[0].description == "t1"
        assert rows[0].type == "SQL"
        assert rows[0].success is True
        assert rows[0].installed_on is not None
        assert len(rows[0].checksum) == 16


class TestRollback:
    """Tests for VersionStore.rollback."""

    @pytest.mark.asyncio
    async def test_rollback_to_previous(self, sqlite_target, repository, write_script, inspect_db):
        """Test current 2, rollback to 1 runs only R2 and deletes row 2."""
        write_script("R2__drop_t2.sql", "DROP TABLE t2")
        write_script("R1__drop_t1.sql", "DROP TABLE t1")

        async with open_connection(sqlite_target) as conn:
            store = VersionStore(conn, repository)
            await store.init()
            await install(conn, store, "1", "2")

            assert await store.rollback("1") == ["2"]
            assert await store.current_version() == "1"

        db = inspect_db(sqlite_target)
        assert "t1" in db.tables()
        assert "t2" not in db.tables()
        assert db.history() == [("1", 1)]

    @pytest.mark.asyncio
    async def test_rollback_default_target(self, sqlite_target, repository, write_script):
        """Test omitting the target rolls back one version."""
        write_script("R3__drop_t3.sql", "DROP TABLE t3")

        async with open_connection(sqlite_target) as conn:
            store = VersionStore(conn, repository)
            await store.init()
            await install(conn, store, "1", "2", "3")

            assert await store.rollback() == ["3"]
            assert await store.current_version() == "2"

    @pytest.mark.asyncio
    async def test_rollback_to_zero(self, sqlite_target, repository, write_script):
        """Test an explicit target 0 undoes everything."""
        write_script("R1__drop_t1.sql", "DROP TABLE t1")
        write_script("R2__drop_t2.sql", "DROP TABLE t2")

        async with open_connection(sqlite_target) as conn:
            store = VersionStore(conn, repository)
            await store.init()
            await install(conn, store, "1", "2")

            assert await store.rollback("0") == ["2", "1"]
            assert await store.current_version() == "0"
            assert await store.history() == []

    @pytest.mark.asyncio
    async def test_nothing_installed(self, sqlite_target, repository):
        """Test rollback of an uninitialized database is an invalid state."""
        async with open_connection(sqlite_target) as conn:
            with pytest.raises(InvalidStateError):
                await VersionStore(conn, repository).rollback("0")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("target", ["2", "3"])
    async def test_target_not_below_current(self, sqlite_target, repository, target):
        """Test targets at or above the current version are rejected."""
        async with open_connection(sqlite_target) as conn:
            store = VersionStore(conn, repository)
            await store.init()
            await install(conn, store, "1", "2")

            with pytest.raises(InvalidArgumentError):
                await store.rollback(target)

    @pytest.mark.asyncio
    async def test_non_numeric_target(self, sqlite_target, repository):
        """Test a non-numeric target is an invalid argument."""
        async with open_connection(sqlite_target) as conn:
            store = VersionStore(conn, repository)
            await store.init()
            await install(conn, store, "1")

            with pytest.raises(InvalidArgumentError):
                await store.rollback("one")

    @pytest.mark.asyncio
    async def test_missing_script_changes_nothing(
        self, sqlite_target, repository, write_script, inspect_db
    ):
        """Test a missing rollback script aborts before any change."""
        write_script("R3__drop_t3.sql", "DROP TABLE t3")

        async with open_connection(sqlite_target) as conn:
            store = VersionStore(conn, repository)
            await store.init()
            await install(conn, store, "1", "2", "3")

            with pytest.raises(ScriptNotFoundError, match="version 2"):
                await store.rollback("1")

        db = inspect_db(sqlite_target)
        assert {"t1", "t2", "t3"} <= db.tables()
        assert [v for v, _ in db.history()] == ["1", "2", "3"]

    @pytest.mark.asyncio
    async def test_failing_script_is_atomic(
        self, sqlite_target, repository, write_script, inspect_db
    ):
        """Test a failing rollback script leaves schema and history unchanged."""
        write_script("R3__drop_t3.sql", "DROP TABLE t3")
        write_script("R2__broken.sql", "DROP TABLE no_such_table")

        async with open_connection(sqlite_target) as conn:
            store = VersionStore(conn, repository)
            await store.init()
            await install(conn, store, "1", "2", "3")

            with pytest.raises(RollbackError) as exc_info:
                await store.rollback("1")

        assert exc_info.value.version == "2"
        assert exc_info.value.__cause__ is not None
        db = inspect_db(sqlite_target)
        assert {"t1", "t2", "t3"} <= db.tables()
        assert [v for v, _ in db.history()] == ["1", "2", "3"]
