"""Database pytest fixtures.

Every target is a real SQLite file under ``tmp_path`` reached through
``sqlite+aiosqlite``, so transactions and the history table behave as
they do against a server.
"""

import sqlite3

import pytest

from flydb.config import ConnectionTarget, FleetConfig
from flydb.migrations.repository import ScriptRepository


@pytest.fixture
def make_target(tmp_path):
    """Build a SQLite target with its own database file."""

    def _make(name: str = "dev", concurrent: bool = False) -> ConnectionTarget:
        return ConnectionTarget(
            name=name,
            url=f"sqlite+aiosqlite:///{tmp_path / f'{name}.db'}",
            concurrent=concurrent,
        )

    return _make


@pytest.fixture
def sqlite_target(make_target) -> ConnectionTarget:
    """Single SQLite target."""
    return make_target("dev")


@pytest.fixture
def fleet_config(sqlite_target, scripts_dir) -> FleetConfig:
    """Configuration with one SQLite target."""
    return FleetConfig(
        targets={sqlite_target.name: sqlite_target},
        active_connection=sqlite_target.name,
        concurrent_execution=False,
        scripts_path=str(scripts_dir),
        max_workers=4,
        timeout=30.0,
        connect_timeout=5.0,
    )


@pytest.fixture
def repository(scripts_dir) -> ScriptRepository:
    """Repository over the test script directory."""
    return ScriptRepository(scripts_dir)


@pytest.fixture
def inspect_db():
    """Open a target's database file with the sync sqlite3 driver.

    Usage:
        tables = inspect_db(target).tables()
    """

    class _Inspector:
        def __init__(self, target: ConnectionTarget):
            self.path = target.url.split(":///", 1)[1]

        def query(self, sql: str) -> list[tuple]:
            conn = sqlite3.connect(self.path)
            try:
                return conn.execute(sql).fetchall()
            finally:
                conn.close()

        def tables(self) -> set[str]:
            rows = self.query("SELECT name FROM sqlite_master WHERE type = 'table'")
            return {row[0] for row in rows}

        def history(self) -> list[tuple]:
            return self.query(
                "SELECT version, success FROM flydb_schema_history ORDER BY version_rank"
            )

    return _Inspector
