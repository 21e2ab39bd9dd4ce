"""Pytest fixtures for flydb tests."""

from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep FLYDB_* variables from the developer's shell out of tests."""
    for name in [
        "FLYDB_URL",
        "FLYDB_USER",
        "FLYDB_PASS",
        "FLYDB_ACTIVE_CONNECTION",
        "FLYDB_SCRIPTS_PATH",
        "FLYDB_CONCURRENT",
        "FLYDB_MAX_WORKERS",
        "FLYDB_TIMEOUT",
        "FLYDB_CONNECT_TIMEOUT",
        "FLYDB_CONFIG",
    ]:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def scripts_dir(tmp_path) -> Path:
    """Empty script directory."""
    path = tmp_path / "migration"
    path.mkdir()
    return path


@pytest.fixture
def write_script(scripts_dir):
    """Write a script file into the script directory.

    Usage:
        write_script("V1__create_users.sql", "CREATE TABLE users (id INT)")
    """

    def _write(filename: str, sql: str, subdir: str = "") -> Path:
        directory = scripts_dir / subdir if subdir else scripts_dir
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / filename
        path.write_text(sql, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def standard_scripts(write_script):
    """Two forward scripts with their rollbacks."""
    write_script("V1__create_users.sql", "CREATE TABLE users (id INTEGER PRIMARY KEY)")
    write_script("V2__create_orders.sql", "CREATE TABLE orders (id INTEGER PRIMARY KEY)")
    write_script("R1__drop_users.sql", "DROP TABLE users")
    write_script("R2__drop_orders.sql", "DROP TABLE orders")
