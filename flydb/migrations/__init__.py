"""Versioned SQL migrations for one database or a fleet of them.

Provides:
- Forward (``V<n>__<desc>.sql``) and rollback (``R<n>__<desc>.sql``) scripts
- A history table recording every applied version
- Dialect-specific history SQL (MySQL, PostgreSQL, Oracle)
- Sequential or concurrent fleet runs with per-target outcomes

Usage:
    from flydb.config import load_config
    from flydb.migrations import FleetOrchestrator

    fleet = FleetOrchestrator(load_config())

    # Initialize and migrate every configured database
    await fleet.initialize()
    report = await fleet.migrate()

    # Roll one database back to version 3
    report = await fleet.rollback(target_version="3", target="reporting")

CLI Usage:
    python -m flydb.migrations migrate
    python -m flydb.migrations rollback --version 3 --target reporting
    python -m flydb.migrations status
    python -m flydb.migrations create add_user_table
"""

from .base import (
    NO_VERSION,
    VERSION_TABLE,
    DuplicateScriptError,
    FleetReport,
    InvalidArgumentError,
    InvalidStateError,
    MigrationError,
    MigrationScript,
    Operation,
    RollbackError,
    SchemaVersion,
    ScriptDirectoryError,
    ScriptKind,
    ScriptNotFoundError,
    ScriptReadError,
    SQLExecutionError,
    TargetOutcome,
    VersionNotFoundError,
)

from .dialects import (
    DatabaseDialect,
    MySQLDialect,
    OracleDialect,
    PostgreSQLDialect,
    select_dialect,
)

from .repository import ScriptRepository
from .version_store import VersionStore
from .executor import MigrationExecutor

from .runner import (
    MigrationResult,
    MigrationRunner,
)

from .fleet import FleetOrchestrator

__all__ = [
    # Base types
    "NO_VERSION",
    "VERSION_TABLE",
    "MigrationScript",
    "SchemaVersion",
    "ScriptKind",
    "Operation",
    "TargetOutcome",
    "FleetReport",
    # Errors
    "MigrationError",
    "DuplicateScriptError",
    "InvalidArgumentError",
    "InvalidStateError",
    "RollbackError",
    "ScriptDirectoryError",
    "ScriptNotFoundError",
    "ScriptReadError",
    "SQLExecutionError",
    "VersionNotFoundError",
    # Dialects
    "DatabaseDialect",
    "MySQLDialect",
    "OracleDialect",
    "PostgreSQLDialect",
    "select_dialect",
    # Engine
    "ScriptRepository",
    "VersionStore",
    "MigrationExecutor",
    "MigrationResult",
    "MigrationRunner",
    "FleetOrchestrator",
]
