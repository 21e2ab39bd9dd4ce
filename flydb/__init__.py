"""FlyDB: versioned schema migrations for relational databases.

Provides:
- Connection configuration from environment and ``db-connections.yml``
- Async SQLAlchemy connections per target database
- The migration engine in ``flydb.migrations``

Environment Variables:
    FLYDB_URL: SQLAlchemy async URL of the default target
    FLYDB_USER: Username for the default target
    FLYDB_PASS: Password for the default target
    FLYDB_ACTIVE_CONNECTION: Target used by single-database commands
    FLYDB_SCRIPTS_PATH: Directory (or ``package:dir``) holding scripts
    FLYDB_CONCURRENT: Enable concurrent fleet execution
    FLYDB_MAX_WORKERS: Concurrent target cap
    FLYDB_TIMEOUT: Seconds to wait for a fleet operation
    FLYDB_CONNECT_TIMEOUT: Seconds to wait for a connection
    FLYDB_CONFIG: Path of the YAML connection file
"""

from .config import (
    ConfigurationError,
    ConnectionTarget,
    FleetConfig,
    load_config,
    parse_config,
)

from .connection import (
    DatabaseConnectionError,
    QueryError,
    TargetConnection,
    open_connection,
)

__version__ = "1.0.0"

__all__ = [
    "ConfigurationError",
    "ConnectionTarget",
    "FleetConfig",
    "load_config",
    "parse_config",
    "DatabaseConnectionError",
    "QueryError",
    "TargetConnection",
    "open_connection",
]
