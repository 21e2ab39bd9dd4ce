"""SQL dialects for the history table.

Each dialect maps the four history-table questions the engine asks onto
SQL for one database product:

- create_version_table_sql: DDL for the history table
- latest_version_sql: highest successfully installed version
- previous_version_sql: version just below a given one
- range_to_rollback_sql: versions to undo when rolling back

plus the row statements (``insert_version_sql``, ``delete_version_sql``,
``delete_above_sql``, ``history_sql``) the engine writes with. Statements
are returned as SQLAlchemy ``TextClause`` objects with every value bound as
a parameter. Dialects hold no connection state.

Adding a database means subclassing ``DatabaseDialect`` and registering it
in ``DIALECTS``; nothing else in the engine embeds per-database SQL.
"""

import logging
from abc import ABC, abstractmethod

from sqlalchemy import Boolean, Integer, bindparam, text
from sqlalchemy.sql.elements import TextClause

from .base import SCRIPT_TYPE, VERSION_TABLE

logger = logging.getLogger(__name__)


def _success_param(value: bool = True):
    # Typed so the driver gets 1/0 or TRUE/FALSE as the product expects
    return bindparam("success", value, type_=Boolean())


class DatabaseDialect(ABC):
    """History-table SQL for one database product."""

    name: str = "base"

    def __init__(self, table: str = VERSION_TABLE):
        self.table = table

    @abstractmethod
    def create_version_table_sql(self) -> TextClause:
        """DDL creating the history table."""

    @abstractmethod
    def latest_version_sql(self) -> TextClause:
        """Query returning at most one row: the current version."""

    @abstractmethod
    def previous_version_sql(self, current_version: str) -> TextClause:
        """Query returning at most one row: the version ranked just below."""

    def range_to_rollback_sql(self, target: str, current: str) -> TextClause:
        """Query returning versions in ``(target, current]``, highest first."""
        return text(
            f"SELECT version FROM {self.table} "
            "WHERE version_rank > :target AND version_rank <= :current "
            "AND success = :success "
            "ORDER BY version_rank DESC"
        ).bindparams(
            bindparam("target", int(target), type_=Integer()),
            bindparam("current", int(current), type_=Integer()),
            _success_param(),
        )

    def delete_above_sql(self, target: str) -> TextClause:
        """Statement deleting every history row ranked above ``target``."""
        return text(f"DELETE FROM {self.table} WHERE version_rank > :target").bindparams(
            bindparam("target", int(target), type_=Integer())
        )

    def delete_version_sql(self, version: str, success: bool) -> TextClause:
        """Statement deleting the row of one version with the given outcome."""
        return text(
            f"DELETE FROM {self.table} WHERE version = :version AND success = :success"
        ).bindparams(bindparam("version", version), _success_param(success))

    def insert_version_sql(
        self,
        version: str,
        description: str,
        script: str,
        checksum: str,
        installed_by: str,
        execution_time: int,
        success: bool,
        script_type: str = SCRIPT_TYPE,
    ) -> TextClause:
        """Statement inserting one history row.

        ``installed_on`` is left to the column default.
        """
        return text(
            f"INSERT INTO {self.table} ("
            "version_rank, installed_rank, version, description, type, script, "
            "checksum, installed_by, execution_time, success"
            ") VALUES ("
            ":version_rank, :installed_rank, :version, :description, :type, :script, "
            ":checksum, :installed_by, :execution_time, :success"
            ")"
        ).bindparams(
            bindparam("version_rank", int(version), type_=Integer()),
            bindparam("installed_rank", int(version), type_=Integer()),
            bindparam("version", version),
            bindparam("description", description),
            bindparam("type", script_type),
            bindparam("script", script),
            bindparam("checksum", checksum),
            bindparam("installed_by", installed_by),
            bindparam("execution_time", execution_time, type_=Integer()),
            _success_param(success),
        )

    def history_sql(self) -> TextClause:
        """Query returning every history row, lowest rank first."""
        return text(f"SELECT * FROM {self.table} ORDER BY version_rank ASC")

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} table={self.table}>"


class MySQLDialect(DatabaseDialect):
    """MySQL / MariaDB. Also the baseline for products without a dialect."""

    name = "mysql"

    def create_version_table_sql(self) -> TextClause:
        return text(
            f"CREATE TABLE IF NOT EXISTS {self.table} ("
            "version_rank INT NOT NULL, "
            "installed_rank INT NOT NULL, "
            "version VARCHAR(50) NOT NULL, "
            "description VARCHAR(200) NOT NULL, "
            "type VARCHAR(20) NOT NULL, "
            "script VARCHAR(1000) NOT NULL, "
            "checksum VARCHAR(64), "
            "installed_by VARCHAR(100) NOT NULL, "
            "installed_on TIMESTAMP DEFAULT CURRENT_TIMESTAMP, "
            "execution_time INT NOT NULL, "
            "success BOOLEAN NOT NULL, "
            "PRIMARY KEY (version)"
            ")"
        )

    def latest_version_sql(self) -> TextClause:
        return text(
            f"SELECT version FROM {self.table} "
            "WHERE success = :success "
            "ORDER BY version_rank DESC LIMIT 1"
        ).bindparams(_success_param())

    def previous_version_sql(self, current_version: str) -> TextClause:
        return text(
            f"SELECT version FROM {self.table} "
            "WHERE version_rank < :current AND success = :success "
            "ORDER BY version_rank DESC LIMIT 1"
        ).bindparams(
            bindparam("current", int(current_version), type_=Integer()),
            _success_param(),
        )


class PostgreSQLDialect(MySQLDialect):
    """PostgreSQL: native BOOLEAN/INTEGER types and a named primary key."""

    name = "postgresql"

    def create_version_table_sql(self) -> TextClause:
        return text(
            f"CREATE TABLE IF NOT EXISTS {self.table} ("
            "version_rank INTEGER NOT NULL, "
            "installed_rank INTEGER NOT NULL, "
            "version VARCHAR(50) NOT NULL, "
            "description VARCHAR(200) NOT NULL, "
            "type VARCHAR(20) NOT NULL, "
            "script VARCHAR(1000) NOT NULL, "
            "checksum VARCHAR(64), "
            "installed_by VARCHAR(100) NOT NULL, "
            "installed_on TIMESTAMP DEFAULT CURRENT_TIMESTAMP, "
            "execution_time INTEGER NOT NULL, "
            "success BOOLEAN NOT NULL, "
            f"CONSTRAINT pk_{self.table} PRIMARY KEY (version)"
            ")"
        )


class OracleDialect(DatabaseDialect):
    """Oracle: NUMBER/VARCHAR2 types and ROWNUM instead of LIMIT."""

    name = "oracle"

    def create_version_table_sql(self) -> TextClause:
        # No IF NOT EXISTS before 23c; VersionStore.init() checks first
        return text(
            f"CREATE TABLE {self.table} ("
            "version_rank NUMBER NOT NULL, "
            "installed_rank NUMBER NOT NULL, "
            "version VARCHAR2(50) NOT NULL, "
            "description VARCHAR2(200) NOT NULL, "
            "type VARCHAR2(20) NOT NULL, "
            "script VARCHAR2(1000) NOT NULL, "
            "checksum VARCHAR2(64), "
            "installed_by VARCHAR2(100) NOT NULL, "
            "installed_on TIMESTAMP DEFAULT SYSTIMESTAMP, "
            "execution_time NUMBER NOT NULL, "
            "success NUMBER(1) NOT NULL, "
            f"CONSTRAINT pk_{self.table} PRIMARY KEY (version)"
            ")"
        )

    def latest_version_sql(self) -> TextClause:
        return text(
            "SELECT version FROM ("
            f"SELECT version FROM {self.table} WHERE success = :success "
            "ORDER BY version_rank DESC"
            ") WHERE ROWNUM = 1"
        ).bindparams(_success_param())

    def previous_version_sql(self, current_version: str) -> TextClause:
        return text(
            "SELECT version FROM ("
            f"SELECT version FROM {self.table} "
            "WHERE version_rank < :current AND success = :success "
            "ORDER BY version_rank DESC"
            ") WHERE ROWNUM = 1"
        ).bindparams(
            bindparam("current", int(current_version), type_=Integer()),
            _success_param(),
        )


# Checked in order; first substring match wins
DIALECTS: list[tuple[str, type[DatabaseDialect]]] = [
    ("oracle", OracleDialect),
    ("postgres", PostgreSQLDialect),
    ("mysql", MySQLDialect),
    ("mariadb", MySQLDialect),
]

BASELINE_DIALECT: type[DatabaseDialect] = MySQLDialect


def select_dialect(product_name: str, table: str = VERSION_TABLE) -> DatabaseDialect:
    """Pick the dialect for a database product.

    Matching is a case-insensitive substring test on the product name, so
    ``"Oracle"``, ``"oracle"`` and ``"Oracle Database 19c"`` all select
    ``OracleDialect``. Unknown products get the baseline dialect.

    Args:
        product_name: Product name reported by the connection
        table: History table name

    Returns:
        Dialect instance
    """
    product = (product_name or "").lower()

    for needle, dialect_class in DIALECTS:
        if needle in product:
            return dialect_class(table)

    logger.warning(
        f"No dialect for database product '{product_name}', "
        f"using {BASELINE_DIALECT.__name__}"
    )
    return BASELINE_DIALECT(table)
