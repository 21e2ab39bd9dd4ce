"""Target database connection management.

Provides SQLAlchemy async engines per target, product detection for
dialect selection, and transactional scopes:

- open_connection(): one engine + one connection for one target
- TargetConnection.transaction(): the operation's transaction
- TargetConnection.independent_transaction(): a second, short-lived
  connection whose commit does not depend on the main transaction

Each target gets its own engine with ``NullPool`` so nothing is shared
between targets or across event loops.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Optional, Union

from sqlalchemy import event, inspect, text
from sqlalchemy.engine import Result, make_url
from sqlalchemy.exc import ArgumentError, NoSuchModuleError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool
from sqlalchemy.sql.elements import TextClause

from .config import ConfigurationError, ConnectionTarget

logger = logging.getLogger(__name__)

Statement = Union[str, TextClause]


class DatabaseConnectionError(Exception):
    """Database connection error."""

    pass


class QueryError(Exception):
    """Database query error."""

    pass


@dataclass
class ConnectionSettings:
    """Engine options shared by every target of one run."""

    connect_timeout: float = 10.0
    echo_sql: bool = False


def build_url(target: ConnectionTarget):
    """Build the SQLAlchemy URL for a target.

    Username and password from the target override those in the URL.
    SQLite URLs take no credentials and are returned unchanged.

    Raises:
        ConfigurationError: If the URL cannot be parsed
    """
    try:
        url = make_url(target.url)
    except ArgumentError as e:
        raise ConfigurationError(f"Invalid url for connection '{target.name}': {e}") from e

    if url.get_backend_name() == "sqlite":
        return url
    if target.username:
        url = url.set(username=target.username)
    if target.password:
        url = url.set(password=target.password)
    return url


def create_engine_for(
    target: ConnectionTarget,
    settings: Optional[ConnectionSettings] = None,
) -> AsyncEngine:
    """Create the async engine for one target.

    Args:
        target: Target to connect to
        settings: Engine options

    Returns:
        AsyncEngine (not yet connected)

    Raises:
        ConfigurationError: If the URL or driver is unusable
    """
    settings = settings or ConnectionSettings()
    url = build_url(target)

    try:
        engine = create_async_engine(url, echo=settings.echo_sql, poolclass=NullPool)
    except (ArgumentError, NoSuchModuleError) as e:
        raise ConfigurationError(f"Cannot create engine for '{target.name}': {e}") from e

    if engine.dialect.name == "sqlite":
        _enable_sqlite_transactions(engine)

    return engine


def _enable_sqlite_transactions(engine: AsyncEngine) -> None:
    """Make pysqlite/aiosqlite honour BEGIN for DDL as well as DML.

    The driver otherwise only opens a transaction before DML, so a
    ``CREATE TABLE`` inside a rollback batch would commit on its own.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_conn: Any, connection_record: Any) -> None:
        dbapi_conn.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")


class TargetConnection:
    """An open connection to one target database.

    Wraps a SQLAlchemy ``AsyncConnection``. Reads issued outside an
    explicit transaction run in their own short transaction.
    """

    def __init__(self, target: ConnectionTarget, engine: AsyncEngine, conn: AsyncConnection):
        """Initialize connection.

        Args:
            target: Target configuration
            engine: Engine the connection came from
            conn: Open async connection
        """
        self.target = target
        self.engine = engine
        self.conn = conn

    @property
    def name(self) -> str:
        return self.target.name

    @property
    def product_name(self) -> str:
        """Database product reported by the driver (``mysql``, ``oracle``, ...)."""
        dialect = self.conn.dialect
        name = dialect.name
        if getattr(dialect, "is_mariadb", False):
            name = f"{name} mariadb"
        return name

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator["TargetConnection", None]:
        """Run a block in one transaction on this connection.

        Commits on normal exit, rolls back if the block raises.
        """
        async with self.conn.begin():
            yield self

    @asynccontextmanager
    async def independent_transaction(self) -> AsyncGenerator["TargetConnection", None]:
        """Run a block in a separate connection and transaction.

        Used for writes that must survive a rollback of the main
        transaction, such as failure audit rows.
        """
        async with self.engine.connect() as other:
            async with other.begin():
                yield TargetConnection(self.target, self.engine, other)

    async def execute(
        self,
        statement: Statement,
        params: Optional[dict[str, Any]] = None,
    ) -> Result:
        """Execute a statement.

        Args:
            statement: SQL text or prepared TextClause
            params: Optional parameters

        Returns:
            SQLAlchemy result (buffered)

        Raises:
            QueryError: If the database rejects the statement
        """
        if isinstance(statement, str):
            statement = text(statement)

        try:
            if self.conn.in_transaction():
                return await self.conn.execute(statement, params or {})
            async with self.conn.begin():
                return await self.conn.execute(statement, params or {})
        except SQLAlchemyError as e:
            raise QueryError(f"Query failed: {e}") from e

    async def execute_script(self, sql: str) -> None:
        """Execute raw script text as one statement, without bind parsing.

        Colons in the script (casts, labels) are passed through untouched.
        """
        try:
            await self.conn.exec_driver_sql(sql)
        except SQLAlchemyError as e:
            raise QueryError(f"Query failed: {e}") from e

    async def fetch_all(
        self,
        statement: Statement,
        params: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        """Execute a query and return rows as dicts."""
        result = await self.execute(statement, params)
        return [dict(row) for row in result.mappings().all()]

    async def fetch_scalar(
        self,
        statement: Statement,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        """Execute a query and return the first column of the first row."""
        result = await self.execute(statement, params)
        return result.scalar()

    async def has_table(self, table: str) -> bool:
        """Check if a table exists."""
        try:
            if self.conn.in_transaction():
                return await self.conn.run_sync(lambda c: inspect(c).has_table(table))
            async with self.conn.begin():
                return await self.conn.run_sync(lambda c: inspect(c).has_table(table))
        except SQLAlchemyError as e:
            raise QueryError(f"Table lookup failed: {e}") from e

    def __repr__(self) -> str:
        return f"<TargetConnection {self.target.name} ({self.product_name})>"


@asynccontextmanager
async def open_connection(
    target: ConnectionTarget,
    settings: Optional[ConnectionSettings] = None,
) -> AsyncGenerator[TargetConnection, None]:
    """Context manager for a connection to one target.

    Usage:
        async with open_connection(target) as conn:
            version = await conn.fetch_scalar("SELECT 1")

    Args:
        target: Target to connect to
        settings: Engine options

    Yields:
        TargetConnection

    Raises:
        ConfigurationError: If the target cannot be turned into an engine
        DatabaseConnectionError: If connecting fails or times out
    """
    settings = settings or ConnectionSettings()
    engine = create_engine_for(target, settings)

    try:
        try:
            conn = await asyncio.wait_for(engine.connect(), timeout=settings.connect_timeout)
        except asyncio.TimeoutError as e:
            raise DatabaseConnectionError(
                f"Connection to '{target.name}' timed out after {settings.connect_timeout}s"
            ) from e
        except (SQLAlchemyError, OSError) as e:
            raise DatabaseConnectionError(f"Failed to connect to '{target.name}': {e}") from e

        logger.debug(f"Connected to {target.name}: {target.safe_url()}")
        try:
            yield TargetConnection(target, engine, conn)
        finally:
            await conn.close()
    finally:
        await engine.dispose()
