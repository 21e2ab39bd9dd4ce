"""Applies forward scripts and records them in the history table."""

import getpass
import logging
import time

from ..connection import QueryError, TargetConnection
from .base import MigrationScript, SQLExecutionError
from .dialects import DatabaseDialect

logger = logging.getLogger(__name__)


def current_principal(conn: TargetConnection) -> str:
    """Name recorded as ``installed_by``.

    The target's configured username, else the OS user, else ``"unknown"``.
    """
    if conn.target.username:
        return conn.target.username
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


class MigrationExecutor:
    """Executes one forward script per call, transactionally."""

    def __init__(self, conn: TargetConnection, dialect: DatabaseDialect):
        self.conn = conn
        self.dialect = dialect

    async def apply(self, script: MigrationScript) -> int:
        """Apply a forward script.

        The script and its success row commit together. If the script fails
        its transaction is rolled back and a failure row is written in a
        separate transaction, so the audit survives the rollback.

        Args:
            script: Forward script to apply

        Returns:
            Execution time in milliseconds

        Raises:
            SQLExecutionError: If the script (or its history insert) fails
        """
        installed_by = current_principal(self.conn)
        start_time = time.time()

        try:
            async with self.conn.transaction():
                await self.conn.execute_script(script.sql)
                execution_time_ms = int((time.time() - start_time) * 1000)

                # A retry replaces the audit row of an earlier failed attempt
                await self.conn.execute(self.dialect.delete_version_sql(script.version, False))
                await self.conn.execute(
                    self.dialect.insert_version_sql(
                        version=script.version,
                        description=script.description,
                        script=script.filename,
                        checksum=script.checksum,
                        installed_by=installed_by,
                        execution_time=execution_time_ms,
                        success=True,
                    )
                )
        except QueryError as e:
            logger.error(f"Failed to apply migration {script.full_name}: {e}")
            await self._record_failure(script, installed_by)
            raise SQLExecutionError(
                f"Migration {script.filename} failed: {e}", version=script.version
            ) from e

        logger.info(f"Applied {script.full_name} in {execution_time_ms}ms")
        return execution_time_ms

    async def _record_failure(self, script: MigrationScript, installed_by: str) -> None:
        """Best-effort failure row; errors here are logged, not raised."""
        try:
            async with self.conn.independent_transaction() as audit:
                await audit.execute(self.dialect.delete_version_sql(script.version, False))
                await audit.execute(
                    self.dialect.insert_version_sql(
                        version=script.version,
                        description=script.description,
                        script=script.filename,
                        checksum=script.checksum,
                        installed_by=installed_by,
                        execution_time=0,
                        success=False,
                    )
                )
        except Exception as e:
            logger.warning(f"Could not record failure of {script.full_name}: {e}")
