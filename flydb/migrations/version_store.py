"""History table access for one target database.

The version store answers "what version is this database at" and owns the
atomic rollback: every rollback script of a batch plus the history purge run
in one transaction, so a failed rollback leaves schema and history as they
were.
"""

import logging
import time
from typing import Optional

from ..connection import QueryError, TargetConnection
from .base import (
    NO_VERSION,
    InvalidArgumentError,
    InvalidStateError,
    MigrationScript,
    RollbackError,
    SchemaVersion,
    ScriptNotFoundError,
    VersionNotFoundError,
    parse_version,
)
from .dialects import DatabaseDialect, select_dialect
from .repository import ScriptRepository

logger = logging.getLogger(__name__)


class VersionStore:
    """Reads and maintains the history table of one target."""

    def __init__(
        self,
        conn: TargetConnection,
        repository: ScriptRepository,
        dialect: Optional[DatabaseDialect] = None,
    ):
        """Initialize the store.

        Args:
            conn: Open connection to the target
            repository: Where rollback scripts are looked up
            dialect: History SQL (detected from the connection if omitted)
        """
        self.conn = conn
        self.repository = repository
        self.dialect = dialect or select_dialect(conn.product_name)

    async def exists(self) -> bool:
        """Check whether the history table has been created."""
        return await self.conn.has_table(self.dialect.table)

    async def init(self) -> bool:
        """Create the history table if it is absent.

        Safe to call repeatedly.

        Returns:
            True if the table was created by this call
        """
        if await self.exists():
            logger.debug(f"History table {self.dialect.table} already exists on {self.conn.name}")
            return False

        await self.conn.execute(self.dialect.create_version_table_sql())
        logger.info(f"Created history table {self.dialect.table} on {self.conn.name}")
        return True

    async def current_version(self) -> str:
        """Highest successfully installed version.

        Returns:
            Version string, or ``"0"`` if nothing is installed or the
            history table does not exist yet
        """
        if not await self.exists():
            return NO_VERSION

        version = await self.conn.fetch_scalar(self.dialect.latest_version_sql())
        return str(version) if version is not None else NO_VERSION

    async def previous_version(self, current: str) -> str:
        """Successful version ranked just below ``current``.

        Raises:
            VersionNotFoundError: If no lower version is installed
        """
        version = await self.conn.fetch_scalar(self.dialect.previous_version_sql(current))
        if version is None:
            raise VersionNotFoundError(f"No version installed below {current}")
        return str(version)

    async def rollback_targets(self, target: str, current: str) -> list[str]:
        """Successful versions in ``(target, current]``, highest first."""
        rows = await self.conn.fetch_all(self.dialect.range_to_rollback_sql(target, current))
        return [str(row["version"]) for row in rows]

    async def history(self) -> list[SchemaVersion]:
        """All history rows, lowest rank first (empty if no table)."""
        if not await self.exists():
            return []
        rows = await self.conn.fetch_all(self.dialect.history_sql())
        return [SchemaVersion.from_row(row) for row in rows]

    def _load_rollback_scripts(self, versions: list[str]) -> list[MigrationScript]:
        scripts = []
        for version in versions:
            script = self.repository.load_rollback(version)
            if script is None:
                raise ScriptNotFoundError(f"No rollback script for version {version}")
            scripts.append(script)
        return scripts

    async def rollback(self, target_version: Optional[str] = None) -> list[str]:
        """Roll back to a target version.

        All rollback scripts and the history purge run in one transaction:
        either every script is undone and the rows above the target are
        deleted, or nothing changes.

        Args:
            target_version: Version to end at (defaults to the previous
                installed version)

        Returns:
            Versions rolled back, highest first

        Raises:
            InvalidStateError: If nothing is installed
            InvalidArgumentError: If the target is not below the current version
            VersionNotFoundError: If no target is given and there is no
                previous version
            ScriptNotFoundError: If a rollback script is missing
            RollbackError: If a statement fails inside the transaction
        """
        current = await self.current_version()
        if current == NO_VERSION:
            raise InvalidStateError(
                f"No version installed on {self.conn.name}, nothing to roll back"
            )

        if target_version is None:
            target = await self.previous_version(current)
        else:
            target = str(parse_version(target_version))
            if int(target) >= int(current):
                raise InvalidArgumentError(
                    f"Rollback target {target} must be below current version {current}"
                )

        versions = await self.rollback_targets(target, current)
        scripts = self._load_rollback_scripts(versions)

        logger.info(
            f"Rolling back {self.conn.name} from {current} to {target} "
            f"({len(scripts)} script(s))"
        )

        async with self.conn.transaction():
            for script in scripts:
                start_time = time.time()
                try:
                    await self.conn.execute_script(script.sql)
                except QueryError as e:
                    raise RollbackError(
                        f"Rollback script {script.filename} failed: {e}",
                        version=script.version,
                    ) from e
                execution_time_ms = int((time.time() - start_time) * 1000)
                logger.info(f"Rolled back {script.full_name} in {execution_time_ms}ms")

            try:
                await self.conn.execute(self.dialect.delete_above_sql(target))
            except QueryError as e:
                raise RollbackError(f"History purge above {target} failed: {e}") from e

        return versions

    def __repr__(self) -> str:
        return f"<VersionStore {self.conn.name} {self.dialect!r}>"
