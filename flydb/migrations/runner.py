"""Migration runner for one target database.

Provides:
- History table initialization
- Forward migration up to a version (stops at the first failure)
- Atomic rollback to a version
- Version and history reporting
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncGenerator, Optional, Union

from ..config import ConnectionTarget, FleetConfig
from ..connection import ConnectionSettings, TargetConnection, open_connection
from .base import (
    MigrationScript,
    SchemaVersion,
    SQLExecutionError,
    parse_version,
)
from .executor import MigrationExecutor
from .repository import ScriptRepository
from .version_store import VersionStore

logger = logging.getLogger(__name__)


@dataclass
class MigrationResult:
    """Result of a migrate or rollback run on one target."""

    success: bool
    version: str
    applied: list[str] = field(default_factory=list)
    failed: Optional[str] = None
    error: Optional[str] = None


class MigrationRunner:
    """Runs migration operations against one target.

    Every operation opens its own connection and closes it before
    returning; a runner holds no connection between calls.
    """

    def __init__(
        self,
        target: ConnectionTarget,
        config: FleetConfig,
        repository: Optional[ScriptRepository] = None,
    ):
        """Initialize the runner.

        Args:
            target: Database to operate on
            config: Fleet configuration (scripts path, timeouts)
            repository: Optional script repository (built from config if
                not provided)
        """
        self.target = target
        self.config = config
        self.repository = repository or ScriptRepository(
            config.scripts_path, config.script_extension
        )
        self.settings = ConnectionSettings(
            connect_timeout=config.connect_timeout,
            echo_sql=config.echo_sql,
        )

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[tuple[TargetConnection, VersionStore], None]:
        async with open_connection(self.target, self.settings) as conn:
            yield conn, VersionStore(conn, self.repository)

    async def initialize(self) -> bool:
        """Create the history table if absent.

        Returns:
            True if the table was created, False if it already existed
        """
        async with self._session() as (_, store):
            return await store.init()

    async def get_version(self) -> str:
        """Current version (``"0"`` when uninitialized)."""
        async with self._session() as (_, store):
            return await store.current_version()

    async def status(self) -> list[SchemaVersion]:
        """History rows, lowest version first."""
        async with self._session() as (_, store):
            return await store.history()

    async def pending(self) -> list[MigrationScript]:
        """Forward scripts above the current version."""
        scripts = self.repository.discover()
        current = int(await self.get_version())
        return [s for s in scripts if s.rank > current]

    async def migrate(
        self,
        target_version: Optional[Union[str, int]] = None,
    ) -> MigrationResult:
        """Apply pending forward scripts in ascending order.

        The history table is created first if absent. The run stops at the
        first failing script; scripts applied before it stay installed.

        Args:
            target_version: Highest version to apply (all if omitted)

        Returns:
            Migration result with applied versions and the failure, if any

        Raises:
            InvalidArgumentError: If target_version is not a version number
            ScriptDirectoryError: If the script directory is unusable
        """
        limit = parse_version(target_version) if target_version is not None else None
        scripts = self.repository.discover()
        applied: list[str] = []

        async with self._session() as (conn, store):
            await store.init()
            current = await store.current_version()

            pending = [
                s for s in scripts
                if s.rank > int(current) and (limit is None or s.rank <= limit)
            ]
            if not pending:
                logger.info(f"{self.target.name} is up to date at version {current}")
                return MigrationResult(success=True, version=current)

            logger.info(
                f"Migrating {self.target.name} from {current}: {len(pending)} pending script(s)"
            )
            executor = MigrationExecutor(conn, store.dialect)

            for script in pending:
                try:
                    await executor.apply(script)
                except SQLExecutionError as e:
                    return MigrationResult(
                        success=False,
                        version=await store.current_version(),
                        applied=applied,
                        failed=script.version,
                        error=str(e),
                    )
                applied.append(script.version)

            return MigrationResult(
                success=True,
                version=await store.current_version(),
                applied=applied,
            )

    async def rollback(
        self,
        target_version: Optional[Union[str, int]] = None,
    ) -> MigrationResult:
        """Roll back to a version, all or nothing.

        Args:
            target_version: Version to end at (previous version if omitted)

        Returns:
            Migration result listing the versions rolled back

        Raises:
            InvalidStateError: If nothing is installed
            InvalidArgumentError: If the target is not below the current version
            VersionNotFoundError: If there is no previous version
            ScriptNotFoundError: If a rollback script is missing
            RollbackError: If a rollback statement fails
        """
        async with self._session() as (_, store):
            rolled_back = await store.rollback(
                str(target_version) if target_version is not None else None
            )
            version = await store.current_version()

        logger.info(f"Rolled back {self.target.name} to version {version}")
        return MigrationResult(success=True, version=version, applied=rolled_back)

    def __repr__(self) -> str:
        return f"<MigrationRunner {self.target.name}>"
