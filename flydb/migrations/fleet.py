"""Fleet orchestration: one operation across many target databases.

Targets are independent. Each runs its own connection and transaction, and
one target's failure becomes that target's outcome instead of aborting the
others. Targets run concurrently only when the global switch is on and the
target opts in; everything else runs sequentially.

Usage:
    config = load_config()
    fleet = FleetOrchestrator(config)

    report = await fleet.migrate()
    print(report.render())

    report = await fleet.rollback(target_version="3", target="reporting")
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Union

from ..config import ConnectionTarget, FleetConfig
from .base import FleetReport, Operation, SchemaVersion, TargetOutcome
from .runner import MigrationRunner

logger = logging.getLogger(__name__)

RunnerFactory = Callable[[ConnectionTarget, FleetConfig], MigrationRunner]
Unit = Callable[[MigrationRunner], Awaitable[TargetOutcome]]


class FleetOrchestrator:
    """Runs init, version, migrate and rollback over configured targets."""

    def __init__(
        self,
        config: FleetConfig,
        runner_factory: Optional[RunnerFactory] = None,
    ):
        """Initialize the orchestrator.

        Args:
            config: Fleet configuration (read-only, shared by all units)
            runner_factory: Builds the per-target runner (MigrationRunner
                by default)
        """
        self.config = config
        self.runner_factory = runner_factory or MigrationRunner
        # Runs still in progress after a timeout; never cancelled here
        self.unfinished: set[asyncio.Task] = set()

    def runner(self, target: Optional[str] = None) -> MigrationRunner:
        """Runner for one named target (the active connection if omitted)."""
        if target is None:
            resolved = self.config.active_target()
        else:
            resolved = self.config.resolve(target)
        return self.runner_factory(resolved, self.config)

    def _select(self, target: Optional[str]) -> list[str]:
        if target is None:
            return self.config.target_names
        return [self.config.resolve(target).name]

    # Operations

    async def initialize(self, target: Optional[str] = None) -> FleetReport:
        """Create the history table on every selected target."""

        async def unit(runner: MigrationRunner) -> TargetOutcome:
            created = await runner.initialize()
            message = "history table created" if created else "history table already present"
            return TargetOutcome(runner.target.name, Operation.INIT, True, message)

        return await self._run(Operation.INIT, self._select(target), unit)

    async def get_version(self, target: Optional[str] = None) -> str:
        """Current version of one target (the active connection if omitted)."""
        return await self.runner(target).get_version()

    async def versions(self, target: Optional[str] = None) -> FleetReport:
        """Current version of every selected target."""

        async def unit(runner: MigrationRunner) -> TargetOutcome:
            version = await runner.get_version()
            return TargetOutcome(
                runner.target.name,
                Operation.VERSION,
                True,
                f"current version {version}",
                version=version,
            )

        return await self._run(Operation.VERSION, self._select(target), unit)

    async def migrate(
        self,
        target_version: Optional[Union[str, int]] = None,
        target: Optional[str] = None,
    ) -> FleetReport:
        """Apply pending forward scripts on every selected target.

        Args:
            target_version: Highest version to apply (all if omitted)
            target: Single target name (all targets if omitted)

        Returns:
            Report with one outcome per target

        Raises:
            ConfigurationError: If a named target is not configured
        """

        async def unit(runner: MigrationRunner) -> TargetOutcome:
            result = await runner.migrate(target_version)
            applied = len(result.applied)
            if result.success:
                if applied:
                    message = f"migrated to version {result.version} ({applied} script(s) applied)"
                else:
                    message = f"already at version {result.version}"
            else:
                message = (
                    f"failed at version {result.failed} after {applied} script(s), "
                    f"now at version {result.version}: {result.error}"
                )
            return TargetOutcome(
                runner.target.name, Operation.MIGRATE, result.success, message, result.version
            )

        return await self._run(Operation.MIGRATE, self._select(target), unit)

    async def rollback(
        self,
        target_version: Optional[Union[str, int]] = None,
        target: Optional[str] = None,
    ) -> FleetReport:
        """Roll every selected target back to a version.

        Each target is checked on its own: a target already at or below
        ``target_version`` fails with an invalid argument outcome while the
        others proceed.

        Args:
            target_version: Version to end at (each target's previous
                version if omitted)
            target: Single target name (all targets if omitted)

        Returns:
            Report with one outcome per target

        Raises:
            ConfigurationError: If a named target is not configured
        """

        async def unit(runner: MigrationRunner) -> TargetOutcome:
            result = await runner.rollback(target_version)
            undone = ", ".join(result.applied) or "none"
            return TargetOutcome(
                runner.target.name,
                Operation.ROLLBACK,
                True,
                f"rolled back to version {result.version} (undid: {undone})",
                result.version,
            )

        return await self._run(Operation.ROLLBACK, self._select(target), unit)

    async def status(self, target: Optional[str] = None) -> list[SchemaVersion]:
        """History of one target (the active connection if omitted)."""
        return await self.runner(target).status()

    # Scheduling

    def _concurrent_names(self, names: list[str]) -> list[str]:
        if len(names) < 2:
            return []
        eligible = [n for n in names if self.config.is_concurrent_for(n)]
        return eligible if len(eligible) > 1 else []

    async def _run(self, operation: Operation, names: list[str], unit: Unit) -> FleetReport:
        """Run a unit per target and aggregate the outcomes.

        The concurrent batch runs first, then the sequential targets. The
        whole operation is bounded by ``config.timeout``: once it expires
        no further target is started, and every target without an outcome
        is reported as timed out.
        """
        report = FleetReport(operation)
        concurrent = self._concurrent_names(names)
        sequential = [n for n in names if n not in concurrent]

        logger.info(
            f"Starting {operation.value} on {len(names)} target(s) "
            f"({len(concurrent)} concurrent, {len(sequential)} sequential)"
        )

        started: set[str] = set()
        finished: dict[str, TargetOutcome] = {}
        expired = False

        async def guarded(name: str) -> None:
            if expired:
                return
            started.add(name)
            finished[name] = await self._run_one(operation, name, unit)

        async def run_all() -> None:
            if concurrent:
                semaphore = asyncio.Semaphore(min(len(concurrent), self.config.max_workers))

                async def bounded(name: str) -> None:
                    async with semaphore:
                        await guarded(name)

                await asyncio.gather(*(bounded(name) for name in concurrent))
            for name in sequential:
                await guarded(name)

        task = asyncio.create_task(run_all())
        done, _ = await asyncio.wait({task}, timeout=self.config.timeout)

        if not done:
            expired = True
            self.unfinished.add(task)
            task.add_done_callback(self.unfinished.discard)

        for name in concurrent + sequential:
            if name in finished:
                report.outcomes.append(finished[name])
            else:
                report.outcomes.append(self._timed_out(operation, name, name in started))

        logger.info(
            f"Finished {operation.value}: {len(report.succeeded)} ok, "
            f"{len(report.failed)} failed, {len(report.timed_out)} timed out"
        )
        return report

    def _timed_out(self, operation: Operation, name: str, started: bool) -> TargetOutcome:
        if started:
            message = f"timed out after {self.config.timeout}s, outcome unknown"
        else:
            message = f"not started before the {self.config.timeout}s timeout"
        logger.error(f"[{name}] {operation.value} {message}")
        return TargetOutcome(name, operation, False, message, timed_out=True)

    async def _run_one(self, operation: Operation, name: str, unit: Unit) -> TargetOutcome:
        """Run one unit, converting any error into a failed outcome."""
        logger.info(f"[{name}] {operation.value} started")
        try:
            runner = self.runner_factory(self.config.resolve(name), self.config)
            outcome = await unit(runner)
        except Exception as e:
            logger.error(f"[{name}] {operation.value} failed: {e}")
            return TargetOutcome(name, operation, False, f"{type(e).__name__}: {e}")

        logger.info(f"[{name}] {operation.value} finished: {outcome.message}")
        return outcome
