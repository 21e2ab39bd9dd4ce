"""Base types for the migration system.

Defines the core abstractions:
- MigrationError and its subclasses: the error taxonomy
- MigrationScript: a forward or rollback SQL file
- SchemaVersion: one row of the history table
- TargetOutcome / FleetReport: textual results of (fleet) operations
"""

import hashlib
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

VERSION_TABLE = "flydb_schema_history"
NO_VERSION = "0"
SCRIPT_TYPE = "SQL"

_DIGITS = re.compile(r"[0-9]+")


class MigrationError(Exception):
    """Base exception for migration errors."""

    pass


class ScriptDirectoryError(MigrationError, OSError):
    """Script directory is missing or unreadable."""

    pass


class ScriptReadError(MigrationError, OSError):
    """A matched script file could not be read."""

    pass


class DuplicateScriptError(MigrationError):
    """Two scripts of the same kind claim the same version."""

    pass


class ScriptNotFoundError(MigrationError):
    """A required rollback script does not exist."""

    pass


class VersionNotFoundError(MigrationError):
    """No installed version satisfies the lookup."""

    pass


class SQLExecutionError(MigrationError):
    """A migration statement failed."""

    def __init__(self, message: str, version: Optional[str] = None):
        super().__init__(message)
        self.version = version


class RollbackError(MigrationError):
    """A statement failed inside the rollback transaction."""

    def __init__(self, message: str, version: Optional[str] = None):
        super().__init__(message)
        self.version = version


class InvalidStateError(MigrationError):
    """Operation is not possible in the database's current state."""

    pass


class InvalidArgumentError(MigrationError, ValueError):
    """Operation argument is not acceptable."""

    pass


class ScriptKind(str, Enum):
    """Kind of a migration script, taken from its filename prefix."""

    FORWARD = "V"
    ROLLBACK = "R"


def parse_version(value: object) -> int:
    """Parse a version into its numeric rank.

    Args:
        value: Version as string or int

    Returns:
        Non-negative integer rank

    Raises:
        InvalidArgumentError: If the value is not a non-negative integer
    """
    message = f"Version must be a non-negative integer, got {value!r}"
    text = str(value).strip()
    if not _DIGITS.fullmatch(text):
        raise InvalidArgumentError(message)
    return int(text)


@dataclass(frozen=True)
class MigrationScript:
    """A migration or rollback script.

    Attributes:
        version: Version string as written in the filename (``"2"``)
        filename: File name, e.g. ``V2__add_col.sql``
        sql: Raw SQL text
        kind: Forward or rollback
    """

    version: str
    filename: str
    sql: str
    kind: ScriptKind = ScriptKind.FORWARD

    @property
    def rank(self) -> int:
        """Numeric ordering key."""
        return int(self.version)

    @property
    def description(self) -> str:
        """Text between the first ``__`` and the extension."""
        start = self.filename.find("__") + 2
        end = self.filename.rfind(".")
        if end < start:
            end = len(self.filename)
        return self.filename[start:end]

    @property
    def checksum(self) -> str:
        """Content hash persisted for drift detection.

        Returns:
            First 16 hex digits of the SHA-256 of the script text
        """
        return hashlib.sha256(self.sql.encode("utf-8")).hexdigest()[:16]

    @property
    def full_name(self) -> str:
        return f"{self.kind.value}{self.version}__{self.description}"

    def __repr__(self) -> str:
        return f"<MigrationScript {self.filename}>"


@dataclass
class SchemaVersion:
    """One row of the history table."""

    version: str
    version_rank: int
    installed_rank: int
    description: str
    script: str
    checksum: Optional[str]
    installed_by: str
    execution_time: int
    success: bool
    type: str = SCRIPT_TYPE
    installed_on: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict) -> "SchemaVersion":
        """Build from a result row mapping (column names are lowercased)."""
        data = {str(k).lower(): v for k, v in row.items()}
        installed_on = data.get("installed_on")
        if isinstance(installed_on, str):
            installed_on = datetime.fromisoformat(installed_on)
        return cls(
            version=str(data["version"]),
            version_rank=int(data["version_rank"]),
            installed_rank=int(data["installed_rank"]),
            description=data["description"],
            script=data["script"],
            checksum=data.get("checksum"),
            installed_by=data["installed_by"],
            execution_time=int(data["execution_time"]),
            success=bool(data["success"]),
            type=data.get("type") or SCRIPT_TYPE,
            installed_on=installed_on,
        )


class Operation(str, Enum):
    """Fleet-level operations."""

    INIT = "init"
    VERSION = "version"
    MIGRATE = "migrate"
    ROLLBACK = "rollback"


@dataclass
class TargetOutcome:
    """Result of one operation against one target."""

    target: str
    operation: Operation
    success: bool
    message: str
    version: Optional[str] = None
    timed_out: bool = False

    def render(self) -> str:
        """One line of report text."""
        if self.timed_out:
            state = "TIMEOUT"
        else:
            state = "OK" if self.success else "FAILED"
        return f"[{self.target}] {self.operation.value} {state}: {self.message}"


@dataclass
class FleetReport:
    """Aggregated outcomes of one fleet operation.

    Outcomes are unordered; ``render()`` sorts by target name only to make
    the text stable.
    """

    operation: Operation
    outcomes: list[TargetOutcome] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return bool(self.outcomes) and all(o.success for o in self.outcomes)

    @property
    def succeeded(self) -> list[TargetOutcome]:
        return [o for o in self.outcomes if o.success]

    @property
    def failed(self) -> list[TargetOutcome]:
        return [o for o in self.outcomes if not o.success and not o.timed_out]

    @property
    def timed_out(self) -> list[TargetOutcome]:
        return [o for o in self.outcomes if o.timed_out]

    def get(self, target: str) -> Optional[TargetOutcome]:
        """Outcome for a target, if it took part."""
        for outcome in self.outcomes:
            if outcome.target == target:
                return outcome
        return None

    def render(self) -> str:
        return "\n".join(o.render() for o in sorted(self.outcomes, key=lambda o: o.target))
