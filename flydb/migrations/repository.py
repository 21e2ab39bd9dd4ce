"""Script repository for discovering and ordering migration files.

Provides:
- Discovery of forward (``V<n>__<desc>.sql``) and rollback
  (``R<n>__<desc>.sql``) scripts under a directory tree
- Package resources (``package:sub/dir``), including zipped packages
- Next free version lookup for new scripts
"""

import importlib.resources
import logging
import re
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Iterator, Optional, Union

from .base import (
    DuplicateScriptError,
    MigrationScript,
    ScriptDirectoryError,
    ScriptKind,
    ScriptReadError,
)

logger = logging.getLogger(__name__)

_FILENAME_TEMPLATE = r"^(?P<kind>[VR])(?P<version>[0-9]+)__(?P<description>.+){ext}$"


class ScriptRepository:
    """Repository of migration scripts on one path.

    Scans lazily: every ``discover()`` re-reads the tree so scripts added
    between runs are picked up.
    """

    def __init__(self, path: Union[str, Path], extension: str = ".sql"):
        """Initialize repository.

        Args:
            path: Filesystem directory, or ``package:sub/dir`` for a
                directory shipped inside an importable package
            extension: Script file extension, including the dot
        """
        self.path = str(path)
        self.extension = extension
        self._pattern = re.compile(
            _FILENAME_TEMPLATE.format(ext=re.escape(extension))
        )

    def parse_filename(self, name: str) -> Optional[tuple[ScriptKind, str, str]]:
        """Classify a file name.

        Args:
            name: Bare file name

        Returns:
            ``(kind, version, description)`` with the version normalized
            (``"02"`` becomes ``"2"``), or None if the name does not match
        """
        match = self._pattern.match(name)
        if not match:
            return None
        return (
            ScriptKind(match.group("kind")),
            str(int(match.group("version"))),
            match.group("description"),
        )

    def _root(self) -> Traversable:
        """Resolve the configured path to a directory.

        Raises:
            ScriptDirectoryError: If the path is missing or not a directory
        """
        fs_path = Path(self.path)
        if fs_path.exists():
            if not fs_path.is_dir():
                raise ScriptDirectoryError(f"Script path is not a directory: {self.path}")
            return fs_path

        package, sep, sub = self.path.partition(":")
        if sep and package:
            try:
                resource = importlib.resources.files(package)
            except (ImportError, TypeError) as e:
                raise ScriptDirectoryError(
                    f"Script package '{package}' cannot be loaded: {e}"
                ) from e
            for part in sub.strip("/").split("/"):
                if part:
                    resource = resource.joinpath(part)
            if resource.is_dir():
                return resource

        raise ScriptDirectoryError(f"Script directory does not exist: {self.path}")

    def _walk(self, directory: Traversable) -> Iterator[Traversable]:
        try:
            entries = sorted(directory.iterdir(), key=lambda e: e.name)
        except OSError as e:
            raise ScriptDirectoryError(f"Cannot list {directory}: {e}") from e

        for entry in entries:
            if entry.is_dir():
                yield from self._walk(entry)
            else:
                yield entry

    def _read(self, entry: Traversable, kind: ScriptKind, version: str) -> MigrationScript:
        try:
            sql = entry.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ScriptReadError(f"Cannot read script {entry.name}: {e}") from e
        return MigrationScript(version=version, filename=entry.name, sql=sql, kind=kind)

    def _scan(self, kind: ScriptKind) -> Iterator[tuple[Traversable, str]]:
        for entry in self._walk(self._root()):
            if not entry.name.endswith(self.extension):
                continue
            parsed = self.parse_filename(entry.name)
            if parsed is None:
                logger.debug(f"Skipping non-migration file: {entry.name}")
                continue
            if parsed[0] is kind:
                yield entry, parsed[1]

    def discover(self) -> list[MigrationScript]:
        """Discover forward scripts.

        Returns:
            Forward scripts ascending by numeric version

        Raises:
            ScriptDirectoryError: If the root path is unusable
            ScriptReadError: If a matched file cannot be read
            DuplicateScriptError: If two files claim the same version
        """
        scripts: dict[int, MigrationScript] = {}

        for entry, version in self._scan(ScriptKind.FORWARD):
            script = self._read(entry, ScriptKind.FORWARD, version)
            existing = scripts.get(script.rank)
            if existing is not None:
                raise DuplicateScriptError(
                    f"Duplicate migration version {version}: "
                    f"{existing.filename} and {script.filename}"
                )
            scripts[script.rank] = script
            logger.debug(f"Discovered migration: {script.full_name}")

        return [scripts[rank] for rank in sorted(scripts)]

    def load_rollback(self, version: Union[str, int]) -> Optional[MigrationScript]:
        """Load the rollback script for a version.

        Args:
            version: Forward version to undo (compared numerically)

        Returns:
            Rollback script, or None if there is none

        Raises:
            DuplicateScriptError: If several rollback files claim the version
        """
        wanted = int(version)
        found: Optional[MigrationScript] = None

        for entry, script_version in self._scan(ScriptKind.ROLLBACK):
            if int(script_version) != wanted:
                continue
            if found is not None:
                raise DuplicateScriptError(
                    f"Duplicate rollback version {wanted}: {found.filename} and {entry.name}"
                )
            found = self._read(entry, ScriptKind.ROLLBACK, script_version)

        return found

    def next_version(self) -> int:
        """Next free forward version (1 when there are no scripts)."""
        scripts = self.discover()
        return scripts[-1].rank + 1 if scripts else 1

    def __repr__(self) -> str:
        return f"<ScriptRepository {self.path} ({self.extension})>"
