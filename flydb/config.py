"""FlyDB configuration.

Environment-based defaults plus an optional YAML connection file
(``db-connections.yml``) describing the fleet of target databases.

The loaded configuration is immutable and passed explicitly to the
runner and orchestrator; nothing here is process-wide state.

Example ``db-connections.yml``::

    global:
      concurrent_execution: true
      scripts_path: db/migration
      max_workers: 4
      timeout: 120

    development:
      url: mysql+aiomysql://localhost:3306/flydb_dev
      username: root
      password: root
      concurrent: true

    reporting:
      url: oracle+oracledb_async://db.internal:1521/?service_name=REPORT
      username: flydb
      password: secret
      concurrent: false
"""

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union

import yaml
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

logger = logging.getLogger(__name__)

DEFAULT_URL = "sqlite+aiosqlite:///./flydb.db"
DEFAULT_CONFIG_FILE = "db-connections.yml"
GLOBAL_SECTION = "global"


class ConfigurationError(Exception):
    """Raised when no usable connection configuration can be resolved."""

    pass


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class ConnectionTarget:
    """One independently configured database.

    Attributes:
        name: Target name (the key in the connection file)
        url: SQLAlchemy async URL, e.g. ``mysql+aiomysql://host/db``
        username: Optional user, overrides the one embedded in the URL
        password: Optional password, overrides the one embedded in the URL
        concurrent: Per-target opt-in for concurrent fleet execution
    """

    name: str
    url: str
    username: Optional[str] = None
    password: Optional[str] = None
    concurrent: bool = False

    @classmethod
    def from_mapping(cls, name: str, data: Any) -> "ConnectionTarget":
        """Build a target from one section of the connection file.

        Args:
            name: Section name
            data: Section contents

        Returns:
            ConnectionTarget

        Raises:
            ConfigurationError: If the section is not a mapping
        """
        if not isinstance(data, Mapping):
            raise ConfigurationError(
                f"Connection '{name}' must be a mapping, got {type(data).__name__}"
            )

        return cls(
            name=name,
            url=str(data.get("url") or ""),
            username=data.get("username"),
            password=data.get("password"),
            concurrent=data.get("concurrent", False) is True,
        )

    def safe_url(self) -> str:
        """URL with the password masked, suitable for logs."""
        try:
            return make_url(self.url).render_as_string(hide_password=True)
        except ArgumentError:
            return "<invalid url>"


def _default_targets() -> Mapping[str, ConnectionTarget]:
    name = os.getenv("FLYDB_ACTIVE_CONNECTION", "development")
    target = ConnectionTarget(
        name=name,
        url=os.getenv("FLYDB_URL", DEFAULT_URL),
        username=os.getenv("FLYDB_USER") or None,
        password=os.getenv("FLYDB_PASS") or None,
        concurrent=_env_bool("FLYDB_CONCURRENT"),
    )
    return MappingProxyType({name: target})


@dataclass(frozen=True)
class FleetConfig:
    """Configuration for one or many target databases.

    Attributes:
        targets: Targets keyed by name
        active_connection: Target used when a single-database operation
            does not name one
        concurrent_execution: Global switch for concurrent fleet runs
        scripts_path: Directory (or package resource path) holding scripts
        script_extension: File extension of migration scripts
        max_workers: Upper bound on concurrently running targets
        timeout: Seconds the orchestrator waits for a fleet operation
        connect_timeout: Seconds to wait when opening a target connection
        echo_sql: Echo SQL statements through SQLAlchemy (debugging)
    """

    targets: Mapping[str, ConnectionTarget] = field(default_factory=_default_targets)
    active_connection: str = field(
        default_factory=lambda: os.getenv("FLYDB_ACTIVE_CONNECTION", "development")
    )
    concurrent_execution: bool = field(default_factory=lambda: _env_bool("FLYDB_CONCURRENT"))
    scripts_path: str = field(
        default_factory=lambda: os.getenv("FLYDB_SCRIPTS_PATH", "db/migration")
    )
    script_extension: str = ".sql"
    max_workers: int = field(default_factory=lambda: int(os.getenv("FLYDB_MAX_WORKERS", "8")))
    timeout: float = field(default_factory=lambda: float(os.getenv("FLYDB_TIMEOUT", "300")))
    connect_timeout: float = field(
        default_factory=lambda: float(os.getenv("FLYDB_CONNECT_TIMEOUT", "10.0"))
    )
    echo_sql: bool = False

    def __post_init__(self) -> None:
        # Freeze the target mapping as well as the dataclass itself
        if not isinstance(self.targets, MappingProxyType):
            object.__setattr__(self, "targets", MappingProxyType(dict(self.targets)))

    @property
    def target_names(self) -> list[str]:
        """Configured target names in file order."""
        return list(self.targets)

    def resolve(self, name: str) -> ConnectionTarget:
        """Get a target by name.

        Args:
            name: Target name

        Returns:
            The configured target

        Raises:
            ConfigurationError: If no such target is configured
        """
        target = self.targets.get(name)
        if target is None:
            known = ", ".join(self.targets) or "none"
            raise ConfigurationError(f"Unknown connection '{name}' (configured: {known})")
        return target

    def active_target(self) -> ConnectionTarget:
        """Target used for single-database operations.

        Prefers ``active_connection``; falls back to the only configured
        target when there is exactly one.

        Raises:
            ConfigurationError: If no usable target can be determined
        """
        if self.active_connection in self.targets:
            return self.targets[self.active_connection]
        if len(self.targets) == 1:
            return next(iter(self.targets.values()))
        raise ConfigurationError(
            f"Active connection '{self.active_connection}' is not configured"
        )

    def is_concurrent_for(self, name: str) -> bool:
        """Whether a target may run on the concurrent path.

        Both the global switch and the target's own flag must be set.
        """
        if not self.concurrent_execution:
            return False
        target = self.targets.get(name)
        return bool(target and target.concurrent)

    def with_overrides(self, **changes: Any) -> "FleetConfig":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def validate(self) -> list[str]:
        """Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not self.targets:
            errors.append("At least one connection must be configured")

        for name, target in self.targets.items():
            if not target.url:
                errors.append(f"Connection '{name}' has no url")

        if self.max_workers < 1:
            errors.append("max_workers must be at least 1")

        if self.timeout <= 0:
            errors.append("timeout must be positive")

        if self.connect_timeout <= 0:
            errors.append("connect_timeout must be positive")

        if not self.script_extension.startswith("."):
            errors.append("script_extension must start with '.'")

        return errors


def load_config(path: Optional[Union[str, Path]] = None) -> FleetConfig:
    """Load the fleet configuration.

    Environment variables provide the defaults; the YAML connection file,
    when present, overrides them. A missing file is not an error and leaves
    a single environment-configured target.

    Args:
        path: Connection file path (defaults to ``$FLYDB_CONFIG`` or
            ``db-connections.yml``)

    Returns:
        Immutable FleetConfig

    Raises:
        ConfigurationError: If the file cannot be parsed or is malformed
    """
    config_path = Path(path or os.getenv("FLYDB_CONFIG", DEFAULT_CONFIG_FILE))
    base = FleetConfig()

    if not config_path.exists():
        logger.warning(f"Connection file {config_path} not found, using environment settings")
        return base

    try:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot load connection file {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Connection file {config_path} must contain a mapping")

    return parse_config(data, base=base)


def parse_config(data: dict[str, Any], base: Optional[FleetConfig] = None) -> FleetConfig:
    """Build a FleetConfig from already-parsed connection file contents.

    Args:
        data: Parsed YAML document
        base: Defaults to start from

    Returns:
        FleetConfig with file values applied

    Raises:
        ConfigurationError: If a section is malformed or a number is invalid
    """
    base = base or FleetConfig()
    data = dict(data)
    overrides: dict[str, Any] = {}

    global_section = data.pop(GLOBAL_SECTION, None) or {}
    if not isinstance(global_section, Mapping):
        raise ConfigurationError("'global' section must be a mapping")

    if "concurrent_execution" in global_section:
        overrides["concurrent_execution"] = global_section["concurrent_execution"] is True
    if "scripts_path" in global_section:
        overrides["scripts_path"] = str(global_section["scripts_path"])
    if "script_extension" in global_section:
        overrides["script_extension"] = str(global_section["script_extension"])
    for key, convert in [("max_workers", int), ("timeout", float), ("connect_timeout", float)]:
        if key not in global_section:
            continue
        try:
            overrides[key] = convert(global_section[key])
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Invalid {key} in global section: {global_section[key]!r}"
            ) from e
    if "active_connection" in global_section:
        overrides["active_connection"] = str(global_section["active_connection"])

    if data:
        overrides["targets"] = {
            str(name): ConnectionTarget.from_mapping(str(name), section)
            for name, section in data.items()
        }
        for name in overrides["targets"]:
            logger.info(f"Loaded connection configuration: {name}")

    config = base.with_overrides(**overrides)
    logger.debug(
        f"Fleet config: {len(config.targets)} target(s), "
        f"concurrent={config.concurrent_execution}, active={config.active_connection}"
    )
    return config
