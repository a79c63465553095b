"""
Configuration Management System
===============================

Provides dataclass-based configuration with YAML file loading support.
All settings are validated and have sensible defaults.

Lookup order when no explicit path is given:
``./stellar.yaml`` then ``~/.config/stellar/stellar.yaml``.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Any, Dict
import os
import yaml
import logging

from stellar.config.categories import CategoryTable
from stellar.config.modes import OrganizationMode, RenameMode
from stellar.utils.exceptions import ConfigurationError
from stellar.utils.logging_config import LoggingConfig

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "stellar.yaml"
USER_CONFIG_DIR = Path.home() / ".config" / "stellar"
MIN_JOURNAL_SESSIONS = 10


def _default_protected_paths() -> List[str]:
    paths = [
        "/", "/bin", "/boot", "/dev", "/etc", "/lib", "/lib64", "/opt",
        "/proc", "/sbin", "/sys", "/usr", "/var", "/private",
        "/System", "/Library", "/Applications",
        "~", "~/.ssh", "~/.gnupg", "~/.aws", "~/.kube", "~/.config",
        "~/.local", "~/Library",
    ]
    if os.name == "nt":
        paths += ["C:\\", "C:\\Windows", "C:\\Program Files", "C:\\Program Files (x86)"]
    return paths


def _default_system_paths() -> List[str]:
    paths = [
        "/bin", "/boot", "/dev", "/etc", "/lib", "/lib64", "/proc",
        "/sbin", "/sys", "/usr", "/System", "/Library", "/private/etc",
    ]
    if os.name == "nt":
        paths += ["C:\\Windows", "C:\\Program Files", "C:\\Program Files (x86)"]
    return paths


DEFAULT_PROJECT_MARKERS = [
    ".git", ".svn", ".hg", "package.json", "yarn.lock", "pnpm-lock.yaml",
    "Cargo.toml", "Cargo.lock", "pyproject.toml", "setup.py",
    "requirements.txt", "Pipfile", "Gemfile", "go.mod", "pom.xml",
    "build.gradle", "composer.json", "Dockerfile",
]

DEFAULT_DEPENDENCY_DIRS = [
    "node_modules", "target", "build", "dist", "venv", ".venv",
    "__pycache__", ".cargo", ".next", ".nuxt", "vendor", "bin", "obj",
]


def _require_list(data: Dict[str, Any], key: str, section: str) -> Optional[List[str]]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, (list, tuple)):
        raise ConfigurationError(
            f"{section}.{key} must be a list",
            config_key=f"{section}.{key}",
            expected_type="list[str]",
        )
    return [str(v) for v in value]


@dataclass
class OrganizationConfig:
    """How a folder is organized.

    Attributes:
        mode: Grouping strategy (category, date or hybrid).
        rename_mode: Renaming strategy (clean, date-prefix or skip).
        recursive: Descend into subdirectories.
        dry_run: Plan only, never touch the filesystem.
        organize_folders: In non-recursive runs, move subfolders dominated
                          by one category into that category's folder.
        include_extensionless: Also organize files without an extension.
        verify_checksum: Compare SHA-256 after a cross-device copy in
                         addition to the size check.
    """
    mode: OrganizationMode = OrganizationMode.CATEGORY
    rename_mode: RenameMode = RenameMode.CLEAN
    recursive: bool = False
    dry_run: bool = False
    organize_folders: bool = True
    include_extensionless: bool = False
    verify_checksum: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrganizationConfig":
        """Create OrganizationConfig from dictionary."""
        if not data:
            return cls()
        defaults = cls()
        return cls(
            mode=OrganizationMode.parse(data.get("mode", defaults.mode)),
            rename_mode=RenameMode.parse(data.get("rename_mode", defaults.rename_mode)),
            recursive=bool(data.get("recursive", defaults.recursive)),
            dry_run=bool(data.get("dry_run", defaults.dry_run)),
            organize_folders=bool(data.get("organize_folders", defaults.organize_folders)),
            include_extensionless=bool(
                data.get("include_extensionless", defaults.include_extensionless)
            ),
            verify_checksum=bool(data.get("verify_checksum", defaults.verify_checksum)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "rename_mode": self.rename_mode.value,
            "recursive": self.recursive,
            "dry_run": self.dry_run,
            "organize_folders": self.organize_folders,
            "include_extensionless": self.include_extensionless,
            "verify_checksum": self.verify_checksum,
        }


@dataclass
class WatcherConfig:
    """Filesystem watcher configuration.

    Attributes:
        ignore_patterns: Glob patterns for files to ignore.
        debounce_seconds: Wait time before processing a file event.
        poll_interval: How often the loop checks for a stop request.
    """
    ignore_patterns: List[str] = field(default_factory=lambda: [
        "*.tmp", "*.crdownload", "*.part", "*.download", "~$*", ".DS_Store", "Thumbs.db"
    ])
    debounce_seconds: float = 0.5
    poll_interval: float = 0.5

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WatcherConfig":
        """Create WatcherConfig from dictionary."""
        if not data:
            return cls()
        defaults = cls()
        debounce = float(data.get("debounce_seconds", defaults.debounce_seconds))
        if debounce < 0:
            raise ConfigurationError(
                "watcher.debounce_seconds cannot be negative",
                config_key="watcher.debounce_seconds",
                expected_type="float >= 0",
            )
        return cls(
            ignore_patterns=_require_list(data, "ignore_patterns", "watcher")
            or defaults.ignore_patterns,
            debounce_seconds=debounce,
            poll_interval=float(data.get("poll_interval", defaults.poll_interval)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ignore_patterns": self.ignore_patterns,
            "debounce_seconds": self.debounce_seconds,
            "poll_interval": self.poll_interval,
        }


@dataclass
class DeduplicationConfig:
    """Deduplication settings.

    Attributes:
        use_partial_hash: Thin size groups with a partial hash first.
        partial_hash_size: Chunk size in bytes for partial hashing.
        use_trash: Send removed duplicates to the system trash.
    """
    use_partial_hash: bool = True
    partial_hash_size: int = 4096
    use_trash: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeduplicationConfig":
        """Create DeduplicationConfig from dictionary."""
        if not data:
            return cls()
        defaults = cls()
        return cls(
            use_partial_hash=bool(data.get("use_partial_hash", defaults.use_partial_hash)),
            partial_hash_size=int(data.get("partial_hash_size", defaults.partial_hash_size)),
            use_trash=bool(data.get("use_trash", defaults.use_trash)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "use_partial_hash": self.use_partial_hash,
            "partial_hash_size": self.partial_hash_size,
            "use_trash": self.use_trash,
        }


@dataclass
class ProtectionConfig:
    """Paths and folders that must never be organized.

    Attributes:
        protected_paths: Rejected when the target equals or contains one.
        system_paths: Rejected for themselves and everything below them.
        project_markers: Files whose presence marks a software project.
        dependency_dirs: Dependency/build folder names never descended into.
    """
    protected_paths: List[str] = field(default_factory=_default_protected_paths)
    system_paths: List[str] = field(default_factory=_default_system_paths)
    project_markers: List[str] = field(default_factory=lambda: list(DEFAULT_PROJECT_MARKERS))
    dependency_dirs: List[str] = field(default_factory=lambda: list(DEFAULT_DEPENDENCY_DIRS))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProtectionConfig":
        """Create ProtectionConfig from dictionary.

        Lists given here extend the built-in defaults rather than
        replacing them, so a config file can never unprotect ``/etc``.
        """
        config = cls()
        if not data:
            return config
        for key in ("protected_paths", "system_paths", "project_markers", "dependency_dirs"):
            extra = _require_list(data, key, "protection")
            if extra:
                current = getattr(config, key)
                current.extend(item for item in extra if item not in current)
        return config

    def to_dict(self) -> Dict[str, Any]:
        return {
            "protected_paths": self.protected_paths,
            "system_paths": self.system_paths,
            "project_markers": self.project_markers,
            "dependency_dirs": self.dependency_dirs,
        }


@dataclass
class StateConfig:
    """Where journals and lock markers live.

    Attributes:
        state_directory: Shared state directory for session journals.
        max_sessions: Sessions retained per target journal.
        lock_directory: Directory for lock markers. When unset the marker
                        is written inside the target folder itself.
    """
    state_directory: Path = field(default_factory=lambda: USER_CONFIG_DIR)
    max_sessions: int = 50
    lock_directory: Optional[Path] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StateConfig":
        """Create StateConfig from dictionary."""
        if not data:
            return cls()
        defaults = cls()
        max_sessions = int(data.get("max_sessions", defaults.max_sessions))
        if max_sessions < MIN_JOURNAL_SESSIONS:
            raise ConfigurationError(
                f"state.max_sessions must be at least {MIN_JOURNAL_SESSIONS}",
                config_key="state.max_sessions",
                expected_type=f"int >= {MIN_JOURNAL_SESSIONS}",
            )
        state_dir = data.get("state_directory")
        lock_dir = data.get("lock_directory")
        return cls(
            state_directory=Path(state_dir).expanduser() if state_dir else defaults.state_directory,
            max_sessions=max_sessions,
            lock_directory=Path(lock_dir).expanduser() if lock_dir else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state_directory": str(self.state_directory),
            "max_sessions": self.max_sessions,
            "lock_directory": str(self.lock_directory) if self.lock_directory else None,
        }


@dataclass
class Config:
    """Main configuration container.

    Aggregates all configuration sections and provides loading from YAML.
    """
    categories: CategoryTable = field(default_factory=CategoryTable)
    organization: OrganizationConfig = field(default_factory=OrganizationConfig)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    deduplication: DeduplicationConfig = field(default_factory=DeduplicationConfig)
    protection: ProtectionConfig = field(default_factory=ProtectionConfig)
    state: StateConfig = field(default_factory=StateConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """Load configuration from YAML file.

        Args:
            config_path: Path to the configuration file. If None, looks for
                        stellar.yaml in the current directory, then in
                        ~/.config/stellar.

        Returns:
            Config instance with loaded settings.

        Raises:
            yaml.YAMLError: If config file is not valid YAML.
            ConfigurationError: If a value is invalid.
        """
        if config_path is None:
            candidates = [Path(CONFIG_FILENAME), USER_CONFIG_DIR / CONFIG_FILENAME]
            config_path = next((p for p in candidates if p.exists()), None)
            if config_path is None:
                logger.debug("No config file found, using defaults")
                return cls()

        config_path = Path(config_path)
        if not config_path.exists():
            logger.warning(f"Config file not found at {config_path}, using defaults")
            return cls()

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}

            if not isinstance(data, dict):
                raise ConfigurationError(
                    f"Config file must contain a mapping: {config_path}",
                    expected_type="mapping",
                )

            config = cls.from_dict(data)
            logger.info(f"Loaded configuration from {config_path}")
            return config

        except yaml.YAMLError as e:
            logger.error(f"Failed to parse config file: {e}")
            raise
        except ConfigurationError as e:
            logger.error(f"Invalid configuration in {config_path}: {e}")
            raise

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create Config from dictionary."""
        return cls(
            categories=CategoryTable.from_dict(data.get("categories")),
            organization=OrganizationConfig.from_dict(data.get("organization", {})),
            watcher=WatcherConfig.from_dict(data.get("watcher", {})),
            deduplication=DeduplicationConfig.from_dict(data.get("deduplication", {})),
            protection=ProtectionConfig.from_dict(data.get("protection", {})),
            state=StateConfig.from_dict(data.get("state", {})),
            logging=LoggingConfig.from_dict(data.get("logging", {})),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert the whole configuration to plain data."""
        return {
            "categories": self.categories.to_dict(),
            "organization": self.organization.to_dict(),
            "watcher": self.watcher.to_dict(),
            "deduplication": self.deduplication.to_dict(),
            "protection": self.protection.to_dict(),
            "state": self.state.to_dict(),
            "logging": self.logging.to_dict(),
        }

    def save(self, config_path: Path) -> None:
        """Save configuration to YAML file.

        Args:
            config_path: Path where to save the configuration.
        """
        config_path = Path(config_path)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

        logger.info(f"Saved configuration to {config_path}")
