"""
Path Guard
==========

Decides whether a directory may be organized or descended into.

Four rules are checked, in order:

- ``PROTECTED_PATH``: the path is, or contains, a protected location
  (the filesystem root, system directories, ``~/.ssh`` ...).
- ``SYSTEM_PATH``: the path lies inside a system directory.
- ``DEPENDENCY_DIR``: the directory is a dependency or build folder.
- ``PROJECT_FOLDER``: the directory holds a project marker such as ``.git``.
"""

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Set

from stellar.config.settings import ProtectionConfig
from stellar.utils.exceptions import ProtectedPathError
from stellar.utils.logging_config import get_logger

logger = get_logger(__name__)


class GuardRule(Enum):
    """Rule that rejected a path."""

    PROTECTED_PATH = "protected_path"
    SYSTEM_PATH = "system_path"
    DEPENDENCY_DIR = "dependency_dir"
    PROJECT_FOLDER = "project_folder"


@dataclass(frozen=True)
class GuardDecision:
    """Result of a guard check."""

    allowed: bool
    rule: Optional[GuardRule] = None
    detail: str = ""

    def __bool__(self) -> bool:
        return self.allowed


_ALLOWED = GuardDecision(allowed=True)


def _absolute(path) -> Path:
    return Path(os.path.abspath(os.path.expanduser(str(path))))


def _is_within(path: Path, parent: Path) -> bool:
    """True when ``path`` equals ``parent`` or lies below it."""
    try:
        path.relative_to(parent)
        return True
    except ValueError:
        return False


class PathGuard:
    """Applies protection rules to candidate directories.

    Example:
        >>> guard = PathGuard()
        >>> guard.check(Path("/etc")).rule
        <GuardRule.PROTECTED_PATH: 'protected_path'>
    """

    def __init__(self, protection: Optional[ProtectionConfig] = None):
        """Initialize the guard.

        Args:
            protection: Protection lists. Uses the built-in lists if omitted.
        """
        self.protection = protection or ProtectionConfig()
        self._protected = self._expand(self.protection.protected_paths)
        self._system = self._expand(self.protection.system_paths)
        self._markers = list(self.protection.project_markers)
        self._dependency_dirs = {name.lower() for name in self.protection.dependency_dirs}

    @staticmethod
    def _expand(entries: List[str]) -> List[Path]:
        # Keep both the literal and the canonical form (/etc vs /private/etc on macOS)
        expanded: List[Path] = []
        seen: Set[Path] = set()
        for entry in entries:
            literal = _absolute(entry)
            for candidate in (literal, Path(os.path.realpath(literal))):
                if candidate not in seen:
                    seen.add(candidate)
                    expanded.append(candidate)
        return expanded

    def _path_rule(self, candidates: List[Path]) -> GuardDecision:
        for path in candidates:
            for protected in self._protected:
                # The path itself, or any ancestor of a protected location
                if _is_within(protected, path):
                    return GuardDecision(
                        False,
                        GuardRule.PROTECTED_PATH,
                        f"{path} is or contains protected location {protected}",
                    )
            for system in self._system:
                if system == Path(system.anchor):
                    continue
                if _is_within(path, system):
                    return GuardDecision(
                        False,
                        GuardRule.SYSTEM_PATH,
                        f"{path} lies inside system directory {system}",
                    )
        return _ALLOWED

    def is_protected(self, path) -> bool:
        """Check the protected and system path lists only.

        Performs no filesystem access, so it is cheap enough to call
        before every move.

        Args:
            path: Path to check.

        Returns:
            True if the path may not be touched.
        """
        return not self._path_rule([_absolute(path)]).allowed

    def is_dependency_dir(self, path) -> bool:
        """Check whether a directory name is a dependency/build folder."""
        return Path(path).name.lower() in self._dependency_dirs

    def is_project_folder(self, path) -> bool:
        """Check whether a directory contains any project marker."""
        path = Path(path)
        for marker in self._markers:
            try:
                if (path / marker).exists():
                    return True
            except OSError:
                continue
        return False

    def check(self, path) -> GuardDecision:
        """Evaluate every rule for a directory.

        Args:
            path: Directory to check.

        Returns:
            GuardDecision naming the first rule that rejects the path,
            or an allowing decision.
        """
        literal = _absolute(path)
        canonical = Path(os.path.realpath(literal))
        candidates = [literal] if canonical == literal else [literal, canonical]

        decision = self._path_rule(candidates)
        if not decision.allowed:
            return decision

        if self.is_dependency_dir(literal):
            return GuardDecision(
                False,
                GuardRule.DEPENDENCY_DIR,
                f"{literal.name} is a dependency or build directory",
            )

        if self.is_project_folder(literal):
            return GuardDecision(
                False,
                GuardRule.PROJECT_FOLDER,
                f"{literal} contains a project marker",
            )

        return _ALLOWED

    def ensure_allowed(self, path) -> None:
        """Raise if a target directory may not be organized.

        Raises:
            ProtectedPathError: Naming the rule that rejected the target.
        """
        decision = self.check(path)
        if not decision.allowed:
            logger.warning(f"Refusing protected target {path}: {decision.detail}")
            raise ProtectedPathError(
                f"Refusing to organize {path}: {decision.detail}",
                target=str(path),
                rule=decision.rule.value,
            )
