"""
Organization and Rename Modes
=============================

Closed sets of strategies for where files go and what they are called.
"""

from enum import Enum

from stellar.utils.exceptions import ConfigurationError


class OrganizationMode(Enum):
    """How files are grouped into folders."""

    CATEGORY = "category"  # Documents/, Images/, Videos/
    DATE = "date"          # 2024/01-january/
    HYBRID = "hybrid"      # Documents/2024/

    @classmethod
    def parse(cls, value) -> "OrganizationMode":
        """Parse a mode from its name or a short alias.

        Raises:
            ConfigurationError: If the value names no known mode.
        """
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        if key in _ORGANIZATION_ALIASES:
            return _ORGANIZATION_ALIASES[key]
        raise ConfigurationError(
            f"Unknown organization mode: {value!r}",
            config_key="organization.mode",
            expected_type="category | date | hybrid",
        )

    def __str__(self) -> str:
        return self.value.capitalize()


class RenameMode(Enum):
    """How files are renamed while being organized."""

    CLEAN = "clean"              # élève café.pdf -> eleve-cafe.pdf
    DATE_PREFIX = "date-prefix"  # 2024-01-15-report.pdf
    SKIP = "skip"                # unchanged

    @classmethod
    def parse(cls, value) -> "RenameMode":
        """Parse a rename mode from its name or a short alias.

        Raises:
            ConfigurationError: If the value names no known mode.
        """
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        if key in _RENAME_ALIASES:
            return _RENAME_ALIASES[key]
        raise ConfigurationError(
            f"Unknown rename mode: {value!r}",
            config_key="organization.rename_mode",
            expected_type="clean | date-prefix | skip",
        )

    def __str__(self) -> str:
        if self is RenameMode.DATE_PREFIX:
            return "Date prefix"
        return self.value.capitalize()


_ORGANIZATION_ALIASES = {
    "category": OrganizationMode.CATEGORY,
    "cat": OrganizationMode.CATEGORY,
    "c": OrganizationMode.CATEGORY,
    "date": OrganizationMode.DATE,
    "d": OrganizationMode.DATE,
    "hybrid": OrganizationMode.HYBRID,
    "h": OrganizationMode.HYBRID,
}

_RENAME_ALIASES = {
    "clean": RenameMode.CLEAN,
    "c": RenameMode.CLEAN,
    "date-prefix": RenameMode.DATE_PREFIX,
    "date_prefix": RenameMode.DATE_PREFIX,
    "date": RenameMode.DATE_PREFIX,
    "d": RenameMode.DATE_PREFIX,
    "skip": RenameMode.SKIP,
    "none": RenameMode.SKIP,
    "s": RenameMode.SKIP,
}
