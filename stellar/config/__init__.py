"""Configuration module for Stellar."""

from .settings import (
    Config,
    OrganizationConfig,
    WatcherConfig,
    DeduplicationConfig,
    ProtectionConfig,
    StateConfig,
)
from .categories import CategoryTable, FALLBACK_CATEGORY, DEFAULT_CATEGORIES
from .modes import OrganizationMode, RenameMode

__all__ = [
    "Config",
    "OrganizationConfig",
    "WatcherConfig",
    "DeduplicationConfig",
    "ProtectionConfig",
    "StateConfig",
    "CategoryTable",
    "FALLBACK_CATEGORY",
    "DEFAULT_CATEGORIES",
    "OrganizationMode",
    "RenameMode",
]
