"""Scanning module for Stellar."""

from .path_guard import PathGuard, GuardRule, GuardDecision
from .scanner import Scanner, FileEntry, FolderCandidate, DOMINANT_CATEGORY_THRESHOLD

__all__ = [
    "PathGuard",
    "GuardRule",
    "GuardDecision",
    "Scanner",
    "FileEntry",
    "FolderCandidate",
    "DOMINANT_CATEGORY_THRESHOLD",
]
