"""Deduplication module for finding duplicate files."""

from .hash_engine import (
    DuplicateDetector,
    DuplicateGroup,
    DuplicateReport,
    SkippedFile,
    PartialHasher,
    FullHasher,
)

__all__ = [
    "DuplicateDetector",
    "DuplicateGroup",
    "DuplicateReport",
    "SkippedFile",
    "PartialHasher",
    "FullHasher",
]
