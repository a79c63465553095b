"""
Hash Engine
===========

Cryptographic hashing for file deduplication.
Implements efficient partial hashing for fast comparison.

Duplicates are found in three stages:
1. Size grouping (no I/O)
2. Partial hash of the first, middle and last chunks
3. Full SHA-256 for confirmation
"""

from pathlib import Path
from typing import Dict, Iterable, List, Tuple
from dataclasses import dataclass, field
import hashlib
import os

from stellar.scanning.scanner import FileEntry
from stellar.utils.logging_config import get_logger
from stellar.utils.exceptions import DeduplicationError, ErrorCode

logger = get_logger(__name__)


@dataclass
class DuplicateGroup:
    """Files with identical content.

    Attributes:
        hash: SHA-256 of the shared content.
        size: Size of each file in bytes.
        files: Member paths, sorted (at least two).
    """
    hash: str
    size: int
    files: List[Path] = field(default_factory=list)

    @property
    def wasted_bytes(self) -> int:
        """Bytes that removing all but one copy would free."""
        return self.size * (len(self.files) - 1)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "hash": self.hash,
            "size": self.size,
            "files": [str(f) for f in self.files],
        }


@dataclass
class SkippedFile:
    """File left out of duplicate detection."""
    path: Path
    reason: str


@dataclass
class DuplicateReport:
    """Outcome of a duplicate search.

    Attributes:
        groups: Duplicate groups, largest files first.
        skipped: Files that could not be read.
    """
    groups: List[DuplicateGroup] = field(default_factory=list)
    skipped: List[SkippedFile] = field(default_factory=list)

    @property
    def wasted_bytes(self) -> int:
        return sum(group.wasted_bytes for group in self.groups)

    @property
    def duplicate_count(self) -> int:
        """Number of redundant copies across all groups."""
        return sum(len(group.files) - 1 for group in self.groups)


class PartialHasher:
    """Implements partial hashing for fast file comparison.

    Hashes only the beginning, middle, and end of large files
    for fast initial comparison.
    """

    def __init__(self, chunk_size: int = 4096):
        """Initialize partial hasher.

        Args:
            chunk_size: Size of chunks to hash in bytes.
        """
        self.chunk_size = chunk_size

    def compute(self, file_path: Path) -> str:
        """Compute partial hash of a file.

        For files smaller than 3 chunks, computes full hash.
        For larger files, hashes beginning, middle, and end.

        Args:
            file_path: Path to the file.

        Returns:
            Hexadecimal hash string.

        Raises:
            DeduplicationError: If file cannot be read.
        """
        try:
            file_size = file_path.stat().st_size
        except OSError as e:
            raise DeduplicationError(
                f"Cannot stat file: {e}",
                file_path=str(file_path),
                hash_type="partial",
                error_code=ErrorCode.HASH_COMPUTATION_FAILED,
                cause=e,
            )

        hasher = hashlib.sha256()

        try:
            with open(file_path, 'rb') as f:
                # For small files, hash everything
                if file_size <= self.chunk_size * 3:
                    hasher.update(f.read())
                    return hasher.hexdigest()

                # First chunk
                hasher.update(f.read(self.chunk_size))

                # Middle chunk
                f.seek(file_size // 2)
                hasher.update(f.read(self.chunk_size))

                # Last chunk
                f.seek(-self.chunk_size, os.SEEK_END)
                hasher.update(f.read(self.chunk_size))

                # Include file size for additional uniqueness
                hasher.update(str(file_size).encode())

            return hasher.hexdigest()

        except OSError as e:
            raise DeduplicationError(
                f"Cannot read file: {e}",
                file_path=str(file_path),
                hash_type="partial",
                error_code=ErrorCode.HASH_COMPUTATION_FAILED,
                cause=e,
            )


class FullHasher:
    """Computes full SHA-256 hash of files.

    Uses buffered reading for memory efficiency with large files.
    """

    BUFFER_SIZE = 65536  # 64KB buffer

    def compute(self, file_path: Path) -> str:
        """Compute full SHA-256 hash.

        Args:
            file_path: Path to the file.

        Returns:
            Hexadecimal hash string.

        Raises:
            DeduplicationError: If file cannot be read.
        """
        hasher = hashlib.sha256()

        try:
            with open(file_path, 'rb') as f:
                while True:
                    data = f.read(self.BUFFER_SIZE)
                    if not data:
                        break
                    hasher.update(data)

            return hasher.hexdigest()

        except OSError as e:
            raise DeduplicationError(
                f"Cannot read file: {e}",
                file_path=str(file_path),
                hash_type="full",
                error_code=ErrorCode.HASH_COMPUTATION_FAILED,
                cause=e,
            )


class DuplicateDetector:
    """Groups files by content.

    Never deletes anything; removal is a separate, explicit step.
    Unreadable files are reported as skipped instead of failing the
    whole search.
    """

    def __init__(self, use_partial_hash: bool = True, chunk_size: int = 4096):
        """Initialize the detector.

        Args:
            use_partial_hash: Thin size groups with a partial hash first.
            chunk_size: Chunk size for partial hashing.
        """
        self.use_partial_hash = use_partial_hash
        self.partial_hasher = PartialHasher(chunk_size=chunk_size)
        self.full_hasher = FullHasher()

    @staticmethod
    def _group_by_size(entries: Iterable[FileEntry]) -> Dict[int, List[Path]]:
        by_size: Dict[int, List[Path]] = {}
        seen = set()
        for entry in entries:
            # Two entries for one file (symlink and target) are not duplicates
            real = os.path.realpath(entry.path)
            if real in seen:
                continue
            seen.add(real)
            by_size.setdefault(entry.size, []).append(entry.path)
        return by_size

    def _bucket(
        self,
        paths: List[Path],
        hasher,
        report: DuplicateReport
    ) -> Dict[str, List[Path]]:
        buckets: Dict[str, List[Path]] = {}
        for path in paths:
            try:
                digest = hasher.compute(path)
            except DeduplicationError as e:
                logger.warning(f"Skipping unreadable file {path}: {e.message}")
                report.skipped.append(SkippedFile(path, e.message))
                continue
            buckets.setdefault(digest, []).append(path)
        return buckets

    def find_duplicates(self, entries: Iterable[FileEntry]) -> DuplicateReport:
        """Find groups of files with identical content.

        Args:
            entries: Scanned files, typically from Scanner.scan.

        Returns:
            DuplicateReport with groups ordered by size, largest first.
        """
        report = DuplicateReport()

        # Stage 1: Size comparison (fastest)
        candidates: List[Tuple[int, List[Path]]] = [
            (size, paths) for size, paths in self._group_by_size(entries).items()
            if len(paths) > 1
        ]

        for size, paths in candidates:
            # Stage 2: Partial hash comparison
            if self.use_partial_hash:
                groups = [
                    group for group in self._bucket(paths, self.partial_hasher, report).values()
                    if len(group) > 1
                ]
            else:
                groups = [paths]

            # Stage 3: Full hash for confirmation
            for group in groups:
                for digest, files in self._bucket(group, self.full_hasher, report).items():
                    if len(files) > 1:
                        report.groups.append(DuplicateGroup(digest, size, sorted(files)))

        report.groups.sort(key=lambda g: (-g.size, g.files[0]))
        logger.info(
            f"Found {len(report.groups)} duplicate groups "
            f"({report.duplicate_count} redundant files)"
        )
        return report
