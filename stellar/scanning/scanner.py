"""
Directory Scanner
=================

Lazily walks a target directory and yields one FileEntry per file to
organize. Hidden files, OS metadata files and (by default) files without
an extension are skipped.

Recursive walks use an explicit stack. Hidden directories, category
folders (already organized) and directories the PathGuard rejects are
pruned; symlinked directories are only followed when they resolve inside
the root.
"""

import os
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional, Set

from stellar.config.categories import CategoryTable, DEFAULT_TABLE
from stellar.scanning.path_guard import PathGuard
from stellar.utils.exceptions import ErrorCode, InvalidTargetError
from stellar.utils.logging_config import get_logger

logger = get_logger(__name__)

# OS metadata files that are never organized
IGNORED_NAMES = frozenset({".DS_Store", ".localized", "Thumbs.db", "desktop.ini"})

# Share of a subfolder's files that one category must reach
DOMINANT_CATEGORY_THRESHOLD = 0.6


@dataclass(frozen=True)
class FileEntry:
    """Snapshot of a file taken at scan time.

    Attributes:
        path: Absolute path of the file.
        size: Size in bytes.
        modified: Modification time as a POSIX timestamp.
        extension: Lowercase extension without the dot, "" when absent.
    """
    path: Path
    size: int
    modified: float
    extension: str

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def modified_at(self) -> datetime:
        """Modification time in local time."""
        return datetime.fromtimestamp(self.modified)


@dataclass(frozen=True)
class FolderCandidate:
    """Subfolder whose content is dominated by one category."""
    path: Path
    category: str
    share: float
    file_count: int


def split_extension(name: str) -> str:
    """Get the lowercase extension of a file name, without the dot."""
    _, ext = os.path.splitext(name)
    return ext.lstrip(".").lower()


def _is_hidden(name: str) -> bool:
    return name.startswith(".")


class Scanner:
    """Produces FileEntry values for a target directory.

    Example:
        >>> scanner = Scanner()
        >>> for entry in scanner.scan(Path("~/Downloads").expanduser()):
        ...     print(entry.name, entry.extension)
    """

    def __init__(
        self,
        categories: Optional[CategoryTable] = None,
        guard: Optional[PathGuard] = None,
        include_extensionless: bool = False,
        descend_category_folders: bool = False
    ):
        """Initialize the scanner.

        Args:
            categories: Category table, used to recognize organized folders.
            guard: Path guard applied at every directory boundary.
            include_extensionless: Yield files without an extension too.
            descend_category_folders: Also walk folders named like a
                                      category (used by duplicate search).
        """
        self.categories = categories or DEFAULT_TABLE
        self.guard = guard or PathGuard()
        self.include_extensionless = include_extensionless
        self.descend_category_folders = descend_category_folders

    def should_skip_name(self, name: str) -> bool:
        """Check whether a file name is never organized."""
        if _is_hidden(name) or name in IGNORED_NAMES:
            return True
        if not self.include_extensionless and not split_extension(name):
            return True
        return False

    def entry_for(self, path) -> Optional[FileEntry]:
        """Build a FileEntry for a single file.

        Symlinks are followed, so the entry carries the resolved size and
        modification time.

        Args:
            path: File to describe.

        Returns:
            FileEntry, or None if the file is skipped, missing or not a
            regular file.
        """
        path = Path(os.path.abspath(path))
        if self.should_skip_name(path.name):
            return None
        try:
            stat = path.stat()
        except (FileNotFoundError, NotADirectoryError):
            return None
        except OSError as e:
            logger.warning(f"Cannot stat {path}: {e}")
            return None
        if not path.is_file():
            return None
        return FileEntry(
            path=path,
            size=stat.st_size,
            modified=stat.st_mtime,
            extension=split_extension(path.name),
        )

    def _list(self, directory: Path) -> List[os.DirEntry]:
        with os.scandir(directory) as it:
            return sorted(it, key=lambda e: e.name)

    def _may_descend(self, entry: os.DirEntry, root_real: str, visited: Set[str]) -> bool:
        if _is_hidden(entry.name):
            return False
        if not self.descend_category_folders and self.categories.is_category_folder(entry.name):
            return False
        real = os.path.realpath(entry.path)
        if entry.is_symlink():
            if not os.path.isdir(real):
                return False
            if os.path.commonpath([root_real, real]) != root_real:
                logger.debug(f"Not following symlink outside root: {entry.path}")
                return False
        if real in visited:
            return False
        decision = self.guard.check(entry.path)
        if not decision.allowed:
            logger.debug(f"Pruned {entry.path}: {decision.detail}")
            return False
        visited.add(real)
        return True

    def scan(self, root, recursive: bool = False) -> Iterator[FileEntry]:
        """Walk a directory and yield the files to organize.

        Entries are sorted by name within each directory and a directory's
        own files come before those of its subdirectories.

        Args:
            root: Target directory.
            recursive: Descend into subdirectories.

        Yields:
            FileEntry for each file found.

        Raises:
            InvalidTargetError: If the root is missing or not a directory.
        """
        root = Path(os.path.abspath(os.path.expanduser(str(root))))
        if not root.exists():
            raise InvalidTargetError(f"Directory not found: {root}", target=str(root))
        if not root.is_dir():
            raise InvalidTargetError(
                f"Not a directory: {root}",
                target=str(root),
                error_code=ErrorCode.TARGET_NOT_DIRECTORY,
            )

        root_real = os.path.realpath(root)
        visited: Set[str] = {root_real}
        stack: List[Path] = [root]

        while stack:
            directory = stack.pop()
            try:
                entries = self._list(directory)
            except OSError as e:
                if directory == root:
                    raise InvalidTargetError(
                        f"Cannot read directory {root}: {e}",
                        target=str(root),
                        cause=e,
                    )
                logger.warning(f"Skipping unreadable directory {directory}: {e}")
                continue

            subdirs: List[Path] = []
            for entry in entries:
                try:
                    is_dir = entry.is_dir()
                except OSError:
                    continue
                if is_dir:
                    if recursive and self._may_descend(entry, root_real, visited):
                        subdirs.append(Path(entry.path))
                    continue
                file_entry = self.entry_for(entry.path)
                if file_entry is not None:
                    yield file_entry

            # Reversed so the stack pops subdirectories in name order
            stack.extend(reversed(subdirs))

    def _category_counts(self, folder: Path) -> Counter:
        counts: Counter = Counter()
        stack = [folder]
        while stack:
            directory = stack.pop()
            try:
                entries = self._list(directory)
            except OSError:
                continue
            for entry in entries:
                if _is_hidden(entry.name) or entry.is_symlink():
                    continue
                if entry.is_dir():
                    stack.append(Path(entry.path))
                elif entry.name not in IGNORED_NAMES:
                    counts[self.categories.category_for(split_extension(entry.name))] += 1
        return counts

    def folder_candidates(self, root) -> List[FolderCandidate]:
        """Find immediate subfolders dominated by one category.

        A subfolder qualifies when at least DOMINANT_CATEGORY_THRESHOLD of
        the files below it share a category other than the fallback.
        Hidden, symlinked, category-named and guarded folders never qualify.

        Args:
            root: Target directory.

        Returns:
            Candidates sorted by folder name.
        """
        root = Path(os.path.abspath(os.path.expanduser(str(root))))
        candidates: List[FolderCandidate] = []

        for entry in self._list(root):
            if not entry.is_dir(follow_symlinks=False):
                continue
            if _is_hidden(entry.name) or self.categories.is_category_folder(entry.name):
                continue
            if not self.guard.check(entry.path).allowed:
                continue

            counts = self._category_counts(Path(entry.path))
            total = sum(counts.values())
            if not total:
                continue
            category, hits = counts.most_common(1)[0]
            share = hits / total
            if category == self.categories.fallback or share < DOMINANT_CATEGORY_THRESHOLD:
                continue
            candidates.append(FolderCandidate(Path(entry.path), category, share, total))
            logger.debug(f"Folder {entry.name} is {share:.0%} {category}")

        return candidates
