"""
File Operations
===============

Safe file operations for organizing files.

The move engine performs one move at a time and never raises for
per-file problems: every failure becomes a skipped MoveOperation carrying
exactly one SkipReason, and the source is left untouched. The destination
name is claimed with an exclusive create before anything is moved onto it,
so an existing file is never replaced. Moves across filesystems fall back
to copy, verify, then delete.
"""

import errno
import os
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Set

from send2trash import send2trash

from stellar.actions.conflict_resolver import ConflictResolver
from stellar.actions.history_tracker import MoveRecord, Session
from stellar.deduplication.hash_engine import FullHasher
from stellar.scanning.path_guard import PathGuard
from stellar.scanning.scanner import FileEntry
from stellar.utils.exceptions import DeduplicationError
from stellar.utils.logging_config import get_logger

logger = get_logger(__name__)

# ERROR_NOT_SAME_DEVICE
_WINDOWS_NOT_SAME_DEVICE = 17

# Names taken by someone else between resolving and claiming
MAX_CLAIM_ATTEMPTS = 20


class OperationOutcome(Enum):
    """Result of a single operation."""

    SUCCESS = "success"
    SKIPPED = "skipped"


class SkipReason(Enum):
    """Why a file was left where it was."""

    PERMISSION_DENIED = "permission_denied"
    SOURCE_NOT_FOUND = "source_not_found"
    PROTECTED_PATH = "protected_path"
    CROSS_DEVICE_COPY_FAILED = "cross_device_copy_failed"
    DIRECTORY_CREATE_FAILED = "directory_create_failed"
    OTHER_IO_ERROR = "other_io_error"

    def describe(self) -> str:
        return self.value.replace("_", " ")


@dataclass
class MoveOperation:
    """Outcome of moving (or deleting) one item.

    Attributes:
        source: Item that was handled.
        destination: Final path, None for deletions and early skips.
        outcome: SUCCESS or SKIPPED.
        skip_reason: Set exactly when skipped.
        detail: Extra error text, mostly for OTHER_IO_ERROR.
        size: Size in bytes.
        renamed: Whether the final name differs from the original.
        dry_run: Planned only, nothing was touched.
        is_directory: A whole folder was handled.
    """

    source: Path
    destination: Optional[Path] = None
    outcome: OperationOutcome = OperationOutcome.SUCCESS
    skip_reason: Optional[SkipReason] = None
    detail: str = ""
    size: int = 0
    renamed: bool = False
    dry_run: bool = False
    is_directory: bool = False

    @property
    def succeeded(self) -> bool:
        return self.outcome is OperationOutcome.SUCCESS

    def describe(self) -> str:
        """Short human readable line."""
        if self.succeeded:
            target = self.destination if self.destination else "deleted"
            return f"{self.source.name} -> {target}"
        text = f"{self.source.name}: {self.skip_reason.describe()}"
        return f"{text} ({self.detail})" if self.detail else text


@dataclass
class RunContext:
    """State shared by every operation of one run.

    Attributes:
        target: Canonical target folder.
        session: In-progress session receiving moves and created folders.
        dry_run: Plan only.
        reserved: Destinations already planned in this dry run.
    """

    target: Path
    session: Session
    dry_run: bool = False
    reserved: Set[str] = field(default_factory=set)


class _VerificationError(Exception):
    """Copied data does not match the source."""


def _is_cross_device(error: OSError) -> bool:
    return (
        error.errno == errno.EXDEV
        or getattr(error, "winerror", None) == _WINDOWS_NOT_SAME_DEVICE
    )


def _skip_reason_for(error: OSError) -> SkipReason:
    if isinstance(error, PermissionError):
        return SkipReason.PERMISSION_DENIED
    if isinstance(error, FileNotFoundError):
        return SkipReason.SOURCE_NOT_FOUND
    return SkipReason.OTHER_IO_ERROR


def _tree_size(path: Path) -> int:
    total = 0
    for dirpath, _dirnames, filenames in os.walk(path):
        for name in filenames:
            total += os.lstat(os.path.join(dirpath, name)).st_size
    return total


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


class MoveEngine:
    """Moves files with conflict handling and cross-device fallback.

    Example:
        >>> engine = MoveEngine()
        >>> op = engine.execute(context, entry, target / "Documents", "report.pdf")
        >>> op.succeeded
        True
    """

    def __init__(
        self,
        guard: Optional[PathGuard] = None,
        resolver: Optional[ConflictResolver] = None,
        verify_checksum: bool = False
    ):
        """Initialize the engine.

        Args:
            guard: Path guard consulted before every move.
            resolver: Conflict resolver for destination names.
            verify_checksum: Compare SHA-256 after cross-device copies.
        """
        self.guard = guard or PathGuard()
        self.resolver = resolver or ConflictResolver()
        self.verify_checksum = verify_checksum
        self.hasher = FullHasher()

    # ------------------------------------------------------------------
    # Moves
    # ------------------------------------------------------------------

    def execute(
        self,
        context: RunContext,
        entry: FileEntry,
        destination_dir: Path,
        candidate_name: str,
        category: str = ""
    ) -> MoveOperation:
        """Move one scanned file into a destination folder.

        Args:
            context: Run context.
            entry: File to move.
            destination_dir: Absolute destination folder.
            candidate_name: Desired name, before conflict resolution.
            category: Category recorded in the session statistics.

        Returns:
            MoveOperation describing what happened.
        """
        return self._execute(
            context, entry.path, Path(destination_dir), candidate_name,
            size=entry.size, is_directory=False, category=category,
        )

    def execute_directory(
        self,
        context: RunContext,
        folder: Path,
        destination_dir: Path,
        category: str = ""
    ) -> MoveOperation:
        """Move a whole folder, keeping its name (suffixed on conflict)."""
        folder = Path(folder)
        return self._execute(
            context, folder, Path(destination_dir), folder.name,
            size=0, is_directory=True, category=category,
        )

    def _skip(
        self,
        context: RunContext,
        source: Path,
        reason: SkipReason,
        detail: str = "",
        destination: Optional[Path] = None,
        size: int = 0,
        is_directory: bool = False
    ) -> MoveOperation:
        context.session.record_skip()
        logger.warning(f"Skipped {source.name}: {reason.describe()} {detail}".rstrip())
        return MoveOperation(
            source=source,
            destination=destination,
            outcome=OperationOutcome.SKIPPED,
            skip_reason=reason,
            detail=detail,
            size=size,
            dry_run=context.dry_run,
            is_directory=is_directory,
        )

    def _execute(
        self,
        context: RunContext,
        source: Path,
        destination_dir: Path,
        candidate_name: str,
        size: int,
        is_directory: bool,
        category: str
    ) -> MoveOperation:
        if self.guard.is_protected(source) or self.guard.is_protected(destination_dir):
            return self._skip(context, source, SkipReason.PROTECTED_PATH,
                              size=size, is_directory=is_directory)

        if not context.dry_run:
            error = self._ensure_directory(context, destination_dir)
            if error is not None:
                return self._skip(context, source, SkipReason.DIRECTORY_CREATE_FAILED,
                                  detail=str(error), size=size, is_directory=is_directory)

        if not os.path.lexists(source):
            return self._skip(context, source, SkipReason.SOURCE_NOT_FOUND,
                              size=size, is_directory=is_directory)

        if context.dry_run:
            dest_path = self.resolver.resolve(destination_dir, candidate_name, context.reserved)
            context.reserved.add(str(dest_path))
            logger.info(f"[dry run] Would move: {source.name} -> {dest_path}")
            return MoveOperation(
                source=source, destination=dest_path, size=size,
                renamed=dest_path.name != source.name, dry_run=True,
                is_directory=is_directory,
            )

        try:
            dest_path = self._claim(destination_dir, candidate_name, is_directory)
        except OSError as e:
            return self._skip(context, source, _skip_reason_for(e), detail=str(e),
                              size=size, is_directory=is_directory)
        renamed = dest_path.name != source.name

        try:
            if is_directory and os.name == "nt":
                # Windows cannot replace a folder, even an empty one
                os.rmdir(dest_path)
            os.replace(source, dest_path)
        except OSError as e:
            if not _is_cross_device(e):
                self._release_claim(dest_path, is_directory)
                return self._skip(context, source, _skip_reason_for(e), detail=str(e),
                                  size=size, is_directory=is_directory)
            failure = self._move_across_devices(source, dest_path, is_directory)
            if failure is not None:
                reason, detail = failure
                return self._skip(context, source, reason, detail=detail,
                                  size=size, is_directory=is_directory)

        context.session.record_move(MoveRecord(
            source=str(source),
            destination=str(dest_path),
            size=size,
            is_directory=is_directory,
            category=category,
            renamed=renamed,
        ))
        logger.info(f"Moved: {source.name} -> {dest_path}")
        return MoveOperation(
            source=source, destination=dest_path, size=size,
            renamed=renamed, is_directory=is_directory,
        )

    def _claim(self, destination_dir: Path, candidate_name: str, is_directory: bool) -> Path:
        """Resolve a free name and create an empty placeholder there.

        The placeholder is created exclusively, so a name that something
        else took after it was resolved is never reused. The move then
        lands on the placeholder.

        Raises:
            OSError: If the placeholder cannot be created, or every
                attempt found the name taken.
        """
        for _ in range(MAX_CLAIM_ATTEMPTS):
            dest_path = self.resolver.resolve(destination_dir, candidate_name)
            try:
                if is_directory:
                    os.mkdir(dest_path)
                else:
                    fd = os.open(str(dest_path), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
                    os.close(fd)
            except FileExistsError:
                logger.debug(f"{dest_path.name} was taken after resolving, trying again")
                continue
            return dest_path
        raise FileExistsError(
            errno.EEXIST, "No free destination name", str(destination_dir / candidate_name)
        )

    @staticmethod
    def _release_claim(dest_path: Path, is_directory: bool) -> None:
        try:
            if is_directory:
                os.rmdir(dest_path)
            else:
                os.unlink(dest_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Could not remove placeholder {dest_path}: {e}")

    def _ensure_directory(self, context: RunContext, directory: Path) -> Optional[OSError]:
        """Create a folder and its missing ancestors, recording each one."""
        missing: List[Path] = []
        current = directory
        while not current.exists():
            missing.append(current)
            if current.parent == current:
                break
            current = current.parent

        for path in reversed(missing):
            try:
                path.mkdir()
            except FileExistsError:
                if not path.is_dir():
                    return FileExistsError(errno.EEXIST, "Not a directory", str(path))
                continue
            except OSError as e:
                return e
            context.session.record_created_dir(path)
            logger.debug(f"Created folder {path}")

        if not directory.is_dir():
            return NotADirectoryError(errno.ENOTDIR, "Not a directory", str(directory))
        return None

    def _move_across_devices(self, source: Path, dest_path: Path, is_directory: bool):
        """Copy onto the claimed placeholder, verify, then delete the source.

        Returns:
            None on success, otherwise a (SkipReason, detail) tuple. On
            failure the source is still in place and the placeholder is gone.
        """
        logger.debug(f"Cross-device move, copying {source} -> {dest_path}")
        try:
            if is_directory:
                shutil.copytree(source, dest_path, symlinks=True, dirs_exist_ok=True)
                if _tree_size(source) != _tree_size(dest_path):
                    raise _VerificationError("copied folder size differs")
            else:
                if os.path.islink(source):
                    # os.symlink never replaces, so the placeholder goes first
                    os.unlink(dest_path)
                    try:
                        os.symlink(os.readlink(source), dest_path)
                    except FileExistsError as e:
                        return SkipReason.CROSS_DEVICE_COPY_FAILED, str(e)
                else:
                    shutil.copy2(source, dest_path)
                if os.lstat(source).st_size != os.lstat(dest_path).st_size:
                    raise _VerificationError("copied file size differs")
                if (self.verify_checksum and not os.path.islink(source)
                        and self.hasher.compute(source) != self.hasher.compute(dest_path)):
                    raise _VerificationError("copied file checksum differs")
        except DeduplicationError as e:
            self._discard_partial(dest_path)
            return SkipReason.CROSS_DEVICE_COPY_FAILED, e.message
        except (OSError, _VerificationError) as e:
            self._discard_partial(dest_path)
            return SkipReason.CROSS_DEVICE_COPY_FAILED, str(e)

        try:
            if is_directory:
                shutil.rmtree(source)
            else:
                source.unlink()
        except OSError as e:
            if is_directory:
                # Some source files may be gone already, keep the complete copy
                return _skip_reason_for(e), f"copied to {dest_path} but source not removed: {e}"
            self._discard_partial(dest_path)
            return _skip_reason_for(e), str(e)

        return None

    @staticmethod
    def _discard_partial(dest_path: Path) -> None:
        if not os.path.lexists(dest_path):
            return
        try:
            _remove(dest_path)
        except OSError as e:
            logger.error(f"Could not remove partial copy {dest_path}: {e}")

    # ------------------------------------------------------------------
    # Deletion and undo
    # ------------------------------------------------------------------

    def delete(self, context: RunContext, path: Path, use_trash: bool = False) -> MoveOperation:
        """Delete a file permanently or send it to the system trash.

        Args:
            context: Run context.
            path: File to delete.
            use_trash: Use the system trash instead of unlinking.

        Returns:
            MoveOperation with no destination.
        """
        path = Path(path)
        try:
            size = os.lstat(path).st_size
        except OSError:
            size = 0

        if self.guard.is_protected(path):
            return self._skip(context, path, SkipReason.PROTECTED_PATH, size=size)
        if not os.path.lexists(path):
            return self._skip(context, path, SkipReason.SOURCE_NOT_FOUND)

        if context.dry_run:
            logger.info(f"[dry run] Would delete: {path}")
            return MoveOperation(source=path, size=size, dry_run=True)

        try:
            if use_trash:
                send2trash(str(path))
            else:
                path.unlink()
        except OSError as e:
            return self._skip(context, path, _skip_reason_for(e), detail=str(e), size=size)

        logger.info(f"{'Trashed' if use_trash else 'Deleted'}: {path}")
        return MoveOperation(source=path, size=size)

    def restore(self, record: MoveRecord) -> Optional[str]:
        """Move a recorded item back to its original path.

        Args:
            record: Move to reverse.

        Returns:
            None on success, otherwise the reason it could not be restored.
        """
        source = Path(record.source)
        destination = Path(record.destination)

        if not os.path.lexists(destination):
            return "moved item no longer exists"
        if os.path.lexists(source):
            return "original path is occupied"
        if self.guard.is_protected(source):
            return "original path is protected"

        try:
            source.parent.mkdir(parents=True, exist_ok=True)
            os.rename(destination, source)
        except OSError as e:
            if not _is_cross_device(e):
                return str(e)
            try:
                shutil.move(str(destination), str(source))
            except OSError as move_error:
                return str(move_error)
        return None
