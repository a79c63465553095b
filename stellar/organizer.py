"""
Stellar - Folder Organizer
==========================

Orchestration for organizing a folder: the single entry point used by
command-line or interactive front ends.

A batch run goes: lock -> scan -> classify and rename each file -> move
-> commit the session to the journal -> unlock. Watch mode feeds the
same single-file pipeline from filesystem events.
"""

import functools
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

from stellar.actions.conflict_resolver import ConflictResolver
from stellar.actions.file_operations import MoveEngine, MoveOperation, RunContext
from stellar.actions.folder_lock import FolderLock, LockManager
from stellar.actions.history_tracker import JournalStore, Session, UndoReport
from stellar.actions.renamer import Renamer
from stellar.classification.classifier import Classifier
from stellar.config.modes import OrganizationMode, RenameMode
from stellar.config.settings import Config
from stellar.deduplication.hash_engine import DuplicateDetector, DuplicateReport
from stellar.monitoring.watcher import Watcher
from stellar.scanning.path_guard import PathGuard
from stellar.scanning.scanner import FileEntry, Scanner
from stellar.utils.exceptions import (
    DeduplicationError,
    ErrorCode,
    InvalidTargetError,
    JournalError,
)
from stellar.utils.formatting import format_duration, format_size
from stellar.utils.logging_config import (
    LogContext,
    Timer,
    get_logger,
    set_correlation_id,
    setup_logging,
)

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_WITH_SKIPS = 2


class RunOutcome(Enum):
    """Overall result of a batch run."""
    CLEAN = "clean"
    COMPLETED_WITH_SKIPS = "completed_with_skips"
    NOTHING_TO_DO = "nothing_to_do"
    DRY_RUN = "dry_run"


@dataclass
class RunReport:
    """Everything a front end needs to present a finished run.

    Attributes:
        target: Organized folder.
        session: Session with statistics (journaled unless dry run).
        operations: Every attempted operation, in order.
        dry_run: Nothing was touched.
        committed: Session was written to the journal.
    """
    target: Path
    session: Session
    operations: List[MoveOperation] = field(default_factory=list)
    dry_run: bool = False
    committed: bool = False

    @property
    def moved(self) -> List[MoveOperation]:
        return [op for op in self.operations if op.succeeded]

    @property
    def skipped(self) -> List[MoveOperation]:
        return [op for op in self.operations if not op.succeeded]

    @property
    def outcome(self) -> RunOutcome:
        if not self.operations:
            return RunOutcome.NOTHING_TO_DO
        if self.dry_run:
            return RunOutcome.DRY_RUN
        if self.skipped:
            return RunOutcome.COMPLETED_WITH_SKIPS
        return RunOutcome.CLEAN

    @property
    def exit_code(self) -> int:
        if self.outcome is RunOutcome.COMPLETED_WITH_SKIPS:
            return EXIT_WITH_SKIPS
        return EXIT_OK

    def skipped_preview(self, limit: int = 10) -> List[str]:
        """Describe the first skipped files, plus a line for the rest."""
        skipped = self.skipped
        lines = [op.describe() for op in skipped[:limit]]
        if len(skipped) > limit:
            lines.append(f"... and {len(skipped) - limit} more")
        return lines

    def summary(self) -> str:
        stats = self.session.stats
        verb = "Would move" if self.dry_run else "Moved"
        count = len(self.moved)
        line = f"{verb} {count} items ({format_size(sum(op.size for op in self.moved))})"
        if self.skipped:
            line += f", {len(self.skipped)} skipped"
        if stats.duration_ms:
            line += f" in {format_duration(stats.duration_ms)}"
        return line


@dataclass
class DuplicateRemovalReport:
    """Outcome of removing duplicates."""
    removed: List[MoveOperation] = field(default_factory=list)
    skipped: List[MoveOperation] = field(default_factory=list)
    dry_run: bool = False

    @property
    def freed_bytes(self) -> int:
        return sum(op.size for op in self.removed)


class FolderOrganizer:
    """Main orchestrator for Stellar.

    Coordinates scanning, classification, renaming, moving, journaling,
    duplicate detection and watch mode for one folder at a time.

    Example:
        >>> organizer = FolderOrganizer()
        >>> report = organizer.organize("~/Downloads", dry_run=True)
        >>> print(report.summary())
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        config_path: Optional[Path] = None,
        configure_logging: bool = False
    ):
        """Initialize the organizer.

        Args:
            config: Configuration. Loaded from disk if omitted.
            config_path: Configuration file to load when ``config`` is None.
            configure_logging: Install the console and file log handlers.
        """
        self.config = config if config is not None else Config.load(config_path)

        if configure_logging:
            setup_logging(self.config.logging)

        self._init_components()

    def _init_components(self) -> None:
        """Initialize all processing components."""
        config = self.config

        self.guard = PathGuard(config.protection)
        self.scanner = Scanner(
            categories=config.categories,
            guard=self.guard,
            include_extensionless=config.organization.include_extensionless,
        )
        # Duplicate search also looks inside already organized folders
        self.duplicate_scanner = Scanner(
            categories=config.categories,
            guard=self.guard,
            include_extensionless=True,
            descend_category_folders=True,
        )
        self.classifier = Classifier(config.categories)
        self.renamer = Renamer()
        self.engine = MoveEngine(
            guard=self.guard,
            resolver=ConflictResolver(),
            verify_checksum=config.organization.verify_checksum,
        )
        self.detector = DuplicateDetector(
            use_partial_hash=config.deduplication.use_partial_hash,
            chunk_size=config.deduplication.partial_hash_size,
        )
        self.journal = JournalStore(
            config.state.state_directory,
            max_sessions=config.state.max_sessions,
        )
        self.locks = LockManager(config.state.lock_directory)

        logger.debug("All components initialized")

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def preflight(self, target: Union[str, Path]) -> Path:
        """Validate a target folder before anything is touched.

        Args:
            target: Folder to organize.

        Returns:
            Canonical path of the folder.

        Raises:
            InvalidTargetError: If it is missing or not a directory.
            ProtectedPathError: If a protection rule rejects it.
        """
        literal = Path(os.path.abspath(os.path.expanduser(str(target))))
        if not literal.exists():
            raise InvalidTargetError(f"Directory not found: {literal}", target=str(literal))
        if not literal.is_dir():
            raise InvalidTargetError(
                f"Not a directory: {literal}",
                target=str(literal),
                error_code=ErrorCode.TARGET_NOT_DIRECTORY,
            )
        self.guard.ensure_allowed(literal)
        return Path(os.path.realpath(literal))

    # ------------------------------------------------------------------
    # Organizing
    # ------------------------------------------------------------------

    def _organize_entry(
        self,
        context: RunContext,
        entry: FileEntry,
        mode: OrganizationMode,
        rename_mode: RenameMode
    ) -> Optional[MoveOperation]:
        """Single-file pipeline: classify, rename, move."""
        relative = self.classifier.classify(entry, mode)
        destination_dir = context.target.joinpath(*relative.parts)
        name = self.renamer.rename(entry, rename_mode)

        if destination_dir / name == entry.path:
            logger.debug(f"Already in place: {entry.path}")
            return None

        with LogContext(logger, file_path=str(entry.path), session_id=context.session.id):
            return self.engine.execute(
                context, entry, destination_dir, name,
                category=self.classifier.category_of(entry),
            )

    def _commit(self, session: Session, completed: bool) -> bool:
        """Journal a batch session, including one cut short midway.

        A journal failure after an interrupted batch is logged so the
        interruption itself still propagates.
        """
        if completed:
            return self.journal.commit(session)
        try:
            committed = self.journal.commit(session)
        except JournalError as e:
            logger.error(f"Could not journal interrupted session {session.id}: {e.message}")
            return False
        if committed:
            logger.warning(
                f"Run interrupted, journaled {len(session.moves)} completed moves "
                f"of session {session.id}"
            )
        return committed

    def _acquire(self, target: Path, dry_run: bool) -> Optional[FolderLock]:
        if dry_run:
            return None
        self.journal.check_readable(target)
        return self.locks.acquire(target)

    def organize(
        self,
        target: Union[str, Path],
        mode: Optional[OrganizationMode] = None,
        rename_mode: Optional[RenameMode] = None,
        recursive: Optional[bool] = None,
        dry_run: Optional[bool] = None
    ) -> RunReport:
        """Organize a folder.

        Options default to the configured values.

        Args:
            target: Folder to organize.
            mode: Organization mode.
            rename_mode: Rename mode.
            recursive: Also organize files in subfolders.
            dry_run: Only report what would happen.

        Returns:
            RunReport for the run.

        Raises:
            InvalidTargetError: If the folder is missing or not a directory.
            ProtectedPathError: If the folder is protected.
            LockBusyError: If another process is organizing the folder.
            JournalError: If the journal cannot be read or written.
        """
        options = self.config.organization
        mode = OrganizationMode.parse(mode) if mode is not None else options.mode
        rename_mode = RenameMode.parse(rename_mode) if rename_mode is not None else options.rename_mode
        recursive = options.recursive if recursive is None else recursive
        dry_run = options.dry_run if dry_run is None else dry_run

        target = self.preflight(target)
        session = Session.start(target, origin="batch")
        set_correlation_id(session.id)
        context = RunContext(target=target, session=session, dry_run=dry_run)
        report = RunReport(target=target, session=session, dry_run=dry_run)

        logger.info(
            f"Organizing {target} (mode={mode.value}, rename={rename_mode.value}, "
            f"recursive={recursive}, dry_run={dry_run})"
        )

        lock = self._acquire(target, dry_run)
        completed = False
        try:
            with Timer(logger, "organize") as timer:
                if (not recursive and options.organize_folders
                        and mode in (OrganizationMode.CATEGORY, OrganizationMode.HYBRID)):
                    for candidate in self.scanner.folder_candidates(target):
                        report.operations.append(self.engine.execute_directory(
                            context, candidate.path, target / candidate.category,
                            category=candidate.category,
                        ))

                for entry in self.scanner.scan(target, recursive=recursive):
                    operation = self._organize_entry(context, entry, mode, rename_mode)
                    if operation is not None:
                        report.operations.append(operation)

            session.stats.duration_ms = round(timer.duration_ms, 2)
            completed = True
        finally:
            try:
                if not dry_run:
                    report.committed = self._commit(session, completed)
            finally:
                if lock is not None:
                    lock.release()

        logger.info(report.summary())
        return report

    def organize_file(
        self,
        target: Path,
        path: Path,
        mode: Optional[OrganizationMode] = None,
        rename_mode: Optional[RenameMode] = None,
        dry_run: bool = False
    ) -> Optional[MoveOperation]:
        """Organize one file of an already validated and locked folder.

        Used by watch mode; each file becomes its own session.

        Returns:
            The operation, or None if the file is skipped by name or
            already in place.
        """
        options = self.config.organization
        mode = mode or options.mode
        rename_mode = rename_mode or options.rename_mode

        entry = self.scanner.entry_for(path)
        if entry is None:
            return None

        session = Session.start(target, origin="watch")
        set_correlation_id(session.id)
        context = RunContext(target=Path(target), session=session, dry_run=dry_run)

        operation = self._organize_entry(context, entry, mode, rename_mode)
        if not dry_run:
            self.journal.commit(session)
        return operation

    # ------------------------------------------------------------------
    # Watch mode
    # ------------------------------------------------------------------

    def create_watcher(
        self,
        target: Union[str, Path],
        mode: Optional[OrganizationMode] = None,
        rename_mode: Optional[RenameMode] = None,
        observer=None
    ) -> Watcher:
        """Build a watcher for a folder without starting it."""
        target = self.preflight(target)
        mode = OrganizationMode.parse(mode) if mode is not None else None
        rename_mode = RenameMode.parse(rename_mode) if rename_mode is not None else None
        handle_file = functools.partial(
            self.organize_file, target, mode=mode, rename_mode=rename_mode
        )
        return Watcher(
            target,
            handle_file,
            lock_manager=self.locks,
            config=self.config.watcher,
            observer=observer,
        )

    def watch(
        self,
        target: Union[str, Path],
        mode: Optional[OrganizationMode] = None,
        rename_mode: Optional[RenameMode] = None,
        install_signal_handlers: bool = True
    ) -> Watcher:
        """Watch a folder until interrupted.

        Raises:
            LockBusyError: If another process is organizing the folder.

        Returns:
            The stopped watcher, for its counters.
        """
        watcher = self.create_watcher(target, mode=mode, rename_mode=rename_mode)
        watcher.run(install_signal_handlers=install_signal_handlers)
        return watcher

    # ------------------------------------------------------------------
    # Duplicates
    # ------------------------------------------------------------------

    def find_duplicates(
        self,
        target: Union[str, Path],
        recursive: Optional[bool] = None
    ) -> DuplicateReport:
        """Find files with identical content. Never deletes anything."""
        recursive = self.config.organization.recursive if recursive is None else recursive
        target = self.preflight(target)
        with Timer(logger, "find_duplicates"):
            return self.detector.find_duplicates(
                self.duplicate_scanner.scan(target, recursive=recursive)
            )

    def remove_duplicates(
        self,
        target: Union[str, Path],
        report: DuplicateReport,
        keep: Union[str, int] = "first",
        use_trash: Optional[bool] = None,
        dry_run: bool = False
    ) -> DuplicateRemovalReport:
        """Delete all but one file of each duplicate group.

        Content is re-checked before each deletion, so a file changed
        since the search is never removed.

        Args:
            target: Folder the report was made for.
            report: Result of find_duplicates.
            keep: "first", or the index of the member to keep.
            use_trash: Send files to the system trash. Configured default
                       if None.
            dry_run: Only report what would be deleted.

        Returns:
            DuplicateRemovalReport with removed files and freed bytes.

        Raises:
            ValueError: If ``keep`` is not "first" or an integer.
        """
        if keep == "first":
            keep_index = 0
        elif isinstance(keep, int) and not isinstance(keep, bool):
            keep_index = keep
        else:
            raise ValueError(f"keep must be 'first' or an index, got {keep!r}")
        use_trash = self.config.deduplication.use_trash if use_trash is None else use_trash

        target = self.preflight(target)
        session = Session.start(target, origin="dedup")
        set_correlation_id(session.id)
        context = RunContext(target=target, session=session, dry_run=dry_run)
        result = DuplicateRemovalReport(dry_run=dry_run)

        lock = None if dry_run else self.locks.acquire(target)
        try:
            for group in report.groups:
                if not -len(group.files) <= keep_index < len(group.files):
                    logger.warning(f"Keep index {keep_index} out of range for group {group.hash[:12]}")
                    continue
                kept = group.files[keep_index]
                try:
                    kept_hash = self.detector.full_hasher.compute(kept)
                except DeduplicationError as e:
                    logger.warning(f"Kept file unreadable, leaving group alone: {e.message}")
                    continue
                if kept_hash != group.hash:
                    logger.warning(f"Kept file changed since scan, leaving group alone: {kept}")
                    continue

                for path in group.files:
                    if path == kept:
                        continue
                    try:
                        unchanged = self.detector.full_hasher.compute(path) == group.hash
                    except DeduplicationError:
                        unchanged = False
                    if not unchanged:
                        logger.warning(f"Not deleting {path}: content changed since scan")
                        continue
                    operation = self.engine.delete(context, path, use_trash=use_trash)
                    if operation.succeeded:
                        result.removed.append(operation)
                    else:
                        result.skipped.append(operation)
        finally:
            if lock is not None:
                lock.release()

        logger.info(
            f"Removed {len(result.removed)} duplicates, "
            f"freed {format_size(result.freed_bytes)}"
        )
        return result

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def undo(self, target: Union[str, Path]) -> UndoReport:
        """Reverse the most recent session for a folder.

        Raises:
            LockBusyError: If another process is organizing the folder.
        """
        target = self.preflight(target)
        lock = self._acquire(target, dry_run=False)
        try:
            with Timer(logger, "undo"):
                report = self.journal.undo(target, self.engine.restore)
        finally:
            lock.release()

        if not report.nothing_to_undo:
            set_correlation_id(report.session_id)
            logger.info(
                f"Undo restored {len(report.restored)} items, "
                f"{len(report.failed)} failed, removed {len(report.removed_dirs)} folders"
            )
        return report

    def history(self, target: Union[str, Path], count: int = 10) -> List[Session]:
        """Recent sessions for a folder, newest first."""
        return self.journal.history(self.preflight(target), count)
