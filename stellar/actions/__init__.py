"""Actions module for file operations."""

from .renamer import Renamer, clean_name, slugify
from .conflict_resolver import ConflictResolver
from .history_tracker import (
    JournalStore,
    MoveRecord,
    Session,
    SessionStats,
    UndoFailure,
    UndoReport,
)
from .file_operations import (
    MoveEngine,
    MoveOperation,
    OperationOutcome,
    RunContext,
    SkipReason,
)
from .folder_lock import LockManager, FolderLock, LockInfo, LOCK_FILENAME

__all__ = [
    "Renamer",
    "clean_name",
    "slugify",
    "ConflictResolver",
    "JournalStore",
    "MoveRecord",
    "Session",
    "SessionStats",
    "UndoFailure",
    "UndoReport",
    "MoveEngine",
    "MoveOperation",
    "OperationOutcome",
    "RunContext",
    "SkipReason",
    "LockManager",
    "FolderLock",
    "LockInfo",
    "LOCK_FILENAME",
]
