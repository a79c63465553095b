"""
History Tracker
================

Records organization sessions and provides undo functionality.

Each target folder has its own JSON journal under the shared state
directory. A session is one batch run (or one file handled by the
watcher) and holds every move it made plus the folders it created, which
is exactly what undo needs to put things back.
"""

import hashlib
import json
import os
import tempfile
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

from stellar.actions.renamer import slugify
from stellar.utils.exceptions import ErrorCode, JournalError
from stellar.utils.formatting import format_duration, format_size
from stellar.utils.logging_config import get_logger

logger = get_logger(__name__)

JOURNAL_VERSION = 1


@dataclass
class MoveRecord:
    """Record of a single completed move.

    Attributes:
        source: Original path.
        destination: Path the file or folder now lives at.
        size: Size in bytes (0 for folders).
        is_directory: Whether a whole folder was moved.
        category: Category folder the item went to, if any.
        renamed: Whether the name changed.
    """

    source: str
    destination: str
    size: int = 0
    is_directory: bool = False
    category: str = ""
    renamed: bool = False

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "MoveRecord":
        """Create from dictionary."""
        return cls(**data)


@dataclass
class SessionStats:
    """Counters for one session."""

    files_moved: int = 0
    folders_moved: int = 0
    files_renamed: int = 0
    bytes_moved: int = 0
    skipped_count: int = 0
    duration_ms: float = 0.0
    by_category: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "SessionStats":
        return cls(**data)


@dataclass
class Session:
    """One organization run against a target folder.

    Attributes:
        id: Session identifier, also used as the log correlation ID.
        target: Canonical target folder.
        started_at: ISO timestamp of the run start.
        origin: "batch" or "watch".
        moves: Completed moves in chronological order.
        created_dirs: Folders created by this session.
        stats: Session counters.
        undone: Set once undo has reversed this session.
    """

    id: str
    target: str
    started_at: str
    origin: str = "batch"
    moves: List[MoveRecord] = field(default_factory=list)
    created_dirs: List[str] = field(default_factory=list)
    stats: SessionStats = field(default_factory=SessionStats)
    undone: bool = False

    @classmethod
    def start(cls, target: Path, origin: str = "batch") -> "Session":
        """Begin a new in-progress session."""
        return cls(
            id=uuid.uuid4().hex[:12],
            target=str(target),
            started_at=datetime.now().isoformat(timespec="seconds"),
            origin=origin,
        )

    @property
    def is_empty(self) -> bool:
        return not self.moves and not self.created_dirs

    def record_move(self, record: MoveRecord) -> None:
        """Append a completed move and update the counters."""
        self.moves.append(record)
        if record.is_directory:
            self.stats.folders_moved += 1
        else:
            self.stats.files_moved += 1
            self.stats.bytes_moved += record.size
        if record.renamed:
            self.stats.files_renamed += 1
        if record.category:
            self.stats.by_category[record.category] = (
                self.stats.by_category.get(record.category, 0) + 1
            )

    def record_skip(self) -> None:
        self.stats.skipped_count += 1

    def record_created_dir(self, path: Path) -> None:
        path = str(path)
        if path not in self.created_dirs:
            self.created_dirs.append(path)

    def summary(self) -> str:
        """One-line description used by history listings."""
        started = self.started_at.replace("T", " ")[:16]
        parts = [f"{started}  {self.origin:<5}  {self.stats.files_moved} files"]
        if self.stats.folders_moved:
            parts.append(f"{self.stats.folders_moved} folders")
        parts.append(format_size(self.stats.bytes_moved))
        if self.stats.skipped_count:
            parts.append(f"{self.stats.skipped_count} skipped")
        if self.stats.duration_ms:
            parts.append(format_duration(self.stats.duration_ms))
        line = ", ".join(parts)
        return f"{line}  [undone]" if self.undone else line

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "target": self.target,
            "started_at": self.started_at,
            "origin": self.origin,
            "moves": [m.to_dict() for m in self.moves],
            "created_dirs": list(self.created_dirs),
            "stats": self.stats.to_dict(),
            "undone": self.undone,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Session":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            target=data["target"],
            started_at=data["started_at"],
            origin=data.get("origin", "batch"),
            moves=[MoveRecord.from_dict(m) for m in data.get("moves", [])],
            created_dirs=list(data.get("created_dirs", [])),
            stats=SessionStats.from_dict(data.get("stats", {})),
            undone=data.get("undone", False),
        )


@dataclass
class UndoFailure:
    """A move that could not be reversed."""

    source: str
    destination: str
    reason: str


@dataclass
class UndoReport:
    """Outcome of an undo.

    Attributes:
        session_id: Session that was reversed, None if nothing to undo.
        restored: Moves put back.
        failed: Moves that could not be put back.
        removed_dirs: Created folders removed afterwards.
    """

    session_id: Optional[str] = None
    restored: List[MoveRecord] = field(default_factory=list)
    failed: List[UndoFailure] = field(default_factory=list)
    removed_dirs: List[str] = field(default_factory=list)

    @property
    def nothing_to_undo(self) -> bool:
        return self.session_id is None


# Returns None on success, otherwise the reason the move could not be reversed
RestoreFunc = Callable[[MoveRecord], Optional[str]]


class JournalStore:
    """Persists sessions per target and reverses the latest one.

    Journals are rewritten atomically (temporary file + ``os.replace``),
    so a crash never leaves a half-written journal behind.
    """

    def __init__(self, state_directory: Path, max_sessions: int = 50):
        """Initialize the journal store.

        Args:
            state_directory: Shared state directory.
            max_sessions: Sessions retained per target.
        """
        self.state_directory = Path(state_directory).expanduser()
        self.journal_dir = self.state_directory / "journals"
        self.max_sessions = max_sessions

    def journal_path(self, target: Path) -> Path:
        """Journal file for a target folder."""
        canonical = os.path.realpath(target)
        digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]
        name = slugify(Path(canonical).name) or "root"
        return self.journal_dir / f"{name}-{digest}.json"

    def _load(self, target: Path) -> List[Session]:
        path = self.journal_path(target)
        if not path.exists():
            return []
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return [Session.from_dict(s) for s in data.get("sessions", [])]
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
            raise JournalError(
                f"Journal is corrupted: {path}",
                journal_path=str(path),
                error_code=ErrorCode.JOURNAL_CORRUPTED,
                cause=e,
            )
        except OSError as e:
            raise JournalError(
                f"Cannot read journal: {path}",
                journal_path=str(path),
                error_code=ErrorCode.JOURNAL_CORRUPTED,
                cause=e,
            )

    def _save(self, target: Path, sessions: List[Session]) -> None:
        path = self.journal_path(target)

        # Trim history if too large
        sessions = sessions[-self.max_sessions:]
        data = {
            "version": JOURNAL_VERSION,
            "target": os.path.realpath(target),
            "sessions": [s.to_dict() for s in sessions],
        }

        tmp_name = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=path.parent,
                prefix=f".{path.stem}-", suffix=".tmp", delete=False
            ) as f:
                tmp_name = f.name
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise JournalError(
                f"Cannot write journal: {path}",
                journal_path=str(path),
                cause=e,
            )

    def check_readable(self, target: Path) -> None:
        """Raise JournalError now rather than after files have moved."""
        self._load(target)

    def commit(self, session: Session) -> bool:
        """Append a finished session to its target's journal.

        Sessions without any move or created folder are not recorded.

        Returns:
            True if the session was written.
        """
        if session.is_empty:
            logger.debug(f"Session {session.id} made no changes, not journaled")
            return False
        target = Path(session.target)
        sessions = self._load(target)
        sessions.append(session)
        self._save(target, sessions)
        logger.debug(f"Committed session {session.id} ({len(session.moves)} moves)")
        return True

    def last(self, target: Path) -> Optional[Session]:
        """Most recent session for a target, or None."""
        sessions = self._load(target)
        return sessions[-1] if sessions else None

    def history(self, target: Path, count: int = 10) -> List[Session]:
        """Get recent sessions.

        Args:
            target: Target folder.
            count: Number of sessions to return.

        Returns:
            List of recent sessions (newest first).
        """
        sessions = self._load(target)
        return list(reversed(sessions[-count:])) if count > 0 else []

    def undo(self, target: Path, restore: RestoreFunc) -> UndoReport:
        """Reverse the most recent session of a target.

        Only a single level of undo is supported: once the latest session
        is flagged undone, further calls report nothing to undo.

        Args:
            target: Target folder.
            restore: Moves one record back to its source.

        Returns:
            UndoReport listing restored and failed moves.
        """
        sessions = self._load(target)
        if not sessions or sessions[-1].undone:
            logger.info("Nothing to undo")
            return UndoReport()

        session = sessions[-1]
        report = UndoReport(session_id=session.id)

        for record in reversed(session.moves):
            reason = restore(record)
            if reason is None:
                report.restored.append(record)
                logger.info(f"Undone: {Path(record.destination).name} -> {record.source}")
            else:
                report.failed.append(UndoFailure(record.source, record.destination, reason))
                logger.warning(f"Cannot undo {record.destination}: {reason}")

        report.removed_dirs = self._remove_created_dirs(session)

        session.undone = True
        self._save(target, sessions)
        return report

    @staticmethod
    def _remove_created_dirs(session: Session) -> List[str]:
        root = Path(os.path.realpath(session.target))
        removed: List[str] = []
        # Deepest first so parents empty out before they are checked
        for directory in sorted(session.created_dirs, key=lambda d: len(Path(d).parts), reverse=True):
            path = Path(directory)
            canonical = Path(os.path.realpath(path))
            if canonical == root or root not in canonical.parents:
                continue
            try:
                if path.is_dir() and not any(path.iterdir()):
                    path.rmdir()
                    removed.append(directory)
            except OSError as e:
                logger.debug(f"Keeping {path}: {e}")
        return removed
