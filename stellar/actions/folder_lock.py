"""
Folder Lock
===========

Advisory per-folder lock that keeps two Stellar processes from
organizing the same folder at once.

The lock is a small ``key=value`` marker file created with
``O_CREAT | O_EXCL``. A marker left behind by a process that no longer
exists on this host is stale and gets reclaimed.
"""

import hashlib
import os
import socket
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from stellar.utils.exceptions import ErrorCode, LockBusyError, StellarError
from stellar.utils.logging_config import get_logger

logger = get_logger(__name__)

LOCK_FILENAME = ".stellar.lock"

# A marker that cannot be parsed may still be being written by its owner
UNREADABLE_GRACE_SECONDS = 10.0


@dataclass
class LockInfo:
    """Contents of a lock marker.

    Attributes:
        path: Locked folder.
        pid: Holder process ID.
        hostname: Host the holder runs on.
        token: Random token identifying this acquisition.
        acquired_at: ISO timestamp (UTC).
    """
    path: str
    pid: int
    hostname: str
    token: str
    acquired_at: str

    def to_text(self) -> str:
        return (
            f"path={self.path}\n"
            f"pid={self.pid}\n"
            f"hostname={self.hostname}\n"
            f"token={self.token}\n"
            f"acquired_at={self.acquired_at}\n"
        )

    @classmethod
    def from_text(cls, text: str) -> Optional["LockInfo"]:
        """Parse marker text, None if it is incomplete."""
        values = {}
        for line in text.splitlines():
            if "=" in line:
                key, value = line.split("=", 1)
                values[key.strip()] = value.strip()
        try:
            return cls(
                path=values["path"],
                pid=int(values["pid"]),
                hostname=values["hostname"],
                token=values["token"],
                acquired_at=values["acquired_at"],
            )
        except (KeyError, ValueError):
            return None


def pid_alive(pid: int) -> bool:
    """Check whether a process exists on this host."""
    if pid <= 0:
        return False
    if os.name == "nt":
        # Signal 0 terminates the process on Windows; assume it is alive
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class FolderLock:
    """A held lock. Use as a context manager to release it reliably.

    Example:
        >>> with LockManager().acquire(target) as lock:
        ...     organize(target)
    """

    def __init__(self, manager: "LockManager", marker: Path, info: LockInfo):
        self.manager = manager
        self.marker = marker
        self.info = info
        self.released = False

    def release(self) -> None:
        self.manager.release(self)

    def __enter__(self) -> "FolderLock":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False


class LockManager:
    """Creates and removes lock markers."""

    def __init__(self, lock_directory: Optional[Path] = None):
        """Initialize the lock manager.

        Args:
            lock_directory: Where markers live. When None the marker is
                            written inside the locked folder.
        """
        self.lock_directory = Path(lock_directory).expanduser() if lock_directory else None

    def marker_path(self, target: Path) -> Path:
        """Lock marker location for a folder."""
        canonical = Path(os.path.realpath(target))
        if self.lock_directory is None:
            return canonical / LOCK_FILENAME
        digest = hashlib.sha256(str(canonical).encode("utf-8")).hexdigest()[:16]
        safe = canonical.name.replace(" ", "_") or "root"
        return self.lock_directory / f"{safe}-{digest}.lock"

    def read(self, target: Path) -> Optional[LockInfo]:
        """Current holder of a folder's lock, if any."""
        try:
            text = self.marker_path(target).read_text(encoding="utf-8")
        except (FileNotFoundError, NotADirectoryError):
            return None
        return LockInfo.from_text(text)

    def _is_stale(self, marker: Path, info: Optional[LockInfo]) -> bool:
        if info is None:
            try:
                age = time.time() - marker.stat().st_mtime
            except FileNotFoundError:
                return True
            return age > UNREADABLE_GRACE_SECONDS
        if info.hostname != socket.gethostname():
            return False
        return not pid_alive(info.pid)

    def _create(self, marker: Path, info: LockInfo) -> bool:
        flags = os.O_WRONLY | os.O_CREAT | os.O_EXCL
        try:
            fd = os.open(str(marker), flags, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(info.to_text())
        return True

    def _reclaim(self, marker: Path, stale: Optional[LockInfo]) -> bool:
        """Move a stale marker out of the way.

        The marker is renamed to a unique tombstone first, so only the
        file that was judged stale is ever discarded. If the tombstone
        turns out to hold a newer marker, it is linked back in place.

        Returns:
            True if the marker slot is free to be created again.
        """
        tombstone = marker.with_name(f"{marker.name}.{uuid.uuid4().hex}.stale")
        try:
            os.rename(str(marker), str(tombstone))
        except FileNotFoundError:
            return True

        try:
            taken = LockInfo.from_text(tombstone.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return True

        if stale is None:
            unchanged = taken is None and self._is_stale(tombstone, None)
        else:
            unchanged = taken is not None and taken.token == stale.token
        if unchanged:
            tombstone.unlink()
            return True

        logger.debug(f"Lock on {marker.parent} changed hands during reclaim, restoring it")
        try:
            os.link(str(tombstone), str(marker))
        except FileExistsError:
            pass
        try:
            tombstone.unlink()
        except FileNotFoundError:
            pass
        return False

    def acquire(self, target: Path) -> FolderLock:
        """Take the lock on a folder.

        Args:
            target: Folder to lock.

        Returns:
            FolderLock, to be released when done.

        Raises:
            LockBusyError: If a live process holds the lock.
            StellarError: If the marker cannot be created.
        """
        canonical = Path(os.path.realpath(target))
        marker = self.marker_path(canonical)
        info = LockInfo(
            path=str(canonical),
            pid=os.getpid(),
            hostname=socket.gethostname(),
            token=uuid.uuid4().hex,
            acquired_at=datetime.now(timezone.utc).isoformat(timespec="seconds"),
        )

        try:
            marker.parent.mkdir(parents=True, exist_ok=True)
            for attempt in range(2):
                if self._create(marker, info):
                    logger.debug(f"Acquired lock {marker}")
                    return FolderLock(self, marker, info)

                holder = self.read(canonical)
                if attempt == 0 and self._is_stale(marker, holder):
                    owner = f"pid {holder.pid}" if holder else "unreadable marker"
                    logger.warning(f"Reclaiming stale lock on {canonical} ({owner})")
                    if self._reclaim(marker, holder):
                        continue
                    holder = self.read(canonical)

                pid_text = f" by pid {holder.pid}" if holder else ""
                raise LockBusyError(
                    f"{canonical} is being organized{pid_text}",
                    target=str(canonical),
                    holder=holder,
                )
        except OSError as e:
            raise StellarError(
                f"Cannot create lock marker {marker}: {e}",
                error_code=ErrorCode.LOCK_FAILED,
                details={"marker": str(marker)},
                cause=e,
            )

    def release(self, lock: FolderLock) -> None:
        """Remove a lock marker if it still carries this lock's token."""
        if lock.released:
            return
        lock.released = True
        try:
            current = LockInfo.from_text(lock.marker.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.warning(f"Lock marker already gone: {lock.marker}")
            return
        if current is None or current.token != lock.info.token:
            logger.warning(f"Lock marker {lock.marker} belongs to another holder, leaving it")
            return
        try:
            lock.marker.unlink()
            logger.debug(f"Released lock {lock.marker}")
        except FileNotFoundError:
            pass
