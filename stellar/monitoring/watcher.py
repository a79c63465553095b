"""
Filesystem Watcher
==================

Monitors a target folder and organizes new files as they arrive.

The watchdog observer thread only enqueues paths. Every file is handled
on the thread that runs the watcher loop, one at a time, after its events
have been quiet for the debounce delay. The target's folder lock is held
for the watcher's whole lifetime.

State machine: IDLE -> WATCHING -> DRAINING -> STOPPED
"""

import queue
import signal
import threading
import time
from collections import OrderedDict
from enum import Enum
from fnmatch import fnmatch
from pathlib import Path
from typing import Any, Callable, List, Optional

from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler

from stellar.actions.folder_lock import FolderLock, LockManager
from stellar.config.settings import WatcherConfig
from stellar.utils.exceptions import StellarError
from stellar.utils.logging_config import get_logger

logger = get_logger(__name__)

EVENT_CREATED = "created"
EVENT_MODIFIED = "modified"


class WatcherState(Enum):
    """Lifecycle of a watcher."""
    IDLE = "idle"
    WATCHING = "watching"
    DRAINING = "draining"
    STOPPED = "stopped"


class DebounceTracker:
    """Tracks file events for debouncing.

    A path becomes due once no event has been seen for it during the
    debounce delay. Only used from the watcher loop thread.
    """

    def __init__(self, debounce_seconds: float = 0.5, clock: Callable[[], float] = time.monotonic):
        """Initialize the debounce tracker.

        Args:
            debounce_seconds: Quiet time required before a file is handled.
            clock: Monotonic time source.
        """
        self.debounce_seconds = debounce_seconds
        self._clock = clock
        self._pending: "OrderedDict[str, float]" = OrderedDict()

    def __contains__(self, file_path: str) -> bool:
        return file_path in self._pending

    def __len__(self) -> int:
        return len(self._pending)

    def touch(self, file_path: str) -> None:
        """Record an event, restarting the file's quiet period."""
        self._pending[file_path] = self._clock() + self.debounce_seconds

    def pop_due(self) -> List[str]:
        """Remove and return paths whose quiet period has elapsed, oldest first."""
        now = self._clock()
        due = [path for path, deadline in self._pending.items() if deadline <= now]
        for path in due:
            del self._pending[path]
        return due

    def seconds_until_next(self) -> Optional[float]:
        if not self._pending:
            return None
        return max(0.0, min(self._pending.values()) - self._clock())

    def clear_all(self) -> int:
        """Drop every pending path, returning how many were dropped."""
        count = len(self._pending)
        self._pending.clear()
        return count


class OrganizerEventHandler(FileSystemEventHandler):
    """Custom event handler for file organization.

    Filters events based on ignore patterns and enqueues file paths.
    Runs on the watchdog observer thread, so it never touches files.
    """

    def __init__(self, event_queue: queue.Queue, config: WatcherConfig):
        """Initialize the event handler.

        Args:
            event_queue: Queue shared with the watcher loop.
            config: Watcher configuration.
        """
        super().__init__()
        self.queue = event_queue
        self.config = config

    def _should_ignore(self, file_path: str) -> bool:
        """Check if file matches ignore patterns.

        Args:
            file_path: Path to check.

        Returns:
            True if file should be ignored.
        """
        name = Path(file_path).name
        if name.startswith("."):
            return True
        return any(
            fnmatch(name, pattern)
            for pattern in self.config.ignore_patterns
        )

    def _enqueue(self, kind: str, file_path) -> None:
        file_path = str(file_path)
        if self._should_ignore(file_path):
            logger.debug(f"Ignoring file (matches pattern): {file_path}")
            return
        self.queue.put((kind, file_path))

    def on_created(self, event) -> None:
        """Handle file creation events."""
        if event.is_directory:
            return
        logger.debug(f"File created event: {event.src_path}")
        self._enqueue(EVENT_CREATED, event.src_path)

    def on_moved(self, event) -> None:
        """Handle files renamed or moved into the folder."""
        if event.is_directory:
            return
        logger.debug(f"File moved event: {event.dest_path}")
        self._enqueue(EVENT_CREATED, event.dest_path)

    def on_modified(self, event) -> None:
        """Handle file modification events.

        Modifications only extend the quiet period of files already
        pending, so a file still being written is not picked up early.
        """
        if event.is_directory:
            return
        self._enqueue(EVENT_MODIFIED, event.src_path)


class Watcher:
    """Watches one folder and hands each settled file to a callback.

    Example:
        >>> watcher = Watcher(target, organizer.organize_file, LockManager())
        >>> watcher.run(install_signal_handlers=True)
    """

    def __init__(
        self,
        target: Path,
        handle_file: Callable[[Path], Any],
        lock_manager: Optional[LockManager] = None,
        config: Optional[WatcherConfig] = None,
        observer=None
    ):
        """Initialize the watcher.

        Args:
            target: Folder to watch.
            handle_file: Single-file pipeline, called on the loop thread.
            lock_manager: Lock manager used to hold the target lock.
            config: Watcher configuration.
            observer: watchdog observer, a new Observer if omitted.
        """
        self.target = Path(target)
        self.handle_file = handle_file
        self.lock_manager = lock_manager or LockManager()
        self.config = config or WatcherConfig()
        self.observer = observer if observer is not None else Observer()

        self.events: queue.Queue = queue.Queue()
        self.handler = OrganizerEventHandler(self.events, self.config)
        self.debouncer = DebounceTracker(self.config.debounce_seconds)

        self.state = WatcherState.IDLE
        self.processed = 0
        self.dropped = 0

        self._stop = threading.Event()
        self._lock: Optional[FolderLock] = None
        self._previous_handlers = {}

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def start(self) -> None:
        """Take the folder lock and start the observer.

        Raises:
            LockBusyError: If another process is organizing the folder.
            RuntimeError: If the watcher was already started.
        """
        if self.state is not WatcherState.IDLE:
            raise RuntimeError(f"Watcher cannot start from state {self.state.value}")

        self._lock = self.lock_manager.acquire(self.target)
        try:
            self.observer.schedule(self.handler, str(self.target), recursive=False)
            self.observer.start()
        except Exception:
            self._lock.release()
            self._lock = None
            raise

        self.state = WatcherState.WATCHING
        logger.info(f"Watching directory: {self.target}")

    def notify(self, file_path) -> None:
        """Enqueue a file as if it had just been created."""
        self.events.put((EVENT_CREATED, str(file_path)))

    def request_stop(self) -> None:
        """Ask the loop to stop after the file currently being handled."""
        if not self._stop.is_set():
            logger.info("Stop requested")
        self._stop.set()

    def _accept(self, kind: str, file_path: str) -> None:
        if Path(file_path).parent != self.target:
            return
        if kind == EVENT_MODIFIED and file_path not in self.debouncer:
            return
        self.debouncer.touch(file_path)

    def _drain_queue(self, timeout: float) -> None:
        try:
            kind, file_path = self.events.get(timeout=timeout)
        except queue.Empty:
            return
        self._accept(kind, file_path)
        while True:
            try:
                kind, file_path = self.events.get_nowait()
            except queue.Empty:
                return
            self._accept(kind, file_path)

    def poll(self, timeout: Optional[float] = None) -> int:
        """Run one loop iteration.

        Waits up to ``timeout`` seconds for events, then handles every
        file whose debounce delay has elapsed.

        Returns:
            Number of files handed to the callback.
        """
        if timeout is None:
            until_due = self.debouncer.seconds_until_next()
            timeout = self.config.poll_interval
            if until_due is not None:
                timeout = min(timeout, until_due)
        self._drain_queue(timeout)

        handled = 0
        due = self.debouncer.pop_due()
        for index, file_path in enumerate(due):
            if self._stop.is_set():
                # Not handled, counted as dropped at shutdown
                for remaining in due[index:]:
                    self.debouncer.touch(remaining)
                break
            path = Path(file_path)
            if not path.is_file():
                logger.debug(f"File gone before handling: {file_path}")
                continue
            try:
                self.handle_file(path)
            except StellarError as e:
                logger.error(f"Failed to organize {path.name}: {e}")
            handled += 1
            self.processed += 1
        return handled

    def _install_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            return
        for signum in (signal.SIGINT, signal.SIGTERM):
            self._previous_handlers[signum] = signal.signal(
                signum, lambda _signum, _frame: self.request_stop()
            )

    def _restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()

    def run(self, install_signal_handlers: bool = False) -> None:
        """Watch until a stop is requested.

        Args:
            install_signal_handlers: Request a stop on SIGINT/SIGTERM.
        """
        if self.state is WatcherState.IDLE:
            self.start()
        if install_signal_handlers:
            self._install_signal_handlers()
        try:
            while not self._stop.is_set():
                self.poll()
        finally:
            self.shutdown()

    def shutdown(self) -> None:
        """Stop the observer, drop pending events and release the lock."""
        if self.state in (WatcherState.STOPPED, WatcherState.DRAINING):
            return
        if self.state is WatcherState.IDLE:
            self.state = WatcherState.STOPPED
            return

        self.state = WatcherState.DRAINING
        self._stop.set()
        try:
            self.observer.stop()
            self.observer.join(timeout=5.0)
        finally:
            dropped = self.debouncer.clear_all()
            while True:
                try:
                    self.events.get_nowait()
                except queue.Empty:
                    break
                dropped += 1
            self.dropped += dropped
            if dropped:
                logger.info(f"Dropped {dropped} pending events")

            if self._lock is not None:
                self._lock.release()
                self._lock = None
            self._restore_signal_handlers()
            self.state = WatcherState.STOPPED
            logger.info(f"File watcher stopped ({self.processed} files organized)")
