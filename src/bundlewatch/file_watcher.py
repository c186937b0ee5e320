"""File watcher implementation using watchdog."""

import hashlib
import logging
import os
import stat
import threading
from collections.abc import Callable
from pathlib import Path
from threading import Timer

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.polling import PollingObserver, PollingObserverVFS

from bundlewatch.errors import WatchBackendError
from bundlewatch.models import ChangeEvent, ChangeKind
from bundlewatch.request import NotifyRequest
from bundlewatch.watchers import ChangeCallback, PathFilter

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_MS = 30
DEFAULT_POLL_INTERVAL_MS = 1000
BACKEND_CHECK_INTERVAL = 1.0
"""Seconds between file watcher health checks while idle."""


class ChangeDebouncer:
    """Coalesce raw change notifications into rebuild triggers.

    Each accepted change re-arms a single timer. When it fires, the pending
    ``path -> last kind`` map is swapped out and handed to ``on_flush``.
    """

    def __init__(
        self,
        delay_ms: int,
        on_flush: Callable[[dict[str, ChangeKind]], None],
        path_filter: PathFilter | None = None,
    ):
        """Initialize debouncer.

        Args:
            delay_ms: Debounce delay in milliseconds
            on_flush: Called from the timer thread with the coalesced changes
            path_filter: Optional include/exclude filter
        """
        self.delay_ms = delay_ms
        self.on_flush = on_flush
        self.path_filter = path_filter
        self._lock = threading.Lock()
        self._pending: dict[str, ChangeKind] = {}
        self._timer: Timer | None = None
        self._cancelled = False

    @property
    def pending(self) -> dict[str, ChangeKind]:
        with self._lock:
            return dict(self._pending)

    def record(self, event: ChangeEvent) -> bool:
        """Record a raw change. Returns False if it was filtered out."""
        if self.path_filter is not None and not self.path_filter.matches(event.path):
            logger.debug(f"Ignoring filtered change: {event.path}")
            return False

        with self._lock:
            if self._cancelled:
                return False
            self._pending[event.path] = event.kind
            self._schedule_flush()
        return True

    def _schedule_flush(self) -> None:
        """Schedule flush after debounce delay. Caller holds the lock."""
        if self._timer:
            self._timer.cancel()

        self._timer = Timer(self.delay_ms / 1000.0, self._flush)
        self._timer.daemon = True
        self._timer.start()

    def _flush(self) -> None:
        with self._lock:
            changes, self._pending = self._pending, {}
            self._timer = None
        if not changes:
            return
        try:
            self.on_flush(changes)
        except Exception as e:
            logger.error(f"Failed to deliver {len(changes)} change(s): {e}")

    def cancel(self) -> None:
        """Disarm the timer and drop pending changes."""
        with self._lock:
            self._cancelled = True
            if self._timer:
                self._timer.cancel()
                self._timer = None
            self._pending.clear()


def _content_stat(path: str) -> os.stat_result:
    """``os.stat`` with the mtime replaced by a digest of the file contents.

    Lets the polling snapshot report a change only when contents differ.
    """
    st = os.stat(path)
    if not stat.S_ISREG(st.st_mode):
        return st
    with open(path, "rb") as f:
        digest = hashlib.blake2b(f.read(), digest_size=6).digest()
    return os.stat_result(
        (
            st.st_mode,
            st.st_ino,
            st.st_dev,
            st.st_nlink,
            st.st_uid,
            st.st_gid,
            st.st_size,
            st.st_atime,
            float(int.from_bytes(digest, "big")),
            st.st_ctime,
        )
    )


class _ChangeHandler(FileSystemEventHandler):
    """Forwards events for watched files to the manager callback."""

    def __init__(self, manager: "FileWatcherManager"):
        self.manager = manager

    def _forward(self, src_path: str | bytes, kind: ChangeKind) -> None:
        path = os.fsdecode(src_path)
        if self.manager.is_watched(path):
            logger.debug(f"File {kind.value}: {path}")
            self.manager.on_change(ChangeEvent(path, kind))

    def on_modified(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._forward(event.src_path, ChangeKind.UPDATE)

    def on_created(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._forward(event.src_path, ChangeKind.CREATE)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._forward(event.src_path, ChangeKind.DELETE)

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._forward(event.src_path, ChangeKind.DELETE)
        self._forward(event.dest_path, ChangeKind.CREATE)


class FileWatcherManager:
    """Watches individual files through their parent directories.

    Files can be added at any time; they stay watched until ``stop()``.
    """

    def __init__(self, on_change: ChangeCallback, notify: NotifyRequest | None = None):
        """Initialize file watcher manager.

        Args:
            on_change: Called from the observer thread for each watched-file event
            notify: Polling options; native notifications are used when None
        """
        self.on_change = on_change
        self.notify = notify
        self._lock = threading.Lock()
        self._files: set[str] = set()
        self._dirs: set[str] = set()
        self._handler = _ChangeHandler(self)
        self.polling = notify is not None
        self.observer = self._create_observer(polling=self.polling)
        self._started = False
        self._stopped = False

    def _create_observer(self, polling: bool):
        if not polling:
            return Observer()
        interval_ms = DEFAULT_POLL_INTERVAL_MS
        if self.notify is not None and self.notify.poll_interval is not None:
            interval_ms = self.notify.poll_interval
        if self.notify is not None and self.notify.compare_contents:
            return PollingObserverVFS(_content_stat, os.scandir, polling_interval=interval_ms / 1000.0)
        return PollingObserver(timeout=interval_ms / 1000.0)

    @property
    def watched_files(self) -> set[str]:
        with self._lock:
            return set(self._files)

    @property
    def observed_dirs(self) -> set[str]:
        """Directories currently scheduled on the observer."""
        with self._lock:
            return set(self._dirs)

    def is_watched(self, path: str) -> bool:
        with self._lock:
            return path in self._files

    def add_watch(self, path: str) -> bool:
        """Watch a file.

        Args:
            path: Absolute file path

        Returns:
            True if the file was newly added
        """
        path = os.path.abspath(path)
        directory = str(Path(path).parent)
        with self._lock:
            if path in self._files:
                return False
            self._files.add(path)

        if not os.path.isdir(directory):
            # Scheduled later by check_health once it exists
            logger.warning(f"Watch directory does not exist: {directory}")
            return True

        self._schedule(directory)
        return True

    def _schedule(self, directory: str) -> None:
        with self._lock:
            if directory in self._dirs:
                return
            self._dirs.add(directory)
        try:
            self.observer.schedule(self._handler, directory, recursive=False)
        except OSError as e:
            with self._lock:
                self._dirs.discard(directory)
            logger.error(f"Failed to watch {directory}: {e}")
        else:
            logger.debug(f"Watching {directory}")

    def _schedule_new_dirs(self) -> None:
        with self._lock:
            missing = {str(Path(f).parent) for f in self._files} - self._dirs
        for directory in sorted(missing):
            if os.path.isdir(directory):
                self._schedule(directory)

    def start(self) -> None:
        """Start the observer, falling back to polling if native watching fails.

        Raises:
            WatchBackendError: If neither backend can be started
        """
        try:
            self.observer.start()
        except OSError as e:
            if self.polling:
                raise WatchBackendError(f"Failed to start file watcher: {e}") from e
            logger.warning(f"Native file watcher unavailable ({e}), falling back to polling")
            self.polling = True
            self.observer = self._create_observer(polling=True)
            for directory in self._existing_dirs():
                self.observer.schedule(self._handler, directory, recursive=False)
            try:
                self.observer.start()
            except OSError as polling_error:
                raise WatchBackendError(f"Failed to start file watcher: {polling_error}") from polling_error

        self._started = True
        logger.info(f"Started file watcher on {len(self._dirs)} director(y/ies)")

    def _existing_dirs(self) -> list[str]:
        with self._lock:
            return [d for d in self._dirs if os.path.isdir(d)]

    def check_health(self) -> None:
        """Restart the observer if its thread died after ``start()``.

        Also schedules directories that did not exist when their files were
        added.

        Raises:
            WatchBackendError: If the observer cannot be restarted
        """
        if not self._started or self._stopped:
            return
        if self.observer.is_alive():
            self._schedule_new_dirs()
            return

        logger.error("File watcher stopped unexpectedly, restarting")
        self.observer = self._create_observer(polling=self.polling)
        with self._lock:
            self._dirs.clear()
        self._schedule_new_dirs()
        try:
            self.observer.start()
        except OSError as e:
            raise WatchBackendError(f"Failed to restart file watcher: {e}") from e
        logger.info("Restarted file watcher")

    def stop(self) -> None:
        """Stop watching."""
        self._stopped = True
        if self.observer.is_alive():
            self.observer.stop()
            self.observer.join(timeout=2.0)
            logger.info("Stopped file watcher")
