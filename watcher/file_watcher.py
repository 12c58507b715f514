"""
Loopwatch File Watcher.

Cross-platform file system monitoring using watchdog.
Requires Python 3.11+.
"""

import fnmatch
import os
import queue
import threading
from collections import deque
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirModifiedEvent,
    DirMovedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer
from watchdog.observers.api import ObservedWatch

from utils.errors import WatcherClosed, WatchSetupError
from utils.logger import LoggerMixin
from watcher.events import ChangeEvent, ChangeKind

_STOP = object()


class ChangeEventHandler(FileSystemEventHandler, LoggerMixin):
    """
    Translates watchdog events into ChangeEvents for a FileWatcher.

    Runs on the observer thread; it only converts, filters and enqueues,
    so it never blocks on whoever consumes the stream.
    """

    def __init__(self, watcher: "FileWatcher") -> None:
        super().__init__()
        self._watcher = watcher

    def dispatch(self, event: FileSystemEvent) -> None:
        """Dispatch one event, skipping it on transient OS errors."""
        try:
            super().dispatch(event)
        except OSError as e:
            self.log.warning(
                "event_skipped",
                path=os.fsdecode(event.src_path),
                event_type=event.event_type,
                error=str(e),
            )

    def on_created(self, event: FileCreatedEvent | DirCreatedEvent) -> None:
        """Handle file/directory creation."""
        path = Path(os.fsdecode(event.src_path))
        if not self._watcher.accepts(path):
            return

        self.log.debug("path_created", path=str(path))
        self._watcher.publish(
            ChangeEvent(path=path, kind=ChangeKind.CREATED, is_directory=event.is_directory)
        )
        if event.is_directory:
            # Report whatever landed inside before the OS watch was added
            self._watcher.register_directory(path)

    def on_modified(self, event: FileModifiedEvent | DirModifiedEvent) -> None:
        """Handle file modification; directory mtime bumps only echo child changes."""
        if isinstance(event, DirModifiedEvent):
            return

        path = Path(os.fsdecode(event.src_path))
        if not self._watcher.accepts(path):
            return

        self.log.debug("file_modified", path=str(path))
        self._watcher.publish(ChangeEvent(path=path, kind=ChangeKind.MODIFIED))

    def on_deleted(self, event: FileDeletedEvent | DirDeletedEvent) -> None:
        """Handle file/directory deletion."""
        path = Path(os.fsdecode(event.src_path))
        if not self._watcher.accepts(path):
            return

        if event.is_directory:
            self._watcher.forget_directory(path)

        self.log.debug("path_removed", path=str(path))
        self._watcher.publish(
            ChangeEvent(path=path, kind=ChangeKind.REMOVED, is_directory=event.is_directory)
        )

    def on_moved(self, event: FileMovedEvent | DirMovedEvent) -> None:
        """Handle file/directory move/rename."""
        src_path = Path(os.fsdecode(event.src_path))
        dest_path = Path(os.fsdecode(event.dest_path))
        src_ok = self._watcher.accepts(src_path)
        dest_ok = self._watcher.accepts(dest_path)
        if not (src_ok or dest_ok):
            return

        if event.is_directory:
            self._watcher.forget_directory(src_path)
            if dest_ok:
                self._watcher.register_directory(dest_path)

        self.log.debug("path_renamed", path=str(src_path), dest=str(dest_path))
        self._watcher.publish(
            ChangeEvent(
                path=src_path,
                kind=ChangeKind.RENAMED,
                is_directory=event.is_directory,
                dest_path=dest_path,
            )
        )


class FileWatcher(LoggerMixin):
    """
    Watches a set of files and directories for changes.

    Each directory target gets a single recursive watchdog watch, so the
    number of OS watch handles grows with the watch set, not with the
    size of the tree. The known directory set is tracked separately:
    a directory that appears while running is scanned from an explicit
    worklist and the files already inside it are reported as created.
    Changes are exposed as a lazy, unbounded stream via ``events()``.
    """

    def __init__(
        self,
        paths: Iterable[Path | str],
        ignore_patterns: list[str] | None = None,
    ) -> None:
        """
        Initialize the file watcher.

        Args:
            paths: Watch targets (files and/or directories)
            ignore_patterns: Globs matched against each path component;
                patterns containing a slash match the root-relative path
        """
        resolved: dict[Path, None] = {}
        for raw in paths:
            resolved.setdefault(Path(raw).expanduser().resolve(), None)
        if not resolved:
            raise ValueError("watch set must not be empty")

        self._paths: tuple[Path, ...] = tuple(resolved)
        self._ignore_patterns = list(ignore_patterns or [])
        self._dir_roots: list[Path] = []
        self._file_roots: set[Path] = set()

        self._handler = ChangeEventHandler(self)
        self._observer: Any = None
        self._watches: dict[Path, ObservedWatch] = {}
        self._directories: set[Path] = set()
        self._queue: queue.Queue[Any] = queue.Queue()
        self._lock = threading.RLock()
        self._running = False
        self._closed = False

    @property
    def paths(self) -> tuple[Path, ...]:
        """The resolved watch set."""
        return self._paths

    def start(self) -> None:
        """
        Register watches for every target and start delivering events.

        Raises:
            WatchSetupError: If any target cannot be watched
            WatcherClosed: If the watcher has already been stopped
        """
        if self._closed:
            raise WatcherClosed("watcher has been stopped")
        if self._running:
            return

        self._observer = Observer()
        self._observer.start()
        self._running = True

        try:
            for target in self._paths:
                if not target.exists():
                    raise WatchSetupError(target, "no such file or directory")

            # Outer directories first so nested targets reuse their watch
            directories = sorted(
                (p for p in self._paths if p.is_dir()), key=lambda p: len(p.parts)
            )
            for target in directories:
                self._dir_roots.append(target)
                if not self._is_covered(target):
                    self._schedule(target, recursive=True)
                self._scan_tree(target, initial=True)

            for target in self._paths:
                if target.is_dir():
                    continue
                self._file_roots.add(target)
                if not self._is_covered(target.parent):
                    self._schedule(target.parent, recursive=False)
        except WatchSetupError:
            self.stop()
            raise

        self.log.info(
            "file_watcher_started",
            paths=[str(p) for p in self._paths],
            watches=len(self._watches),
            directories=len(self._directories),
            ignore_patterns=self._ignore_patterns,
        )

    def stop(self) -> None:
        """Stop watching and end the event stream. Safe to call repeatedly."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            was_running = self._running
            self._running = False

        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5.0)
            self._observer = None

        with self._lock:
            self._watches.clear()
            self._directories.clear()
        self._queue.put(_STOP)

        if was_running:
            self.log.info("file_watcher_stopped")

    def events(self) -> Iterator[ChangeEvent]:
        """
        Get the stream of change events.

        The iterator blocks until the next event and ends once ``stop()``
        is called.

        Raises:
            WatcherClosed: If the watcher has already been stopped
        """
        if self._closed:
            raise WatcherClosed("cannot consume events after stop()")
        return self._stream()

    def _stream(self) -> Iterator[ChangeEvent]:
        while True:
            item = self._queue.get()
            if item is _STOP or self._closed:
                # Wake any other consumer blocked on the queue
                self._queue.put(_STOP)
                return
            yield item

    def __iter__(self) -> Iterator[ChangeEvent]:
        return self.events()

    def accepts(self, path: Path) -> bool:
        """Check whether a path belongs to the watch set and is not ignored."""
        if path in self._file_roots:
            return not self._should_ignore(Path(path.name))
        for root in self._dir_roots:
            if path == root:
                return True
            if path.is_relative_to(root):
                return not self._should_ignore(path.relative_to(root))
        return False

    def _should_ignore(self, relative: Path) -> bool:
        """
        Check a root-relative path against the ignore patterns.

        Plain patterns are globs tested against every path component.
        Patterns with a slash match the relative path as a substring or
        as a glob, so ``target/debug`` drops everything below that directory.
        """
        text = relative.as_posix()
        for pattern in self._ignore_patterns:
            if "/" in pattern:
                if pattern in text or fnmatch.fnmatch(text, pattern):
                    return True
            elif any(fnmatch.fnmatch(part, pattern) for part in relative.parts):
                return True
        return False

    def publish(self, event: ChangeEvent) -> None:
        """Append an event to the stream."""
        if not self._closed:
            self._queue.put(event)

    def register_directory(self, directory: Path) -> None:
        """
        Track a directory that appeared while running, with its subtree.

        The recursive watch already covers it; files already inside are
        reported as created, since they may have been written before the
        OS watch on the new directory existed.
        """
        self._scan_tree(directory, initial=False)

    def forget_directory(self, directory: Path) -> None:
        """Drop a removed or moved-away directory subtree."""
        with self._lock:
            observer = self._observer
            self._directories = {
                path
                for path in self._directories
                if not (path == directory or path.is_relative_to(directory))
            }
            stale = [
                (path, self._watches.pop(path))
                for path in list(self._watches)
                if path == directory or path.is_relative_to(directory)
            ]
        if observer is None:
            return
        for path, watch in stale:
            try:
                observer.unschedule(watch)
            except (KeyError, OSError) as e:
                self.log.debug("unschedule_failed", path=str(path), error=str(e))

    def _is_covered(self, directory: Path) -> bool:
        """Check whether an existing watch already delivers events for a directory."""
        with self._lock:
            for path, watch in self._watches.items():
                if directory == path:
                    return True
                if watch.is_recursive and directory.is_relative_to(path):
                    return True
        return False

    def _schedule(self, directory: Path, recursive: bool) -> None:
        # The observer holds its own lock while dispatching into the handler,
        # so never call into the observer while holding ours.
        with self._lock:
            if self._closed or directory in self._watches:
                return
            observer = self._observer
        try:
            watch = observer.schedule(self._handler, str(directory), recursive=recursive)
        except OSError as e:
            raise WatchSetupError(directory, e.strerror or str(e)) from e
        with self._lock:
            self._watches[directory] = watch

    def _scan_tree(self, root: Path, initial: bool) -> None:
        """Walk a directory subtree breadth first, recording every directory."""
        worklist: deque[Path] = deque([root])
        while worklist:
            directory = worklist.popleft()
            with self._lock:
                if self._closed or directory in self._directories:
                    continue
            if not self.accepts(directory):
                continue

            try:
                with os.scandir(directory) as entries:
                    children = [
                        (Path(entry.path), entry.is_dir(follow_symlinks=False))
                        for entry in entries
                    ]
            except OSError as e:
                if initial:
                    raise WatchSetupError(directory, e.strerror or str(e)) from e
                self.log.warning("directory_scan_failed", path=str(directory), error=str(e))
                continue

            with self._lock:
                self._directories.add(directory)

            for child, is_dir in children:
                if not self.accepts(child):
                    continue
                if is_dir:
                    worklist.append(child)
                if not initial:
                    self.publish(
                        ChangeEvent(path=child, kind=ChangeKind.CREATED, is_directory=is_dir)
                    )

    @property
    def is_running(self) -> bool:
        """Check if the watcher is running."""
        return self._running

    @property
    def is_closed(self) -> bool:
        """Check if the watcher has been stopped."""
        return self._closed

    @property
    def watch_count(self) -> int:
        """Number of OS-level watches held by the observer."""
        with self._lock:
            return len(self._watches)

    @property
    def watched_directories(self) -> list[Path]:
        """Directories currently covered by a watch."""
        with self._lock:
            return sorted(self._directories)

    def __enter__(self) -> "FileWatcher":
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        """Context manager exit."""
        self.stop()
