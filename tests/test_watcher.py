"""
Tests for the FileWatcher.

These use the real filesystem and the platform's watchdog observer.
Requires Python 3.11+.
"""

import os
import threading
import time
from pathlib import Path

import pytest

from helpers import wait_for
from utils.errors import WatcherClosed, WatchSetupError
from watcher.events import ChangeEvent, ChangeKind
from watcher.file_watcher import FileWatcher


class EventDrain:
    """Consumes a watcher's stream on a background thread."""

    def __init__(self, watcher: FileWatcher) -> None:
        self.events: list[ChangeEvent] = []
        self.finished = threading.Event()
        self._lock = threading.Lock()
        self._thread = threading.Thread(target=self._run, args=(watcher.events(),), daemon=True)
        self._thread.start()

    def _run(self, stream) -> None:
        for event in stream:
            with self._lock:
                self.events.append(event)
        self.finished.set()

    def snapshot(self) -> list[ChangeEvent]:
        with self._lock:
            return list(self.events)

    def saw(self, path: Path, kind: ChangeKind | None = None) -> bool:
        path = path.resolve()
        return any(
            (e.path == path or e.dest_path == path) and (kind is None or e.kind is kind)
            for e in self.snapshot()
        )


@pytest.fixture
def make_watcher():
    """Create watchers and make sure they are stopped after the test."""
    watchers: list[FileWatcher] = []

    def factory(*paths: Path, ignore_patterns: list[str] | None = None) -> FileWatcher:
        watcher = FileWatcher(paths, ignore_patterns=ignore_patterns)
        watchers.append(watcher)
        return watcher

    yield factory

    for watcher in watchers:
        watcher.stop()


class TestWatchSetup:
    """Test cases for starting a watcher."""

    def test_empty_watch_set_rejected(self):
        """Test that a watch set must not be empty."""
        with pytest.raises(ValueError):
            FileWatcher([])

    def test_missing_path_fails(self, make_watcher, tmp_path: Path):
        """Test that a nonexistent target raises WatchSetupError."""
        watcher = make_watcher(tmp_path / "does-not-exist")

        with pytest.raises(WatchSetupError) as exc_info:
            watcher.start()

        assert exc_info.value.path == (tmp_path / "does-not-exist").resolve()
        assert not watcher.is_running

    def test_duplicate_paths_collapse(self, make_watcher, src_tree: Path):
        """Test that the watch set is de-duplicated and order-preserving."""
        watcher = make_watcher(src_tree, src_tree / "pkg", src_tree / ".." / "src")

        assert watcher.paths == (src_tree.resolve(), (src_tree / "pkg").resolve())

    def test_registers_every_directory(self, make_watcher, src_tree: Path):
        """Test that the initial registration covers the whole subtree."""
        (src_tree / "pkg" / "deep" / "deeper").mkdir(parents=True)
        watcher = make_watcher(src_tree)
        watcher.start()

        watched = set(watcher.watched_directories)
        assert src_tree.resolve() in watched
        assert (src_tree / "pkg" / "deep" / "deeper").resolve() in watched

    def test_large_tree_uses_one_watch_per_root(self, make_watcher, src_tree: Path):
        """Test that a tree wider than the inotify instance limit (128) still starts."""
        for i in range(220):
            (src_tree / f"mod{i:03d}").mkdir()
        watcher = make_watcher(src_tree)
        watcher.start()
        drain = EventDrain(watcher)

        assert watcher.watch_count == 1
        assert len(watcher.watched_directories) == 222

        target = src_tree / "mod219" / "leaf.c"
        target.write_text("int leaf;\n")
        assert wait_for(lambda: drain.saw(target))

    def test_nested_targets_share_a_watch(self, make_watcher, src_tree: Path):
        """Test that a target inside another directory target adds no watch."""
        watcher = make_watcher(src_tree / "pkg", src_tree, src_tree / "main.c")
        watcher.start()

        assert watcher.watch_count == 1

    def test_ignored_directories_not_registered(self, make_watcher, src_tree: Path):
        """Test that ignored directories never get a watch."""
        (src_tree / "__pycache__").mkdir()
        watcher = make_watcher(src_tree, ignore_patterns=["__pycache__"])
        watcher.start()

        assert (src_tree / "__pycache__").resolve() not in watcher.watched_directories

    @pytest.mark.skipif(
        os.name != "posix" or (hasattr(os, "geteuid") and os.geteuid() == 0),
        reason="permission bits are not enforced for root",
    )
    def test_unreadable_directory_fails(self, make_watcher, src_tree: Path):
        """Test that a directory we cannot read raises WatchSetupError."""
        locked = src_tree / "locked"
        locked.mkdir()
        locked.chmod(0)
        try:
            watcher = make_watcher(src_tree)
            with pytest.raises(WatchSetupError):
                watcher.start()
        finally:
            locked.chmod(0o755)


class TestEventStream:
    """Test cases for the change event stream."""

    def test_reports_modification(self, make_watcher, src_tree: Path):
        """Test that writing to a watched file produces an event."""
        watcher = make_watcher(src_tree)
        watcher.start()
        drain = EventDrain(watcher)

        target = src_tree / "main.c"
        target.write_text("int main(void) { return 1; }\n")

        assert wait_for(lambda: drain.saw(target, ChangeKind.MODIFIED))

    def test_reports_creation_and_removal(self, make_watcher, src_tree: Path):
        """Test created and removed events."""
        watcher = make_watcher(src_tree)
        watcher.start()
        drain = EventDrain(watcher)

        new_file = src_tree / "new.c"
        new_file.write_text("\n")
        assert wait_for(lambda: drain.saw(new_file, ChangeKind.CREATED))

        new_file.unlink()
        assert wait_for(lambda: drain.saw(new_file, ChangeKind.REMOVED))

    def test_reports_rename(self, make_watcher, src_tree: Path):
        """Test that a rename carries both paths."""
        watcher = make_watcher(src_tree)
        watcher.start()
        drain = EventDrain(watcher)

        source = src_tree / "main.c"
        dest = src_tree / "entry.c"
        source.rename(dest)

        assert wait_for(lambda: drain.saw(dest, ChangeKind.RENAMED))

    def test_new_subdirectory_is_watched(self, make_watcher, src_tree: Path):
        """Test that changes inside a directory created after start are seen."""
        watcher = make_watcher(src_tree)
        watcher.start()
        drain = EventDrain(watcher)

        subdir = src_tree / "generated" / "nested"
        subdir.mkdir(parents=True)
        assert wait_for(lambda: subdir.resolve() in watcher.watched_directories)

        inner = subdir / "inner.c"
        inner.write_text("int x;\n")
        assert wait_for(lambda: drain.saw(inner))

        inner.write_text("int y;\n")
        assert wait_for(lambda: drain.saw(inner, ChangeKind.MODIFIED))

    def test_files_in_new_subtree_are_reported(self, make_watcher, src_tree: Path, tmp_path: Path):
        """Test that a directory moved in with contents reports those files."""
        watcher = make_watcher(src_tree)
        watcher.start()
        drain = EventDrain(watcher)

        staging = tmp_path / "staging"
        (staging / "lib").mkdir(parents=True)
        (staging / "lib" / "lib.c").write_text("int lib;\n")
        staging.rename(src_tree / "vendor")

        assert wait_for(lambda: drain.saw(src_tree / "vendor" / "lib" / "lib.c", ChangeKind.CREATED))
        assert (src_tree / "vendor" / "lib").resolve() in watcher.watched_directories

    def test_removed_directory_is_forgotten(self, make_watcher, src_tree: Path):
        """Test that a deleted subtree stops holding watches and is not an error."""
        watcher = make_watcher(src_tree)
        watcher.start()
        drain = EventDrain(watcher)

        (src_tree / "pkg" / "util.c").unlink()
        (src_tree / "pkg").rmdir()

        assert wait_for(lambda: drain.saw(src_tree / "pkg", ChangeKind.REMOVED))
        assert wait_for(lambda: (src_tree / "pkg").resolve() not in watcher.watched_directories)

        (src_tree / "main.c").write_text("still watching\n")
        assert wait_for(lambda: drain.saw(src_tree / "main.c", ChangeKind.MODIFIED))

    def test_ignored_paths_produce_no_events(self, make_watcher, src_tree: Path):
        """Test ignore patterns against file names and directories."""
        (src_tree / ".git").mkdir()
        watcher = make_watcher(src_tree, ignore_patterns=["*.swp", ".git"])
        watcher.start()
        drain = EventDrain(watcher)

        (src_tree / ".main.c.swp").write_text("swap\n")
        (src_tree / ".git" / "HEAD").write_text("ref\n")
        (src_tree / "main.c").write_text("real change\n")

        assert wait_for(lambda: drain.saw(src_tree / "main.c"))
        time.sleep(0.2)
        names = {e.path.name for e in drain.snapshot()}
        assert ".main.c.swp" not in names
        assert "HEAD" not in names

    def test_ignore_pattern_with_slash_matches_relative_path(self, make_watcher, src_tree: Path):
        """Test that multi-component ignore patterns drop everything below them."""
        (src_tree / "target" / "debug").mkdir(parents=True)
        (src_tree / "target" / "release").mkdir()
        watcher = make_watcher(src_tree, ignore_patterns=["target/debug"])
        watcher.start()
        drain = EventDrain(watcher)

        assert (src_tree / "target" / "debug").resolve() not in watcher.watched_directories
        (src_tree / "target" / "debug" / "app.o").write_text("obj\n")
        (src_tree / "target" / "release" / "app.o").write_text("obj\n")

        assert wait_for(lambda: drain.saw(src_tree / "target" / "release" / "app.o"))
        time.sleep(0.2)
        assert not drain.saw(src_tree / "target" / "debug" / "app.o")

    def test_file_target_filters_siblings(self, make_watcher, src_tree: Path):
        """Test that watching a single file ignores its neighbours."""
        target = src_tree / "main.c"
        watcher = make_watcher(target)
        watcher.start()
        drain = EventDrain(watcher)

        (src_tree / "sibling.c").write_text("noise\n")
        target.write_text("signal\n")

        assert wait_for(lambda: drain.saw(target))
        time.sleep(0.2)
        assert all(e.path == target.resolve() for e in drain.snapshot())


class TestLifecycle:
    """Test cases for stopping a watcher."""

    def test_stop_ends_stream_promptly(self, make_watcher, src_tree: Path):
        """Test that stop() terminates a blocked consumer within bounded time."""
        watcher = make_watcher(src_tree)
        watcher.start()
        drain = EventDrain(watcher)

        started = time.monotonic()
        watcher.stop()

        assert drain.finished.wait(timeout=5.0)
        assert time.monotonic() - started < 5.0
        assert not watcher.is_running
        assert watcher.watched_directories == []

    def test_no_events_after_stop(self, make_watcher, src_tree: Path):
        """Test that changes after stop() are not delivered."""
        watcher = make_watcher(src_tree)
        watcher.start()
        drain = EventDrain(watcher)
        watcher.stop()
        assert drain.finished.wait(timeout=5.0)

        (src_tree / "main.c").write_text("after stop\n")
        time.sleep(0.2)

        assert drain.snapshot() == []

    def test_events_after_stop_raise(self, make_watcher, src_tree: Path):
        """Test that consuming a stopped watcher raises WatcherClosed."""
        watcher = make_watcher(src_tree)
        watcher.start()
        watcher.stop()

        with pytest.raises(WatcherClosed):
            watcher.events()
        with pytest.raises(WatcherClosed):
            watcher.start()

    def test_stop_is_idempotent(self, make_watcher, src_tree: Path):
        """Test that stop() can be called repeatedly, even before start()."""
        watcher = make_watcher(src_tree)
        watcher.stop()
        watcher.stop()
        assert watcher.is_closed

    def test_context_manager(self, src_tree: Path):
        """Test context manager start/stop."""
        with FileWatcher([src_tree]) as watcher:
            assert watcher.is_running
        assert watcher.is_closed
