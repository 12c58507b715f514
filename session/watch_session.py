"""
Loopwatch Watch Session.

Owns one watcher, one debouncer and one runner for the lifetime of a
watch loop, and tears all three down together.
Requires Python 3.11+.
"""

import threading
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from runner.models import Action, RunRecord
from runner.process_runner import Runner
from utils.logger import LoggerMixin
from watcher.debouncer import Debouncer
from watcher.events import ChangeEvent, Trigger
from watcher.file_watcher import FileWatcher


class WatchSession(LoggerMixin):
    """
    A single watch-and-rerun loop.

    Pipeline: FileWatcher -> pump thread -> Debouncer -> Runner.
    """

    def __init__(
        self,
        paths: Iterable[Path | str],
        action: Action,
        debounce_ms: int,
        grace_period: float,
        ignore_patterns: list[str] | None = None,
        run_on_start: bool = True,
        clear_screen: bool = True,
        on_record: Callable[[RunRecord], Any] | None = None,
    ) -> None:
        """
        Initialize the session.

        Args:
            paths: Watch targets
            action: Command template run on every trigger
            debounce_ms: Quiet period before a burst of changes fires
            grace_period: Seconds a cancelled child gets before being killed
            ignore_patterns: Glob patterns for paths that never trigger
            run_on_start: Run the action once as soon as the session starts
            clear_screen: Clear the terminal before each run
            on_record: Called with each completed RunRecord
        """
        self._watcher = FileWatcher(paths, ignore_patterns=ignore_patterns)
        self._runner = Runner(
            action,
            grace_period=grace_period,
            on_record=on_record,
            clear_screen=clear_screen,
        )
        self._debouncer = Debouncer(delay_ms=debounce_ms, callback=self._on_trigger)
        self._run_on_start = run_on_start

        self._pump: threading.Thread | None = None
        self._stop_requested = threading.Event()
        self._stopped = False
        self._lock = threading.Lock()

    @property
    def watcher(self) -> FileWatcher:
        return self._watcher

    @property
    def debouncer(self) -> Debouncer:
        return self._debouncer

    @property
    def runner(self) -> Runner:
        return self._runner

    def start(self) -> None:
        """
        Start watching and running.

        Raises:
            WatchSetupError: If a watch target cannot be watched
        """
        self._watcher.start()
        self._runner.start()

        events = self._watcher.events()
        self._pump = threading.Thread(
            target=self._pump_events,
            args=(events,),
            name="loopwatch-pump",
            daemon=True,
        )
        self._pump.start()

        self.log.info(
            "session_started",
            paths=[str(p) for p in self._watcher.paths],
            action=self._runner.action.name,
            command=self._runner.action.command_line,
            debounce_ms=int(self._debouncer.delay * 1000),
            grace_period=self._runner.grace_period,
        )

        if self._run_on_start:
            self._runner.submit(Trigger(sequence=self._debouncer.next_sequence()))

    def _pump_events(self, events: Iterable[ChangeEvent]) -> None:
        for event in events:
            self._debouncer.debounce(event)

    def _on_trigger(self, trigger: Trigger) -> None:
        if self._stop_requested.is_set():
            return
        self.log.info(
            "changes_detected",
            count=len(trigger.events),
            paths=[str(p) for p in trigger.paths[:5]],
        )
        self._runner.submit(trigger)

    def request_stop(self) -> None:
        """Ask ``wait()`` to return. Safe to call from a signal handler."""
        self._stop_requested.set()

    def wait(self, poll_interval: float = 0.5) -> None:
        """Block until ``request_stop()`` or ``stop()`` is called."""
        while not self._stop_requested.wait(poll_interval):
            pass

    def stop(self) -> None:
        """Stop the watcher, drop pending changes and cancel any live run."""
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
        self._stop_requested.set()

        self._watcher.stop()
        if self._pump is not None:
            self._pump.join(timeout=2.0)
        self._debouncer.clear()
        self._runner.stop()

        self.log.info("session_stopped")

    def run(self) -> None:
        """Start, block until a stop is requested, then stop."""
        self.start()
        try:
            self.wait()
        finally:
            self.stop()

    def __enter__(self) -> "WatchSession":
        self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        self.stop()
