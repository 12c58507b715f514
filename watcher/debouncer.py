"""
Loopwatch Debouncer.

Collapses bursts of file system events into single triggers.
Requires Python 3.11+.
"""

import itertools
import threading
from collections.abc import Callable
from typing import Any

from utils.logger import LoggerMixin
from watcher.events import ChangeEvent, Trigger


class Debouncer(LoggerMixin):
    """
    Debounces rapid file changes.

    Accumulates changes and fires one Trigger after a quiet period of
    ``delay_ms`` with no new changes. The window slides: every event
    restarts it, so a save-all touching twenty files yields one trigger
    fired ``delay_ms`` after the last write.
    """

    def __init__(
        self,
        delay_ms: int,
        callback: Callable[[Trigger], Any] | None = None,
    ) -> None:
        """
        Initialize the debouncer.

        Args:
            delay_ms: Quiet period in milliseconds before a trigger fires
            callback: Function to call with each trigger
        """
        if delay_ms <= 0:
            raise ValueError(f"delay_ms must be positive, got {delay_ms}")
        self._delay = delay_ms / 1000.0
        self._callback = callback
        self._pending: list[ChangeEvent] = []
        self._timer: threading.Timer | None = None
        # A timer that lost the race with debounce() must not fire
        self._generation = 0
        self._lock = threading.Lock()
        self._sequence = itertools.count(1)

    @property
    def delay(self) -> float:
        """Debounce window in seconds."""
        return self._delay

    def set_callback(self, callback: Callable[[Trigger], Any]) -> None:
        """Set or update the callback function."""
        self._callback = callback

    def next_sequence(self) -> int:
        """Reserve a trigger sequence number."""
        return next(self._sequence)

    def debounce(self, event: ChangeEvent) -> None:
        """
        Add a change to the pending burst and restart the quiet period.

        Args:
            event: The observed change
        """
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

            self._pending.append(event)
            self._generation += 1

            self._timer = threading.Timer(
                self._delay, self._process_pending, args=(self._generation,)
            )
            self._timer.daemon = True
            self._timer.start()

    def _take_pending(self) -> tuple[ChangeEvent, ...]:
        events = tuple(self._pending)
        self._pending.clear()
        self._timer = None
        return events

    def _process_pending(self, generation: int) -> None:
        """Fire a trigger for the pending burst."""
        with self._lock:
            if generation != self._generation or not self._pending:
                return
            events = self._take_pending()

        self._fire(events)

    def _fire(self, events: tuple[ChangeEvent, ...]) -> Trigger:
        trigger = Trigger(sequence=self.next_sequence(), events=events)
        self.log.debug(
            "trigger_fired",
            sequence=trigger.sequence,
            event_count=len(events),
        )

        if self._callback is not None:
            try:
                self._callback(trigger)
            except Exception as e:
                self.log.error("debounce_callback_failed", error=str(e))
        return trigger

    def flush(self) -> Trigger | None:
        """
        Immediately fire a trigger for any pending changes.

        Returns:
            The fired trigger, or None if nothing was pending
        """
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            if not self._pending:
                self._timer = None
                return None
            events = self._take_pending()

        return self._fire(events)

    def clear(self) -> None:
        """Clear all pending changes without firing."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._generation += 1
            self._pending.clear()

    @property
    def pending_count(self) -> int:
        """Get number of pending changes."""
        with self._lock:
            return len(self._pending)

    @property
    def pending_events(self) -> list[ChangeEvent]:
        """Get the pending changes in arrival order."""
        with self._lock:
            return list(self._pending)
