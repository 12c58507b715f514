"""
Shared helpers for Loopwatch tests.
"""

import sys
import threading
import time
from collections.abc import Callable

from runner.models import Action, RunRecord


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.02) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def python_action(code: str, name: str = "test") -> Action:
    """An action running a Python snippet with the current interpreter."""
    return Action(name=name, program=sys.executable, args=("-c", code))


class RecordCollector:
    """Thread-safe sink for RunRecords."""

    def __init__(self) -> None:
        self._records: list[RunRecord] = []
        self._lock = threading.Lock()

    def __call__(self, record: RunRecord) -> None:
        with self._lock:
            self._records.append(record)

    @property
    def records(self) -> list[RunRecord]:
        with self._lock:
            return list(self._records)

    def __len__(self) -> int:
        return len(self.records)
