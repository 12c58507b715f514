"""
Loopwatch File Watcher Package.

File system monitoring and event debouncing.
Requires Python 3.11+.
"""

from watcher.events import ChangeEvent, ChangeKind, Trigger
from watcher.file_watcher import FileWatcher
from watcher.debouncer import Debouncer

__all__ = ["ChangeEvent", "ChangeKind", "Trigger", "FileWatcher", "Debouncer"]
