"""
Loopwatch Error Types.

A nonzero child exit code is not an error; it is reported as a
failed RunRecord.
"""

from pathlib import Path


class LoopwatchError(Exception):
    """Base class for all Loopwatch errors."""


class WatchSetupError(LoopwatchError):
    """A watch target could not be registered at startup."""

    def __init__(self, path: Path | str, reason: str) -> None:
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"cannot watch {self.path}: {reason}")


class WatcherClosed(LoopwatchError):
    """The watcher's event stream was requested after stop()."""


class SpawnError(LoopwatchError):
    """The action's command could not be launched."""

    def __init__(self, argv: tuple[str, ...], reason: str) -> None:
        self.argv = argv
        self.reason = reason
        super().__init__(f"cannot launch {argv[0] if argv else '<empty>'}: {reason}")


class ActionError(LoopwatchError):
    """The requested action could not be resolved into a command line."""
