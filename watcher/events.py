"""
Loopwatch Event Models.

Change notifications produced by the watcher and the triggers the
debouncer derives from them.
Requires Python 3.11+.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class ChangeKind(str, Enum):
    """Kinds of filesystem mutation."""

    CREATED = "created"
    MODIFIED = "modified"
    REMOVED = "removed"
    RENAMED = "renamed"


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """One observed filesystem mutation."""

    path: Path
    kind: ChangeKind
    timestamp: float = field(default_factory=time.time)
    is_directory: bool = False
    dest_path: Path | None = None  # set for renames only

    def __str__(self) -> str:
        if self.dest_path is not None:
            return f"{self.kind.value} {self.path} -> {self.dest_path}"
        return f"{self.kind.value} {self.path}"


@dataclass(frozen=True, slots=True)
class Trigger:
    """
    A request to run the action now.

    ``events`` holds the burst that was collapsed into this trigger; it is
    empty for the start-up trigger.
    """

    sequence: int
    events: tuple[ChangeEvent, ...] = ()
    fired_at: float = field(default_factory=time.time)

    @property
    def paths(self) -> list[Path]:
        """Distinct paths touched by this trigger, in first-seen order."""
        seen: dict[Path, None] = {}
        for event in self.events:
            seen.setdefault(event.path, None)
            if event.dest_path is not None:
                seen.setdefault(event.dest_path, None)
        return list(seen)
