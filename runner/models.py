"""
Loopwatch Runner Data Models.

Actions, run states and the records reported for finished runs.
Requires Python 3.11+.
"""

import os
import shlex
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from utils.errors import ActionError
from watcher.events import Trigger


class RunState(str, Enum):
    """Lifecycle of a single run."""

    PENDING = "pending"
    RUNNING = "running"
    SIGNAL_SENT = "signal_sent"
    EXITED = "exited"
    FORCE_KILLED = "force_killed"
    SPAWN_FAILED = "spawn_failed"


class RunOutcome(str, Enum):
    """How a run ended, as shown to the developer."""

    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"
    SPAWN_FAILED = "spawn_failed"


@dataclass(frozen=True, slots=True)
class Action:
    """An immutable command template executed on every trigger."""

    name: str
    program: str
    args: tuple[str, ...] = ()
    cwd: Path | None = None
    env: dict[str, str] | None = field(default=None, hash=False)

    @classmethod
    def from_command(
        cls,
        name: str,
        command: str,
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
    ) -> "Action":
        """
        Build an action from a shell-style command line.

        Raises:
            ActionError: If the command line is empty or cannot be split
        """
        try:
            argv = shlex.split(command)
        except ValueError as e:
            raise ActionError(f"cannot parse command {command!r}: {e}") from e
        if not argv:
            raise ActionError(f"action {name!r} has an empty command")
        return cls(name=name, program=argv[0], args=tuple(argv[1:]), cwd=cwd, env=env)

    @property
    def argv(self) -> tuple[str, ...]:
        """Program followed by its arguments."""
        return (self.program, *self.args)

    @property
    def command_line(self) -> str:
        """Shell-quoted rendering of argv for display."""
        return shlex.join(self.argv)

    def environment(self) -> dict[str, str] | None:
        """Child environment, or None to inherit ours unchanged."""
        if not self.env:
            return None
        return {**os.environ, **self.env}


@dataclass(frozen=True, slots=True)
class RunRecord:
    """Outcome of one executed action invocation."""

    run_id: int
    action: Action
    trigger: Trigger
    started_at: float
    finished_at: float
    exit_code: int | None
    cancelled: bool = False

    @property
    def outcome(self) -> RunOutcome:
        if self.cancelled:
            return RunOutcome.CANCELLED
        if self.exit_code is None:
            return RunOutcome.SPAWN_FAILED
        return RunOutcome.SUCCESS if self.exit_code == 0 else RunOutcome.FAILURE

    @property
    def succeeded(self) -> bool:
        return self.outcome is RunOutcome.SUCCESS

    @property
    def duration(self) -> float:
        """Wall-clock duration in seconds."""
        return max(0.0, self.finished_at - self.started_at)
