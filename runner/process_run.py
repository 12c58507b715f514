"""
Loopwatch Process Run.

One child process execution, modelled as an explicit state machine:
running -> signal_sent -> exited | force_killed.
Requires Python 3.11+.
"""

import os
import signal
import subprocess
import threading
import time

from runner.models import Action, RunRecord, RunState
from utils.errors import SpawnError
from utils.logger import LoggerMixin
from watcher.events import Trigger

_POSIX = os.name == "posix"


class ProcessRun(LoggerMixin):
    """
    A single execution of an action.

    The child gets its own process group so termination reaches anything
    it spawned. Its stdout and stderr are inherited, so output is live.
    """

    def __init__(self, run_id: int, action: Action, trigger: Trigger) -> None:
        self.run_id = run_id
        self.action = action
        self.trigger = trigger
        self.state = RunState.PENDING
        self.cancelled = False
        self.started_at: float | None = None
        self.finished_at: float | None = None
        self.exit_code: int | None = None
        self._process: subprocess.Popen[bytes] | None = None
        self._lock = threading.Lock()

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    def start(self) -> None:
        """
        Spawn the child process.

        Raises:
            SpawnError: If the command cannot be launched
        """
        kwargs: dict[str, object] = {}
        if _POSIX:
            kwargs["start_new_session"] = True
        else:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP

        self.started_at = time.time()
        try:
            self._process = subprocess.Popen(
                self.action.argv,
                cwd=self.action.cwd,
                env=self.action.environment(),
                **kwargs,
            )
        except OSError as e:
            self.state = RunState.SPAWN_FAILED
            self.finished_at = time.time()
            raise SpawnError(self.action.argv, e.strerror or str(e)) from e

        self.state = RunState.RUNNING

    def wait(self) -> int:
        """Block until the child exits and return its exit code."""
        if self._process is None:
            raise RuntimeError("run has not been started")
        code = self._process.wait()
        self._mark_exited(code)
        return code

    def poll(self) -> int | None:
        """Return the exit code if the child has exited, else None."""
        if self._process is None:
            return None
        code = self._process.poll()
        if code is not None:
            self._mark_exited(code)
        return code

    def _mark_exited(self, code: int) -> None:
        with self._lock:
            if self.exit_code is not None:
                return
            self.exit_code = code
            self.finished_at = time.time()
            if self.state in (RunState.RUNNING, RunState.SIGNAL_SENT):
                self.state = RunState.EXITED

    def cancel(self, grace_period: float) -> bool:
        """
        Terminate the child, escalating to a kill after ``grace_period``.

        Returns once the child has been reaped.

        Returns:
            True if the run was cancelled, False if it had already exited
            on its own (it then counts as completed)
        """
        if self._process is None or self.poll() is not None:
            return False

        self.cancelled = True
        self.state = RunState.SIGNAL_SENT
        self._send(signal.SIGTERM)
        try:
            code = self._process.wait(timeout=grace_period)
        except subprocess.TimeoutExpired:
            self.log.warning(
                "run_kill_escalated",
                run_id=self.run_id,
                pid=self._process.pid,
                grace_period=grace_period,
            )
            self.state = RunState.FORCE_KILLED
            self._send(signal.SIGKILL if _POSIX else signal.SIGTERM)
            code = self._process.wait()

        self._mark_exited(code)
        return True

    def _send(self, sig: int) -> None:
        assert self._process is not None
        try:
            if _POSIX:
                os.killpg(self._process.pid, sig)
            elif sig == signal.SIGTERM and self.state is RunState.FORCE_KILLED:
                self._process.kill()
            else:
                self._process.terminate()
        except ProcessLookupError:
            # Group already gone
            pass

    def to_record(self) -> RunRecord:
        """Snapshot this run as a RunRecord."""
        started = self.started_at if self.started_at is not None else time.time()
        return RunRecord(
            run_id=self.run_id,
            action=self.action,
            trigger=self.trigger,
            started_at=started,
            finished_at=self.finished_at if self.finished_at is not None else time.time(),
            exit_code=self.exit_code,
            cancelled=self.cancelled,
        )
