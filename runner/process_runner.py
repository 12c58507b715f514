"""
Loopwatch Runner.

Executes the configured action on each trigger, at most one child at a time.
Requires Python 3.11+.
"""

import itertools
import queue
import sys
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TextIO

from runner.models import Action, RunOutcome, RunRecord
from runner.process_run import ProcessRun
from utils.errors import SpawnError
from utils.logger import LoggerMixin
from watcher.events import Trigger

_CLEAR_SCREEN = "\033[2J\033[H"


@dataclass(frozen=True, slots=True)
class _RunExited:
    run: ProcessRun


_SHUTDOWN = object()


class Runner(LoggerMixin):
    """
    Runs an action on each trigger.

    All spawning and cancelling happens on one worker thread fed by an
    inbox queue, so ``submit()`` never blocks on a child and triggers are
    handled strictly in order. Each trigger first resolves the live run
    (it either already finished or gets terminated and reaped) and only
    then spawns the next one.
    """

    def __init__(
        self,
        action: Action,
        grace_period: float,
        on_record: Callable[[RunRecord], Any] | None = None,
        clear_screen: bool = True,
        stream: TextIO | None = None,
    ) -> None:
        """
        Initialize the runner.

        Args:
            action: Command template to execute
            grace_period: Seconds between SIGTERM and SIGKILL on cancellation
            on_record: Called with the RunRecord of every run that completes
                uncancelled
            clear_screen: Clear the terminal before each run
            stream: Where the screen clear is written (defaults to stdout)
        """
        if grace_period <= 0:
            raise ValueError(f"grace_period must be positive, got {grace_period}")
        self._action = action
        self._grace_period = grace_period
        self._on_record = on_record
        self._clear_screen = clear_screen
        self._stream = stream

        self._inbox: queue.Queue[Any] = queue.Queue()
        self._worker: threading.Thread | None = None
        self._live: ProcessRun | None = None
        self._run_ids = itertools.count(1)
        self._stopping = threading.Event()

    @property
    def action(self) -> Action:
        return self._action

    @property
    def grace_period(self) -> float:
        return self._grace_period

    @property
    def live_run(self) -> ProcessRun | None:
        """The run currently executing, if any."""
        return self._live

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def start(self) -> None:
        """Start the worker thread."""
        if self._worker is not None:
            return
        self._worker = threading.Thread(
            target=self._loop, name="loopwatch-runner", daemon=True
        )
        self._worker.start()
        self.log.debug("runner_started", command=self._action.command_line)

    def submit(self, trigger: Trigger) -> None:
        """Queue a trigger; returns immediately."""
        if self._stopping.is_set():
            self.log.debug("trigger_dropped", sequence=trigger.sequence)
            return
        self._inbox.put(trigger)

    def stop(self, timeout: float | None = None) -> None:
        """
        Cancel any live run and stop the worker.

        Waits at most ``timeout`` seconds (default: grace period plus five).
        """
        if self._stopping.is_set():
            return
        self._stopping.set()
        self._inbox.put(_SHUTDOWN)

        if self._worker is not None:
            self._worker.join(timeout=timeout or self._grace_period + 5.0)
            if self._worker.is_alive():
                self.log.warning("runner_stop_timed_out")
        self.log.debug("runner_stopped")

    def _loop(self) -> None:
        while True:
            message = self._inbox.get()
            if message is _SHUTDOWN:
                self._cancel_live()
                return
            if isinstance(message, _RunExited):
                self._handle_exit(message.run)
            elif not self._stopping.is_set():
                self._handle_trigger(message)

    def _handle_trigger(self, trigger: Trigger) -> None:
        self._cancel_live()
        self._clear()

        run = ProcessRun(next(self._run_ids), self._action, trigger)
        try:
            run.start()
        except SpawnError as e:
            self.log.error(
                "run_spawn_failed",
                run_id=run.run_id,
                command=self._action.command_line,
                error=e.reason,
            )
            return

        self._live = run
        self.log.info(
            "run_started",
            run_id=run.run_id,
            command=self._action.command_line,
            pid=run.pid,
            trigger=trigger.sequence,
            changes=len(trigger.events),
        )
        threading.Thread(
            target=self._wait_for_exit,
            args=(run,),
            name=f"loopwatch-run-{run.run_id}",
            daemon=True,
        ).start()

    def _wait_for_exit(self, run: ProcessRun) -> None:
        run.wait()
        self._inbox.put(_RunExited(run))

    def _handle_exit(self, run: ProcessRun) -> None:
        if run is not self._live:
            # Already resolved by a cancellation
            return
        self._live = None
        self._complete(run)

    def _cancel_live(self) -> None:
        run = self._live
        if run is None:
            return
        self._live = None

        if not run.cancel(self._grace_period):
            self._complete(run)
            return

        record = run.to_record()
        self.log.warning(
            "run_cancelled",
            run_id=run.run_id,
            outcome=RunOutcome.CANCELLED.value,
            state=run.state.value,
            duration=round(record.duration, 3),
        )

    def _complete(self, run: ProcessRun) -> None:
        record = run.to_record()
        if record.succeeded:
            self.log.info(
                "run_succeeded",
                run_id=record.run_id,
                outcome=record.outcome.value,
                exit_code=record.exit_code,
                duration=round(record.duration, 3),
            )
        else:
            self.log.error(
                "run_failed",
                run_id=record.run_id,
                outcome=record.outcome.value,
                exit_code=record.exit_code,
                duration=round(record.duration, 3),
            )

        if self._on_record is not None:
            try:
                self._on_record(record)
            except Exception as e:
                self.log.error("record_callback_failed", error=str(e))

    def _clear(self) -> None:
        if not self._clear_screen:
            return
        stream = self._stream or sys.stdout
        stream.write(_CLEAR_SCREEN)
        stream.flush()
