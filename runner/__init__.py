"""
Loopwatch Runner Package.

Child process execution with cancel-then-kill semantics.
Requires Python 3.11+.
"""

from runner.models import Action, RunOutcome, RunRecord, RunState
from runner.actions import PRESETS, preset_command, resolve_action
from runner.process_run import ProcessRun
from runner.process_runner import Runner

__all__ = [
    # Enums
    "RunState",
    "RunOutcome",
    # Data classes
    "Action",
    "RunRecord",
    # Actions
    "PRESETS",
    "preset_command",
    "resolve_action",
    # Execution
    "ProcessRun",
    "Runner",
]
