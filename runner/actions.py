"""
Loopwatch Action Resolution.

Turns "build", "test" or "run" into a concrete command line.
Requires Python 3.11+.
"""

from pathlib import Path

from runner.models import Action
from utils.config import ActionSettings, get_settings
from utils.errors import ActionError

PRESETS = ("build", "test", "run")


def preset_command(intent: str, settings: ActionSettings | None = None) -> str:
    """
    Get the configured command line for a preset.

    Raises:
        ActionError: If ``intent`` is not a known preset
    """
    if intent not in PRESETS:
        raise ActionError(
            f"unknown action {intent!r}; expected one of {', '.join(PRESETS)}"
        )
    settings = settings or get_settings().actions
    return getattr(settings, intent)


def resolve_action(
    intent: str | None = None,
    command: str | None = None,
    settings: ActionSettings | None = None,
    cwd: Path | None = None,
) -> Action:
    """
    Resolve the action for a session.

    An explicit ``command`` wins; otherwise ``intent`` must name a preset.

    Args:
        intent: Preset name ("build", "test" or "run")
        command: Literal command line
        settings: Preset command lines (defaults to application settings)
        cwd: Working directory for the child, None to inherit ours

    Returns:
        The resolved Action

    Raises:
        ActionError: If neither resolves to a non-empty command
    """
    if command is not None:
        return Action.from_command(intent or "command", command, cwd=cwd)
    if intent is None:
        raise ActionError("no action given; pass build, test, run or --command")
    return Action.from_command(intent, preset_command(intent, settings), cwd=cwd)
