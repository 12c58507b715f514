"""
Loopwatch Command Line.

Watches source paths and re-runs build, test or run on every change.
Requires Python 3.11+.

Usage:
    loopwatch build src/
    loopwatch test src/ tests/ --debounce-ms 500
    loopwatch --command "cargo run" src/
"""

import argparse
import signal
import sys
from collections.abc import Sequence
from pathlib import Path
from types import FrameType

from runner.actions import PRESETS, resolve_action
from session.watch_session import WatchSession
from utils.config import get_settings
from utils.errors import ActionError, WatchSetupError
from utils.logger import configure_logging, get_logger

logger = get_logger("loopwatch")


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}") from None
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be positive, got {number}")
    return number


def _positive_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number: {value!r}") from None
    if not number > 0:
        raise argparse.ArgumentTypeError(f"must be positive, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="loopwatch",
        description="Re-run build, test or run whenever watched files change.",
    )
    parser.add_argument(
        "targets",
        nargs="*",
        help=(
            f"Action ({', '.join(PRESETS)}) followed by paths to watch. "
            "With --command every target is a path."
        ),
    )
    parser.add_argument(
        "--command",
        "-c",
        help="Literal command line to run instead of a preset",
    )
    parser.add_argument(
        "--debounce-ms",
        type=_positive_int,
        default=None,
        help="Quiet period after the last change before running",
    )
    parser.add_argument(
        "--grace-period",
        type=_positive_float,
        default=None,
        help="Seconds a superseded run gets to exit before it is killed",
    )
    parser.add_argument(
        "--ignore",
        "-i",
        action="append",
        default=[],
        help="Extra glob pattern to ignore (repeatable)",
    )
    parser.add_argument(
        "--no-clear",
        action="store_true",
        help="Do not clear the screen before each run",
    )
    parser.add_argument(
        "--no-initial-run",
        action="store_true",
        help="Wait for the first change instead of running at startup",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level (DEBUG, INFO, WARNING, ERROR)",
    )
    parser.add_argument(
        "--log-format",
        choices=["console", "json"],
        default=None,
        help="Log output format",
    )
    return parser


def _split_targets(
    args: argparse.Namespace, parser: argparse.ArgumentParser
) -> tuple[str | None, list[str]]:
    targets = list(args.targets)
    if args.command is not None:
        return None, targets
    if not targets:
        parser.error(f"an action ({', '.join(PRESETS)}) or --command is required")
    return targets[0], targets[1:]


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point; returns the process exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)
    intent, raw_paths = _split_targets(args, parser)

    settings = get_settings()
    configure_logging(level=args.log_level, fmt=args.log_format)

    try:
        action = resolve_action(intent, command=args.command, settings=settings.actions)
    except ActionError as e:
        logger.error("startup_failed", error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1

    paths = [Path(p) for p in raw_paths] or list(settings.watcher.paths)
    session = WatchSession(
        paths=paths,
        action=action,
        debounce_ms=(
            args.debounce_ms
            if args.debounce_ms is not None
            else settings.watcher.debounce_delay_ms
        ),
        grace_period=(
            args.grace_period
            if args.grace_period is not None
            else settings.runner.grace_period_s
        ),
        ignore_patterns=[*settings.watcher.ignore_patterns, *args.ignore],
        run_on_start=settings.runner.run_on_start and not args.no_initial_run,
        clear_screen=settings.runner.clear_screen and not args.no_clear,
    )

    def _handle_signal(signum: int, _frame: FrameType | None) -> None:
        session.request_stop()

    previous = {
        sig: signal.signal(sig, _handle_signal) for sig in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        session.run()
    except WatchSetupError as e:
        logger.error("startup_failed", error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
