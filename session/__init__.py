"""
Loopwatch Session Package.

Requires Python 3.11+.
"""

from session.watch_session import WatchSession

__all__ = ["WatchSession"]
