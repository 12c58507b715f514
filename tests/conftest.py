"""
Loopwatch Test Configuration.

Pytest fixtures and configuration.
Requires Python 3.11+.
"""

from pathlib import Path

import pytest

from helpers import RecordCollector


@pytest.fixture
def collector() -> RecordCollector:
    """Collect RunRecords reported by a runner or session."""
    return RecordCollector()


@pytest.fixture
def src_tree(tmp_path: Path) -> Path:
    """Create a small source tree to watch."""
    src = tmp_path / "src"
    (src / "pkg").mkdir(parents=True)
    (src / "main.c").write_text("int main(void) { return 0; }\n")
    (src / "pkg" / "util.c").write_text("int util(void) { return 1; }\n")
    return src
