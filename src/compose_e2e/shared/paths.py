"""Temporary path management for compose-e2e.

Every directory the harness creates (the copied CLI binary, per-scenario
CLI config dirs) lives under the system temp dir with a common prefix so
leftovers from an interrupted run are easy to spot.
"""

import shutil
import tempfile
from pathlib import Path

# Prefix for every temp dir the harness creates
TEMP_PREFIX = "compose-e2e-"


def make_temp_dir(purpose: str) -> Path:
    """Create a fresh private temp directory.

    Args:
        purpose: Short label embedded in the directory name (e.g. "bin")

    Returns:
        Path to the new directory (mode 0o700)
    """
    return Path(tempfile.mkdtemp(prefix=f"{TEMP_PREFIX}{purpose}-"))


def remove_temp_dir(path: Path) -> None:
    """Remove a temp directory created by make_temp_dir.

    Missing directories are ignored; any other OS error propagates.
    """
    if path.exists():
        shutil.rmtree(path)
