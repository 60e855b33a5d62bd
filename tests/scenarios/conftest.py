"""Shared fixtures for live scenario tests."""

from __future__ import annotations

import os
import shutil
import subprocess
from pathlib import Path

import pytest

from compose_e2e.config import HarnessConfig, load_config

FIXTURE_PROJECTS = ("sentences", "build-test", "volume-test")
DEFAULT_FIXTURES_DIR = Path(__file__).parent.parent / "fixtures"


def docker_available() -> bool:
    """True if a docker CLI is on PATH and its daemon answers."""
    if shutil.which("docker") is None:
        return False
    try:
        result = subprocess.run(
            ["docker", "info"],
            capture_output=True,
            timeout=20,
        )
    except (OSError, subprocess.TimeoutExpired):
        return False
    return result.returncode == 0


@pytest.fixture(scope="module")
def fixtures_dir() -> Path:
    """Directory holding the fixture projects. Skips if incomplete."""
    d = Path(os.environ.get("COMPOSE_E2E_FIXTURES_DIR", DEFAULT_FIXTURES_DIR))
    missing = [p for p in FIXTURE_PROJECTS if not (d / p).is_dir()]
    if missing:
        pytest.skip(f"Fixture projects missing from {d}: {', '.join(missing)}")
    return d


@pytest.fixture(scope="module")
def live_config(fixtures_dir: Path) -> HarnessConfig:
    """Harness config for a live run. Skips without a docker daemon."""
    if not docker_available():
        pytest.skip("docker not available. Start a daemon and retry")
    return load_config().override(fixtures_dir=str(fixtures_dir), source="test")


def project_leftovers(project: str) -> list[str]:
    """Names in `docker ps --all` that still belong to project."""
    result = subprocess.run(
        ["docker", "ps", "--all", "--format", "{{.Names}}"],
        capture_output=True,
        text=True,
        check=True,
    )
    return [name for name in result.stdout.split() if name.startswith(f"{project}_")]
