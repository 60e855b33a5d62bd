"""Harness bootstrap and run entry point.

This module provides one-time process-wide setup: optionally build the CLI,
locate the binary, verify it responds, and copy it into a private temp dir
shared read-only by every scenario. Teardown removes that dir.
"""

from __future__ import annotations

import asyncio
import shlex
import shutil
import subprocess
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

import httpx

from ..config import HarnessConfig
from ..errors import BootstrapFailure, excerpt
from ..shared.logging import get_logger
from ..shared.paths import make_temp_dir, remove_temp_dir
from .orchestrator import PollDefaults, RunReport, Scenario, SessionFactory, run_scenarios
from .session import Session, new_session

logger = get_logger(__name__)

Teardown = Callable[[], None]


def build_binary(build_command: str, cwd: Path | None = None) -> None:
    """Run the configured build command.

    Raises:
        BootstrapFailure: command missing or exited non-zero
    """
    logger.info("build_started", command=build_command)
    try:
        result = subprocess.run(
            shlex.split(build_command),
            capture_output=True,
            text=True,
            cwd=cwd,
        )
    except FileNotFoundError as e:
        raise BootstrapFailure(
            message=f"Build command not found: {build_command}",
            data={"error": str(e)},
        ) from e

    if result.returncode != 0:
        raise BootstrapFailure(
            message=f"Build command failed with status {result.returncode}: {build_command}",
            data={"output": excerpt(result.stdout + result.stderr)},
        )
    logger.info("build_finished", command=build_command)


def locate_binary(
    binary_name: str,
    bin_dir: Path | None = None,
    search_dirs: list[Path] | None = None,
) -> Path:
    """Find the CLI binary.

    Lookup order: the explicit bin_dir, each search dir, then PATH.

    Raises:
        BootstrapFailure: binary not found, or bin_dir given but missing it
    """
    if bin_dir is not None:
        candidate = bin_dir / binary_name
        if candidate.is_file():
            return candidate.resolve()
        raise BootstrapFailure(
            message=f"{binary_name} not found in configured bin_dir {bin_dir}",
            data={"bin_dir": str(bin_dir)},
        )

    for directory in search_dirs or []:
        candidate = directory / binary_name
        if candidate.is_file():
            return candidate.resolve()

    found = shutil.which(binary_name)
    if found:
        return Path(found).resolve()

    raise BootstrapFailure(
        message=f"{binary_name} not found in {[str(d) for d in search_dirs or []]} or PATH",
        data={"binary_name": binary_name},
    )


def verify_binary(binary: Path, timeout: float = 30.0) -> str:
    """Check that the binary runs and reports a version.

    Returns:
        First line of the version output.

    Raises:
        BootstrapFailure: binary fails to run, times out or exits non-zero
    """
    try:
        result = subprocess.run(
            [str(binary), "version"],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise BootstrapFailure(message=f"{binary} version timed out") from e
    except OSError as e:
        raise BootstrapFailure(message=f"Cannot execute {binary}: {e}") from e

    if result.returncode != 0:
        raise BootstrapFailure(
            message=f"{binary} version exited with status {result.returncode}",
            data={"output": excerpt(result.stdout + result.stderr)},
        )
    lines = result.stdout.strip().splitlines()
    return lines[0] if lines else ""


def setup(config: HarnessConfig, verify: bool = True) -> tuple[Path, Teardown]:
    """Prepare the binary every scenario will use.

    Args:
        config: Harness configuration
        verify: Run `<binary> version` before accepting the binary

    Returns:
        Tuple of (bin_dir, teardown). teardown removes bin_dir and is safe to
        call more than once; only the first call does anything.

    Raises:
        BootstrapFailure: any step failed; nothing is left behind
    """
    if config.build_command:
        build_binary(config.build_command)

    binary = locate_binary(config.binary_name, config.bin_dir, config.search_dirs)
    version = verify_binary(binary) if verify else ""

    bin_dir = make_temp_dir("bin")
    try:
        shutil.copy2(binary, bin_dir / config.binary_name)
    except OSError as e:
        remove_temp_dir(bin_dir)
        raise BootstrapFailure(message=f"Cannot copy {binary} to {bin_dir}: {e}") from e

    logger.info("bootstrap_finished", binary=str(binary), bin_dir=str(bin_dir), version=version)

    torn_down = False

    def teardown() -> None:
        nonlocal torn_down
        if torn_down:
            return
        torn_down = True
        remove_temp_dir(bin_dir)
        logger.info("teardown_finished", bin_dir=str(bin_dir))

    return bin_dir, teardown


def scenario_session_factory(
    base: Session,
    config: HarnessConfig,
) -> SessionFactory:
    """Session factory giving every scenario its own cwd and CLI config dir."""

    @contextmanager
    def factory(scenario: Scenario) -> Iterator[Session]:
        env = dict(scenario.env)
        config_dir: Path | None = None
        try:
            if config.config_env_var and config.config_env_var not in env:
                config_dir = make_temp_dir("config")
                env[config.config_env_var] = str(config_dir)
                # CLI plugins (compose itself) are looked up inside the config dir
                if config.plugins_dir is not None and config.plugins_dir.is_dir():
                    (config_dir / "cli-plugins").symlink_to(config.plugins_dir.resolve())
            yield base.with_overrides(
                working_dir=scenario.working_dir or config.fixtures_dir,
                env=env,
            )
        finally:
            if config_dir is not None:
                remove_temp_dir(config_dir)

    return factory


async def run_harness_async(
    scenarios: list[Scenario],
    config: HarnessConfig,
    verify: bool = True,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> RunReport:
    """Bootstrap, run all scenarios concurrently, then tear down.

    A BootstrapFailure is returned in the report before any scenario runs.
    Teardown errors propagate.
    """
    try:
        bin_dir, teardown = await asyncio.to_thread(setup, config, verify)
    except BootstrapFailure as e:
        logger.error("bootstrap_failed", error=str(e))
        return RunReport(bootstrap_error=e)

    try:
        base = new_session(bin_dir, config.binary_name)
        return await run_scenarios(
            scenarios,
            scenario_session_factory(base, config),
            max_parallel=config.max_parallel,
            poll_defaults=PollDefaults.from_config(config),
            http_transport=http_transport,
        )
    finally:
        teardown()


def run_harness(
    scenarios: list[Scenario],
    config: HarnessConfig,
    verify: bool = True,
) -> RunReport:
    """Synchronous wrapper for run_harness_async."""
    return asyncio.run(run_harness_async(scenarios, config, verify))
