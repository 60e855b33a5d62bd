"""Execution sessions bound to one located CLI binary."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType


@dataclass(frozen=True)
class Session:
    """Isolated execution context for one scenario.

    Immutable. Safe to share read-only between concurrently running
    scenarios as long as each one uses its own project identifier.
    """

    binary_path: Path
    working_dir: Path | None = None
    env: Mapping[str, str] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))

    @property
    def bin_dir(self) -> Path:
        """Directory holding the CLI binary."""
        return self.binary_path.parent

    def with_overrides(
        self,
        working_dir: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> Session:
        """Return a new session with a different cwd and/or extra env vars.

        Env overrides are merged on top of the existing ones.
        """
        merged = dict(self.env)
        if env:
            merged.update(env)
        return replace(
            self,
            working_dir=working_dir if working_dir is not None else self.working_dir,
            env=merged,
        )

    def command(self, args: tuple[str, ...] | list[str]) -> list[str]:
        """Full argv for an invocation."""
        return [str(self.binary_path), *args]

    def environ(self) -> dict[str, str]:
        """Environment for the child process.

        Parent environment, binary directory prepended to PATH, then the
        session overrides.
        """
        env = dict(os.environ)
        path = env.get("PATH", "")
        env["PATH"] = f"{self.bin_dir}{os.pathsep}{path}" if path else str(self.bin_dir)
        env.update(self.env)
        return env


def new_session(
    bin_dir: Path | str,
    binary_name: str = "docker",
    working_dir: Path | str | None = None,
    env: Mapping[str, str] | None = None,
) -> Session:
    """Create a session for the binary located by bootstrap.

    Args:
        bin_dir: Directory returned by harness setup
        binary_name: Executable name inside bin_dir
        working_dir: Optional cwd for every invocation
        env: Optional environment overrides

    Returns:
        New Session
    """
    return Session(
        binary_path=Path(bin_dir) / binary_name,
        working_dir=Path(working_dir) if working_dir is not None else None,
        env=dict(env or {}),
    )
