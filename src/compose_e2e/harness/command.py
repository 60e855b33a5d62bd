"""Command runner for CLI invocations.

This module executes a single CLI invocation against a session, captures
its output and exposes expectation checks over that output.
"""

from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass
from enum import Enum

from ..errors import CommandFailure
from ..shared.logging import get_logger
from .session import Session

logger = get_logger(__name__)

# Exit code reported when the binary cannot be started at all
EXIT_NOT_STARTED = 127

_READ_CHUNK = 4096


class OutputStream(Enum):
    """Which captured stream an expectation looks at."""

    COMBINED = "combined"
    STDOUT = "stdout"
    STDERR = "stderr"


class ExpectationKind(Enum):
    """How an expectation matches its value against output."""

    CONTAINS = "contains"
    EXACT = "exact"
    REGEX = "regex"


@dataclass(frozen=True)
class Expectation:
    """Predicate over one output stream of a CommandResult."""

    value: str
    kind: ExpectationKind = ExpectationKind.CONTAINS
    stream: OutputStream = OutputStream.COMBINED
    negate: bool = False

    def matches(self, text: str) -> bool:
        """Evaluate the predicate against text."""
        if self.kind == ExpectationKind.CONTAINS:
            hit = self.value in text
        elif self.kind == ExpectationKind.EXACT:
            hit = text.strip() == self.value.strip()
        else:
            hit = re.search(self.value, text, re.MULTILINE) is not None
        return not hit if self.negate else hit

    def describe(self) -> str:
        verb = {
            ExpectationKind.CONTAINS: "contains",
            ExpectationKind.EXACT: "equals",
            ExpectationKind.REGEX: "matches",
        }[self.kind]
        if self.negate:
            verb = f"not {verb}"
        return f"{self.stream.value} {verb} {self.value!r}"


def contains(value: str, stream: OutputStream = OutputStream.COMBINED) -> Expectation:
    """Expectation that output contains value."""
    return Expectation(value, ExpectationKind.CONTAINS, stream)


def absent(value: str, stream: OutputStream = OutputStream.COMBINED) -> Expectation:
    """Expectation that output no longer contains value."""
    return Expectation(value, ExpectationKind.CONTAINS, stream, negate=True)


@dataclass(frozen=True)
class CommandResult:
    """Captured outcome of one CLI invocation."""

    command: tuple[str, ...]
    exit_code: int
    stdout: str
    stderr: str
    combined: str
    elapsed_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0

    def output(self, stream: OutputStream = OutputStream.COMBINED) -> str:
        """Text of the selected stream."""
        if stream == OutputStream.STDOUT:
            return self.stdout
        if stream == OutputStream.STDERR:
            return self.stderr
        return self.combined


def assert_expectation(result: CommandResult, expectation: Expectation) -> None:
    """Check an expectation against a result.

    Raises:
        CommandFailure: with the expectation and the captured output of the
            selected stream
    """
    text = result.output(expectation.stream)
    if expectation.matches(text):
        return
    raise CommandFailure(
        message=f"Expectation failed: {expectation.describe()}",
        command=result.command,
        exit_code=result.exit_code,
        output=text,
        expectation=expectation.describe(),
    )


async def _drain(
    stream: asyncio.StreamReader,
    own: list[bytes],
    combined: list[bytes],
) -> None:
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            return
        own.append(chunk)
        combined.append(chunk)


def _decode(chunks: list[bytes]) -> str:
    return b"".join(chunks).decode("utf-8", errors="replace")


async def run_allowing_error(session: Session, args: list[str] | tuple[str, ...]) -> CommandResult:
    """Run a CLI invocation without treating a non-zero exit as an error.

    Used for best-effort calls such as removing an image that may not exist.

    Args:
        session: Session providing binary, cwd and env
        args: Arguments after the binary

    Returns:
        CommandResult. If the binary cannot be started the exit code is 127
        and stderr holds the OS error.
    """
    argv = session.command(args)
    command = tuple(argv)
    logger.debug("command_started", command=" ".join(command), cwd=str(session.working_dir or "."))
    start = time.monotonic()

    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            stdin=asyncio.subprocess.DEVNULL,
            cwd=str(session.working_dir) if session.working_dir else None,
            env=session.environ(),
        )
    except OSError as e:
        message = f"cannot execute {argv[0]}: {e}"
        logger.warning("command_not_started", command=" ".join(command), error=str(e))
        return CommandResult(
            command=command,
            exit_code=EXIT_NOT_STARTED,
            stdout="",
            stderr=message,
            combined=message,
            elapsed_seconds=time.monotonic() - start,
        )

    stdout: list[bytes] = []
    stderr: list[bytes] = []
    combined: list[bytes] = []
    await asyncio.gather(
        _drain(proc.stdout, stdout, combined),
        _drain(proc.stderr, stderr, combined),
    )
    exit_code = await proc.wait()

    result = CommandResult(
        command=command,
        exit_code=exit_code,
        stdout=_decode(stdout),
        stderr=_decode(stderr),
        combined=_decode(combined),
        elapsed_seconds=time.monotonic() - start,
    )
    logger.debug(
        "command_finished",
        command=" ".join(command),
        exit_code=exit_code,
        elapsed=round(result.elapsed_seconds, 3),
        output=result.combined,
    )
    return result


async def run(session: Session, args: list[str] | tuple[str, ...]) -> CommandResult:
    """Run a CLI invocation that is expected to succeed.

    Raises:
        CommandFailure: exit code is non-zero or the binary could not start
    """
    result = await run_allowing_error(session, args)
    if not result.succeeded:
        raise CommandFailure(
            message=f"Command exited with status {result.exit_code}",
            command=result.command,
            exit_code=result.exit_code,
            output=result.combined,
            expectation="exit code 0",
        )
    return result


def run_sync(session: Session, args: list[str] | tuple[str, ...]) -> CommandResult:
    """Synchronous wrapper for run."""
    return asyncio.run(run(session, args))


def run_allowing_error_sync(session: Session, args: list[str] | tuple[str, ...]) -> CommandResult:
    """Synchronous wrapper for run_allowing_error."""
    return asyncio.run(run_allowing_error(session, args))
