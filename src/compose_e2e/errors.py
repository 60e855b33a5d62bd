"""Error taxonomy for the verification harness.

Only BootstrapFailure is fatal to a run. Every other error is recorded
against the step that raised it and collected into the run report.
"""

from dataclasses import dataclass, field
from typing import Any

# Maximum characters of captured output quoted in an error message
OUTPUT_EXCERPT_LIMIT = 2000


def excerpt(text: str, limit: int = OUTPUT_EXCERPT_LIMIT) -> str:
    """Trim long output, keeping the tail where CLI errors usually are."""
    if len(text) <= limit:
        return text
    return f"...[{len(text) - limit} chars truncated]...\n{text[-limit:]}"


@dataclass
class HarnessError(Exception):
    """Base error class for harness errors."""

    message: str
    data: dict[str, Any] = field(default_factory=dict)

    fatal = False

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dict for reports."""
        error: dict[str, Any] = {"type": type(self).__name__, "message": self.message}
        if self.data:
            error["data"] = self.data
        return error


@dataclass
class BootstrapFailure(HarnessError):
    """The CLI binary could not be built, located or verified."""

    message: str = "Harness bootstrap failed"

    fatal = True


@dataclass
class CommandFailure(HarnessError):
    """A CLI invocation exited unexpectedly or its output missed an expectation."""

    message: str = "Command failed"
    command: tuple[str, ...] = ()
    exit_code: int | None = None
    output: str = ""
    expectation: str | None = None

    def __str__(self) -> str:
        lines = [self.message]
        if self.command:
            lines.append(f"command: {' '.join(self.command)}")
        if self.exit_code is not None:
            lines.append(f"exit code: {self.exit_code}")
        if self.expectation:
            lines.append(f"expected: {self.expectation}")
        lines.append(f"actual output:\n{excerpt(self.output)}")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        error = super().to_dict()
        error.update(
            {
                "command": list(self.command),
                "exit_code": self.exit_code,
                "expectation": self.expectation,
                "output": excerpt(self.output),
            }
        )
        return error


@dataclass
class ConvergenceTimeout(HarnessError):
    """A poll loop exhausted its deadline without a successful probe."""

    message: str = "Condition did not converge"
    elapsed_seconds: float = 0.0
    attempts: int = 0
    last_observed: Any = None
    last_error: str | None = None

    def __str__(self) -> str:
        lines = [
            f"{self.message} after {self.elapsed_seconds:.1f}s ({self.attempts} attempts)",
        ]
        if self.last_error:
            lines.append(f"last error: {self.last_error}")
        if self.last_observed is not None:
            lines.append(f"last observed:\n{excerpt(str(self.last_observed))}")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        error = super().to_dict()
        error.update(
            {
                "elapsed_seconds": round(self.elapsed_seconds, 3),
                "attempts": self.attempts,
                "last_error": self.last_error,
                "last_observed": None
                if self.last_observed is None
                else excerpt(str(self.last_observed)),
            }
        )
        return error


@dataclass
class CleanupFailure(HarnessError):
    """A best-effort cleanup action failed. Logged, never escalated."""

    message: str = "Cleanup failed"
    step: str = ""
    cause: str = ""

    def __str__(self) -> str:
        return f"{self.message} [{self.step}]: {self.cause}"


def cleanup_failure(step: str, error: BaseException) -> CleanupFailure:
    """Wrap any error raised by a cleanup action.

    Args:
        step: Name of the cleanup step or deferred action
        error: Original exception

    Returns:
        CleanupFailure describing the error
    """
    return CleanupFailure(
        message=f"Cleanup '{step}' failed",
        step=step,
        cause=str(error) or type(error).__name__,
        data={"error_type": type(error).__name__},
    )
