"""Scenario orchestration.

A scenario is an ordered list of named steps run against one project
identifier. Steps run sequentially and a failing step does not stop the
steps after it. Scenarios run concurrently with each other, one asyncio
task per scenario.

Usage:
    scenario = Scenario("compose-up", project="demo")

    @scenario.step("up")
    async def up(ctx: StepContext) -> None:
        await ctx.run("compose", "up", "-d", "--project-name", ctx.project)
        ctx.defer("down", lambda: ctx.run("compose", "down", "--project-name", ctx.project))

    report = await run_scenarios([scenario], lambda sc: nullcontext(session))
"""

from __future__ import annotations

import asyncio
import time
import traceback
from collections import Counter
from collections.abc import Awaitable, Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import httpx

from ..config import (
    DEFAULT_POLL_INTERVAL,
    DEFAULT_POLL_TIMEOUT,
    DEFAULT_REQUEST_TIMEOUT,
    HarnessConfig,
)
from ..errors import BootstrapFailure, CleanupFailure, HarnessError, cleanup_failure, excerpt
from ..shared.logging import get_logger
from . import command as command_runner
from .command import CommandResult, Expectation, OutputStream, absent, assert_expectation
from .poller import PollSpec, Probe, poll_http, poll_until
from .session import Session

logger = get_logger(__name__)

StepAction = Callable[["StepContext"], Awaitable[None]]
DeferredAction = Callable[[], Awaitable[Any]]
SessionFactory = Callable[["Scenario"], AbstractContextManager[Session]]


class StepKind(Enum):
    """Whether a step's failure counts against the scenario."""

    CHECK = "check"
    CLEANUP = "cleanup"  # may fail, never propagates


class StepStatus(Enum):
    PASSED = "passed"
    FAILED = "failed"
    WARNED = "warned"  # cleanup failed, logged only


@dataclass
class ScenarioStep:
    """One named step of a scenario."""

    name: str
    action: StepAction
    kind: StepKind = StepKind.CHECK


@dataclass
class Scenario:
    """Named, independently schedulable sequence of steps."""

    name: str
    project: str
    steps: list[ScenarioStep] = field(default_factory=list)
    working_dir: Path | None = None
    env: dict[str, str] = field(default_factory=dict)
    description: str = ""

    def add_step(self, name: str, action: StepAction, kind: StepKind = StepKind.CHECK) -> None:
        self.steps.append(ScenarioStep(name, action, kind))

    def step(self, name: str) -> Callable[[StepAction], StepAction]:
        """Decorator registering a check step."""

        def decorator(action: StepAction) -> StepAction:
            self.add_step(name, action)
            return action

        return decorator

    def cleanup(self, name: str) -> Callable[[StepAction], StepAction]:
        """Decorator registering a best-effort cleanup step."""

        def decorator(action: StepAction) -> StepAction:
            self.add_step(name, action, StepKind.CLEANUP)
            return action

        return decorator


@dataclass
class PollDefaults:
    """Poll timing used when a step does not pass its own."""

    interval: float = DEFAULT_POLL_INTERVAL
    timeout: float = DEFAULT_POLL_TIMEOUT
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT

    @classmethod
    def from_config(cls, config: HarnessConfig) -> PollDefaults:
        return cls(
            interval=config.poll_interval,
            timeout=config.poll_timeout,
            request_timeout=config.request_timeout,
        )


@dataclass
class StepOutcome:
    """Result of one step or deferred cleanup."""

    name: str
    kind: StepKind
    status: StepStatus
    failures: list[HarnessError] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind.value,
            "status": self.status.value,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "failures": [f.to_dict() for f in self.failures],
        }


@dataclass
class ScenarioReport:
    """Collected outcomes of one scenario."""

    name: str
    project: str
    steps: list[StepOutcome] = field(default_factory=list)
    cleanups: list[StepOutcome] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def passed(self) -> bool:
        return all(s.status != StepStatus.FAILED for s in self.steps)

    @property
    def failed_steps(self) -> list[StepOutcome]:
        return [s for s in self.steps if s.status == StepStatus.FAILED]

    @property
    def cleanup_failures(self) -> list[HarnessError]:
        return [
            f
            for outcome in [*self.steps, *self.cleanups]
            if outcome.status == StepStatus.WARNED
            for f in outcome.failures
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "project": self.project,
            "passed": self.passed,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "steps": [s.to_dict() for s in self.steps],
            "cleanups": [c.to_dict() for c in self.cleanups],
        }


@dataclass
class RunReport:
    """Outcome of a whole harness run."""

    scenarios: list[ScenarioReport] = field(default_factory=list)
    bootstrap_error: BootstrapFailure | None = None

    @property
    def passed(self) -> bool:
        return self.bootstrap_error is None and all(s.passed for s in self.scenarios)

    @property
    def exit_code(self) -> int:
        """0 when every step passed, 1 on step failures, 2 on bootstrap failure."""
        if self.bootstrap_error is not None:
            return 2
        return 0 if self.passed else 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "exit_code": self.exit_code,
            "bootstrap_error": self.bootstrap_error.to_dict() if self.bootstrap_error else None,
            "scenarios": [s.to_dict() for s in self.scenarios],
        }


class StepContext:
    """Handle passed to every step action.

    Hard failures (a command exiting non-zero, a poll timing out) raise and
    end the step. Soft checks (expect, check) are recorded and the step
    carries on, so one run reports every mismatch.
    """

    def __init__(
        self,
        scenario: Scenario,
        session: Session,
        step: str,
        deferred: list[tuple[str, DeferredAction]],
        poll_defaults: PollDefaults | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.scenario = scenario
        self.session = session
        self.step = step
        self.poll_defaults = poll_defaults or PollDefaults()
        self.http_transport = http_transport
        self.failures: list[HarnessError] = []
        self._deferred = deferred
        self.log = logger.bind(scenario=scenario.name, project=scenario.project, step=step)

    @property
    def project(self) -> str:
        return self.scenario.project

    async def run(self, *args: str) -> CommandResult:
        """Run the CLI; a non-zero exit fails the step."""
        return await command_runner.run(self.session, args)

    async def run_allowing_error(self, *args: str) -> CommandResult:
        """Run the CLI; any exit status is accepted."""
        return await command_runner.run_allowing_error(self.session, args)

    def expect(self, result: CommandResult, *expectations: Expectation | str) -> bool:
        """Soft-check expectations; plain strings mean 'combined contains'.

        Returns:
            True if every expectation held.
        """
        ok = True
        for expectation in expectations:
            if isinstance(expectation, str):
                expectation = command_runner.contains(expectation)
            try:
                assert_expectation(result, expectation)
            except HarnessError as e:
                self._record(e)
                ok = False
        return ok

    def expect_absent(
        self,
        result: CommandResult,
        value: str,
        stream: OutputStream = OutputStream.COMBINED,
    ) -> bool:
        """Soft-check that output no longer mentions value."""
        return self.expect(result, absent(value, stream))

    def check(self, condition: bool, message: str, observed: Any = None) -> bool:
        """Soft-check an arbitrary condition."""
        if condition:
            return True
        data = {} if observed is None else {"observed": excerpt(str(observed))}
        self._record(HarnessError(message=message, data=data))
        return False

    async def poll_http(
        self,
        url: str,
        expected_status: int = 200,
        body: Expectation | str | None = None,
        interval: float | None = None,
        timeout: float | None = None,
    ) -> str:
        """Wait for url to answer with expected_status; return the body."""
        if isinstance(body, str):
            body = command_runner.contains(body)
        spec = PollSpec(
            url=url,
            expected_status=expected_status,
            body=body,
            interval=interval if interval is not None else self.poll_defaults.interval,
            timeout=timeout if timeout is not None else self.poll_defaults.timeout,
            request_timeout=self.poll_defaults.request_timeout,
        )
        self.log.info("poll_started", url=url, interval=spec.interval, timeout=spec.timeout)
        return await poll_http(spec, transport=self.http_transport)

    async def poll_until(
        self,
        probe: Probe,
        interval: float | None = None,
        timeout: float | None = None,
        description: str = "condition",
    ) -> Any:
        """Wait for a custom probe, using scenario poll defaults."""
        return await poll_until(
            probe,
            interval=interval if interval is not None else self.poll_defaults.interval,
            timeout=timeout if timeout is not None else self.poll_defaults.timeout,
            description=description,
        )

    def defer(self, name: str, action: DeferredAction) -> None:
        """Register a cleanup that runs after the last step, even on failure.

        Deferred cleanups run in reverse registration order and are
        best-effort: their errors are logged, never counted as failures.
        """
        self._deferred.append((name, action))

    def _record(self, error: HarnessError) -> None:
        self.log.warning("check_failed", error=error.message)
        self.failures.append(error)


def _as_harness_error(error: Exception) -> HarnessError:
    if isinstance(error, HarnessError):
        return error
    if isinstance(error, AssertionError):
        # Rewritten asserts (pytest) append the failed expression after the message
        text = str(error.args[0]) if error.args else ""
        message, _, detail = text.partition("\n")
        return HarnessError(
            message=message or "Assertion failed",
            data={"detail": detail} if detail else {},
        )
    return HarnessError(
        message=f"{type(error).__name__}: {error}",
        data={"traceback": traceback.format_exc()},
    )


async def _run_step(
    scenario: Scenario,
    step: ScenarioStep,
    session: Session,
    deferred: list[tuple[str, DeferredAction]],
    poll_defaults: PollDefaults | None,
    http_transport: httpx.AsyncBaseTransport | None,
) -> StepOutcome:
    ctx = StepContext(scenario, session, step.name, deferred, poll_defaults, http_transport)
    start = time.monotonic()
    ctx.log.info("step_started", kind=step.kind.value)

    try:
        await step.action(ctx)
    except Exception as e:
        error = _as_harness_error(e)
        if not isinstance(e, (HarnessError, AssertionError)):
            ctx.log.exception("step_crashed")
        ctx.failures.append(error)

    elapsed = time.monotonic() - start

    if not ctx.failures:
        ctx.log.info("step_passed", elapsed=round(elapsed, 3))
        return StepOutcome(step.name, step.kind, StepStatus.PASSED, elapsed_seconds=elapsed)

    if step.kind == StepKind.CLEANUP:
        failures: list[HarnessError] = [
            f if isinstance(f, CleanupFailure) else cleanup_failure(step.name, f)
            for f in ctx.failures
        ]
        for failure in failures:
            ctx.log.warning("cleanup_failed", error=str(failure))
        return StepOutcome(step.name, step.kind, StepStatus.WARNED, failures, elapsed)

    for failure in ctx.failures:
        ctx.log.error("step_failed", error=str(failure))
    return StepOutcome(step.name, step.kind, StepStatus.FAILED, list(ctx.failures), elapsed)


async def _run_deferred(scenario: Scenario, name: str, action: DeferredAction) -> StepOutcome:
    start = time.monotonic()
    try:
        await action()
    except Exception as e:
        failure = cleanup_failure(name, e)
        logger.warning(
            "cleanup_failed",
            scenario=scenario.name,
            project=scenario.project,
            error=str(failure),
        )
        return StepOutcome(
            name, StepKind.CLEANUP, StepStatus.WARNED, [failure], time.monotonic() - start
        )
    return StepOutcome(name, StepKind.CLEANUP, StepStatus.PASSED, elapsed_seconds=time.monotonic() - start)


async def run_scenario(
    scenario: Scenario,
    session: Session,
    poll_defaults: PollDefaults | None = None,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> ScenarioReport:
    """Run every step of a scenario in order, then its deferred cleanups.

    Never raises for step failures; they are collected in the report.
    """
    report = ScenarioReport(scenario.name, scenario.project)
    deferred: list[tuple[str, DeferredAction]] = []
    start = time.monotonic()
    logger.info("scenario_started", scenario=scenario.name, project=scenario.project)

    for step in scenario.steps:
        report.steps.append(
            await _run_step(scenario, step, session, deferred, poll_defaults, http_transport)
        )

    while deferred:
        name, action = deferred.pop()
        report.cleanups.append(await _run_deferred(scenario, name, action))

    report.elapsed_seconds = time.monotonic() - start
    logger.info(
        "scenario_finished",
        scenario=scenario.name,
        project=scenario.project,
        passed=report.passed,
        elapsed=round(report.elapsed_seconds, 3),
    )
    return report


def warn_shared_projects(scenarios: list[Scenario]) -> list[str]:
    """Log scenarios that share a project identifier.

    Sharing is a caller error the harness cannot prevent; concurrent
    scenarios with one project will see and remove each other's resources.

    Returns:
        Project identifiers used more than once.
    """
    counts = Counter(s.project for s in scenarios)
    shared = sorted(p for p, n in counts.items() if n > 1)
    for project in shared:
        logger.warning(
            "shared_project_identifier",
            project=project,
            scenarios=[s.name for s in scenarios if s.project == project],
        )
    return shared


async def run_scenarios(
    scenarios: list[Scenario],
    session_factory: SessionFactory,
    max_parallel: int = 0,
    poll_defaults: PollDefaults | None = None,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> RunReport:
    """Run scenarios concurrently and wait for all of them.

    Args:
        scenarios: Scenarios to run; no ordering between them is guaranteed.
        session_factory: Returns a context manager yielding the session for
            a scenario; it is exited when the scenario finishes.
        max_parallel: Maximum scenarios running at once (0 = unbounded).
        poll_defaults: Poll timing for steps that do not pass their own.
        http_transport: Optional httpx transport for HTTP polls.

    Returns:
        RunReport with one ScenarioReport per scenario, in input order.
    """
    warn_shared_projects(scenarios)
    semaphore = asyncio.Semaphore(max_parallel) if max_parallel > 0 else None

    async def worker(scenario: Scenario) -> ScenarioReport:
        if semaphore is not None:
            async with semaphore:
                return await _scenario_worker(scenario)
        return await _scenario_worker(scenario)

    async def _scenario_worker(scenario: Scenario) -> ScenarioReport:
        report: ScenarioReport | None = None
        try:
            # Exited on cancellation too
            with session_factory(scenario) as session:
                report = await run_scenario(scenario, session, poll_defaults, http_transport)
        except Exception as e:
            if report is None:
                logger.exception("session_failed", scenario=scenario.name)
                return ScenarioReport(
                    scenario.name,
                    scenario.project,
                    steps=[
                        StepOutcome(
                            "session", StepKind.CHECK, StepStatus.FAILED, [_as_harness_error(e)]
                        )
                    ],
                )
            failure = cleanup_failure("session", e)
            logger.warning("cleanup_failed", scenario=scenario.name, error=str(failure))
            report.cleanups.append(
                StepOutcome("session", StepKind.CLEANUP, StepStatus.WARNED, [failure])
            )
        return report

    reports = await asyncio.gather(*(worker(s) for s in scenarios))
    return RunReport(scenarios=list(reports))
