"""Asynchronous convergence verification engine.

This package drives an orchestration CLI as a subprocess and checks that
observable state converges to what each scenario expects:
1. Bootstrap locates (or builds) the CLI binary once per run
2. Sessions bind the binary to a working dir and environment
3. The command runner executes invocations and checks their output
4. The poller waits for HTTP endpoints or custom probes to converge
5. The orchestrator runs scenarios concurrently, steps sequentially
"""

from .bootstrap import (
    build_binary,
    locate_binary,
    run_harness,
    run_harness_async,
    scenario_session_factory,
    setup,
    verify_binary,
)
from .command import (
    CommandResult,
    Expectation,
    ExpectationKind,
    OutputStream,
    absent,
    assert_expectation,
    contains,
    run,
    run_allowing_error,
    run_allowing_error_sync,
    run_sync,
)
from .inspect import (
    ContainerRecord,
    Mount,
    NetworkRecord,
    PsEntry,
    check_labels,
    parse_containers,
    parse_inspect,
    parse_mounts,
    parse_networks,
    parse_ps,
)
from .naming import (
    belongs_to,
    container_name,
    image_name,
    network_name,
    normalize_project_name,
    unique_project_name,
    volume_name,
)
from .orchestrator import (
    PollDefaults,
    RunReport,
    Scenario,
    ScenarioReport,
    ScenarioStep,
    StepContext,
    StepKind,
    StepOutcome,
    StepStatus,
    run_scenario,
    run_scenarios,
)
from .poller import (
    PollSpec,
    ProbeResult,
    http_get_with_retry,
    http_get_with_retry_sync,
    poll_http,
    poll_until,
)
from .session import Session, new_session

__all__ = [
    # Bootstrap
    "setup",
    "build_binary",
    "locate_binary",
    "verify_binary",
    "scenario_session_factory",
    "run_harness",
    "run_harness_async",
    # Command runner
    "CommandResult",
    "Expectation",
    "ExpectationKind",
    "OutputStream",
    "contains",
    "absent",
    "assert_expectation",
    "run",
    "run_allowing_error",
    "run_sync",
    "run_allowing_error_sync",
    # Inspection
    "ContainerRecord",
    "NetworkRecord",
    "Mount",
    "PsEntry",
    "check_labels",
    "parse_inspect",
    "parse_containers",
    "parse_networks",
    "parse_mounts",
    "parse_ps",
    # Naming
    "container_name",
    "network_name",
    "volume_name",
    "image_name",
    "unique_project_name",
    "normalize_project_name",
    "belongs_to",
    # Orchestration
    "Scenario",
    "ScenarioStep",
    "StepContext",
    "StepKind",
    "StepStatus",
    "StepOutcome",
    "ScenarioReport",
    "RunReport",
    "PollDefaults",
    "run_scenario",
    "run_scenarios",
    # Polling
    "PollSpec",
    "ProbeResult",
    "poll_until",
    "poll_http",
    "http_get_with_retry",
    "http_get_with_retry_sync",
    # Sessions
    "Session",
    "new_session",
]
