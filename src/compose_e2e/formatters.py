"""CLI output formatting helpers.

All formatters work with harness report objects.
"""

import json
from typing import Any

import click
import yaml

from .errors import CommandFailure, ConvergenceTimeout, HarnessError, excerpt
from .harness import RunReport, ScenarioReport, StepStatus

_MARKS = {
    StepStatus.PASSED: "✓",
    StepStatus.FAILED: "✗",
    StepStatus.WARNED: "⚠",
}

# Output excerpt shown per failure in the human summary
SUMMARY_EXCERPT = 600


def _indent(text: str, prefix: str) -> str:
    return "\n".join(f"{prefix}{line}" for line in text.splitlines())


def format_failure(error: HarnessError) -> str:
    """Expected vs. actual description of a failure."""
    if isinstance(error, CommandFailure):
        lines = [error.message]
        if error.command:
            lines.append(f"command:  {' '.join(error.command)}")
        if error.expectation:
            lines.append(f"expected: {error.expectation}")
        lines.append("actual:")
        lines.append(_indent(excerpt(error.output, SUMMARY_EXCERPT) or "<no output>", "  "))
        return "\n".join(lines)
    if isinstance(error, ConvergenceTimeout):
        lines = [f"{error.message} ({error.attempts} attempts, {error.elapsed_seconds:.1f}s)"]
        if error.last_error:
            lines.append(f"last error: {error.last_error}")
        if error.last_observed is not None:
            lines.append("last observed:")
            lines.append(_indent(excerpt(str(error.last_observed), SUMMARY_EXCERPT), "  "))
        return "\n".join(lines)
    lines = [error.message]
    observed = error.data.get("observed")
    if observed:
        lines.append("actual:")
        lines.append(_indent(excerpt(str(observed), SUMMARY_EXCERPT), "  "))
    return "\n".join(lines)


def print_scenario_report(report: ScenarioReport, verbose: bool = False) -> None:
    """Print one scenario's steps and failures.

    Args:
        report: Scenario report
        verbose: Also print the outcome of deferred cleanups
    """
    status = "PASS" if report.passed else "FAIL"
    click.echo(f"{status} {report.name} (project {report.project}, {report.elapsed_seconds:.1f}s)")

    for step in report.steps:
        click.echo(f"  {_MARKS[step.status]} {step.name}")
        for failure in step.failures:
            click.echo(_indent(format_failure(failure), "      "))

    for cleanup in report.cleanups:
        if cleanup.status == StepStatus.PASSED and not verbose:
            continue
        click.echo(f"  {_MARKS[cleanup.status]} cleanup: {cleanup.name}")
        for failure in cleanup.failures:
            click.echo(_indent(str(failure), "      "))


def print_run_report(report: RunReport, verbose: bool = False) -> None:
    """Print the summary of a whole run."""
    if report.bootstrap_error is not None:
        click.echo(f"Bootstrap failed: {report.bootstrap_error.message}", err=True)
        for key, value in report.bootstrap_error.data.items():
            click.echo(f"  {key}: {value}", err=True)
        return

    for scenario in report.scenarios:
        print_scenario_report(scenario, verbose=verbose)
        click.echo()

    failed_steps = sum(len(s.failed_steps) for s in report.scenarios)
    failed = [s.name for s in report.scenarios if not s.passed]
    warnings = sum(len(s.cleanup_failures) for s in report.scenarios)

    if failed:
        click.echo(
            f"{len(failed)} of {len(report.scenarios)} scenarios failed "
            f"({failed_steps} failed steps): {', '.join(failed)}"
        )
    else:
        click.echo(f"All {len(report.scenarios)} scenarios passed")
    if warnings:
        click.echo(f"{warnings} cleanup warnings")


def print_report_json(report: RunReport) -> None:
    click.echo(json.dumps(report.to_dict(), indent=2, default=str))


def print_config_yaml(data: dict[str, Any], sources: dict[str, str] | None = None) -> None:
    """Print config as YAML, optionally annotating where values came from.

    Args:
        data: Configuration data
        sources: Optional key -> source mapping
    """
    yaml_str = yaml.dump(data, default_flow_style=False, sort_keys=False)
    if not sources:
        click.echo(yaml_str)
        return
    for line in yaml_str.splitlines():
        key = line.split(":", 1)[0]
        if key in sources and not line.startswith(" ") and not line.startswith("-"):
            click.echo(f"{line}  # {sources[key]}")
        else:
            click.echo(line)
