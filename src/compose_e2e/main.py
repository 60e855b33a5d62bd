"""CLI main entry point."""

import asyncio
import sys

import click

from .config import ConfigError, HarnessConfig, load_config
from .errors import ConvergenceTimeout
from .formatters import (
    format_failure,
    print_config_yaml,
    print_report_json,
    print_run_report,
)
from .harness import contains, http_get_with_retry, run_harness
from .scenarios import BUILTIN_SCENARIOS, build_scenarios
from .shared.logging import configure_logging


def _log_level(config: HarnessConfig, verbose: int, quiet: bool) -> str:
    if quiet:
        return "error"
    if verbose >= 2:
        return "debug"
    if verbose == 1:
        return "info"
    return config.log_level


@click.group()
@click.option("-c", "--config", "config_path", type=click.Path(), help="Config file path")
@click.option("-v", "--verbose", count=True, help="Increase verbosity")
@click.option("-q", "--quiet", is_flag=True, help="Only print errors")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.option("--log-json", is_flag=True, help="Emit logs as JSON lines")
@click.option("--log-file", type=click.Path(), help="Write logs to a file instead of stderr")
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: str | None,
    verbose: int,
    quiet: bool,
    json_output: bool,
    log_json: bool,
    log_file: str | None,
) -> None:
    """Black-box verification harness for compose-style CLIs."""
    ctx.ensure_object(dict)
    try:
        config = load_config(config_path)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        # Same status as a bad flag; 1 is reserved for failed steps
        sys.exit(2)

    configure_logging(_log_level(config, verbose, quiet), log_file=log_file, json_output=log_json)
    ctx.obj["config"] = config
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["json_output"] = json_output


@cli.command()
@click.option(
    "-s",
    "--scenario",
    "scenario_names",
    multiple=True,
    type=click.Choice(sorted(BUILTIN_SCENARIOS)),
    help="Scenario to run (repeatable, default: all)",
)
@click.option("--bin-dir", type=click.Path(file_okay=False), help="Directory holding the CLI binary")
@click.option("--binary", "binary_name", help="CLI binary name (default: docker)")
@click.option("--build-command", help="Command that builds the CLI before the run")
@click.option("--fixtures-dir", type=click.Path(file_okay=False), help="Fixture projects directory")
@click.option("--max-parallel", type=int, help="Scenarios running at once (0 = all)")
@click.option("--poll-interval", type=float, help="Seconds between convergence probes")
@click.option("--poll-timeout", type=float, help="Seconds before a convergence poll gives up")
@click.option("--fixed-projects", is_flag=True, help="Use fixed project names instead of unique ones")
@click.option("--no-verify", is_flag=True, help="Skip the `<binary> version` check")
@click.pass_context
def run(
    ctx: click.Context,
    scenario_names: tuple[str, ...],
    bin_dir: str | None,
    binary_name: str | None,
    build_command: str | None,
    fixtures_dir: str | None,
    max_parallel: int | None,
    poll_interval: float | None,
    poll_timeout: float | None,
    fixed_projects: bool,
    no_verify: bool,
) -> None:
    """Run scenarios concurrently and report every step.

    Exits 0 when all steps passed, 1 when any step failed and 2 when the
    CLI binary could not be prepared.

    Examples:

        # Run every built-in scenario against docker on PATH
        compose-e2e run --fixtures-dir ./fixtures

        # Run one scenario against a locally built binary
        compose-e2e run -s compose-up --bin-dir ./bin
    """
    try:
        config = ctx.obj["config"].override(
            bin_dir=bin_dir,
            binary_name=binary_name,
            build_command=build_command,
            fixtures_dir=fixtures_dir,
            max_parallel=max_parallel,
            poll_interval=poll_interval,
            poll_timeout=poll_timeout,
            unique_projects=False if fixed_projects else None,
        )
    except ConfigError as e:
        raise click.BadParameter(str(e)) from e

    scenarios = build_scenarios(config, list(scenario_names) or None)
    report = run_harness(scenarios, config, verify=not no_verify)

    if ctx.obj["json_output"]:
        print_report_json(report)
    else:
        print_run_report(report, verbose=ctx.obj["verbose"] > 0)
    sys.exit(report.exit_code)


@cli.command(name="list")
@click.pass_context
def list_scenarios(ctx: click.Context) -> None:
    """List built-in scenarios."""
    if ctx.obj["json_output"]:
        import json

        data = [
            {"name": d.name, "project_prefix": d.project_prefix, "description": d.description}
            for d in BUILTIN_SCENARIOS.values()
        ]
        click.echo(json.dumps(data, indent=2))
        return

    for definition in BUILTIN_SCENARIOS.values():
        click.echo(f"{definition.name:<16} {definition.description}")


@cli.command()
@click.argument("url")
@click.option("--status", "expected_status", type=int, default=200, help="Expected HTTP status")
@click.option("--contains", "body_contains", help="Text the response body must contain")
@click.option("--interval", type=click.FloatRange(min=0), help="Seconds between probes")
@click.option(
    "--timeout", type=click.FloatRange(min=0), help="Seconds before giving up (0 = probe once)"
)
@click.pass_context
def probe(
    ctx: click.Context,
    url: str,
    expected_status: int,
    body_contains: str | None,
    interval: float | None,
    timeout: float | None,
) -> None:
    """Wait for URL to answer with the expected status and print its body."""
    config: HarnessConfig = ctx.obj["config"]
    try:
        body = asyncio.run(
            http_get_with_retry(
                url,
                expected_status=expected_status,
                interval=interval if interval is not None else config.poll_interval,
                timeout=timeout if timeout is not None else config.poll_timeout,
                body=contains(body_contains) if body_contains else None,
            )
        )
    except ConvergenceTimeout as e:
        click.echo(format_failure(e), err=True)
        sys.exit(1)
    click.echo(body)


@cli.group(name="config")
def config_group() -> None:
    """Inspect harness configuration."""


@config_group.command(name="show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show effective configuration and where each value came from."""
    config: HarnessConfig = ctx.obj["config"]
    data = config.to_dict()
    if ctx.obj["json_output"]:
        import json

        click.echo(json.dumps(data, indent=2))
        return
    print_config_yaml(data, {key: config.get_source(key) for key in data})


@cli.command()
def version() -> None:
    """Show version."""
    from . import __version__

    click.echo(f"compose-e2e {__version__}")


def main() -> None:
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
