"""Bring up the sentences demo, check state and labels, tear it down."""

from __future__ import annotations

from ..config import HarnessConfig
from ..harness import (
    Scenario,
    StepContext,
    check_labels,
    container_name,
    network_name,
    parse_containers,
    parse_networks,
)

COMPOSE_FILE = "sentences/docker-compose.yaml"
WEB_URL = "http://localhost:80"
LABEL_PREFIX = "com.docker.compose"


def compose_up_scenario(project: str, config: HarnessConfig | None = None) -> Scenario:
    scenario = Scenario(
        "compose-up",
        project=project,
        description="up/ps/labels/down lifecycle of the sentences demo",
    )
    web = container_name(project, "web")

    def compose(*args: str) -> tuple[str, ...]:
        return ("compose", "-f", COMPOSE_FILE, "--project-name", project, *args)

    @scenario.step("up")
    async def up(ctx: StepContext) -> None:
        ctx.defer("down", lambda: ctx.run(*compose("down")))
        await ctx.run(*compose("up", "-d"))

    @scenario.step("check running project")
    async def check_running(ctx: StepContext) -> None:
        res = await ctx.run(*compose("ps"))
        ctx.expect(res, "web")

        body = await ctx.poll_http(f"{WEB_URL}/words/noun")
        ctx.check('"word":' in body, 'response body has no "word" key', observed=body)

        res = await ctx.run("network", "ls")
        ctx.expect(res, network_name(project))

    @scenario.step("check compose labels")
    async def check_compose_labels(ctx: StepContext) -> None:
        res = await ctx.run("inspect", web)
        containers = parse_containers(res)
        if not ctx.check(len(containers) == 1, f"inspect {web} returned {len(containers)} objects"):
            return
        labels = containers[0].labels
        for problem in check_labels(
            labels,
            {
                f"{LABEL_PREFIX}.container-number": "1",
                f"{LABEL_PREFIX}.project": project,
                f"{LABEL_PREFIX}.oneoff": "False",
                f"{LABEL_PREFIX}.config-hash": None,
                f"{LABEL_PREFIX}.project.config_files": None,
                f"{LABEL_PREFIX}.project.working_dir": None,
                f"{LABEL_PREFIX}.service": "web",
                f"{LABEL_PREFIX}.version": None,
            },
        ):
            ctx.check(False, problem, observed=labels)

        config_files = labels.get(f"{LABEL_PREFIX}.project.config_files", "")
        ctx.check(
            config_files.endswith(COMPOSE_FILE),
            f"config_files label does not point at {COMPOSE_FILE}",
            observed=config_files,
        )

        res = await ctx.run("network", "inspect", network_name(project))
        networks = parse_networks(res)
        if not ctx.check(len(networks) == 1, f"network inspect returned {len(networks)} objects"):
            return
        for problem in check_labels(
            networks[0].labels,
            {
                f"{LABEL_PREFIX}.network": "default",
                f"{LABEL_PREFIX}.project": None,
                f"{LABEL_PREFIX}.version": None,
            },
        ):
            ctx.check(False, problem, observed=networks[0].labels)

    @scenario.step("check user labels")
    async def check_user_labels(ctx: StepContext) -> None:
        res = await ctx.run("inspect", web)
        for container in parse_containers(res):
            for problem in check_labels(container.labels, {"my-label": "test"}):
                ctx.check(False, problem, observed=container.labels)

    @scenario.step("down")
    async def down(ctx: StepContext) -> None:
        await ctx.run(*compose("down"))

    @scenario.step("check containers after down")
    async def check_containers_after_down(ctx: StepContext) -> None:
        res = await ctx.run("ps", "--all")
        ctx.expect_absent(res, project)

    @scenario.step("check networks after down")
    async def check_networks_after_down(ctx: StepContext) -> None:
        res = await ctx.run("network", "ls")
        ctx.expect_absent(res, project)

    return scenario
