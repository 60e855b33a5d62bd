"""Named and anonymous volumes declared by a project with a built image."""

from __future__ import annotations

from ..config import HarnessConfig
from ..harness import (
    Mount,
    Scenario,
    StepContext,
    container_name,
    image_name,
    parse_mounts,
    volume_name,
)

PROJECT_DIR = "volume-test"
WEB_URL = "http://localhost:8090"


def compose_volume_scenario(project: str, config: HarnessConfig | None = None) -> Scenario:
    scenario = Scenario(
        "compose-volume",
        project=project,
        description="bind mount data is served and volume specs are applied",
    )
    static_volume = volume_name(project, "staticVol")

    def compose(*args: str) -> tuple[str, ...]:
        return ("compose", "--project-directory", PROJECT_DIR, "--project-name", project, *args)

    @scenario.step("up with build and no image name, volume")
    async def up(ctx: StepContext) -> None:
        await ctx.run_allowing_error("rmi", image_name(project, "nginx"))
        await ctx.run_allowing_error("volume", "rm", static_volume)
        ctx.defer("down", lambda: ctx.run(*compose("down")))
        await ctx.run(*compose("up", "-d"))

    @scenario.step("access bind mount data")
    async def bind_mount(ctx: StepContext) -> None:
        await ctx.poll_http(WEB_URL, body="Hello from Nginx container")

    @scenario.step("check container volume specs")
    async def volume_specs(ctx: StepContext) -> None:
        res = await ctx.run(
            "inspect",
            container_name(project, "nginx2"),
            "--format",
            "{{ json .HostConfig.Mounts }}",
        )
        expected = [
            Mount(type="volume", target="/usr/share/nginx/html", source=static_volume, read_only=True),
            Mount(type="volume", target="/usr/src/app/node_modules"),
        ]
        ctx.check(parse_mounts(res) == expected, "unexpected mounts on nginx2", observed=res.stdout)

    @scenario.cleanup("cleanup volume project")
    async def cleanup(ctx: StepContext) -> None:
        await ctx.run(*compose("down"))
        await ctx.run("volume", "rm", static_volume)

    return scenario
