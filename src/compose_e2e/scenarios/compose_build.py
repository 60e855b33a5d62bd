"""Build images standalone and as part of up; a second up must not rebuild."""

from __future__ import annotations

from ..config import HarnessConfig
from ..harness import Scenario, StepContext, image_name

PROJECT_DIR = "build-test"
WEB_URL = "http://localhost:8070"
BUILD_LINE = "COPY static /usr/share/nginx/html"
CUSTOM_IMAGE = "custom-nginx"


def compose_build_scenario(project: str, config: HarnessConfig | None = None) -> Scenario:
    scenario = Scenario(
        "compose-build",
        project=project,
        description="build named and unnamed images, reuse them on a second up",
    )
    images = (image_name(project, "nginx"), CUSTOM_IMAGE)

    def compose(*args: str) -> tuple[str, ...]:
        return ("compose", "--project-directory", PROJECT_DIR, "--project-name", project, *args)

    async def remove_images(ctx: StepContext) -> None:
        # Make sure nothing is reused from a previous local run
        for image in images:
            await ctx.run_allowing_error("rmi", image)

    @scenario.step("build named and unnamed images")
    async def build(ctx: StepContext) -> None:
        await remove_images(ctx)
        res = await ctx.run(*compose("build"))
        ctx.expect(res, BUILD_LINE)
        for image in images:
            await ctx.run("image", "inspect", image)

    @scenario.step("build as part of up")
    async def build_on_up(ctx: StepContext) -> None:
        await remove_images(ctx)
        ctx.defer("down", lambda: ctx.run(*compose("down")))
        res = await ctx.run(*compose("up", "-d"))
        ctx.expect(res, BUILD_LINE)

        await ctx.poll_http(WEB_URL, body="Hello from Nginx container")

        for image in images:
            await ctx.run("image", "inspect", image)

    @scenario.step("no rebuild when up again")
    async def no_rebuild(ctx: StepContext) -> None:
        res = await ctx.run(*compose("up", "-d"))
        ctx.expect_absent(res, BUILD_LINE)

    @scenario.cleanup("cleanup build project")
    async def cleanup(ctx: StepContext) -> None:
        await ctx.run(*compose("down"))
        for image in images:
            await ctx.run("rmi", image)

    return scenario
