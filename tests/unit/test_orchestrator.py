"""Unit tests for scenario orchestration."""

from __future__ import annotations

import asyncio
import time
from contextlib import contextmanager, nullcontext

import httpx
import pytest

from compose_e2e.errors import CleanupFailure, CommandFailure, ConvergenceTimeout
from compose_e2e.harness import (
    PollDefaults,
    RunReport,
    Scenario,
    StepContext,
    StepKind,
    StepStatus,
    network_name,
    run_scenario,
    run_scenarios,
    unique_project_name,
)
from compose_e2e.harness.orchestrator import warn_shared_projects


class TestScenarioDefinition:
    """Tests for building scenarios."""

    def test_decorators_register_in_order(self):
        scenario = Scenario("demo", project="demo")

        @scenario.step("first")
        async def first(ctx):
            pass

        @scenario.cleanup("second")
        async def second(ctx):
            pass

        assert [s.name for s in scenario.steps] == ["first", "second"]
        assert [s.kind for s in scenario.steps] == [StepKind.CHECK, StepKind.CLEANUP]
        assert scenario.steps[0].action is first


class TestRunScenario:
    """Tests for run_scenario."""

    @pytest.mark.asyncio
    async def test_steps_run_in_order(self, fake_session):
        order = []
        scenario = Scenario("ordered", project="ordered")
        for name in ("a", "b", "c"):

            async def action(ctx: StepContext, name=name) -> None:
                order.append(name)
                await asyncio.sleep(0)

            scenario.add_step(name, action)

        report = await run_scenario(scenario, fake_session)

        assert order == ["a", "b", "c"]
        assert report.passed
        assert [s.status for s in report.steps] == [StepStatus.PASSED] * 3

    @pytest.mark.asyncio
    async def test_failed_step_does_not_stop_later_steps(self, fake_session):
        scenario = Scenario("continue", project="continue")
        ran = []

        @scenario.step("fails")
        async def fails(ctx):
            await ctx.run("exit", "1")
            ran.append("unreachable")

        @scenario.step("still runs")
        async def still_runs(ctx):
            ran.append("still runs")

        report = await run_scenario(scenario, fake_session)

        assert ran == ["still runs"]
        assert not report.passed
        assert [s.name for s in report.failed_steps] == ["fails"]
        [failure] = report.steps[0].failures
        assert isinstance(failure, CommandFailure)
        assert failure.exit_code == 1

    @pytest.mark.asyncio
    async def test_soft_checks_collect_every_mismatch(self, fake_session):
        scenario = Scenario("soft", project="soft")
        after_checks = []

        @scenario.step("labels")
        async def labels(ctx):
            res = await ctx.run("echo", '"com.docker.compose.service": "web"')
            assert ctx.expect(res, '"com.docker.compose.service": "web"')
            ctx.expect(res, '"my-label": "test"', '"com.docker.compose.oneoff": "False"')
            ctx.check(1 + 1 == 3, "arithmetic is broken", observed=2)
            after_checks.append(True)

        report = await run_scenario(scenario, fake_session)

        assert after_checks == [True]
        failures = report.steps[0].failures
        assert len(failures) == 3
        assert "my-label" in failures[0].expectation
        assert failures[2].message == "arithmetic is broken"
        assert failures[2].data == {"observed": "2"}

    @pytest.mark.asyncio
    async def test_expect_absent(self, fake_session):
        scenario = Scenario("absent", project="absent")

        @scenario.step("after down")
        async def after_down(ctx):
            res = await ctx.run("echo", "absent_web_1")
            ctx.expect_absent(res, ctx.project)

        report = await run_scenario(scenario, fake_session)

        assert not report.passed
        assert "not contains 'absent'" in report.steps[0].failures[0].expectation

    @pytest.mark.asyncio
    async def test_assertion_error_fails_step(self, fake_session):
        scenario = Scenario("assert", project="assert")

        @scenario.step("plain assert")
        async def plain_assert(ctx):
            assert False, "expected web in ps"

        report = await run_scenario(scenario, fake_session)

        assert report.steps[0].status == StepStatus.FAILED
        assert report.steps[0].failures[0].message == "expected web in ps"

    @pytest.mark.asyncio
    async def test_assertion_explanation_is_kept_apart(self, fake_session):
        scenario = Scenario("assert", project="assert")

        @scenario.step("explained")
        async def explained(ctx):
            raise AssertionError("labels differ\nassert 'a' == 'b'")

        @scenario.step("bare")
        async def bare(ctx):
            raise AssertionError()

        report = await run_scenario(scenario, fake_session)

        explained_failure, bare_failure = (s.failures[0] for s in report.steps)
        assert explained_failure.message == "labels differ"
        assert explained_failure.data == {"detail": "assert 'a' == 'b'"}
        assert bare_failure.message == "Assertion failed"
        assert bare_failure.data == {}

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_recorded(self, fake_session):
        scenario = Scenario("crash", project="crash")

        @scenario.step("crashes")
        async def crashes(ctx):
            {}["missing"]

        @scenario.step("next")
        async def next_step(ctx):
            pass

        report = await run_scenario(scenario, fake_session)

        assert report.steps[0].status == StepStatus.FAILED
        assert report.steps[0].failures[0].message.startswith("KeyError")
        assert "traceback" in report.steps[0].failures[0].data
        assert report.steps[1].status == StepStatus.PASSED

    @pytest.mark.asyncio
    async def test_deferred_cleanup_runs_after_failure(self, fake_session):
        scenario = Scenario("cleanup", project="cleanup")
        events = []

        @scenario.step("up")
        async def up(ctx):
            async def down():
                events.append("down")

            async def remove_volume():
                events.append("volume rm")

            ctx.defer("down", down)
            ctx.defer("volume rm", remove_volume)
            events.append("up")

        @scenario.step("assertion fails")
        async def fails(ctx):
            events.append("check")
            ctx.check(False, "service never answered")

        report = await run_scenario(scenario, fake_session)

        # deferred cleanups run last, most recent first
        assert events == ["up", "check", "volume rm", "down"]
        assert not report.passed
        assert [c.name for c in report.cleanups] == ["volume rm", "down"]
        assert all(c.status == StepStatus.PASSED for c in report.cleanups)

    @pytest.mark.asyncio
    async def test_deferred_cleanup_failure_is_not_escalated(self, fake_session):
        scenario = Scenario("cleanup-fails", project="cleanup-fails")

        @scenario.step("up")
        async def up(ctx):
            ctx.defer("rmi", lambda: ctx.run("exit", "1"))

        report = await run_scenario(scenario, fake_session)

        assert report.passed
        [cleanup] = report.cleanups
        assert cleanup.status == StepStatus.WARNED
        assert isinstance(cleanup.failures[0], CleanupFailure)
        assert report.cleanup_failures == cleanup.failures

    @pytest.mark.asyncio
    async def test_cleanup_step_failure_is_not_escalated(self, fake_session):
        scenario = Scenario("cleanup-step", project="cleanup-step")

        @scenario.cleanup("cleanup volume project")
        async def cleanup(ctx):
            await ctx.run("exit", "1")

        report = await run_scenario(scenario, fake_session)

        assert report.passed
        assert report.steps[0].status == StepStatus.WARNED
        failure = report.steps[0].failures[0]
        assert isinstance(failure, CleanupFailure)
        assert failure.step == "cleanup volume project"

    @pytest.mark.asyncio
    async def test_poll_http_timeout_fails_step(self, fake_session):
        scenario = Scenario("poll", project="poll")
        transport = httpx.MockTransport(lambda request: httpx.Response(502, text="bad gateway"))

        @scenario.step("access endpoint")
        async def access(ctx):
            await ctx.poll_http("http://localhost:8090", timeout=0.1, interval=0.02)

        report = await run_scenario(scenario, fake_session, http_transport=transport)

        [failure] = report.steps[0].failures
        assert isinstance(failure, ConvergenceTimeout)
        assert failure.last_observed == "bad gateway"

    @pytest.mark.asyncio
    async def test_poll_http_uses_defaults_and_body(self, fake_session):
        scenario = Scenario("poll-ok", project="poll-ok")
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text='{"word":"x"}'))
        bodies = []

        @scenario.step("access endpoint")
        async def access(ctx):
            assert ctx.poll_defaults.timeout == 1.0
            bodies.append(await ctx.poll_http("http://localhost/words/noun", body='"word":'))

        report = await run_scenario(
            scenario,
            fake_session,
            poll_defaults=PollDefaults(interval=0.01, timeout=1.0),
            http_transport=transport,
        )

        assert report.passed
        assert bodies == ['{"word":"x"}']


class TestRunScenarios:
    """Tests for concurrent execution."""

    @pytest.mark.asyncio
    async def test_scenarios_run_concurrently(self, fake_session):
        def sleeper(name: str) -> Scenario:
            scenario = Scenario(name, project=name)

            @scenario.step("sleep")
            async def sleep(ctx):
                await ctx.run("sleep", "0.3")

            return scenario

        scenarios = [sleeper(f"s{i}") for i in range(4)]
        start = time.monotonic()

        report = await run_scenarios(scenarios, lambda sc: nullcontext(fake_session))

        assert time.monotonic() - start < 0.3 * 4
        assert report.passed
        assert [s.name for s in report.scenarios] == ["s0", "s1", "s2", "s3"]

    @pytest.mark.asyncio
    async def test_max_parallel_bounds_concurrency(self, fake_session):
        running = 0
        peak = 0

        def scenario(name: str) -> Scenario:
            sc = Scenario(name, project=name)

            @sc.step("work")
            async def work(ctx):
                nonlocal running, peak
                running += 1
                peak = max(peak, running)
                await asyncio.sleep(0.05)
                running -= 1

            return sc

        await run_scenarios(
            [scenario(f"s{i}") for i in range(5)],
            lambda sc: nullcontext(fake_session),
            max_parallel=2,
        )

        assert peak == 2

    @pytest.mark.asyncio
    async def test_failure_does_not_affect_sibling(self, fake_session):
        failing = Scenario("failing", project="failing")
        passing = Scenario("passing", project="passing")

        @failing.step("boom")
        async def boom(ctx):
            await ctx.run("exit", "2")

        @passing.step("slow but fine")
        async def slow(ctx):
            await asyncio.sleep(0.1)
            await ctx.run("echo", "ok")

        report = await run_scenarios([failing, passing], lambda sc: nullcontext(fake_session))

        assert not report.passed
        assert report.exit_code == 1
        assert not report.scenarios[0].passed
        assert report.scenarios[1].passed

    @pytest.mark.asyncio
    async def test_session_factory_is_entered_and_exited(self, fake_session):
        events = []

        @contextmanager
        def factory(scenario):
            events.append(f"enter {scenario.name}")
            yield fake_session.with_overrides(env={"SCENARIO": scenario.name})
            events.append(f"exit {scenario.name}")

        scenario = Scenario("envcheck", project="envcheck")

        @scenario.step("env")
        async def env(ctx):
            res = await ctx.run("env", "SCENARIO")
            ctx.expect(res, "envcheck")

        report = await run_scenarios([scenario], factory)

        assert report.passed
        assert events == ["enter envcheck", "exit envcheck"]

    @pytest.mark.asyncio
    async def test_session_factory_failure_fails_only_that_scenario(self, fake_session):
        def factory(scenario):
            if scenario.name == "broken":
                raise OSError("no space left on device")
            return nullcontext(fake_session)

        report = await run_scenarios(
            [Scenario("broken", project="broken"), Scenario("fine", project="fine")],
            factory,
        )

        assert not report.scenarios[0].passed
        assert report.scenarios[0].steps[0].name == "session"
        assert report.scenarios[1].passed

    @pytest.mark.asyncio
    async def test_session_is_exited_when_cancelled(self, fake_session):
        events = []
        started = asyncio.Event()

        @contextmanager
        def factory(scenario):
            events.append("enter")
            try:
                yield fake_session
            finally:
                events.append("exit")

        scenario = Scenario("stuck", project="stuck")

        @scenario.step("wait forever")
        async def wait_forever(ctx):
            started.set()
            await asyncio.sleep(60)

        task = asyncio.create_task(run_scenarios([scenario], factory))
        await asyncio.wait_for(started.wait(), 5)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert events == ["enter", "exit"]

    @pytest.mark.asyncio
    async def test_isolation_by_project(self, docker_session):
        """Concurrent scenarios only ever remove their own resources."""
        projects = [unique_project_name("iso") for _ in range(3)]

        def lifecycle(project: str) -> Scenario:
            scenario = Scenario(f"lifecycle-{project}", project=project)

            @scenario.step("up")
            async def up(ctx):
                await ctx.run("compose", "--project-name", project, "up", "-d")
                ctx.defer("down", lambda: ctx.run("compose", "--project-name", project, "down"))
                res = await ctx.run("network", "ls")
                ctx.expect(res, network_name(project))

            @scenario.step("down")
            async def down(ctx):
                await ctx.run("compose", "--project-name", project, "down")
                res = await ctx.run("network", "ls")
                ctx.expect_absent(res, project)

            return scenario

        report = await run_scenarios(
            [lifecycle(p) for p in projects], lambda sc: nullcontext(docker_session)
        )

        assert report.passed, report.to_dict()


class TestReports:
    """Tests for report aggregation."""

    def test_empty_run_passes(self):
        assert RunReport().exit_code == 0

    def test_warn_shared_projects(self):
        scenarios = [
            Scenario("a", project="demo"),
            Scenario("b", project="demo"),
            Scenario("c", project="other"),
        ]
        assert warn_shared_projects(scenarios) == ["demo"]

    @pytest.mark.asyncio
    async def test_to_dict(self, fake_session):
        scenario = Scenario("dict", project="dict")

        @scenario.step("fails")
        async def fails(ctx):
            await ctx.run("exit", "5")

        report = RunReport(scenarios=[await run_scenario(scenario, fake_session)])
        data = report.to_dict()

        assert data["passed"] is False
        assert data["exit_code"] == 1
        step = data["scenarios"][0]["steps"][0]
        assert step["status"] == "failed"
        assert step["failures"][0]["type"] == "CommandFailure"
        assert step["failures"][0]["exit_code"] == 5
