"""Unit tests for the harness error taxonomy."""

from compose_e2e.errors import (
    BootstrapFailure,
    CleanupFailure,
    CommandFailure,
    ConvergenceTimeout,
    HarnessError,
    cleanup_failure,
    excerpt,
)


class TestExcerpt:
    def test_short_text_unchanged(self):
        assert excerpt("short") == "short"

    def test_keeps_tail(self):
        text = "head " + "x" * 50 + " tail"
        result = excerpt(text, limit=10)
        assert result.endswith("x" * 5 + " tail")
        assert "head" not in result
        assert "truncated" in result


class TestErrors:
    def test_only_bootstrap_is_fatal(self):
        assert BootstrapFailure().fatal
        for error in (
            HarnessError(message="x"),
            CommandFailure(),
            ConvergenceTimeout(),
            CleanupFailure(),
        ):
            assert not error.fatal

    def test_errors_are_exceptions(self):
        assert isinstance(CommandFailure(), HarnessError)
        assert isinstance(ConvergenceTimeout(), Exception)

    def test_command_failure_shows_expected_and_actual(self):
        error = CommandFailure(
            message="Command exited with status 1",
            command=("docker", "compose", "up"),
            exit_code=1,
            output="no such service: web",
            expectation="exit code 0",
        )
        text = str(error)

        assert "command: docker compose up" in text
        assert "expected: exit code 0" in text
        assert "no such service: web" in text

    def test_convergence_timeout_to_dict(self):
        error = ConvergenceTimeout(
            message="GET http://localhost:8070 did not converge within 1s",
            elapsed_seconds=1.02,
            attempts=3,
            last_error="Connection refused",
        )
        data = error.to_dict()

        assert data["type"] == "ConvergenceTimeout"
        assert data["attempts"] == 3
        assert data["last_error"] == "Connection refused"
        assert data["last_observed"] is None
        assert "3 attempts" in str(error)

    def test_cleanup_failure_wraps_cause(self):
        failure = cleanup_failure("rmi", RuntimeError("image is in use"))

        assert failure.step == "rmi"
        assert failure.cause == "image is in use"
        assert failure.data == {"error_type": "RuntimeError"}
        assert str(failure) == "Cleanup 'rmi' failed [rmi]: image is in use"

    def test_cleanup_failure_without_message(self):
        assert cleanup_failure("down", TimeoutError()).cause == "TimeoutError"
