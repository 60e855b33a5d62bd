"""Convergence polling.

This module repeats a probe until it reports success or a deadline
expires. The HTTP variant waits for an endpoint exposed by the application
under test to answer with the expected status.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx

from ..config import DEFAULT_POLL_INTERVAL, DEFAULT_POLL_TIMEOUT, DEFAULT_REQUEST_TIMEOUT
from ..errors import ConvergenceTimeout
from ..shared.logging import get_logger
from .command import Expectation

logger = get_logger(__name__)


@dataclass
class ProbeResult:
    """Outcome of a single observation attempt."""

    success: bool
    observed: Any = None
    error: str | None = None


Probe = Callable[[], Awaitable[ProbeResult]]


async def poll_until(
    probe: Probe,
    interval: float = DEFAULT_POLL_INTERVAL,
    timeout: float = DEFAULT_POLL_TIMEOUT,
    on_attempt: Callable[[int, ProbeResult], None] | None = None,
    description: str = "condition",
) -> Any:
    """Poll a probe until it succeeds or the timeout elapses.

    The first probe is issued immediately. Elapsed time is measured with the
    monotonic clock so clock adjustments cannot shorten or stretch the wait.

    Args:
        probe: Async callable returning a ProbeResult. Exceptions it raises
            count as unsuccessful attempts, as do probes still running at
            the deadline (or one interval past it for the final probe).
        interval: Seconds between attempts.
        timeout: Total seconds before giving up.
        on_attempt: Optional callback called with (attempt, result) after
            every attempt, for progress reporting.
        description: What is being waited for, used in messages.

    Returns:
        The observed value of the first successful probe.

    Raises:
        ConvergenceTimeout: no successful probe within timeout
    """
    start = time.monotonic()
    attempt = 0
    last = ProbeResult(success=False)

    while True:
        attempt += 1
        # A probe runs until the deadline, or for one interval once it is reached
        budget = max(timeout - (time.monotonic() - start), interval)
        try:
            last = await asyncio.wait_for(probe(), budget)
        except asyncio.TimeoutError:
            last = ProbeResult(
                success=False,
                observed=last.observed,
                error=f"probe did not answer within {budget:.1f}s",
            )
        except Exception as e:
            last = ProbeResult(success=False, error=str(e) or type(e).__name__)

        if on_attempt:
            on_attempt(attempt, last)

        if last.success:
            logger.debug(
                "poll_converged",
                target=description,
                attempts=attempt,
                elapsed=round(time.monotonic() - start, 3),
            )
            return last.observed

        elapsed = time.monotonic() - start
        logger.debug("probe_failed", target=description, attempt=attempt, error=last.error)
        if elapsed >= timeout:
            raise ConvergenceTimeout(
                message=f"{description} did not converge within {timeout:g}s",
                elapsed_seconds=elapsed,
                attempts=attempt,
                last_observed=last.observed,
                last_error=last.error,
                data={"interval": interval, "timeout": timeout},
            )

        # Never sleep past the deadline; the final probe lands on it
        await asyncio.sleep(min(interval, timeout - elapsed))


@dataclass
class PollSpec:
    """HTTP convergence target."""

    url: str
    expected_status: int = 200
    body: Expectation | None = None
    interval: float = DEFAULT_POLL_INTERVAL
    timeout: float = DEFAULT_POLL_TIMEOUT
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT


def http_probe(client: httpx.AsyncClient, spec: PollSpec) -> Probe:
    """Build a probe that issues one GET for spec.url."""

    async def _probe() -> ProbeResult:
        try:
            response = await client.get(spec.url)
        except httpx.ConnectError:
            return ProbeResult(success=False, error="Connection refused")
        except httpx.TimeoutException:
            return ProbeResult(success=False, error="Request timeout")
        except httpx.HTTPError as e:
            return ProbeResult(success=False, error=str(e) or type(e).__name__)

        body = response.text
        if response.status_code != spec.expected_status:
            return ProbeResult(
                success=False,
                observed=body,
                error=f"HTTP {response.status_code}, expected {spec.expected_status}",
            )
        if spec.body is not None and not spec.body.matches(body):
            return ProbeResult(
                success=False,
                observed=body,
                error=f"body failed: {spec.body.value!r}",
            )
        return ProbeResult(success=True, observed=body)

    return _probe


async def poll_http(
    spec: PollSpec,
    transport: httpx.AsyncBaseTransport | None = None,
    on_attempt: Callable[[int, ProbeResult], None] | None = None,
) -> str:
    """Poll an HTTP endpoint until it answers as specified.

    Args:
        spec: Target URL, expected status/body and timing.
        transport: Optional httpx transport (tests use httpx.MockTransport).
        on_attempt: Optional progress callback.

    Returns:
        Response body text of the successful request.

    Raises:
        ConvergenceTimeout: endpoint never answered as expected
    """
    async with httpx.AsyncClient(timeout=spec.request_timeout, transport=transport) as client:
        return await poll_until(
            http_probe(client, spec),
            interval=spec.interval,
            timeout=spec.timeout,
            on_attempt=on_attempt,
            description=f"GET {spec.url}",
        )


async def http_get_with_retry(
    url: str,
    expected_status: int = 200,
    interval: float = DEFAULT_POLL_INTERVAL,
    timeout: float = DEFAULT_POLL_TIMEOUT,
    body: Expectation | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """GET url until it returns expected_status; return the body."""
    spec = PollSpec(
        url=url,
        expected_status=expected_status,
        body=body,
        interval=interval,
        timeout=timeout,
    )
    return await poll_http(spec, transport=transport)


def http_get_with_retry_sync(
    url: str,
    expected_status: int = 200,
    interval: float = DEFAULT_POLL_INTERVAL,
    timeout: float = DEFAULT_POLL_TIMEOUT,
    body: Expectation | None = None,
) -> str:
    """Synchronous wrapper for http_get_with_retry."""
    return asyncio.run(http_get_with_retry(url, expected_status, interval, timeout, body))
