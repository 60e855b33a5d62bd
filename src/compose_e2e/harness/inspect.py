"""Structured views of CLI inspection output.

`inspect` and `ps --format json` print JSON; parsing it into typed records
keeps label and mount checks independent of whitespace and key order.
Output that is not JSON is left to substring expectations.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from ..errors import CommandFailure
from .command import CommandResult


@dataclass
class Mount:
    """A mount as declared in a container's HostConfig."""

    type: str
    target: str
    source: str | None = None
    read_only: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Mount:
        return cls(
            type=data.get("Type", ""),
            target=data.get("Target", data.get("Destination", "")),
            source=data.get("Source") or None,
            read_only=bool(data.get("ReadOnly", False)),
        )


@dataclass
class ContainerRecord:
    """Subset of `inspect <container>` the scenarios look at."""

    name: str
    labels: dict[str, str] = field(default_factory=dict)
    mounts: list[Mount] = field(default_factory=list)
    status: str | None = None
    image: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContainerRecord:
        config = data.get("Config") or {}
        host_config = data.get("HostConfig") or {}
        state = data.get("State") or {}
        return cls(
            name=str(data.get("Name", "")).lstrip("/"),
            labels=dict(config.get("Labels") or {}),
            mounts=[Mount.from_dict(m) for m in host_config.get("Mounts") or []],
            status=state.get("Status"),
            image=config.get("Image"),
        )


@dataclass
class NetworkRecord:
    """Subset of `network inspect <network>`."""

    name: str
    labels: dict[str, str] = field(default_factory=dict)
    driver: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NetworkRecord:
        return cls(
            name=data.get("Name", ""),
            labels=dict(data.get("Labels") or {}),
            driver=data.get("Driver"),
        )


@dataclass
class PsEntry:
    """One row of `ps --format json`."""

    name: str
    service: str | None = None
    state: str | None = None
    project: str | None = None


def _load_json(result: CommandResult) -> Any:
    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise CommandFailure(
            message=f"Output is not JSON: {e}",
            command=result.command,
            exit_code=result.exit_code,
            output=result.stdout,
            expectation="JSON document",
        ) from e


def parse_inspect(result: CommandResult) -> list[dict[str, Any]]:
    """Parse `inspect` output: a JSON array of objects.

    Raises:
        CommandFailure: output is not a JSON array
    """
    data = _load_json(result)
    if not isinstance(data, list):
        raise CommandFailure(
            message="Inspect output is not a JSON array",
            command=result.command,
            exit_code=result.exit_code,
            output=result.stdout,
            expectation="JSON array",
        )
    return data


def parse_containers(result: CommandResult) -> list[ContainerRecord]:
    return [ContainerRecord.from_dict(item) for item in parse_inspect(result)]


def parse_networks(result: CommandResult) -> list[NetworkRecord]:
    return [NetworkRecord.from_dict(item) for item in parse_inspect(result)]


def parse_mounts(result: CommandResult) -> list[Mount]:
    """Parse `inspect --format '{{ json .HostConfig.Mounts }}'` output."""
    data = _load_json(result)
    return [Mount.from_dict(m) for m in data or []]


def parse_ps(result: CommandResult) -> list[PsEntry]:
    """Parse `ps --format json` output.

    Accepts both one JSON object per line and a single JSON array; lines
    that are not JSON are skipped.
    """
    output = result.stdout.strip()
    if not output:
        return []

    rows: list[dict[str, Any]] = []
    if output.startswith("["):
        try:
            rows = json.loads(output)
        except json.JSONDecodeError:
            rows = []
    else:
        for line in output.splitlines():
            if line.strip():
                try:
                    rows.append(json.loads(line))
                except json.JSONDecodeError:
                    pass

    return [
        PsEntry(
            name=row.get("Name", row.get("Names", "")),
            service=row.get("Service"),
            state=row.get("State"),
            project=row.get("Project"),
        )
        for row in rows
    ]


def check_labels(
    labels: dict[str, str],
    expected: dict[str, str | None],
) -> list[str]:
    """Compare labels against expected key/value pairs.

    A None value only requires the key to be present.

    Returns:
        One message per mismatch; empty when everything matches.
    """
    problems = []
    for key, value in expected.items():
        if key not in labels:
            problems.append(f"label {key!r} missing")
        elif value is not None and labels[key] != value:
            problems.append(f"label {key!r} is {labels[key]!r}, expected {value!r}")
    return problems
