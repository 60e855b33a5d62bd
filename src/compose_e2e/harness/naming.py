"""Resource naming derived from a project identifier.

Every container, network, volume and image a scenario creates is named from
its project identifier, which is what keeps concurrent scenarios apart.
"""

import re
import uuid

SEPARATOR = "_"

_INVALID = re.compile(r"[^a-z0-9_-]")


def normalize_project_name(name: str) -> str:
    """Lower-case and strip characters compose rejects in project names."""
    normalized = _INVALID.sub("", name.lower())
    if not normalized:
        raise ValueError(f"Project name {name!r} has no valid characters")
    return normalized


def unique_project_name(prefix: str) -> str:
    """Project identifier unique to one scenario instance.

    >>> unique_project_name("compose-e2e-demo")  # doctest: +SKIP
    'compose-e2e-demo-1f3a9c0e'
    """
    return f"{normalize_project_name(prefix)}-{uuid.uuid4().hex[:8]}"


def container_name(project: str, service: str, index: int = 1) -> str:
    """Name of replica `index` of a service, e.g. demo_web_1."""
    if index < 1:
        raise ValueError(f"Container index starts at 1, got {index}")
    return f"{project}{SEPARATOR}{service}{SEPARATOR}{index}"


def network_name(project: str, network: str = "default") -> str:
    return f"{project}{SEPARATOR}{network}"


def volume_name(project: str, volume: str) -> str:
    return f"{project}{SEPARATOR}{volume}"


def image_name(project: str, service: str) -> str:
    """Image built for a service that declares no explicit image name."""
    return f"{project}{SEPARATOR}{service}"


def belongs_to(project: str, resource: str) -> bool:
    """Whether a resource name was derived from project."""
    return resource == project or resource.startswith(f"{project}{SEPARATOR}")
