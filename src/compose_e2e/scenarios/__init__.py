"""Built-in compose lifecycle scenarios.

Each scenario expects its fixture project under the configured fixtures
dir and derives every resource name from its own project identifier, so
all of them can run at once.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from ..config import HarnessConfig
from ..harness import Scenario, normalize_project_name, unique_project_name
from .compose_build import compose_build_scenario
from .compose_up import compose_up_scenario
from .compose_volume import compose_volume_scenario

ScenarioFactory = Callable[[str, HarnessConfig | None], Scenario]


@dataclass
class ScenarioDefinition:
    """Registry entry for a built-in scenario."""

    name: str
    project_prefix: str
    factory: ScenarioFactory
    description: str

    def build(self, config: HarnessConfig) -> Scenario:
        """Instantiate with a project identifier for this run."""
        if config.unique_projects:
            project = unique_project_name(self.project_prefix)
        else:
            project = normalize_project_name(self.project_prefix)
        return self.factory(project, config)


BUILTIN_SCENARIOS: dict[str, ScenarioDefinition] = {
    d.name: d
    for d in [
        ScenarioDefinition(
            "compose-up",
            "compose-e2e-demo",
            compose_up_scenario,
            "Bring up the sentences demo, check ps/HTTP/labels, then down",
        ),
        ScenarioDefinition(
            "compose-build",
            "build-test",
            compose_build_scenario,
            "Build images standalone and on up; second up reuses them",
        ),
        ScenarioDefinition(
            "compose-volume",
            "compose-e2e-volume",
            compose_volume_scenario,
            "Serve bind-mounted data and check declared volume specs",
        ),
    ]
}


def build_scenarios(config: HarnessConfig, names: list[str] | None = None) -> list[Scenario]:
    """Instantiate built-in scenarios.

    Args:
        config: Harness configuration
        names: Scenario names to build (default: all)

    Raises:
        KeyError: unknown scenario name
    """
    selected = names or list(BUILTIN_SCENARIOS)
    unknown = [n for n in selected if n not in BUILTIN_SCENARIOS]
    if unknown:
        raise KeyError(f"Unknown scenario(s): {', '.join(unknown)}")
    return [BUILTIN_SCENARIOS[n].build(config) for n in selected]


__all__ = [
    "BUILTIN_SCENARIOS",
    "ScenarioDefinition",
    "build_scenarios",
    "compose_up_scenario",
    "compose_build_scenario",
    "compose_volume_scenario",
]
