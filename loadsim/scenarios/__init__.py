"""Pre-built scenarios mirroring the load, exploratory and heavy test plans."""

from __future__ import annotations

from typing import Callable

from loadsim.core.models import ScenarioConfig
from loadsim.exceptions import ConfigurationError
from loadsim.scenarios.base import DEFAULT_BASE_URL, build_simulation_config, run_simulation
from loadsim.scenarios.exploratory import build_exploratory_scenario, run_exploratory_scenario
from loadsim.scenarios.heavy import build_heavy_scenario, run_heavy_scenario
from loadsim.scenarios.load import build_load_scenario, run_load_scenario

__all__ = [
    "BUILTIN_SCENARIOS",
    "DEFAULT_BASE_URL",
    "build_exploratory_scenario",
    "build_heavy_scenario",
    "build_load_scenario",
    "build_simulation_config",
    "get_builtin_scenario",
    "run_exploratory_scenario",
    "run_heavy_scenario",
    "run_load_scenario",
    "run_simulation",
]

BUILTIN_SCENARIOS: dict[str, Callable[[], ScenarioConfig]] = {
    "load": build_load_scenario,
    "exploratory": build_exploratory_scenario,
    "heavy": build_heavy_scenario,
}


def get_builtin_scenario(name: str) -> ScenarioConfig:
    try:
        return BUILTIN_SCENARIOS[name]()
    except KeyError:
        raise ConfigurationError("UNKNOWN_SCENARIO", "no built-in scenario with that name", {
            "scenario": name,
            "known": sorted(BUILTIN_SCENARIOS),
        }) from None
