from __future__ import annotations

import json
from dataclasses import fields
from pathlib import Path
from typing import Any

from loadsim.core.models import ExecutorKind, ExecutorOptions, Phase, ScenarioConfig, Stage
from loadsim.core.thresholds import parse_thresholds
from loadsim.core.timeparse import parse_duration_to_seconds
from loadsim.exceptions import ConfigurationError, ValidationError

# Options whose values are durations ("50ms", "20s") rather than plain numbers.
_DURATION_OPTIONS = {"lag_first_retry_seconds", "lag_final_retry_seconds", "burst_seconds"}
_OPTION_FIELDS = {f.name for f in fields(ExecutorOptions)}


def load_scenario_file(path: str | Path) -> ScenarioConfig:
    """Load a scenario definition.

    Expected shape:
      {
        "name": "smoke",
        "phases": {
          "reads": {
            "executor": "paginated-read",
            "stages": [{"duration": "30s", "target": 20}, {"duration": "1m", "target": 50}],
            "start": "15s",
            "grace": "10s",
            "tags": {"group": "read"},
            "think_time": ["1s", "3s"],
            "options": {"page_size": 20}
          },
          "probe": {"executor": "replication-probe", "workers": 30, "duration": "60s"}
        },
        "thresholds": {"read_latency_ms{phase:reads}": ["p(95)<500"]}
      }

    A phase either lists ``stages`` or gives ``workers`` + ``duration`` for a
    flat population.
    """

    scenario_path = Path(path)
    try:
        data = json.loads(scenario_path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigurationError("SCENARIO_FILE_NOT_FOUND", "scenario file does not exist", {
            "path": str(scenario_path),
        }) from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError("INVALID_SCENARIO_FILE", "scenario file is not valid JSON", {
            "path": str(scenario_path),
            "error": str(exc),
        }) from exc

    if not isinstance(data, dict):
        raise ConfigurationError("INVALID_SCENARIO_FILE", "scenario file must contain a JSON object", {
            "path": str(scenario_path),
        })
    data.setdefault("name", scenario_path.stem)
    return scenario_from_dict(data)


def scenario_from_dict(data: dict[str, Any]) -> ScenarioConfig:
    phases_raw = data.get("phases")
    if not isinstance(phases_raw, dict) or not phases_raw:
        raise ConfigurationError("INVALID_SCENARIO", "scenario must contain a non-empty 'phases' object")

    phases = tuple(_phase_from_dict(str(name), raw) for name, raw in phases_raw.items())

    thresholds = data.get("thresholds") or {}
    if not isinstance(thresholds, dict):
        raise ConfigurationError("INVALID_SCENARIO", "'thresholds' must be an object of key -> [expressions]")
    normalized = {str(k): (v,) if isinstance(v, str) else tuple(v) for k, v in thresholds.items()}
    # Fail on a malformed rule now rather than after the run.
    parse_thresholds(normalized)

    return ScenarioConfig(name=str(data.get("name") or "scenario"), phases=phases, thresholds=normalized)


def _phase_from_dict(name: str, raw: Any) -> Phase:
    if not isinstance(raw, dict):
        raise ConfigurationError("INVALID_PHASE", "phase entry must be an object", {"phase": name})

    try:
        executor = ExecutorKind(raw.get("executor"))
    except ValueError as exc:
        raise ConfigurationError("INVALID_PHASE", "unknown executor", {
            "phase": name,
            "executor": raw.get("executor"),
            "known": [k.value for k in ExecutorKind],
        }) from exc

    try:
        stages = _stages(name, raw)
        kwargs: dict[str, Any] = {
            "start_offset_seconds": parse_duration_to_seconds(raw.get("start", 0)),
            "tags": _string_map(name, raw.get("tags") or {}),
            "options": _options(name, raw.get("options") or {}),
        }
        if "grace" in raw:
            kwargs["grace_period_seconds"] = parse_duration_to_seconds(raw["grace"])
        if "timeout" in raw:
            kwargs["request_timeout_seconds"] = parse_duration_to_seconds(raw["timeout"])
        if raw.get("think_time") is not None:
            low, high = raw["think_time"]
            kwargs["think_time_seconds"] = (parse_duration_to_seconds(low), parse_duration_to_seconds(high))
        if raw.get("iterations_per_worker") is not None:
            kwargs["iterations_per_worker"] = int(raw["iterations_per_worker"])
    except ValidationError as exc:
        raise ConfigurationError("INVALID_PHASE", "phase has an invalid value", {
            "phase": name,
            "error": str(exc),
        }) from exc
    except (TypeError, ValueError) as exc:
        raise ConfigurationError("INVALID_PHASE", "phase has a malformed value", {
            "phase": name,
            "error": str(exc),
        }) from exc

    return Phase(name=name, executor=executor, stages=stages, **kwargs)


def _stages(name: str, raw: dict[str, Any]) -> tuple[Stage, ...]:
    if "stages" in raw:
        stages_raw = raw["stages"]
        if not isinstance(stages_raw, list) or not stages_raw:
            raise ConfigurationError("INVALID_PHASE", "'stages' must be a non-empty list", {"phase": name})
        stages = []
        for entry in stages_raw:
            if not isinstance(entry, dict) or "duration" not in entry or "target" not in entry:
                raise ConfigurationError("INVALID_PHASE", "each stage needs duration and target", {
                    "phase": name,
                    "stage": entry,
                })
            stages.append(Stage(parse_duration_to_seconds(entry["duration"]), _target(name, entry["target"])))
        return tuple(stages)

    if "workers" in raw and "duration" in raw:
        workers = _target(name, raw["workers"])
        return (Stage(0.0, workers), Stage(parse_duration_to_seconds(raw["duration"]), workers))

    raise ConfigurationError("INVALID_PHASE", "phase needs 'stages' or 'workers' + 'duration'", {"phase": name})


def _target(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigurationError("INVALID_PHASE", "worker targets must be non-negative integers", {
            "phase": name,
            "target": value,
        })
    return value


def _string_map(name: str, value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        raise ConfigurationError("INVALID_PHASE", "'tags' must be an object", {"phase": name})
    return {str(k): str(v) for k, v in value.items()}


def _options(name: str, raw: Any) -> ExecutorOptions:
    if not isinstance(raw, dict):
        raise ConfigurationError("INVALID_PHASE", "'options' must be an object", {"phase": name})

    unknown = sorted(set(raw) - _OPTION_FIELDS)
    if unknown:
        raise ConfigurationError("INVALID_OPTION", "unknown executor options", {"phase": name, "options": unknown})

    values: dict[str, Any] = {}
    for key, value in raw.items():
        if key in _DURATION_OPTIONS:
            values[key] = parse_duration_to_seconds(value)
        elif key == "soak_boundaries_seconds":
            values[key] = tuple(parse_duration_to_seconds(v) for v in value)
        elif isinstance(value, list):
            values[key] = tuple(value)
        else:
            values[key] = value
    return ExecutorOptions(**values)
