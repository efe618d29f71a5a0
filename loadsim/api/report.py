from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from loadsim.core import metric_names as m
from loadsim.core.models import SimulationConfig, SimulationResult
from loadsim.exceptions import ReportSinkError


def build_simulation_report(config: SimulationConfig, result: SimulationResult) -> dict[str, Any]:
    scenario = config.scenario
    config_payload = {
        "base_url": config.base_url,
        "scenario": scenario.name,
        "planned_duration_seconds": scenario.duration_seconds,
        "max_duration_seconds": config.max_duration_seconds,
        "tick_seconds": config.tick_seconds,
        "phases": [
            {
                "name": phase.name,
                "executor": phase.executor.value,
                "start_offset_seconds": phase.start_offset_seconds,
                "duration_seconds": phase.duration_seconds,
                "grace_period_seconds": phase.grace_period_seconds,
                "peak_target": phase.peak_target,
                "stages": [[s.duration_seconds, s.target] for s in phase.stages],
                "tags": dict(phase.tags),
            }
            for phase in scenario.phases
        ],
        "thresholds": {key: list(exprs) for key, exprs in scenario.thresholds.items()},
    }
    metrics = result.metrics_report or {}
    return {
        "config": config_payload,
        "result": {
            "iteration_count": result.iteration_count,
            "iteration_error_count": result.iteration_error_count,
            "peak_workers": result.peak_workers,
            "duration_seconds": result.duration_seconds,
            "iterations_per_second": result.iterations_per_second,
            "passed": result.passed,
        },
        "metrics": metrics,
        "thresholds": result.threshold_report,
        "findings": {
            "infrastructure": _findings(metrics, m.INFRASTRUCTURE_METRICS),
            "correctness": _findings(metrics, m.CORRECTNESS_METRICS),
        },
    }


def _findings(metrics: dict[str, Any], names: tuple[str, ...]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for name in names:
        entry = metrics.get(name)
        if not entry or not entry.get("total"):
            continue
        total = entry["total"]
        if entry["kind"] == "rate":
            # Only failed observations are findings.
            if total.get("passes"):
                out[name] = {"rate": total["rate"], "count": total["passes"]}
            continue
        if total.get("value"):
            out[name] = {
                "count": total["value"],
                "series": {key: s["value"] for key, s in entry["series"].items() if s.get("value")},
            }
    return out


def open_report_sink(path: str | Path) -> Path:
    """Check the report destination is writable before any traffic is sent."""
    target = Path(path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("a", encoding="utf-8"):
            pass
    except OSError as exc:
        raise ReportSinkError("REPORT_SINK_UNAVAILABLE", "cannot open report destination", {
            "path": str(target),
            "error": str(exc),
        }) from exc
    return target


def write_report(path: str | Path, report: dict[str, Any]) -> None:
    Path(path).write_text(json.dumps(report, indent=2, sort_keys=True, default=str) + "\n", encoding="utf-8")


def _fmt_ms(value: float | None) -> str:
    return "-" if value is None else f"{value:.1f}ms"


def render_text_summary(report: dict[str, Any]) -> str:
    """Human-readable end-of-run summary, one line per metric."""
    result = report["result"]
    lines = [
        f"scenario: {report['config']['scenario']}  base_url: {report['config']['base_url']}",
        (
            f"iterations: {result['iteration_count']}  errors: {result['iteration_error_count']}  "
            f"peak_workers: {result['peak_workers']}  duration: {result['duration_seconds']:.1f}s  "
            f"rate: {result['iterations_per_second']:.1f}/s"
        ),
        "",
    ]

    for name, entry in sorted(report["metrics"].items()):
        total = entry.get("total") or {}
        kind = entry["kind"]
        if kind == "trend":
            detail = (
                f"avg={_fmt_ms(total.get('avg'))} med={_fmt_ms(total.get('med'))} "
                f"p95={_fmt_ms(total.get('p95'))} p99={_fmt_ms(total.get('p99'))} "
                f"max={_fmt_ms(total.get('max'))} count={total.get('count', 0)}"
            )
        elif kind == "rate":
            rate = total.get("rate")
            rate_txt = "-" if rate is None else f"{rate * 100:.2f}%"
            detail = f"{rate_txt} ({total.get('passes', 0)}/{total.get('total', 0)})"
        else:
            value = total.get("value", 0)
            detail = f"{value:g}"
        lines.append(f"  {name:.<40} {detail}")

    thresholds = report.get("thresholds") or {}
    rules = thresholds.get("rules") or []
    if rules:
        lines.append("")
        lines.append("thresholds:")
        for rule in rules:
            mark = {"pass": "ok", "fail": "FAIL", "no_data": "n/a", "invalid": "INVALID"}.get(rule["status"], "?")
            actual = "-" if rule["actual"] is None else f"{rule['actual']:g}"
            lines.append(f"  [{mark:>7}] {rule['metric']} {rule['expression']} (actual {actual})")

    for section in ("correctness", "infrastructure"):
        found = report["findings"].get(section) or {}
        if found:
            lines.append("")
            lines.append(f"{section} findings:")
            for name, detail in sorted(found.items()):
                lines.append(f"  {name}: {detail.get('count')}")

    lines.append("")
    lines.append("PASSED" if result["passed"] else "FAILED")
    return "\n".join(lines)
