from __future__ import annotations

import argparse
import asyncio
import os
import sys

from loadsim.api.report import build_simulation_report, open_report_sink, render_text_summary, write_report
from loadsim.core.engine import Simulator
from loadsim.core.models import ScenarioConfig
from loadsim.core.scenario_file import load_scenario_file
from loadsim.core.timeparse import parse_duration_to_seconds
from loadsim.exceptions import LoadSimError
from loadsim.fixtures import ComputerApiFixtureServer
from loadsim.logger import JsonLogger, Logger, level_from_env, session_logger
from loadsim.scenarios import BUILTIN_SCENARIOS, DEFAULT_BASE_URL, build_simulation_config, get_builtin_scenario

EXIT_OK = 0
EXIT_THRESHOLDS_FAILED = 1
EXIT_INVALID = 2


def _default_base_url() -> str:
    return os.environ.get("LOADSIM_BASE_URL") or os.environ.get("BASE_URL") or DEFAULT_BASE_URL


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="computer API load and verification harness")
    parser.add_argument(
        "--scenario",
        type=str,
        choices=sorted(BUILTIN_SCENARIOS),
        default="load",
        help="Built-in scenario to run (ignored when --scenario-file is set)",
    )
    parser.add_argument(
        "--scenario-file",
        type=str,
        default=None,
        help="Path to a scenario JSON file (phases, stages, thresholds)",
    )
    parser.add_argument(
        "--mode",
        type=str,
        choices=["live", "fixture"],
        default="live",
        help="live: hit --base-url. fixture: start an in-process fake API and hit that.",
    )
    parser.add_argument(
        "--base-url",
        type=str,
        default=_default_base_url(),
        help="Computer API base URL (env: LOADSIM_BASE_URL or BASE_URL)",
    )
    parser.add_argument(
        "--replica-lag",
        type=str,
        default="0s",
        help="Replica visibility lag for --mode fixture (e.g. 20ms, 1s)",
    )
    parser.add_argument(
        "--time-scale",
        type=float,
        default=1.0,
        help="Multiply every duration by this factor (e.g. 0.1 for a smoke run)",
    )
    parser.add_argument(
        "--max-duration",
        type=str,
        default=None,
        help="Hard stop for the whole run (e.g. 30s, 5m)",
    )
    parser.add_argument(
        "--tick",
        type=str,
        default="100ms",
        help="Scheduler reconciliation interval",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Write the JSON report to this path",
    )
    parser.add_argument(
        "--summary",
        action="store_true",
        help="Print a text summary to stdout at the end of the run",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Emit logs as JSON lines instead of key=value text",
    )
    return parser


def _resolve_scenario(args) -> ScenarioConfig:
    if args.scenario_file:
        return load_scenario_file(args.scenario_file.strip())
    return get_builtin_scenario(args.scenario)


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logger: Logger = session_logger
    if args.log_json:
        logger = JsonLogger(level=level_from_env())

    if args.time_scale <= 0:
        logger.error(
            "sim.invalid_time_scale",
            provided=args.time_scale,
            recovery="Provide --time-scale > 0",
        )
        return EXIT_INVALID

    try:
        scenario = _resolve_scenario(args)
        replica_lag = parse_duration_to_seconds(args.replica_lag)
        tick_seconds = parse_duration_to_seconds(args.tick)
        max_duration = parse_duration_to_seconds(args.max_duration) if args.max_duration else None
        if tick_seconds <= 0:
            raise ValueError("tick must be > 0")
        if args.output:
            open_report_sink(args.output)
    except LoadSimError as exc:
        logger.error(
            "sim.invalid_invocation",
            code=exc.code,
            error=str(exc),
            recovery="Fix the scenario definition or command-line arguments",
        )
        return EXIT_INVALID
    except ValueError as exc:
        logger.error("sim.invalid_invocation", error=str(exc), recovery="Provide --tick > 0")
        return EXIT_INVALID

    fixture_server: ComputerApiFixtureServer | None = None
    base_url = args.base_url.strip()
    if args.mode == "fixture":
        fixture_server = ComputerApiFixtureServer(replica_lag_seconds=replica_lag, logger=logger)
        fixture_server.start()
        base_url = fixture_server.base_url

    config = build_simulation_config(
        scenario,
        base_url=base_url,
        time_scale=args.time_scale,
        max_duration_seconds=max_duration,
        tick_seconds=tick_seconds,
    )

    try:
        simulator = Simulator(config, logger=logger)
        result = asyncio.run(simulator.run())
    except LoadSimError as exc:
        logger.error("sim.invalid_invocation", code=exc.code, error=str(exc))
        return EXIT_INVALID
    finally:
        if fixture_server is not None:
            fixture_server.stop()

    report = build_simulation_report(config, result)
    if args.output:
        write_report(args.output, report)
        logger.info("sim.report_written", path=args.output)

    if args.summary:
        sys.stdout.write(render_text_summary(report) + "\n")

    return EXIT_OK if result.passed else EXIT_THRESHOLDS_FAILED


if __name__ == "__main__":
    raise SystemExit(main())
