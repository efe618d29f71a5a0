"""End-to-end tests for the command-line entry point in fixture mode."""

import json

import pytest

from loadsim.run import EXIT_INVALID, EXIT_OK, EXIT_THRESHOLDS_FAILED, main


def _scenario_file(tmp_path, thresholds):
    path = tmp_path / "smoke.json"
    path.write_text(
        json.dumps({
            "phases": {
                "writes": {"executor": "write", "workers": 2, "duration": "300ms", "grace": "1s"},
                "reads": {
                    "executor": "paginated-read",
                    "workers": 2,
                    "duration": "300ms",
                    "grace": "1s",
                    "tags": {"group": "read"},
                },
            },
            "thresholds": thresholds,
        }),
        encoding="utf-8",
    )
    return path


def test_fixture_run_passes_and_writes_report(tmp_path, capsys):
    scenario = _scenario_file(tmp_path, {"success_rate": ["rate>0.9"], "read_latency_ms{group:read}": ["p(95)<5000"]})
    output = tmp_path / "reports" / "smoke.json"

    code = main([
        "--scenario-file", str(scenario),
        "--mode", "fixture",
        "--tick", "20ms",
        "--output", str(output),
        "--summary",
    ])

    assert code == EXIT_OK
    report = json.loads(output.read_text(encoding="utf-8"))
    assert report["config"]["scenario"] == "smoke"
    assert report["result"]["passed"] is True
    assert report["result"]["iteration_count"] > 0
    assert report["metrics"]["inserted_total"]["total"]["value"] > 0
    assert capsys.readouterr().out.rstrip().endswith("PASSED")


def test_failing_threshold_exit_code(tmp_path):
    scenario = _scenario_file(tmp_path, {"inserted_total": ["count<1"]})
    assert main(["--scenario-file", str(scenario), "--mode", "fixture", "--tick", "20ms"]) == EXIT_THRESHOLDS_FAILED


def test_time_scale_shrinks_builtin_scenario(tmp_path):
    output = tmp_path / "load.json"
    code = main([
        "--scenario", "load",
        "--mode", "fixture",
        "--time-scale", "0.001",
        "--tick", "10ms",
        "--output", str(output),
    ])

    report = json.loads(output.read_text(encoding="utf-8"))
    assert report["config"]["planned_duration_seconds"] == pytest.approx(0.18)
    assert code in (EXIT_OK, EXIT_THRESHOLDS_FAILED)


@pytest.mark.parametrize(
    "argv",
    [
        ["--time-scale", "0"],
        ["--time-scale", "-1"],
        ["--tick", "0s"],
        ["--tick", "often"],
        ["--max-duration", "forever"],
        ["--replica-lag=-1s"],
    ],
)
def test_invalid_arguments(argv):
    assert main(["--mode", "fixture", *argv]) == EXIT_INVALID


def test_missing_scenario_file(tmp_path):
    assert main(["--scenario-file", str(tmp_path / "missing.json"), "--mode", "fixture"]) == EXIT_INVALID


def test_bad_threshold_in_scenario_file(tmp_path):
    scenario = _scenario_file(tmp_path, {"success_rate": ["rate>>0.9"]})
    assert main(["--scenario-file", str(scenario), "--mode", "fixture"]) == EXIT_INVALID


def test_unwritable_output(tmp_path):
    scenario = _scenario_file(tmp_path, {})
    blocker = tmp_path / "blocker"
    blocker.write_text("x", encoding="utf-8")
    code = main(["--scenario-file", str(scenario), "--mode", "fixture", "--output", str(blocker / "r.json")])
    assert code == EXIT_INVALID


def test_unknown_builtin_scenario():
    with pytest.raises(SystemExit) as exc_info:
        main(["--scenario", "nope"])
    assert exc_info.value.code == 2
