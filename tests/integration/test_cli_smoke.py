import json
from pathlib import Path

import pytest

from geosite.cli import parse_args, run_command


def _args(out_dir: Path, *extra: str):
    return parse_args(
        [
            "run",
            "--input",
            "tests/fixtures/sites.geojson",
            "--config-dir",
            "config",
            "--out-dir",
            str(out_dir),
            "--run-date",
            "2026-02-17",
            "--run-id",
            "run-test",
            *extra,
        ]
    )


@pytest.mark.integration
def test_cli_run_generates_expected_artifacts(tmp_path: Path):
    exit_code = run_command(_args(tmp_path, "--min-points", "3"))

    # two malformed records are skipped, so the run is partial
    assert exit_code == 10
    assert (tmp_path / "points.csv").exists()
    assert (tmp_path / "schema.sql").exists()
    assert (tmp_path / "run_meta" / "run-test.log.jsonl").exists()

    summary = json.loads((tmp_path / "run_summary.json").read_text(encoding="utf-8"))
    assert summary["status"] == "partial"
    assert summary["run_date"] == "2026-02-17"
    assert summary["load"] == {"total_records": 13, "loaded": 11, "skipped": 2}
    assert summary["clustering"]["noise_count"] == 3
    assert summary["clustering"]["region_mix"] == {"0": {"Central": 5}, "1": {"Eastern": 3}}
    assert "DUPLICATE_COORDINATES_PRESENT" in summary["warnings"]


@pytest.mark.integration
def test_cli_log_lines_are_json_with_stage_events(tmp_path: Path):
    run_command(_args(tmp_path))
    lines = (tmp_path / "run_meta" / "run-test.log.jsonl").read_text(encoding="utf-8").splitlines()
    events = [json.loads(line) for line in lines]

    stage_ends = [event["stage"] for event in events if event["event"] == "STAGE_END"]
    assert stage_ends == ["load", "classify", "quality", "cluster", "export"]
    assert sum(1 for event in events if event["event"] == "RECORD_SKIPPED") == 2


@pytest.mark.integration
def test_cli_rejects_bad_overrides_and_missing_input(tmp_path: Path):
    assert run_command(_args(tmp_path, "--eps", "0")) == 20
    assert run_command(_args(tmp_path, "--rule-set", "four_way")) == 20
    assert run_command(parse_args(["run", "--config-dir", "config", "--out-dir", str(tmp_path)])) == 20
    assert run_command(_args(tmp_path, "--input", "tests/fixtures/missing.geojson")) == 20


@pytest.mark.integration
def test_cli_validate_config():
    assert run_command(parse_args(["validate-config", "--config-dir", "config"])) == 0
