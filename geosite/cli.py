"""CLI entrypoint for the site-investigation point analysis engine."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from geosite.common.config_loader import apply_overrides, load_engine_config
from geosite.common.constants import EXIT_HARD_FAIL, EXIT_PARTIAL, EXIT_SUCCESS
from geosite.common.errors import PipelineError
from geosite.common.http import HttpClient
from geosite.common.ids import generate_run_id
from geosite.common.logging import build_logger, close_logger, log_event
from geosite.common.time_utils import parse_run_date
from geosite.harvest.feature_source import read_features
from geosite.pipeline.reports import run_status, write_run_summary
from geosite.pipeline.runner import run_pipeline, write_artifacts


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("command", choices=["run", "validate-config"])
    parser.add_argument("--input", default=None, help="GeoJSON/CSV path or http(s) URL")
    parser.add_argument("--config-dir", default="./config")
    parser.add_argument("--overlay-config-dir", default=None)
    parser.add_argument("--out-dir", default="./out")
    parser.add_argument("--run-date", default=None)
    parser.add_argument("--run-id", default=None)
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--rule-set", default=None)
    parser.add_argument("--eps", type=float, default=None)
    parser.add_argument("--min-points", type=int, default=None)
    parser.add_argument("--strict", action="store_true")
    return parser.parse_args(argv)


def run_command(args: argparse.Namespace) -> int:
    run_id = args.run_id or generate_run_id()
    run_date = parse_run_date(args.run_date)
    out_dir = Path(args.out_dir)
    overlay_config_dir = Path(args.overlay_config_dir) if args.overlay_config_dir else None

    logger = build_logger(run_id, out_dir=out_dir if args.command == "run" else None, level=args.log_level)
    try:
        try:
            config = apply_overrides(
                load_engine_config(Path(args.config_dir), overlay_config_dir=overlay_config_dir),
                rule_set=args.rule_set,
                strict=True if args.strict else None,
                eps=args.eps,
                min_points=args.min_points,
            )
        except PipelineError as exc:
            log_event(logger, str(exc), run_id=run_id, stage="config", event="CONFIG_INVALID", status="error", error_code=exc.error_code)
            return EXIT_HARD_FAIL

        if args.command == "validate-config":
            log_event(logger, "configuration valid", run_id=run_id, stage="config", event="CONFIG_VALID", status="ok")
            return EXIT_SUCCESS

        if not args.input:
            log_event(logger, "--input is required for run", run_id=run_id, stage="load", event="INPUT_MISSING", status="error", error_code="INPUT_ERROR")
            return EXIT_HARD_FAIL

        try:
            with HttpClient(timeout=config.http.timeout, retry=config.http.retry) as client:
                features = read_features(args.input, http_client=client, page_size=config.http.page_size)
            result = run_pipeline(features, config, run_id=run_id, logger=logger)
            write_artifacts(result, out_dir, config.export)
            write_run_summary(out_dir, result, run_date)
        except PipelineError as exc:
            log_event(logger, f"run failed: {exc}", run_id=run_id, event="RUN_FAIL", status="error", error_code=exc.error_code)
            return EXIT_HARD_FAIL

        log_event(
            logger,
            "run complete",
            run_id=run_id,
            event="RUN_END",
            status=run_status(result),
            rows_in=result.load_report.total_records,
            rows_out=result.store.size(),
        )
        if run_status(result) == "partial":
            return EXIT_PARTIAL
        return EXIT_SUCCESS
    finally:
        close_logger(logger)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    try:
        return run_command(args)
    except PipelineError:
        return EXIT_HARD_FAIL
    except Exception:
        return EXIT_HARD_FAIL


if __name__ == "__main__":
    raise SystemExit(main())
