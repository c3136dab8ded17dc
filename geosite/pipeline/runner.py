"""Pipeline orchestration: load, classify, quality, cluster, export."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, TypeVar

from geosite.common.config_loader import EngineConfig, ExportConfig
from geosite.common.errors import PipelineError
from geosite.common.fs import write_csv, write_json, write_text
from geosite.common.ids import generate_run_id
from geosite.common.logging import log_event
from geosite.common.models import LoadReport
from geosite.common.time_utils import elapsed_ms
from geosite.pipeline.clustering import ClusterReport, cluster
from geosite.pipeline.export import (
    DIALECTS,
    SchemaField,
    render_create_table,
    render_inserts,
    to_csv_rows,
    to_data_statements,
    to_schema_statements,
    to_summary_report,
    verify_rows,
)
from geosite.pipeline.quality import QualityReport, analyze
from geosite.pipeline.regions import ClassificationReport, classify
from geosite.pipeline.store import PointStore

T = TypeVar("T")

ARTIFACT_NAMES = (
    "schema.json",
    "schema.sql",
    "points.csv",
    "inserts.sql",
    "summary.json",
    "load_report.json",
    "quality_report.json",
    "cluster_report.json",
)


@dataclass(frozen=True)
class PipelineResult:
    run_id: str
    store: PointStore
    load_report: LoadReport
    classification_report: ClassificationReport
    quality_report: QualityReport
    cluster_report: ClusterReport
    schema: tuple[SchemaField, ...]
    rows: tuple[dict[str, Any], ...]
    summary: dict[str, Any]


def _run_stage(
    logger: logging.Logger,
    run_id: str,
    stage: str,
    rows_in: int | None,
    fn: Callable[[], T],
    rows_out: Callable[[T], int | None] = lambda _result: None,
) -> T:
    started = time.perf_counter()
    log_event(logger, "stage start", run_id=run_id, stage=stage, event="STAGE_START", status="ok", rows_in=rows_in)
    try:
        result = fn()
    except PipelineError as exc:
        log_event(
            logger,
            f"stage {stage} failed: {exc}",
            level=logging.ERROR,
            run_id=run_id,
            stage=stage,
            event="STAGE_FAIL",
            status="error",
            error_code=exc.error_code,
            duration_ms=elapsed_ms(started),
        )
        raise
    log_event(
        logger,
        "stage end",
        run_id=run_id,
        stage=stage,
        event="STAGE_END",
        status="ok",
        rows_in=rows_in,
        rows_out=rows_out(result),
        duration_ms=elapsed_ms(started),
    )
    return result


def run_pipeline(
    raw_features: Iterable[Any],
    config: EngineConfig | None = None,
    *,
    run_id: str | None = None,
    logger: logging.Logger | None = None,
    should_cancel: Callable[[], bool] | None = None,
) -> PipelineResult:
    """Run every stage in order over one in-memory dataset.

    Configuration is validated before the first stage. A failing stage raises
    and leaves earlier stage annotations as they were.
    """
    config = (config or EngineConfig()).validate()
    run_id = run_id or generate_run_id()
    logger = logger or logging.getLogger(__name__)
    raw_features = list(raw_features)

    store, load_report = _run_stage(
        logger,
        run_id,
        "load",
        len(raw_features),
        lambda: PointStore.load(
            raw_features,
            strict=config.load.strict,
            id_property=config.load.id_property,
            lon_candidates=config.load.lon_candidates,
            lat_candidates=config.load.lat_candidates,
        ),
        rows_out=lambda result: result[0].size(),
    )
    for skipped in load_report.skipped:
        log_event(
            logger,
            f"skipped record {skipped.index}: {skipped.reason}",
            level=logging.WARNING,
            run_id=run_id,
            stage="load",
            event="RECORD_SKIPPED",
            status="warning",
            error_code="MALFORMED_RECORD",
        )

    size = store.size()
    classification = _run_stage(logger, run_id, "classify", size, lambda: classify(store, config.rule_set), lambda _r: size)
    quality = _run_stage(logger, run_id, "quality", size, lambda: analyze(store, config.quality), lambda _r: size)
    clusters = _run_stage(
        logger,
        run_id,
        "cluster",
        size,
        lambda: cluster(store, config.cluster, should_cancel=should_cancel),
        lambda report: report.cluster_count,
    )

    def _export() -> tuple[tuple[SchemaField, ...], tuple[dict[str, Any], ...], dict[str, Any]]:
        schema = to_schema_statements(store)
        rows = to_data_statements(store, schema)
        verify_rows(schema, rows)
        return schema, rows, to_summary_report(store, quality, clusters)

    schema, rows, summary = _run_stage(logger, run_id, "export", size, _export, lambda result: len(result[1]))

    return PipelineResult(
        run_id=run_id,
        store=store,
        load_report=load_report,
        classification_report=classification,
        quality_report=quality,
        cluster_report=clusters,
        schema=schema,
        rows=rows,
        summary=summary,
    )


def write_artifacts(result: PipelineResult, out_dir: Path, export_config: ExportConfig | None = None) -> dict[str, Path]:
    export_config = export_config or ExportConfig()
    dialect = DIALECTS[export_config.dialect]
    header = [field.name for field in result.schema]

    paths = {
        "schema.json": write_json(out_dir / "schema.json", [field.to_dict() for field in result.schema]),
        "schema.sql": write_text(
            out_dir / "schema.sql",
            render_create_table(result.schema, dialect, export_config.table_name, export_config.srid),
        ),
        "points.csv": write_csv(out_dir / "points.csv", header, to_csv_rows(result.rows)),
        "inserts.sql": write_text(
            out_dir / "inserts.sql",
            render_inserts(result.schema, result.rows, dialect, export_config.table_name, export_config.srid),
        ),
        "summary.json": write_json(out_dir / "summary.json", result.summary),
        "load_report.json": write_json(out_dir / "load_report.json", result.load_report.to_dict()),
        "quality_report.json": write_json(out_dir / "quality_report.json", result.quality_report.to_dict()),
        "cluster_report.json": write_json(out_dir / "cluster_report.json", result.cluster_report.to_dict()),
    }
    return paths
