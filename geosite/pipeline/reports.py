"""Run report aggregation."""

from __future__ import annotations

from collections import Counter
from pathlib import Path

from geosite.common.constants import FLAG_IMPOSSIBLE
from geosite.common.fs import write_json
from geosite.pipeline.clustering import ClusterReport
from geosite.pipeline.runner import PipelineResult
from geosite.pipeline.store import PointStore


def cluster_region_mix(store: PointStore, cluster_report: ClusterReport) -> dict[str, dict[str, int]]:
    mix = {}
    for summary in cluster_report.clusters:
        counts = Counter(store.get(point_id).region or "" for point_id in summary.member_ids)
        mix[str(summary.cluster_id)] = dict(sorted(counts.items()))
    return mix


def run_status(result: PipelineResult) -> str:
    if result.load_report.skipped_count > 0:
        return "partial"
    return "success"


def write_run_summary(out_dir: Path, result: PipelineResult, run_date: str) -> Path:
    total = result.store.size()
    noise_count = len(result.cluster_report.noise_ids)
    warnings: list[str] = []
    if result.load_report.skipped_count:
        warnings.append("MALFORMED_RECORDS_SKIPPED")
    if result.quality_report.duplicate_groups:
        warnings.append("DUPLICATE_COORDINATES_PRESENT")
    if result.quality_report.counts.get(FLAG_IMPOSSIBLE):
        warnings.append("IMPOSSIBLE_COORDINATES_PRESENT")

    payload = {
        "run_id": result.run_id,
        "run_date": run_date,
        "status": run_status(result),
        "load": {
            "total_records": result.load_report.total_records,
            "loaded": result.load_report.loaded,
            "skipped": result.load_report.skipped_count,
        },
        "rule_set": result.classification_report.rule_set,
        "summary": result.summary,
        "clustering": {
            "eps": result.cluster_report.eps,
            "min_points": result.cluster_report.min_points,
            "index": result.cluster_report.index,
            "noise_count": noise_count,
            "noise_ratio": 0.0 if total == 0 else round(noise_count / total, 4),
            "region_mix": cluster_region_mix(result.store, result.cluster_report),
        },
        "warnings": warnings,
    }
    return write_json(out_dir / "run_summary.json", payload)
