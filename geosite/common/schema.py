"""Minimal strict schemas for YAML config validation."""

from __future__ import annotations

from geosite.common.constants import QUALITY_FLAGS
from geosite.common.errors import ConfigurationError

TOP_KNOWN = {"load", "regions", "quality", "cluster", "export", "http"}
TOP_REQUIRED = {"regions", "quality", "cluster"}


def _assert_mapping(obj, ctx: str) -> dict:
    if not isinstance(obj, dict):
        raise ConfigurationError(f"{ctx} must be a mapping", parameter=ctx)
    return obj


def _assert_required_keys(obj: dict, required: set[str], ctx: str) -> None:
    missing = required - set(obj)
    if missing:
        missing_str = ", ".join(sorted(missing))
        raise ConfigurationError(f"Missing keys in {ctx}: {missing_str}", parameter=ctx)


def _assert_no_unknown_keys(obj: dict, known: set[str], ctx: str, allow_unknown: bool) -> None:
    if allow_unknown:
        return
    unknown = set(obj) - known
    if unknown:
        unknown_str = ", ".join(sorted(unknown))
        raise ConfigurationError(f"Unknown keys in {ctx}: {unknown_str}", parameter=ctx)


def _assert_number(value, ctx: str, *, integer: bool = False) -> None:
    expected = (int,) if integer else (int, float)
    if isinstance(value, bool) or not isinstance(value, expected):
        kind = "an integer" if integer else "a number"
        raise ConfigurationError(f"{ctx} must be {kind}, got {value!r}", parameter=ctx)


def _assert_string_list(value, ctx: str) -> None:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigurationError(f"{ctx} must be a list of strings", parameter=ctx)


def validate_engine_config(cfg, *, allow_unknown: bool = False) -> dict:
    """Check the shape and ranges of ``engine.yml``.

    Range checks here are for a pipeline run, so ``cluster.eps`` must be
    strictly positive.
    """
    cfg = _assert_mapping(cfg, "engine config")
    _assert_required_keys(cfg, TOP_REQUIRED, "engine config")
    _assert_no_unknown_keys(cfg, TOP_KNOWN, "engine config", allow_unknown)

    load = _assert_mapping(cfg.get("load", {}), "load")
    _assert_no_unknown_keys(load, {"strict", "id_property", "lon_candidates", "lat_candidates"}, "load", allow_unknown)
    if "strict" in load and not isinstance(load["strict"], bool):
        raise ConfigurationError("load.strict must be a boolean", parameter="load.strict")
    for key in ("lon_candidates", "lat_candidates"):
        if key in load:
            _assert_string_list(load[key], f"load.{key}")

    regions = _assert_mapping(cfg["regions"], "regions")
    _assert_required_keys(regions, {"active", "rule_sets"}, "regions")
    _assert_no_unknown_keys(regions, {"active", "rule_sets"}, "regions", allow_unknown)
    rule_sets = _assert_mapping(regions["rule_sets"], "regions.rule_sets")
    if not rule_sets:
        raise ConfigurationError("regions.rule_sets must be a non-empty mapping", parameter="regions.rule_sets")
    if regions["active"] not in rule_sets:
        raise ConfigurationError(f"regions.active names unknown rule set '{regions['active']}'", parameter="ruleSet")

    quality = _assert_mapping(cfg["quality"], "quality")
    _assert_required_keys(quality, {"duplicate_precision", "outlier_sigma"}, "quality")
    _assert_no_unknown_keys(quality, {"duplicate_precision", "outlier_sigma"}, "quality", allow_unknown)
    _assert_number(quality["duplicate_precision"], "quality.duplicate_precision", integer=True)
    _assert_number(quality["outlier_sigma"], "quality.outlier_sigma")
    if quality["duplicate_precision"] < 0:
        raise ConfigurationError("quality.duplicate_precision must be >= 0", parameter="duplicateTolerance")
    if quality["outlier_sigma"] < 0:
        raise ConfigurationError("quality.outlier_sigma must be >= 0", parameter="outlierThresholdSigma")

    cluster = _assert_mapping(cfg["cluster"], "cluster")
    _assert_required_keys(cluster, {"eps", "min_points"}, "cluster")
    _assert_no_unknown_keys(cluster, {"eps", "min_points", "exclude_flags"}, "cluster", allow_unknown)
    _assert_number(cluster["eps"], "cluster.eps")
    _assert_number(cluster["min_points"], "cluster.min_points", integer=True)
    if cluster["eps"] <= 0:
        raise ConfigurationError(f"cluster.eps must be > 0, got {cluster['eps']}", parameter="clusterEps")
    if cluster["min_points"] < 1:
        raise ConfigurationError(
            f"cluster.min_points must be >= 1, got {cluster['min_points']}", parameter="clusterMinPoints"
        )
    if "exclude_flags" in cluster:
        _assert_string_list(cluster["exclude_flags"], "cluster.exclude_flags")
        unknown = sorted(set(cluster["exclude_flags"]) - set(QUALITY_FLAGS))
        if unknown:
            raise ConfigurationError(
                f"cluster.exclude_flags has unknown flag(s): {', '.join(unknown)} (known: {', '.join(QUALITY_FLAGS)})",
                parameter="cluster.exclude_flags",
            )

    export = _assert_mapping(cfg.get("export", {}), "export")
    _assert_no_unknown_keys(export, {"table_name", "dialect", "srid"}, "export", allow_unknown)
    if "dialect" in export and export["dialect"] not in ("postgis", "sqlite"):
        raise ConfigurationError(f"export.dialect must be postgis or sqlite, got {export['dialect']!r}", parameter="export.dialect")
    if "srid" in export:
        _assert_number(export["srid"], "export.srid", integer=True)

    http = _assert_mapping(cfg.get("http", {}), "http")
    _assert_no_unknown_keys(http, {"connect_timeout", "read_timeout", "max_attempts", "page_size"}, "http", allow_unknown)
    for key in ("connect_timeout", "read_timeout"):
        if key in http:
            _assert_number(http[key], f"http.{key}")
    for key in ("max_attempts", "page_size"):
        if key in http:
            _assert_number(http[key], f"http.{key}", integer=True)

    return cfg
