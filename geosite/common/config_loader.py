"""Configuration loading and validation."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from geosite.common.constants import WGS84_SRID
from geosite.common.errors import ConfigurationError
from geosite.common.fs import read_yaml
from geosite.common.http import RetryConfig, TimeoutConfig
from geosite.common.schema import validate_engine_config
from geosite.pipeline.clustering import ClusterConfig
from geosite.pipeline.quality import QualityConfig
from geosite.pipeline.regions import THREE_WAY, RuleSet, parse_rule_set, validate_rule_set

ENGINE_CONFIG_FILENAME = "engine.yml"


@dataclass(frozen=True)
class LoadConfig:
    strict: bool = False
    id_property: str | None = None
    lon_candidates: tuple[str, ...] = ("longitude", "lon", "lng", "x")
    lat_candidates: tuple[str, ...] = ("latitude", "lat", "y")


@dataclass(frozen=True)
class ExportConfig:
    table_name: str = "site_investigation_points"
    dialect: str = "postgis"
    srid: int = WGS84_SRID


@dataclass(frozen=True)
class HttpConfig:
    timeout: TimeoutConfig = field(default_factory=TimeoutConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    page_size: int = 2000


@dataclass(frozen=True)
class EngineConfig:
    rule_set: RuleSet = THREE_WAY
    rule_sets: dict[str, RuleSet] = field(default_factory=lambda: {THREE_WAY.name: THREE_WAY})
    load: LoadConfig = field(default_factory=LoadConfig)
    quality: QualityConfig = field(default_factory=QualityConfig)
    cluster: ClusterConfig = field(default_factory=ClusterConfig)
    export: ExportConfig = field(default_factory=ExportConfig)
    http: HttpConfig = field(default_factory=HttpConfig)

    def validate(self) -> "EngineConfig":
        """Fail fast before any stage runs."""
        validate_rule_set(self.rule_set)
        self.quality.validate()
        self.cluster.validate()
        if self.cluster.eps <= 0:
            raise ConfigurationError(f"clusterEps must be > 0, got {self.cluster.eps}", parameter="clusterEps")
        return self


def _deep_merge(base: Any, overlay: Any) -> Any:
    if isinstance(base, dict) and isinstance(overlay, dict):
        merged = dict(base)
        for key, value in overlay.items():
            if key in merged:
                merged[key] = _deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged
    return overlay


def _read_config_yaml(path: Path) -> Any:
    import yaml

    try:
        return read_yaml(path)
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}", parameter=str(path)) from exc


def _load_yaml_with_overlay(path: Path, overlay_path: Path | None) -> dict:
    if not path.exists():
        raise ConfigurationError(f"Missing config file: {path}", parameter=str(path))
    base = _read_config_yaml(path)
    if overlay_path is None or not overlay_path.exists():
        return base
    overlay = _read_config_yaml(overlay_path)
    if overlay is None:
        return base
    if not isinstance(overlay, dict):
        raise ConfigurationError(f"Overlay config must be a mapping: {overlay_path}", parameter=str(overlay_path))
    return _deep_merge(base, overlay)


def build_engine_config(cfg: dict, *, allow_unknown: bool = False) -> EngineConfig:
    cfg = validate_engine_config(cfg, allow_unknown=allow_unknown)

    rule_sets = {name: parse_rule_set(name, rules) for name, rules in cfg["regions"]["rule_sets"].items()}

    load_cfg = cfg.get("load", {})
    defaults = LoadConfig()
    load = LoadConfig(
        strict=load_cfg.get("strict", defaults.strict),
        id_property=load_cfg.get("id_property", defaults.id_property),
        lon_candidates=tuple(load_cfg.get("lon_candidates", defaults.lon_candidates)),
        lat_candidates=tuple(load_cfg.get("lat_candidates", defaults.lat_candidates)),
    )

    quality = QualityConfig(
        duplicate_precision=cfg["quality"]["duplicate_precision"],
        outlier_sigma=float(cfg["quality"]["outlier_sigma"]),
    )
    cluster = ClusterConfig(
        eps=float(cfg["cluster"]["eps"]),
        min_points=cfg["cluster"]["min_points"],
        exclude_flags=frozenset(cfg["cluster"].get("exclude_flags", [])),
    )

    export_cfg = cfg.get("export", {})
    export = ExportConfig(
        table_name=export_cfg.get("table_name", ExportConfig.table_name),
        dialect=export_cfg.get("dialect", ExportConfig.dialect),
        srid=export_cfg.get("srid", ExportConfig.srid),
    )

    http_cfg = cfg.get("http", {})
    http = HttpConfig(
        timeout=TimeoutConfig(
            connect=float(http_cfg.get("connect_timeout", TimeoutConfig.connect)),
            read=float(http_cfg.get("read_timeout", TimeoutConfig.read)),
        ),
        retry=RetryConfig(max_attempts=http_cfg.get("max_attempts", RetryConfig.max_attempts)),
        page_size=http_cfg.get("page_size", HttpConfig.page_size),
    )

    return EngineConfig(
        rule_set=rule_sets[cfg["regions"]["active"]],
        rule_sets=rule_sets,
        load=load,
        quality=quality,
        cluster=cluster,
        export=export,
        http=http,
    ).validate()


def load_engine_config(
    config_dir: Path,
    *,
    allow_unknown: bool = False,
    overlay_config_dir: Path | None = None,
) -> EngineConfig:
    path = config_dir / ENGINE_CONFIG_FILENAME
    overlay_path = overlay_config_dir / ENGINE_CONFIG_FILENAME if overlay_config_dir is not None else None
    raw = _load_yaml_with_overlay(path, overlay_path)
    return build_engine_config(raw, allow_unknown=allow_unknown)


def apply_overrides(
    config: EngineConfig,
    *,
    rule_set: str | None = None,
    strict: bool | None = None,
    eps: float | None = None,
    min_points: int | None = None,
) -> EngineConfig:
    if rule_set is not None:
        if rule_set not in config.rule_sets:
            known = ", ".join(sorted(config.rule_sets))
            raise ConfigurationError(f"Unknown rule set '{rule_set}' (known: {known})", parameter="ruleSet")
        config = replace(config, rule_set=config.rule_sets[rule_set])
    if strict is not None:
        config = replace(config, load=replace(config.load, strict=strict))
    if eps is not None:
        config = replace(config, cluster=replace(config.cluster, eps=eps))
    if min_points is not None:
        config = replace(config, cluster=replace(config.cluster, min_points=min_points))
    return config.validate()
