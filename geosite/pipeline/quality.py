"""Duplicate, outlier, and impossible-coordinate flagging."""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from geosite.common.constants import FLAG_DUPLICATE, FLAG_IMPOSSIBLE, FLAG_OUTLIER, QUALITY_FLAGS
from geosite.common.errors import ConfigurationError
from geosite.common.models import Point
from geosite.pipeline.store import PointStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QualityConfig:
    duplicate_precision: int = 6
    outlier_sigma: float = 3.0

    def validate(self) -> "QualityConfig":
        if isinstance(self.duplicate_precision, bool) or not isinstance(self.duplicate_precision, int):
            raise ConfigurationError("duplicateTolerance must be an integer precision", parameter="duplicateTolerance")
        if self.duplicate_precision < 0:
            raise ConfigurationError(
                f"duplicateTolerance must be >= 0, got {self.duplicate_precision}", parameter="duplicateTolerance"
            )
        if not math.isfinite(self.outlier_sigma) or self.outlier_sigma < 0:
            raise ConfigurationError(
                f"outlierThresholdSigma must be >= 0, got {self.outlier_sigma}", parameter="outlierThresholdSigma"
            )
        return self


@dataclass(frozen=True)
class AxisStats:
    mean: float | None
    std: float | None

    def to_dict(self) -> dict[str, Any]:
        return {"mean": self.mean, "std": self.std}


@dataclass(frozen=True)
class DuplicateGroup:
    group_id: int
    key: tuple[float, float]
    member_ids: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"group_id": self.group_id, "key": list(self.key), "member_ids": list(self.member_ids)}


@dataclass(frozen=True)
class QualityReport:
    config: QualityConfig
    counts: Mapping[str, int]
    flagged_ids: Mapping[str, tuple[str, ...]]
    duplicate_groups: tuple[DuplicateGroup, ...] = ()
    longitude_stats: AxisStats = field(default_factory=lambda: AxisStats(None, None))
    latitude_stats: AxisStats = field(default_factory=lambda: AxisStats(None, None))
    valid_count: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "counts", MappingProxyType(dict(self.counts)))
        object.__setattr__(self, "flagged_ids", MappingProxyType(dict(self.flagged_ids)))

    def group_of(self, point_id: str) -> DuplicateGroup | None:
        for group in self.duplicate_groups:
            if point_id in group.member_ids:
                return group
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "config": {
                "duplicate_precision": self.config.duplicate_precision,
                "outlier_sigma": self.config.outlier_sigma,
            },
            "counts": dict(self.counts),
            "flagged_ids": {flag: list(ids) for flag, ids in self.flagged_ids.items()},
            "duplicate_groups": [group.to_dict() for group in self.duplicate_groups],
            "axis_stats": {
                "longitude": self.longitude_stats.to_dict(),
                "latitude": self.latitude_stats.to_dict(),
                "valid_count": self.valid_count,
            },
        }


def is_impossible(longitude: float, latitude: float) -> bool:
    return abs(latitude) > 90 or abs(longitude) > 180 or (latitude == 0 and longitude == 0)


def find_impossible(points: Iterable[Point]) -> set[str]:
    return {point.id for point in points if is_impossible(point.longitude, point.latitude)}


def duplicate_key(point: Point, precision: int) -> tuple[float, float]:
    # + 0.0 folds -0.0 into 0.0 so both round to the same key
    return (round(point.longitude, precision) + 0.0, round(point.latitude, precision) + 0.0)


def find_duplicate_groups(points: Iterable[Point], precision: int) -> tuple[DuplicateGroup, ...]:
    """Group points whose rounded coordinates match.

    Hash binning on the rounded pair, so a single pass. Group order follows
    the first member's position in ``points``.
    """
    bins: dict[tuple[float, float], list[str]] = defaultdict(list)
    for point in points:
        bins[duplicate_key(point, precision)].append(point.id)

    groups: list[DuplicateGroup] = []
    for key, members in bins.items():
        if len(members) < 2:
            continue
        groups.append(DuplicateGroup(group_id=len(groups), key=key, member_ids=tuple(members)))
    return tuple(groups)


def _axis_stats(values: list[float]) -> AxisStats:
    if not values:
        return AxisStats(None, None)
    mean = math.fsum(values) / len(values)
    variance = math.fsum((value - mean) ** 2 for value in values) / len(values)
    return AxisStats(mean=mean, std=math.sqrt(variance))


def _beyond(value: float, stats: AxisStats, sigma: float) -> bool:
    if stats.mean is None or not stats.std:
        return False
    return abs(value - stats.mean) > sigma * stats.std


def find_outliers(
    points: Iterable[Point], impossible_ids: set[str], sigma: float
) -> tuple[set[str], AxisStats, AxisStats, int]:
    """Flag points beyond ``sigma`` standard deviations on either axis.

    Statistics use population variance over the points not in
    ``impossible_ids``; impossible points are never flagged as outliers.
    """
    valid = [point for point in points if point.id not in impossible_ids]
    lon_stats = _axis_stats([point.longitude for point in valid])
    lat_stats = _axis_stats([point.latitude for point in valid])
    if len(valid) < 2:
        return set(), lon_stats, lat_stats, len(valid)

    flagged = {
        point.id
        for point in valid
        if _beyond(point.longitude, lon_stats, sigma) or _beyond(point.latitude, lat_stats, sigma)
    }
    return flagged, lon_stats, lat_stats, len(valid)


def analyze(store: PointStore, config: QualityConfig | None = None) -> QualityReport:
    config = (config or QualityConfig()).validate()
    points = store.all()

    impossible = find_impossible(points)
    groups = find_duplicate_groups(points, config.duplicate_precision)
    duplicates = {point_id for group in groups for point_id in group.member_ids}
    outliers, lon_stats, lat_stats, valid_count = find_outliers(points, impossible, config.outlier_sigma)

    by_flag = {FLAG_DUPLICATE: duplicates, FLAG_OUTLIER: outliers, FLAG_IMPOSSIBLE: impossible}
    flags: dict[str, frozenset[str]] = {}
    for point in points:
        flags[point.id] = frozenset(flag for flag in QUALITY_FLAGS if point.id in by_flag[flag])
    store.commit("quality_flags", flags)

    flagged_ids = {flag: tuple(point.id for point in points if point.id in by_flag[flag]) for flag in QUALITY_FLAGS}
    logger.debug(
        "quality flags: %s duplicate groups, %s outliers, %s impossible",
        len(groups),
        len(outliers),
        len(impossible),
    )
    return QualityReport(
        config=config,
        counts={flag: len(ids) for flag, ids in flagged_ids.items()},
        flagged_ids=flagged_ids,
        duplicate_groups=groups,
        longitude_stats=lon_stats,
        latitude_stats=lat_stats,
        valid_count=valid_count,
    )
