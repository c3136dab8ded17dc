"""Density-based (DBSCAN) clustering over planar coordinates.

Distances are Euclidean on (longitude, latitude) degrees. That is a planar
approximation suited to regional analysis; it is not geodesic, and a degree
of longitude covers less ground the further a point is from the equator.

Neighbourhoods come from a KD-tree (``RadiusIndex``), queried in chunks into a
sparse distance graph that ``sklearn.cluster.DBSCAN`` labels with
``metric="precomputed"``. Building and querying the tree keeps the pass close
to O(n log n) for regionally distributed data.

Cluster ids are assigned 0, 1, 2, ... in the order each cluster's seed core
point is reached while walking the store in insertion order. Border points
reachable from more than one cluster join the first one that reaches them.
``eps == 0`` only groups points with identical coordinates.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable

from sklearn.cluster import DBSCAN

from geosite.common.constants import QUALITY_FLAGS
from geosite.common.errors import ConfigurationError, StageCancelled
from geosite.common.geometry import bbox_diagonal_km
from geosite.common.models import Point
from geosite.pipeline.spatial_index import DEFAULT_CHUNK_SIZE, RadiusIndex
from geosite.pipeline.store import PointStore

logger = logging.getLogger(__name__)

NOISE = None


@dataclass(frozen=True)
class ClusterConfig:
    eps: float = 0.05
    min_points: int = 5
    exclude_flags: frozenset[str] = frozenset()

    def validate(self) -> "ClusterConfig":
        if isinstance(self.eps, bool) or not isinstance(self.eps, (int, float)) or not math.isfinite(self.eps):
            raise ConfigurationError(f"clusterEps must be a finite number, got {self.eps!r}", parameter="clusterEps")
        if self.eps < 0:
            raise ConfigurationError(f"clusterEps must be >= 0, got {self.eps}", parameter="clusterEps")
        if isinstance(self.min_points, bool) or not isinstance(self.min_points, int) or self.min_points < 1:
            raise ConfigurationError(
                f"clusterMinPoints must be an integer >= 1, got {self.min_points!r}", parameter="clusterMinPoints"
            )
        unknown = sorted(set(self.exclude_flags) - set(QUALITY_FLAGS))
        if unknown:
            raise ConfigurationError(
                f"cluster.exclude_flags has unknown flag(s): {', '.join(unknown)}", parameter="cluster.exclude_flags"
            )
        return self


@dataclass(frozen=True)
class ClusterSummary:
    cluster_id: int
    member_ids: tuple[str, ...]
    centroid_lon: float
    centroid_lat: float
    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float
    diagonal_km: float | None = None

    @property
    def size(self) -> int:
        return len(self.member_ids)

    def to_dict(self) -> dict[str, Any]:
        return {
            "cluster_id": self.cluster_id,
            "size": self.size,
            "centroid": {"lon": self.centroid_lon, "lat": self.centroid_lat},
            "bbox": [self.min_lon, self.min_lat, self.max_lon, self.max_lat],
            "diagonal_km": self.diagonal_km,
            "member_ids": list(self.member_ids),
        }


@dataclass(frozen=True)
class ClusterReport:
    eps: float
    min_points: int
    index: str
    clusters: tuple[ClusterSummary, ...]
    noise_ids: tuple[str, ...]
    core_count: int

    @property
    def cluster_count(self) -> int:
        return len(self.clusters)

    @property
    def cluster_sizes(self) -> list[int]:
        return [cluster.size for cluster in self.clusters]

    def to_dict(self) -> dict[str, Any]:
        return {
            "eps": self.eps,
            "min_points": self.min_points,
            "index": self.index,
            "cluster_count": self.cluster_count,
            "cluster_sizes": self.cluster_sizes,
            "core_count": self.core_count,
            "noise_count": len(self.noise_ids),
            "clusters": [cluster.to_dict() for cluster in self.clusters],
            "noise_ids": list(self.noise_ids),
        }


def _exact_labels(index: RadiusIndex, min_points: int) -> tuple[list[int | None], int]:
    labels: list[int | None] = [NOISE] * len(index)
    core_count = 0
    next_id = 0
    for members in index.groups():
        if len(members) < min_points:
            continue
        for position in members:
            labels[position] = next_id
        core_count += len(members)
        next_id += 1
    return labels, core_count


def dbscan_labels(
    coordinates: list[tuple[float, float]],
    eps: float,
    min_points: int,
    *,
    should_cancel: Callable[[], bool] | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> tuple[list[int | None], int, RadiusIndex]:
    """Label each coordinate with a cluster number, or None for noise.

    Returns ``(labels, core_count, index)``.
    """
    index = RadiusIndex(coordinates, eps)
    if len(index) == 0:
        return [], 0, index
    if index.exact:
        if should_cancel is not None and should_cancel():
            raise StageCancelled(f"Clustering cancelled before grouping {len(index)} points")
        labels, core_count = _exact_labels(index, min_points)
        return labels, core_count, index

    graph = index.graph(chunk_size=chunk_size, should_cancel=should_cancel)
    model = DBSCAN(eps=eps, min_samples=min_points, metric="precomputed").fit(graph)
    labels = [NOISE if label < 0 else int(label) for label in model.labels_]
    return labels, len(model.core_sample_indices_), index


def _summarise(cluster_id: int, members: list[Point]) -> ClusterSummary:
    lons = [point.longitude for point in members]
    lats = [point.latitude for point in members]
    min_lon, max_lon = min(lons), max(lons)
    min_lat, max_lat = min(lats), max(lats)
    return ClusterSummary(
        cluster_id=cluster_id,
        member_ids=tuple(point.id for point in members),
        centroid_lon=math.fsum(lons) / len(lons),
        centroid_lat=math.fsum(lats) / len(lats),
        min_lon=min_lon,
        min_lat=min_lat,
        max_lon=max_lon,
        max_lat=max_lat,
        diagonal_km=bbox_diagonal_km(min_lon, min_lat, max_lon, max_lat),
    )


def cluster(
    store: PointStore,
    config: ClusterConfig | None = None,
    *,
    should_cancel: Callable[[], bool] | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> ClusterReport:
    config = (config or ClusterConfig()).validate()
    points = store.all()
    candidates = [point for point in points if not (point.quality_flags & config.exclude_flags)]

    labels, core_count, index = dbscan_labels(
        [point.coordinates for point in candidates],
        float(config.eps),
        config.min_points,
        should_cancel=should_cancel,
        chunk_size=chunk_size,
    )

    assignment: dict[str, int | None] = {point.id: NOISE for point in points}
    members: dict[int, list[Point]] = {}
    for point, label in zip(candidates, labels):
        assignment[point.id] = label
        if label is not None:
            members.setdefault(label, []).append(point)

    clusters = tuple(_summarise(cluster_id, members[cluster_id]) for cluster_id in sorted(members))
    noise_ids = tuple(point.id for point in points if assignment[point.id] is None)
    store.commit("cluster_id", assignment)

    logger.debug("clustered %s points into %s clusters using %s", len(candidates), len(clusters), index.describe())
    return ClusterReport(
        eps=float(config.eps),
        min_points=config.min_points,
        index=index.describe(),
        clusters=clusters,
        noise_ids=noise_ids,
        core_count=core_count,
    )
