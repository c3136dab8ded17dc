"""Fixed-radius neighbourhood queries over (longitude, latitude) pairs."""

from __future__ import annotations

from collections import defaultdict
from typing import Callable, Sequence

import numpy as np
from scipy import sparse
from sklearn.neighbors import NearestNeighbors

from geosite.common.errors import StageCancelled

DEFAULT_CHUNK_SIZE = 2048


class RadiusIndex:
    """Answers "which points lie within ``radius``" for a fixed point set.

    A positive radius is served by a KD-tree (``NearestNeighbors`` with
    ``algorithm="kd_tree"``). A zero radius keys points on their exact
    coordinate pair instead, since the tree needs a positive radius.

    The index holds positions into the coordinate sequence it was built from,
    never references between points. Build once, then query read-only.
    """

    def __init__(self, coordinates: Sequence[tuple[float, float]], radius: float) -> None:
        if radius < 0:
            raise ValueError(f"radius must be >= 0, got {radius}")
        self.radius = float(radius)
        self.points = np.asarray(coordinates, dtype=float).reshape(-1, 2)
        self._tree: NearestNeighbors | None = None
        self._groups: dict[tuple[float, float], list[int]] = {}

        if self.exact:
            groups: dict[tuple[float, float], list[int]] = defaultdict(list)
            for position, (lon, lat) in enumerate(self.points.tolist()):
                groups[(lon, lat)].append(position)
            self._groups = dict(groups)
        elif len(self.points):
            self._tree = NearestNeighbors(radius=self.radius, algorithm="kd_tree").fit(self.points)

    @property
    def exact(self) -> bool:
        return self.radius == 0

    def __len__(self) -> int:
        return len(self.points)

    def groups(self) -> list[list[int]]:
        """Positions sharing one exact coordinate, ordered by first position."""
        return sorted(self._groups.values(), key=lambda members: members[0])

    def neighbours(self, position: int) -> list[int]:
        """Positions within the radius of ``position`` (itself included), ascending."""
        if self.exact:
            lon, lat = self.points[position].tolist()
            return list(self._groups[(lon, lat)])
        found = self._tree.radius_neighbors(self.points[position : position + 1], return_distance=False)[0]
        return sorted(int(other) for other in found)

    def graph(
        self,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        should_cancel: Callable[[], bool] | None = None,
    ) -> sparse.csr_matrix:
        """Sparse distance graph of every pair within the radius.

        Rows are queried ``chunk_size`` points at a time and ``should_cancel``
        is polled before each chunk.
        """
        if self.exact:
            raise ValueError("a zero radius has no distance graph; use groups()")
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
        total = len(self.points)
        rows = []
        for start in range(0, total, chunk_size):
            if should_cancel is not None and should_cancel():
                raise StageCancelled(f"Neighbourhood search cancelled after {start} of {total} points")
            rows.append(
                self._tree.radius_neighbors_graph(
                    self.points[start : start + chunk_size],
                    mode="distance",
                    sort_results=True,
                )
            )
        return sparse.vstack(rows, format="csr")

    def describe(self) -> str:
        if self.exact:
            return f"exact(groups={len(self._groups)})"
        return f"kd_tree(radius={self.radius}, points={len(self.points)})"
