"""Data models used across the engine."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Mapping, Union

Scalar = Union[str, int, float, bool, None]


@dataclass(frozen=True)
class Point:
    id: str
    longitude: float
    latitude: float
    attributes: Mapping[str, Scalar] = field(default_factory=dict)
    source_index: int = 0
    region: str | None = None
    quality_flags: frozenset[str] = frozenset()
    cluster_id: int | None = None

    @property
    def coordinates(self) -> tuple[float, float]:
        return self.longitude, self.latitude

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["attributes"] = dict(self.attributes)
        payload["quality_flags"] = sorted(self.quality_flags)
        return payload


@dataclass(frozen=True)
class SkippedRecord:
    index: int
    reason: str
    record_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class LoadReport:
    total_records: int
    loaded: int
    skipped: tuple[SkippedRecord, ...] = ()

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_records": self.total_records,
            "loaded": self.loaded,
            "skipped_count": self.skipped_count,
            "skipped": [record.to_dict() for record in self.skipped],
        }
