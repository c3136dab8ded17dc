"""In-memory point store and raw feature loading."""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from typing import Any, Container, Iterable, Iterator, Mapping

from geosite.common.constants import ANNOTATION_FIELDS
from geosite.common.errors import MalformedRecordError, NotFoundError, StageError
from geosite.common.geometry import extract_point_from_geometry, safe_float
from geosite.common.ids import assigned_point_id
from geosite.common.models import LoadReport, Point, Scalar, SkippedRecord

logger = logging.getLogger(__name__)

ARCGIS_ID_FIELD = "OBJECTID"


def _lookup_first(properties: Mapping[str, Any], candidates: Iterable[str]) -> object | None:
    for key in candidates:
        if key in properties and properties[key] not in (None, ""):
            return properties[key]
    return None


def _scalar(value: Any) -> Scalar:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"), sort_keys=True)
    return str(value)


def _properties(feature: Mapping[str, Any]) -> tuple[Any, bool]:
    """Attribute mapping of a GeoJSON feature, or of a native ArcGIS feature."""
    if feature.get("properties") is None and feature.get("attributes") is not None:
        return feature["attributes"], True
    return feature.get("properties") or {}, False


def _record_id(
    feature: Mapping[str, Any],
    properties: Mapping[str, Any],
    id_property: str | None,
    arcgis: bool = False,
) -> str | None:
    raw_id = feature.get("id")
    for key in (id_property, ARCGIS_ID_FIELD if arcgis else None):
        if raw_id not in (None, ""):
            break
        if key:
            raw_id = properties.get(key)
    if raw_id in (None, ""):
        return None
    return str(raw_id)


def _explicit_id(feature: Any, id_property: str | None) -> str | None:
    if not isinstance(feature, Mapping):
        return None
    properties, arcgis = _properties(feature)
    if not isinstance(properties, Mapping):
        return None
    return _record_id(feature, properties, id_property, arcgis)


def parse_feature(
    feature: Any,
    index: int,
    *,
    id_property: str | None = None,
    lon_candidates: Iterable[str] = (),
    lat_candidates: Iterable[str] = (),
    taken_ids: Container[str] = frozenset(),
) -> Point:
    """Turn one raw geometry+properties record into a Point.

    Raises MalformedRecordError when the record has no usable point geometry.
    Records without an id of their own get one that avoids ``taken_ids``.
    """
    if not isinstance(feature, Mapping):
        raise MalformedRecordError(index, f"expected a mapping, got {type(feature).__name__}")

    properties, arcgis = _properties(feature)
    if not isinstance(properties, Mapping):
        raise MalformedRecordError(index, "properties is not a mapping")
    record_id = _record_id(feature, properties, id_property, arcgis)

    geometry = feature.get("geometry")
    if geometry is not None and not isinstance(geometry, Mapping):
        raise MalformedRecordError(index, "geometry is not a mapping", record_id)
    geometry_type = (geometry or {}).get("type")
    if geometry_type not in (None, "Point"):
        raise MalformedRecordError(index, f"unsupported geometry type {geometry_type}", record_id)

    raw_lon, raw_lat = extract_point_from_geometry(dict(geometry) if geometry else None)
    if raw_lon is None or raw_lat is None:
        raw_lon = _lookup_first(properties, lon_candidates)
        raw_lat = _lookup_first(properties, lat_candidates)
    if raw_lon is None or raw_lat is None:
        raise MalformedRecordError(index, "missing coordinates", record_id)

    longitude = safe_float(raw_lon)
    latitude = safe_float(raw_lat)
    if longitude is None or latitude is None:
        raise MalformedRecordError(index, f"non-numeric coordinates ({raw_lon!r}, {raw_lat!r})", record_id)

    return Point(
        id=record_id if record_id is not None else assigned_point_id(index, taken_ids),
        longitude=longitude,
        latitude=latitude,
        attributes={str(key): _scalar(value) for key, value in properties.items()},
        source_index=index,
    )


class PointStore:
    """Ordered, id-indexed collection of points for one run.

    Points are immutable. Annotation fields change only through ``commit``,
    which replaces one field on every point at once.
    """

    def __init__(self, points: Iterable[Point] = ()) -> None:
        ordered = tuple(points)
        index: dict[str, int] = {}
        for position, point in enumerate(ordered):
            if point.id in index:
                raise MalformedRecordError(point.source_index, "duplicate point id", point.id)
            index[point.id] = position
        self._points = ordered
        self._index = index

    @classmethod
    def load(
        cls,
        raw_features: Iterable[Any],
        *,
        strict: bool = False,
        id_property: str | None = None,
        lon_candidates: Iterable[str] = (),
        lat_candidates: Iterable[str] = (),
    ) -> tuple["PointStore", LoadReport]:
        raw_features = list(raw_features)
        taken_ids = {
            record_id
            for record_id in (_explicit_id(feature, id_property) for feature in raw_features)
            if record_id is not None
        }
        lon_candidates = tuple(lon_candidates)
        lat_candidates = tuple(lat_candidates)
        points: list[Point] = []
        seen_ids: set[str] = set()
        skipped: list[SkippedRecord] = []
        total = 0

        for index, feature in enumerate(raw_features):
            total += 1
            try:
                point = parse_feature(
                    feature,
                    index,
                    id_property=id_property,
                    lon_candidates=lon_candidates,
                    lat_candidates=lat_candidates,
                    taken_ids=taken_ids,
                )
                if point.id in seen_ids:
                    raise MalformedRecordError(index, "duplicate point id", point.id)
            except MalformedRecordError as exc:
                if strict:
                    raise
                logger.debug("skipping record %s: %s", exc.index, exc.reason)
                skipped.append(SkippedRecord(index=exc.index, reason=exc.reason, record_id=exc.record_id))
                continue
            seen_ids.add(point.id)
            points.append(point)

        report = LoadReport(total_records=total, loaded=len(points), skipped=tuple(skipped))
        return cls(points), report

    def get(self, point_id: str) -> Point:
        position = self._index.get(point_id)
        if position is None:
            raise NotFoundError(point_id)
        return self._points[position]

    def all(self) -> tuple[Point, ...]:
        return self._points

    def ids(self) -> list[str]:
        return [point.id for point in self._points]

    def size(self) -> int:
        return len(self._points)

    def __len__(self) -> int:
        return len(self._points)

    def __iter__(self) -> Iterator[Point]:
        return iter(self._points)

    def __contains__(self, point_id: object) -> bool:
        return point_id in self._index

    def commit(self, field: str, values: Mapping[str, Any]) -> None:
        """Write one annotation field for every point in a single swap."""
        if field not in ANNOTATION_FIELDS:
            raise StageError(f"Unknown annotation field: {field}")
        missing = [point.id for point in self._points if point.id not in values]
        if missing:
            raise StageError(f"Commit of {field} is missing {len(missing)} point(s), first: {missing[0]}")
        extra = set(values) - set(self._index)
        if extra:
            raise StageError(f"Commit of {field} names unknown point(s): {', '.join(sorted(extra)[:5])}")

        self._points = tuple(replace(point, **{field: values[point.id]}) for point in self._points)
