"""Schema inference, data rows, SQL rendering, and summary statistics."""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence

from geosite.common.constants import QUALITY_FLAGS, WGS84_SRID
from geosite.common.errors import ContractError
from geosite.common.models import Point
from geosite.pipeline.store import PointStore

FIELD_TYPES = ("integer", "float", "text", "boolean")
RESERVED_FIELDS = ("id", "longitude", "latitude", "region", "quality_flags", "cluster_id", "geom")
FLAG_SEPARATOR = ";"


@dataclass(frozen=True)
class SchemaField:
    name: str
    field_type: str
    attribute: str | None = None

    def __post_init__(self) -> None:
        if self.field_type not in FIELD_TYPES:
            raise ContractError(f"Field {self.name} has unknown type {self.field_type!r}")

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "type": self.field_type, "attribute": self.attribute}


@dataclass(frozen=True)
class SqlDialect:
    name: str
    type_names: Mapping[str, str]
    geometry_column: str
    true_literal: str
    false_literal: str

    def geometry_expression(self, longitude: float, latitude: float, srid: int) -> str:
        if self.name == "postgis":
            return f"ST_SetSRID(ST_MakePoint({longitude!r}, {latitude!r}), {srid})"
        return f"'POINT({longitude!r} {latitude!r})'"


POSTGIS = SqlDialect(
    name="postgis",
    type_names={"integer": "BIGINT", "float": "DOUBLE PRECISION", "text": "TEXT", "boolean": "BOOLEAN"},
    geometry_column="geom geometry(Point, {srid})",
    true_literal="TRUE",
    false_literal="FALSE",
)

SQLITE = SqlDialect(
    name="sqlite",
    type_names={"integer": "INTEGER", "float": "REAL", "text": "TEXT", "boolean": "INTEGER"},
    geometry_column="geom TEXT",
    true_literal="1",
    false_literal="0",
)

DIALECTS = {POSTGIS.name: POSTGIS, SQLITE.name: SQLITE}

_CORE_LEADING = (
    SchemaField("id", "text"),
    SchemaField("longitude", "float"),
    SchemaField("latitude", "float"),
)
_CORE_TRAILING = (
    SchemaField("region", "text"),
    SchemaField("quality_flags", "text"),
    SchemaField("cluster_id", "integer"),
)


def infer_type(values: Iterable[Any]) -> str:
    """Narrowest of boolean / integer / float / text that holds every value.

    None is ignored; a column with no values at all is text. bool is checked
    before int because bool is an int subclass.
    """
    seen: set[str] = set()
    for value in values:
        if value is None:
            continue
        if isinstance(value, bool):
            seen.add("boolean")
        elif isinstance(value, int):
            seen.add("integer")
        elif isinstance(value, float):
            seen.add("float")
        else:
            return "text"
    if not seen:
        return "text"
    if seen == {"boolean"}:
        return "boolean"
    if seen == {"integer"}:
        return "integer"
    if seen <= {"integer", "float"}:
        return "float"
    return "text"


def _column_name(key: str) -> str:
    name = re.sub(r"[^a-z0-9_]+", "_", key.strip().lower()).strip("_") or "field"
    if name[0].isdigit():
        name = f"f_{name}"
    if name in RESERVED_FIELDS:
        name = f"prop_{name}"
    return name


def to_schema_statements(store: PointStore) -> tuple[SchemaField, ...]:
    keys: list[str] = []
    seen_keys: set[str] = set()
    for point in store.all():
        for key in point.attributes:
            if key not in seen_keys:
                seen_keys.add(key)
                keys.append(key)

    used = {field.name for field in _CORE_LEADING + _CORE_TRAILING}
    attribute_fields: list[SchemaField] = []
    for key in keys:
        base = _column_name(key)
        name = base
        suffix = 2
        while name in used:
            name = f"{base}_{suffix}"
            suffix += 1
        used.add(name)
        field_type = infer_type(point.attributes.get(key) for point in store.all())
        attribute_fields.append(SchemaField(name=name, field_type=field_type, attribute=key))

    return _CORE_LEADING + tuple(attribute_fields) + _CORE_TRAILING


def format_flags(flags: Iterable[str]) -> str:
    return FLAG_SEPARATOR.join(sorted(flags))


def _row(point: Point, schema: Sequence[SchemaField]) -> dict[str, Any]:
    row: dict[str, Any] = {}
    for field in schema:
        if field.attribute is not None:
            row[field.name] = point.attributes.get(field.attribute)
        elif field.name == "quality_flags":
            row[field.name] = format_flags(point.quality_flags)
        else:
            row[field.name] = getattr(point, field.name)
    return row


def to_data_statements(store: PointStore, schema: Sequence[SchemaField] | None = None) -> tuple[dict[str, Any], ...]:
    schema = tuple(schema) if schema is not None else to_schema_statements(store)
    return tuple(_row(point, schema) for point in store.all())


def verify_rows(schema: Sequence[SchemaField], rows: Iterable[Mapping[str, Any]]) -> None:
    expected = [field.name for field in schema]
    for idx, row in enumerate(rows):
        if list(row) != expected:
            raise ContractError(f"Row {idx} fields do not match schema order: {list(row)} != {expected}")


def rows_to_records(schema: Sequence[SchemaField], rows: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Rebuild ``{id, longitude, latitude, attributes}`` records from rows.

    Attributes whose row value is None are dropped, which matches points that
    never carried the key. A point whose attribute was explicitly None loses
    the key.
    """
    attribute_fields = [field for field in schema if field.attribute is not None]
    records = []
    for row in rows:
        records.append(
            {
                "id": row["id"],
                "longitude": row["longitude"],
                "latitude": row["latitude"],
                "attributes": {
                    field.attribute: row[field.name] for field in attribute_fields if row.get(field.name) is not None
                },
            }
        )
    return records


def _quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _literal(value: Any, field_type: str, dialect: SqlDialect) -> str:
    if value is None or (value == "" and field_type != "text"):
        return "NULL"
    if field_type == "boolean":
        return dialect.true_literal if value else dialect.false_literal
    if field_type == "integer" and not isinstance(value, bool):
        return str(int(value))
    if field_type == "float" and not isinstance(value, bool):
        return repr(float(value))
    return "'" + str(value).replace("'", "''") + "'"


def render_create_table(
    schema: Sequence[SchemaField],
    dialect: SqlDialect = POSTGIS,
    table_name: str = "site_investigation_points",
    srid: int = WGS84_SRID,
) -> str:
    columns = []
    for field in schema:
        column = f"{_quote_identifier(field.name)} {dialect.type_names[field.field_type]}"
        if field.name == "id":
            column += " PRIMARY KEY"
        columns.append(column)
    columns.append(dialect.geometry_column.format(srid=srid))
    body = ",\n  ".join(columns)
    return f"CREATE TABLE {_quote_identifier(table_name)} (\n  {body}\n);\n"


def render_inserts(
    schema: Sequence[SchemaField],
    rows: Iterable[Mapping[str, Any]],
    dialect: SqlDialect = POSTGIS,
    table_name: str = "site_investigation_points",
    srid: int = WGS84_SRID,
) -> str:
    names = ", ".join([_quote_identifier(field.name) for field in schema] + ["geom"])
    statements = []
    for row in rows:
        values = [_literal(row.get(field.name), field.field_type, dialect) for field in schema]
        values.append(dialect.geometry_expression(row["longitude"], row["latitude"], srid))
        statements.append(f"INSERT INTO {_quote_identifier(table_name)} ({names}) VALUES ({', '.join(values)});")
    return "\n".join(statements) + ("\n" if statements else "")


def csv_value(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return repr(value)
    return value


def to_csv_rows(rows: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    return [{key: csv_value(value) for key, value in row.items()} for row in rows]


def to_summary_report(store: PointStore, quality_report=None, cluster_report=None) -> dict[str, Any]:
    points = store.all()

    region_counts = Counter(point.region for point in points if point.region is not None)

    if quality_report is not None:
        quality_counts = {flag: int(quality_report.counts.get(flag, 0)) for flag in QUALITY_FLAGS}
    else:
        quality_counts = {flag: sum(1 for point in points if flag in point.quality_flags) for flag in QUALITY_FLAGS}

    if cluster_report is not None:
        cluster_sizes = list(cluster_report.cluster_sizes)
    else:
        by_cluster = Counter(point.cluster_id for point in points if point.cluster_id is not None)
        cluster_sizes = [by_cluster[cluster_id] for cluster_id in sorted(by_cluster)]

    return {
        "totalCount": len(points),
        "regionCounts": dict(sorted(region_counts.items())),
        "qualityCounts": quality_counts,
        "clusterCount": len(cluster_sizes),
        "clusterSizes": cluster_sizes,
    }
