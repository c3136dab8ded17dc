import pytest

from geosite.common.errors import ContractError
from geosite.pipeline.clustering import ClusterConfig, cluster
from geosite.pipeline.export import (
    POSTGIS,
    SQLITE,
    SchemaField,
    infer_type,
    render_create_table,
    render_inserts,
    rows_to_records,
    to_csv_rows,
    to_data_statements,
    to_schema_statements,
    to_summary_report,
    verify_rows,
)
from geosite.pipeline.quality import analyze
from geosite.pipeline.regions import TWO_WAY, classify
from geosite.pipeline.store import PointStore


def _store():
    features = [
        {
            "id": "BH-1",
            "geometry": {"type": "Point", "coordinates": [-97.123456789012, 35.987654321098]},
            "properties": {"Site Name": "O'Brien Yard", "depth_m": 12, "spt": 14, "wet": True, "id": "legacy-1"},
        },
        {
            "id": "BH-2",
            "geometry": {"type": "Point", "coordinates": [-80.5, 40.25]},
            "properties": {"Site Name": "Flats", "depth_m": 7.75, "spt": None, "wet": False, "notes": "soft clay"},
        },
    ]
    store, _report = PointStore.load(features)
    return store


@pytest.mark.parametrize(
    "values,expected",
    [
        ([True, False, None], "boolean"),
        ([1, 2, None], "integer"),
        ([1, 2.5], "float"),
        ([1.0, "x"], "text"),
        ([True, 1], "text"),
        ([None, None], "text"),
        ([], "text"),
    ],
)
def test_infer_type(values, expected):
    assert infer_type(values) == expected


def test_schema_fields_and_types():
    schema = to_schema_statements(_store())
    assert [(f.name, f.field_type) for f in schema] == [
        ("id", "text"),
        ("longitude", "float"),
        ("latitude", "float"),
        ("site_name", "text"),
        ("depth_m", "float"),
        ("spt", "integer"),
        ("wet", "boolean"),
        ("prop_id", "text"),
        ("notes", "text"),
        ("region", "text"),
        ("quality_flags", "text"),
        ("cluster_id", "integer"),
    ]
    assert schema[3].attribute == "Site Name"
    assert schema[7].attribute == "id"


def test_schema_deduplicates_sanitised_names():
    features = [
        {"id": "a", "geometry": {"type": "Point", "coordinates": [0.5, 0.5]}, "properties": {"Depth M": 1, "depth_m": 2}}
    ]
    store, _report = PointStore.load(features)
    names = [f.name for f in to_schema_statements(store)]
    assert "depth_m" in names and "depth_m_2" in names


def test_data_rows_follow_schema_order_and_keep_precision():
    store = _store()
    classify(store, TWO_WAY)
    schema = to_schema_statements(store)
    rows = to_data_statements(store, schema)

    verify_rows(schema, rows)
    assert rows[0]["longitude"] == -97.123456789012
    assert rows[0]["latitude"] == 35.987654321098
    assert rows[0]["region"] == "Western"
    assert rows[0]["quality_flags"] == ""
    assert rows[0]["cluster_id"] is None
    assert rows[0]["notes"] is None
    assert rows[1]["region"] == "Eastern"


def test_verify_rows_rejects_reordered_row():
    schema = (SchemaField("id", "text"), SchemaField("longitude", "float"))
    with pytest.raises(ContractError):
        verify_rows(schema, [{"longitude": 1.0, "id": "a"}])


def test_round_trip_reproduces_attributes_and_coordinates():
    store = _store()
    schema = to_schema_statements(store)
    records = rows_to_records(schema, to_data_statements(store, schema))

    for record, point in zip(records, store.all()):
        assert record["id"] == point.id
        assert record["longitude"] == point.longitude
        assert record["latitude"] == point.latitude
        expected = {key: value for key, value in point.attributes.items() if value is not None}
        assert record["attributes"] == expected


def test_create_table_postgis():
    sql = render_create_table(to_schema_statements(_store()), POSTGIS, "sites")
    assert sql.startswith('CREATE TABLE "sites" (')
    assert '"id" TEXT PRIMARY KEY' in sql
    assert '"depth_m" DOUBLE PRECISION' in sql
    assert '"wet" BOOLEAN' in sql
    assert "geom geometry(Point, 4326)" in sql


def test_inserts_escape_text_and_keep_full_precision():
    store = _store()
    schema = to_schema_statements(store)
    sql = render_inserts(schema, to_data_statements(store, schema), POSTGIS, "sites")
    lines = sql.strip().splitlines()

    assert len(lines) == 2
    assert "'O''Brien Yard'" in lines[0]
    assert "ST_SetSRID(ST_MakePoint(-97.123456789012, 35.987654321098), 4326)" in lines[0]
    assert "TRUE" in lines[0]
    assert "12.0" in lines[0]
    assert "NULL" in lines[1]


def test_inserts_sqlite_dialect():
    store = _store()
    schema = to_schema_statements(store)
    sql = render_inserts(schema, to_data_statements(store, schema), SQLITE, "sites")
    assert "'POINT(-80.5 40.25)'" in sql
    assert "ST_MakePoint" not in sql
    assert "geom TEXT" in render_create_table(schema, SQLITE, "sites")


def test_inserts_empty_rows():
    assert render_inserts((SchemaField("id", "text"),), []) == ""


def test_csv_rows_render_flags_and_booleans():
    store = _store()
    rows = to_csv_rows(to_data_statements(store))
    assert rows[0]["wet"] == "true"
    assert rows[1]["spt"] == ""
    assert rows[0]["longitude"] == "-97.123456789012"


def test_summary_report_from_reports():
    features = [
        {"id": f"p{i}", "geometry": {"type": "Point", "coordinates": [-97.0 + i * 0.001, 35.0]}, "properties": {}}
        for i in range(4)
    ]
    features.append({"id": "zero", "geometry": {"type": "Point", "coordinates": [0, 0]}, "properties": {}})
    store, _report = PointStore.load(features)
    classify(store, TWO_WAY)
    quality = analyze(store)
    clusters = cluster(store, ClusterConfig(eps=0.01, min_points=2))

    summary = to_summary_report(store, quality, clusters)
    assert summary == {
        "totalCount": 5,
        "regionCounts": {"Eastern": 1, "Western": 4},
        "qualityCounts": {"duplicate": 0, "outlier": quality.counts["outlier"], "impossibleCoordinate": 1},
        "clusterCount": 1,
        "clusterSizes": [4],
    }


def test_summary_report_without_reports_reads_annotations():
    store = _store()
    summary = to_summary_report(store)
    assert summary["totalCount"] == 2
    assert summary["regionCounts"] == {}
    assert summary["clusterCount"] == 0
    assert summary["clusterSizes"] == []


def test_schema_field_rejects_unknown_type():
    with pytest.raises(ContractError):
        SchemaField("depth", "decimal", "depth")
