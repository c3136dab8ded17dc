import json
import logging

import pytest

from geosite.common.errors import MalformedRecordError, NotFoundError, PipelineError
from geosite.common.geometry import bbox_diagonal_km, extract_point_from_geometry, planar_distance, safe_float
from geosite.common.ids import assigned_point_id, generate_run_id
from geosite.common.logging import JsonLineFormatter
from geosite.common.time_utils import parse_run_date


def test_extract_point_from_geometry_handles_geojson_arcgis_and_missing():
    assert extract_point_from_geometry(None) == (None, None)
    assert extract_point_from_geometry({"type": "Point", "coordinates": [-2.1, 49.2]}) == (-2.1, 49.2)
    assert extract_point_from_geometry({"x": -2.1, "y": 49.2}) == (-2.1, 49.2)
    assert extract_point_from_geometry({"type": "Point", "coordinates": [1.0]}) == (None, None)


def test_safe_float():
    assert safe_float("1.5") == 1.5
    assert safe_float(None) is None
    assert safe_float(False) is None
    assert safe_float("inf") is None
    assert safe_float("east") is None


def test_planar_distance_and_geodesic_diagonal():
    assert planar_distance((0.0, 0.0), (3.0, 4.0)) == 5.0
    assert bbox_diagonal_km(0.0, 0.0, 0.0, 1.0) == pytest.approx(110.574, abs=0.01)
    assert bbox_diagonal_km(0.0, 0.0, 0.0, 95.0) is None


def test_ids():
    assert generate_run_id().startswith("run-")
    assert assigned_point_id(42) == "pt-000042"
    assert assigned_point_id(42, {"pt-000042", "pt-000042-1"}) == "pt-000042-2"


def test_parse_run_date_defaults_and_iso():
    assert parse_run_date("2026-02-17") == "2026-02-17"
    assert len(parse_run_date(None)) == len("2026-02-17")


def test_errors_carry_context():
    err = MalformedRecordError(7, "missing coordinates", "BH-9")
    assert isinstance(err, PipelineError)
    assert err.error_code == "MALFORMED_RECORD"
    assert "record 7" in str(err) and "BH-9" in str(err)

    missing = NotFoundError("BH-404")
    assert isinstance(missing, KeyError)
    assert str(missing) == "Unknown point id: BH-404"


def test_json_line_formatter_emits_stable_fields():
    record = logging.LogRecord("geosite.test", logging.INFO, __file__, 1, "stage end", None, None)
    record.stage = "cluster"
    record.rows_out = 3
    payload = json.loads(JsonLineFormatter().format(record))

    assert payload["message"] == "stage end"
    assert payload["stage"] == "cluster"
    assert payload["rows_out"] == 3
    assert payload["error_code"] is None
    assert "timestamp" in payload
