from pathlib import Path

import pytest

from geosite.common.errors import InputError
from geosite.common.fs import write_json
from geosite.harvest.feature_source import (
    features_from_payload,
    fetch_remote_features,
    read_features,
    read_local_features,
)

FIXTURES = Path("tests/fixtures")


class FakeClient:
    def __init__(self, pages):
        self.pages = list(pages)
        self.calls = []

    def get_json(self, url, *, params=None, headers=None, timeout=None):
        self.calls.append((url, params))
        return self.pages.pop(0)


def _feature(point_id, lon, lat):
    return {"type": "Feature", "id": point_id, "geometry": {"type": "Point", "coordinates": [lon, lat]}, "properties": {}}


def test_read_geojson_fixture():
    features = read_local_features(FIXTURES / "sites.geojson")
    assert len(features) == 13
    assert features[0]["id"] == "BH-001"


def test_read_csv_fixture_wraps_rows_as_properties():
    features = read_local_features(FIXTURES / "sites.csv")
    assert len(features) == 3
    assert features[0] == {
        "properties": {"hole_id": "BH-001", "lon": "-97.5", "lat": "35.5", "site_name": "Oak Ridge", "depth_m": "12.5"}
    }


def test_payload_shapes():
    feature = _feature("a", 1.0, 2.0)
    assert features_from_payload([feature], "x") == [feature]
    assert features_from_payload({"type": "FeatureCollection", "features": [feature]}, "x") == [feature]
    assert features_from_payload(feature, "x") == [feature]
    with pytest.raises(InputError):
        features_from_payload({"type": "Topology"}, "x")
    with pytest.raises(InputError):
        features_from_payload({"error": {"code": 400}}, "x")
    with pytest.raises(InputError):
        features_from_payload("nope", "x")


def test_missing_and_unsupported_files(tmp_path: Path):
    with pytest.raises(InputError):
        read_local_features(tmp_path / "absent.geojson")
    shapefile = tmp_path / "sites.shp"
    shapefile.write_bytes(b"\x00")
    with pytest.raises(InputError):
        read_local_features(shapefile)


def test_invalid_json_file(tmp_path: Path):
    path = tmp_path / "broken.geojson"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(InputError):
        read_local_features(path)


def test_read_features_accepts_bare_list_file(tmp_path: Path):
    path = tmp_path / "list.json"
    write_json(path, [_feature("a", 1.0, 2.0)])
    assert read_features(path)[0]["id"] == "a"


def test_remote_paging_follows_transfer_limit():
    client = FakeClient(
        [
            {"features": [_feature("a", 1.0, 2.0), _feature("b", 1.0, 2.0)], "exceededTransferLimit": True},
            {"features": [_feature("c", 1.0, 2.0)], "exceededTransferLimit": True},
            {"features": []},
        ]
    )
    features = fetch_remote_features("https://example.com/query", client, page_size=2)

    assert [f["id"] for f in features] == ["a", "b", "c"]
    assert client.calls == [
        ("https://example.com/query", None),
        ("https://example.com/query", {"resultOffset": 2, "resultRecordCount": 2}),
        ("https://example.com/query", {"resultOffset": 3, "resultRecordCount": 2}),
    ]


def test_read_features_uses_given_client_for_urls():
    client = FakeClient([{"type": "FeatureCollection", "features": [_feature("a", 1.0, 2.0)]}])
    features = read_features("https://example.com/sites.geojson", http_client=client)
    assert [f["id"] for f in features] == ["a"]
