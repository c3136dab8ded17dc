import pytest

from geosite.common.errors import ConfigurationError
from geosite.pipeline.quality import (
    QualityConfig,
    analyze,
    find_duplicate_groups,
    is_impossible,
)
from geosite.pipeline.store import PointStore


def _store(coords):
    features = [
        {"id": point_id, "geometry": {"type": "Point", "coordinates": [lon, lat]}, "properties": {}}
        for point_id, lon, lat in coords
    ]
    store, _report = PointStore.load(features)
    return store


IMPOSSIBLE_FIXTURES = [
    (0.0, 0.0, True),
    (0.0, 0.0001, False),
    (0.0001, 0.0, False),
    (180.0, 90.0, False),
    (-180.0, -90.0, False),
    (180.0001, 10.0, True),
    (-180.0001, 10.0, True),
    (10.0, 90.0001, True),
    (10.0, -90.0001, True),
    (-97.5, 35.5, False),
    (500.0, 500.0, True),
]


@pytest.mark.parametrize("lon,lat,expected", IMPOSSIBLE_FIXTURES)
def test_impossible_predicate(lon, lat, expected):
    assert is_impossible(lon, lat) is expected


def test_analyze_flags_impossible_points_exactly():
    coords = [(f"p{i}", lon, lat) for i, (lon, lat, _expected) in enumerate(IMPOSSIBLE_FIXTURES)]
    store = _store(coords)
    report = analyze(store, QualityConfig(outlier_sigma=100.0))

    flagged = {p.id for p in store if "impossibleCoordinate" in p.quality_flags}
    expected = {f"p{i}" for i, (_lon, _lat, is_bad) in enumerate(IMPOSSIBLE_FIXTURES) if is_bad}
    assert flagged == expected
    assert report.counts["impossibleCoordinate"] == len(expected)


def test_duplicates_grouped_after_rounding():
    store = _store(
        [
            ("a", -97.1234561, 35.0),
            ("b", -97.5, 35.5),
            ("c", -97.1234564, 35.0000001),
            ("d", -97.12346, 35.0),
            ("e", -97.5, 35.5),
        ]
    )
    report = analyze(store, QualityConfig(duplicate_precision=6))

    assert [group.member_ids for group in report.duplicate_groups] == [("a", "c"), ("b", "e")]
    assert [group.group_id for group in report.duplicate_groups] == [0, 1]
    assert report.counts["duplicate"] == 4
    assert "duplicate" not in store.get("d").quality_flags
    assert report.group_of("c").group_id == 0
    assert report.group_of("d") is None


def test_duplicate_groups_are_transitive_and_symmetric():
    store = _store([("a", 1.00000001, 2.0), ("b", 1.00000004, 2.0), ("c", 0.99999996, 2.0)])
    groups = find_duplicate_groups(store.all(), precision=6)
    assert len(groups) == 1
    assert set(groups[0].member_ids) == {"a", "b", "c"}


def test_negative_zero_rounds_into_same_group():
    store = _store([("a", -0.0000001, 10.0), ("b", 0.0000001, 10.0)])
    groups = find_duplicate_groups(store.all(), precision=6)
    assert groups[0].member_ids == ("a", "b")


def _cluster_with_outlier():
    coords = [(f"p{i}", -97.0 + (i % 5) * 0.01, 35.0 + (i % 3) * 0.01) for i in range(30)]
    coords.append(("far", -60.0, 35.0))
    return coords


def test_outlier_flagged_beyond_sigma():
    store = _store(_cluster_with_outlier())
    report = analyze(store, QualityConfig(outlier_sigma=3.0))

    assert report.flagged_ids["outlier"] == ("far",)
    assert report.valid_count == 31
    assert report.longitude_stats.mean is not None


def test_impossible_point_does_not_change_outlier_flags():
    base = _cluster_with_outlier()
    first = _store(base)
    second = _store(base + [("sentinel", 0.0, 0.0), ("wild", 900.0, -400.0)])

    analyze(first, QualityConfig())
    report = analyze(second, QualityConfig())

    for point in first:
        assert ("outlier" in point.quality_flags) == ("outlier" in second.get(point.id).quality_flags)
    assert "outlier" not in second.get("sentinel").quality_flags
    assert "outlier" not in second.get("wild").quality_flags
    assert report.valid_count == 31


def test_zero_variance_flags_no_outliers():
    store = _store([("a", 1.0, 1.0), ("b", 1.0, 1.0), ("c", 1.0, 1.0)])
    report = analyze(store, QualityConfig())
    assert report.counts["outlier"] == 0
    assert report.counts["duplicate"] == 3


def test_single_point_store_flags_nothing():
    store = _store([("a", -97.0, 35.0)])
    report = analyze(store)
    assert report.counts == {"duplicate": 0, "outlier": 0, "impossibleCoordinate": 0}
    assert store.get("a").quality_flags == frozenset()


def test_flags_union_on_one_point():
    store = _store([("z1", 0.0, 0.0), ("z2", 0.0, 0.0), ("a", -97.0, 35.0)])
    analyze(store)
    assert store.get("z1").quality_flags == frozenset({"duplicate", "impossibleCoordinate"})


def test_rerun_overwrites_flags():
    store = _store([("a", 1.0, 1.0), ("b", 1.0000004, 1.0)])
    analyze(store, QualityConfig(duplicate_precision=6))
    assert "duplicate" in store.get("a").quality_flags
    analyze(store, QualityConfig(duplicate_precision=7))
    assert store.get("a").quality_flags == frozenset()


@pytest.mark.parametrize(
    "config",
    [QualityConfig(outlier_sigma=-1.0), QualityConfig(duplicate_precision=-2), QualityConfig(duplicate_precision=1.5)],
)
def test_invalid_config_raises_before_mutating(config):
    store = _store([("a", 1.0, 1.0)])
    with pytest.raises(ConfigurationError):
        analyze(store, config)
    assert store.get("a").quality_flags == frozenset()


def test_report_mappings_are_read_only():
    store = _store([("a", 1.0, 1.0), ("b", 1.0, 1.0)])
    report = analyze(store)

    with pytest.raises(TypeError):
        report.counts["duplicate"] = 0
    with pytest.raises(TypeError):
        report.flagged_ids["outlier"] = ("a",)
    assert report.to_dict()["counts"] == {"duplicate": 2, "outlier": 0, "impossibleCoordinate": 0}
