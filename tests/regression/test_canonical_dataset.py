from pathlib import Path

import pytest

from geosite.common.config_loader import apply_overrides, load_engine_config
from geosite.harvest.feature_source import read_features
from geosite.pipeline.runner import run_pipeline

CANONICAL = Path("data/geotechnical_points.geojson")


@pytest.mark.regression
@pytest.mark.skipif(not CANONICAL.exists(), reason="canonical dataset not present")
def test_canonical_dataset_two_way_counts():
    config = apply_overrides(load_engine_config(Path("config")), rule_set="two_way")
    result = run_pipeline(read_features(CANONICAL), config)

    assert result.summary["totalCount"] == 85994
    assert result.summary["regionCounts"] == {"Eastern": 69055, "Western": 16939}
