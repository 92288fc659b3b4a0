import numpy as np
import pytest
from shapely.geometry import box

from ntl_change.models import Boundary
from ntl_change.zonal_stats import SpatialAggregator


def test_aggregation_is_additive_over_disjoint_parts(make_raster, country, halves):
    raster = make_raster(np.arange(16, dtype=float).reshape(4, 4))
    aggregator = SpatialAggregator()

    whole = aggregator.aggregate(raster, [country])[0].value
    parts = [r.value for r in aggregator.aggregate(raster, halves)]

    assert whole == pytest.approx(sum(parts))
    assert whole == pytest.approx(120.0)


def test_nodata_cells_are_excluded_not_zero(make_raster, country):
    values = np.full((4, 4), 2.0)
    values[0, :] = np.nan

    total = SpatialAggregator().aggregate(make_raster(values), [country])[0].value
    mean = SpatialAggregator({"statistic": "mean"}).aggregate(make_raster(values), [country])[0].value

    assert total == 24.0
    assert mean == 2.0


def test_unit_outside_raster_gets_undefined_aggregate(make_raster, country):
    outside = Boundary(code="FAR", geometry=box(50, 50, 60, 60), level="location")

    records = SpatialAggregator().aggregate(make_raster(np.ones((4, 4))), [country, outside])

    assert records[0].value == 16.0
    assert np.isnan(records[1].value)
    assert records[1].level == "location"


def test_aggregate_periods_builds_unique_unit_date_table(make_raster, country, halves):
    rasters = {
        "2023-01": make_raster(np.ones((4, 4)), "2023-01"),
        "2023-02": make_raster(np.full((4, 4), 2.0), "2023-02"),
    }

    frame = SpatialAggregator({"max_workers": 2}).aggregate_periods(rasters, [country] + halves)

    assert len(frame) == 6
    assert not frame.duplicated(["unit_id", "date"]).any()
    national = frame[frame["unit_id"] == "XX"]
    assert national["value"].tolist() == [16.0, 32.0]
    assert [str(d) for d in national["date"]] == ["2023-01", "2023-02"]


def test_unknown_statistic_is_rejected():
    with pytest.raises(ValueError):
        SpatialAggregator({"statistic": "median"})
