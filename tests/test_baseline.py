import numpy as np
import pandas as pd
import pytest
from rasterio.transform import from_origin

from ntl_change.baseline import BaselineEstimator, baseline_window
from ntl_change.models import Raster


def test_baseline_window_is_six_consecutive_months():
    window = baseline_window("2023-01")

    assert [str(p) for p in window] == [
        "2023-01", "2023-02", "2023-03", "2023-04", "2023-05", "2023-06"
    ]
    assert "2023-06" in window
    assert "2023-07" not in window


def test_constant_baseline_returns_the_constant():
    window = baseline_window("2023-01")
    observations = {str(p): 7.25 for p in window}

    assert BaselineEstimator().scalar_baseline(observations, window) == 7.25


def test_dates_outside_window_are_ignored():
    window = baseline_window("2023-01")
    observations = {"2022-12": 1000.0, "2023-01": 10.0, "2023-02": 20.0, "2023-07": 1000.0}

    assert BaselineEstimator().scalar_baseline(observations, window) == 15.0


def test_window_without_observations_is_undefined():
    window = baseline_window("2023-01")

    assert np.isnan(BaselineEstimator().scalar_baseline({"2024-01": 5.0}, window))


def test_unit_baselines_one_unit_undefined_does_not_affect_others():
    frame = pd.DataFrame({
        "unit_id": ["A"] * 6 + ["B"],
        "date": ["2023-01", "2023-02", "2023-03", "2023-04", "2023-05", "2023-06", "2024-01"],
        "value": [10.0] * 6 + [4.0],
    })

    baselines = BaselineEstimator().unit_baselines(frame, baseline_window("2023-01"))

    assert baselines["A"] == 10.0
    assert np.isnan(baselines["B"])


def test_unit_baselines_reject_a_second_label_for_a_window_month():
    dates = ["2023-01", "2023-02", "2023-03", "2023-04", "2023-05", "2023-06"]
    frame = pd.DataFrame({
        "unit_id": ["A"] * 7,
        "date": dates + ["2023-01-15"],
        "value": [10.0] * 6 + [1000.0],
    })

    with pytest.raises(ValueError, match="Duplicate"):
        BaselineEstimator().unit_baselines(frame, baseline_window("2023-01"))


def test_preceding_window_ends_just_before_target():
    window = BaselineEstimator({"months": 6}).preceding_window("2024-01")

    assert str(window.start) == "2023-07"
    assert str(window.end) == "2023-12"
    assert len(window) == 6


def test_raster_baseline_preserves_any_nodata(make_raster):
    rasters = [make_raster(np.full((4, 4), float(i)), period=f"2023-0{i}") for i in range(1, 7)]
    rasters[2].data[0, 0] = np.nan

    baseline = BaselineEstimator().raster_baseline(rasters)

    assert np.isnan(baseline.data[0, 0])
    assert baseline.data[1, 1] == 3.5


def test_raster_baseline_rejects_mismatched_grids(make_raster):
    coarse = Raster(data=np.ones((2, 2)), transform=from_origin(0, 4, 2, 2), period="2023-02")

    with pytest.raises(ValueError, match="not on the grid"):
        BaselineEstimator().raster_baseline([make_raster(np.ones((4, 4))), coarse])


def test_select_window_rasters_reports_missing_periods(make_raster):
    rasters = {"2023-01": make_raster(np.ones((4, 4)))}

    with pytest.raises(ValueError, match="2023-02"):
        BaselineEstimator().select_window_rasters(rasters, baseline_window("2023-01", months=2))
