import numpy as np
import pandas as pd
import pytest

from ntl_change.models import (
    BaselineWindow,
    Boundary,
    TimeSeriesRecord,
    frame_to_records,
    period_range,
    records_to_frame,
    to_period,
    validate_records,
)


def test_duplicate_unit_dates_are_rejected():
    frame = pd.DataFrame({
        "unit_id": ["A", "A"],
        "date": ["2023-01", "2023-01"],
        "value": [1.0, 2.0],
    })

    with pytest.raises(ValueError, match="Duplicate"):
        validate_records(frame)


def test_records_to_frame_keeps_levels():
    records = [
        TimeSeriesRecord("A", to_period("2023-01"), 1.0, "regional"),
        TimeSeriesRecord("A", to_period("2023-02"), 2.0, "regional"),
    ]

    frame = records_to_frame(records)

    assert frame["level"].tolist() == ["regional", "regional"]


def test_period_range_is_inclusive_and_ordered():
    periods = period_range("2023-11", "2024-02")

    assert [str(p) for p in periods] == ["2023-11", "2023-12", "2024-01", "2024-02"]


def test_period_range_rejects_reversed_bounds():
    with pytest.raises(ValueError):
        period_range("2024-02", "2023-11")


def test_invalid_period_label_is_rejected():
    with pytest.raises(ValueError, match="Invalid period"):
        to_period("not-a-date")


def test_baseline_window_orders_periods():
    window = BaselineWindow((to_period("2023-03"), to_period("2023-01"), to_period("2023-02")))

    assert str(window.start) == "2023-01"
    assert str(window.end) == "2023-03"


def test_unknown_boundary_level_is_rejected():
    with pytest.raises(ValueError):
        Boundary(code="X", geometry=None, level="continental")


@pytest.mark.parametrize("other", ["2023-01-15", pd.Period("2023-01", freq="M"), pd.Timestamp("2023-01-31")])
def test_labels_for_the_same_month_are_duplicates(other):
    frame = pd.DataFrame({
        "unit_id": ["A", "A"],
        "date": ["2023-01", other],
        "value": [10.0, 1000.0],
    })

    with pytest.raises(ValueError, match=r"Duplicate time-series records for \(A, 2023-01\)"):
        validate_records(frame)


def test_same_year_is_only_a_duplicate_at_annual_frequency():
    frame = pd.DataFrame({"unit_id": ["A", "A"], "date": ["2023-01", "2023-06"], "value": [1.0, 2.0]})

    validate_records(frame, "M")
    with pytest.raises(ValueError, match="Duplicate"):
        validate_records(frame, "Y")


@pytest.mark.parametrize("label", [None, "", float("nan")])
def test_missing_period_label_is_rejected(label):
    with pytest.raises(ValueError, match="Invalid period"):
        to_period(label)


def test_frame_to_records_parses_dates_and_keeps_missing_values():
    frame = pd.DataFrame({
        "unit_id": ["A", "A"],
        "date": ["2023-01", "2023-02"],
        "value": [4.5, None],
        "level": ["regional", None],
    })

    records = frame_to_records(frame)

    assert records[0] == TimeSeriesRecord("A", pd.Period("2023-01", freq="M"), 4.5, "regional")
    assert np.isnan(records[1].value)
    assert records[1].level is None


def test_frame_to_records_rejects_non_numeric_values():
    frame = pd.DataFrame({"unit_id": ["A"], "date": ["2023-01"], "value": ["bright"]})

    with pytest.raises(ValueError, match="Non-numeric value 'bright'"):
        frame_to_records(frame)
