"""
Flask API over the unit-level change engine.

Endpoints:
  GET  /health          - Health check
  POST /changes         - Submit unit time series, return change records and aligned series
  POST /calendar-pairs  - Submit monthly unit time series, return year-over-year month comparisons
"""

import math

import pandas as pd
from flask import Flask, jsonify, request

from .baseline import BaselineEstimator, baseline_window
from .change_detection import ChangeDetectionAnalyzer
from .models import to_period, validate_records
from .series import TemporalSeriesBuilder

app = Flask(__name__)


def _clean(value):
    """NaN becomes null in JSON responses; numpy scalars become Python ones."""
    if hasattr(value, "item"):
        value = value.item()
    if isinstance(value, float) and math.isnan(value):
        return None
    return value


def _records_frame(payload, freq):
    """Validate the 'records' list of a request into a time-series table."""
    records = payload.get("records")
    if not isinstance(records, list) or not records:
        raise ValueError("'records' must be a non-empty list")

    frame = pd.DataFrame(records)
    missing = [col for col in ("unit_id", "date", "value") if col not in frame.columns]
    if missing:
        raise ValueError(f"Records missing fields: {missing}")

    frame["unit_id"] = frame["unit_id"].astype(str)
    frame["date"] = frame["date"].map(lambda d: to_period(d, freq))
    try:
        frame["value"] = pd.to_numeric(frame["value"], errors="raise")
    except (TypeError, ValueError) as e:
        raise ValueError(f"Record values must be numeric or null: {e}") from e
    return validate_records(frame, freq)


def _read_payload():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValueError("Request body must be a JSON object")
    return payload


@app.get("/health")
def health():
    """Health check endpoint."""
    return jsonify({"status": "ok"})


@app.post("/changes")
def changes():
    """
    Compare every date after the baseline window against each unit's fixed baseline.

    Body:
        records: [{unit_id, date, value}, ...]
        baseline: {start, months}
        freq: 'M' (default) or 'Y'
        series_start: first period of the aligned series (default: baseline start)
        change: optional overrides (aggregate_threshold, clamp)
    """
    try:
        payload = _read_payload()
        freq = payload.get("freq", "M")
        frame = _records_frame(payload, freq)

        baseline_cfg = payload.get("baseline") or {}
        if "start" not in baseline_cfg:
            raise ValueError("'baseline.start' is required")
        estimator = BaselineEstimator(baseline_cfg)
        window = baseline_window(baseline_cfg["start"], months=estimator.months, freq=freq)

        analyzer = ChangeDetectionAnalyzer(payload.get("change") or {})
        baselines = estimator.unit_baselines(frame, window)
        records = analyzer.unit_changes(frame, window, baselines)

        builder = TemporalSeriesBuilder({"freq": freq})
        series = builder.build(frame, window, payload.get("series_start") or window.start)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify({
        "baseline_window": [str(p) for p in window],
        "baselines": {unit: _clean(float(b)) for unit, b in baselines.items()},
        "changes": [
            {
                "unit_id": c.unit_id,
                "date": str(c.date),
                "value": _clean(c.value),
                "baseline": _clean(c.baseline),
                "absolute_change": _clean(c.absolute_change),
                "percent_change_raw": _clean(c.percent_change_raw),
                "percent_change": _clean(c.percent_change),
            }
            for c in records
        ],
        "series": [s.to_dict() for s in series.values()],
    })


@app.post("/calendar-pairs")
def calendar_pairs():
    """
    Compare like months of two years.

    Body:
        records: [{unit_id, date, value}, ...] at monthly grain
        previous_year, current_year: years to compare
    """
    try:
        payload = _read_payload()
        frame = _records_frame(payload, "M")
        try:
            previous_year = int(payload["previous_year"])
            current_year = int(payload["current_year"])
        except (KeyError, TypeError, ValueError):
            raise ValueError("'previous_year' and 'current_year' must be integers")

        analyzer = ChangeDetectionAnalyzer(payload.get("change") or {})
        pairs = analyzer.calendar_pair_changes(frame, previous_year, current_year)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    rows = [
        {key: _clean(value) for key, value in row.items()}
        for row in pairs.to_dict(orient="records")
    ]
    return jsonify({
        "previous_year": previous_year,
        "current_year": current_year,
        "pairs": rows,
    })


if __name__ == "__main__":
    print("Starting nighttime-light change API on http://0.0.0.0:8000")
    print("Endpoints:")
    print("  GET  /health          - Health check")
    print("  POST /changes         - Unit change against a fixed baseline")
    print("  POST /calendar-pairs  - Year-over-year month comparison")
    app.run(host="0.0.0.0", port=8000, debug=False)
