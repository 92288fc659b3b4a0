"""
Per-unit series aligned on a shared date axis for small-multiple charts
"""

import numpy as np
import pandas as pd
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from .models import BaselineWindow, period_range, to_period, validate_records

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnitSeries:
    """Full and baseline-only values of one unit on a common axis"""
    unit_id: str
    dates: List[pd.Period]
    full: np.ndarray
    baseline_only: np.ndarray

    def to_dict(self) -> Dict:
        """JSON-ready form; NaN becomes None"""
        def clean(values):
            return [None if np.isnan(v) else float(v) for v in values]

        return {
            'unit_id': self.unit_id,
            'dates': [str(d) for d in self.dates],
            'full': clean(self.full),
            'baseline_only': clean(self.baseline_only),
        }


class TemporalSeriesBuilder:
    """Assemble per-unit series on one strictly increasing date axis"""

    def __init__(self, config: Optional[Dict] = None):
        config = config or {}
        self.freq = config.get('freq', 'M')

    def date_axis(self, frame: pd.DataFrame, start, end=None) -> List[pd.Period]:
        """
        Every period from start to end (default: last observed date)

        Missing periods are part of the axis so charts stay aligned.
        """
        if end is None:
            if frame.empty:
                raise ValueError("Cannot infer series end from an empty table")
            end = max(to_period(d, self.freq) for d in frame['date'])
        return period_range(start, end, self.freq)

    def build_unit(
        self,
        frame: pd.DataFrame,
        unit_id: str,
        axis: List[pd.Period],
        window: BaselineWindow
    ) -> UnitSeries:
        """Series of one unit on the given axis"""
        rows = frame.loc[frame['unit_id'] == unit_id]
        observed = pd.Series(
            rows['value'].to_numpy(dtype=np.float64),
            index=[to_period(d, self.freq) for d in rows['date']],
        )
        full = observed.reindex(axis).to_numpy(dtype=np.float64)
        in_window = np.array([window.contains(d) for d in axis], dtype=bool)
        baseline_only = np.where(in_window, full, np.nan)

        return UnitSeries(unit_id=str(unit_id), dates=list(axis), full=full, baseline_only=baseline_only)

    def build(
        self,
        frame: pd.DataFrame,
        window: BaselineWindow,
        start,
        end=None
    ) -> Dict[str, UnitSeries]:
        """
        Aligned series for every unit in the table

        Args:
            frame: Table with unit_id, date, value columns
            window: Baseline window
            start: First period of the axis
            end: Last period of the axis

        Returns:
            UnitSeries keyed by unit_id
        """
        validate_records(frame, self.freq)
        axis = self.date_axis(frame, start, end)

        series = {
            str(unit_id): self.build_unit(frame, unit_id, axis, window)
            for unit_id in frame['unit_id'].unique()
        }

        gaps = sum(int(np.isnan(s.full).sum()) for s in series.values())
        logger.info(
            f"Built {len(series)} aligned series over {len(axis)} periods "
            f"({axis[0]}..{axis[-1]}), {gaps} gap(s)"
        )
        return series
