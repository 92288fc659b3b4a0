"""
Baseline estimation over a fixed reference window

Scalar baselines average the observations dated inside the window; raster
baselines average co-registered rasters cell by cell. Nothing outside the
window ever contributes, and a window with no observations yields NaN.
"""

import numpy as np
import pandas as pd
import logging
from typing import Dict, Iterable, List, Mapping, Optional

from .models import BaselineWindow, Raster, ensure_same_grid, to_period, validate_records

logger = logging.getLogger(__name__)


def baseline_window(start, months: int = 6, freq: str = 'M') -> BaselineWindow:
    """
    Consecutive reference periods beginning at start

    Args:
        start: First period of the window ('2023-01')
        months: Number of consecutive periods
        freq: Period frequency

    Returns:
        BaselineWindow
    """
    if months < 1:
        raise ValueError(f"Baseline window needs at least one period, got {months}")
    first = to_period(start, freq)
    return BaselineWindow(tuple(first + i for i in range(months)))


class BaselineEstimator:
    """Compute reference values per unit or per cell"""

    def __init__(self, config: Optional[Dict] = None):
        """
        Initialize baseline estimator

        Args:
            config: Baseline configuration ('months' window length)
        """
        config = config or {}
        self.months = config.get('months', 6)

    def preceding_window(self, target, freq: str = 'M') -> BaselineWindow:
        """The periods immediately before target, oldest first"""
        target = to_period(target, freq)
        return BaselineWindow(tuple(target - i for i in range(self.months, 0, -1)))

    def scalar_baseline(self, observations: Mapping, window: BaselineWindow) -> float:
        """
        Mean of the observations dated inside the window

        Args:
            observations: Mapping of period (or label) to value; NaN values
                are treated as missing
            window: Reference periods

        Returns:
            Baseline value, NaN if no window period was observed
        """
        values = [
            float(value)
            for period, value in observations.items()
            if window.contains(period) and not pd.isna(value)
        ]
        if not values:
            return np.nan
        return float(np.mean(values))

    def unit_baselines(self, frame: pd.DataFrame, window: BaselineWindow) -> pd.Series:
        """
        Baseline per unit from a time-series table

        Args:
            frame: Table with unit_id, date, value columns
            window: Reference periods

        Returns:
            Series indexed by unit_id; NaN for units without window data
        """
        validate_records(frame, window.freq)
        units = pd.Index(frame['unit_id'].unique(), name='unit_id')
        in_window = frame['date'].map(window.contains).to_numpy(dtype=bool)
        means = frame.loc[in_window].groupby('unit_id')['value'].mean()
        baselines = means.reindex(units)

        undefined = baselines.index[baselines.isna()].tolist()
        if undefined:
            logger.warning(
                f"Undefined baseline for {len(undefined)} unit(s) "
                f"({window.start}..{window.end}): {undefined[:5]}"
            )

        logger.info(f"Computed baselines for {baselines.notna().sum()} of {len(units)} units")
        return baselines.rename('baseline')

    def raster_baseline(self, rasters: Iterable[Raster], period: Optional[str] = None) -> Raster:
        """
        Cell-by-cell mean of co-registered rasters

        A cell that is no-data in any contributing raster is no-data in the
        result.

        Args:
            rasters: Rasters forming the baseline period
            period: Label for the baseline raster

        Returns:
            Baseline raster
        """
        rasters = ensure_same_grid(rasters)
        stack = np.stack([r.data for r in rasters], axis=0)
        mean = stack.mean(axis=0)

        label = period or f"baseline:{rasters[0].period}..{rasters[-1].period}"
        logger.info(
            f"Built baseline raster {label} from {len(rasters)} rasters, "
            f"{np.count_nonzero(~np.isnan(mean)):,} valid cells"
        )
        return rasters[0].with_data(mean, period=label)

    def select_window_rasters(
        self,
        rasters: Mapping[str, Raster],
        window: BaselineWindow
    ) -> List[Raster]:
        """
        Rasters whose period label falls in the window, in window order

        Raises:
            ValueError: If any window period has no raster
        """
        by_period = {to_period(label, window.freq): raster for label, raster in rasters.items()}
        missing = [str(p) for p in window if p not in by_period]
        if missing:
            raise ValueError(f"Baseline rasters missing for periods: {missing}")
        return [by_period[p] for p in window]
