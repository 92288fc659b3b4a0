"""
Baseline comparison and change detection

Three comparison modes share one ratio policy:
- pixel level: each target month against the mean of the rasters preceding it
- unit level: every date after a fixed baseline window against that window's mean
- calendar pairs: like months of two years compared directly

Percent change is only defined when the baseline exceeds a minimum signal
threshold. It is reported raw and clamped to [-clamp, clamp].
"""

import numpy as np
import pandas as pd
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .baseline import BaselineEstimator
from .models import (
    BaselineWindow,
    ChangeRecord,
    Raster,
    ensure_same_grid,
    to_period,
    validate_records,
)

logger = logging.getLogger(__name__)

CALENDAR_COLUMNS = [
    'unit_id', 'month', 'previous', 'current',
    'absolute_change', 'percent_change_raw', 'percent_change'
]


class ChangeDetectionAnalyzer:
    """Compare observations against baselines at pixel and unit level"""

    def __init__(self, config: Optional[Dict] = None):
        config = config or {}
        self.pixel_threshold = config.get('pixel_threshold', 0.5)
        self.aggregate_threshold = config.get('aggregate_threshold', 0.0)
        self.clamp = config.get('clamp', 100.0)
        self.change_threshold = config.get('change_threshold', 10.0)
        self.max_workers = config.get('max_workers', 1)

    @staticmethod
    def absolute_change(value, baseline):
        """value - baseline; NaN in either input gives NaN"""
        return np.subtract(value, baseline)

    def percent_change(self, value, baseline, threshold: float) -> Tuple:
        """
        Percent change (value - baseline) / baseline * 100

        Args:
            value: Observed value(s)
            baseline: Baseline value(s)
            threshold: Baselines at or below this are undefined

        Returns:
            Tuple of (raw, clamped); NaN where undefined. Scalars in,
            floats out.
        """
        value = np.asarray(value, dtype=np.float64)
        baseline = np.asarray(baseline, dtype=np.float64)

        with np.errstate(divide='ignore', invalid='ignore'):
            defined = baseline > threshold
            raw = np.where(defined, (value - baseline) / baseline * 100.0, np.nan)

        clamped = np.clip(raw, -self.clamp, self.clamp)

        if raw.ndim == 0:
            return float(raw), float(clamped)
        return raw, clamped

    def pixel_change(self, current: Raster, baseline: Raster) -> Dict[str, Raster]:
        """
        Cell-level change of one raster against a baseline raster

        Returns:
            Dictionary with 'absolute', 'percent' (clamped) and
            'percent_raw' rasters on the shared grid
        """
        ensure_same_grid([current, baseline])

        absolute = self.absolute_change(current.data, baseline.data)
        raw, clamped = self.percent_change(current.data, baseline.data, self.pixel_threshold)

        return {
            'absolute': current.with_data(absolute),
            'percent': current.with_data(clamped),
            'percent_raw': current.with_data(raw),
        }

    def rolling_pixel_changes(
        self,
        rasters: Mapping[str, Raster],
        targets: Iterable,
        estimator: BaselineEstimator
    ) -> Dict[str, Dict[str, Raster]]:
        """
        Pixel change of each target month against its own preceding window

        Targets whose preceding rasters are incomplete are skipped and logged;
        they never abort the remaining months.

        Args:
            rasters: Monthly rasters keyed by period label
            targets: Target periods
            estimator: Supplies the preceding window and the cell mean

        Returns:
            Dictionary keyed by target label
        """
        ensure_same_grid(rasters.values())
        by_period = {to_period(label): raster for label, raster in rasters.items()}

        def compare(target):
            window = estimator.preceding_window(target)
            if target not in by_period:
                logger.warning(f"{target}: no raster for target month, skipping")
                return None
            try:
                window_rasters = estimator.select_window_rasters(rasters, window)
            except ValueError as e:
                logger.warning(f"{target}: {e}, skipping")
                return None
            baseline = estimator.raster_baseline(
                window_rasters,
                period=f"baseline:{window.start}..{window.end}"
            )
            return self.pixel_change(by_period[target], baseline)

        targets = [to_period(t) for t in targets]
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            outcomes = list(pool.map(compare, targets))

        results = {
            str(target): outcome
            for target, outcome in zip(targets, outcomes)
            if outcome is not None
        }
        logger.info(f"Computed pixel change for {len(results)} of {len(targets)} target months")
        return results

    def unit_changes(
        self,
        frame: pd.DataFrame,
        window: BaselineWindow,
        baselines: Optional[pd.Series] = None,
        include_window: bool = False
    ) -> List[ChangeRecord]:
        """
        Change of every date after the window against the unit's fixed baseline

        Args:
            frame: Table with unit_id, date, value columns
            window: Baseline window
            baselines: Precomputed baselines indexed by unit_id
            include_window: Also emit records for dates inside the window

        Returns:
            ChangeRecord list ordered by unit then date
        """
        validate_records(frame, window.freq)
        frame = frame.reset_index(drop=True)
        if baselines is None:
            baselines = BaselineEstimator().unit_baselines(frame, window)

        dates = frame['date'].map(lambda d: to_period(d, window.freq))
        if include_window:
            selected = dates >= window.start
        else:
            selected = dates > window.end

        rows = frame.loc[selected].assign(date=dates[selected])
        rows = rows.sort_values(['unit_id', 'date'])

        changes = []
        for row in rows.itertuples(index=False):
            baseline = float(baselines.get(row.unit_id, np.nan))
            value = float(row.value)
            raw, clamped = self.percent_change(value, baseline, self.aggregate_threshold)
            changes.append(ChangeRecord(
                unit_id=str(row.unit_id),
                date=row.date,
                value=value,
                baseline=baseline,
                absolute_change=float(self.absolute_change(value, baseline)),
                percent_change_raw=raw,
                percent_change=clamped,
            ))

        undefined = sum(1 for c in changes if not c.defined)
        if undefined:
            logger.warning(f"{undefined} of {len(changes)} change records have undefined percent change")
        logger.info(f"Computed {len(changes)} unit change records against {window.start}..{window.end}")
        return changes

    def calendar_pair_changes(
        self,
        frame: pd.DataFrame,
        previous_year: int,
        current_year: int
    ) -> pd.DataFrame:
        """
        Compare like calendar months of two years

        Only months observed in both years are emitted; months missing or NaN
        in either year are dropped.

        Args:
            frame: Monthly table with unit_id, date, value columns
            previous_year: Reference year
            current_year: Comparison year

        Returns:
            DataFrame with CALENDAR_COLUMNS
        """
        validate_records(frame, 'M')
        frame = frame.reset_index(drop=True)
        dates = frame['date'].map(lambda d: to_period(d, 'M'))
        table = frame.assign(year=dates.map(lambda p: p.year), month=dates.map(lambda p: p.month))
        table = table.dropna(subset=['value'])

        previous = table.loc[table['year'] == previous_year, ['unit_id', 'month', 'value']]
        current = table.loc[table['year'] == current_year, ['unit_id', 'month', 'value']]
        pairs = previous.merge(
            current, on=['unit_id', 'month'], how='inner', suffixes=('_previous', '_current')
        ).rename(columns={'value_previous': 'previous', 'value_current': 'current'})

        if pairs.empty:
            logger.warning(f"No calendar months observed in both {previous_year} and {current_year}")
            return pd.DataFrame(columns=CALENDAR_COLUMNS)

        raw, clamped = self.percent_change(
            pairs['current'].to_numpy(), pairs['previous'].to_numpy(), self.aggregate_threshold
        )
        pairs['absolute_change'] = pairs['current'] - pairs['previous']
        pairs['percent_change_raw'] = raw
        pairs['percent_change'] = clamped

        result = pairs.sort_values(['unit_id', 'month']).reset_index(drop=True)
        logger.info(
            f"Compared {len(result)} unit-months between {previous_year} and {current_year}"
        )
        return result[CALENDAR_COLUMNS]

    def summarize_raster_change(self, percent: Raster) -> Dict:
        """
        Share of valid cells brightening or dimming beyond change_threshold
        """
        values = percent.data[~np.isnan(percent.data)]
        valid_count = int(values.size)

        if valid_count == 0:
            logger.warning(f"{percent.period}: no cells with defined percent change")
            return {
                'period': percent.period,
                'valid_cells': 0,
                'mean_percent_change': np.nan,
                'percent_brightened': np.nan,
                'percent_dimmed': np.nan,
                'trend': 'UNDEFINED',
            }

        brightened = int(np.sum(values > self.change_threshold))
        dimmed = int(np.sum(values < -self.change_threshold))

        results = {
            'period': percent.period,
            'valid_cells': valid_count,
            'mean_percent_change': float(np.mean(values)),
            'percent_brightened': float(brightened / valid_count * 100),
            'percent_dimmed': float(dimmed / valid_count * 100),
        }

        if results['percent_brightened'] > 50:
            results['trend'] = 'BRIGHTENING'
        elif results['percent_dimmed'] > 50:
            results['trend'] = 'DIMMING'
        else:
            results['trend'] = 'STABLE'

        logger.info(
            f"{percent.period}: {results['trend']}, "
            f"brightened {results['percent_brightened']:.1f}%, "
            f"dimmed {results['percent_dimmed']:.1f}%"
        )
        return results
