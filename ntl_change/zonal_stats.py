"""
Zonal reduction of rasters to per-unit time series
"""

import numpy as np
import pandas as pd
from rasterio.features import geometry_mask
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Mapping, Optional, Sequence
import logging

from .models import Boundary, Raster, TimeSeriesRecord, ensure_same_grid, records_to_frame, to_period

logger = logging.getLogger(__name__)


class SpatialAggregator:
    """Sum (or average) defined cells inside each boundary for each period"""

    STATISTICS = ('sum', 'mean')

    def __init__(self, config: Optional[Dict] = None):
        """
        Initialize aggregator

        Args:
            config: Aggregation configuration ('statistic', 'all_touched',
                'max_workers', 'freq')
        """
        config = config or {}
        self.statistic = config.get('statistic', 'sum')
        self.all_touched = config.get('all_touched', False)
        self.max_workers = config.get('max_workers', 1)
        self.freq = config.get('freq', 'M')

        if self.statistic not in self.STATISTICS:
            raise ValueError(f"Unknown statistic '{self.statistic}' (expected one of {self.STATISTICS})")

    def _zone_masks(self, raster: Raster, boundaries: Sequence[Boundary]) -> List[np.ndarray]:
        """Boolean inside-mask per boundary on the raster's grid"""
        return [
            geometry_mask(
                [b.geometry],
                out_shape=raster.shape,
                transform=raster.transform,
                all_touched=self.all_touched,
                invert=True,
            )
            for b in boundaries
        ]

    def _reduce(self, values: np.ndarray) -> float:
        valid = values[~np.isnan(values)]
        if valid.size == 0:
            return np.nan
        if self.statistic == 'mean':
            return float(np.mean(valid))
        return float(np.sum(valid))

    def aggregate(
        self,
        raster: Raster,
        boundaries: Sequence[Boundary],
        masks: Optional[List[np.ndarray]] = None
    ) -> List[TimeSeriesRecord]:
        """
        Reduce one raster to one record per boundary

        Units with no defined cells inside them get NaN, not zero.

        Args:
            raster: Input raster
            boundaries: Units to reduce over
            masks: Precomputed inside-masks aligned with boundaries

        Returns:
            TimeSeriesRecord per boundary
        """
        if masks is None:
            masks = self._zone_masks(raster, boundaries)

        date = to_period(raster.period, self.freq)
        records = []
        empty = []
        for boundary, inside in zip(boundaries, masks):
            value = self._reduce(raster.data[inside])
            if np.isnan(value):
                empty.append(boundary.code)
            records.append(TimeSeriesRecord(
                unit_id=boundary.code,
                date=date,
                value=value,
                level=boundary.level,
            ))

        if empty:
            logger.warning(
                f"{raster.period}: {len(empty)} unit(s) without valid cells: {empty[:5]}"
            )
        return records

    def aggregate_periods(
        self,
        rasters: Mapping[str, Raster],
        boundaries: Sequence[Boundary]
    ) -> pd.DataFrame:
        """
        Reduce every period's raster to a unit time-series table

        Args:
            rasters: Co-registered rasters keyed by period label
            boundaries: Units at one or more levels

        Returns:
            DataFrame with unit_id, date, value, level columns sorted by unit
            and date
        """
        ordered = ensure_same_grid(rasters[label] for label in sorted(rasters))
        masks = self._zone_masks(ordered[0], boundaries)

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            per_period = list(pool.map(
                lambda raster: self.aggregate(raster, boundaries, masks), ordered
            ))

        records = [record for period_records in per_period for record in period_records]
        frame = records_to_frame(records, self.freq).sort_values(['unit_id', 'date']).reset_index(drop=True)

        logger.info(
            f"Aggregated {len(ordered)} period(s) over {len(boundaries)} unit(s) "
            f"({self.statistic})"
        )
        return frame
