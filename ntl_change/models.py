"""
Value types shared by the masking, baseline, change and aggregation stages
"""

import math
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd
import rasterio
from rasterio.crs import CRS

logger = logging.getLogger(__name__)

LEVELS = ('national', 'regional', 'location')


def to_period(value, freq: str = 'M') -> pd.Period:
    """
    Coerce a date-like value to a pandas Period

    Args:
        value: Period, date, datetime or label such as '2023-06' or '2023'
        freq: Period frequency ('M' monthly, 'Y' annual)

    Returns:
        pandas Period
    """
    if isinstance(value, pd.Period):
        value = value.start_time
    try:
        period = pd.Period(value, freq=freq)
    except (ValueError, TypeError) as e:
        raise ValueError(f"Invalid period label: {value!r}") from e
    if period is pd.NaT:
        raise ValueError(f"Invalid period label: {value!r}")
    return period


def period_range(start, end, freq: str = 'M') -> List[pd.Period]:
    """Ordered list of periods from start to end inclusive"""
    start_p = to_period(start, freq)
    end_p = to_period(end, freq)
    if end_p < start_p:
        raise ValueError(f"Period range ends before it starts: {start_p} > {end_p}")
    return list(pd.period_range(start_p, end_p, freq=freq))


@dataclass(frozen=True, eq=False)
class Raster:
    """Single-band grid of radiance values; NaN marks no-data cells"""
    data: np.ndarray
    transform: rasterio.Affine
    period: str
    crs: Optional[CRS] = None

    def __post_init__(self):
        if self.data.ndim != 2:
            raise ValueError(
                f"Raster '{self.period}' must be 2-D, got shape {self.data.shape}"
            )
        if self.data.dtype != np.float64:
            object.__setattr__(self, 'data', self.data.astype(np.float64))

    @property
    def shape(self) -> Tuple[int, int]:
        return self.data.shape

    @property
    def resolution(self) -> Tuple[float, float]:
        return (abs(self.transform.a), abs(self.transform.e))

    @property
    def valid_count(self) -> int:
        return int(np.count_nonzero(~np.isnan(self.data)))

    def same_grid(self, other: 'Raster') -> bool:
        """True when both rasters share shape, transform and CRS"""
        return (
            self.shape == other.shape
            and self.transform.almost_equals(other.transform)
            and self.crs == other.crs
        )

    def with_data(self, data: np.ndarray, period: Optional[str] = None) -> 'Raster':
        """New raster on the same grid carrying different cell values"""
        if data.shape != self.shape:
            raise ValueError(
                f"Cannot attach array of shape {data.shape} to grid {self.shape}"
            )
        return Raster(
            data=data,
            transform=self.transform,
            period=self.period if period is None else period,
            crs=self.crs,
        )


def ensure_same_grid(rasters: Iterable[Raster]) -> List[Raster]:
    """
    Check that rasters are co-registered before they are combined

    Raises:
        ValueError: If the list is empty or any raster is on a different grid
    """
    rasters = list(rasters)
    if not rasters:
        raise ValueError("No rasters provided")

    reference = rasters[0]
    for raster in rasters[1:]:
        if not reference.same_grid(raster):
            raise ValueError(
                f"Raster '{raster.period}' (shape {raster.shape}, "
                f"resolution {raster.resolution}) is not on the grid of "
                f"'{reference.period}' (shape {reference.shape}, "
                f"resolution {reference.resolution})"
            )
    return rasters


@dataclass(frozen=True)
class Boundary:
    """Administrative or named-location polygon"""
    code: str
    geometry: object
    level: str = 'regional'
    name: Optional[str] = None

    def __post_init__(self):
        if self.level not in LEVELS:
            raise ValueError(f"Unknown boundary level '{self.level}' (expected one of {LEVELS})")


def boundaries_from_frame(
    gdf,
    code_field: str,
    level: str,
    name_field: Optional[str] = None
) -> List[Boundary]:
    """
    Build boundaries from a GeoDataFrame

    Args:
        gdf: GeoDataFrame with one row per unit
        code_field: Column holding the unit identifier (e.g. ADM1_PCODE)
        level: Aggregation level tag for every row
        name_field: Optional column holding a display name

    Returns:
        List of Boundary
    """
    if code_field not in gdf.columns:
        raise ValueError(f"Boundary code field '{code_field}' not found in {list(gdf.columns)}")

    boundaries = []
    for _, row in gdf.iterrows():
        if row.geometry is None or row.geometry.is_empty:
            logger.warning(f"Skipping {level} unit {row[code_field]}: empty geometry")
            continue
        boundaries.append(Boundary(
            code=str(row[code_field]),
            geometry=row.geometry,
            level=level,
            name=str(row[name_field]) if name_field and name_field in gdf.columns else None,
        ))

    logger.info(f"Loaded {len(boundaries)} {level} boundaries")
    return boundaries


@dataclass(frozen=True)
class BaselineWindow:
    """Ordered set of reference periods shared by every unit in a run"""
    periods: Tuple[pd.Period, ...]

    def __post_init__(self):
        if not self.periods:
            raise ValueError("Baseline window must contain at least one period")
        ordered = tuple(sorted(set(self.periods)))
        object.__setattr__(self, 'periods', ordered)

    def __contains__(self, period) -> bool:
        return self.contains(period)

    def __iter__(self):
        return iter(self.periods)

    def __len__(self) -> int:
        return len(self.periods)

    @property
    def freq(self) -> str:
        return self.periods[0].freqstr

    @property
    def start(self) -> pd.Period:
        return self.periods[0]

    @property
    def end(self) -> pd.Period:
        return self.periods[-1]

    def contains(self, period) -> bool:
        return to_period(period, self.freq) in self.periods


@dataclass(frozen=True)
class TimeSeriesRecord:
    """Aggregate value of one unit for one period"""
    unit_id: str
    date: pd.Period
    value: float
    level: Optional[str] = None


@dataclass(frozen=True)
class ChangeRecord:
    """Observation compared against its unit's baseline"""
    unit_id: str
    date: pd.Period
    value: float
    baseline: float
    absolute_change: float
    percent_change_raw: float
    percent_change: float

    @property
    def defined(self) -> bool:
        return not math.isnan(self.percent_change_raw)


RECORD_COLUMNS = ['unit_id', 'date', 'value']
CHANGE_COLUMNS = [
    'unit_id', 'date', 'value', 'baseline',
    'absolute_change', 'percent_change_raw', 'percent_change'
]


def validate_records(frame: pd.DataFrame, freq: str = 'M') -> pd.DataFrame:
    """
    Check a time-series table holds at most one row per (unit_id, date)

    Dates are compared as periods, so '2023-01' and '2023-01-15' collide at
    monthly frequency.

    Raises:
        ValueError: On missing columns, unparseable dates or duplicate
            (unit_id, date) rows
    """
    missing = [col for col in RECORD_COLUMNS if col not in frame.columns]
    if missing:
        raise ValueError(f"Time-series table missing columns: {missing}")

    keys = pd.DataFrame({
        'unit_id': frame['unit_id'].to_numpy(),
        'date': [to_period(d, freq) for d in frame['date']],
    })
    duplicated = keys.duplicated(keep=False)
    if duplicated.any():
        pairs = keys.loc[duplicated].drop_duplicates()
        sample = ', '.join(f"({u}, {d})" for u, d in pairs.head(5).itertuples(index=False))
        raise ValueError(f"Duplicate time-series records for {sample}")

    return frame


def records_to_frame(records: Iterable[TimeSeriesRecord], freq: str = 'M') -> pd.DataFrame:
    """Tabular form of TimeSeriesRecord values"""
    rows = [
        {'unit_id': r.unit_id, 'date': r.date, 'value': r.value, 'level': r.level}
        for r in records
    ]
    frame = pd.DataFrame(rows, columns=RECORD_COLUMNS + ['level'])
    return validate_records(frame, freq)


def frame_to_records(frame: pd.DataFrame, freq: str = 'M') -> List[TimeSeriesRecord]:
    """
    TimeSeriesRecord values from a table with unit_id, date, value columns

    Missing values stay NaN; anything else that is not numeric is rejected.
    """
    validate_records(frame, freq)
    has_level = 'level' in frame.columns
    records = []
    for row in frame.itertuples(index=False):
        try:
            value = np.nan if pd.isna(row.value) else float(row.value)
        except (TypeError, ValueError) as e:
            raise ValueError(
                f"Non-numeric value {row.value!r} for ({row.unit_id}, {row.date})"
            ) from e
        level = row.level if has_level and not pd.isna(row.level) else None
        records.append(TimeSeriesRecord(
            unit_id=str(row.unit_id),
            date=to_period(row.date, freq),
            value=value,
            level=level,
        ))
    return records


def changes_to_frame(changes: Iterable[ChangeRecord]) -> pd.DataFrame:
    """Tabular form of ChangeRecord values"""
    rows = [
        {col: getattr(c, col) for col in CHANGE_COLUMNS}
        for c in changes
    ]
    return pd.DataFrame(rows, columns=CHANGE_COLUMNS)
