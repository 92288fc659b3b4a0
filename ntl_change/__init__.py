"""
Nighttime-light change engine

Masks and log-compresses radiance rasters, reduces them to per-unit time
series, and compares observations against baseline windows.
"""

from .baseline import BaselineEstimator, baseline_window
from .change_detection import ChangeDetectionAnalyzer
from .config_loader import Config
from .models import (
    BaselineWindow,
    Boundary,
    ChangeRecord,
    Raster,
    TimeSeriesRecord,
    period_range,
)
from .raster_processing import RasterProcessor, log_compress
from .series import TemporalSeriesBuilder, UnitSeries
from .zonal_stats import SpatialAggregator

__version__ = "0.1.0"

__all__ = [
    "BaselineEstimator",
    "BaselineWindow",
    "Boundary",
    "ChangeDetectionAnalyzer",
    "ChangeRecord",
    "Config",
    "Raster",
    "RasterProcessor",
    "SpatialAggregator",
    "TemporalSeriesBuilder",
    "TimeSeriesRecord",
    "UnitSeries",
    "baseline_window",
    "log_compress",
    "period_range",
]
