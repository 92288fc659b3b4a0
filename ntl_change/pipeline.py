"""
Nighttime-light change pipeline: masking, aggregation, baselines and change
"""

import logging
import json
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import geopandas as gpd
import numpy as np
import pandas as pd

from .config_loader import Config
from .models import (
    Boundary,
    Raster,
    boundaries_from_frame,
    changes_to_frame,
    frame_to_records,
    period_range,
    records_to_frame,
    to_period,
)
from .raster_processing import RasterProcessor
from .data_quality import DataQualityAssessor, calculate_statistics
from .baseline import BaselineEstimator, baseline_window
from .change_detection import ChangeDetectionAnalyzer
from .zonal_stats import SpatialAggregator
from .series import TemporalSeriesBuilder


class NightLightsPipeline:
    """Main pipeline for nighttime-light change analysis"""

    def __init__(self, config_path: str = 'config.yaml', config: Optional[Config] = None):
        """
        Initialize pipeline

        Args:
            config_path: Path to configuration file
            config: Already loaded configuration (takes precedence)
        """
        self.config = config if config is not None else Config(config_path)

        self._setup_logging()

        max_workers = self.config.get('processing', 'max_workers', default=1)
        self.freq = self.config.get('periods', 'freq', default='M')

        self.raster_processor = RasterProcessor(self.config.section('masking'))

        self.quality_assessor = DataQualityAssessor(
            min_coverage=self.config.get('quality', 'min_coverage_percent', default=80.0)
        )

        self.baseline_estimator = BaselineEstimator(self.config.section('baseline'))

        self.change_analyzer = ChangeDetectionAnalyzer(
            {**self.config.section('change'), 'max_workers': max_workers}
        )

        self.aggregator = SpatialAggregator(
            {**self.config.section('aggregation'), 'max_workers': max_workers, 'freq': self.freq}
        )

        self.series_builder = TemporalSeriesBuilder({'freq': self.freq})

        self.output_dir = Path(self.config.get('project', 'output_dir', default='outputs'))

        self.results = {
            'project': {
                'name': self.config.get('project', 'name'),
                'periods': [
                    str(self.config.get('periods', 'start')),
                    str(self.config.get('periods', 'end'))
                ]
            }
        }

        self.start_time = None
        self.end_time = None

        self.logger = logging.getLogger(__name__)

    def _setup_logging(self):
        """Configure logging"""
        log_dir = Path(self.config.get('project', 'log_dir', default='logs'))
        log_dir.mkdir(parents=True, exist_ok=True)

        log_file = log_dir / f'ntl_change_{datetime.now():%Y%m%d_%H%M%S}.log'

        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            handlers=[
                logging.FileHandler(log_file),
                logging.StreamHandler()
            ]
        )

        logging.info(f"Logging initialized: {log_file}")

    def run(self) -> Dict:
        """
        Execute the complete pipeline

        Returns:
            Dictionary with all results
        """
        self.start_time = datetime.now()
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.logger.info("=" * 80)
        self.logger.info("Starting Nighttime-Light Change Pipeline")
        self.logger.info("=" * 80)

        try:
            # Step 1: Load rasters
            self.logger.info("\n[STEP 1/8] Loading Period Rasters...")
            rasters = self._load_rasters()

            # Step 2: Load boundaries
            self.logger.info("\n[STEP 2/8] Loading Boundaries...")
            boundaries = self._load_boundaries(rasters)

            # Step 3: Assess data quality
            self.logger.info("\n[STEP 3/8] Assessing Data Quality...")
            self.results['quality'] = self._assess_quality(rasters, boundaries)

            # Step 4: Mask and compress map views
            self.logger.info("\n[STEP 4/8] Masking and Log-Compressing Map Views...")
            masked = self._mask_rasters(rasters, boundaries)
            self.results['map_views'] = self._save_map_views(masked)

            # Step 5: Aggregate to unit time series
            self.logger.info("\n[STEP 5/8] Aggregating Unit Time Series...")
            table = self._unit_table(masked, boundaries)

            # Step 6: Baselines and unit change
            self.logger.info("\n[STEP 6/8] Computing Baselines and Unit Change...")
            window = self._baseline_window()
            self.results['unit_change'] = self._unit_changes(table, window)
            self.results['calendar_pairs'] = self._calendar_pairs(table)

            # Step 7: Pixel change
            self.logger.info("\n[STEP 7/8] Computing Rolling Pixel Change...")
            self.results['pixel_change'] = self._pixel_changes(masked)

            # Step 8: Aligned series
            self.logger.info("\n[STEP 8/8] Building Aligned Unit Series...")
            self.results['series'] = self._build_series(table, window)

            self.logger.info("\n" + "=" * 80)
            self.logger.info("Pipeline completed successfully!")
            self.logger.info("=" * 80)

            return self.results

        except Exception as e:
            self.logger.error(f"\nPipeline failed: {str(e)}", exc_info=True)
            self.results['error'] = str(e)
            raise

        finally:
            self.end_time = datetime.now()
            duration = (self.end_time - self.start_time).total_seconds()
            self.logger.info(f"\nTotal pipeline duration: {duration:.2f} seconds")
            self._save_results()

    def _periods(self) -> List[pd.Period]:
        return period_range(
            self.config.get_required('periods', 'start'),
            self.config.get_required('periods', 'end'),
            self.freq
        )

    def _load_rasters(self) -> Dict[str, Raster]:
        """Read one raster per configured period; absent periods are gaps"""
        pattern = self.config.get_required('inputs', 'raster_pattern')
        nodata = self.config.get('inputs', 'raster_nodata')

        rasters = {}
        for period in self._periods():
            path = Path(pattern.format(period=str(period)))
            if not path.exists():
                self.logger.warning(f"No raster for {period}: {path}")
                continue
            rasters[str(period)] = self.raster_processor.read_raster(path, str(period), nodata)

        if not rasters:
            raise FileNotFoundError(f"No rasters matched {pattern} for the configured periods")

        self.logger.info(f"Loaded {len(rasters)} raster(s)")
        return rasters

    def _load_boundaries(self, rasters: Dict[str, Raster]) -> List[Boundary]:
        """Read every configured boundary level in the rasters' CRS"""
        crs = next(iter(rasters.values())).crs
        levels = self.config.section('inputs', 'boundaries')

        boundaries = []
        for level, level_cfg in levels.items():
            path = level_cfg.get('path')
            try:
                gdf = gpd.read_file(path)
            except Exception as e:
                self.logger.error(f"Error loading {level} boundaries from {path}: {str(e)}")
                raise

            if gdf.empty:
                raise ValueError(f"{level} boundary file contains no features: {path}")

            if crs is not None and gdf.crs is not None and gdf.crs != crs:
                self.logger.info(f"Converting {level} boundaries from {gdf.crs} to {crs}")
                gdf = gdf.to_crs(crs)

            boundaries.extend(boundaries_from_frame(
                gdf,
                code_field=level_cfg.get('code_field', 'code'),
                level=level,
                name_field=level_cfg.get('name_field'),
            ))

        self.logger.info(f"Loaded {len(boundaries)} boundaries across {len(levels)} level(s)")
        return boundaries

    def _mask_boundaries(self, boundaries: List[Boundary]) -> List[Boundary]:
        """Boundaries at the configured masking level (all of them if none match)"""
        level = self.config.get('masking', 'boundary_level', default='national')
        return [b for b in boundaries if b.level == level] or boundaries

    def _assess_quality(self, rasters: Dict[str, Raster], boundaries: List[Boundary]) -> Dict:
        """Coverage of each period counted over cells inside the masking boundaries"""
        first = next(iter(rasters.values()))
        domain = self.raster_processor.boundary_domain(first, self._mask_boundaries(boundaries))
        return self.quality_assessor.assess_multiple(rasters.values(), domain)

    def _mask_rasters(self, rasters: Dict[str, Raster], boundaries: List[Boundary]) -> Dict[str, Raster]:
        """Mask every period to the configured masking level (or every boundary)"""
        mask_boundaries = self._mask_boundaries(boundaries)

        return {
            label: self.raster_processor.mask_to_boundaries(raster, mask_boundaries)
            for label, raster in rasters.items()
        }

    def _save_map_views(self, masked: Dict[str, Raster]) -> Dict[str, str]:
        """Write the log-compressed map view of each period"""
        map_dir = self.output_dir / 'maps'
        map_dir.mkdir(parents=True, exist_ok=True)

        paths = {}
        for label, raster in masked.items():
            path = map_dir / f'ntl_log_{label}.tif'
            self.raster_processor.save_geotiff(str(path), self.raster_processor.log_compress(raster))
            paths[label] = str(path)
        return paths

    def _unit_table(self, masked: Dict[str, Raster], boundaries: List[Boundary]) -> pd.DataFrame:
        """Aggregated table, or the configured precomputed table"""
        series_csv = self.config.get('inputs', 'series_csv')
        if series_csv:
            self.logger.info(f"Reading unit time series from {series_csv}")
            raw = pd.read_csv(series_csv, dtype={'unit_id': str})
            records = frame_to_records(raw, self.freq)
            table = records_to_frame(records, self.freq)
        else:
            table = self.aggregator.aggregate_periods(masked, boundaries)

        path = self.output_dir / 'unit_series.csv'
        table.to_csv(path, index=False)
        self.logger.info(f"Unit table: {len(table)} records, saved to {path}")
        return table

    def _baseline_window(self):
        window = baseline_window(
            self.config.get_required('baseline', 'start'),
            months=self.baseline_estimator.months,
            freq=self.freq
        )
        self.logger.info(f"Baseline window: {window.start} to {window.end}")
        return window

    def _unit_changes(self, table: pd.DataFrame, window) -> Dict:
        """Fixed-baseline change for every unit and date after the window"""
        baselines = self.baseline_estimator.unit_baselines(table, window)
        changes = self.change_analyzer.unit_changes(table, window, baselines)
        frame = changes_to_frame(changes)

        path = self.output_dir / 'unit_changes.csv'
        frame.to_csv(path, index=False)

        return {
            'path': str(path),
            'records': len(frame),
            'undefined': int(frame['percent_change_raw'].isna().sum()),
            'units_without_baseline': baselines.index[baselines.isna()].tolist(),
        }

    def _calendar_pairs(self, table: pd.DataFrame) -> Optional[Dict]:
        """Month-by-month comparison of two configured years"""
        years = self.config.get('change', 'compare_years')
        if not years:
            return None
        if self.freq != 'M':
            self.logger.warning("Calendar pair comparison needs monthly periods, skipping")
            return None

        previous_year, current_year = (int(y) for y in years)
        pairs = self.change_analyzer.calendar_pair_changes(table, previous_year, current_year)

        path = self.output_dir / f'calendar_pairs_{previous_year}_{current_year}.csv'
        pairs.to_csv(path, index=False)

        return {'path': str(path), 'records': len(pairs)}

    def _pixel_changes(self, masked: Dict[str, Raster]) -> Dict:
        """Percent-change rasters of each target month against its preceding window"""
        if self.freq != 'M':
            self.logger.warning("Rolling pixel change needs monthly periods, skipping")
            return {}

        targets = self.config.get('change', 'pixel_targets')
        if targets is None:
            periods = sorted(to_period(label) for label in masked)
            targets = periods[self.baseline_estimator.months:]

        changes = self.change_analyzer.rolling_pixel_changes(masked, targets, self.baseline_estimator)

        change_dir = self.output_dir / 'change'
        change_dir.mkdir(parents=True, exist_ok=True)

        summaries = {}
        for label, change in changes.items():
            path = change_dir / f'ntl_pct_change_{label}.tif'
            self.raster_processor.save_geotiff(str(path), change['percent'])
            summary = self.change_analyzer.summarize_raster_change(change['percent_raw'])
            summary['absolute_stats'] = calculate_statistics(change['absolute'].data)
            summary['path'] = str(path)
            summaries[label] = summary

        return summaries

    def _build_series(self, table: pd.DataFrame, window) -> Dict:
        """Aligned full and baseline-only series per unit"""
        start = self.config.get('series', 'start', default=window.start)
        series = self.series_builder.build(table, window, start)

        path = self.output_dir / 'unit_series.json'
        with open(path, 'w') as f:
            json.dump([s.to_dict() for s in series.values()], f, indent=2)

        self.logger.info(f"Series saved to {path}")
        return {'path': str(path), 'units': len(series)}

    def _save_results(self):
        """Save results to JSON"""
        output_dir = Path(self.config.get('project', 'log_dir', default='logs'))
        output_file = output_dir / f'results_{datetime.now():%Y%m%d_%H%M%S}.json'

        results_to_save = {
            'timestamp': self.start_time.isoformat() if self.start_time else None,
            'duration_seconds': (
                (self.end_time - self.start_time).total_seconds()
                if self.end_time and self.start_time else None
            ),
            'config': {
                'project_name': self.config.get('project', 'name'),
                'baseline_start': str(self.config.get('baseline', 'start')),
                'baseline_months': self.baseline_estimator.months,
            },
            'results': self.results
        }

        try:
            with open(output_file, 'w') as f:
                json.dump(results_to_save, f, indent=2, default=_json_default)

            self.logger.info(f"Results saved to {output_file}")
        except (OSError, TypeError) as e:
            self.logger.error(f"Failed to save results: {e}")


def _json_default(obj):
    """Serialize numpy scalars; anything else falls back to str"""
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.bool_):
        return bool(obj)
    return str(obj)
