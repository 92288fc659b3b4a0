"""
Data quality assessment utilities
"""

import numpy as np
from typing import Dict, Iterable, Optional
import logging

from .models import Raster

logger = logging.getLogger(__name__)


class DataQualityAssessor:
    """Assess valid-cell coverage of nighttime-light rasters"""

    def __init__(self, min_coverage: float = 80.0):
        """
        Initialize quality assessor

        Args:
            min_coverage: Minimum acceptable coverage percentage
        """
        self.min_coverage = min_coverage

    def assess(self, raster: Raster, domain: Optional[np.ndarray] = None) -> Dict:
        """
        Assess coverage by counting defined cells

        Args:
            raster: Raster to assess
            domain: Boolean mask of cells expected to hold data (default:
                every cell)

        Returns:
            Dictionary with quality metrics
        """
        defined = ~np.isnan(raster.data)
        if domain is not None:
            defined = defined & domain
            total_cells = int(np.count_nonzero(domain))
        else:
            total_cells = int(raster.data.size)

        valid_cells = int(np.count_nonzero(defined))
        coverage_percent = (valid_cells / total_cells) * 100 if total_cells else 0.0

        quality = {
            'total_cells': total_cells,
            'valid_cells': valid_cells,
            'invalid_cells': total_cells - valid_cells,
            'coverage_percent': float(coverage_percent),
            'passed': coverage_percent >= self.min_coverage,
            'period': raster.period
        }

        if quality['passed']:
            logger.info(
                f"{raster.period} quality: {coverage_percent:.1f}% coverage "
                f"({valid_cells:,} valid cells) - PASSED"
            )
        else:
            logger.warning(
                f"{raster.period} quality: {coverage_percent:.1f}% coverage "
                f"({valid_cells:,} valid cells) - FAILED (minimum: {self.min_coverage}%)"
            )

        return quality

    def assess_multiple(self, rasters: Iterable[Raster], domain: Optional[np.ndarray] = None) -> Dict:
        """
        Assess several rasters

        Returns:
            Dictionary with quality metrics per period plus 'overall_passed'
        """
        results = {}
        all_passed = True

        for raster in rasters:
            quality = self.assess(raster, domain)
            results[raster.period] = quality
            all_passed = all_passed and quality['passed']

        results['overall_passed'] = all_passed

        return results


def calculate_statistics(data: np.ndarray, mask_nans: bool = True) -> Dict:
    """
    Calculate summary statistics for an array

    Args:
        data: Input array
        mask_nans: Whether to ignore NaN values

    Returns:
        Dictionary with statistical metrics
    """
    if mask_nans:
        clean_data = data[~np.isnan(data)]
    else:
        clean_data = data.ravel()

    if len(clean_data) == 0:
        logger.warning("No valid data for statistics calculation")
        return {
            'count': 0,
            'sum': np.nan,
            'mean': np.nan,
            'std': np.nan,
            'min': np.nan,
            'max': np.nan,
            'median': np.nan,
            'q25': np.nan,
            'q75': np.nan
        }

    stats = {
        'count': int(len(clean_data)),
        'sum': float(np.sum(clean_data)),
        'mean': float(np.mean(clean_data)),
        'std': float(np.std(clean_data)),
        'min': float(np.min(clean_data)),
        'max': float(np.max(clean_data)),
        'median': float(np.median(clean_data)),
        'q25': float(np.percentile(clean_data, 25)),
        'q75': float(np.percentile(clean_data, 75))
    }

    return stats
