"""
Raster processing utilities: reading, masking to boundaries, log compression
"""

import numpy as np
import rasterio
from rasterio.crs import CRS
from rasterio.features import geometry_mask
from pathlib import Path
from typing import Iterable, Optional, Union
import logging

from .models import Boundary, Raster

logger = logging.getLogger(__name__)


def log_compress(array: np.ndarray) -> np.ndarray:
    """
    Double log transform ln(ln(v + 1) + 1) for display-stable dynamic range

    NaN cells stay NaN. Monotonic on v >= 0.
    """
    with np.errstate(invalid='ignore'):
        return np.log1p(np.log1p(array))


class RasterProcessor:
    """Handle raster file operations and cell-level masking"""

    def __init__(self, config: Optional[dict] = None):
        """
        Initialize raster processor

        Args:
            config: Masking configuration ('zero_sentinel', 'all_touched')
        """
        config = config or {}
        self.zero_sentinel = config.get('zero_sentinel', 0.0)
        self.all_touched = config.get('all_touched', False)

    @staticmethod
    def read_raster(
        path: Union[str, Path],
        period: str,
        nodata: Optional[float] = None
    ) -> Raster:
        """
        Read band 1 of a GeoTIFF as a Raster, converting nodata to NaN

        Args:
            path: Raster file path
            period: Period label ('2023' or '2023-06')
            nodata: Override for the file's declared nodata value

        Returns:
            Raster
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Raster not found: {path}")

        with rasterio.open(path) as src:
            data = src.read(1).astype(np.float64)
            sentinel = src.nodata if nodata is None else nodata
            if sentinel is not None and not np.isnan(sentinel):
                data[data == sentinel] = np.nan

            raster = Raster(data=data, transform=src.transform, period=str(period), crs=src.crs)

        logger.info(
            f"Read {path.name} as {period}: {raster.shape[1]}x{raster.shape[0]}, "
            f"{raster.valid_count:,} valid cells"
        )
        return raster

    @staticmethod
    def save_geotiff(
        path: str,
        raster: Raster,
        crs: Optional[CRS] = None,
        nodata: float = np.nan
    ):
        """
        Save raster as GeoTIFF

        Args:
            path: Output file path
            raster: Raster to write
            crs: Coordinate reference system (defaults to the raster's)
            nodata: NoData value
        """
        logger.info(f"Saving GeoTIFF: {path}")

        array = raster.data.astype(np.float32)
        with rasterio.open(
            path,
            "w",
            driver="GTiff",
            height=array.shape[0],
            width=array.shape[1],
            count=1,
            dtype=array.dtype,
            crs=crs if crs is not None else raster.crs,
            transform=raster.transform,
            nodata=nodata,
            compress='lzw'
        ) as dst:
            dst.write(array, 1)

        logger.info(f"Saved: {path} ({array.shape[1]}x{array.shape[0]})")

    def mask_to_boundary(self, raster: Raster, boundary: Boundary) -> Raster:
        """
        Null cells outside a boundary and cells holding the zero sentinel

        Args:
            raster: Input raster
            boundary: Boundary polygon in the raster's CRS

        Returns:
            Raster on the same grid
        """
        return self.mask_to_boundaries(raster, [boundary])

    def boundary_domain(self, raster: Raster, boundaries: Iterable[Boundary]) -> np.ndarray:
        """Boolean grid of cells inside the union of the boundaries"""
        geometries = [b.geometry for b in boundaries]
        if not geometries:
            return np.zeros(raster.shape, dtype=bool)
        return geometry_mask(
            geometries,
            out_shape=raster.shape,
            transform=raster.transform,
            all_touched=self.all_touched,
            invert=True,
        )

    def mask_to_boundaries(self, raster: Raster, boundaries: Iterable[Boundary]) -> Raster:
        """
        Null cells outside the union of several boundaries

        A boundary that does not overlap the raster leaves every cell no-data.
        """
        data = raster.data.copy()
        data[~self.boundary_domain(raster, boundaries)] = np.nan
        if self.zero_sentinel is not None:
            data[data == self.zero_sentinel] = np.nan

        masked = raster.with_data(data)
        if masked.valid_count == 0:
            logger.warning(f"{raster.period}: no valid cells left after masking")
        else:
            logger.info(f"{raster.period}: {masked.valid_count:,} valid cells after masking")

        return masked

    def log_compress(self, raster: Raster) -> Raster:
        """Double-log view of a raster for map rendering"""
        return raster.with_data(log_compress(raster.data))
