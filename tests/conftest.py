import numpy as np
import pytest
from rasterio.transform import from_origin
from shapely.geometry import box

from ntl_change.models import Boundary, Raster


@pytest.fixture
def transform():
    # 4x4 grid of unit cells covering x 0..4, y 0..4
    return from_origin(0, 4, 1, 1)


@pytest.fixture
def make_raster(transform):
    def _make(values, period="2023-01"):
        return Raster(data=np.asarray(values, dtype=float), transform=transform, period=period)
    return _make


@pytest.fixture
def country():
    return Boundary(code="XX", geometry=box(0, 0, 4, 4), level="national")


@pytest.fixture
def halves():
    return [
        Boundary(code="XX01", geometry=box(0, 0, 2, 4), level="regional", name="West"),
        Boundary(code="XX02", geometry=box(2, 0, 4, 4), level="regional", name="East"),
    ]
