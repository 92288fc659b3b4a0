import json

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
from rasterio.crs import CRS
from rasterio.transform import from_origin
from shapely.geometry import box

from ntl_change.config_loader import Config
from ntl_change.main import main
from ntl_change.models import Raster
from ntl_change.pipeline import NightLightsPipeline
from ntl_change.raster_processing import RasterProcessor


@pytest.fixture
def workspace(tmp_path):
    crs = CRS.from_epsg(3857)
    transform = from_origin(0, 4, 1, 1)
    raster_dir = tmp_path / "rasters"
    raster_dir.mkdir()

    # Six flat baseline months, then two brighter months
    levels = {f"2023-{m:02d}": 1.0 for m in range(1, 7)}
    levels.update({"2023-07": 1.5, "2023-08": 2.0})
    for period, level in levels.items():
        raster = Raster(data=np.full((4, 4), level), transform=transform, period=period, crs=crs)
        RasterProcessor.save_geotiff(str(raster_dir / f"ntl_{period}.tif"), raster)

    national = gpd.GeoDataFrame(
        {"ADM0_PCODE": ["XX"], "ADM0_EN": ["Country"]},
        geometry=[box(0, 0, 4, 4)], crs="EPSG:3857",
    )
    regional = gpd.GeoDataFrame(
        {"ADM1_PCODE": ["XX01", "XX02"], "ADM1_EN": ["West", "East"]},
        geometry=[box(0, 0, 2, 4), box(2, 0, 4, 4)], crs="EPSG:3857",
    )
    national.to_file(tmp_path / "adm0.gpkg", driver="GPKG")
    regional.to_file(tmp_path / "adm1.gpkg", driver="GPKG")

    return tmp_path


def _config(root):
    return {
        "project": {"name": "test", "output_dir": str(root / "out"), "log_dir": str(root / "logs")},
        "inputs": {
            "raster_pattern": str(root / "rasters" / "ntl_{period}.tif"),
            "boundaries": {
                "national": {"path": str(root / "adm0.gpkg"), "code_field": "ADM0_PCODE"},
                "regional": {
                    "path": str(root / "adm1.gpkg"),
                    "code_field": "ADM1_PCODE",
                    "name_field": "ADM1_EN",
                },
            },
        },
        "periods": {"start": "2023-01", "end": "2023-09", "freq": "M"},
        "baseline": {"start": "2023-01", "months": 6},
        "masking": {"boundary_level": "national"},
        "change": {"clamp": 100.0},
    }


def test_pipeline_end_to_end(workspace):
    pipeline = NightLightsPipeline(config=Config.from_dict(_config(workspace)))

    results = pipeline.run()

    out = workspace / "out"
    table = pd.read_csv(out / "unit_series.csv", dtype={"unit_id": str})
    assert len(table) == 3 * 8  # 2023-09 raster is missing

    changes = pd.read_csv(out / "unit_changes.csv", dtype={"unit_id": str})
    national = changes[changes["unit_id"] == "XX"].set_index("date")
    assert national.loc["2023-07", "baseline"] == pytest.approx(16.0)
    assert national.loc["2023-07", "percent_change"] == pytest.approx(50.0)
    assert national.loc["2023-08", "percent_change"] == pytest.approx(100.0)
    assert results["unit_change"]["undefined"] == 0

    # 1.0 baseline cells vs 1.5 and 2.0 observations
    assert set(results["pixel_change"]) == {"2023-07", "2023-08"}
    assert results["pixel_change"]["2023-07"]["mean_percent_change"] == pytest.approx(50.0)
    # 2023-08 compares against 2023-02..2023-07, which already includes the brighter month
    assert results["pixel_change"]["2023-08"]["mean_percent_change"] == pytest.approx((2.0 - 6.5 / 6) / (6.5 / 6) * 100)
    assert (out / "change" / "ntl_pct_change_2023-07.tif").exists()
    assert (out / "maps" / "ntl_log_2023-01.tif").exists()

    series = json.loads((out / "unit_series.json").read_text())
    by_unit = {s["unit_id"]: s for s in series}
    assert by_unit["XX01"]["full"][:2] == [8.0, 8.0]
    assert by_unit["XX01"]["baseline_only"][6] is None

    assert results["quality"]["2023-01"]["total_cells"] == 16
    assert results["quality"]["overall_passed"]

    saved = list((workspace / "logs").glob("results_*.json"))
    assert saved


def test_pipeline_reads_precomputed_series(workspace):
    rows = [("PK01", f"2023-{m:02d}", 10.0) for m in range(1, 7)]
    rows += [("PK01", "2023-07-31", 15.0), ("PK02", "2023-07", None)]
    pd.DataFrame(rows, columns=["unit_id", "date", "value"]).to_csv(workspace / "series.csv", index=False)
    config = _config(workspace)
    config["inputs"]["series_csv"] = str(workspace / "series.csv")

    results = NightLightsPipeline(config=Config.from_dict(config)).run()

    out = workspace / "out"
    table = pd.read_csv(out / "unit_series.csv", dtype={"unit_id": str})
    assert len(table) == 8
    assert "2023-07" in table["date"].tolist()

    changes = pd.read_csv(out / "unit_changes.csv", dtype={"unit_id": str}).set_index(["unit_id", "date"])
    assert changes.loc[("PK01", "2023-07"), "percent_change"] == pytest.approx(50.0)
    assert results["unit_change"]["units_without_baseline"] == ["PK02"]


def test_pipeline_rejects_series_with_two_labels_for_one_month(workspace):
    rows = [("PK01", "2023-01", 10.0), ("PK01", "2023-01-15", 1000.0)]
    pd.DataFrame(rows, columns=["unit_id", "date", "value"]).to_csv(workspace / "series.csv", index=False)
    config = _config(workspace)
    config["inputs"]["series_csv"] = str(workspace / "series.csv")

    with pytest.raises(ValueError, match="Duplicate"):
        NightLightsPipeline(config=Config.from_dict(config)).run()


def test_cli_reports_missing_config(tmp_path):
    assert main(["--config", str(tmp_path / "absent.yaml")]) == 1
