import numpy as np
import pandas as pd
import pytest
from rasterio.crs import CRS
from rasterio.transform import Affine
from rasterio.warp import transform as warp_transform
from shapely.geometry import LineString, box

from anchordrag.config import PredictorSource, RunConfig
from anchordrag.pipeline import PipelineInputs
from anchordrag.raster import RasterLayer, RasterStack

CRS_UTM = CRS.from_epsg(32633)
ORIGIN_X = 500000.0
ORIGIN_Y = 6100000.0
CELL = 250.0
SIZE = 10
CABLE_X = ORIGIN_X + 5.5 * CELL
TRANSFORM = Affine(CELL, 0.0, ORIGIN_X, 0.0, -CELL, ORIGIN_Y)
GRID_BOUNDS = (ORIGIN_X, ORIGIN_Y - SIZE * CELL, ORIGIN_X + SIZE * CELL, ORIGIN_Y)


def make_layer(name, data, transform=TRANSFORM, crs=CRS_UTM):
    return RasterLayer(name=name, data=np.asarray(data, dtype=np.float32), transform=transform, crs=crs)


def predictor_arrays():
    rows, cols = np.mgrid[0:SIZE, 0:SIZE].astype(np.float64)
    return {
        "slope": 0.5 + 0.2 * rows + 0.05 * (cols - 4.5) ** 2,
        "bathy": -30.0 - 1.5 * rows + 0.8 * cols,
        "current": 0.05 + 0.01 * rows + 0.002 * cols ** 2,
    }


@pytest.fixture
def layers():
    return {name: make_layer(name, data) for name, data in predictor_arrays().items()}


@pytest.fixture
def stack(layers):
    return RasterStack(layers.values())


@pytest.fixture
def cable():
    return LineString([(CABLE_X, ORIGIN_Y), (CABLE_X, ORIGIN_Y - SIZE * CELL)])


@pytest.fixture
def grid_box():
    return box(*GRID_BOUNDS)


@pytest.fixture
def presence_xy():
    offsets = [0.0, 10.0, 25.0, 50.0]
    rows = [1, 3, 5, 7]
    xs = [CABLE_X + d for d in offsets]
    ys = [ORIGIN_Y - (r + 0.5) * CELL for r in rows]
    return np.column_stack([xs, ys])


@pytest.fixture
def incidents(presence_xy):
    lon, lat = warp_transform(CRS_UTM, "EPSG:4326", list(presence_xy[:, 0]), list(presence_xy[:, 1]))
    return pd.DataFrame({"lon": lon, "lat": lat})


@pytest.fixture
def run_config(tmp_path):
    return RunConfig(
        name="synthetic",
        output_dir=str(tmp_path / "outputs"),
        target_crs="EPSG:32633",
        template="bathy",
        predictors=[PredictorSource(name, f"{name}.tif") for name in ("slope", "bathy", "current")],
        background_policy="ring",
        background_size=200,
        clip_ring_to_corridor=True,
        folds=4,
        seed=20250725,
        write_previews=False,
    )


@pytest.fixture
def pipeline_inputs(layers, cable, incidents, grid_box):
    return PipelineInputs(layers=layers, cable=cable, incidents=incidents, corridor=grid_box)
