import numpy as np
import pytest
from rasterio.transform import Affine

from anchordrag.errors import AlignmentError
from anchordrag.raster import RasterStack, read_raster, save_geotiff

from conftest import CELL, ORIGIN_X, ORIGIN_Y, SIZE, make_layer


def test_stack_rejects_layers_on_different_grids(layers):
    shifted = make_layer("shifted", np.ones((SIZE, SIZE)), transform=Affine(CELL, 0, ORIGIN_X + CELL, 0, -CELL, ORIGIN_Y))
    with pytest.raises(AlignmentError):
        RasterStack([layers["bathy"], shifted])


def test_stack_rejects_duplicate_names(layers):
    with pytest.raises(AlignmentError):
        RasterStack([layers["bathy"], layers["bathy"]])


def test_layer_data_is_read_only(layers):
    with pytest.raises(ValueError):
        layers["bathy"].data[0, 0] = 1.0


def test_replace_returns_new_stack_and_keeps_original(stack):
    new_slope = make_layer("slope", np.zeros((SIZE, SIZE)))
    replaced = stack.replace(new_slope)
    assert replaced.names == stack.names
    assert np.all(replaced["slope"].data == 0.0)
    assert not np.all(stack["slope"].data == 0.0)


def test_replace_prepends_new_layer(stack):
    dist = make_layer("dist", np.zeros((SIZE, SIZE)))
    replaced = stack.replace(dist)
    assert replaced.names == ["dist", "slope", "bathy", "current"]
    assert stack.names == ["slope", "bathy", "current"]


def test_select_reorders_and_rejects_unknown(stack):
    assert stack.select(["current", "slope"]).names == ["current", "slope"]
    with pytest.raises(KeyError):
        stack.select(["depth"])


def test_valid_mask_requires_every_layer(stack):
    data = stack["current"].data.copy()
    data[2, 3] = np.nan
    masked = stack.replace(stack["current"].with_data(data))
    valid = masked.valid_mask()
    assert not valid[2, 3]
    assert valid.sum() == SIZE * SIZE - 1


def test_geotiff_keeps_missing_cells(tmp_path, layers):
    data = layers["bathy"].data.copy()
    data[0, 0] = np.nan
    layer = layers["bathy"].with_data(data)
    path = str(tmp_path / "bathy.tif")
    save_geotiff(path, layer)

    loaded = read_raster(path, "bathy")
    assert loaded.same_grid(layer)
    assert np.isnan(loaded.data[0, 0])
    np.testing.assert_allclose(loaded.data[1:], layer.data[1:])
