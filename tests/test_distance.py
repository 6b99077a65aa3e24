import numpy as np
import pytest
from shapely.geometry import LineString, Point

from anchordrag.distance import distance_field, rasterize_geometry, rebuild_distance_layer
from anchordrag.errors import GeometryError

from conftest import CELL, ORIGIN_X, ORIGIN_Y, SIZE, make_layer


def test_distance_is_zero_on_cable_and_positive_elsewhere(layers, cable):
    field = distance_field(cable, layers["bathy"])
    source = rasterize_geometry(cable, layers["bathy"])

    assert source[:, 5].all()
    assert source.sum() == SIZE
    assert (field.data >= 0).all()
    assert (field.data[source] == 0).all()
    assert (field.data[~source] > 0).all()


def test_distance_grows_away_from_cable_column(layers, cable):
    data = distance_field(cable, layers["bathy"]).data
    for col in range(5):
        assert (data[:, col] > data[:, col + 1]).all()
    for col in range(5, SIZE - 1):
        assert (data[:, col + 1] > data[:, col]).all()
    np.testing.assert_allclose(data[:, 4], CELL)
    np.testing.assert_allclose(data[:, 0], 5 * CELL)


def test_distance_is_euclidean_not_chessboard(layers):
    point = Point(ORIGIN_X + 5.5 * CELL, ORIGIN_Y - 5.5 * CELL)
    data = distance_field(point.buffer(1.0), layers["bathy"]).data
    assert data[5, 5] == 0
    np.testing.assert_allclose(data[4, 4], np.sqrt(2) * CELL, rtol=1e-6)
    np.testing.assert_allclose(data[2, 1], np.hypot(3, 4) * CELL, rtol=1e-6)


def test_cable_outside_grid_fails(layers):
    outside = LineString([(ORIGIN_X - 10000, ORIGIN_Y), (ORIGIN_X - 9000, ORIGIN_Y - 1000)])
    with pytest.raises(GeometryError):
        distance_field(outside, layers["bathy"])


def test_rebuild_replaces_stale_distance_layer(stack, cable):
    stale = stack.replace(make_layer("dist", np.full((SIZE, SIZE), 123.0)))
    rebuilt = rebuild_distance_layer(stale, cable)

    assert rebuilt.names == stale.names
    assert rebuilt["dist"].data.max() < 123.0
    assert (stale["dist"].data == 123.0).all()


def test_rebuild_masks_outside_polygon(stack, cable):
    polygon = cable.buffer(400.0)
    rebuilt = rebuild_distance_layer(stack, cable, mask_geometry=polygon)
    dist = rebuilt["dist"].data
    assert rebuilt.names[0] == "dist"
    assert np.isnan(dist[:, 0]).all()
    assert np.isfinite(dist[:, 5]).all()
