import numpy as np
import pytest
from shapely.geometry import LineString, Polygon, box

from anchordrag.corridor import apply_corridor, corridor_polygon, crop_to_bounds, mask_to_polygon
from anchordrag.errors import GeometryError

from conftest import CELL, ORIGIN_X, ORIGIN_Y, SIZE


def test_crop_snaps_outward_to_grid(layers):
    bounds = (ORIGIN_X + 1.2 * CELL, ORIGIN_Y - 4.5 * CELL, ORIGIN_X + 3.9 * CELL, ORIGIN_Y - 0.5 * CELL)
    cropped = crop_to_bounds(layers["bathy"], bounds)
    assert cropped.shape == (5, 3)
    assert cropped.transform.c == ORIGIN_X + CELL
    assert cropped.transform.f == ORIGIN_Y
    np.testing.assert_array_equal(cropped.data, layers["bathy"].data[0:5, 1:4])


def test_mask_nulls_cells_whose_centre_is_outside(layers):
    left_half = box(ORIGIN_X, ORIGIN_Y - SIZE * CELL, ORIGIN_X + 5 * CELL, ORIGIN_Y)
    masked = mask_to_polygon(layers["bathy"], left_half)
    assert np.isfinite(masked.data[:, :5]).all()
    assert np.isnan(masked.data[:, 5:]).all()


def test_corridor_keeps_units_and_restricts_extent(stack, cable):
    polygon = cable.buffer(600.0)
    masked = apply_corridor(stack, polygon)

    assert masked.names == stack.names
    assert masked.shape[0] == SIZE
    assert masked.shape[1] < SIZE
    for name in masked:
        valid = masked[name].valid_mask
        assert valid.any()
        assert not valid.all()
    # surviving cells hold the original values
    col_offset = int(round((masked.transform.c - ORIGIN_X) / CELL))
    original = stack["bathy"].data[:, col_offset:col_offset + masked.shape[1]]
    valid = masked["bathy"].valid_mask
    np.testing.assert_array_equal(masked["bathy"].data[valid], original[valid])


def test_buffer_outside_footprint_yields_empty_layers(stack):
    far_away = box(ORIGIN_X + 50000, ORIGIN_Y + 50000, ORIGIN_X + 51000, ORIGIN_Y + 51000)
    masked = apply_corridor(stack, far_away)
    for name in masked:
        assert np.isnan(masked[name].data).all()


def test_mask_only_keeps_grid(stack, grid_box):
    masked = apply_corridor(stack, grid_box, crop=False)
    assert masked.transform == stack.transform
    assert masked.valid_mask().all()


def test_zero_area_polygon_is_rejected(stack):
    flat = Polygon([(ORIGIN_X, ORIGIN_Y), (ORIGIN_X + 100, ORIGIN_Y), (ORIGIN_X + 200, ORIGIN_Y)])
    with pytest.raises(GeometryError):
        apply_corridor(stack, flat)


def test_self_intersecting_polygon_is_rejected(stack):
    bow_tie = Polygon([
        (ORIGIN_X, ORIGIN_Y - SIZE * CELL),
        (ORIGIN_X + SIZE * CELL, ORIGIN_Y),
        (ORIGIN_X + SIZE * CELL, ORIGIN_Y - SIZE * CELL),
        (ORIGIN_X, ORIGIN_Y),
    ])
    with pytest.raises(GeometryError, match="invalid") as excinfo:
        apply_corridor(stack, bow_tie)
    assert excinfo.value.subject == "corridor"


def test_corridor_polygon_from_cable(cable):
    polygon = corridor_polygon(cable, 5500.0)
    assert polygon.contains(cable)
    assert polygon.area > 0


def test_corridor_polygon_needs_geometry():
    with pytest.raises(GeometryError):
        corridor_polygon(LineString(), 5500.0)
