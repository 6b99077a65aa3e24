"""Restrict an aligned stack to a corridor buffer or an area of interest."""

import logging
import math
from typing import Tuple

import numpy as np
from rasterio.features import geometry_mask
from rasterio.transform import Affine
from shapely.geometry import mapping
from shapely.geometry.base import BaseGeometry
from shapely.validation import explain_validity

from anchordrag.errors import AlignmentError, GeometryError
from anchordrag.raster import RasterLayer, RasterStack

logger = logging.getLogger(__name__)


def validate_polygon(geometry: BaseGeometry, subject: str) -> BaseGeometry:
    """Reject empty, invalid or zero-area corridor and AOI polygons."""
    if geometry is None or geometry.is_empty:
        raise GeometryError("Polygon geometry is empty", stage="corridor", subject=subject)
    if not geometry.is_valid:
        raise GeometryError(
            f"Polygon geometry is invalid: {explain_validity(geometry)}",
            stage="corridor",
            subject=subject,
        )
    if geometry.area <= 0.0:
        raise GeometryError("Polygon geometry has zero area", stage="corridor", subject=subject)
    return geometry


def corridor_polygon(cable: BaseGeometry, buffer_m: float) -> BaseGeometry:
    """Fixed-radius buffer around the cable route in the working CRS units."""
    if cable is None or cable.is_empty:
        raise GeometryError("Cable geometry is empty", stage="corridor", subject="cable")
    return validate_polygon(cable.buffer(buffer_m), subject=f"cable buffer {buffer_m} m")


def _grid_window(transform: Affine, bounds: Tuple[float, float, float, float]) -> Tuple[int, int, int, int]:
    """(row_off, col_off, height, width) covering ``bounds``, rounded outward."""
    if transform.b != 0 or transform.d != 0:
        raise AlignmentError("Rotated grids cannot be cropped", stage="corridor")
    left, bottom, right, top = bounds
    inverse = ~transform
    col_a, row_a = inverse * (left, top)
    col_b, row_b = inverse * (right, bottom)
    col_min, col_max = sorted((col_a, col_b))
    row_min, row_max = sorted((row_a, row_b))
    # tolerate float noise on bounds that sit exactly on cell edges
    col_off = int(math.floor(col_min + 1e-9))
    row_off = int(math.floor(row_min + 1e-9))
    width = max(int(math.ceil(col_max - 1e-9)) - col_off, 1)
    height = max(int(math.ceil(row_max - 1e-9)) - row_off, 1)
    return row_off, col_off, height, width


def crop_to_bounds(layer: RasterLayer, bounds: Tuple[float, float, float, float]) -> RasterLayer:
    """Crop a layer to the grid-aligned window covering ``bounds``.

    The window is clipped to the layer extent. When the two do not intersect at
    all, the result is an all-NaN layer on the window itself.
    """
    row_off, col_off, height, width = _grid_window(layer.transform, bounds)
    r0 = max(row_off, 0)
    c0 = max(col_off, 0)
    r1 = min(row_off + height, layer.height)
    c1 = min(col_off + width, layer.width)
    if r0 < r1 and c0 < c1:
        cropped = layer.data[r0:r1, c0:c1]
        row_off, col_off = r0, c0
    else:
        logger.warning(f"[crop_to_bounds] '{layer.name}' has no cells inside the crop extent")
        cropped = np.full((height, width), np.nan, dtype=np.float32)

    transform = layer.transform * Affine.translation(col_off, row_off)
    return layer.with_data(cropped, transform=transform)


def polygon_mask(geometry: BaseGeometry, shape: Tuple[int, int], transform: Affine) -> np.ndarray:
    """True where the cell centre falls inside ``geometry``."""
    return geometry_mask([mapping(geometry)], out_shape=shape, transform=transform, invert=True)


def mask_to_polygon(layer: RasterLayer, geometry: BaseGeometry) -> RasterLayer:
    """Null the cells of ``layer`` whose centre falls outside ``geometry``."""
    inside = polygon_mask(geometry, layer.shape, layer.transform)
    return layer.with_data(np.where(inside, layer.data, np.nan))


def apply_corridor(stack: RasterStack, polygon: BaseGeometry, crop: bool = True) -> RasterStack:
    """Crop every layer to the polygon's extent (optional) then null cells outside it."""
    polygon = validate_polygon(polygon, subject="corridor")
    if crop:
        stack = stack.map(lambda layer: crop_to_bounds(layer, polygon.bounds))
    inside = polygon_mask(polygon, stack.shape, stack.transform)
    masked = stack.map(lambda layer: layer.with_data(np.where(inside, layer.data, np.nan)))
    logger.info(
        f"[apply_corridor] Grid {masked.shape[0]}x{masked.shape[1]}, "
        f"{int(inside.sum())} cells inside polygon (crop={crop})"
    )
    return masked
