"""Exact Euclidean distance-to-cable field on the modelling grid."""

import logging
from typing import Optional

import numpy as np
from rasterio.features import rasterize
from scipy.ndimage import distance_transform_edt
from shapely.geometry import mapping
from shapely.geometry.base import BaseGeometry

from anchordrag.corridor import mask_to_polygon
from anchordrag.errors import GeometryError
from anchordrag.raster import RasterLayer, RasterStack

logger = logging.getLogger(__name__)


def rasterize_geometry(geometry: BaseGeometry, reference: RasterLayer) -> np.ndarray:
    """Boolean grid marking every cell the geometry touches."""
    if geometry is None or geometry.is_empty:
        raise GeometryError("Cable geometry is empty", stage="distance", subject="cable")
    burned = rasterize(
        [(mapping(geometry), 1)],
        out_shape=reference.shape,
        transform=reference.transform,
        fill=0,
        all_touched=True,
        dtype="uint8",
    )
    return burned.astype(bool)


def distance_field(geometry: BaseGeometry, reference: RasterLayer, name: str = "dist") -> RasterLayer:
    """Distance (grid units) from each cell centre to the nearest cable cell."""
    source = rasterize_geometry(geometry, reference)
    if not source.any():
        raise GeometryError(
            "Cable geometry does not intersect the reference grid",
            stage="distance",
            subject=name,
        )
    cell_x, cell_y = reference.cell_size
    distance = distance_transform_edt(~source, sampling=(cell_y, cell_x))
    logger.info(
        f"[distance_field] {int(source.sum())} source cells, max distance {float(distance.max()):.1f}"
    )
    return RasterLayer(
        name=name,
        data=distance.astype(np.float32),
        transform=reference.transform,
        crs=reference.crs,
        nodata=reference.nodata,
    )


def rebuild_distance_layer(
    stack: RasterStack,
    cable: BaseGeometry,
    name: str = "dist",
    mask_geometry: Optional[BaseGeometry] = None,
) -> RasterStack:
    """Return a new stack whose distance layer is recomputed on the stack grid.

    Any upstream distance layer of the same name is discarded. An existing
    layer keeps its position, otherwise the distance layer goes first.
    """
    distance = distance_field(cable, stack.reference, name=name)
    if mask_geometry is not None:
        distance = mask_to_polygon(distance, mask_geometry)
    return stack.replace(distance, first=True)
