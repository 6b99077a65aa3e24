"""Preview figures for prediction surfaces."""

import os
from typing import Optional

import numpy as np
import matplotlib

matplotlib.use("Agg")  # Non-interactive backend for server environments
import matplotlib.pyplot as plt
from shapely.geometry.base import BaseGeometry

from anchordrag.raster import RasterLayer


def _draw_outline(ax, geometry: BaseGeometry) -> None:
    polygons = getattr(geometry, "geoms", [geometry])
    for polygon in polygons:
        boundary = polygon.boundary
        for line in getattr(boundary, "geoms", [boundary]):
            xs, ys = line.xy
            ax.plot(xs, ys, color="black", linewidth=0.8)


def plot_risk_surface(
    surface: RasterLayer,
    save_path: str,
    title: str,
    outline: Optional[BaseGeometry] = None,
) -> None:
    """
    Plot a cloglog risk surface with an optional corridor/AOI outline.

    Args:
        surface: Prediction surface on the modelling grid
        save_path: Path to save figure
        title: Plot title
        outline: Polygon drawn on top of the surface
    """
    left, bottom, right, top = surface.bounds
    fig, ax = plt.subplots(figsize=(11, 8))
    image = ax.imshow(
        np.ma.masked_invalid(surface.data),
        extent=(left, right, bottom, top),
        cmap="viridis",
        vmin=0.0,
        vmax=1.0,
    )
    if outline is not None and not outline.is_empty:
        _draw_outline(ax, outline)
    fig.colorbar(image, ax=ax, label="Predicted anchor-drag risk (cloglog)")
    ax.set_title(title)
    ax.set_xlabel("Easting (m)")
    ax.set_ylabel("Northing (m)")

    directory = os.path.dirname(save_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    fig.savefig(save_path, dpi=100, bbox_inches="tight")
    plt.close(fig)
