"""Presence and background point sets.

Presence points are the recorded incidents reprojected to the working CRS.
Background points are drawn uniformly from a sampling domain by rejection
sampling with a caller-owned ``numpy.random.Generator`` so that every run is
reproducible without any process-wide random state.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

import geopandas as gpd
import numpy as np
import pandas as pd
import shapely
from shapely.geometry.base import BaseGeometry

from anchordrag.errors import ConfigurationError, GeometryError, SamplingError

logger = logging.getLogger(__name__)

PRESENCE = "presence"
BACKGROUND = "background"
GEOGRAPHIC_CRS = "EPSG:4326"


@dataclass(frozen=True, eq=False)
class PointSet:
    """Ordered 2-D coordinates tagged as presence or background."""

    name: str
    coords: np.ndarray
    crs: str
    kind: str

    def __post_init__(self) -> None:
        coords = np.array(self.coords, dtype=np.float64).reshape(-1, 2)
        coords.setflags(write=False)
        object.__setattr__(self, "coords", coords)
        if self.kind not in (PRESENCE, BACKGROUND):
            raise ValueError(f"Unknown point set kind: {self.kind}")

    def __len__(self) -> int:
        return self.coords.shape[0]

    @property
    def x(self) -> np.ndarray:
        return self.coords[:, 0]

    @property
    def y(self) -> np.ndarray:
        return self.coords[:, 1]

    @property
    def label(self) -> int:
        return 1 if self.kind == PRESENCE else 0

    def to_geodataframe(self) -> gpd.GeoDataFrame:
        return gpd.GeoDataFrame(
            {"kind": [self.kind] * len(self)},
            geometry=gpd.points_from_xy(self.x, self.y),
            crs=self.crs,
        )


def load_geometry(path: str, crs: str) -> BaseGeometry:
    """Read a vector file, reproject it and dissolve its features into one geometry."""
    frame = gpd.read_file(path)
    if frame.crs is None:
        raise GeometryError(f"Vector file {path} has no CRS", stage="load", subject=path)
    frame = frame.to_crs(crs)
    geometry = shapely.union_all(list(frame.geometry))
    if geometry.is_empty:
        raise GeometryError(f"Vector file {path} holds no geometry", stage="load", subject=path)
    return geometry


def load_incidents(paths: Iterable[str]) -> pd.DataFrame:
    """Concatenate lon/lat incident tables in the given order."""
    frames = []
    for path in paths:
        frame = pd.read_csv(path)
        missing = {"lon", "lat"} - set(frame.columns)
        if missing:
            raise ConfigurationError(
                f"Incident table {path} lacks columns {sorted(missing)}",
                stage="load",
                subject=path,
            )
        frames.append(frame[["lon", "lat"]])
    if not frames:
        raise ConfigurationError("No incident tables configured", stage="load")
    return pd.concat(frames, ignore_index=True)


def presence_points(incidents: pd.DataFrame, crs: str, name: str = "incidents") -> PointSet:
    """Reproject geographic incident records without altering count or order."""
    points = gpd.GeoSeries(
        gpd.points_from_xy(incidents["lon"], incidents["lat"]), crs=GEOGRAPHIC_CRS
    ).to_crs(crs)
    coords = np.column_stack([points.x.to_numpy(), points.y.to_numpy()])
    logger.info(f"[presence_points] {len(coords)} presence points from '{name}'")
    return PointSet(name=name, coords=coords, crs=crs, kind=PRESENCE)


def ring_domain(
    cable: BaseGeometry,
    inner_m: float,
    outer_m: float,
    clip: Optional[BaseGeometry] = None,
) -> BaseGeometry:
    """Outer buffer minus inner buffer around the cable, optionally clipped."""
    if cable is None or cable.is_empty:
        raise GeometryError("Cable geometry is empty", stage="sampling", subject="cable")
    ring = cable.buffer(outer_m).difference(cable.buffer(inner_m))
    if clip is not None:
        ring = ring.intersection(clip)
    if ring.is_empty or ring.area <= 0.0:
        raise GeometryError(
            f"Ring domain [{inner_m}, {outer_m}] m is empty",
            stage="sampling",
            subject="ring",
        )
    return ring


def ring_filter(cable: BaseGeometry, inner_m: float, outer_m: float) -> Callable[[np.ndarray, np.ndarray], np.ndarray]:
    """Exact distance test for candidates, since buffers are polygonal approximations."""
    shapely.prepare(cable)

    def accept(x: np.ndarray, y: np.ndarray) -> np.ndarray:
        distance = shapely.distance(cable, shapely.points(x, y))
        return (distance >= inner_m) & (distance <= outer_m)

    return accept


def sample_background(
    domain: BaseGeometry,
    size: int,
    rng: np.random.Generator,
    crs: str,
    accept: Optional[Callable[[np.ndarray, np.ndarray], np.ndarray]] = None,
    name: str = "background",
    max_rounds: int = 1000,
) -> PointSet:
    """Draw ``size`` uniform random points inside ``domain``."""
    if domain is None or domain.is_empty or domain.area <= 0.0:
        raise SamplingError("Sampling domain has zero area", stage="sampling", subject=name)
    left, bottom, right, top = domain.bounds
    if right - left <= 0.0 or top - bottom <= 0.0:
        raise SamplingError("Sampling domain is degenerate", stage="sampling", subject=name)

    shapely.prepare(domain)
    fill_ratio = domain.area / ((right - left) * (top - bottom))
    batch = int(min(max(size / max(fill_ratio, 1e-3) * 1.2, 1024), 1_000_000))

    accepted_x = []
    accepted_y = []
    count = 0
    for _ in range(max_rounds):
        x = rng.uniform(left, right, batch)
        y = rng.uniform(bottom, top, batch)
        keep = shapely.contains_xy(domain, x, y)
        if accept is not None and keep.any():
            keep[keep] = accept(x[keep], y[keep])
        accepted_x.append(x[keep])
        accepted_y.append(y[keep])
        count += int(keep.sum())
        if count >= size:
            break
    else:
        raise SamplingError(
            f"Only {count} of {size} points could be placed in the sampling domain",
            stage="sampling",
            subject=name,
        )

    coords = np.column_stack([np.concatenate(accepted_x), np.concatenate(accepted_y)])[:size]
    logger.info(f"[sample_background] {len(coords)} points drawn for '{name}'")
    return PointSet(name=name, coords=coords, crs=crs, kind=BACKGROUND)
