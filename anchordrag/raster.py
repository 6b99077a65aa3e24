"""Raster layer and stack containers plus thin GeoTIFF I/O.

Layers hold float32 arrays with NaN marking missing cells; the ``nodata``
sentinel is only used when writing to disk. Both containers are immutable:
operations return new objects instead of mutating arrays in place.
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

import numpy as np
import rasterio
from rasterio.crs import CRS
from rasterio.transform import Affine

from anchordrag.errors import AlignmentError

logger = logging.getLogger(__name__)

DEFAULT_NODATA = -9999.0


@dataclass(frozen=True, eq=False)
class RasterLayer:
    name: str
    data: np.ndarray
    transform: Affine
    crs: CRS
    nodata: float = DEFAULT_NODATA

    def __post_init__(self) -> None:
        data = np.array(self.data, dtype=np.float32)
        if data.ndim != 2:
            raise ValueError(f"Layer '{self.name}' must be 2-D, got shape {data.shape}")
        data.setflags(write=False)
        object.__setattr__(self, "data", data)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.data.shape

    @property
    def height(self) -> int:
        return self.data.shape[0]

    @property
    def width(self) -> int:
        return self.data.shape[1]

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """(left, bottom, right, top) of a north-up grid."""
        left, top = self.transform * (0, 0)
        right, bottom = self.transform * (self.width, self.height)
        return min(left, right), min(bottom, top), max(left, right), max(bottom, top)

    @property
    def cell_size(self) -> Tuple[float, float]:
        return abs(self.transform.a), abs(self.transform.e)

    @property
    def valid_mask(self) -> np.ndarray:
        return np.isfinite(self.data)

    def same_grid(self, other: "RasterLayer") -> bool:
        return (
            self.shape == other.shape
            and self.transform == other.transform
            and self.crs == other.crs
        )

    def with_data(
        self,
        data: np.ndarray,
        transform: Optional[Affine] = None,
        name: Optional[str] = None,
    ) -> "RasterLayer":
        return RasterLayer(
            name=name or self.name,
            data=data,
            transform=transform if transform is not None else self.transform,
            crs=self.crs,
            nodata=self.nodata,
        )

    def profile(self) -> Dict:
        return {
            "driver": "GTiff",
            "height": self.height,
            "width": self.width,
            "count": 1,
            "dtype": "float32",
            "crs": self.crs,
            "transform": self.transform,
            "nodata": self.nodata,
        }


class RasterStack(Mapping):
    """Ordered, immutable mapping of predictor name to layers on one grid."""

    def __init__(self, layers: Iterable[RasterLayer]):
        ordered: Dict[str, RasterLayer] = {}
        for layer in layers:
            if layer.name in ordered:
                raise AlignmentError(f"Duplicate layer name in stack: {layer.name}", subject=layer.name)
            ordered[layer.name] = layer
        if not ordered:
            raise AlignmentError("A raster stack needs at least one layer")
        reference = next(iter(ordered.values()))
        for layer in ordered.values():
            if not layer.same_grid(reference):
                raise AlignmentError(
                    f"Layer '{layer.name}' grid {layer.shape}/{layer.crs} differs from "
                    f"'{reference.name}' grid {reference.shape}/{reference.crs}",
                    subject=layer.name,
                )
        self._layers = MappingProxyType(ordered)

    def __getitem__(self, name: str) -> RasterLayer:
        return self._layers[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._layers)

    def __len__(self) -> int:
        return len(self._layers)

    def __reduce__(self):
        return (RasterStack, (list(self._layers.values()),))

    def __repr__(self) -> str:
        return f"RasterStack(names={self.names}, shape={self.shape}, crs={self.crs})"

    @property
    def names(self) -> List[str]:
        return list(self._layers)

    @property
    def reference(self) -> RasterLayer:
        return next(iter(self._layers.values()))

    @property
    def shape(self) -> Tuple[int, int]:
        return self.reference.shape

    @property
    def transform(self) -> Affine:
        return self.reference.transform

    @property
    def crs(self) -> CRS:
        return self.reference.crs

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        return self.reference.bounds

    def replace(self, layer: RasterLayer, first: bool = True) -> "RasterStack":
        """Return a new stack with ``layer`` substituted by name.

        An existing layer keeps its position; a new one is placed first (or last
        when ``first`` is False).
        """
        if layer.name in self._layers:
            return RasterStack(
                layer if name == layer.name else existing
                for name, existing in self._layers.items()
            )
        others = list(self._layers.values())
        return RasterStack([layer] + others if first else others + [layer])

    def select(self, names: Iterable[str]) -> "RasterStack":
        """Sub-stack holding ``names`` in the order given."""
        names = list(names)
        missing = [name for name in names if name not in self._layers]
        if missing:
            raise KeyError(f"Layers not in stack: {missing}")
        return RasterStack(self._layers[name] for name in names)

    def map(self, func) -> "RasterStack":
        return RasterStack(func(layer) for layer in self._layers.values())

    def array(self) -> np.ndarray:
        """(n_layers, height, width) float32 array in stack order."""
        return np.stack([layer.data for layer in self._layers.values()], axis=0)

    def valid_mask(self) -> np.ndarray:
        """Cells where every layer holds a value."""
        return np.all(np.isfinite(self.array()), axis=0)


def read_raster(path: str, name: str, band: int = 1) -> RasterLayer:
    """Load one band as a float32 layer with nodata converted to NaN."""
    logger.info(f"[read_raster] Loading '{name}' from {path}")
    with rasterio.open(path) as src:
        data = src.read(band, masked=True).astype(np.float32).filled(np.nan)
        crs = src.crs
        transform = src.transform
    if crs is None:
        raise AlignmentError(f"Raster {path} has no CRS", stage="load", subject=name)
    return RasterLayer(name=name, data=data, transform=transform, crs=crs)


def save_geotiff(path: str, layer: RasterLayer) -> None:
    """Persist a layer to GeoTIFF using its own grid as the profile."""
    logger.info(f"[save_geotiff] Saving '{layer.name}' to {path}")
    data = np.where(np.isfinite(layer.data), layer.data, layer.nodata).astype(np.float32)
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with rasterio.open(path, "w", **layer.profile()) as dst:
        dst.write(data[np.newaxis, ...])
        dst.set_band_description(1, layer.name)
