"""
Surface current speed predictor from eastward/northward velocity layers.

Daily ocean-model outputs provide ``uo``/``vo`` components; speed is their
Euclidean norm, and event or monthly predictors are the cell-wise mean of
several daily speeds.

Usage:
    python -m anchordrag.currents --u NETCDF:day1.nc:uo --v NETCDF:day1.nc:vo \
        --u NETCDF:day2.nc:uo --v NETCDF:day2.nc:vo --output current_speed.tif
"""

import argparse
import logging
import warnings
from typing import List, Sequence, Tuple

import numpy as np

from anchordrag.alignment import resample_to_template
from anchordrag.raster import RasterLayer, read_raster, save_geotiff

logger = logging.getLogger(__name__)


def current_speed(u: RasterLayer, v: RasterLayer, name: str = "current") -> RasterLayer:
    """sqrt(u^2 + v^2) on the grid of ``u``; ``v`` is warped bilinearly if needed."""
    v_aligned = resample_to_template(v, u)
    speed = np.hypot(u.data.astype(np.float64), v_aligned.data.astype(np.float64))
    return u.with_data(speed.astype(np.float32), name=name)


def mean_current_speed(components: Sequence[Tuple[RasterLayer, RasterLayer]], name: str = "current") -> RasterLayer:
    """Cell-wise NaN-aware mean speed over several (u, v) pairs, on the first u grid."""
    if not components:
        raise ValueError("At least one (u, v) pair is required")
    reference = components[0][0]
    speeds = []
    for u, v in components:
        speed = current_speed(resample_to_template(u, reference), v, name=name)
        speeds.append(speed.data)
    with warnings.catch_warnings():
        # cells missing in every day stay NaN
        warnings.simplefilter("ignore", category=RuntimeWarning)
        mean = np.nanmean(np.stack(speeds, axis=0), axis=0)
    logger.info(f"[mean_current_speed] Averaged {len(speeds)} daily speed layers")
    return reference.with_data(mean, name=name)


def main() -> None:
    parser = argparse.ArgumentParser(description="Derive a mean current speed raster from u/v components.")
    parser.add_argument("--u", action="append", required=True, help="Eastward velocity raster (repeatable).")
    parser.add_argument("--v", action="append", required=True, help="Northward velocity raster (repeatable).")
    parser.add_argument("--output", required=True, help="Output GeoTIFF path.")
    parser.add_argument("--name", default="current", help="Layer name.")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    if len(args.u) != len(args.v):
        parser.error("--u and --v must be given the same number of times")

    pairs: List[Tuple[RasterLayer, RasterLayer]] = [
        (read_raster(u_path, "uo"), read_raster(v_path, "vo")) for u_path, v_path in zip(args.u, args.v)
    ]
    save_geotiff(args.output, mean_current_speed(pairs, name=args.name))


if __name__ == "__main__":
    main()
