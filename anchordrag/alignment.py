"""Reprojection and resampling of predictor layers onto one reference grid."""

import logging
from typing import Dict, Mapping, Optional, Sequence

import numpy as np
from rasterio.crs import CRS
from rasterio.enums import Resampling
from rasterio.errors import CRSError as RasterioCRSError
from rasterio.warp import calculate_default_transform, reproject, transform_bounds

from anchordrag.errors import CRSError, ConfigurationError, NoOverlapError
from anchordrag.raster import RasterLayer, RasterStack

logger = logging.getLogger(__name__)

# every source is warped once, straight onto the reprojected template grid
DIRECT_STRATEGY = "direct"
# every source is first reprojected on its own grid, then resampled onto the template
PROJECT_FIRST_STRATEGY = "project_first"
TEMPLATE_STRATEGIES = (DIRECT_STRATEGY, PROJECT_FIRST_STRATEGY)

RESAMPLING_MAP = {
    "bilinear": Resampling.bilinear,
    "cubic": Resampling.cubic,
    "cubic_spline": Resampling.cubic_spline,
    "lanczos": Resampling.lanczos,
    "average": Resampling.average,
}


def resolve_crs(crs_like, subject: Optional[str] = None) -> CRS:
    """Parse an EPSG code, WKT or PROJ string into a rasterio CRS."""
    if isinstance(crs_like, CRS):
        return crs_like
    try:
        crs = CRS.from_user_input(crs_like)
    except RasterioCRSError as exc:
        raise CRSError(f"Cannot resolve CRS '{crs_like}'", stage="alignment", subject=subject) from exc
    if not crs.is_valid:
        raise CRSError(f"Invalid CRS '{crs_like}'", stage="alignment", subject=subject)
    return crs


def resolve_resampling(method: str, subject: Optional[str] = None) -> Resampling:
    """Map a configured method name to a continuous rasterio resampling kernel."""
    if method not in RESAMPLING_MAP:
        raise ConfigurationError(
            f"Resampling '{method}' is not supported for continuous predictors",
            stage="alignment",
            subject=subject,
        )
    return RESAMPLING_MAP[method]


def _bounds_intersect(a, b) -> bool:
    return a[0] < b[2] and b[0] < a[2] and a[1] < b[3] and b[1] < a[3]


def _warp(layer: RasterLayer, dst_transform, dst_crs: CRS, height: int, width: int,
          resampling: Resampling) -> np.ndarray:
    destination = np.full((height, width), np.nan, dtype=np.float32)
    reproject(
        source=np.ascontiguousarray(layer.data),
        destination=destination,
        src_transform=layer.transform,
        src_crs=layer.crs,
        src_nodata=np.nan,
        dst_transform=dst_transform,
        dst_crs=dst_crs,
        dst_nodata=np.nan,
        resampling=resampling,
    )
    return destination


def reproject_to_crs(layer: RasterLayer, crs: CRS, resampling: Resampling = Resampling.bilinear) -> RasterLayer:
    """Reproject a layer to ``crs`` on a grid derived from its own extent."""
    if layer.crs == crs:
        return layer
    dst_transform, width, height = calculate_default_transform(
        layer.crs, crs, layer.width, layer.height, *layer.bounds
    )
    logger.info(f"[reproject_to_crs] {layer.name}: {layer.crs} -> {crs} ({height}x{width})")
    data = _warp(layer, dst_transform, crs, height, width, resampling)
    if not np.isfinite(data).any():
        raise NoOverlapError(
            f"Layer '{layer.name}' has no valid cells after reprojection",
            stage="alignment",
            subject=layer.name,
        )
    return RasterLayer(name=layer.name, data=data, transform=dst_transform, crs=crs, nodata=layer.nodata)


def resample_to_template(layer: RasterLayer, template: RasterLayer,
                         resampling: Resampling = Resampling.bilinear) -> RasterLayer:
    """Warp ``layer`` directly onto the template's CRS, transform and shape."""
    if layer.same_grid(template):
        return layer
    source_bounds = transform_bounds(layer.crs, template.crs, *layer.bounds)
    if not _bounds_intersect(source_bounds, template.bounds):
        raise NoOverlapError(
            f"Layer '{layer.name}' extent {tuple(round(v, 3) for v in source_bounds)} does not "
            f"overlap template '{template.name}' extent {template.bounds}",
            stage="alignment",
            subject=layer.name,
        )
    data = _warp(layer, template.transform, template.crs, template.height, template.width, resampling)
    if not np.isfinite(data).any():
        raise NoOverlapError(
            f"Layer '{layer.name}' has no valid cells on the template grid",
            stage="alignment",
            subject=layer.name,
        )
    return RasterLayer(name=layer.name, data=data, transform=template.transform,
                       crs=template.crs, nodata=layer.nodata)


def align_layers(
    layers: Mapping[str, RasterLayer],
    target_crs,
    template: str,
    resampling: Optional[Dict[str, str]] = None,
    order: Optional[Sequence[str]] = None,
    strategy: str = DIRECT_STRATEGY,
) -> RasterStack:
    """Build a stack whose layers all share the template's reprojected grid.

    The template layer is reprojected to ``target_crs``. With the ``direct``
    strategy every other layer is warped straight onto that grid, so each
    source is resampled only once. With ``project_first`` each layer is
    reprojected to ``target_crs`` on its own grid and then resampled onto the
    template.
    """
    if strategy not in TEMPLATE_STRATEGIES:
        raise ConfigurationError(
            f"Unknown template strategy '{strategy}'; use one of {TEMPLATE_STRATEGIES}",
            stage="alignment",
        )
    if template not in layers:
        raise ConfigurationError(f"Template layer '{template}' not provided", stage="alignment", subject=template)
    crs = resolve_crs(target_crs, subject=template)
    methods = resampling or {}
    names = list(order) if order else list(layers)

    reference = reproject_to_crs(
        layers[template], crs, resolve_resampling(methods.get(template, "bilinear"), template)
    )
    logger.info(
        f"[align_layers] Template '{template}' grid: {reference.height}x{reference.width}, "
        f"cell={reference.cell_size}, crs={crs}"
    )
    aligned = []
    for name in names:
        if name == template:
            aligned.append(reference)
            continue
        method = resolve_resampling(methods.get(name, "bilinear"), name)
        source = layers[name]
        if strategy == PROJECT_FIRST_STRATEGY:
            source = reproject_to_crs(source, crs, method)
        aligned.append(resample_to_template(source, reference, method))
        logger.info(f"[align_layers] Aligned '{name}' with {method.name} resampling ({strategy})")
    return RasterStack(aligned)
