"""End-to-end anchor-drag risk pipeline: alignment, masking, sampling and Maxent fits.

Usage:
    python -m anchordrag.pipeline --config config.yaml --run bcs
"""

import argparse
import json
import logging
import os
import platform
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Optional

import numpy as np
import pandas as pd
from shapely.geometry.base import BaseGeometry

from anchordrag.alignment import align_layers, resolve_crs
from anchordrag.config import AREA_POLICY, RunConfig, load_run_config
from anchordrag.corridor import apply_corridor, corridor_polygon, validate_polygon
from anchordrag.distance import rebuild_distance_layer
from anchordrag.errors import AnchorDragError, ConfigurationError, GeometryError
from anchordrag.features import build_training_table, write_training_table
from anchordrag.metrics import high_risk_fraction, risk_quantile, surface_summary
from anchordrag.modelling import CrossValidationResult, FullFitResult, cross_validate, fit_full
from anchordrag.raster import RasterLayer, RasterStack, read_raster, save_geotiff
from anchordrag.sampling import (
    PointSet,
    load_geometry,
    load_incidents,
    presence_points,
    ring_domain,
    ring_filter,
    sample_background,
)

logger = logging.getLogger(__name__)


@dataclass
class PipelineInputs:
    """Raw inputs for one run, already loaded from disk."""

    layers: Dict[str, RasterLayer]
    cable: BaseGeometry
    incidents: pd.DataFrame
    corridor: Optional[BaseGeometry] = None
    aoi: Optional[BaseGeometry] = None


@dataclass
class PipelineResult:
    config: RunConfig
    stack: RasterStack
    extent: BaseGeometry
    presence: PointSet
    background: PointSet
    training_table: pd.DataFrame
    cv: CrossValidationResult
    full: FullFitResult
    summary: Dict = field(default_factory=dict)

    @property
    def cv_surface(self) -> RasterLayer:
        return self.cv.surface

    @property
    def full_surface(self) -> RasterLayer:
        return self.full.surface


@contextmanager
def stage(name: str, config: RunConfig):
    """Annotate pipeline errors escaping a stage with the run and stage names."""
    logger.info(f"[{config.name}] stage '{name}' starting")
    try:
        yield
    except AnchorDragError as exc:
        exc.run = exc.run or config.name
        exc.stage = exc.stage or name
        raise


def load_inputs(config: RunConfig) -> PipelineInputs:
    """Read every raster, vector and incident source named by the configuration."""
    crs = resolve_crs(config.target_crs).to_wkt()
    layers = {source.name: read_raster(source.path, source.name) for source in config.predictors}
    if not config.cable_path:
        raise ConfigurationError("cable_path is required", stage="load", run=config.name)
    cable = load_geometry(config.cable_path, crs)
    corridor = load_geometry(config.corridor_path, crs) if config.corridor_path else None
    aoi = load_geometry(config.aoi_path, crs) if config.aoi_path else None
    incidents = load_incidents(config.incident_paths)
    return PipelineInputs(layers=layers, cable=cable, incidents=incidents, corridor=corridor, aoi=aoi)


def _modelling_extent(config: RunConfig, inputs: PipelineInputs) -> BaseGeometry:
    if config.background_policy == AREA_POLICY:
        if inputs.aoi is None:
            raise GeometryError("The area policy requires an AOI polygon", subject="aoi")
        return validate_polygon(inputs.aoi, subject="aoi")
    if inputs.corridor is not None:
        return validate_polygon(inputs.corridor, subject="corridor")
    return corridor_polygon(inputs.cable, config.corridor_buffer_m)


def run_pipeline(config: RunConfig, inputs: PipelineInputs) -> PipelineResult:
    """Run every stage for one corridor or region configuration.

    Each call owns fresh generators seeded from ``config.seed`` (one for
    background sampling, one for fold assignment), so repeated runs produce
    identical training tables and surfaces.
    """
    area_mode = config.background_policy == AREA_POLICY

    with stage("alignment", config):
        crs = resolve_crs(config.target_crs)
        names = config.predictor_names or list(inputs.layers)
        resampling = {p.name: p.resampling for p in config.predictors}
        stack = align_layers(
            inputs.layers, crs, config.template,
            resampling=resampling, order=names, strategy=config.template_strategy,
        )

    with stage("corridor", config):
        extent = _modelling_extent(config, inputs)
        stack = apply_corridor(stack, extent, crop=not area_mode)

    with stage("distance", config):
        stack = rebuild_distance_layer(stack, inputs.cable, name=config.distance_name, mask_geometry=extent)
        logger.info(f"[{config.name}] Stack ready: {stack}")

    with stage("sampling", config):
        crs_wkt = crs.to_wkt()
        presence = presence_points(inputs.incidents, crs_wkt)
        sampling_rng = np.random.default_rng(config.seed)
        if area_mode:
            background = sample_background(extent, config.background_size, sampling_rng, crs_wkt)
        else:
            domain = ring_domain(
                inputs.cable,
                config.ring_inner_m,
                config.ring_outer_m,
                clip=extent if config.clip_ring_to_corridor else None,
            )
            accept = ring_filter(inputs.cable, config.ring_inner_m, config.ring_outer_m)
            background = sample_background(domain, config.background_size, sampling_rng, crs_wkt, accept=accept)

    with stage("features", config):
        table = build_training_table(stack, presence, background)

    with stage("cross_validation", config):
        fold_rng = np.random.default_rng(config.seed)
        cv = cross_validate(table, stack, config.regularization, config.folds, fold_rng, n_jobs=config.n_jobs)

    with stage("full_refit", config):
        full = fit_full(table, stack, config.refit_regularization, jackknife=config.jackknife)

    threshold = risk_quantile(full.surface, config.risk_quantile)
    summary = {
        "run": config.name,
        "stack": {"names": stack.names, "shape": list(stack.shape), "crs": crs.to_string()},
        "n_presence_points": len(presence),
        "n_background_points": len(background),
        "n_training_rows": int(len(table)),
        "n_presence_rows": int((table["drag"] == 1).sum()),
        "n_background_rows": int((table["drag"] == 0).sum()),
        "cross_validation": cv.diagnostics(),
        "full": full.diagnostics(),
        "cv_surface": surface_summary(cv.surface),
        "full_surface": surface_summary(full.surface),
        "risk_threshold": {
            "quantile": config.risk_quantile,
            "value": threshold,
            "fraction_above": high_risk_fraction(full.surface, threshold),
        },
    }
    logger.info(
        f"[{config.name}] Finished: mean CV test AUC {cv.mean_test_auc:.4f}, "
        f"full training AUC {full.train_auc:.4f}, q{config.risk_quantile:.2f}={threshold:.4f}"
    )
    return PipelineResult(
        config=config,
        stack=stack,
        extent=extent,
        presence=presence,
        background=background,
        training_table=table,
        cv=cv,
        full=full,
        summary=summary,
    )


def _environment() -> Dict[str, str]:
    import geopandas
    import rasterio
    import scipy
    import shapely
    import sklearn

    return {
        "python": platform.python_version(),
        "platform": platform.platform(),
        "numpy": np.__version__,
        "pandas": pd.__version__,
        "scipy": scipy.__version__,
        "scikit-learn": sklearn.__version__,
        "rasterio": rasterio.__version__,
        "gdal": rasterio.__gdal_version__,
        "geopandas": geopandas.__version__,
        "shapely": shapely.__version__,
    }


def export_outputs(result: PipelineResult) -> Dict[str, str]:
    """Write the training table, both surfaces, previews and the run summary."""
    config = result.config
    out_dir = config.output_dir
    os.makedirs(out_dir, exist_ok=True)
    paths = {
        "training_table": os.path.join(out_dir, f"training_values_{config.name}.csv"),
        "cv_surface": os.path.join(out_dir, f"risk_{config.name}_cv_cloglog.tif"),
        "full_surface": os.path.join(out_dir, f"risk_{config.name}_full_cloglog.tif"),
        "summary": os.path.join(out_dir, f"summary_{config.name}.json"),
    }
    write_training_table(result.training_table, paths["training_table"])
    save_geotiff(paths["cv_surface"], result.cv_surface)
    save_geotiff(paths["full_surface"], result.full_surface)

    if config.write_previews:
        from anchordrag.visualize import plot_risk_surface

        paths["cv_preview"] = os.path.join(out_dir, f"risk_{config.name}_cv_preview.png")
        paths["full_preview"] = os.path.join(out_dir, f"risk_{config.name}_full_preview.png")
        plot_risk_surface(result.cv_surface, paths["cv_preview"],
                          f"{config.name} (CV average): predicted anchor-drag risk (cloglog)", result.extent)
        plot_risk_surface(result.full_surface, paths["full_preview"],
                          f"{config.name} (full): predicted anchor-drag risk (cloglog)", result.extent)

    summary = dict(result.summary)
    summary["config"] = config.to_dict()
    summary["environment"] = _environment()
    with open(paths["summary"], "w", encoding="utf-8") as f:
        json.dump(summary, f, indent=2, default=float)
    logger.info(f"[{config.name}] Outputs written to {out_dir}")
    return paths


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Anchor-drag cable risk mapping with cross-validated Maxent",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m anchordrag.pipeline --run bcs          # corridor model, ring background
  python -m anchordrag.pipeline --run baltic       # region-wide model, AOI background
        """,
    )
    parser.add_argument("--config", default="config.yaml", help="Path to YAML configuration.")
    parser.add_argument("--run", required=True, help="Run name under 'runs' in the configuration.")
    parser.add_argument("--seed", type=int, default=None, help="Override seed from config.")
    parser.add_argument("--output_dir", default=None, help="Override output directory.")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    config = load_run_config(args.config, args.run)
    if args.seed is not None:
        config.seed = args.seed
    if args.output_dir:
        config.output_dir = args.output_dir

    with stage("load", config):
        inputs = load_inputs(config)
    result = run_pipeline(config, inputs)
    paths = export_outputs(result)
    for key, path in paths.items():
        print(f"{key}: {path}")


if __name__ == "__main__":
    main()
