"""Run configuration for corridor and region-wide anchor-drag models.

A YAML document holds a ``defaults`` block and a ``runs`` mapping; each run is
merged over the defaults and materialised into a :class:`RunConfig`.
"""

from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional

import yaml

from anchordrag.alignment import DIRECT_STRATEGY, TEMPLATE_STRATEGIES, resolve_crs
from anchordrag.errors import CRSError, ConfigurationError

RING_POLICY = "ring"
AREA_POLICY = "area"
CONTINUOUS_RESAMPLING = ("bilinear", "cubic", "cubic_spline", "lanczos", "average")


@dataclass
class PredictorSource:
    """A named predictor raster and the resampling used to warp it."""

    name: str
    path: str
    resampling: str = "bilinear"


@dataclass
class RunConfig:
    name: str
    output_dir: str = "outputs"
    target_crs: str = "EPSG:32633"
    template: str = "bathy"
    template_strategy: str = DIRECT_STRATEGY
    predictors: List[PredictorSource] = field(default_factory=list)
    distance_name: str = "dist"
    cable_path: Optional[str] = None
    corridor_path: Optional[str] = None
    aoi_path: Optional[str] = None
    incident_paths: List[str] = field(default_factory=list)
    corridor_buffer_m: float = 5500.0
    ring_inner_m: float = 500.0
    ring_outer_m: float = 1500.0
    background_policy: str = RING_POLICY
    background_size: int = 10000
    clip_ring_to_corridor: bool = True
    regularization: float = 1.0
    full_regularization: Optional[float] = None
    folds: int = 4
    seed: int = 20250725
    n_jobs: int = 1
    jackknife: bool = False
    risk_quantile: float = 0.9
    write_previews: bool = True

    def __post_init__(self) -> None:
        self.predictors = [
            p if isinstance(p, PredictorSource) else PredictorSource(**p)
            for p in self.predictors
        ]
        self.incident_paths = list(self.incident_paths)
        self.validate()

    @property
    def refit_regularization(self) -> float:
        if self.full_regularization is None:
            return self.regularization
        return self.full_regularization

    @property
    def predictor_names(self) -> List[str]:
        return [p.name for p in self.predictors]

    def validate(self) -> None:
        def fail(message: str) -> None:
            raise ConfigurationError(message, stage="config", run=self.name)

        try:
            crs = resolve_crs(self.target_crs)
        except CRSError as exc:
            raise ConfigurationError(exc.message, stage="config", run=self.name, subject="target_crs") from exc
        if not crs.is_projected:
            fail(
                f"target_crs '{self.target_crs}' is not projected; corridor and ring radii "
                "are in metres"
            )
        if self.template_strategy not in TEMPLATE_STRATEGIES:
            fail(f"Unknown template strategy '{self.template_strategy}'; use one of {TEMPLATE_STRATEGIES}")
        names = self.predictor_names
        if len(set(names)) != len(names):
            fail(f"Duplicate predictor names: {names}")
        if names and self.template not in names:
            fail(f"Template layer '{self.template}' is not a configured predictor")
        for source in self.predictors:
            if source.resampling not in CONTINUOUS_RESAMPLING:
                fail(
                    f"Resampling '{source.resampling}' not allowed for continuous "
                    f"predictor '{source.name}'; use one of {CONTINUOUS_RESAMPLING}"
                )
        if self.background_policy not in (RING_POLICY, AREA_POLICY):
            fail(f"Unknown background policy '{self.background_policy}'")
        if self.corridor_buffer_m <= 0:
            fail("corridor_buffer_m must be positive")
        if self.ring_inner_m < 0 or self.ring_outer_m <= 0:
            fail("Ring radii must be non-negative with a positive outer radius")
        if self.ring_inner_m >= self.ring_outer_m:
            fail(
                f"Ring inner radius {self.ring_inner_m} must be smaller than "
                f"outer radius {self.ring_outer_m}"
            )
        if self.background_size < 1:
            fail("background_size must be at least 1")
        if self.folds < 2:
            fail(f"At least 2 folds are required, got {self.folds}")
        if self.regularization < 0:
            fail("regularization must be non-negative")
        if self.full_regularization is not None and self.full_regularization < 0:
            fail("full_regularization must be non-negative")
        if not 0.0 < self.risk_quantile < 1.0:
            fail("risk_quantile must lie in (0, 1)")

    def to_dict(self) -> Dict:
        return asdict(self)


def load_config(config_path: str) -> Dict:
    """Parse the YAML configuration document."""
    with open(config_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def build_run_config(config: Dict, run_name: str) -> RunConfig:
    """Merge ``defaults`` under ``runs[run_name]`` and validate the result."""
    runs = config.get("runs") or {}
    if run_name not in runs:
        raise ConfigurationError(
            f"Run '{run_name}' not found; available runs: {sorted(runs)}",
            stage="config",
            run=run_name,
        )
    merged = dict(config.get("defaults") or {})
    merged.update(runs[run_name] or {})
    merged["name"] = run_name
    try:
        return RunConfig(**merged)
    except TypeError as exc:
        raise ConfigurationError(str(exc), stage="config", run=run_name) from exc


def load_run_config(config_path: str, run_name: str) -> RunConfig:
    """Load the YAML file and build the named run."""
    return build_run_config(load_config(config_path), run_name)
