"""Anchor-drag cable damage risk mapping with presence/background Maxent models."""

from anchordrag.config import PredictorSource, RunConfig, load_run_config
from anchordrag.errors import (
    AlignmentError,
    AnchorDragError,
    CRSError,
    ConfigurationError,
    DegenerateModelWarning,
    GeometryError,
    InsufficientDataError,
    ModelDegeneracyError,
    NoOverlapError,
    SamplingError,
)
from anchordrag.maxent import MaxentModel
from anchordrag.pipeline import PipelineInputs, PipelineResult, run_pipeline
from anchordrag.raster import RasterLayer, RasterStack

__version__ = "0.1.0"

__all__ = [
    "AlignmentError",
    "AnchorDragError",
    "CRSError",
    "ConfigurationError",
    "DegenerateModelWarning",
    "GeometryError",
    "InsufficientDataError",
    "MaxentModel",
    "ModelDegeneracyError",
    "NoOverlapError",
    "PipelineInputs",
    "PipelineResult",
    "PredictorSource",
    "RasterLayer",
    "RasterStack",
    "RunConfig",
    "SamplingError",
    "load_run_config",
    "run_pipeline",
]
