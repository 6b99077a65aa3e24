"""Exception taxonomy for the anchor-drag risk pipeline.

Every error raised by a pipeline stage derives from :class:`AnchorDragError` and
carries the run name, stage and subject (layer, point set or geometry name) so a
failure can be acted upon without re-running the pipeline.
"""

from typing import Optional


class AnchorDragError(Exception):
    """Base error carrying run/stage/subject context."""

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        run: Optional[str] = None,
        subject: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.run = run
        self.subject = subject

    def __str__(self) -> str:
        context = []
        if self.run:
            context.append(f"run={self.run}")
        if self.stage:
            context.append(f"stage={self.stage}")
        if self.subject:
            context.append(f"subject={self.subject}")
        if not context:
            return self.message
        return f"{self.message} [{', '.join(context)}]"


class ConfigurationError(AnchorDragError):
    pass


class AlignmentError(AnchorDragError):
    pass


class CRSError(AlignmentError):
    """Coordinate reference system could not be resolved."""


class NoOverlapError(AlignmentError):
    """Source layer shares no extent with the reference grid."""


class GeometryError(AnchorDragError):
    """Empty, invalid or zero-area vector geometry."""


class SamplingError(AnchorDragError):
    """Background sampling domain cannot supply the requested points."""


class InsufficientDataError(AnchorDragError):
    """Too few presence/background rows for the requested fold count."""


class ModelDegeneracyError(AnchorDragError):
    """Training data cannot yield a bounded, informative model."""


class DegenerateModelWarning(UserWarning):
    """A predictor carries no information (zero variance) and was dropped."""


__all__ = [
    "AnchorDragError",
    "ConfigurationError",
    "AlignmentError",
    "CRSError",
    "NoOverlapError",
    "GeometryError",
    "SamplingError",
    "InsufficientDataError",
    "ModelDegeneracyError",
    "DegenerateModelWarning",
]
