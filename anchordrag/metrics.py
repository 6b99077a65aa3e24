"""Diagnostics for fitted models and prediction surfaces."""

from typing import Dict

import numpy as np
from sklearn.metrics import roc_auc_score

from anchordrag.raster import RasterLayer


def presence_background_auc(presence_scores: np.ndarray, background_scores: np.ndarray) -> float:
    """
    Area under the ROC curve discriminating presence from background scores.

    Args:
        presence_scores: Model output at presence locations
        background_scores: Model output at background locations

    Returns:
        AUC in [0, 1], or NaN when either group is empty
    """
    presence_scores = np.asarray(presence_scores, dtype=np.float64)
    background_scores = np.asarray(background_scores, dtype=np.float64)
    if presence_scores.size == 0 or background_scores.size == 0:
        # Only one class present, cannot compute a meaningful AUC
        return float("nan")
    y_true = np.concatenate([np.ones(presence_scores.size), np.zeros(background_scores.size)])
    y_score = np.concatenate([presence_scores, background_scores])
    return float(roc_auc_score(y_true, y_score))


def surface_summary(surface: RasterLayer) -> Dict[str, float]:
    """Count and distribution of the valid cells of a surface."""
    values = surface.data[np.isfinite(surface.data)]
    if values.size == 0:
        return {"valid_cells": 0, "min": float("nan"), "max": float("nan"),
                "mean": float("nan"), "median": float("nan")}
    return {
        "valid_cells": int(values.size),
        "min": float(values.min()),
        "max": float(values.max()),
        "mean": float(values.mean()),
        "median": float(np.median(values)),
    }


def risk_quantile(surface: RasterLayer, quantile: float = 0.9) -> float:
    """Quantile of valid cells, used as the high-risk threshold of a surface."""
    values = surface.data[np.isfinite(surface.data)]
    if values.size == 0:
        return float("nan")
    return float(np.quantile(values.astype(np.float64), quantile))


def high_risk_fraction(surface: RasterLayer, threshold: float) -> float:
    values = surface.data[np.isfinite(surface.data)]
    if values.size == 0:
        return float("nan")
    return float((values >= threshold).mean())
