"""Cross-validated and full-data Maxent fits projected onto the raster stack."""

import logging
import warnings
from dataclasses import dataclass, field
from typing import Dict, List, Tuple, Type

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.model_selection import KFold
from tqdm import tqdm

from anchordrag.errors import InsufficientDataError, ModelDegeneracyError
from anchordrag.features import LABEL_COLUMN
from anchordrag.maxent import MaxentModel
from anchordrag.metrics import presence_background_auc
from anchordrag.raster import RasterLayer, RasterStack

logger = logging.getLogger(__name__)


@dataclass
class FoldResult:
    fold: int
    model: MaxentModel
    surface: RasterLayer
    n_train_presence: int
    n_train_background: int
    n_test_presence: int
    n_test_background: int
    train_auc: float
    test_auc: float
    # (message, category) pairs raised while fitting, replayed in the calling process
    fit_warnings: List[Tuple[str, Type[Warning]]] = field(default_factory=list)

    def diagnostics(self) -> Dict:
        return {
            "fold": self.fold,
            "n_train_presence": self.n_train_presence,
            "n_train_background": self.n_train_background,
            "n_test_presence": self.n_test_presence,
            "n_test_background": self.n_test_background,
            "train_auc": self.train_auc,
            "test_auc": self.test_auc,
            "regularization": self.model.regularization_,
            "entropy": self.model.entropy_,
            "converged": self.model.converged_,
            "coefficients": self.model.coefficients(),
        }


@dataclass
class CrossValidationResult:
    surface: RasterLayer
    folds: List[FoldResult]

    @property
    def fold_surfaces(self) -> List[RasterLayer]:
        return [f.surface for f in self.folds]

    @property
    def mean_test_auc(self) -> float:
        scores = [f.test_auc for f in self.folds if np.isfinite(f.test_auc)]
        return float(np.mean(scores)) if scores else float("nan")

    def diagnostics(self) -> Dict:
        return {
            "mean_test_auc": self.mean_test_auc,
            "folds": [f.diagnostics() for f in self.folds],
        }


@dataclass
class FullFitResult:
    surface: RasterLayer
    model: MaxentModel
    train_auc: float
    jackknife: Dict[str, Dict[str, float]] = field(default_factory=dict)

    def diagnostics(self) -> Dict:
        return {
            "train_auc": self.train_auc,
            "regularization": self.model.regularization_,
            "entropy": self.model.entropy_,
            "gain": self.model.gain_,
            "converged": self.model.converged_,
            "coefficients": self.model.coefficients(),
            "jackknife": self.jackknife,
        }


def split_table(table: pd.DataFrame, predictors: List[str]) -> Tuple[np.ndarray, np.ndarray]:
    """Presence and background predictor matrices from a labelled table."""
    missing = [name for name in predictors if name not in table.columns]
    if missing:
        raise InsufficientDataError(f"Training table lacks predictors {missing}", stage="model")
    labels = table[LABEL_COLUMN].to_numpy()
    values = table[predictors].to_numpy(dtype=np.float64)
    return values[labels == 1], values[labels == 0]


def require_rows(presence: np.ndarray, background: np.ndarray, minimum: int) -> None:
    """Fail when either class has fewer than ``minimum`` rows."""
    if presence.shape[0] < minimum:
        raise InsufficientDataError(
            f"{presence.shape[0]} presence rows survive filtering, {minimum} required",
            stage="model",
            subject="presence",
        )
    if background.shape[0] < minimum:
        raise InsufficientDataError(
            f"{background.shape[0]} background rows survive filtering, {minimum} required",
            stage="model",
            subject="background",
        )


def assign_folds(n_rows: int, n_folds: int, rng: np.random.Generator) -> np.ndarray:
    """Random, balanced fold index per row drawn from ``rng``."""
    seed = int(rng.integers(0, 2**31 - 1))
    folds = np.empty(n_rows, dtype=np.int64)
    splitter = KFold(n_splits=n_folds, shuffle=True, random_state=seed)
    for fold, (_, test_index) in enumerate(splitter.split(np.zeros((n_rows, 1)))):
        folds[test_index] = fold
    return folds


def predict_surface(model: MaxentModel, stack: RasterStack, name: str) -> RasterLayer:
    """Cloglog prediction for every cell with a complete predictor vector."""
    cube = stack.array()
    valid = np.all(np.isfinite(cube), axis=0)
    surface = np.full(stack.shape, np.nan, dtype=np.float32)
    if valid.any():
        surface[valid] = model.predict_cloglog(cube[:, valid].T.astype(np.float64))
    reference = stack.reference
    return RasterLayer(name=name, data=surface, transform=reference.transform, crs=reference.crs,
                       nodata=reference.nodata)


def _fit_fold(
    fold: int,
    presence: np.ndarray,
    background: np.ndarray,
    presence_folds: np.ndarray,
    background_folds: np.ndarray,
    stack: RasterStack,
    predictors: List[str],
    beta_multiplier: float,
) -> FoldResult:
    train_p = presence[presence_folds != fold]
    train_b = background[background_folds != fold]
    test_p = presence[presence_folds == fold]
    test_b = background[background_folds == fold]

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        model = MaxentModel(beta_multiplier=beta_multiplier).fit(train_p, train_b, feature_names=predictors)
    train_auc = presence_background_auc(model.predict_cloglog(train_p), model.predict_cloglog(train_b))
    test_auc = presence_background_auc(model.predict_cloglog(test_p), model.predict_cloglog(test_b))
    surface = predict_surface(model, stack, name=f"fold_{fold}")
    return FoldResult(
        fold=fold,
        model=model,
        surface=surface,
        n_train_presence=int(train_p.shape[0]),
        n_train_background=int(train_b.shape[0]),
        n_test_presence=int(test_p.shape[0]),
        n_test_background=int(test_b.shape[0]),
        train_auc=train_auc,
        test_auc=test_auc,
        fit_warnings=[(str(w.message), w.category) for w in caught],
    )


def cross_validate(
    table: pd.DataFrame,
    stack: RasterStack,
    beta_multiplier: float,
    n_folds: int,
    rng: np.random.Generator,
    n_jobs: int = 1,
    name: str = "cv_average",
) -> CrossValidationResult:
    """k-fold Maxent fits and their cell-wise mean prediction surface.

    Presence and background rows are partitioned into folds independently;
    each fold is held out once and the model fitted on the rest predicts the
    whole stack.
    """
    predictors = stack.names
    presence, background = split_table(table, predictors)
    require_rows(presence, background, n_folds)

    presence_folds = assign_folds(presence.shape[0], n_folds, rng)
    background_folds = assign_folds(background.shape[0], n_folds, rng)
    logger.info(
        f"[cross_validate] {n_folds} folds over {presence.shape[0]} presence / "
        f"{background.shape[0]} background rows (beta={beta_multiplier})"
    )

    args = (presence, background, presence_folds, background_folds, stack, predictors, beta_multiplier)
    if n_jobs == 1:
        folds = [_fit_fold(fold, *args) for fold in tqdm(range(n_folds), desc="cv folds")]
    else:
        folds = Parallel(n_jobs=n_jobs)(delayed(_fit_fold)(fold, *args) for fold in range(n_folds))

    for result in folds:
        for message, category in result.fit_warnings:
            warnings.warn(f"fold {result.fold}: {message}", category, stacklevel=2)
        logger.info(
            f"[cross_validate] fold {result.fold}: train AUC {result.train_auc:.4f}, "
            f"test AUC {result.test_auc:.4f}"
        )

    cube = np.stack([result.surface.data.astype(np.float64) for result in folds], axis=0)
    average = np.full(stack.shape, np.nan, dtype=np.float64)
    valid = np.all(np.isfinite(cube), axis=0)
    average[valid] = cube[:, valid].mean(axis=0)
    reference = folds[0].surface
    surface = RasterLayer(name=name, data=average, transform=reference.transform, crs=reference.crs,
                          nodata=reference.nodata)
    return CrossValidationResult(surface=surface, folds=folds)


def jackknife_importance(
    presence: np.ndarray,
    background: np.ndarray,
    predictors: List[str],
    beta_multiplier: float,
) -> Dict[str, Dict[str, float]]:
    """Training gain and AUC with each predictor alone and with it omitted."""
    importance: Dict[str, Dict[str, float]] = {}
    for index, name in enumerate(predictors):
        entry = {}
        variants = {"only": [index]}
        if len(predictors) > 1:
            variants["without"] = [i for i in range(len(predictors)) if i != index]
        for label, columns in variants.items():
            try:
                model = MaxentModel(beta_multiplier=beta_multiplier).fit(
                    presence[:, columns], background[:, columns],
                    feature_names=[predictors[i] for i in columns],
                )
            except ModelDegeneracyError as exc:
                logger.warning(f"[jackknife_importance] {label} '{name}' skipped: {exc}")
                entry[f"{label}_gain"] = float("nan")
                entry[f"{label}_auc"] = float("nan")
                continue
            entry[f"{label}_gain"] = model.gain_
            entry[f"{label}_auc"] = presence_background_auc(
                model.predict_cloglog(presence[:, columns]),
                model.predict_cloglog(background[:, columns]),
            )
        importance[name] = entry
    return importance


def fit_full(
    table: pd.DataFrame,
    stack: RasterStack,
    beta_multiplier: float,
    jackknife: bool = False,
    name: str = "full",
    minimum_rows: int = 1,
) -> FullFitResult:
    """Single fit on every presence/background row; the final mapping surface."""
    predictors = stack.names
    presence, background = split_table(table, predictors)
    require_rows(presence, background, minimum_rows)
    logger.info(
        f"[fit_full] Fitting on {presence.shape[0]} presence / {background.shape[0]} background rows "
        f"(beta={beta_multiplier})"
    )
    model = MaxentModel(beta_multiplier=beta_multiplier).fit(presence, background, feature_names=predictors)
    train_auc = presence_background_auc(model.predict_cloglog(presence), model.predict_cloglog(background))
    logger.info(f"[fit_full] Training AUC {train_auc:.4f}, gain {model.gain_:.4f}")
    importance = jackknife_importance(presence, background, predictors, beta_multiplier) if jackknife else {}
    surface = predict_surface(model, stack, name=name)
    return FullFitResult(surface=surface, model=model, train_auc=train_auc, jackknife=importance)
