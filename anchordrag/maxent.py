"""Regularised maximum-entropy density-ratio model with linear features.

The fitted density over background locations has the exponential-family form
``q(x) = exp(w . f(x)) / Z`` where ``f`` are the standardised raw predictors.
Weights minimise the L1-penalised Maxent objective

    L(w) = -mean_presence(w . f) + log sum_background exp(w . f) + sum_j lambda_j |w_j|

which is the maximum-entropy distribution whose feature expectations match the
presence sample within the regularisation tolerance. Predictions are reported
through the complementary log-log link ``1 - exp(-exp(H) * q(x))`` where ``H``
is the entropy of ``q`` over the background.
"""

import logging
import warnings
from typing import List, Optional, Sequence

import numpy as np
from scipy.optimize import linprog, minimize
from scipy.special import logsumexp, softmax

from anchordrag.errors import DegenerateModelWarning, ModelDegeneracyError

logger = logging.getLogger(__name__)

# Maxent's linear-feature regularisation table (presence count -> beta)
LINEAR_BETA_THRESHOLDS = (0.0, 10.0, 30.0, 100.0)
LINEAR_BETA_VALUES = (1.0, 1.0, 0.2, 0.05)

# float32-safe open interval for cloglog output
CLOGLOG_LOWER = 1e-12
CLOGLOG_UPPER = 1.0 - 1e-6


def linear_beta(n_presence: int) -> float:
    """Maxent linear-feature beta for a presence count, interpolated from the table."""
    return float(np.interp(n_presence, LINEAR_BETA_THRESHOLDS, LINEAR_BETA_VALUES))


def regularization_strength(beta_multiplier: float, n_presence: int) -> float:
    """L1 penalty applied to each standardised feature weight."""
    return beta_multiplier * linear_beta(n_presence) / np.sqrt(max(n_presence, 1))


def zero_variance_columns(X: np.ndarray) -> np.ndarray:
    """Boolean mask of columns whose values never change."""
    spread = np.nanmax(X, axis=0) - np.nanmin(X, axis=0)
    return spread <= 0.0


def presence_outside_background_hull(presence: np.ndarray, background: np.ndarray) -> bool:
    """True when the presence feature mean is not a convex combination of background rows.

    In that case some direction separates presence from background and the
    unpenalised objective has no finite minimiser.
    """
    n_background = background.shape[0]
    target = presence.mean(axis=0)
    a_eq = np.vstack([background.T, np.ones((1, n_background))])
    b_eq = np.concatenate([target, [1.0]])
    result = linprog(
        c=np.zeros(n_background),
        A_eq=a_eq,
        b_eq=b_eq,
        bounds=(0, None),
        method="highs",
    )
    return result.status == 2


def check_degeneracy(
    presence: np.ndarray,
    background: np.ndarray,
    feature_names: Sequence[str],
    beta_multiplier: float,
) -> np.ndarray:
    """Validate training matrices before fitting; return the usable-column mask.

    Zero-variance predictors are reported with :class:`DegenerateModelWarning`
    and excluded. Raises :class:`ModelDegeneracyError` when no predictor is
    usable or when an unpenalised fit would be unbounded.
    """
    combined = np.vstack([presence, background])
    constant = zero_variance_columns(combined)
    for name in np.asarray(feature_names)[constant]:
        warnings.warn(
            f"Predictor '{name}' has zero variance in the training data and is excluded from the fit",
            DegenerateModelWarning,
            stacklevel=3,
        )
    active = ~constant
    if not active.any():
        raise ModelDegeneracyError(
            "Every predictor has zero variance; the model would be uniform",
            stage="model",
            subject=",".join(feature_names),
        )
    if beta_multiplier <= 0.0 and presence_outside_background_hull(presence[:, active], background[:, active]):
        raise ModelDegeneracyError(
            "Presence and background are separable and the fit is unregularised; "
            "the likelihood has no finite optimum",
            stage="model",
        )
    return active


class MaxentModel:
    """Linear-feature Maxent fitted by L-BFGS-B on the split ``w = w+ - w-``."""

    def __init__(
        self,
        beta_multiplier: float = 1.0,
        add_samples_to_background: bool = True,
        clamp: bool = True,
        max_iter: int = 1000,
        tol: float = 1e-9,
    ):
        self.beta_multiplier = beta_multiplier
        self.add_samples_to_background = add_samples_to_background
        self.clamp = clamp
        self.max_iter = max_iter
        self.tol = tol

    def __repr__(self) -> str:
        return f"MaxentModel(beta_multiplier={self.beta_multiplier}, clamp={self.clamp})"

    def _features(self, X: np.ndarray) -> np.ndarray:
        X = np.asarray(X, dtype=np.float64)
        if self.clamp:
            X = np.clip(X, self.lower_, self.upper_)
        return (X[:, self.active_] - self.mean_) / self.scale_

    def fit(self, presence: np.ndarray, background: np.ndarray,
            feature_names: Optional[List[str]] = None) -> "MaxentModel":
        presence = np.asarray(presence, dtype=np.float64)
        background = np.asarray(background, dtype=np.float64)
        n_features = presence.shape[1]
        self.feature_names_ = list(feature_names or [f"x{i}" for i in range(n_features)])
        self.active_ = check_degeneracy(presence, background, self.feature_names_, self.beta_multiplier)

        if self.add_samples_to_background:
            background = np.vstack([background, presence])
        training = np.vstack([presence, background])
        self.lower_ = training.min(axis=0)
        self.upper_ = training.max(axis=0)
        active_training = training[:, self.active_]
        self.mean_ = active_training.mean(axis=0)
        self.scale_ = active_training.std(axis=0)

        fp = (presence[:, self.active_] - self.mean_) / self.scale_
        fb = (background[:, self.active_] - self.mean_) / self.scale_
        n_active = fp.shape[1]
        presence_mean = fp.mean(axis=0)
        penalty = regularization_strength(self.beta_multiplier, presence.shape[0])

        def objective(params: np.ndarray):
            w = params[:n_active] - params[n_active:]
            eta = fb @ w
            loss = -presence_mean @ w + logsumexp(eta) + penalty * params.sum()
            grad_w = -presence_mean + softmax(eta) @ fb
            grad = np.concatenate([grad_w + penalty, -grad_w + penalty])
            return loss, grad

        result = minimize(
            objective,
            x0=np.zeros(2 * n_active),
            jac=True,
            method="L-BFGS-B",
            bounds=[(0.0, None)] * (2 * n_active),
            options={"maxiter": self.max_iter, "ftol": self.tol, "gtol": 1e-7},
        )
        if not result.success:
            logger.warning(f"[MaxentModel.fit] optimiser stopped early: {result.message}")
        self.converged_ = bool(result.success)
        self.n_iter_ = int(result.nit)

        weights = result.x[:n_active] - result.x[n_active:]
        self.weights_ = weights
        coef = np.zeros(n_features)
        coef[self.active_] = weights / self.scale_
        self.coef_ = coef
        self.regularization_ = penalty
        self.n_presence_ = presence.shape[0]
        self.n_background_ = background.shape[0]

        eta_background = fb @ weights
        self.log_norm_ = float(logsumexp(eta_background))
        raw_background = np.exp(eta_background - self.log_norm_)
        self.entropy_ = float(-(raw_background * (eta_background - self.log_norm_)).sum())
        self.gain_ = float(presence_mean @ weights - self.log_norm_ + np.log(self.n_background_))
        return self

    def decision_function(self, X: np.ndarray) -> np.ndarray:
        """Linear predictor ``w . f(x)``."""
        return self._features(X) @ self.weights_

    def predict_raw(self, X: np.ndarray) -> np.ndarray:
        """Density over the training background, summing to one over it."""
        return np.exp(self.decision_function(X) - self.log_norm_)

    def predict_cloglog(self, X: np.ndarray) -> np.ndarray:
        exponent = self.entropy_ + self.decision_function(X) - self.log_norm_
        probability = -np.expm1(-np.exp(np.minimum(exponent, 700.0)))
        return np.clip(probability, CLOGLOG_LOWER, CLOGLOG_UPPER)

    def coefficients(self) -> dict:
        """Per-predictor weights on the raw (unstandardised) scale."""
        return {name: float(value) for name, value in zip(self.feature_names_, self.coef_)}
