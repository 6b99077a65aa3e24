import numpy as np
import pytest

from anchordrag.errors import DegenerateModelWarning, ModelDegeneracyError
from anchordrag.maxent import MaxentModel, linear_beta, regularization_strength
from anchordrag.metrics import presence_background_auc


@pytest.fixture
def samples():
    rng = np.random.default_rng(42)
    background = rng.normal(0.0, 1.0, size=(500, 2))
    presence = np.column_stack([rng.normal(1.5, 0.5, 60), rng.normal(0.0, 1.0, 60)])
    return presence, background


def test_linear_beta_table():
    assert linear_beta(5) == 1.0
    assert linear_beta(10) == 1.0
    assert linear_beta(30) == pytest.approx(0.2)
    assert linear_beta(100) == pytest.approx(0.05)
    assert linear_beta(1000) == pytest.approx(0.05)
    assert 0.05 < linear_beta(60) < 0.2


def test_penalty_scales_with_multiplier():
    assert regularization_strength(2.0, 30) == pytest.approx(2 * regularization_strength(1.0, 30))
    assert regularization_strength(0.0, 30) == 0.0


def test_model_learns_presence_direction(samples):
    presence, background = samples
    model = MaxentModel(beta_multiplier=1.0).fit(presence, background, feature_names=["a", "b"])
    coefficients = model.coefficients()
    assert coefficients["a"] > 0
    assert abs(coefficients["b"]) < coefficients["a"]
    auc = presence_background_auc(model.predict_cloglog(presence), model.predict_cloglog(background))
    assert auc > 0.8


def test_cloglog_stays_in_open_unit_interval(samples):
    presence, background = samples
    model = MaxentModel().fit(presence, background)
    extreme = np.array([[50.0, 0.0], [-50.0, 0.0], [0.0, 0.0]])
    values = np.concatenate([model.predict_cloglog(background), model.predict_cloglog(extreme)])
    assert (values > 0).all()
    assert (values < 1).all()
    assert (values.astype(np.float32) < 1).all()


def test_raw_output_sums_to_one_over_training_background(samples):
    presence, background = samples
    model = MaxentModel().fit(presence, background)
    augmented = np.vstack([background, presence])
    assert model.predict_raw(augmented).sum() == pytest.approx(1.0)


def test_stronger_regularization_shrinks_weights(samples):
    presence, background = samples
    weak = MaxentModel(beta_multiplier=0.5).fit(presence, background)
    strong = MaxentModel(beta_multiplier=5.0).fit(presence, background)
    assert np.abs(strong.weights_).sum() < np.abs(weak.weights_).sum()


def test_clamping_limits_extrapolation(samples):
    presence, background = samples
    model = MaxentModel(clamp=True).fit(presence, background)
    upper = model.upper_[0]
    at_edge = model.decision_function(np.array([[upper, 0.0]]))
    beyond = model.decision_function(np.array([[upper + 100.0, 0.0]]))
    assert beyond[0] == pytest.approx(at_edge[0])


def test_zero_variance_predictor_warns_and_is_excluded(samples):
    presence, background = samples
    presence = np.column_stack([presence, np.full(len(presence), 3.0)])
    background = np.column_stack([background, np.full(len(background), 3.0)])
    with pytest.warns(DegenerateModelWarning, match="constant"):
        model = MaxentModel().fit(presence, background, feature_names=["a", "b", "constant"])
    assert model.coefficients()["constant"] == 0.0
    assert (model.predict_cloglog(background) > 0).all()


def test_all_predictors_constant_is_degenerate():
    presence = np.ones((5, 2))
    background = np.ones((50, 2))
    with pytest.warns(DegenerateModelWarning):
        with pytest.raises(ModelDegeneracyError):
            MaxentModel().fit(presence, background)


def test_unregularized_separable_fit_is_rejected():
    rng = np.random.default_rng(0)
    presence = rng.uniform(5.0, 6.0, size=(20, 1))
    background = rng.uniform(0.0, 1.0, size=(200, 1))
    with pytest.raises(ModelDegeneracyError):
        MaxentModel(beta_multiplier=0.0).fit(presence, background)


def test_unregularized_overlapping_fit_is_bounded(samples):
    presence, background = samples
    model = MaxentModel(beta_multiplier=0.0).fit(presence, background)
    assert np.isfinite(model.weights_).all()
    assert presence_background_auc(model.predict_cloglog(presence), model.predict_cloglog(background)) > 0.8
