import numpy as np
import pytest

from anchordrag.currents import current_speed, mean_current_speed

from conftest import SIZE, make_layer


def test_speed_is_vector_norm():
    u = make_layer("uo", np.full((SIZE, SIZE), 3.0))
    v = make_layer("vo", np.full((SIZE, SIZE), -4.0))
    speed = current_speed(u, v)
    assert speed.name == "current"
    assert speed.same_grid(u)
    np.testing.assert_allclose(speed.data, 5.0)


def test_mean_speed_ignores_missing_days():
    first_u = np.full((SIZE, SIZE), 1.0)
    first_u[0, 0] = np.nan
    pairs = [
        (make_layer("uo", first_u), make_layer("vo", np.zeros((SIZE, SIZE)))),
        (make_layer("uo", np.full((SIZE, SIZE), 3.0)), make_layer("vo", np.zeros((SIZE, SIZE)))),
    ]
    mean = mean_current_speed(pairs, name="current_speed")
    assert mean.name == "current_speed"
    assert mean.data[0, 0] == pytest.approx(3.0)
    assert mean.data[5, 5] == pytest.approx(2.0)


def test_mean_speed_needs_components():
    with pytest.raises(ValueError):
        mean_current_speed([])
