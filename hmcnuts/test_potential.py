"""
Tests for named parameter layouts and potentials.
"""
import jax.numpy as jnp
import numpy as np
import pytest

from hmcnuts.errors import ModelMismatchError
from hmcnuts.potential import ParameterLayout, potential_from_functions, potential_from_logdensity


@pytest.fixture
def layout():
    return ParameterLayout.from_free_variables({"mu": (), "beta": (2, 3), "sigma": 1.0})


def test_layout_slots(layout):
    assert layout.names == ("mu", "beta", "sigma")
    assert layout.shapes == ((), (2, 3), ())
    assert layout.offsets == (0, 1, 7)
    assert layout.size == 8
    assert layout.slot("beta") == slice(1, 7)


def test_flatten_unflatten(layout):
    beta = np.arange(6.0).reshape(2, 3)
    flat = layout.flatten({"sigma": 2.0, "beta": beta, "mu": -1.0})

    assert flat.shape == (8,)
    assert np.allclose(flat, [-1.0, 0, 1, 2, 3, 4, 5, 2.0])

    values = layout.unflatten(flat)
    assert values["mu"].shape == ()
    assert np.array_equal(values["beta"], beta)
    assert float(values["sigma"]) == 2.0


def test_split_samples(layout):
    samples = np.arange(24.0).reshape(3, 8)
    out = layout.split_samples(samples)

    assert out["mu"].shape == (3,)
    assert out["beta"].shape == (3, 2, 3)
    assert np.array_equal(out["sigma"], [7.0, 15.0, 23.0])


def test_check_names_reports_both_sides(layout):
    with pytest.raises(ModelMismatchError) as err:
        layout.check_names({"mu": 0.0, "beta": 0.0, "tau": 1.0})

    message = str(err.value)
    assert "missing free variables ['sigma']" in message
    assert "unexpected names ['tau']" in message


def test_flatten_rejects_wrong_shape(layout):
    with pytest.raises(ModelMismatchError, match="'beta' has shape"):
        layout.flatten({"mu": 0.0, "beta": np.zeros(6), "sigma": 1.0})


def test_empty_layout():
    with pytest.raises(ModelMismatchError):
        ParameterLayout.from_free_variables({})


def test_potential_from_logdensity():
    def logdensity(position):
        return -0.5 * position["a"] ** 2 - jnp.sum(position["b"])

    potential = potential_from_logdensity(logdensity, {"a": (), "b": (2,)})

    assert potential.free_variable_names == ("a", "b")
    assert potential.jittable
    assert potential.log_density({"a": 2.0, "b": [1.0, 1.0]}) == pytest.approx(-4.0)

    grad = potential.gradient({"a": 2.0, "b": [1.0, 1.0]})
    assert float(grad["a"]) == pytest.approx(-2.0)
    assert np.allclose(grad["b"], [-1.0, -1.0])


def test_potential_rejects_unknown_position():
    potential = potential_from_logdensity(lambda position: -position["a"] ** 2, {"a": ()})

    with pytest.raises(ModelMismatchError):
        potential.log_density({"b": 1.0})


def test_external_gradient_key_mismatch():
    potential = potential_from_functions(
        lambda position: 0.0,
        lambda position: {"wrong": 0.0},
        {"a": ()},
    )

    assert not potential.jittable
    with pytest.raises(ModelMismatchError, match="gradient"):
        potential.logdensity_and_grad(jnp.zeros(1))
