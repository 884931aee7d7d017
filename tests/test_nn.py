"""Tests for paramtree/nn.py, paramtree/initializers.py and paramtree/rng.py."""

import jax.numpy as jnp
import numpy as np
import pytest

from paramtree import RNG, ModuleListParam, config_context, jax_backend
from paramtree.initializers import (
    Constant,
    RandomNormal,
    RandomUniform,
    VarianceScaling,
    create,
    glorot_uniform,
)
from paramtree.nn import MLP, Linear


class TestRNG:

    def test_next_key_advances(self):
        rng = RNG(0)
        k1, k2 = rng.next_key(), rng.next_key()
        assert not np.array_equal(np.asarray(k1), np.asarray(k2))

    def test_same_seed_same_keys(self):
        assert np.array_equal(np.asarray(RNG(3).next_key()), np.asarray(RNG(3).next_key()))

    def test_split_and_index(self):
        keys = RNG(0).split(4)
        assert len(keys) == 4
        assert len(list(keys)) == 4
        assert isinstance(keys[1], RNG)


class TestInitializers:

    def test_create_uses_config_dtype(self, rng):
        t = create(RandomNormal(), rng, (3, 2))
        assert t.shape == (3, 2)
        assert t.dtype == jnp.float32

    def test_create_with_dtype_override(self, rng):
        with config_context(default_dtype="float16"):
            assert create(Constant(1.0), rng, (2,)).dtype == jnp.float16

    def test_constant(self, rng):
        t = create(Constant(2.5), rng, (2, 2))
        np.testing.assert_array_equal(np.asarray(t), np.full((2, 2), 2.5))

    def test_uniform_bounds(self, rng):
        t = create(RandomUniform(-0.1, 0.1), rng, (100,))
        arr = np.asarray(t)
        assert arr.min() >= -0.1 and arr.max() <= 0.1

    def test_glorot_limit(self, rng):
        arr = np.asarray(create(glorot_uniform(), rng, (10, 30)))
        limit = np.sqrt(3.0 / 20.0)
        assert np.all(np.abs(arr) <= limit)

    def test_variance_scaling_validates(self):
        with pytest.raises(ValueError):
            VarianceScaling(mode="fan_sideways")
        with pytest.raises(ValueError):
            VarianceScaling(distribution="cauchy")
        with pytest.raises(ValueError):
            VarianceScaling(scale=-1.0)

    def test_raw_key_accepted(self, rng):
        t = create(RandomNormal(), rng.next_key(), (2,))
        assert t.shape == (2,)

    def test_rejects_other_keys(self):
        with pytest.raises(ValueError):
            create(RandomNormal(), 42, (2,))


class TestLinear:

    def test_counts(self, rng):
        assert Linear(4, 3, rng).num_params() == 15
        assert Linear(4, 3, rng, bias=False).num_params() == 12

    def test_state_keys(self, rng):
        assert list(Linear(4, 3, rng).state().keys()) == ["weight", "bias"]

    def test_forward(self, rng):
        layer = Linear(2, 2, rng, initializer=Constant(1.0))
        y = layer(jnp.array([[1.0, 2.0]]))
        np.testing.assert_allclose(np.asarray(y), [[3.0, 3.0]])

    def test_forward_without_bias(self, rng):
        layer = Linear(2, 1, rng, bias=False, initializer=Constant(2.0))
        np.testing.assert_allclose(np.asarray(layer(jnp.ones((1, 2)))), [[4.0]])

    def test_inference_backend(self, rng):
        layer = Linear(2, 2, rng, backend=jax_backend)
        assert layer.weight.value.backend == jax_backend


class TestMLP:

    def test_layers_are_a_module_list(self, rng):
        mlp = MLP([3, 4, 2], rng)
        assert isinstance(mlp.layers, ModuleListParam)
        assert len(mlp.layers) == 2
        assert mlp.num_params() == (12 + 4) + (8 + 2)
        assert list(mlp.state()["layers"].keys()) == ["mod-0", "mod-1"]

    def test_needs_two_sizes(self, rng):
        with pytest.raises(ValueError):
            MLP([3], rng)

    def test_load_reproduces_outputs(self, rng):
        src = MLP([3, 5, 2], rng)
        dst = MLP([3, 5, 2], rng)
        x = jnp.ones((2, 3))
        dst.load(src.state())
        np.testing.assert_array_equal(np.asarray(dst(x)), np.asarray(src(x)))

    def test_inner_matches_outputs(self, rng):
        mlp = MLP([3, 5, 2], rng)
        x = jnp.ones((2, 3))
        inner = mlp.inner()
        assert inner.num_params() == mlp.num_params()
        np.testing.assert_array_equal(np.asarray(inner(x)), np.asarray(mlp(x)))
