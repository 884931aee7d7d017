"""Tests for paramtree/param.py: the four parameter container shapes."""

import jax.numpy as jnp
import numpy as np
import pytest

from paramtree import (
    BackendCapabilityError,
    Gradients,
    ModuleListParam,
    ModuleParam,
    OptionalTensorParam,
    Param,
    ParamTypeError,
    Sgd,
    StateLeaf,
    StateMismatchError,
    StateNamed,
    TensorParam,
    config_context,
    jax_backend,
)
from paramtree.nn import Linear


class TestParamNew:

    def test_dispatch(self, make_tensor, rng):
        assert isinstance(Param.new(make_tensor((2,))), TensorParam)
        assert isinstance(Param.new(None), OptionalTensorParam)
        assert isinstance(Param.new(Linear(2, 2, rng)), ModuleParam)
        assert isinstance(Param.new([Linear(2, 2, rng)]), ModuleListParam)

    def test_param_passes_through(self, make_tensor):
        p = Param.tensor(make_tensor((2,)))
        assert Param.new(p) is p

    def test_unsupported_value(self):
        with pytest.raises(ParamTypeError):
            Param.new(3.0)

    def test_variants_check_their_value(self, make_tensor):
        with pytest.raises(ParamTypeError):
            TensorParam(None)
        with pytest.raises(ParamTypeError):
            ModuleParam(make_tensor((2,)))
        with pytest.raises(ParamTypeError):
            ModuleListParam([make_tensor((2,))])

    def test_sequence_must_be_homogeneous(self, rng, make_tensor):
        with pytest.raises(ParamTypeError, match="share one type"):
            ModuleListParam([Linear(2, 2, rng), Param.tensor(make_tensor((2,)))])

    def test_read_access_falls_through(self, make_tensor):
        t = make_tensor((2, 3))
        p = Param.tensor(t)
        assert p.value is t
        assert p.shape == (2, 3)
        with pytest.raises(AttributeError):
            p.value = t


class TestTensorParam:

    @pytest.mark.parametrize("shape", [(), (5,), (2, 3), (2, 3, 4)])
    def test_num_params_is_product_of_shape(self, make_tensor, shape):
        assert Param.tensor(make_tensor(shape)).num_params() == int(np.prod(shape))

    def test_devices(self, make_tensor, device):
        assert Param.tensor(make_tensor((2,))).devices() == [device]

    def test_to_device_is_idempotent(self, make_tensor, device):
        p = Param.tensor(make_tensor((3,)))
        p.to_device(device)
        first = p.value
        p.to_device(device)
        assert p.value is first
        assert p.devices() == [device]

    def test_to_other_device_twice(self, make_tensor, two_devices):
        _, other = two_devices
        p = Param.tensor(make_tensor((3,)))
        p.to_device(other)
        once = p.state()
        p.to_device(other)
        assert p.devices() == [other]
        assert p.state() == once

    def test_state_round_trip_is_bitwise(self, make_tensor):
        original = Param.tensor(make_tensor((2, 3), start=1.5))
        state = original.state()
        assert isinstance(state, StateLeaf)

        fresh = Param.tensor(make_tensor((2, 3), start=-7.0))
        fresh.load(state)
        assert fresh.state() == state
        assert fresh.value.to_data().to_bytes() == original.value.to_data().to_bytes()

    def test_load_keeps_id_and_device(self, make_tensor, device):
        p = Param.tensor(make_tensor((2,)))
        tid = p.value.id
        p.load(Param.tensor(make_tensor((2,), start=4.0)).state())
        assert p.value.id == tid
        assert p.devices() == [device]
        np.testing.assert_array_equal(np.asarray(p.value), [4.0, 5.0])

    def test_load_named_state_is_ignored(self, make_tensor):
        p = Param.tensor(make_tensor((2,)))
        before = p.state()
        p.load(StateNamed())
        assert p.state() == before

    def test_load_named_state_raises_under_strict_policy(self, make_tensor):
        p = Param.tensor(make_tensor((2,)))
        with config_context(load_mismatch="raise"):
            with pytest.raises(StateMismatchError):
                p.load(StateNamed())

    def test_state_is_independent_copy(self, make_tensor):
        p = Param.tensor(make_tensor((2,)))
        state = p.state()
        p.value.assign(jnp.array([9.0, 9.0]))
        np.testing.assert_array_equal(state.data.array, [0.0, 1.0])

    def test_update_params(self, make_tensor):
        t = make_tensor((3,))
        p = Param.tensor(t)
        grads = Gradients()
        grads.register(t, jnp.ones(3))
        p.update_params(grads, Sgd(0.5))
        np.testing.assert_allclose(np.asarray(p.value), [-0.5, 0.5, 1.5])

    def test_update_params_needs_differentiable_backend(self, make_tensor):
        p = Param.tensor(make_tensor((3,), backend=jax_backend))
        with pytest.raises(BackendCapabilityError):
            p.update_params(Gradients(), Sgd(0.1))

    def test_inner(self, make_tensor):
        p = Param.tensor(make_tensor((2, 2)))
        inner = p.inner()
        assert isinstance(inner, TensorParam)
        assert inner.value.backend == jax_backend
        assert inner.num_params() == p.num_params()
        assert inner.state() == p.state()


class TestOptionalTensorParam:

    def test_absent_is_neutral(self, device):
        p = Param.optional(None)
        assert p.num_params() == 0
        assert p.devices() == []
        p.to_device(device)
        assert p.value is None
        p.update_params(Gradients(), Sgd(0.1))
        assert p.value is None

    def test_absent_state_is_empty_named(self):
        state = Param.optional(None).state()
        assert isinstance(state, StateNamed)
        assert len(state) == 0

    def test_absent_round_trip(self):
        p = Param.optional(None)
        p.load(p.state())
        assert p.value is None

    def test_absent_cannot_be_revived(self, make_tensor):
        leaf = Param.tensor(make_tensor((2,))).state()
        p = Param.optional(None)
        p.load(leaf)
        assert p.value is None
        assert p.num_params() == 0

    def test_present_behaves_like_leaf(self, make_tensor, device):
        p = Param.optional(make_tensor((4,)))
        assert p.is_present()
        assert p.num_params() == 4
        assert p.devices() == [device]
        assert isinstance(p.state(), StateLeaf)

    def test_present_round_trip(self, make_tensor):
        state = Param.optional(make_tensor((4,), start=3.0)).state()
        p = Param.optional(make_tensor((4,)))
        p.load(state)
        assert p.state() == state

    def test_present_ignores_named_state(self, make_tensor):
        p = Param.optional(make_tensor((2,)))
        before = p.state()
        p.load(StateNamed())
        assert p.state() == before

    def test_inner(self, make_tensor):
        assert Param.optional(None).inner().value is None
        inner = Param.optional(make_tensor((2,))).inner()
        assert inner.value.backend == jax_backend


class TestModuleParam:

    def test_forwards_everything(self, rng, device):
        layer = Linear(3, 2, rng)
        p = Param.module(layer)
        assert p.num_params() == layer.num_params() == 8
        assert p.devices() == layer.devices()
        assert p.state() == layer.state()
        assert p.name() == "Linear"

    def test_load_forwards(self, rng):
        src = Linear(3, 2, rng)
        p = Param.module(Linear(3, 2, rng))
        p.load(src.state())
        assert p.state() == src.state()

    def test_call_and_attributes_forward(self, rng):
        p = Param.module(Linear(3, 2, rng))
        assert p.d_output == 2
        assert p(jnp.ones((1, 3))).shape == (1, 2)

    def test_inner(self, rng):
        inner = Param.module(Linear(3, 2, rng)).inner()
        assert isinstance(inner, ModuleParam)
        assert inner.value.weight.value.backend == jax_backend


class TestModuleListParam:

    def test_positional_state_keys(self, rng):
        p = Param.modules([Linear(2, 2, rng) for _ in range(3)])
        state = p.state()
        assert list(state.keys()) == ["mod-0", "mod-1", "mod-2"]

    def test_num_params_and_devices(self, rng):
        layers = [Linear(2, 3, rng), Linear(2, 3, rng, bias=False)]
        p = Param.modules(layers)
        assert p.num_params() == 9 + 6
        assert len(p.devices()) == sum(len(m.devices()) for m in layers) == 3

    def test_empty_sequence(self):
        p = Param.modules([])
        assert p.num_params() == 0
        assert p.devices() == []
        assert len(p.state()) == 0

    def test_round_trip(self, rng):
        src = Param.modules([Linear(2, 2, rng) for _ in range(2)])
        dst = Param.modules([Linear(2, 2, rng) for _ in range(2)])
        assert dst.state() != src.state()
        dst.load(src.state())
        assert dst.state() == src.state()

    def test_missing_key_leaves_element_untouched(self, rng):
        src = Param.modules([Linear(2, 2, rng) for _ in range(2)])
        dst = Param.modules([Linear(2, 2, rng) for _ in range(2)])
        untouched = dst[1].state()

        partial = StateNamed({"mod-0": src.state().get("mod-0")})
        dst.load(partial)

        assert dst[0].state() == src[0].state()
        assert dst[1].state() == untouched

    def test_leaf_state_is_ignored(self, rng, make_tensor):
        p = Param.modules([Linear(2, 2, rng)])
        before = p.state()
        p.load(Param.tensor(make_tensor((2,))).state())
        assert p.state() == before

    def test_update_order_is_sequence_order(self, rng):
        seen = []

        class Recorder:
            def update(self, tensor, grads):
                seen.append(tensor.id)

        layers = [Linear(2, 2, rng) for _ in range(2)]
        Param.modules(layers).update_params(Gradients(), Recorder())
        expected = [t.id for m in layers for t in (m.weight.value, m.bias.value)]
        assert seen == expected

    def test_inner_preserves_order_and_length(self, rng):
        p = Param.modules([Linear(2, 2, rng) for _ in range(3)])
        inner = p.inner()
        assert len(inner) == 3
        for a, b in zip(p, inner):
            assert a.state() == b.state()
