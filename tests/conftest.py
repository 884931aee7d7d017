"""Shared fixtures for paramtree tests."""

import os

# Two virtual host devices make device transfers testable on CPU-only
# machines. Must be set before jax is imported.
os.environ.setdefault("JAX_PLATFORMS", "cpu")
if "xla_force_host_platform_device_count" not in os.environ.get("XLA_FLAGS", ""):
    os.environ["XLA_FLAGS"] = (
        os.environ.get("XLA_FLAGS", "") + " --xla_force_host_platform_device_count=2"
    ).strip()

import jax
import numpy as np
import pytest

from paramtree import RNG, Tensor, config_context, jax_ad_backend


@pytest.fixture
def rng():
    return RNG(0)


@pytest.fixture
def device():
    return jax.devices()[0]


@pytest.fixture
def two_devices():
    devices = jax.devices()
    if len(devices) < 2:
        pytest.skip("needs at least two devices")
    return devices[0], devices[1]


@pytest.fixture
def make_tensor():
    """Factory for float32 tensors with distinct, predictable values."""
    def make(shape, start=0.0, backend=jax_ad_backend):
        n = int(np.prod(shape)) if shape else 1
        data = np.arange(start, start + n, dtype=np.float32).reshape(shape)
        return Tensor(data, backend=backend)
    return make


@pytest.fixture(autouse=True)
def default_config():
    """Run every test with the default lenient load policy."""
    with config_context(load_mismatch="ignore", default_dtype="float32"):
        yield
