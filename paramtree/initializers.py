# Copyright 2025 Kandarpa Sarkar.
#
# Licensed under the MIT License.
# You may obtain a copy of the License at:
#
#     https://opensource.org/licenses/MIT
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# Paramtree: parameter trees and derived modules for JAX.

"Initializer"

from collections.abc import Sequence
from typing import Any, Protocol

import jax
import jax.numpy as jnp
import numpy as np

from .backend import Backend, Tensor, jax_ad_backend
from .config import get_config
from .rng import RNG


class Initializer(Protocol):
    def __call__(self, key: Any, shape: Sequence[int], dtype: Any) -> jax.Array: ...


def rng_key(rng):
    if isinstance(rng, RNG):
        return rng.next_key()
    if isinstance(rng, (jax.Array, np.ndarray)):
        return rng
    raise ValueError(f'pass an RNG instance or a PRNG key, found {type(rng)}')


def _compute_fans(shape, fan_in_axes=None):
    """Computes the number of input and output units for a weight shape."""
    if len(shape) < 1:
        fan_in = fan_out = 1
    elif len(shape) == 1:
        fan_in = fan_out = shape[0]
    elif len(shape) == 2:
        fan_in, fan_out = shape
    else:
        if fan_in_axes is not None:
            fan_in = np.prod([shape[i] for i in fan_in_axes])
            fan_out = np.prod([s for i, s in enumerate(shape) if i not in fan_in_axes])
        else:
            # kernel_shape: (..., input_depth, depth)
            receptive_field_size = np.prod(shape[:-2])
            fan_in = shape[-2] * receptive_field_size
            fan_out = shape[-1] * receptive_field_size
    return fan_in, fan_out


class Constant(Initializer):
    """Initializes with a constant."""

    def __init__(self, constant):
        self.constant = constant

    def __call__(self, key, shape: Sequence[int], dtype: Any) -> jax.Array:
        return jnp.broadcast_to(jnp.asarray(self.constant), tuple(shape)).astype(dtype)


def Zeros() -> Constant:
    return Constant(0.0)


def Ones() -> Constant:
    return Constant(1.0)


class RandomNormal(Initializer):
    """Initializes by sampling from a normal distribution."""

    def __init__(self, stddev=1., mean=0.):
        self.stddev = stddev
        self.mean = mean

    def __call__(self, key, shape: Sequence[int], dtype: Any) -> jax.Array:
        m = jax.lax.convert_element_type(self.mean, dtype)
        s = jax.lax.convert_element_type(self.stddev, dtype)
        return m + s * jax.random.normal(rng_key(key), tuple(shape), dtype)


class TruncatedNormal(Initializer):
    """Initializes by sampling from a truncated normal distribution."""

    def __init__(self, stddev=1., mean=0.0, lower=-2.0, upper=2.0):
        """
        Args:
          stddev: The standard deviation parameter of the untruncated normal
            distribution.
          mean: The mean of the truncated normal distribution.
          lower: Lower bound for truncation.
          upper: Upper bound for truncation.
        """
        self.stddev = stddev
        self.mean = mean
        self.lower = lower
        self.upper = upper

    def __call__(self, key, shape: Sequence[int], dtype: Any) -> jax.Array:
        m = jax.lax.convert_element_type(self.mean, dtype)
        s = jax.lax.convert_element_type(self.stddev, dtype)
        unscaled = jax.random.truncated_normal(
            rng_key(key), self.lower, self.upper, tuple(shape), dtype)
        return s * unscaled + m


class RandomUniform(Initializer):
    """Initializes by sampling from a uniform distribution."""

    def __init__(self, minval=0., maxval=1.):
        self.minval = minval
        self.maxval = maxval

    def __call__(self, key, shape: Sequence[int], dtype: Any) -> jax.Array:
        return jax.random.uniform(rng_key(key), tuple(shape), dtype, self.minval, self.maxval)


class VarianceScaling(Initializer):
    """Initializer which adapts its scale to the shape of the initialized array.

    The scaling factor is ``s = scale / n`` where n is the fan-in, the fan-out,
    or their average depending on `mode`. Normal and truncated normal samples
    get ``stddev = sqrt(s)``; uniform samples are drawn from
    ``[-limit, limit]`` with ``limit = sqrt(3 * s)``.

    ==============  ==============================================================
    Name            Parameters
    ==============  ==============================================================
    glorot_uniform  VarianceScaling(1.0, "fan_avg", "uniform")
    glorot_normal   VarianceScaling(1.0, "fan_avg", "truncated_normal")
    lecun_normal    VarianceScaling(1.0, "fan_in",  "truncated_normal")
    he_normal       VarianceScaling(2.0, "fan_in",  "truncated_normal")
    ==============  ==============================================================
    """

    def __init__(self, scale=1.0, mode='fan_in', distribution='truncated_normal',
                 fan_in_axes=None):
        if scale < 0.0:
            raise ValueError('`scale` must be a positive float.')
        if mode not in {'fan_in', 'fan_out', 'fan_avg'}:
            raise ValueError(f'Invalid `mode` argument: {mode}')
        distribution = distribution.lower()
        if distribution not in {'normal', 'truncated_normal', 'uniform'}:
            raise ValueError(f'Invalid `distribution` argument: {distribution}')
        self.scale = scale
        self.mode = mode
        self.distribution = distribution
        self.fan_in_axes = fan_in_axes

    def __call__(self, key, shape: Sequence[int], dtype: Any) -> jax.Array:
        scale = self.scale
        fan_in, fan_out = _compute_fans(shape, self.fan_in_axes)
        if self.mode == 'fan_in':
            scale /= max(1.0, fan_in)
        elif self.mode == 'fan_out':
            scale /= max(1.0, fan_out)
        else:
            scale /= max(1.0, (fan_in + fan_out) / 2.0)

        if self.distribution == 'truncated_normal':
            # Constant from scipy.stats.truncnorm.std(a=-2, b=2, loc=0., scale=1.)
            stddev = np.sqrt(scale) / .87962566103423978
            return TruncatedNormal(stddev=stddev)(key, shape, dtype)
        elif self.distribution == 'normal':
            return RandomNormal(stddev=np.sqrt(scale))(key, shape, dtype)
        else:
            limit = np.sqrt(3.0 * scale)
            return RandomUniform(minval=-limit, maxval=limit)(key, shape, dtype)


def glorot_uniform() -> VarianceScaling:
    return VarianceScaling(1.0, "fan_avg", "uniform")


def glorot_normal() -> VarianceScaling:
    return VarianceScaling(1.0, "fan_avg", "truncated_normal")


def he_normal() -> VarianceScaling:
    return VarianceScaling(2.0, "fan_in", "truncated_normal")


def create(initializer: Initializer, rng, shape: Sequence[int], dtype=None,
           backend: Backend = jax_ad_backend) -> Tensor:
    """
    Build a `Tensor` of `shape` with `initializer`.

    `dtype` defaults to the ``default_dtype`` of the active config.
    """
    dtype = jnp.dtype(get_config().default_dtype if dtype is None else dtype)
    return Tensor(initializer(rng, tuple(shape), dtype), backend=backend)
