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

"""Layers built with derive_module"""

from typing import Optional, Sequence

import jax

from .backend import Backend, Tensor, jax_ad_backend
from .derive import derive_module
from .initializers import Initializer, Zeros, create, glorot_uniform
from .param import Param


@derive_module
class Linear:
    """
    Fully connected layer, ``y = x @ weight + bias``.

    Parameters
    ----------
    d_input, d_output : int
        Input and output features. `weight` has shape ``(d_input, d_output)``.
    rng : RNG
        Source of the initialization keys.
    bias : bool
        Whether the layer has a bias. Without one, `bias` is an absent optional
        parameter and counts for nothing.

    Example
    -------
    >>> layer = Linear(4, 2, RNG(0))
    >>> layer.num_params()
    10
    >>> sorted(layer.state().keys())
    ['bias', 'weight']
    """

    weight: Param[Tensor]
    bias: Param[Optional[Tensor]]

    def __init__(self, d_input: int, d_output: int, rng, bias: bool = True,
                 initializer: Optional[Initializer] = None,
                 backend: Backend = jax_ad_backend):
        self.d_input = d_input
        self.d_output = d_output
        initializer = initializer or glorot_uniform()

        self.weight = Param.tensor(create(initializer, rng, (d_input, d_output), backend=backend))
        if bias:
            self.bias = Param.optional(create(Zeros(), rng, (d_output,), backend=backend))
        else:
            self.bias = Param.optional(None)

    def forward(self, x):
        y = x @ self.weight.array
        if self.bias.value is not None:
            y = y + self.bias.value.array
        return y

    def __call__(self, x):
        return self.forward(x)


@derive_module
class MLP:
    """Stack of `Linear` layers with a ReLU between consecutive layers."""

    layers: Param[list]

    def __init__(self, sizes: Sequence[int], rng, bias: bool = True,
                 backend: Backend = jax_ad_backend):
        if len(sizes) < 2:
            raise ValueError(f"MLP needs at least an input and an output size, got {list(sizes)}")
        self.sizes = tuple(sizes)
        self.layers = Param.modules([
            Linear(d_in, d_out, rng, bias=bias, backend=backend)
            for d_in, d_out in zip(sizes[:-1], sizes[1:])
        ])

    def forward(self, x):
        for i, layer in enumerate(self.layers):
            x = layer(x)
            if i < len(self.layers) - 1:
                x = jax.nn.relu(x)
        return x

    def __call__(self, x):
        return self.forward(x)
