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

"""Gradients and optimizers"""

import logging
from abc import ABC, abstractmethod

import jax
import optax

from .backend import Tensor

logger = logging.getLogger(__name__)


def _is_tensor(node) -> bool:
    return isinstance(node, Tensor)


class Gradients:
    """
    Gradient bag indexed by parameter id.

    Modules never look inside it; they hand the whole bag to the optimizer,
    which asks for the gradient of each tensor it updates.
    """

    def __init__(self) -> None:
        self._grads = {}

    @classmethod
    def from_tree(cls, tree) -> "Gradients":
        """
        Collect the gradients of a tree returned by ``jax.grad``.

        Differentiating a loss with respect to a module yields a tree of the
        same structure whose `Tensor` handles hold gradients under the ids of
        the original parameters.

        Example
        -------
        >>> grad_tree = jax.grad(loss_fn)(model, x, y)
        >>> grads = Gradients.from_tree(grad_tree)
        >>> model.update_params(grads, Sgd(0.1))
        """
        grads = cls()
        for node in jax.tree_util.tree_leaves(tree, is_leaf=_is_tensor):
            if isinstance(node, Tensor):
                grads.register(node, node.array)
        return grads

    def register(self, tensor, grad) -> None:
        key = tensor.id if isinstance(tensor, Tensor) else tensor
        self._grads[key] = grad

    def wrt(self, tensor):
        """Gradient of `tensor`, or None if the bag has none for it."""
        return self._grads.get(tensor.id)

    def __contains__(self, tensor) -> bool:
        key = tensor.id if isinstance(tensor, Tensor) else tensor
        return key in self._grads

    def __len__(self) -> int:
        return len(self._grads)

    def __repr__(self):
        return f"Gradients({len(self)} tensors)"


class Optimizer(ABC):
    """Update rule applied to one tensor at a time."""

    @abstractmethod
    def update(self, tensor: Tensor, grads: Gradients) -> None:
        """Update `tensor` in place using its entry in `grads`."""


class OptaxOptimizer(Optimizer):
    """
    Applies an ``optax.GradientTransformation`` parameter by parameter.

    The optax state of each parameter is created on its first update and kept
    under the parameter id, so it survives device moves and state reloads of
    the owning module. Tensors with no gradient in the bag are left alone.

    Parameters
    ----------
    transformation : optax.GradientTransformation
        The update rule, e.g. ``optax.sgd(1e-2)``.
    """

    def __init__(self, transformation: optax.GradientTransformation) -> None:
        self.transformation = transformation
        self._states = {}

    def update(self, tensor: Tensor, grads: Gradients) -> None:
        grad = grads.wrt(tensor)
        if grad is None:
            return

        params = tensor.array
        opt_state = self._states.get(tensor.id)
        if opt_state is None:
            logger.debug("initializing optimizer state for parameter %s %s", tensor.id, tensor.shape)
            opt_state = self.transformation.init(params)

        updates, opt_state = self.transformation.update(grad, opt_state, params)
        tensor.assign(optax.apply_updates(params, updates))
        self._states[tensor.id] = opt_state

    def num_states(self) -> int:
        return len(self._states)


def Sgd(learning_rate: float, momentum=None) -> OptaxOptimizer:
    return OptaxOptimizer(optax.sgd(learning_rate, momentum=momentum))


def Adam(learning_rate: float, b1: float = 0.9, b2: float = 0.999, eps: float = 1e-8) -> OptaxOptimizer:
    return OptaxOptimizer(optax.adam(learning_rate, b1=b1, b2=b2, eps=eps))
