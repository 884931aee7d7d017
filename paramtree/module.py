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

"""Module Interfaces"""

from abc import ABC, abstractmethod

from .state import State


class Module(ABC):
    """
    Capability contract of every trainable structure in Paramtree.

    A module is a tree whose leaves are tensors. Whatever its shape, it
    answers the same five operations:

    • ``num_params()``
        Total number of scalar parameters in the tree.

    • ``update_params(grads, optim)``
        Hand every tensor, in a fixed traversal order, to ``optim.update``
        together with the whole gradient bag. Tensors are updated in place.

    • ``devices()``
        Devices of all tensors, in traversal order, duplicates kept.

    • ``to_device(device)``
        Move every tensor to `device`. Tensors already there are left as is.

    • ``state()`` / ``load(state)``
        Produce a :class:`paramtree.state.State` tree describing the
        parameters, and read one back in place. ``state()`` always returns an
        independent copy.

    Parameter containers (:mod:`paramtree.param`) implement the contract for
    the four leaf and container shapes; user structures get it from
    :func:`paramtree.derive.derive_module`. Structures decorated that way are
    registered as virtual subclasses, so ``isinstance(x, Module)`` holds for
    them without inheritance.
    """

    @abstractmethod
    def num_params(self) -> int:
        ...

    @abstractmethod
    def update_params(self, grads, optim) -> None:
        ...

    @abstractmethod
    def devices(self) -> list:
        ...

    @abstractmethod
    def to_device(self, device) -> None:
        ...

    @abstractmethod
    def state(self) -> State:
        ...

    @abstractmethod
    def load(self, state: State) -> None:
        ...

    def name(self) -> str:
        """Diagnostic name of the structure."""
        return type(self).__name__


class ADModule(Module):
    """
    A module bound to a differentiable backend.

    ``inner()`` returns a new, independent module of the same structure whose
    tensors are copies living on the backend's inner (non-differentiable)
    counterpart, detached from any gradient history.
    """

    @abstractmethod
    def inner(self) -> Module:
        ...
