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

"""Backends and tensor handles"""

import uuid
from typing import Optional

import jax
import jax.numpy as jnp
import numpy as np
from jax.tree_util import register_pytree_node_class

from .errors import BackendCapabilityError
from .state import TensorData


class Backend:
    """
    Numeric and device engine a tensor is bound to.

    The parameter containers only rely on the small surface below: device
    enumeration, device placement, and whether the backend can differentiate.
    Backends compare equal by class, which keeps them usable as static pytree
    metadata.
    """

    name = "backend"
    supports_differentiation = False

    @property
    def inner_backend(self) -> Optional["Backend"]:
        return None

    def devices(self) -> list:
        raise NotImplementedError

    def default_device(self):
        return self.devices()[0]

    def device_put(self, value, device):
        raise NotImplementedError

    def asarray(self, value, dtype=None):
        raise NotImplementedError

    def __eq__(self, other):
        return type(self) is type(other)

    def __hash__(self):
        return hash(type(self))

    def __repr__(self):
        return f"{type(self).__name__}()"

    def __str__(self):
        return self.name


class ADBackend(Backend):
    """A backend that supports differentiation.

    `inner_backend` is the same engine with differentiation stripped.
    """

    supports_differentiation = True

    @property
    def inner_backend(self) -> Backend:
        raise NotImplementedError


class JaxBackend(Backend):
    """Inference-only JAX backend."""

    name = "jax"

    def devices(self) -> list:
        return list(jax.devices())

    def device_put(self, value, device):
        return jax.device_put(value, device)

    def asarray(self, value, dtype=None):
        return jnp.asarray(value, dtype=dtype)


class JaxADBackend(ADBackend, JaxBackend):
    """JAX backend whose tensors take part in `jax.grad`."""

    name = "jax-ad"

    @property
    def inner_backend(self) -> Backend:
        return jax_backend


jax_backend = JaxBackend()
jax_ad_backend = JaxADBackend()


def new_param_id() -> str:
    return uuid.uuid4().hex


@register_pytree_node_class
class Tensor:
    """
    Mutable handle over a ``jax.Array`` bound to a :class:`Backend`.

    The handle carries a stable id that optimizers and
    :class:`paramtree.optim.Gradients` use to recognise the same parameter
    across steps, device moves and reloads. It is a pytree node whose only
    child is the array, so ``jax.grad`` over a module returns a tree of
    `Tensor` handles holding gradients under the same ids.

    Parameters
    ----------
    array : array-like
        Initial value. Converted with the backend's ``asarray``.
    backend : Backend
        Engine the tensor is bound to. Defaults to the differentiable JAX
        backend.
    id : str, optional
        Parameter id to reuse. A fresh one is generated when omitted.
    """

    __slots__ = ("_array", "backend", "id")

    def __init__(self, array, backend: Backend = jax_ad_backend, id: Optional[str] = None) -> None:
        self.backend = backend
        self._array = backend.asarray(array)
        self.id = id if id is not None else new_param_id()

    @classmethod
    def _wrap(cls, array, backend: Backend, id: str) -> "Tensor":
        obj = cls.__new__(cls)
        obj._array = array
        obj.backend = backend
        obj.id = id
        return obj

    @property
    def array(self):
        return self._array

    @property
    def shape(self) -> tuple:
        return tuple(self._array.shape)

    @property
    def dtype(self):
        return self._array.dtype

    @property
    def ndim(self) -> int:
        return self._array.ndim

    def num_elements(self) -> int:
        n = 1
        for dim in self.shape:
            n *= int(dim)
        return n

    def device(self):
        return next(iter(self._array.devices()))

    def to_device(self, device) -> "Tensor":
        """Return a handle on `device`, or `self` when already resident there."""
        if self.device() == device:
            return self
        return Tensor._wrap(self.backend.device_put(self._array, device), self.backend, self.id)

    def to_data(self) -> TensorData:
        return TensorData(jax.device_get(self._array))

    @classmethod
    def from_data(cls, data: TensorData, device=None, backend: Backend = jax_ad_backend,
                  id: Optional[str] = None) -> "Tensor":
        """Rebuild a tensor from serialized data, on `device` when given."""
        device = backend.default_device() if device is None else device
        array = backend.device_put(data.array, device)
        return cls._wrap(array, backend, id if id is not None else new_param_id())

    def inner(self) -> "Tensor":
        """
        Copy of this tensor on the backend's non-differentiable counterpart,
        detached from any gradient history.
        """
        if not self.backend.supports_differentiation:
            raise BackendCapabilityError("Tensor.inner", self.backend)
        detached = jnp.array(jax.lax.stop_gradient(self._array), copy=True)
        return Tensor._wrap(detached, self.backend.inner_backend, self.id)

    def assign(self, array) -> None:
        """
        Replace the held array in place. Used by optimizers.

        Raises
        ------
        ValueError
            If the new array has a different shape.
        """
        array = self.backend.asarray(array)
        if tuple(array.shape) != self.shape:
            raise ValueError(f"cannot assign array of shape {tuple(array.shape)} to tensor of shape {self.shape}")
        self._array = array

    def __array__(self, dtype=None, copy=None):
        return np.asarray(jax.device_get(self._array), dtype=dtype)

    def __repr__(self):
        return f"Tensor(shape={self.shape}, dtype={self.dtype}, backend={self.backend})"

    def tree_flatten(self):
        return (self._array,), (self.backend, self.id)

    @classmethod
    def tree_unflatten(cls, aux, children):
        backend, id = aux
        return cls._wrap(children[0], backend, id)
