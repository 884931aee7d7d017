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

"""Parameter containers"""

from typing import Generic, List, Optional, Sequence, TypeVar

from jax.tree_util import register_pytree_node_class

from .backend import Tensor
from .errors import BackendCapabilityError, ParamTypeError
from .module import ADModule, Module
from .state import State, StateLeaf, StateNamed, report_mismatch

T = TypeVar("T")
M = TypeVar("M", bound=Module)


def _require_differentiable(op: str, tensor: Tensor) -> None:
    if not tensor.backend.supports_differentiation:
        raise BackendCapabilityError(op, tensor.backend)


class Param(ADModule, Generic[T]):
    """
    Owner of one value that takes part in a parameter tree.

    A `Param` holds a value of exactly one of four shapes, each handled by its
    own subclass:

    ==========================  ============================================
    Shape                       Container
    ==========================  ============================================
    tensor                      :class:`TensorParam`
    optional tensor             :class:`OptionalTensorParam`
    nested module               :class:`ModuleParam`
    sequence of modules         :class:`ModuleListParam`
    ==========================  ============================================

    Reads go straight through to the held value: ``param.value`` returns it,
    and any public attribute not defined on the container is looked up on it
    (``param.shape``, ``param.array``, ``param.some_field``). There is no
    setter; the held value only changes through ``update_params``,
    ``to_device`` and ``load``, which keeps ``num_params()`` and ``state()``
    consistent with it.

    Example
    -------
    >>> w = Param.new(Tensor(jnp.ones((3, 2))))
    >>> w.num_params()
    6
    >>> b = Param.optional(None)
    >>> b.num_params(), b.devices()
    (0, [])
    """

    __slots__ = ("_value",)

    def __init__(self, value: T) -> None:
        self._value = value

    @staticmethod
    def new(value) -> "Param":
        """Wrap `value` in the container matching its shape."""
        if isinstance(value, Param):
            return value
        if isinstance(value, Tensor):
            return TensorParam(value)
        if value is None:
            return OptionalTensorParam(None)
        if isinstance(value, Module):
            return ModuleParam(value)
        if isinstance(value, (list, tuple)):
            return ModuleListParam(value)
        raise ParamTypeError(
            f"Param holds a Tensor, None, a Module or a sequence of Modules, found {type(value)}"
        )

    @staticmethod
    def tensor(value: Tensor) -> "TensorParam":
        return TensorParam(value)

    @staticmethod
    def optional(value: Optional[Tensor]) -> "OptionalTensorParam":
        return OptionalTensorParam(value)

    @staticmethod
    def module(value: Module) -> "ModuleParam":
        return ModuleParam(value)

    @staticmethod
    def modules(values: Sequence[Module]) -> "ModuleListParam":
        return ModuleListParam(values)

    @property
    def value(self) -> T:
        return self._value

    def __getattr__(self, name):
        # Only reached when normal lookup fails. Private names are never
        # forwarded, which also keeps half-built instances (tree_unflatten)
        # from recursing.
        if name.startswith("_"):
            raise AttributeError(name)
        return getattr(self._value, name)

    def __repr__(self):
        return f"{type(self).__name__}({self._value!r})"

    def tree_flatten(self):
        return (self._value,), None

    @classmethod
    def tree_unflatten(cls, aux, children):
        obj = cls.__new__(cls)
        obj._value = children[0]
        return obj


@register_pytree_node_class
class TensorParam(Param[Tensor]):
    """A single tensor. The base case of every parameter tree."""

    __slots__ = ()

    def __init__(self, value: Tensor) -> None:
        if not isinstance(value, Tensor):
            raise ParamTypeError(f"TensorParam holds a Tensor, found {type(value)}")
        super().__init__(value)

    def num_params(self) -> int:
        return self._value.num_elements()

    def update_params(self, grads, optim) -> None:
        _require_differentiable("update_params", self._value)
        optim.update(self._value, grads)

    def devices(self) -> list:
        return [self._value.device()]

    def to_device(self, device) -> None:
        self._value = self._value.to_device(device)

    def state(self) -> State:
        return StateLeaf(self._value.to_data())

    def load(self, state: State) -> None:
        if not isinstance(state, StateLeaf):
            report_mismatch(repr(self), "expected a leaf state, got a named state")
            return
        current = self._value
        self._value = Tensor.from_data(state.data, current.device(), current.backend, current.id)

    def inner(self) -> "TensorParam":
        return TensorParam(self._value.inner())


@register_pytree_node_class
class OptionalTensorParam(Param[Optional[Tensor]]):
    """
    A tensor that may be absent, such as a disabled bias.

    Absence is the neutral element of every operation: no parameters, no
    devices, nothing to update or move. Its state is an empty named node, so
    an absent parameter can be told apart from a present one. Presence is
    fixed when the container is built; ``load`` never brings an absent tensor
    to life.
    """

    __slots__ = ()

    def __init__(self, value: Optional[Tensor]) -> None:
        if value is not None and not isinstance(value, Tensor):
            raise ParamTypeError(f"OptionalTensorParam holds a Tensor or None, found {type(value)}")
        super().__init__(value)

    def is_present(self) -> bool:
        return self._value is not None

    def num_params(self) -> int:
        if self._value is None:
            return 0
        return self._value.num_elements()

    def update_params(self, grads, optim) -> None:
        if self._value is None:
            return
        _require_differentiable("update_params", self._value)
        optim.update(self._value, grads)

    def devices(self) -> list:
        if self._value is None:
            return []
        return [self._value.device()]

    def to_device(self, device) -> None:
        if self._value is not None:
            self._value = self._value.to_device(device)

    def state(self) -> State:
        if self._value is None:
            return StateNamed()
        return StateLeaf(self._value.to_data())

    def load(self, state: State) -> None:
        if self._value is None:
            if isinstance(state, StateLeaf):
                report_mismatch(repr(self), "an absent parameter cannot be loaded from leaf data")
            return
        if not isinstance(state, StateLeaf):
            report_mismatch(repr(self), "expected a leaf state, got a named state")
            return
        current = self._value
        self._value = Tensor.from_data(state.data, current.device(), current.backend, current.id)

    def inner(self) -> "OptionalTensorParam":
        if self._value is None:
            return OptionalTensorParam(None)
        return OptionalTensorParam(self._value.inner())


@register_pytree_node_class
class ModuleParam(Param[M]):
    """A nested module. Every operation is forwarded to it."""

    __slots__ = ()

    def __init__(self, value: M) -> None:
        if not isinstance(value, Module):
            raise ParamTypeError(f"ModuleParam holds a Module, found {type(value)}")
        super().__init__(value)

    def num_params(self) -> int:
        return self._value.num_params()

    def update_params(self, grads, optim) -> None:
        self._value.update_params(grads, optim)

    def devices(self) -> list:
        return self._value.devices()

    def to_device(self, device) -> None:
        self._value.to_device(device)

    def state(self) -> State:
        return self._value.state()

    def load(self, state: State) -> None:
        self._value.load(state)

    def inner(self) -> "ModuleParam":
        return ModuleParam(self._value.inner())

    def name(self) -> str:
        return self._value.name()

    def __call__(self, *args, **kwargs):
        return self._value(*args, **kwargs)


def _positional_key(index: int) -> str:
    return f"mod-{index}"


@register_pytree_node_class
class ModuleListParam(Param[List[M]]):
    """
    An ordered sequence of modules of one type.

    Elements are addressed in the state tree by their position, as
    ``"mod-0"``, ``"mod-1"`` and so on. Every operation walks the elements in
    sequence order.
    """

    __slots__ = ()

    def __init__(self, values: Sequence[M]) -> None:
        values = list(values)
        for i, value in enumerate(values):
            if not isinstance(value, Module):
                raise ParamTypeError(f"element {i} of ModuleListParam is not a Module, found {type(value)}")
            if type(value) is not type(values[0]):
                raise ParamTypeError(
                    f"ModuleListParam elements must share one type, found {type(values[0]).__name__} "
                    f"and {type(value).__name__}"
                )
        super().__init__(values)

    def num_params(self) -> int:
        return sum(module.num_params() for module in self._value)

    def update_params(self, grads, optim) -> None:
        for module in self._value:
            module.update_params(grads, optim)

    def devices(self) -> list:
        devices = []
        for module in self._value:
            devices.extend(module.devices())
        return devices

    def to_device(self, device) -> None:
        for module in self._value:
            module.to_device(device)

    def state(self) -> State:
        state = StateNamed()
        for i, module in enumerate(self._value):
            state.register_state(_positional_key(i), module.state())
        return state

    def load(self, state: State) -> None:
        if not isinstance(state, StateNamed):
            report_mismatch(repr(self), "expected a named state, got a leaf state")
            return
        for i, module in enumerate(self._value):
            module.load(state.get(_positional_key(i)))

    def inner(self) -> "ModuleListParam":
        return ModuleListParam([module.inner() for module in self._value])

    def __len__(self) -> int:
        return len(self._value)

    def __iter__(self):
        return iter(self._value)

    def __getitem__(self, idx):
        return self._value[idx]

    def tree_flatten(self):
        return tuple(self._value), None

    @classmethod
    def tree_unflatten(cls, aux, children):
        obj = cls.__new__(cls)
        obj._value = list(children)
        return obj
