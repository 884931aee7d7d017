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

"""Module derivation for user structures"""

import abc
import copy
import inspect
import logging
import types
from typing import ClassVar, Union, get_args, get_origin

from jax import tree_util

from .errors import DerivationError, ParamTypeError
from .module import ADModule, Module
from .param import OptionalTensorParam, Param
from .state import State, StateNamed, report_mismatch

logger = logging.getLogger(__name__)

_FIELDS = "__module_fields__"


def _origin(annotation):
    origin = get_origin(annotation)
    return annotation if origin is None else origin


def _is_classvar(annotation) -> bool:
    return annotation is ClassVar or get_origin(annotation) is ClassVar


def _conforms(annotation) -> bool:
    origin = _origin(annotation)
    return isinstance(origin, type) and issubclass(origin, Module)


def _own_annotations(cls) -> dict:
    try:
        return inspect.get_annotations(cls, eval_str=True)
    except NameError as exc:
        raise DerivationError(cls.__name__, [], f"has annotations that cannot be resolved ({exc})") from exc


def _collect_fields(cls, explicit) -> list:
    """
    Ordered ``(name, annotation)`` pairs of `cls`.

    Fields of derived base classes come first, in their own order, followed by
    the fields declared on `cls` itself.
    """
    collected = {}
    for base in reversed(cls.__mro__[1:]):
        for name, annotation in base.__dict__.get(_FIELDS, ()):
            collected[name] = annotation

    if explicit is None:
        own = _own_annotations(cls).items()
    elif isinstance(explicit, dict):
        own = explicit.items()
    else:
        own = explicit

    for name, annotation in own:
        if _is_classvar(annotation):
            continue
        collected[name] = annotation

    fields = list(collected.items())
    if not fields:
        raise DerivationError(cls.__name__, [], "has no fields")

    bad = [(name, annotation) for name, annotation in fields if not _conforms(annotation)]
    if bad:
        raise DerivationError(cls.__name__, bad)
    return fields


def _provides_inner(annotation) -> bool:
    """False for fields whose module type, or the module a `Param` wraps, has no ``inner``."""
    if not issubclass(_origin(annotation), ADModule):
        return False
    for arg in get_args(annotation):
        held = _origin(arg)
        if isinstance(held, type) and issubclass(held, Module) and not issubclass(held, ADModule):
            return False
    return True


def _declares_optional(annotation) -> bool:
    """True for ``Param[Optional[...]]`` annotations."""
    args = get_args(annotation)
    if not args:
        return False
    inner = get_origin(args[0])
    return inner in (Union, types.UnionType) and type(None) in get_args(args[0])


def _coerce(owner: str, name: str, annotation, value):
    """Wrap a raw value given for a `Param` field and check the result is a Module."""
    origin = _origin(annotation)
    optional = origin is Param and _declares_optional(annotation)
    if optional and isinstance(value, Param) and not isinstance(value, OptionalTensorParam):
        raise ParamTypeError(
            f"field {name!r} of {owner} expects an OptionalTensorParam, found {type(value).__name__}"
        )
    if issubclass(origin, Param) and not isinstance(value, Param):
        if optional:
            value = OptionalTensorParam(value)
        elif origin is Param:
            value = Param.new(value)
        else:
            value = origin(value)
    if not isinstance(value, Module):
        raise ParamTypeError(
            f"field {name!r} of {owner} expects a Module, found {type(value)}"
        )
    return value


def _set_method(cls, fn, name=None):
    name = name or fn.__name__
    fn.__name__ = name
    fn.__qualname__ = f"{cls.__qualname__}.{name}"
    fn.__module__ = cls.__module__
    setattr(cls, name, fn)


def _make_init(cls, fields):
    parameters = [
        inspect.Parameter(name, inspect.Parameter.POSITIONAL_OR_KEYWORD, annotation=annotation)
        for name, annotation in fields
    ]
    signature = inspect.Signature(parameters)

    def __init__(self, *args, **kwargs):
        bound = signature.bind(*args, **kwargs)
        for name, annotation in fields:
            setattr(self, name, _coerce(type(self).__name__, name, annotation, bound.arguments[name]))

    __init__.__signature__ = signature
    __init__.__derived__ = True
    return __init__


def _has_custom_init(cls) -> bool:
    """True if `cls` or a base below ``object`` defines a hand-written ``__init__``."""
    for kind in cls.__mro__[:-1]:
        init = kind.__dict__.get("__init__")
        if init is not None and not getattr(init, "__derived__", False):
            return True
    return False


def _register_pytree(cls, names):
    """
    Register `cls` as a JAX pytree node.

    Children are the field values in declaration order. Every other instance
    attribute is static data carried in the treedef, like the configuration
    of a layer.
    """
    field_set = frozenset(names)

    def flatten(obj):
        children = tuple(getattr(obj, name) for name in names)
        static = tuple((k, v) for k, v in vars(obj).items() if k not in field_set)
        return children, static

    def unflatten(static, children):
        obj = cls.__new__(cls)
        obj.__dict__.update(static)
        for name, value in zip(names, children):
            obj.__dict__[name] = value
        return obj

    tree_util.register_pytree_node(cls, flatten, unflatten)


def _process_class(cls, explicit):
    fields = _collect_fields(cls, explicit)
    names = tuple(name for name, _ in fields)
    field_set = frozenset(names)

    # inner() exists only when every field can provide one
    plain = [(name, annotation) for name, annotation in fields if not _provides_inner(annotation)]
    differentiable = not plain
    if plain and issubclass(cls, ADModule):
        raise DerivationError(cls.__name__, plain, "does not conform to ADModule")

    def num_params(self) -> int:
        return sum(getattr(self, name).num_params() for name in names)

    def update_params(self, grads, optim) -> None:
        for name in names:
            getattr(self, name).update_params(grads, optim)

    def devices(self) -> list:
        devices = []
        for name in names:
            devices.extend(getattr(self, name).devices())
        return devices

    def to_device(self, device) -> None:
        for name in names:
            getattr(self, name).to_device(device)

    def state(self) -> State:
        state = StateNamed()
        for name in names:
            state.register_state(name, getattr(self, name).state())
        return state

    def load(self, state: State) -> None:
        if not isinstance(state, StateNamed):
            report_mismatch(self.name(), "expected a named state, got a leaf state")
            return
        for name in names:
            getattr(self, name).load(state.get(name))

    def inner(self):
        kind = type(self)
        obj = kind.__new__(kind)
        for key, value in vars(self).items():
            if key not in field_set:
                obj.__dict__[key] = copy.copy(value)
        for name in names:
            obj.__dict__[name] = getattr(self, name).inner()
        return obj

    for fn in (num_params, update_params, devices, to_device, state, load):
        _set_method(cls, fn)
    if differentiable:
        _set_method(cls, inner)

    if "name" not in cls.__dict__:
        def name(self) -> str:
            return cls.__name__
        _set_method(cls, name)

    if "__str__" not in cls.__dict__:
        def __str__(self):
            return self.name()
        _set_method(cls, __str__)

    if "__repr__" not in cls.__dict__:
        def __repr__(self):
            body = ", ".join(f"{name}={getattr(self, name, None)!r}" for name in names)
            return f"{cls.__name__}({body})"
        _set_method(cls, __repr__)

    if not _has_custom_init(cls):
        _set_method(cls, _make_init(cls, fields), "__init__")

    setattr(cls, _FIELDS, tuple(fields))
    _register_pytree(cls, names)

    if differentiable and not issubclass(cls, ADModule):
        ADModule.register(cls)
    elif not issubclass(cls, Module):
        Module.register(cls)
    abc.update_abstractmethods(cls)

    logger.debug("derived Module for %s with fields %s", cls.__qualname__, list(names))
    return cls


def derive_module(cls=None, *, fields=None):
    """
    Class decorator deriving the Module interface from a structure's fields.

    The fields are the class annotations, in declaration order, or the
    ``(name, type)`` pairs passed as `fields`. Every field type must be a
    :class:`paramtree.module.Module`: a `Param` (``Param``, ``Param[...]`` or
    one of its variants), another derived structure, or a hand-written
    Module. The check runs once, here; a structure that fails it is never
    created.

    For those fields the decorator adds:

    - ``num_params``, ``update_params``, ``devices``, ``to_device``: combined
      over the fields in declaration order;
    - ``state``: a named state keyed by field name; ``load`` reads it back,
      leaving fields whose key is missing untouched;
    - ``inner``: a new instance of the class with every field converted to
      the inner backend. Added, and the class registered as an
      :class:`ADModule`, only when every field type is an ADModule; otherwise
      the class is a plain :class:`Module`;
    - ``name``, ``__str__``, ``__repr__`` unless the class defines them;
    - ``__init__`` over the fields unless the class or a base defines one. A raw tensor,
      ``None`` or module given for a ``Param`` field is wrapped with
      :meth:`Param.new`.

    The class is also registered as a JAX pytree node, so ``jax.grad`` and
    ``jax.tree_util`` see it as a tree of tensors.

    Raises
    ------
    DerivationError
        If a field type does not conform to Module, an annotation cannot be
        resolved, or the structure has no fields.

    Example
    -------
    >>> @derive_module
    ... class Block:
    ...     dense: Param[Linear]
    ...     scale: Param[Tensor]
    ...
    >>> block = Block(Linear(4, 4, rng), Tensor(jnp.ones(4)))
    >>> block.state().keys()
    dict_keys(['dense', 'scale'])
    """

    def wrap(cls):
        return _process_class(cls, fields)

    if cls is None:
        return wrap
    return wrap(cls)


def module_fields(obj) -> tuple:
    """Field names of a derived structure (class or instance), in order."""
    kind = obj if isinstance(obj, type) else type(obj)
    return tuple(name for name, _ in getattr(kind, _FIELDS, ()))
