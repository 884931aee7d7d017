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

"""
State trees.

A state tree is the persisted form of a parameter tree. It has two node kinds:

* :class:`StateLeaf` holds the serialized data of one tensor.
* :class:`StateNamed` maps string keys to child state trees.

The tree is a plain in-memory value. Encoding it to bytes is left to
:mod:`paramtree.serialization` or any other layer that can round-trip it.
"""

import logging
from typing import Iterator, Mapping, Optional

import jax.numpy as jnp
import numpy as np

from .config import get_config
from .errors import StateMismatchError

logger = logging.getLogger(__name__)


def resolve_dtype(dtype) -> np.dtype:
    """
    numpy dtype for `dtype`, which may be a name such as ``"bfloat16"``.

    Extension types registered by JAX (bfloat16, float8 variants) have no
    numpy type string, so they are looked up by name on :mod:`jax.numpy`.
    """
    try:
        return np.dtype(dtype)
    except TypeError:
        scalar = getattr(jnp, dtype, None) if isinstance(dtype, str) else None
        if scalar is None:
            raise
        return np.dtype(scalar)


class TensorData:
    """
    Backend-agnostic data of one tensor.

    The array is copied into an owned, C-contiguous numpy buffer, so a
    `TensorData` never aliases the storage of the tensor it was taken from.
    Two instances are equal when they have the same dtype, the same shape and
    the same bytes.
    """

    __slots__ = ("_array",)

    def __init__(self, array) -> None:
        self._array = np.array(array, copy=True, order="C")
        self._array.setflags(write=False)

    @property
    def array(self) -> np.ndarray:
        return self._array

    @property
    def shape(self) -> tuple:
        return tuple(self._array.shape)

    @property
    def dtype(self) -> np.dtype:
        return self._array.dtype

    def to_bytes(self) -> bytes:
        return self._array.tobytes(order="C")

    @classmethod
    def from_bytes(cls, buffer: bytes, dtype, shape) -> "TensorData":
        arr = np.frombuffer(buffer, dtype=resolve_dtype(dtype))
        return cls(arr.reshape(tuple(int(d) for d in shape)))

    def __eq__(self, other):
        if not isinstance(other, TensorData):
            return NotImplemented
        return (
            self.dtype == other.dtype
            and self.shape == other.shape
            and self.to_bytes() == other.to_bytes()
        )

    def __hash__(self):
        return hash((self.dtype.str, self.shape, self.to_bytes()))

    def __repr__(self):
        return f"TensorData(shape={self.shape}, dtype={self.dtype})"


class State:
    """Base class of the two state node kinds."""

    __slots__ = ()

    def is_leaf(self) -> bool:
        return isinstance(self, StateLeaf)


class StateLeaf(State):
    """Serialized data of a single tensor."""

    __slots__ = ("data",)

    def __init__(self, data: TensorData) -> None:
        if not isinstance(data, TensorData):
            data = TensorData(data)
        self.data = data

    def __eq__(self, other):
        if not isinstance(other, StateLeaf):
            return NotImplemented
        return self.data == other.data

    def __hash__(self):
        return hash(self.data)

    def __repr__(self):
        return f"StateLeaf({self.data!r})"


class StateNamed(State):
    """
    Named sub-trees.

    Keys are unique within a node; registering an existing key replaces its
    child. Iteration follows insertion order.
    """

    __slots__ = ("_children",)

    def __init__(self, children: Optional[Mapping[str, State]] = None) -> None:
        self._children = {}
        if children is not None:
            for key, child in children.items():
                self.register_state(key, child)

    def register_state(self, key: str, state: State) -> None:
        if not isinstance(key, str):
            raise TypeError(f"state keys must be str, found {type(key)}")
        if not isinstance(state, State):
            raise TypeError(f"state children must be State trees, found {type(state)}")
        self._children[key] = state

    def get(self, key: str) -> State:
        """
        Return the child stored under `key`.

        A missing key is not an error: an empty `StateNamed` is returned, which
        every leaf container treats as "nothing to load".
        """
        child = self._children.get(key)
        if child is None:
            logger.debug("state key %r missing, using an empty named state", key)
            return StateNamed()
        return child

    def keys(self):
        return self._children.keys()

    def items(self):
        return self._children.items()

    def __getitem__(self, key: str) -> State:
        return self._children[key]

    def __contains__(self, key) -> bool:
        return key in self._children

    def __iter__(self) -> Iterator[str]:
        return iter(self._children)

    def __len__(self) -> int:
        return len(self._children)

    def __eq__(self, other):
        if not isinstance(other, StateNamed):
            return NotImplemented
        return self._children == other._children

    __hash__ = None

    def __repr__(self):
        inner = ", ".join(f"{k!r}: {v!r}" for k, v in self._children.items())
        return f"StateNamed({{{inner}}})"


def report_mismatch(receiver: str, message: str) -> None:
    """
    Apply the active load-mismatch policy.

    Called by every ``load`` path that receives a state of the wrong shape.
    Under the default ``"ignore"`` policy this only emits a debug record and
    the caller leaves its value untouched.
    """
    policy = get_config().load_mismatch
    if policy == "raise":
        raise StateMismatchError(f"{receiver}: {message}")
    if policy == "warn":
        logger.warning("%s: %s; state ignored", receiver, message)
    else:
        logger.debug("%s: %s; state ignored", receiver, message)
