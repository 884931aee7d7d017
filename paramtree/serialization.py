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
State tree codec.

Encodes a :class:`paramtree.state.State` tree as nested JSON-safe
dictionaries and, on top of that, as a gzip-compressed JSON file.

Node format
-----------
Leaf::

    {"b64": "<base64 bytes>", "dtype": "float32", "shape": [3, 2]}

The dtype is stored by name so that JAX extension types such as
``bfloat16`` survive the round trip. Bytes are in native order.

Named::

    {"named": {"weight": <node>, "bias": <node>}}
"""

import base64
import gzip
import json
import logging
from os import PathLike
from typing import Any, Dict, Union

from .errors import StateFormatError
from .state import State, StateLeaf, StateNamed, TensorData

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1


def bytes_to_b64_str(b: bytes) -> str:
    return base64.b64encode(b).decode("ascii")


def b64_str_to_bytes(s: str) -> bytes:
    return base64.b64decode(s.encode("ascii"), validate=True)


def state_to_dict(state: State) -> Dict[str, Any]:
    """Encode `state` as a JSON-safe dictionary tree."""
    if isinstance(state, StateLeaf):
        data = state.data
        return {
            "b64": bytes_to_b64_str(data.to_bytes()),
            "dtype": data.dtype.name,
            "shape": list(data.shape),
        }
    if isinstance(state, StateNamed):
        return {"named": {key: state_to_dict(child) for key, child in state.items()}}
    raise TypeError(f"expected a State, found {type(state)}")


def state_from_dict(payload: Dict[str, Any]) -> State:
    """
    Decode a dictionary tree produced by :func:`state_to_dict`.

    Raises
    ------
    StateFormatError
        If a node is neither a leaf nor a named payload, or a leaf cannot be
        decoded.
    """
    if not isinstance(payload, dict):
        raise StateFormatError(f"state node must be a dict, found {type(payload).__name__}")

    if "named" in payload:
        children = payload["named"]
        if not isinstance(children, dict):
            raise StateFormatError("'named' must map keys to state nodes")
        state = StateNamed()
        for key, child in children.items():
            state.register_state(str(key), state_from_dict(child))
        return state

    if "b64" in payload:
        try:
            buffer = b64_str_to_bytes(str(payload["b64"]))
            data = TensorData.from_bytes(buffer, payload["dtype"], payload["shape"])
        except (KeyError, TypeError, ValueError) as exc:
            raise StateFormatError(f"malformed leaf payload: {exc}") from exc
        return StateLeaf(data)

    raise StateFormatError(f"unknown state node with keys {sorted(payload)}")


def save_state(state: State, path: Union[str, PathLike]) -> None:
    """Write `state` to `path` as gzip-compressed JSON."""
    document = {"format": FORMAT_VERSION, "state": state_to_dict(state)}
    with gzip.open(path, "wt", encoding="utf-8") as f:
        json.dump(document, f)
    logger.debug("saved state to %s", path)


def load_state(path: Union[str, PathLike]) -> State:
    """Read a state written by :func:`save_state`."""
    try:
        with gzip.open(path, "rt", encoding="utf-8") as f:
            document = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        # OSError covers "not a gzip file"; a missing file is re-raised as is.
        if isinstance(exc, FileNotFoundError):
            raise
        raise StateFormatError(f"cannot read state file {path}: {exc}") from exc

    if not isinstance(document, dict) or "state" not in document:
        raise StateFormatError(f"{path} does not contain a state tree")
    if document.get("format") != FORMAT_VERSION:
        raise StateFormatError(f"unsupported state format {document.get('format')!r}")
    logger.debug("loaded state from %s", path)
    return state_from_dict(document["state"])


def save_module(module, path: Union[str, PathLike]) -> None:
    save_state(module.state(), path)


def load_module(module, path: Union[str, PathLike]):
    """Load the state stored at `path` into `module` in place and return it."""
    module.load(load_state(path))
    return module
