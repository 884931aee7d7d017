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

"""Runtime configuration"""

import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace

LOAD_MISMATCH_POLICIES = ("ignore", "warn", "raise")


@dataclass(frozen=True)
class Config:
    """
    Options read by the parameter containers at call time.

    Attributes
    ----------
    load_mismatch : str
        What ``load`` does when a state tree has a different shape than the
        receiver. ``"ignore"`` leaves the receiver untouched without a word,
        ``"warn"`` does the same but logs a warning, ``"raise"`` raises
        :class:`paramtree.errors.StateMismatchError`.
    default_dtype : str
        dtype used by the initializers when none is given.
    """
    load_mismatch: str = "ignore"
    default_dtype: str = "float32"

    def __post_init__(self):
        if self.load_mismatch not in LOAD_MISMATCH_POLICIES:
            raise ValueError(
                f"load_mismatch must be one of {LOAD_MISMATCH_POLICIES}, got {self.load_mismatch!r}"
            )
        if not self.default_dtype:
            raise ValueError("default_dtype must be a non-empty dtype name")

    @classmethod
    def from_env(cls, environ=None) -> "Config":
        """Build a config from ``PARAMTREE_*`` environment variables."""
        environ = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            load_mismatch=environ.get("PARAMTREE_LOAD_MISMATCH", defaults.load_mismatch).lower(),
            default_dtype=environ.get("PARAMTREE_DEFAULT_DTYPE", defaults.default_dtype),
        )


_thread_local = threading.local()


def get_config() -> Config:
    """Return the config active on the calling thread."""
    cfg = getattr(_thread_local, "config", None)
    if cfg is None:
        cfg = Config.from_env()
        _thread_local.config = cfg
    return cfg


def set_config(config: Config) -> None:
    if not isinstance(config, Config):
        raise TypeError(f"expected a Config, found {type(config)}")
    _thread_local.config = config


@contextmanager
def config_context(**overrides):
    """
    Temporarily override config fields on the calling thread.

    Example
    -------
    >>> with config_context(load_mismatch="raise"):
    ...     model.load(state)
    """
    previous = get_config()
    set_config(replace(previous, **overrides))
    try:
        yield get_config()
    finally:
        set_config(previous)
