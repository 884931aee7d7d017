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

from jax.random import PRNGKey, split


class RNG:
    """
    Lightweight PRNG wrapper used when building parameter trees.

    It wraps JAX's functional ``jax.random.PRNGKey`` in an object so that
    constructors can draw fresh keys without threading them by hand.

    Unlike raw JAX keys, `RNG` supports:
      • ``split()`` returning new `RNG` objects
      • Iteration over subkeys
      • Indexing (``rng[i]``)
      • ``next_key()``, which advances the wrapper and returns an unused key

    Examples
    --------
    >>> rng = RNG(42)
    >>> w = RandomNormal()(rng.next_key(), (3, 2), "float32")
    >>> keys = rng.split(4)        # RNG holding 4 subkeys
    >>> first = keys[0]

    Attributes
    ----------
    seed : int
        Integer seed of the base key.
    key : jax.Array
        Underlying key, or a stack of keys after ``split``.
    """

    def __init__(self, seed: int) -> None:
        self.seed = seed
        self.key = PRNGKey(seed)

    @staticmethod
    def from_key(key) -> "RNG":
        """Wrap an existing PRNG key (or a stack of keys) without reseeding."""
        r = RNG.__new__(RNG)
        r.seed = None
        r.key = key
        return r

    def split(self, n: int = 2) -> "RNG":
        """Return an `RNG` holding `n` subkeys of the current key."""
        return RNG.from_key(split(self.key, n))

    def next_key(self):
        """
        Advance this wrapper and return a fresh key.

        The current key is split in two: one half becomes the new current key,
        the other is returned to the caller.
        """
        self.key, sub = split(self.key)
        return sub

    def __getitem__(self, idx) -> "RNG":
        return RNG.from_key(self.key[idx])

    def __len__(self) -> int:
        return len(self.key)

    def __iter__(self):
        for k in self.key:
            yield RNG.from_key(k)

    def __call__(self, *args):
        return self.key

    def __repr__(self):
        return f"RNG(seed={self.seed}, key={self.key})"
