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
Exceptions raised by Paramtree.

Only two kinds of failure originate here: a structure that cannot be turned
into a module (reported when the class is defined), and a capability that the
bound backend does not provide. Errors coming from JAX (device transfer) or
optax (update rules) are never caught or translated and reach the caller as
they were raised.
"""


class ParamTreeError(Exception):
    """Base class for every error raised by Paramtree itself."""


class DerivationError(ParamTreeError, TypeError):
    """
    Raised when `derive_module` is applied to a structure whose fields do not
    all conform to :class:`paramtree.module.Module`.

    Attributes
    ----------
    structure : str
        Name of the class being derived.
    fields : list[tuple[str, object]]
        The offending ``(field name, annotation)`` pairs.
    """

    def __init__(self, structure: str, fields, reason: str = "does not conform to Module") -> None:
        described = ", ".join(f"{name!r}: {annotation!r}" for name, annotation in fields)
        if described:
            message = f"Cannot derive Module for {structure!r}: field(s) {described} {reason}."
        else:
            message = f"Cannot derive Module for {structure!r}: {reason}."
        super().__init__(message)
        self.structure = structure
        self.fields = list(fields)


class ParamTypeError(ParamTreeError, TypeError):
    """Raised when a value of an unsupported shape is wrapped in a `Param`."""


class BackendCapabilityError(ParamTreeError, RuntimeError):
    """
    Raised when an operation needs differentiation support that the backend
    bound to a tensor does not have (``update_params`` and ``inner``).
    """

    def __init__(self, op: str, backend) -> None:
        super().__init__(
            f"{op} requires a differentiable backend, got backend '{backend}'."
        )
        self.op = op
        self.backend = backend


class StateMismatchError(ParamTreeError, ValueError):
    """
    Raised by ``load`` when the state tree does not have the shape the receiver
    expects and the active load policy is ``"raise"``.
    """


class StateFormatError(ParamTreeError, ValueError):
    """Raised when a persisted state payload cannot be decoded."""
