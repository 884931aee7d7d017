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

import logging

from .backend import ADBackend, Backend, JaxADBackend, JaxBackend, Tensor, jax_ad_backend, jax_backend
from .config import Config, config_context, get_config, set_config
from .derive import derive_module, module_fields
from .errors import (
    BackendCapabilityError,
    DerivationError,
    ParamTreeError,
    ParamTypeError,
    StateFormatError,
    StateMismatchError,
)
from .module import ADModule, Module
from .optim import Adam, Gradients, OptaxOptimizer, Optimizer, Sgd
from .param import ModuleListParam, ModuleParam, OptionalTensorParam, Param, TensorParam
from .rng import RNG
from .serialization import load_module, load_state, save_module, save_state
from .state import State, StateLeaf, StateNamed, TensorData

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"
