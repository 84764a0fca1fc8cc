# Copyright 2021 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#      http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
Interfaces of the operators used by the nonlinear solver.

The base classes define the contract; calling an unimplemented method raises
`NotImplementedError`. All operators act on `HierarchyVector`s and follow the
same lifecycle: `initialize_operator_state(in, out)` allocates whatever
depends on the hierarchy configuration, `deallocate_operator_state()` releases
it, and `apply` is only valid in between.
"""
import logging

from jax_ibamr.base.errors import PreconditionError
from jax_ibamr.base.vectors import HierarchyVector

logger = logging.getLogger(__name__)


class NonlinearFunction:
  """A residual or coupling function `y = F(x)`."""

  def evaluate(self, x: HierarchyVector, y: HierarchyVector):
    raise NotImplementedError(
        'evaluate() must be implemented in a NonlinearFunction subclass.')


class LinearOperator:
  """
  A linear map between hierarchy vectors.

  Subclasses implement `apply` and may extend the state hooks; they should
  call the base class hooks so that `is_initialized` stays accurate.
  """

  def __init__(self, name: str):
    self.name = name
    self.is_initialized = False
    self.logging_enabled = False
    self._in_prototype = None
    self._out_prototype = None

  def enable_logging(self, enabled: bool = True):
    """Turns the logging of norms on or off. Numerics are unaffected."""
    self.logging_enabled = enabled

  def initialize_operator_state(self, in_vec: HierarchyVector,
                                out_vec: HierarchyVector):
    if self.is_initialized:
      self.deallocate_operator_state()
    self._in_prototype = in_vec
    self._out_prototype = out_vec
    self.is_initialized = True

  def deallocate_operator_state(self):
    if not self.is_initialized:
      return
    self._in_prototype = None
    self._out_prototype = None
    self.is_initialized = False

  def apply(self, x: HierarchyVector, y: HierarchyVector):
    raise NotImplementedError(
        'apply() must be implemented in a LinearOperator subclass.')

  def _check_apply(self, method: str, x: HierarchyVector, y: HierarchyVector):
    """Raises PreconditionError unless `y = A x` can be computed."""
    where = f'{self.name}::{method}()'
    if not self.is_initialized:
      raise PreconditionError(where, 'operator state is not initialized')
    if x is y or x.shares_storage(y):
      raise PreconditionError(where, 'input and output vectors must be distinct')
    if not x.same_structure(self._in_prototype):
      raise PreconditionError(
          where, 'input vector does not match the initialized state')
    if not y.same_structure(self._out_prototype):
      raise PreconditionError(
          where, 'output vector does not match the initialized state')

  def _log_norms(self, x: HierarchyVector, y: HierarchyVector):
    if self.logging_enabled:
      logger.info('%s::apply(): |x| = %.12e, |y| = %.12e',
                  self.name, x.l2_norm(), y.l2_norm())


class JacobianOperator(LinearOperator):
  """A linear operator that is the derivative of a function at a base point."""

  def form_jacobian(self, x: HierarchyVector):
    raise NotImplementedError(
        'form_jacobian() must be implemented in a JacobianOperator subclass.')

  def get_base_vector(self):
    raise NotImplementedError(
        'get_base_vector() must be implemented in a JacobianOperator subclass.')
