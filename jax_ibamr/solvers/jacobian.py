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
Matrix-free Jacobian operators for the implicit IB formulation.

The residual of an implicit step is `R(x) = A x + G(x) - b`, where `A` is the
linear Stokes operator and `G` the nonlinear coupling with the structure. Its
Jacobian at a base point `x̄` is applied without ever being assembled:

    J v = A v + (G(x̄ + ε v) - G(x̄)) / ε,
    ε   = scale * max(|x̄|, floor) / |v|.

`FiniteDifferenceJacobian` provides the second term for any
`NonlinearFunction`; `IBImplicitJacobian` composes it with the exact linear
part. Both follow the operator lifecycle of `operators.LinearOperator` and
raise `PreconditionError` when used outside of it.
"""
import dataclasses
import logging
from typing import Optional

import numpy as np

from jax_ibamr.base.errors import PreconditionError
from jax_ibamr.base.vectors import HierarchyVector
from jax_ibamr.solvers.operators import (JacobianOperator, LinearOperator,
                                         NonlinearFunction)

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class FiniteDifferenceParameters:
  """
  Step size control of the finite-difference directional derivative.

  Attributes:
    scale: relative perturbation, `sqrt` of the float64 machine epsilon by
      default.
    floor: lower bound on the base point norm used in the step size, so that
      the perturbation stays meaningful near `x̄ = 0`.
  """
  scale: float = float(np.sqrt(np.finfo(np.float64).eps))
  floor: float = 1.0

  def step_size(self, base_norm: float, direction_norm: float) -> float:
    return self.scale * max(base_norm, self.floor) / direction_norm


class FiniteDifferenceJacobian(JacobianOperator):
  """
  Jacobian of a `NonlinearFunction` by forward differences.

  `form_jacobian(x)` stores a copy of `x` and caches `F(x)`, so every `apply`
  costs exactly one further evaluation of the function.
  """

  def __init__(self, function: NonlinearFunction,
               parameters: Optional[FiniteDifferenceParameters] = None,
               name: str = 'FiniteDifferenceJacobian'):
    super().__init__(name)
    self.function = function
    self.parameters = parameters or FiniteDifferenceParameters()
    self._base = None
    self._f_base = None
    self._perturbed = None
    self._base_norm = None

  def initialize_operator_state(self, in_vec: HierarchyVector,
                                out_vec: HierarchyVector):
    super().initialize_operator_state(in_vec, out_vec)
    prefix = f'{self.name}.{id(self):x}'
    self._base = in_vec.clone(f'{prefix}.base')
    self._perturbed = in_vec.clone(f'{prefix}.perturbed')
    self._f_base = out_vec.clone(f'{prefix}.f_base')
    self._base_norm = None

  def deallocate_operator_state(self):
    if not self.is_initialized:
      return
    for vec in (self._base, self._perturbed, self._f_base):
      vec.free()
    self._base = self._perturbed = self._f_base = None
    self._base_norm = None
    super().deallocate_operator_state()

  def form_jacobian(self, x: HierarchyVector):
    """Collective. Sets the base point to `x` and evaluates `F` there."""
    where = f'{self.name}::form_jacobian()'
    if not self.is_initialized:
      raise PreconditionError(where, 'operator state is not initialized')
    if not x.same_structure(self._in_prototype):
      raise PreconditionError(
          where, 'base vector does not match the initialized state')
    self._base.copy_from(x)
    self.function.evaluate(self._base, self._f_base)
    self._base_norm = self._base.l2_norm()
    if self.logging_enabled:
      logger.info('%s::form_jacobian(): |x| = %.12e, |F(x)| = %.12e',
                  self.name, self._base_norm, self._f_base.l2_norm())

  def get_base_vector(self) -> Optional[HierarchyVector]:
    """The base point of the last `form_jacobian`, or None."""
    if self._base_norm is None:
      return None
    return self._base

  def apply(self, x: HierarchyVector, y: HierarchyVector):
    """Collective. `y = (F(x̄ + εx) - F(x̄)) / ε`, or exactly 0 if `x = 0`."""
    self._check_apply('apply', x, y)
    if self._base_norm is None:
      raise PreconditionError(f'{self.name}::apply()',
                              'form_jacobian() has not been called')
    x_norm = x.l2_norm()
    if x_norm == 0.0:
      y.set_to_scalar(0.0)
      self._log_norms(x, y)
      return
    eps = self.parameters.step_size(self._base_norm, x_norm)
    self._perturbed.linear_sum(1.0, self._base, eps, x)
    self.function.evaluate(self._perturbed, y)
    y.linear_sum(1.0 / eps, y, -1.0 / eps, self._f_base)
    if self.logging_enabled:
      logger.info('%s::apply(): eps = %.6e', self.name, eps)
    self._log_norms(x, y)


class IBImplicitJacobian(JacobianOperator):
  """
  Jacobian of the implicit IB residual, `J = A + G'(x̄)`.

  Attributes:
    stokes_op: the exact linear part `A`.
    ib_jacobian: Jacobian of the coupling function `G`.
  """

  def __init__(self, stokes_op: LinearOperator, ib_jacobian: JacobianOperator,
               name: str = 'IBImplicitJacobian'):
    super().__init__(name)
    self.stokes_op = stokes_op
    self.ib_jacobian = ib_jacobian
    self._base = None
    self._has_base = False
    self._scratch = None

  def enable_logging(self, enabled: bool = True):
    super().enable_logging(enabled)
    self.stokes_op.enable_logging(enabled)
    self.ib_jacobian.enable_logging(enabled)

  def initialize_operator_state(self, in_vec: HierarchyVector,
                                out_vec: HierarchyVector):
    """Initializes both parts. Safe to call on an initialized operator."""
    super().initialize_operator_state(in_vec, out_vec)
    self.stokes_op.initialize_operator_state(in_vec, out_vec)
    self.ib_jacobian.initialize_operator_state(in_vec, out_vec)
    prefix = f'{self.name}.{id(self):x}'
    self._base = in_vec.clone(f'{prefix}.base')
    self._scratch = out_vec.clone(f'{prefix}.scratch')
    self._has_base = False

  def deallocate_operator_state(self):
    """Releases all state. A no-op on an uninitialized operator."""
    if not self.is_initialized:
      return
    self._base.free()
    self._scratch.free()
    self._base = self._scratch = None
    self._has_base = False
    self.ib_jacobian.deallocate_operator_state()
    self.stokes_op.deallocate_operator_state()
    super().deallocate_operator_state()

  def form_jacobian(self, x: HierarchyVector):
    """Collective. Records the base point and forms the coupling Jacobian."""
    where = f'{self.name}::form_jacobian()'
    if not self.is_initialized:
      raise PreconditionError(where, 'operator state is not initialized')
    if not x.same_structure(self._in_prototype):
      raise PreconditionError(
          where, 'base vector does not match the initialized state')
    self._base.copy_from(x)
    self._has_base = True
    self.ib_jacobian.form_jacobian(x)

  def get_base_vector(self) -> Optional[HierarchyVector]:
    """The base point of the last `form_jacobian`, or None."""
    return self._base if self._has_base else None

  def apply(self, x: HierarchyVector, y: HierarchyVector):
    """Collective. `y = A x + G'(x̄) x`."""
    self._check_apply('apply', x, y)
    self.stokes_op.apply(x, y)
    self.ib_jacobian.apply(x, self._scratch)
    y.add(y, self._scratch)
    self._log_norms(x, y)
