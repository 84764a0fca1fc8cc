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
The staggered-grid Stokes operator.

For a vector `x = (u, p)` with a side-centered velocity `u` and a
cell-centered pressure `p`, the operator computes

    y_u = C u + D Δu + ∇p
    y_p = -∇·u

with `C = ρ/Δt` and `D = -μ`, which is the linear part of a backward Euler
step of the incompressible Stokes equations. Ghost layers are filled with
homogeneous conditions before the stencils are applied, so the operator is
exactly linear.
"""
import dataclasses

from jax_ibamr.base import finite_differences as fd
from jax_ibamr.base.vectors import HierarchyVector
from jax_ibamr.solvers.operators import LinearOperator


@dataclasses.dataclass(frozen=True)
class StokesCoefficients:
  """Density `rho`, dynamic viscosity `mu` and time step `dt`."""
  rho: float
  mu: float
  dt: float

  @property
  def C(self) -> float:
    return self.rho / self.dt

  @property
  def D(self) -> float:
    return -self.mu


class StaggeredStokesOperator(LinearOperator):
  """
  `A x` for the staggered Stokes saddle-point system.

  Attributes:
    coefficients: the `StokesCoefficients`.
    velocity: index of the side-centered velocity component of the vectors.
    pressure: index of the cell-centered pressure component of the vectors.
  """

  def __init__(self, coefficients: StokesCoefficients, velocity: int = 0,
               pressure: int = 1, name: str = 'StaggeredStokesOperator'):
    super().__init__(name)
    self.coefficients = coefficients
    self.velocity = velocity
    self.pressure = pressure
    self._scratch = None

  def initialize_operator_state(self, in_vec: HierarchyVector,
                                out_vec: HierarchyVector):
    super().initialize_operator_state(in_vec, out_vec)
    # Ghost filling happens on a copy so that `apply` never modifies `x`.
    self._scratch = in_vec.clone(f'{self.name}.{id(self):x}.x')

  def deallocate_operator_state(self):
    if not self.is_initialized:
      return
    self._scratch.free()
    self._scratch = None
    super().deallocate_operator_state()

  def apply(self, x: HierarchyVector, y: HierarchyVector):
    """Collective. `y = A x`."""
    self._check_apply('apply', x, y)
    C = self.coefficients.C
    D = self.coefficients.D
    scratch = self._scratch
    scratch.copy_from(x)
    scratch.fill_ghosts(self.velocity)
    scratch.fill_ghosts(self.pressure)
    for patch in scratch.patches():
      u = scratch.component(patch, self.velocity)
      p, = scratch.component(patch, self.pressure)
      grad_p = fd.gradient(p)
      y_u = tuple(
          out.with_interior(C * a.interior + D * fd.laplacian(a) + g)
          for out, a, g in zip(y.component(patch, self.velocity), u, grad_p))
      y_p, = y.component(patch, self.pressure)
      y.set_component(patch, self.velocity, y_u)
      y.set_component(patch, self.pressure,
                      (y_p.with_interior(-fd.divergence(u)),))
    self._log_norms(x, y)
