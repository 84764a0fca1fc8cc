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
Nonlinear fluid-structure coupling term of the implicit IB formulation.

For a backward Euler step the structure moves with the new fluid velocity,

    X(u) = X0 + dt * J[X0] u,

and exerts the force density `f = S[X(u)] F(X(u))` on the fluid, where `J` is
interpolation, `S` spreading and `F` the elastic force of the structure. The
coupling function evaluated by the Newton solver is

    G(u, p) = (-S[X(u)] F(X(u)), 0),

so the full residual of the step is `A x + G(x) - b` with `A` the Stokes
operator. Interpolation and spreading use the finest level only; the
structure must lie inside it, a kernel support away from its edges.

Both directions are discrete convolutions with a regularised delta function,
vectorised over the markers with `jax.vmap`.
"""
import itertools
import logging

import jax
import jax.numpy as jnp
import numpy as np

from jax_ibamr.IB import delta_functions
from jax_ibamr.IB.structure import LagrangianStructure
from jax_ibamr.base import boxes as box_utils
from jax_ibamr.base import grids
from jax_ibamr.base import hierarchy as hier
from jax_ibamr.base.boxes import Box, BoxList
from jax_ibamr.base.errors import PreconditionError
from jax_ibamr.base.vectors import HierarchyVector
from jax_ibamr.solvers.operators import NonlinearFunction

logger = logging.getLogger(__name__)


def _wrap(diff, length, periodic):
  """Minimum-image displacement along one axis."""
  if periodic:
    return diff - length * jnp.round(diff / length)
  return diff


class IBCouplingFunction(NonlinearFunction):
  """
  Evaluates `G(x) = (-S[X(u)] F(X(u)), 0)` for a Stokes vector `x = (u, p)`.

  Attributes:
    structure: the structure at the beginning of the time step (`X0`).
    dt: time step size.
    kernel: name of the regularised delta function.
    velocity: index of the side-centered velocity component of the vectors.
  """

  def __init__(self,
               structure: LagrangianStructure,
               dt: float,
               kernel: str = 'IB_4',
               velocity: int = 0):
    self.structure = structure
    self.dt = dt
    self.kernel = kernel
    self.velocity = velocity
    self._delta = delta_functions.get_kernel(kernel)

  # --- Patch-level convolutions --------------------------------------------

  def _face_points(self, hierarchy: hier.PatchHierarchy, patch: hier.Patch,
                   array, axis: int, owned: bool):
    """Coordinates and values of the faces normal to `axis` on `patch`.

    With `owned=True` the upper boundary face is dropped unless it lies on a
    non-periodic domain boundary, so that every face of a level is visited by
    exactly one patch.
    """
    coords = patch.grid.mesh(array.offset)
    values = array.interior
    if owned:
      geometry = hierarchy.geometry
      level = hierarchy.get_level(patch.level_number)
      keep_upper = (not geometry.periodic[axis]
                    and patch.box.upper[axis] == level.domain_box.upper[axis])
      if not keep_upper:
        n = values.shape[axis] - 1
        index = jnp.arange(n)
        values = jnp.take(values, index, axis=axis)
        coords = tuple(jnp.take(c, index, axis=axis) for c in coords)
    return coords, values

  def _weights(self, hierarchy, coords, X, h):
    """δ_h(x - X) at every point of `coords`."""
    geometry = hierarchy.geometry
    w = 1.
    for d, (c, x0) in enumerate(zip(coords, X)):
      length = geometry.x_up[d] - geometry.x_lo[d]
      diff = _wrap(c - x0, length, geometry.periodic[d])
      w = w * self._delta(0., diff, h[d])
    return w

  def interpolate(self, x: HierarchyVector, positions) -> np.ndarray:
    """
    Collective. Velocity `J[X] u` at the markers.

    Args:
      x: vector whose component `self.velocity` is interpolated.
      positions: marker positions, shape `(num_markers, ndim)`.

    Returns:
      A NumPy array of shape `(num_markers, ndim)`, identical on every rank.
    """
    hierarchy = x.hierarchy
    positions = jnp.asarray(positions)
    level = hierarchy.get_level(x.finest_ln)
    U = jnp.zeros(positions.shape)
    for patch in level.local_patches():
      h = patch.dx
      volume = float(np.prod(h))
      for axis, array in enumerate(x.component(patch, self.velocity)):
        coords, values = self._face_points(hierarchy, patch, array, axis,
                                           owned=True)

        def one_marker(X, coords=coords, values=values):
          return jnp.sum(values * self._weights(hierarchy, coords, X, h)) * volume

        U = U.at[:, axis].add(jax.vmap(one_marker)(positions))
    return np.asarray(hierarchy.context.global_reduce(np.asarray(U), 'sum'))

  def spread(self, forces, positions, y: HierarchyVector, scale: float = 1.0):
    """
    Adds `scale * S[X] F` to the velocity component of `y` on its finest level.
    """
    hierarchy = y.hierarchy
    forces = jnp.asarray(forces)
    positions = jnp.asarray(positions)
    level = hierarchy.get_level(y.finest_ln)
    for patch in level.local_patches():
      h = patch.dx
      updated = []
      for axis, array in enumerate(y.component(patch, self.velocity)):
        coords, _ = self._face_points(hierarchy, patch, array, axis,
                                      owned=False)

        def one_marker(X, F, coords=coords):
          return F * self._weights(hierarchy, coords, X, h)

        f = jnp.sum(jax.vmap(one_marker)(positions, forces[:, axis]), axis=0)
        data = array.data.at[array.interior_slices].add(scale * f)
        updated.append(grids.GridArray(data, array.offset, array.grid,
                                       array.ghosts))
      y.set_component(patch, self.velocity, updated)

  def check_markers(self, hierarchy: hier.PatchHierarchy, ln: int, positions):
    """Raises unless the kernel of every marker fits inside level `ln`.

    The cells within `SUPPORT` cells of the cell holding a marker must all
    belong to the level, wrapping around periodic axes.
    """
    level = hierarchy.get_level(ln)
    support = delta_functions.SUPPORT[self.kernel.upper()]
    shifts = itertools.product(*[
        (-n, 0, n) if periodic else (0,)
        for periodic, n in zip(hierarchy.geometry.periodic,
                               level.domain_box.shape)])
    covered = BoxList(box.shift(s) for s in shifts for box in level.boxes)
    for X in np.asarray(positions):
      cell = level.cell_index(X)
      stencil = Box(cell, cell).grow(support)
      if not box_utils.subtract(stencil, covered).empty:
        raise PreconditionError(
            'IBCouplingFunction::evaluate()',
            f'marker at {tuple(float(x) for x in X)} is within {support} '
            f'cells of the edge of level {ln}')

  # --- NonlinearFunction ---------------------------------------------------

  def marker_positions(self, x: HierarchyVector) -> jnp.ndarray:
    """Collective. `X(u) = X0 + dt * J[X0] u`."""
    X0 = self.structure.positions
    return X0 + self.dt * jnp.asarray(self.interpolate(x, X0))

  def evaluate(self, x: HierarchyVector, y: HierarchyVector):
    """Collective. `y = G(x)`."""
    if not x.same_structure(y):
      raise PreconditionError('IBCouplingFunction::evaluate()',
                              'input and output vectors differ in structure')
    if x.shares_storage(y):
      raise PreconditionError('IBCouplingFunction::evaluate()',
                              'input and output vectors must be distinct')
    self.check_markers(x.hierarchy, x.finest_ln, self.structure.positions)
    X = self.marker_positions(x)
    F = self.structure.forces(X)
    logger.debug('coupling: max marker displacement %.3e, max force %.3e',
                 float(jnp.max(jnp.abs(X - self.structure.positions))),
                 float(jnp.max(jnp.abs(F))))
    y.set_to_scalar(0.0)
    self.spread(F, X, y, scale=-1.0)
